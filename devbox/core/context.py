"""
Session context — the single source of truth for "whose box are we provisioning."

Built ONCE at startup by whichever entry point launches a run and then
threaded explicitly through every component:

    - CLI:    main.py → SessionContext.from_environment(...)
    - Tests:  SessionContext(...) with tmp_path directories

The context is frozen. Nothing in a run mutates it and it is never
persisted.
"""

from __future__ import annotations

import getpass
import logging
import os
import platform
import pwd
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

_ARCH_MAP = {"x86_64": "amd64", "aarch64": "arm64", "armv7l": "armhf"}

# Per-user tool dirs that installers drop binaries into.
USER_BIN_DIRS = (".local/bin", ".cargo/bin", ".bun/bin", "go/bin")

DEFAULT_WORKSPACE = "/data/projects"


@dataclass(frozen=True)
class SessionContext:
    """Immutable ambient configuration for one runner invocation."""

    target_user: str
    home: Path
    workspace: Path
    arch: str
    machine: str = ""
    is_root: bool = False
    can_elevate: bool = False
    network_assumed: bool = True
    search_path: str = ""
    scratch_root: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))

    def variables(self) -> dict[str, str]:
        """Placeholder values for ``{name}`` tokens in catalog templates."""
        return {
            "user": self.target_user,
            "home": str(self.home),
            "workspace": str(self.workspace),
            "arch": self.arch,
            "machine": self.machine,
        }

    def expand(self, value: str) -> str:
        """Expand ``~`` and ``{placeholder}`` tokens against this context."""
        rendered = render_template(value, self.variables())
        if rendered == "~" or rendered.startswith("~/"):
            rendered = str(self.home) + rendered[1:]
        return rendered

    def expand_path(self, value: str) -> Path:
        return Path(self.expand(value))

    @classmethod
    def from_environment(
        cls,
        target_user: str | None = None,
        workspace: str | None = None,
        network_assumed: bool = True,
    ) -> SessionContext:
        """Build the context from the running process.

        Target user precedence: argument > ``DEVBOX_TARGET_USER`` >
        ``SUDO_USER`` (when invoked through sudo) > the current login.
        """
        user = (
            target_user
            or os.environ.get("DEVBOX_TARGET_USER")
            or os.environ.get("SUDO_USER")
            or getpass.getuser()
        )
        home = _home_for(user)
        machine = platform.machine().lower()
        is_root = os.geteuid() == 0

        search_dirs = [str(home / d) for d in USER_BIN_DIRS]
        search_dirs.append(os.environ.get("PATH", os.defpath))

        ctx = cls(
            target_user=user,
            home=home,
            workspace=Path(
                workspace or os.environ.get("DEVBOX_WORKSPACE", DEFAULT_WORKSPACE)
            ),
            arch=_ARCH_MAP.get(machine, machine),
            machine=machine,
            is_root=is_root,
            can_elevate=is_root or _sudo_available(),
            network_assumed=network_assumed,
            search_path=os.pathsep.join(search_dirs),
        )
        logger.debug(
            "Session context: user=%s home=%s arch=%s root=%s elevate=%s",
            ctx.target_user, ctx.home, ctx.arch, ctx.is_root, ctx.can_elevate,
        )
        return ctx


def render_template(template: str, variables: dict[str, str]) -> str:
    """Substitute ``{var}`` placeholders.

    Simple string replacement, no escaping. Unknown tokens are left
    untouched so literal braces in content survive.
    """
    result = template
    for key, value in variables.items():
        result = result.replace(f"{{{key}}}", str(value))
    return result


def _home_for(user: str) -> Path:
    try:
        return Path(pwd.getpwnam(user).pw_dir)
    except KeyError:
        return Path.home()


def _sudo_available() -> bool:
    """True when ``sudo`` works without prompting."""
    try:
        result = subprocess.run(
            ["sudo", "-n", "true"],
            capture_output=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0
