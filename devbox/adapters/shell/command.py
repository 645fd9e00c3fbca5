"""
Command installer — run a fixed argv template.

For tools installed through another tool (``cargo install``,
``bun install -g``, ``uv tool install``, ``systemctl enable``).

Action fields:
    command (list[str]): argv template; ``{home}``-style tokens are
        rendered per element, never joined into a shell string.
    cwd (str): Working directory (optional, rendered).
    env (dict[str, str]): Extra environment variables (rendered).
"""

from __future__ import annotations

import shutil

from devbox.adapters.base import Installer, InstallOutcome, InstallRequest


class CommandInstaller(Installer):
    """Run one command as the install action."""

    @property
    def name(self) -> str:
        return "command"

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    def validate(self, request: InstallRequest) -> tuple[bool, str]:
        cwd = request.spec.cwd
        if cwd and not request.path(cwd).is_dir():
            return False, f"Working directory does not exist: {request.render(cwd)}"
        return True, ""

    def install(self, request: InstallRequest) -> InstallOutcome:
        spec = request.spec
        argv = request.render_all(spec.command)
        env = {k: request.render(v) for k, v in spec.env.items()}

        result = request.run(
            argv,
            env=env or None,
            cwd=request.render(spec.cwd) if spec.cwd else None,
        )
        return self.outcome(request, result.stdout.strip(), metadata={"command": argv})
