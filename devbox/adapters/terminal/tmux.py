"""
tmux collaborator — named sessions, windows, and literal keystrokes.

Every tmux call runs unprivileged through the command runner, so when
the provisioner runs as root the session belongs to the target user's
tmux server, not root's.
"""

from __future__ import annotations

import logging
import shutil
from typing import TYPE_CHECKING

from devbox.adapters.base import Installer, InstallOutcome, InstallRequest

if TYPE_CHECKING:
    from devbox.core.services.install.subprocess_runner import CommandRunner

logger = logging.getLogger(__name__)


class TmuxClient:
    """Thin wrapper over the tmux CLI."""

    def __init__(self, runner: CommandRunner, binary: str = "tmux"):
        self._runner = runner
        self._binary = binary

    def _tmux(self, *args: str, check: bool = True):
        return self._runner.run([self._binary, *args], timeout=30, check=check)

    def has_session(self, name: str) -> bool:
        # "=" forces an exact match instead of a prefix match.
        result = self._tmux("has-session", "-t", f"={name}", check=False)
        return result.ok

    def new_session(self, name: str, window: str, start_dir: str | None = None) -> None:
        args = ["new-session", "-d", "-s", name, "-n", window]
        if start_dir:
            args += ["-c", start_dir]
        self._tmux(*args)

    def new_window(self, session: str, window: str, start_dir: str | None = None) -> None:
        args = ["new-window", "-t", f"{session}:", "-n", window]
        if start_dir:
            args += ["-c", start_dir]
        self._tmux(*args)

    def send_keys(self, session: str, window: str, text: str, enter: bool = True) -> None:
        """Type ``text`` literally into a window, then press Enter."""
        target = f"{session}:{window}"
        self._tmux("send-keys", "-t", target, "-l", text)
        if enter:
            self._tmux("send-keys", "-t", target, "Enter")

    def select_window(self, session: str, window: str) -> None:
        self._tmux("select-window", "-t", f"{session}:{window}")


class TmuxWorkspaceInstaller(Installer):
    """Create a detached tmux session with named windows.

    Action fields:
        session (str): Session name.
        start_dir (str): Working directory for every window (rendered).
        windows (list): ``{name, keys}``; ``keys`` is typed literally.
        select (str): Window to leave selected (default: the first).
    """

    def __init__(self, client_factory=TmuxClient):
        self._client_factory = client_factory

    @property
    def name(self) -> str:
        return "tmux_workspace"

    def is_available(self) -> bool:
        return shutil.which("tmux") is not None

    def validate(self, request: InstallRequest) -> tuple[bool, str]:
        names = [w.name for w in request.spec.windows]
        if len(names) != len(set(names)):
            return False, "tmux window names must be unique"
        if request.spec.select and request.spec.select not in names:
            return False, f"select names an unknown window: {request.spec.select}"
        return True, ""

    def install(self, request: InstallRequest) -> InstallOutcome:
        spec = request.spec
        client = self._client_factory(request.runner)
        session = request.render(spec.session)
        start_dir = request.render(spec.start_dir) if spec.start_dir else None

        if client.has_session(session):
            return self.outcome(request, f"session {session} exists", changed=False)

        first, *rest = spec.windows
        client.new_session(session, first.name, start_dir)
        for window in rest:
            client.new_window(session, window.name, start_dir)
        for window in spec.windows:
            if window.keys:
                client.send_keys(session, window.name, request.render(window.keys))
        client.select_window(session, spec.select or first.name)

        logger.info("tmux session %s created with %d windows", session, len(spec.windows))
        return self.outcome(
            request,
            f"session {session}",
            metadata={"session": session, "windows": [w.name for w in spec.windows]},
        )
