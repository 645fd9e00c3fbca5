"""
Git clone installer — plugins, themes, and repos checked out from https.

Uses the git CLI through the command runner. The clone is shallow when
``depth`` is set and always lands at an absolute ``dest``.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from devbox.adapters.base import Installer, InstallOutcome, InstallRequest

logger = logging.getLogger(__name__)


class GitCloneInstaller(Installer):
    """Clone a repository.

    Action fields:
        repo (str): https URL of the repository.
        dest (str): Checkout directory (rendered).
        depth (int): Optional shallow clone depth.
    """

    @property
    def name(self) -> str:
        return "git_clone"

    def is_available(self) -> bool:
        return shutil.which("git") is not None

    def validate(self, request: InstallRequest) -> tuple[bool, str]:
        dest = request.path(request.spec.dest)
        if dest.is_dir():
            if any(dest.iterdir()):
                return False, f"Destination is not empty: {dest}"
        elif dest.exists():
            return False, f"Destination exists and is not a directory: {dest}"
        return True, ""

    def install(self, request: InstallRequest) -> InstallOutcome:
        spec = request.spec
        dest = request.render(spec.dest)
        repo = request.render(spec.repo)

        argv = ["git", "clone", "--quiet"]
        if spec.depth:
            argv.append(f"--depth={spec.depth}")
        argv += ["--", repo, dest]

        request.run(argv, env={"GIT_TERMINAL_PROMPT": "0"})
        logger.info("Cloned %s → %s", repo, dest)
        return self.outcome(
            request,
            dest,
            metadata={"repo": repo, "dest": dest, "head": self._head(request, Path(dest))},
        )

    def _head(self, request: InstallRequest, dest: Path) -> str:
        result = request.run(["git", "-C", str(dest), "rev-parse", "--short", "HEAD"], check=False)
        return result.stdout.strip() if result.ok else ""
