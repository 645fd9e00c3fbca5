"""
Filesystem installers — place files, archive members, and dotfiles.

Every write to a destination goes through ``install(1)`` via the
command runner, so a step's ``needs_sudo`` decides who writes and the
elevation boundary stays in one place. Python only stages content in
the step's scratch dir.
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import time
from pathlib import Path, PurePosixPath

from devbox.adapters.base import Installer, InstallOutcome, InstallRequest
from devbox.core.errors import InstallError

logger = logging.getLogger(__name__)


def _place(request: InstallRequest, src: Path, dest: str, mode: int) -> None:
    """Copy ``src`` to ``dest`` with ``mode``, creating parent dirs."""
    request.run(["install", "-D", "-m", f"{mode:04o}", str(src), dest])


def backup_file(request: InstallRequest, dest: str) -> str | None:
    """Copy ``dest`` to ``dest.bak.YYYYMMDD_HHMMSS`` if it exists.

    Returns:
        The backup path, or None when there was nothing to back up.
    """
    if not Path(dest).exists():
        return None
    backup = f"{dest}.bak.{time.strftime('%Y%m%d_%H%M%S')}"
    request.run(["cp", "-p", dest, backup])
    logger.info("Backed up %s → %s", dest, backup)
    return backup


class FileInstaller(Installer):
    """Place a fetched file at a destination path.

    Action fields:
        dest (str): Destination path (rendered).
        file_mode (str): Octal mode, default 0644.
        link (str): Optional symlink path pointing at ``dest``.
    """

    @property
    def name(self) -> str:
        return "file"

    def is_available(self) -> bool:
        return shutil.which("install") is not None

    def validate(self, request: InstallRequest) -> tuple[bool, str]:
        if request.artifact is None or not request.artifact.is_file():
            return False, "file mode needs a fetched artifact"
        return True, ""

    def install(self, request: InstallRequest) -> InstallOutcome:
        spec = request.spec
        dest = request.render(spec.dest)
        _place(request, request.artifact, dest, spec.mode_bits())

        link = request.render(spec.link) if spec.link else ""
        if link:
            request.run(["ln", "-sfn", dest, link])

        return self.outcome(request, dest, metadata={"dest": dest, "link": link})


class ArchiveInstaller(Installer):
    """Extract named members from a fetched tarball into a target dir.

    Action fields:
        members (list[str]): Member names; matched exactly or by basename.
        target_dir (str): Directory the members are installed into (rendered).
        file_mode (str): Octal mode, default 0755.
    """

    @property
    def name(self) -> str:
        return "archive"

    def is_available(self) -> bool:
        return shutil.which("install") is not None

    def validate(self, request: InstallRequest) -> tuple[bool, str]:
        if request.artifact is None or not request.artifact.is_file():
            return False, "archive mode needs a fetched artifact"
        if request.scratch is None:
            return False, "archive mode needs a scratch dir"
        return True, ""

    def install(self, request: InstallRequest) -> InstallOutcome:
        spec = request.spec
        target_dir = request.render(spec.target_dir)
        extract_dir = request.scratch / "extract"
        extract_dir.mkdir(exist_ok=True)

        try:
            with tarfile.open(request.artifact, "r:*") as tar:
                by_name = {m.name: m for m in tar.getmembers() if m.isfile()}
                wanted = []
                for member_name in spec.members:
                    member = by_name.get(member_name) or next(
                        (m for n, m in by_name.items() if PurePosixPath(n).name == member_name),
                        None,
                    )
                    if member is None:
                        raise InstallError(
                            f"Archive member '{member_name}' not found",
                            hint="check the archive layout for this release and update the catalog",
                            data={"members": sorted(by_name)},
                        )
                    wanted.append(member)
                tar.extractall(extract_dir, members=wanted, filter="data")
        except tarfile.TarError as e:
            raise InstallError(f"Cannot read archive: {e}") from e

        placed = []
        for member in wanted:
            dest = str(Path(target_dir) / PurePosixPath(member.name).name)
            _place(request, extract_dir / member.name, dest, spec.mode_bits(0o755))
            placed.append(dest)

        return self.outcome(request, ", ".join(placed), metadata={"placed": placed})


class DotfileInstaller(Installer):
    """Write managed content to a file.

    ``replace`` makes the file exactly ``content``. ``append`` adds a
    marker-delimited block once and never touches it again. Either way
    an existing file that lacks the marker is backed up first.

    Action fields:
        dest (str): Target file (rendered).
        content (str): Text to write (rendered).
        strategy (str): ``replace`` or ``append``.
        marker (str): Line identifying the managed block.
        file_mode (str): Octal mode; defaults to the existing mode or 0644.
    """

    @property
    def name(self) -> str:
        return "dotfile"

    def is_available(self) -> bool:
        return shutil.which("install") is not None

    def validate(self, request: InstallRequest) -> tuple[bool, str]:
        if request.scratch is None:
            return False, "dotfile mode needs a scratch dir"
        return True, ""

    def install(self, request: InstallRequest) -> InstallOutcome:
        spec = request.spec
        dest = request.render(spec.dest)
        dest_path = Path(dest)
        content = request.render(spec.content)
        if not content.endswith("\n"):
            content += "\n"

        try:
            existing = dest_path.read_text(encoding="utf-8") if dest_path.is_file() else None
        except UnicodeDecodeError as e:
            raise InstallError(
                f"{dest} is not UTF-8 text ({e.reason} at byte {e.start})",
                hint=f"convert {dest} to UTF-8 or move it aside, then re-run",
            ) from e
        has_marker = bool(spec.marker) and existing is not None and spec.marker in existing

        if spec.strategy == "append":
            if has_marker:
                return self.outcome(request, f"{dest} already has {spec.marker}", changed=False)
            base = existing or ""
            if base and not base.endswith("\n"):
                base += "\n"
            desired = f"{base}\n{spec.marker}\n{content}" if base else f"{spec.marker}\n{content}"
        else:
            desired = content
            if existing == desired:
                return self.outcome(request, f"{dest} up to date", changed=False)

        backup = None
        if existing is not None and not has_marker:
            backup = backup_file(request, dest)

        mode = spec.mode_bits(dest_path.stat().st_mode & 0o7777 if existing is not None else 0o644)
        staged = request.scratch / f"dotfile-{dest_path.name}"
        staged.write_text(desired, encoding="utf-8")
        _place(request, staged, dest, mode)

        return self.outcome(
            request,
            f"wrote {dest}",
            metadata={"dest": dest, "strategy": spec.strategy, "backup": backup},
        )
