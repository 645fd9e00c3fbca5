"""
Step model — one idempotent unit of provisioning work.

Steps are declared in the catalog, validated once at load time, and
never mutated afterwards. The runner consumes them read-only:

    presence check → (fetch) → install → record

A step carries everything the engine needs and nothing it has to
guess: the presence predicate, an optional remote artifact with its
digest, a typed install action, the fatality policy, and whether the
action must cross the elevation boundary.
"""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*$")
_DIGEST_RE = re.compile(r"^(?:[a-z0-9_]+:)?[0-9a-fA-F]{32,128}$")

PresenceKind = Literal["binary", "path", "file_contains", "tmux_session", "never", "all"]

InstallMode = Literal[
    "packages",
    "script",
    "archive",
    "file",
    "command",
    "git_clone",
    "dotfile",
    "tmux_workspace",
]

# Modes whose action consumes a fetched artifact.
FETCHING_MODES = frozenset({"script", "archive", "file"})


class PresenceCheck(BaseModel):
    """How to tell whether a step's effect is already in place.

    Always evaluated live against the system, never against the ledger.
    """

    kind: PresenceKind
    name: str = ""              # binary: executable name on the search path
    path: str = ""              # path / file_contains: may use ~ and {home}
    pattern: str = ""           # file_contains: regex searched in the file
    executable: bool = False    # path: must be an executable file
    directory: bool = False     # path: must be a directory
    session: str = ""           # tmux_session: session name
    checks: list[PresenceCheck] = Field(default_factory=list)  # all

    @model_validator(mode="after")
    def _check_fields(self) -> PresenceCheck:
        required = {
            "binary": ("name",),
            "path": ("path",),
            "file_contains": ("path", "pattern"),
            "tmux_session": ("session",),
            "all": ("checks",),
        }.get(self.kind, ())
        missing = [f for f in required if not getattr(self, f)]
        if missing:
            raise ValueError(
                f"presence kind '{self.kind}' requires: {', '.join(missing)}"
            )
        if self.kind == "file_contains":
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise ValueError(f"invalid pattern {self.pattern!r}: {e}") from e
        return self

    def describe(self) -> str:
        """Short human-readable summary (e.g. ``binary rg``)."""
        if self.kind == "binary":
            return f"binary {self.name}"
        if self.kind == "path":
            return f"path {self.path}"
        if self.kind == "file_contains":
            return f"{self.path} contains /{self.pattern}/"
        if self.kind == "tmux_session":
            return f"tmux session {self.session}"
        if self.kind == "all":
            return " and ".join(c.describe() for c in self.checks)
        return "never satisfied"


class FetchSpec(BaseModel):
    """A remote artifact to download before installing."""

    url: str
    digest: str | None = None   # "sha256:<hex>" (bare hex means sha256)

    @field_validator("url")
    @classmethod
    def _https_only(cls, v: str) -> str:
        if not v.lower().startswith("https://"):
            raise ValueError(f"fetch url must use https: {v}")
        return v

    @field_validator("digest")
    @classmethod
    def _digest_format(cls, v: str | None) -> str | None:
        if v is not None and not _DIGEST_RE.match(v):
            raise ValueError(f"digest must look like 'sha256:<hex>': {v}")
        return v


class TmuxWindow(BaseModel):
    """A named window in a workspace session."""

    name: str
    keys: str = ""              # literal text sent to the window, then Enter


class InstallSpec(BaseModel):
    """The typed install action of a step.

    ``mode`` selects the installer; the remaining fields are that
    installer's arguments. Every list element is rendered separately
    from a fixed template, never joined into a shell string.
    """

    mode: InstallMode

    # packages
    packages: list[str] = Field(default_factory=list)
    optional_packages: list[str] = Field(default_factory=list)
    update: bool = False

    # script
    interpreter: Literal["bash", "sh"] = "bash"
    args: list[str] = Field(default_factory=list)

    # command
    command: list[str] = Field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)

    # archive
    members: list[str] = Field(default_factory=list)
    target_dir: str = ""

    # file / dotfile / archive
    dest: str = ""
    file_mode: str = ""         # octal string, e.g. "0755"
    link: str = ""              # file: optional symlink pointing at dest

    # git_clone
    repo: str = ""
    depth: int | None = None

    # dotfile
    content: str = ""
    strategy: Literal["replace", "append"] = "replace"
    marker: str = ""

    # tmux_workspace
    session: str = ""
    start_dir: str = ""
    windows: list[TmuxWindow] = Field(default_factory=list)
    select: str = ""

    @field_validator("file_mode")
    @classmethod
    def _octal_mode(cls, v: str) -> str:
        if v and not re.fullmatch(r"0?[0-7]{3,4}", v):
            raise ValueError(f"file_mode must be an octal string like '0755': {v}")
        return v

    @model_validator(mode="after")
    def _check_mode_fields(self) -> InstallSpec:
        required = {
            "packages": ("packages",),
            "command": ("command",),
            "archive": ("members", "target_dir"),
            "file": ("dest",),
            "git_clone": ("repo", "dest"),
            "dotfile": ("dest", "content"),
            "tmux_workspace": ("session", "windows"),
        }.get(self.mode, ())
        missing = [f for f in required if not getattr(self, f)]
        if missing:
            raise ValueError(
                f"install mode '{self.mode}' requires: {', '.join(missing)}"
            )
        if self.mode == "dotfile" and self.strategy == "append" and not self.marker:
            raise ValueError("dotfile strategy 'append' requires a marker")
        if self.mode == "git_clone" and not self.repo.lower().startswith("https://"):
            raise ValueError(f"git_clone repo must use https: {self.repo}")
        return self

    def mode_bits(self, default: int = 0o644) -> int:
        return int(self.file_mode, 8) if self.file_mode else default


class Step(BaseModel):
    """One catalog entry.

    Phases group steps for reporting; declaration order is the only
    ordering signal. Later steps may rely on binaries that earlier
    phases provide, but the engine does not verify that.
    """

    name: str
    phase: int = Field(ge=1)
    description: str = ""
    presence: PresenceCheck
    fetch: FetchSpec | None = None
    install: InstallSpec
    fatality: Literal["abort", "continue"] = "continue"
    needs_sudo: bool = False
    timeout: int = Field(default=900, gt=0)
    version_command: list[str] = Field(default_factory=list)
    version_pattern: str = ""

    @field_validator("name")
    @classmethod
    def _name_format(cls, v: str) -> str:
        if not _NAME_RE.match(v):
            raise ValueError(
                f"step name must be lowercase [a-z0-9._-] starting alphanumeric: {v!r}"
            )
        return v

    @field_validator("version_pattern")
    @classmethod
    def _version_pattern_compiles(cls, v: str) -> str:
        if v:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"invalid version_pattern {v!r}: {e}") from e
        return v

    @model_validator(mode="after")
    def _check_policy(self) -> Step:
        if self.install.mode in FETCHING_MODES and self.fetch is None:
            raise ValueError(f"install mode '{self.install.mode}' requires a fetch url")
        if self.fetch is not None and self.install.mode not in FETCHING_MODES:
            raise ValueError(
                f"install mode '{self.install.mode}' does not consume a fetched artifact"
            )
        # Content that will run or land with superuser rights must be pinned.
        if self.needs_sudo and self.fetch is not None and not self.fetch.digest:
            raise ValueError(
                "a step that fetches an artifact and needs sudo must declare a digest"
            )
        return self

    @property
    def label(self) -> str:
        return self.description or self.name
