"""
Installer base — the protocol contract between the engine and the system.

Every install mode in the catalog (packages, script, archive, ...) is
served by one Installer. The engine only talks to installers through
this protocol, never directly to package managers or the filesystem.

Unlike a general adapter, an installer may assume it starts from
"not present": the runner never calls it when the step's presence
predicate already holds.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from devbox.core.context import SessionContext, render_template
from devbox.core.models.step import Step

if TYPE_CHECKING:
    from devbox.core.services.install.subprocess_runner import CommandRunner


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class InstallOutcome(BaseModel):
    """Result of a successful install action.

    Failures are not outcomes: installers raise ``InstallError`` (or
    ``ElevationError``) and the runner turns that into a failed record.
    """

    installer: str
    step: str
    output: str = ""
    changed: bool = True
    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)


@dataclass
class InstallRequest:
    """Everything an installer needs to apply one step."""

    step: Step
    ctx: SessionContext
    runner: CommandRunner
    artifact: Path | None = None
    scratch: Path | None = None

    @property
    def spec(self):
        return self.step.install

    @property
    def privileged(self) -> bool:
        return self.step.needs_sudo

    def variables(self) -> dict[str, str]:
        variables = self.ctx.variables()
        if self.artifact is not None:
            variables["artifact"] = str(self.artifact)
        if self.scratch is not None:
            variables["scratch"] = str(self.scratch)
        return variables

    def render(self, value: str) -> str:
        """Render one template element (``~`` and ``{var}`` tokens)."""
        rendered = render_template(value, self.variables())
        if rendered == "~" or rendered.startswith("~/"):
            rendered = str(self.ctx.home) + rendered[1:]
        return rendered

    def render_all(self, values: list[str]) -> list[str]:
        """Render each argv element independently."""
        return [self.render(v) for v in values]

    def path(self, value: str) -> Path:
        return Path(self.render(value))

    def run(self, argv: list[str], **kwargs: Any):
        """Run a rendered command at the step's privilege level."""
        kwargs.setdefault("privileged", self.privileged)
        kwargs.setdefault("timeout", self.step.timeout)
        return self.runner.run(argv, **kwargs)


class Installer(ABC):
    """Abstract base class for all installers.

    To create a new installer:
        1. Subclass Installer
        2. Implement name, is_available, validate, install
        3. Register it in the InstallerRegistry
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The install mode this installer serves (e.g. 'packages')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the underlying tool exists. Fast, never raises."""

    def validate(self, request: InstallRequest) -> tuple[bool, str]:
        """Validate that the step can be applied.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """
        return True, ""

    @abstractmethod
    def install(self, request: InstallRequest) -> InstallOutcome:
        """Apply the step.

        Raises:
            InstallError: The action failed.
            ElevationError: The action needs privileges that are missing.
        """

    def outcome(self, request: InstallRequest, output: str = "", **kwargs: Any) -> InstallOutcome:
        """Build a success outcome for ``request``."""
        return InstallOutcome(installer=self.name, step=request.step.name, output=output, **kwargs)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
