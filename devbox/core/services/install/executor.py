"""
Installer executor — apply a step's install action.

The executor owns the command runner (the elevation boundary) and the
installer registry, and turns ``(step, artifact)`` into an
``InstallRequest`` for the registry to dispatch. It never decides
*whether* a step runs; that is the runner's job.
"""

from __future__ import annotations

import logging
from pathlib import Path

from devbox.adapters.base import InstallOutcome, InstallRequest
from devbox.adapters.registry import InstallerRegistry
from devbox.adapters.shell import (
    ArchiveInstaller,
    CommandInstaller,
    DotfileInstaller,
    FileInstaller,
    ScriptInstaller,
)
from devbox.adapters.system import AptPackagesInstaller
from devbox.adapters.terminal import TmuxWorkspaceInstaller
from devbox.adapters.vcs import GitCloneInstaller
from devbox.core.context import SessionContext
from devbox.core.models.step import Step
from devbox.core.services.install.subprocess_runner import CommandRunner

logger = logging.getLogger(__name__)


def default_registry() -> InstallerRegistry:
    """Registry with one installer per install mode."""
    registry = InstallerRegistry()
    for installer in (
        AptPackagesInstaller(),
        ScriptInstaller(),
        ArchiveInstaller(),
        FileInstaller(),
        CommandInstaller(),
        GitCloneInstaller(),
        DotfileInstaller(),
        TmuxWorkspaceInstaller(),
    ):
        registry.register(installer)
    return registry


class InstallerExecutor:
    """Dispatch install actions through the registry."""

    def __init__(
        self,
        ctx: SessionContext,
        registry: InstallerRegistry | None = None,
        runner: CommandRunner | None = None,
    ):
        self._ctx = ctx
        self._registry = registry or default_registry()
        self._runner = runner or CommandRunner(ctx)

    @property
    def registry(self) -> InstallerRegistry:
        return self._registry

    @property
    def runner(self) -> CommandRunner:
        return self._runner

    def install(
        self,
        step: Step,
        artifact: Path | None = None,
        scratch: Path | None = None,
    ) -> InstallOutcome:
        """Apply ``step``'s install action.

        Raises:
            InstallError: The action failed or the step is invalid for its mode.
            ElevationError: The step needs superuser rights that are missing.
        """
        request = InstallRequest(
            step=step,
            ctx=self._ctx,
            runner=self._runner,
            artifact=artifact,
            scratch=scratch,
        )
        logger.debug("Installing %s via %s", step.name, step.install.mode)
        return self._registry.install(request)
