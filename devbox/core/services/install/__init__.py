"""Install service — the executor and the elevation boundary."""

from devbox.core.services.install.executor import InstallerExecutor, default_registry
from devbox.core.services.install.subprocess_runner import CommandResult, CommandRunner

__all__ = [
    "CommandResult",
    "CommandRunner",
    "InstallerExecutor",
    "default_registry",
]
