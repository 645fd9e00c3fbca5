"""Adapters — one installer per install mode.

Public re-exports for convenient access.
"""

from devbox.adapters.base import Installer, InstallOutcome, InstallRequest
from devbox.adapters.mock import MockInstaller
from devbox.adapters.registry import InstallerRegistry

__all__ = [
    "InstallOutcome",
    "InstallRequest",
    "Installer",
    "InstallerRegistry",
    "MockInstaller",
]
