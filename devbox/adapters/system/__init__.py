"""System installers — distribution package manager."""

from devbox.adapters.system.packages import AptPackagesInstaller

__all__ = ["AptPackagesInstaller"]
