"""Version control installers — git clone."""

from devbox.adapters.vcs.git import GitCloneInstaller

__all__ = ["GitCloneInstaller"]
