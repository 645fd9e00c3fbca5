"""Shell installers — scripts, commands, files, archives, dotfiles."""

from devbox.adapters.shell.command import CommandInstaller
from devbox.adapters.shell.filesystem import ArchiveInstaller, DotfileInstaller, FileInstaller
from devbox.adapters.shell.script import ScriptInstaller

__all__ = [
    "ArchiveInstaller",
    "CommandInstaller",
    "DotfileInstaller",
    "FileInstaller",
    "ScriptInstaller",
]
