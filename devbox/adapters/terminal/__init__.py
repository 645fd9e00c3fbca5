"""Terminal installers — tmux workspaces."""

from devbox.adapters.terminal.tmux import TmuxClient, TmuxWorkspaceInstaller

__all__ = ["TmuxClient", "TmuxWorkspaceInstaller"]
