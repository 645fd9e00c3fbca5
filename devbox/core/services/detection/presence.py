"""
Presence predicates — is a step's effect already in place?

Evaluated live against the system on every run and never against the
ledger. Every predicate is read-only and quick: no installs, no
network, no elevation.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from typing import TYPE_CHECKING

from devbox.core.context import SessionContext, render_template
from devbox.core.models.step import PresenceCheck, Step

if TYPE_CHECKING:
    from devbox.adapters.terminal.tmux import TmuxClient

logger = logging.getLogger(__name__)

_VERSION_TIMEOUT = 10


def evaluate(check: PresenceCheck, ctx: SessionContext, tmux: TmuxClient | None = None) -> bool:
    """Evaluate one presence predicate.

    Args:
        check: The predicate from the step.
        ctx: Session context (search path, home, placeholders).
        tmux: Client for ``tmux_session`` checks.

    Returns:
        True when the step's effect is already present.
    """
    kind = check.kind

    if kind == "binary":
        return shutil.which(check.name, path=ctx.search_path or None) is not None

    if kind == "path":
        path = ctx.expand_path(check.path)
        if check.directory:
            return path.is_dir()
        if check.executable:
            return path.is_file() and os.access(path, os.X_OK)
        return path.exists()

    if kind == "file_contains":
        path = ctx.expand_path(check.path)
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return False
        pattern = render_template(check.pattern, ctx.variables())
        return re.search(pattern, text, re.MULTILINE) is not None

    if kind == "tmux_session":
        if tmux is None:
            logger.debug("No tmux client; treating session %s as absent", check.session)
            return False
        if shutil.which("tmux", path=ctx.search_path or None) is None:
            return False
        return tmux.has_session(ctx.expand(check.session))

    if kind == "all":
        return all(evaluate(c, ctx, tmux) for c in check.checks)

    # never
    return False


def installed_version(step: Step, ctx: SessionContext) -> str | None:
    """Version string reported by the step's ``version_command``.

    Uses the first regex group of ``version_pattern`` when given,
    otherwise the first non-empty output line.

    Returns:
        The version, or None if it can't be determined.
    """
    if not step.version_command:
        return None

    argv = [ctx.expand(a) for a in step.version_command]
    exe = shutil.which(argv[0], path=ctx.search_path or None)
    if exe is None:
        return None

    env = os.environ.copy()
    if ctx.search_path:
        env["PATH"] = ctx.search_path

    try:
        result = subprocess.run(
            [exe, *argv[1:]],
            capture_output=True,
            text=True,
            timeout=_VERSION_TIMEOUT,
            env=env,
            stdin=subprocess.DEVNULL,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("Version command for %s failed: %s", step.name, e)
        return None

    # Some tools print their version on stderr.
    output = (result.stdout or "") + (result.stderr or "")
    if step.version_pattern:
        match = re.search(step.version_pattern, output)
        if not match:
            return None
        return match.group(1) if match.groups() else match.group(0)

    for line in output.splitlines():
        if line.strip():
            return line.strip()
    return None
