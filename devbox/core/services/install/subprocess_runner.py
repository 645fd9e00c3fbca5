"""
Command runner — the elevation boundary.

The SINGLE PLACE where ``subprocess.run`` is called for install
operations. Every privilege decision is made here and nowhere else.

Security invariants:
- Commands are argv lists; ``shell=True`` is never used.
- Privileged commands run directly when already root, through
  ``sudo -n`` when non-interactive sudo works, and are refused
  (``ElevationError``) otherwise. sudo never prompts.
- Unprivileged commands never escalate. When the process itself is
  root they are dropped to the target user with ``sudo -u``.
- Every privileged invocation is logged and kept in ``privileged_calls``.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass, field

from devbox.core.context import SessionContext
from devbox.core.errors import ElevationError, InstallError

logger = logging.getLogger(__name__)

_OUTPUT_TAIL = 2000

_SUDO_DENIED_MARKERS = ("a password is required", "incorrect password", "is not in the sudoers")


@dataclass
class CommandResult:
    """Outcome of one command."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class CommandRunner:
    """Runs install commands on behalf of one session."""

    ctx: SessionContext
    privileged_calls: list[list[str]] = field(default_factory=list)

    def build_argv(
        self,
        argv: list[str],
        *,
        privileged: bool,
        env: dict[str, str] | None = None,
    ) -> list[str]:
        """Wrap ``argv`` for the privilege level the step declared.

        Raises:
            ElevationError: Privilege required but unavailable.
        """
        env_prefix = ["env", *(f"{k}={v}" for k, v in (env or {}).items())] if env else []

        if privileged:
            if self.ctx.is_root:
                return list(argv)
            if not self.ctx.can_elevate:
                raise ElevationError(
                    f"'{argv[0]}' requires superuser rights and sudo is not available",
                    data={"argv": argv},
                )
            return ["sudo", "-n", "--", *env_prefix, *argv]

        if self.ctx.is_root and self.ctx.target_user != "root":
            return ["sudo", "-n", "-u", self.ctx.target_user, "-H", "--", *env_prefix, *argv]
        return list(argv)

    def run(
        self,
        argv: list[str],
        *,
        privileged: bool = False,
        timeout: int = 900,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run one command at the declared privilege level.

        Args:
            argv: Command and arguments, already rendered.
            privileged: Whether the step declared ``needs_sudo``.
            timeout: Seconds before the command is killed.
            env: Extra environment variables for the command.
            cwd: Working directory.
            check: Raise InstallError on a non-zero exit.

        Raises:
            ElevationError: Privilege required but unavailable or refused.
            InstallError: Command missing, timed out, or failed (with check).
        """
        if not argv:
            raise InstallError("Empty command")

        full_argv = self.build_argv(argv, privileged=privileged, env=env)
        wrapped = full_argv[0] == "sudo"

        if privileged:
            self.privileged_calls.append(list(argv))
            logger.info("[sudo] %s", " ".join(argv))
        else:
            logger.debug("Running: %s", " ".join(full_argv))

        run_env = os.environ.copy()
        if env and not wrapped:
            run_env.update(env)

        start = time.monotonic()
        try:
            result = subprocess.run(
                full_argv,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=run_env,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired as e:
            raise InstallError(
                f"'{argv[0]}' timed out after {timeout}s",
                data={"argv": argv, "timeout": timeout},
            ) from e
        except OSError as e:
            raise InstallError(
                f"Cannot execute '{argv[0]}': {e}",
                hint="make sure an earlier step installed it, then re-run",
                data={"argv": argv},
            ) from e

        outcome = CommandResult(
            argv=full_argv,
            returncode=result.returncode,
            stdout=(result.stdout or "")[-_OUTPUT_TAIL:],
            stderr=(result.stderr or "")[-_OUTPUT_TAIL:],
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )

        if outcome.ok or not check:
            return outcome

        if wrapped and any(m in outcome.stderr.lower() for m in _SUDO_DENIED_MARKERS):
            raise ElevationError(
                f"sudo refused to run '{argv[0]}'",
                data={"argv": argv, "stderr": outcome.stderr},
            )

        raise InstallError(
            f"'{argv[0]}' exited with code {outcome.returncode}",
            data={
                "argv": argv,
                "returncode": outcome.returncode,
                "stderr": outcome.stderr,
                "stdout": outcome.stdout,
            },
        )
