"""
Runner — the provisioning loop.

Walks the catalog in declaration order, one step at a time:

    presence check ─┬─ present ──────────────────────────────→ skipped
                    └─ absent → fetch → install → re-check ─┬→ succeeded
                                                            └→ failed

Every outcome is recorded in the ledger as soon as it is known, so an
interrupted run resumes at the first step whose effect is missing.
Presence is always evaluated live; the ledger is never consulted to
decide whether a step runs.

Failure policy is per step: ``abort`` stops the run (exit 2),
``continue`` records the failure and moves on (exit 1 at the end).
Cancellation is observed only between steps.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
import uuid
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import PurePosixPath
from typing import Callable, Iterator
from urllib.parse import urlparse

from devbox.adapters.terminal.tmux import TmuxClient
from devbox.core.context import SessionContext
from devbox.core.engine.registry import StepRegistry
from devbox.core.errors import CatalogError, InstallError, ProvisionError
from devbox.core.models.ledger import RunRecord
from devbox.core.models.step import Step
from devbox.core.persistence.ledger import LedgerStore
from devbox.core.services.detection.presence import evaluate, installed_version
from devbox.core.services.fetch import Fetcher
from devbox.core.services.install import InstallerExecutor

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_FATAL = 2


class CancellationToken:
    """Thread-safe cancel flag, checked by the runner between steps."""

    def __init__(self):
        self._event = threading.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @contextmanager
    def handle_signals(self) -> Iterator[CancellationToken]:
        """Cancel on SIGINT/SIGTERM while the block runs.

        The step in progress finishes (or fails) on its own; the run
        stops at the next step boundary. Previous handlers are restored
        on exit. Only effective in the main thread.
        """
        if threading.current_thread() is not threading.main_thread():
            yield self
            return

        def _handler(signum, _frame):
            name = signal.Signals(signum).name
            logger.warning("Received %s — stopping after the current step", name)
            self.cancel(f"interrupted by {name}")

        previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
        try:
            yield self
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)


@dataclass
class StepResult:
    """What happened to one step in this run."""

    step: str
    phase: int
    outcome: str                 # succeeded, skipped, failed, pending
    fatality: str = "continue"
    record: RunRecord | None = None
    detail: str = ""

    def to_dict(self) -> dict:
        data = {
            "step": self.step,
            "phase": self.phase,
            "outcome": self.outcome,
            "fatality": self.fatality,
            "detail": self.detail,
        }
        if self.record is not None:
            data["version"] = self.record.version
            data["duration_ms"] = self.record.duration_ms
            data["error_kind"] = self.record.error_kind
            data["error"] = self.record.error
            data["hint"] = self.record.hint
        return data


@dataclass
class RunReport:
    """Result of one run."""

    run_id: str = ""
    dry_run: bool = False
    results: list[StepResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    aborted_by: str | None = None
    cancelled: bool = False
    cancel_reason: str = ""
    duration_ms: int = 0

    def _count(self, outcome: str) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return self._count("succeeded")

    @property
    def skipped(self) -> int:
        return self._count("skipped")

    @property
    def failed(self) -> int:
        return self._count("failed")

    @property
    def pending(self) -> int:
        return self._count("pending")

    @property
    def failed_steps(self) -> list[str]:
        return [r.step for r in self.results if r.outcome == "failed"]

    @property
    def unsatisfied(self) -> list[StepResult]:
        """Every step that is not known to be in place."""
        return [r for r in self.results if r.outcome in ("failed", "pending")]

    @property
    def status(self) -> str:
        if self.cancelled:
            return "cancelled"
        if self.aborted_by:
            return "aborted"
        if self.failed == 0:
            return "ok"
        if self.succeeded + self.skipped > 0:
            return "partial"
        return "failed"

    @property
    def exit_code(self) -> int:
        if self.cancelled or self.aborted_by:
            return EXIT_FATAL
        if self.failed:
            return EXIT_FAILURES
        return EXIT_OK

    def outcomes(self) -> dict[str, str]:
        return {r.step: r.outcome for r in self.results}

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "dry_run": self.dry_run,
            "status": self.status,
            "exit_code": self.exit_code,
            "total": self.total,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "pending": self.pending,
            "aborted_by": self.aborted_by,
            "cancelled": self.cancelled,
            "cancel_reason": self.cancel_reason,
            "duration_ms": self.duration_ms,
            "warnings": list(self.warnings),
            "steps": [r.to_dict() for r in self.results],
        }


_MARKERS = {"succeeded": "✓", "skipped": "⊘", "failed": "✗", "pending": "…"}


class Runner:
    """Run a closed step registry against one session."""

    def __init__(
        self,
        registry: StepRegistry,
        ctx: SessionContext,
        *,
        ledger: LedgerStore | None = None,
        fetcher: Fetcher | None = None,
        executor: InstallerExecutor | None = None,
        tmux: TmuxClient | None = None,
        token: CancellationToken | None = None,
        on_result: Callable[[StepResult], None] | None = None,
    ):
        self._registry = registry
        self._ctx = ctx
        self._ledger = ledger
        self._fetcher = fetcher or Fetcher(ctx)
        self._executor = executor or InstallerExecutor(ctx)
        self._tmux = tmux or TmuxClient(self._executor.runner)
        self._token = token or CancellationToken()
        self._on_result = on_result

    @property
    def token(self) -> CancellationToken:
        return self._token

    def select(self, only: list[str] | None = None, phases: list[int] | None = None) -> list[Step]:
        """Steps to run, in declaration order.

        Raises:
            CatalogError: ``only`` names a step that is not in the catalog.
        """
        if only:
            unknown = [n for n in only if n not in self._registry]
            if unknown:
                raise CatalogError(
                    f"Unknown step(s): {', '.join(unknown)}",
                    hint="run 'devbox catalog list' to see step names",
                )
        steps = self._registry.all_steps()
        if only:
            steps = [s for s in steps if s.name in only]
        if phases:
            steps = [s for s in steps if s.phase in phases]
        return steps

    def run(
        self,
        *,
        dry_run: bool = False,
        only: list[str] | None = None,
        phases: list[int] | None = None,
        run_id: str | None = None,
    ) -> RunReport:
        """Provision every selected step.

        Step-level errors never escape: they become failed records.

        Raises:
            CatalogError: Invalid step selection (nothing has run).
        """
        steps = self.select(only, phases)
        report = RunReport(run_id=run_id or generate_run_id(), dry_run=dry_run)
        start = time.monotonic()

        if self._ledger is not None and not dry_run:
            self._ledger.begin_run(report.run_id, self._ctx.target_user)

        logger.info(
            "Run %s: %d step(s)%s", report.run_id, len(steps), " (dry run)" if dry_run else ""
        )

        for index, step in enumerate(steps):
            if self._token.cancelled:
                report.cancelled = True
                report.cancel_reason = self._token.reason
                self._mark_pending(report, steps[index:], "not run: cancelled")
                break

            result = self._run_step(step, dry_run)
            self._emit(report, result)

            if result.outcome != "failed":
                continue
            record = result.record
            if step.fatality == "abort":
                report.aborted_by = step.name
                logger.error("Fatal step %s failed; aborting run", step.name)
                self._mark_pending(report, steps[index + 1:], f"not run: aborted after {step.name}")
                break
            report.warnings.append(f"{step.name}: {record.error_kind}: {record.error}")

        report.duration_ms = int((time.monotonic() - start) * 1000)

        if self._ledger is not None and not dry_run:
            try:
                self._ledger.finish_run(report.exit_code)
            except OSError as e:
                logger.error("Cannot persist ledger %s: %s", self._ledger.path, e)
                report.warnings.append(f"ledger not saved: {e}")

        logger.info(
            "Run %s finished: %s (exit %d)", report.run_id, report.status, report.exit_code
        )
        return report

    # ── Per-step state machine ──────────────────────────────────

    def _run_step(self, step: Step, dry_run: bool) -> StepResult:
        start = time.monotonic()
        try:
            return self._attempt(step, dry_run, start)
        except Exception as e:
            logger.debug("Unexpected error in step %s", step.name, exc_info=True)
            unexpected = ProvisionError(
                str(e) or type(e).__name__,
                hint="unexpected error; re-run with --debug for the traceback",
            )
            unexpected.kind = type(e).__name__
            return self._fail(step, unexpected, start, dry_run)

    def _attempt(self, step: Step, dry_run: bool, start: float) -> StepResult:
        try:
            present = evaluate(step.presence, self._ctx, self._tmux)
        except ProvisionError as e:
            return self._fail(step, e, start, dry_run)

        if present:
            record = RunRecord.skip(
                step.name,
                version=installed_version(step, self._ctx),
                phase=step.phase,
                duration_ms=self._elapsed(start),
            )
            return self._record(step, record, "already present", dry_run)

        if dry_run:
            return StepResult(
                step=step.name,
                phase=step.phase,
                outcome="pending",
                fatality=step.fatality,
                detail=f"would install ({step.install.mode})",
            )

        logger.info("Installing %s (%s)", step.name, step.label)
        try:
            self._apply(step)
            # "never" steps are convergent writers; their predicate cannot confirm them.
            if step.presence.kind != "never" and not evaluate(step.presence, self._ctx, self._tmux):
                raise InstallError(
                    f"presence check still false after install ({step.presence.describe()})",
                    hint="the installer reported success but its effect is missing; "
                    "check the step's presence predicate and install action",
                )
        except ProvisionError as e:
            return self._fail(step, e, start, dry_run)

        record = RunRecord.success(
            step.name,
            version=installed_version(step, self._ctx),
            phase=step.phase,
            duration_ms=self._elapsed(start),
        )
        return self._record(step, record, "installed", dry_run)

    def _apply(self, step: Step) -> None:
        """Fetch (when declared) and install inside one scratch dir."""
        with ExitStack() as stack:
            try:
                scratch = stack.enter_context(
                    self._fetcher.scratch_dir(prefix=f"devbox-{step.name}-")
                )
            except OSError as e:
                raise InstallError(
                    f"cannot create scratch dir under {self._ctx.scratch_root}: {e}",
                    hint="check that the scratch root is a writable directory",
                ) from e
            artifact = None
            if step.fetch is not None:
                url = self._ctx.expand(step.fetch.url)
                dest = scratch / _artifact_name(url)
                if step.fetch.digest:
                    artifact = self._fetcher.fetch_verified(url, dest, step.fetch.digest)
                else:
                    artifact = self._fetcher.fetch(url, dest)
            self._executor.install(step, artifact=artifact, scratch=scratch)

    def _fail(self, step: Step, error: ProvisionError, start: float, dry_run: bool) -> StepResult:
        logger.error("✗ %s — %s", step.name, error)
        logger.error("  hint: %s", error.hint)
        record = RunRecord.failure(
            step.name,
            error.kind,
            error.message,
            hint=error.hint,
            phase=step.phase,
            duration_ms=self._elapsed(start),
        )
        return self._record(step, record, error.message, dry_run)

    def _record(self, step: Step, record: RunRecord, detail: str, dry_run: bool) -> StepResult:
        if self._ledger is not None and not dry_run:
            try:
                self._ledger.record(record)
            except OSError as e:
                logger.error("Cannot persist ledger %s: %s", self._ledger.path, e)
        return StepResult(
            step=step.name,
            phase=step.phase,
            outcome=record.outcome,
            fatality=step.fatality,
            record=record,
            detail=detail,
        )

    def _mark_pending(self, report: RunReport, steps: list[Step], detail: str) -> None:
        for step in steps:
            self._emit(
                report,
                StepResult(
                    step=step.name,
                    phase=step.phase,
                    outcome="pending",
                    fatality=step.fatality,
                    detail=detail,
                ),
            )

    def _emit(self, report: RunReport, result: StepResult) -> None:
        report.results.append(result)
        logger.info("%s %s → %s", _MARKERS.get(result.outcome, "?"), result.step, result.outcome)
        if self._on_result is not None:
            self._on_result(result)

    @staticmethod
    def _elapsed(start: float) -> int:
        return int((time.monotonic() - start) * 1000)


def _artifact_name(url: str) -> str:
    """Local file name for a downloaded artifact."""
    name = PurePosixPath(urlparse(url).path).name
    if not name or name.startswith("."):
        return "artifact"
    return name


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"
