"""
Provision use case — run the catalog against this machine.

The full vertical slice from ``devbox run`` to an audited ledger:
build the session context, load the catalog, run every selected step,
persist the ledger, and append the run to the audit log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from devbox.core.config.catalog_loader import load_catalog, resolve_catalog_path
from devbox.core.context import SessionContext
from devbox.core.engine.runner import (
    EXIT_FATAL,
    CancellationToken,
    Runner,
    RunReport,
    StepResult,
)
from devbox.core.errors import CatalogError
from devbox.core.persistence.audit import DEFAULT_AUDIT_FILE, AuditEntry, AuditWriter
from devbox.core.persistence.ledger import LedgerStore, resolve_ledger_path
from devbox.core.services.fetch import Fetcher
from devbox.core.services.install import InstallerExecutor

logger = logging.getLogger(__name__)


@dataclass
class ProvisionResult:
    """Result of a provisioning run."""

    report: RunReport | None = None
    catalog_path: Path | None = None
    ledger_path: Path | None = None
    target_user: str = ""
    error: str | None = None
    hint: str | None = None
    privileged_calls: list[list[str]] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        if self.error or self.report is None:
            return EXIT_FATAL
        return self.report.exit_code

    def to_dict(self) -> dict:
        result: dict = {
            "catalog": str(self.catalog_path) if self.catalog_path else None,
            "ledger": str(self.ledger_path) if self.ledger_path else None,
            "target_user": self.target_user,
            "exit_code": self.exit_code,
        }
        if self.error:
            result["error"] = self.error
            result["hint"] = self.hint
            return result
        if self.report:
            result["report"] = self.report.to_dict()
        result["privileged_calls"] = [" ".join(c) for c in self.privileged_calls]
        return result


def provision(
    catalog_path: Path | None = None,
    ledger_path: Path | None = None,
    ctx: SessionContext | None = None,
    *,
    dry_run: bool = False,
    only: list[str] | None = None,
    phases: list[int] | None = None,
    executor: InstallerExecutor | None = None,
    fetcher: Fetcher | None = None,
    token: CancellationToken | None = None,
    on_result: Callable[[StepResult], None] | None = None,
    handle_signals: bool = True,
) -> ProvisionResult:
    """Provision the machine from a catalog.

    Args:
        catalog_path: Catalog file (default: ``DEVBOX_CATALOG`` or bundled).
        ledger_path: Ledger file (default: ``DEVBOX_LEDGER`` or ``~/.devbox/ledger.json``).
        ctx: Session context (default: built from the environment).
        dry_run: Evaluate presence only; install nothing, write nothing.
        only: Restrict the run to these step names.
        phases: Restrict the run to these phases.
        executor: Pre-configured installer executor (tests inject mocks).
        fetcher: Pre-configured fetcher.
        token: Cancellation token (default: a fresh one).
        on_result: Called with every step result as soon as it is known.
        handle_signals: Install SIGINT/SIGTERM handlers for the run.

    Returns:
        ProvisionResult; ``exit_code`` is the process exit status.
    """
    result = ProvisionResult()
    ctx = ctx or SessionContext.from_environment()
    result.target_user = ctx.target_user

    # ── Load catalog (nothing runs, nothing is written on failure) ─
    result.catalog_path = catalog_path or resolve_catalog_path()
    try:
        registry = load_catalog(result.catalog_path)
    except CatalogError as e:
        result.error = str(e)
        result.hint = e.hint
        return result

    result.ledger_path = resolve_ledger_path(ledger_path, ctx.home)
    store = None if dry_run else LedgerStore(result.ledger_path)

    executor = executor or InstallerExecutor(ctx)
    token = token or CancellationToken()
    runner = Runner(
        registry,
        ctx,
        ledger=store,
        fetcher=fetcher,
        executor=executor,
        token=token,
        on_result=on_result,
    )

    # ── Run ──────────────────────────────────────────────────────
    try:
        if handle_signals:
            with token.handle_signals():
                report = runner.run(dry_run=dry_run, only=only, phases=phases)
        else:
            report = runner.run(dry_run=dry_run, only=only, phases=phases)
    except CatalogError as e:
        result.error = str(e)
        result.hint = e.hint
        return result

    result.report = report
    result.privileged_calls = list(executor.runner.privileged_calls)

    # ── Audit ────────────────────────────────────────────────────
    if not dry_run:
        audit = AuditWriter(result.ledger_path.parent / DEFAULT_AUDIT_FILE)
        audit.write(
            AuditEntry(
                run_id=report.run_id,
                target_user=ctx.target_user,
                catalog=str(result.catalog_path),
                status=report.status,
                exit_code=report.exit_code,
                steps_total=report.total,
                steps_succeeded=report.succeeded,
                steps_skipped=report.skipped,
                steps_failed=report.failed,
                duration_ms=report.duration_ms,
                failed_steps=report.failed_steps,
                context={
                    "arch": ctx.arch,
                    "is_root": ctx.is_root,
                    "only": only or [],
                    "phases": phases or [],
                },
            )
        )

    return result
