"""
Status use case — recorded outcomes joined with live presence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from devbox.adapters.terminal.tmux import TmuxClient
from devbox.core.config.catalog_loader import load_catalog, resolve_catalog_path
from devbox.core.context import SessionContext
from devbox.core.errors import CatalogError
from devbox.core.models.ledger import Ledger
from devbox.core.persistence.audit import DEFAULT_AUDIT_FILE, AuditEntry, AuditWriter
from devbox.core.persistence.ledger import load_ledger, resolve_ledger_path
from devbox.core.services.detection.presence import evaluate
from devbox.core.services.install.subprocess_runner import CommandRunner


@dataclass
class StepStatus:
    """One catalog step as it stands right now."""

    name: str
    phase: int
    present: bool
    recorded: str | None = None
    recorded_at: str | None = None
    version: str | None = None
    error_kind: str | None = None

    @property
    def drifted(self) -> bool:
        """Recorded as in place, but no longer present."""
        return self.recorded in ("succeeded", "skipped") and not self.present


@dataclass
class StatusResult:
    """Aggregated provisioning status."""

    catalog_path: Path | None = None
    ledger_path: Path | None = None
    ledger: Ledger | None = None
    steps: list[StepStatus] = field(default_factory=list)
    last_run: AuditEntry | None = None
    error: str | None = None

    @property
    def present_count(self) -> int:
        return sum(1 for s in self.steps if s.present)

    @property
    def missing(self) -> list[str]:
        return [s.name for s in self.steps if not s.present]

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["catalog"] = str(self.catalog_path)
        result["ledger"] = str(self.ledger_path)
        if self.ledger:
            result["target_user"] = self.ledger.target_user
            result["last_run_id"] = self.ledger.last_run_id
            result["last_run_at"] = self.ledger.last_run_at
            result["last_exit_code"] = self.ledger.last_exit_code
        result["present"] = self.present_count
        result["total"] = len(self.steps)
        result["steps"] = [
            {
                "name": s.name,
                "phase": s.phase,
                "present": s.present,
                "recorded": s.recorded,
                "recorded_at": s.recorded_at,
                "version": s.version,
                "error_kind": s.error_kind,
                "drifted": s.drifted,
            }
            for s in self.steps
        ]
        if self.last_run:
            result["last_run"] = self.last_run.model_dump(mode="json")
        return result


def get_status(
    catalog_path: Path | None = None,
    ledger_path: Path | None = None,
    ctx: SessionContext | None = None,
) -> StatusResult:
    """Evaluate every step's presence and join it with the ledger.

    Read-only: installs nothing and never writes the ledger.
    """
    result = StatusResult()
    ctx = ctx or SessionContext.from_environment()

    result.catalog_path = catalog_path or resolve_catalog_path()
    try:
        registry = load_catalog(result.catalog_path)
    except CatalogError as e:
        result.error = str(e)
        return result

    result.ledger_path = resolve_ledger_path(ledger_path, ctx.home)
    ledger = load_ledger(result.ledger_path)
    result.ledger = ledger

    tmux = TmuxClient(CommandRunner(ctx))
    for step in registry:
        record = ledger.get(step.name)
        result.steps.append(
            StepStatus(
                name=step.name,
                phase=step.phase,
                present=evaluate(step.presence, ctx, tmux),
                recorded=record.outcome if record else None,
                recorded_at=record.timestamp if record else None,
                version=record.version if record else None,
                error_kind=record.error_kind if record else None,
            )
        )

    recent = AuditWriter(result.ledger_path.parent / DEFAULT_AUDIT_FILE).read_recent(1)
    result.last_run = recent[-1] if recent else None
    return result
