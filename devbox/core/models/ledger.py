"""
RunRecord and Ledger models — the durable outcome contract.

The runner turns every step into exactly one RunRecord. Records are
keyed by step name in the Ledger, so a newer record supersedes the
older one: the ledger shows the latest known status, not history
(history lives in the append-only audit log).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

Outcome = Literal["succeeded", "skipped", "failed"]

LEDGER_SCHEMA_VERSION = 1


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class RunRecord(BaseModel):
    """Evidence of what happened to one step in one run.

    ``skipped`` means the presence predicate already held, so no
    install action was taken.
    """

    step: str
    outcome: Outcome
    timestamp: str = Field(default_factory=_now_iso)
    version: str | None = None
    phase: int = 0
    duration_ms: int = 0
    error_kind: str | None = None
    error: str | None = None
    hint: str | None = None

    @property
    def ok(self) -> bool:
        """Whether the step ended in a satisfied state."""
        return self.outcome in ("succeeded", "skipped")

    @property
    def failed(self) -> bool:
        return self.outcome == "failed"

    @classmethod
    def success(cls, step: str, version: str | None = None, **kwargs: Any) -> RunRecord:
        """Create a succeeded record."""
        return cls(step=step, outcome="succeeded", version=version, **kwargs)

    @classmethod
    def skip(cls, step: str, version: str | None = None, **kwargs: Any) -> RunRecord:
        """Create an already-present record."""
        return cls(step=step, outcome="skipped", version=version, **kwargs)

    @classmethod
    def failure(
        cls,
        step: str,
        error_kind: str,
        error: str,
        hint: str | None = None,
        **kwargs: Any,
    ) -> RunRecord:
        """Create a failed record."""
        return cls(
            step=step,
            outcome="failed",
            error_kind=error_kind,
            error=error,
            hint=hint,
            **kwargs,
        )


class Ledger(BaseModel):
    """Root ledger document — serialized to ``ledger.json``.

    An optimization and audit trail, never the source of truth for
    presence: delete it and the next run rebuilds it from live checks.
    """

    schema_version: int = LEDGER_SCHEMA_VERSION

    target_user: str = ""

    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)
    last_run_at: str | None = None
    last_run_id: str = ""
    last_exit_code: int | None = None

    records: dict[str, RunRecord] = Field(default_factory=dict)

    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def put(self, record: RunRecord) -> None:
        """Store a record, replacing any earlier one for the same step."""
        self.records[record.step] = record

    def get(self, step: str) -> RunRecord | None:
        return self.records.get(step)

    def outcomes(self) -> dict[str, str]:
        """``{step: outcome}`` view, convenient for comparisons."""
        return {name: rec.outcome for name, rec in self.records.items()}
