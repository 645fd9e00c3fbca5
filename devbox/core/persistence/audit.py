"""
Run audit log — append-only provisioning history.

The ledger keeps only the latest status per step. This log keeps one
NDJSON line per run so "what did the last five runs do" stays
answerable. Entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """A single run summary."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: str = ""
    target_user: str = ""
    catalog: str = ""

    # Results
    status: str = ""               # ok, partial, failed, aborted, cancelled
    exit_code: int = 0
    steps_total: int = 0
    steps_succeeded: int = 0
    steps_skipped: int = 0
    steps_failed: int = 0
    duration_ms: int = 0

    failed_steps: list[str] = Field(default_factory=list)

    context: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    """Append-only audit log writer."""

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append one entry. Write failures are logged, not raised."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Audit entry written: %s (%s)", entry.run_id, entry.status)
        except OSError as e:
            logger.error("Failed to write audit entry: %s", e)

    def read_all(self) -> list[AuditEntry]:
        """All entries, oldest first. Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(AuditEntry.model_validate(json.loads(line)))
                    except (json.JSONDecodeError, ValidationError) as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read audit log: %s", e)

        return entries

    def read_recent(self, n: int = 10) -> list[AuditEntry]:
        return self.read_all()[-n:]
