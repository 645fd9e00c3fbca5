"""
Ledger persistence — atomic read/write for the step-outcome ledger.

The ledger is stored as JSON (default ``~/.devbox/ledger.json``).
Writes are atomic (write to a temp file in the same directory, fsync,
then ``os.replace``) so a crash mid-write leaves either the old file
or the new one, never a torn document.

A missing or corrupt ledger loads as an empty one: the ledger is an
audit trail, not the authority on what is installed.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from devbox.core.models.ledger import Ledger, Outcome, RunRecord

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_DIR = ".devbox"
DEFAULT_LEDGER_FILE = "ledger.json"
LEDGER_ENV_VAR = "DEVBOX_LEDGER"


def default_ledger_path(home: Path) -> Path:
    """Get the default ledger path for a target home directory."""
    return home / DEFAULT_LEDGER_DIR / DEFAULT_LEDGER_FILE


def resolve_ledger_path(explicit: str | Path | None, home: Path) -> Path:
    """Ledger path: explicit option > ``DEVBOX_LEDGER`` > ``<home>/.devbox/ledger.json``."""
    if explicit:
        return Path(explicit).expanduser()
    env = os.environ.get(LEDGER_ENV_VAR)
    if env:
        return Path(env).expanduser()
    return default_ledger_path(home)


def load_ledger(path: Path) -> Ledger:
    """Load the ledger from a JSON file.

    Args:
        path: Path to the ledger JSON file.

    Returns:
        Ledger model. Missing or unreadable files yield a fresh ledger.
    """
    if not path.is_file():
        logger.info("No ledger at %s — starting fresh", path)
        return Ledger()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        ledger = Ledger.model_validate(data)
        logger.debug(
            "Loaded ledger from %s (%d records)", path, len(ledger.records)
        )
        return ledger
    except json.JSONDecodeError as e:
        logger.warning("Corrupt ledger %s: %s — starting fresh", path, e)
        return Ledger()
    except ValidationError as e:
        logger.warning("Ledger %s does not match schema: %s — starting fresh", path, e)
        return Ledger()
    except OSError as e:
        logger.warning("Cannot read ledger %s: %s — starting fresh", path, e)
        return Ledger()


def save_ledger(ledger: Ledger, path: Path) -> None:
    """Save the ledger to a JSON file (atomic write).

    Args:
        ledger: The ledger to save.
        path: Target path for the ledger file.

    Raises:
        OSError: If the file cannot be written. The previous ledger
            file, if any, is left untouched.
    """
    ledger.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(ledger.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".ledger_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
        logger.debug("Ledger saved to %s", path)
    except Exception:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save ledger to %s", path)
        raise


class LedgerStore:
    """The runner's handle on the ledger file.

    Loads once at start, records outcomes in memory and persists
    after every record, so an interrupted run resumes from the last
    completed step.
    """

    def __init__(self, path: Path, *, persist_each: bool = True):
        self._path = path
        self._persist_each = persist_each
        self._ledger = load_ledger(path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    def load_ledger(self) -> dict[str, RunRecord]:
        """``{step_name: RunRecord}`` as last persisted or recorded."""
        return dict(self._ledger.records)

    def record_outcome(
        self,
        step_name: str,
        outcome: Outcome,
        version: str | None = None,
        **fields,
    ) -> RunRecord:
        """Record the outcome of one step, superseding older records."""
        record = RunRecord(step=step_name, outcome=outcome, version=version, **fields)
        self.record(record)
        return record

    def record(self, record: RunRecord) -> None:
        self._ledger.put(record)
        if self._persist_each:
            self.save()

    def begin_run(self, run_id: str, target_user: str) -> None:
        """Stamp run-level metadata at the start of a run."""
        self._ledger.last_run_id = run_id
        self._ledger.last_run_at = datetime.now(UTC).isoformat()
        self._ledger.target_user = target_user

    def finish_run(self, exit_code: int) -> None:
        self._ledger.last_exit_code = exit_code
        self.save()

    def save(self) -> None:
        save_ledger(self._ledger, self._path)
