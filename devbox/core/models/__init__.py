"""
Domain models — Pydantic types for provisioning.

All models are re-exported here for convenient access:

    from devbox.core.models import Step, PresenceCheck, RunRecord, Ledger
"""

from devbox.core.models.ledger import Ledger, RunRecord
from devbox.core.models.step import (
    FetchSpec,
    InstallSpec,
    PresenceCheck,
    Step,
    TmuxWindow,
)

__all__ = [
    # step.py
    "FetchSpec",
    "InstallSpec",
    # ledger.py
    "Ledger",
    "PresenceCheck",
    "RunRecord",
    "Step",
    "TmuxWindow",
]
