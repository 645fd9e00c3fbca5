"""
Error taxonomy for provisioning.

Every error carries a ``kind`` (the name shown to the operator) and a
``hint`` (what to do about it). Step-level errors (fetch, integrity,
install, elevation) are caught by the runner and turned into failed
run records. Catalog errors abort before any step executes.
"""

from __future__ import annotations

from typing import Any


class ProvisionError(Exception):
    """Base class for all provisioning errors."""

    kind = "ProvisionError"
    default_hint = "re-run to retry"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        data: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.hint = hint or self.default_hint
        self.data = data or {}

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "hint": self.hint,
            "data": self.data,
        }


class CatalogError(ProvisionError):
    """The step catalog is missing, unreadable, or malformed."""

    kind = "CatalogError"
    default_hint = "fix the catalog file and re-run"


class DuplicateNameError(CatalogError):
    """Two steps in the catalog share a name."""

    kind = "DuplicateNameError"
    default_hint = "rename one of the steps so every name is unique"


class FetchError(ProvisionError):
    """Remote artifact could not be retrieved over a secure transport."""

    kind = "FetchError"
    default_hint = "check network connectivity, then re-run to retry"


class IntegrityError(FetchError):
    """Downloaded bytes do not match the expected digest."""

    kind = "IntegrityError"
    default_hint = (
        "the artifact may have been tampered with or updated upstream; "
        "verify the source and update the catalog digest"
    )


class InstallError(ProvisionError):
    """Package manager or installer exited non-zero."""

    kind = "InstallError"
    default_hint = "inspect the output above, fix the cause, then re-run to retry"


class ElevationError(ProvisionError, PermissionError):
    """A step needs superuser rights that are not available."""

    kind = "PermissionError"
    default_hint = "run 'sudo -v' (or run as root) before re-running"
