"""
Catalog check use case — validate catalog.yml and report issues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from devbox.core.config.catalog_loader import load_catalog, resolve_catalog_path
from devbox.core.engine.registry import StepRegistry
from devbox.core.errors import CatalogError


@dataclass
class CatalogCheckResult:
    """Result of catalog validation."""

    valid: bool = False
    catalog_path: Path | None = None
    registry: StepRegistry | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def steps(self) -> list[dict]:
        """Ordered step summary (name, phase, mode, policy)."""
        if self.registry is None:
            return []
        return [
            {
                "name": s.name,
                "phase": s.phase,
                "mode": s.install.mode,
                "fatality": s.fatality,
                "needs_sudo": s.needs_sudo,
                "presence": s.presence.describe(),
                "pinned": bool(s.fetch and s.fetch.digest),
                "description": s.description,
            }
            for s in self.registry
        ]

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "catalog_path": str(self.catalog_path) if self.catalog_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "step_count": len(self.registry) if self.registry else 0,
            "phases": self.registry.phases() if self.registry else [],
            "steps": self.steps(),
        }


def check_catalog(catalog_path: Path | None = None) -> CatalogCheckResult:
    """Validate a catalog and report issues.

    Errors make the catalog unusable. Warnings flag steps that are
    valid but weaker than they could be.
    """
    result = CatalogCheckResult()
    result.catalog_path = catalog_path or resolve_catalog_path()

    try:
        registry = load_catalog(result.catalog_path)
    except CatalogError as e:
        result.errors.append(str(e))
        return result

    result.registry = registry
    result.valid = True

    for step in registry:
        if step.fetch is not None and not step.fetch.digest:
            result.warnings.append(
                f"{step.name}: fetches {step.fetch.url} without a digest"
            )
        if step.presence.kind == "never" and step.install.mode not in ("dotfile", "command"):
            result.warnings.append(
                f"{step.name}: presence 'never' re-runs a {step.install.mode} install every time"
            )

    return result
