"""
Catalog loader — reads catalog.yml into a closed StepRegistry.

Reads YAML, validates every step against the pydantic models, and
registers the steps in declaration order. Any problem is a
``CatalogError`` raised before a single step runs.

Catalog format::

    version: 1
    steps:
      - name: ripgrep
        phase: 2
        presence: {kind: binary, name: rg}
        install: {mode: packages, packages: [ripgrep]}
        needs_sudo: true
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from devbox.core.engine.registry import StepRegistry
from devbox.core.errors import CatalogError
from devbox.core.models.step import Step
from devbox.data import default_catalog_path

logger = logging.getLogger(__name__)

CATALOG_ENV_VAR = "DEVBOX_CATALOG"


def resolve_catalog_path(explicit: str | Path | None = None) -> Path:
    """Catalog path: explicit option > ``DEVBOX_CATALOG`` > bundled default."""
    if explicit:
        return Path(explicit).expanduser()
    env = os.environ.get(CATALOG_ENV_VAR)
    if env:
        return Path(env).expanduser()
    return default_catalog_path()


def _format_validation_error(index: int, name: str, error: ValidationError) -> str:
    lines = [f"step #{index + 1} ({name}):"]
    for err in error.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "(step)"
        lines.append(f"  {loc}: {err['msg']}")
    return "\n".join(lines)


def parse_catalog(data: object, source: str = "<catalog>") -> StepRegistry:
    """Validate an already-parsed catalog document.

    Raises:
        CatalogError: The document is not a valid catalog.
    """
    if not isinstance(data, dict):
        raise CatalogError(f"Expected a YAML mapping in {source}, got {type(data).__name__}")

    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise CatalogError(f"{source} must contain a non-empty 'steps' list")

    problems: list[str] = []
    steps: list[Step] = []
    for index, raw in enumerate(raw_steps):
        name = raw.get("name", "?") if isinstance(raw, dict) else "?"
        try:
            steps.append(Step.model_validate(raw))
        except ValidationError as e:
            problems.append(_format_validation_error(index, name, e))

    if problems:
        raise CatalogError(
            f"Invalid catalog {source}:\n" + "\n".join(problems),
            data={"source": source, "errors": len(problems)},
        )

    registry = StepRegistry()
    for step in steps:
        registry.register_step(step)
    return registry.close()


def load_catalog(path: Path | None = None) -> StepRegistry:
    """Load and validate a catalog file.

    Args:
        path: Catalog path. Resolved with ``resolve_catalog_path`` if None.

    Returns:
        A closed StepRegistry in declaration order.

    Raises:
        CatalogError: The file is missing, unreadable, or invalid.
    """
    if path is None:
        path = resolve_catalog_path()

    if not path.is_file():
        raise CatalogError(
            f"Catalog file not found: {path}",
            hint=f"pass --catalog or set {CATALOG_ENV_VAR}",
        )

    logger.debug("Loading catalog from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise CatalogError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise CatalogError(f"Invalid YAML in {path}: {e}") from e

    registry = parse_catalog(data, str(path))
    logger.info("Loaded catalog %s with %d steps", path, len(registry))
    return registry
