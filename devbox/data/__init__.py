"""
Bundled static data — the default step catalog.

The catalog ships inside the package so ``devbox run`` works without
any configuration::

    from devbox.data import default_catalog_path

    path = default_catalog_path()   # .../devbox/data/catalog.yml
"""

from __future__ import annotations

from pathlib import Path

_DATA_DIR = Path(__file__).parent

DEFAULT_CATALOG_FILE = "catalog.yml"


def default_catalog_path() -> Path:
    """Path to the catalog bundled with the package."""
    return _DATA_DIR / DEFAULT_CATALOG_FILE
