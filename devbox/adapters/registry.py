"""
Installer registry — central dispatch for install modes.

The registry is the single point of installer management: registration,
lookup, mock mode, and dispatch. The executor never talks to installers
directly — always through the registry.
"""

from __future__ import annotations

import logging
import tarfile
import time
from typing import Any

from devbox.adapters.base import Installer, InstallOutcome, InstallRequest
from devbox.core.errors import InstallError, ProvisionError

logger = logging.getLogger(__name__)


class InstallerRegistry:
    """Central registry and dispatcher for installers.

    Features:
        - Register/unregister installers by mode name
        - Mock mode: route every mode to one mock installer
        - Dispatch an install request to the matching installer
        - Query installer availability
    """

    def __init__(self, mock_installer: Installer | None = None):
        self._installers: dict[str, Installer] = {}
        self._mock: Installer | None = mock_installer

    @property
    def mock_mode(self) -> bool:
        return self._mock is not None

    def set_mock(self, installer: Installer | None) -> None:
        """Route every install through ``installer`` (None disables)."""
        self._mock = installer

    def register(self, installer: Installer) -> None:
        name = installer.name
        if name in self._installers:
            logger.warning("Overwriting existing installer: %s", name)
        self._installers[name] = installer
        logger.debug("Registered installer: %s", name)

    def unregister(self, name: str) -> None:
        self._installers.pop(name, None)

    def get(self, name: str) -> Installer | None:
        return self._installers.get(name)

    def list_installers(self) -> list[str]:
        return list(self._installers.keys())

    def installer_status(self) -> dict[str, dict[str, Any]]:
        """Availability of every registered installer."""
        status = {}
        for name, installer in self._installers.items():
            try:
                available = installer.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "type": installer.__class__.__name__,
            }
        return status

    def install(self, request: InstallRequest) -> InstallOutcome:
        """Dispatch a request to its installer.

        1. Resolve the installer (or mock)
        2. Validate the request
        3. Install and time it

        Raises:
            InstallError: No installer, invalid request, or failed install.
            ElevationError: Propagated from the installer.
        """
        mode = request.step.install.mode
        installer = self._mock or self._installers.get(mode)
        if installer is None:
            raise InstallError(
                f"No installer registered for mode '{mode}'",
                hint="this is a catalog/engine mismatch; report it",
            )

        is_valid, error_msg = installer.validate(request)
        if not is_valid:
            raise InstallError(f"Validation failed: {error_msg}", hint="fix the catalog entry")

        start = time.monotonic()
        try:
            outcome = installer.install(request)
        except ProvisionError:
            raise
        except (OSError, ValueError, tarfile.TarError) as e:
            raise InstallError(f"{mode} install failed: {e}") from e

        outcome.duration_ms = int((time.monotonic() - start) * 1000)
        return outcome
