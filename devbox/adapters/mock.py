"""
Mock installer — universal test double for every install mode.

Used in mock mode to simulate installs without touching the system.
Configurable to succeed, fail, or run a side effect per step, so tests
can make a presence predicate flip after an "install".
"""

from __future__ import annotations

from typing import Callable

from devbox.adapters.base import Installer, InstallOutcome, InstallRequest
from devbox.core.errors import InstallError, ProvisionError


class MockInstaller(Installer):
    """Universal mock installer for testing.

    By default, succeeds for everything. Failures and side effects
    are configured per step name.
    """

    def __init__(
        self,
        installer_name: str = "mock",
        available: bool = True,
        default_output: str = "[mock] installed",
        on_install: Callable[[InstallRequest], None] | None = None,
    ):
        self._name = installer_name
        self._available = available
        self._default_output = default_output
        self._on_install = on_install
        self._failures: dict[str, ProvisionError] = {}
        self._effects: dict[str, Callable[[InstallRequest], None]] = {}
        self._call_log: list[InstallRequest] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[InstallRequest]:
        """All requests this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def installed(self) -> list[str]:
        """Step names in the order they were installed."""
        return [r.step.name for r in self._call_log]

    def is_available(self) -> bool:
        return self._available

    def set_failure(
        self,
        step_name: str,
        error: str | ProvisionError = "Mock failure",
    ) -> None:
        """Configure a specific step to fail."""
        if isinstance(error, str):
            error = InstallError(error)
        self._failures[step_name] = error

    def set_effect(self, step_name: str, effect: Callable[[InstallRequest], None]) -> None:
        """Run ``effect`` when ``step_name`` is installed (e.g. create a file)."""
        self._effects[step_name] = effect

    def install(self, request: InstallRequest) -> InstallOutcome:
        self._call_log.append(request)
        name = request.step.name

        if name in self._failures:
            raise self._failures[name]

        effect = self._effects.get(name, self._on_install)
        if effect is not None:
            effect(request)

        return self.outcome(request, self._default_output, metadata={"mock": True})

    def reset(self) -> None:
        """Clear call log, failures, and effects."""
        self._call_log.clear()
        self._failures.clear()
        self._effects.clear()
