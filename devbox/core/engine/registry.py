"""
Step registry — the ordered, validated catalog a run works from.

Declaration order is the execution order. The registry enforces the
two catalog-wide rules a single step can't check on its own: names
are unique, and phase numbers never go down.
"""

from __future__ import annotations

import logging
from typing import Iterator

from devbox.core.errors import CatalogError, DuplicateNameError
from devbox.core.models.step import Step

logger = logging.getLogger(__name__)


class StepRegistry:
    """Ordered collection of steps, closed before a run starts."""

    def __init__(self, steps: list[Step] | None = None):
        self._steps: list[Step] = []
        self._by_name: dict[str, Step] = {}
        self._closed = False
        for step in steps or []:
            self.register_step(step)

    def register_step(self, step: Step) -> None:
        """Append a step.

        Raises:
            DuplicateNameError: A step with this name is already registered.
            CatalogError: The phase is lower than the previous step's,
                or the registry is closed.
        """
        if self._closed:
            raise CatalogError(f"Registry is closed; cannot register '{step.name}'")
        if step.name in self._by_name:
            raise DuplicateNameError(
                f"Duplicate step name '{step.name}'",
                data={"step": step.name},
            )
        if self._steps and step.phase < self._steps[-1].phase:
            prev = self._steps[-1]
            raise CatalogError(
                f"Step '{step.name}' (phase {step.phase}) follows "
                f"'{prev.name}' (phase {prev.phase}); phases must not decrease",
                hint="reorder the catalog so phases ascend",
                data={"step": step.name, "phase": step.phase, "previous_phase": prev.phase},
            )
        self._steps.append(step)
        self._by_name[step.name] = step
        logger.debug("Registered step %s (phase %d)", step.name, step.phase)

    def close(self) -> StepRegistry:
        """End registration. Returns self for chaining."""
        self._closed = True
        return self

    @property
    def closed(self) -> bool:
        return self._closed

    def all_steps(self) -> list[Step]:
        """Steps in declaration order."""
        return list(self._steps)

    def get(self, name: str) -> Step | None:
        return self._by_name.get(name)

    def names(self) -> list[str]:
        return [s.name for s in self._steps]

    def phases(self) -> list[int]:
        """Distinct phase numbers, ascending."""
        return sorted({s.phase for s in self._steps})

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name
