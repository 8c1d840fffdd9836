"""
Minimal saga bookkeeping for provisioning.

Why:
    Identity store and relational store share no transaction. Each completed
    forward step registers its undo action here; on a later failure the
    orchestrator calls `compensate()` which runs the undo actions in reverse
    order.

Behavior:
    - Compensation is best-effort: a failing undo is logged and recorded as
      `CompensationFailed`; remaining undo actions still run.
    - Nothing is retried and nothing is persisted (request-scoped only).
"""
from __future__ import annotations

from typing import Callable, List, Tuple
import logging

from .errors import CompensationFailed


logger = logging.getLogger("campus.provisioning")


class Saga:
    def __init__(self, name: str) -> None:
        self.name = name
        self._undo: List[Tuple[str, Callable[[], None]]] = []

    def record(self, step: str, undo: Callable[[], None]) -> None:
        """Register the undo action for a step that has just succeeded."""
        self._undo.append((step, undo))

    @property
    def completed_steps(self) -> List[str]:
        return [step for step, _ in self._undo]

    def compensate(self) -> List[CompensationFailed]:
        failures: List[CompensationFailed] = []
        while self._undo:
            step, undo = self._undo.pop()
            try:
                undo()
                logger.info("provisioning.compensated saga=%s step=%s", self.name, step)
            except Exception as exc:
                failure = CompensationFailed(saga=self.name, step=step, reason=f"{exc.__class__.__name__}: {exc}")
                failures.append(failure)
                logger.error(
                    "provisioning.compensation_failed saga=%s step=%s reason=%s",
                    self.name,
                    step,
                    exc.__class__.__name__,
                )
        return failures


__all__ = ["Saga"]
