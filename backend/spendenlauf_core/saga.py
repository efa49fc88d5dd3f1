from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List


logger = logging.getLogger(__name__)


@dataclass
class Compensation:
    label: str
    action: Callable[[], None]


@dataclass
class Saga:
    """Undo log for a multi-request registration.

    Each completed write registers how to undo it. ``compensate`` runs the
    undo actions (newest first unless ``reverse`` is off), keeps going past
    failing ones and returns their labels so the caller can report a
    partially rolled back registration.
    """

    name: str
    reverse: bool = True
    compensations: List[Compensation] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)

    def on_failure(self, label: str, action: Callable[[], None]) -> None:
        self.compensations.append(Compensation(label, action))

    def compensate(self) -> List[str]:
        pending = list(reversed(self.compensations)) if self.reverse else list(self.compensations)
        self.compensations = []
        for step in pending:
            try:
                step.action()
            except Exception as exc:
                logger.error("%s: compensation '%s' failed: %s", self.name, step.label, exc)
                self.failures.append(f"{step.label}: {exc}")
            else:
                logger.info("%s: compensated '%s'", self.name, step.label)
        if self.failures:
            logger.error(
                "%s left partially applied; manual cleanup needed for: %s",
                self.name,
                "; ".join(self.failures),
            )
        return list(self.failures)
