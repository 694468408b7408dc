from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_schedule.schemas import StepOutcome

logger = logging.getLogger(__name__)


class StepIncomplete(Exception):
    """Raised by a step that wrote some rows but not all of them."""

    def __init__(self, message: str, count: int = 0) -> None:
        super().__init__(message)
        self.count = count


@dataclass
class SagaStep:
    name: str
    action: Callable[[], int]
    required: bool = False


class Saga:
    """Ordered multi-store write where every step commits on its own.

    A failed step is rolled back, logged and reported; earlier steps stay
    committed. Each action must be safe to re-run so a caller can retry the
    whole saga after a partial failure. When a ``required`` step fails the
    remaining steps are reported as skipped.
    """

    def __init__(self, db: Session, name: str) -> None:
        self.db = db
        self.name = name
        self.steps: list[SagaStep] = []

    def step(self, name: str, action: Callable[[], int], required: bool = False) -> Saga:
        self.steps.append(SagaStep(name, action, required))
        return self

    def run(self) -> list[StepOutcome]:
        outcomes: list[StepOutcome] = []
        halted_by: str | None = None
        for step in self.steps:
            if halted_by is not None:
                outcomes.append(StepOutcome(name=step.name, ok=False, error=f"skipped after {halted_by} failed"))
                continue
            try:
                count = step.action()
                self.db.commit()
            except StepIncomplete as exc:
                self.db.rollback()
                logger.warning("%s: step %s incomplete: %s", self.name, step.name, exc)
                outcomes.append(StepOutcome(name=step.name, ok=False, count=exc.count, error=str(exc)))
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("%s: step %s failed", self.name, step.name)
                outcomes.append(StepOutcome(name=step.name, ok=False, error=str(exc)))
            else:
                outcomes.append(StepOutcome(name=step.name, ok=True, count=count))
                continue
            if step.required:
                halted_by = step.name
        return outcomes
