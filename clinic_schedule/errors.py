from __future__ import annotations

from typing import Any


class ScheduleError(Exception):
    status_code = 400

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.message, **self.extra}


class ValidationError(ScheduleError):
    status_code = 422

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message, field=field)
        self.field = field


class NotFoundError(ScheduleError):
    status_code = 404


class ConflictError(ScheduleError):
    """Rejected before persistence: holiday, PTO overlap, availability or duplicate slot."""

    status_code = 409

    def __init__(self, message: str, violations: list[dict[str, Any]], **extra: Any) -> None:
        super().__init__(message, violations=violations, **extra)
        self.violations = violations


class AcknowledgementRequired(ConflictError):
    def __init__(self, warnings: list[dict[str, Any]]) -> None:
        super().__init__(
            "Provider availability warnings must be acknowledged",
            violations=warnings,
            requires_confirmation=True,
        )


class UnsupportedOperationError(ScheduleError):
    status_code = 409


class InvalidTransitionError(UnsupportedOperationError):
    def __init__(self, action: str, state: str) -> None:
        super().__init__(f"Cannot {action} a change that is {state}", action=action, state=state)
        self.action = action
        self.state = state
