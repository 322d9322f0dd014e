"""Error taxonomy for the evaluation coordinator."""

from __future__ import annotations

from typing import Any, Optional

from .constants import StepStatus


class CoordinatorError(Exception):
    """Base class for all coordinator errors."""


class EventValidationError(CoordinatorError, ValueError):
    """Inbound event payload is missing a field or has an invalid value."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"Validation error: {field} {message}")


class DuplicateWorkflowError(CoordinatorError):
    """An active workflow already exists for the journey."""

    def __init__(self, journey_id: str) -> None:
        self.journey_id = journey_id
        super().__init__(f"Active workflow already exists for journey {journey_id}")


class ConstraintViolationError(CoordinatorError):
    """A database uniqueness constraint rejected a write."""


class TransactionError(CoordinatorError):
    """A transactional store operation failed and was rolled back.

    The original database error is available as ``__cause__``.
    """


class DecisionServiceError(CoordinatorError):
    """Base class for classified decision service failures."""

    step_status: StepStatus = StepStatus.FAILED
    error_type: str = "FAILED"

    def details(self) -> dict[str, Any]:
        """Structured error details recorded on the failed step."""
        return {"message": str(self)}


class DecisionTimeoutError(DecisionServiceError):
    """The decision service did not answer within the timeout."""

    step_status = StepStatus.TIMEOUT
    error_type = "TIMEOUT"

    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__("TIMEOUT")

    def details(self) -> dict[str, Any]:
        return {"message": "TIMEOUT", "timeout_ms": self.timeout_ms}


class DecisionHttpError(DecisionServiceError):
    """The decision service answered with a 4xx/5xx status."""

    error_type = "HTTP_ERROR"

    def __init__(self, status_code: int, body: Any = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP_ERROR_{status_code}")

    def details(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "status_code": self.status_code,
            "body": self.body,
        }


class DecisionNetworkError(DecisionServiceError):
    """No response was received (connection refused, DNS failure, ...)."""

    error_type = "NETWORK_ERROR"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        self.code = code
        super().__init__(message)

    def details(self) -> dict[str, Any]:
        details: dict[str, Any] = {"message": str(self)}
        if self.code:
            details["code"] = self.code
        return details
