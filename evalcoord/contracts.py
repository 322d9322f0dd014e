"""Message contracts for inbound events and the decision service."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator
from pydantic import ValidationError as PydanticValidationError

from .constants import DEFAULT_CATEGORY_CODE
from .errors import EventValidationError

NonBlankStr = Annotated[str, Field(min_length=1, pattern=r"\S")]


def _first_error(exc: PydanticValidationError) -> EventValidationError:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error.get("loc", ())) or "payload"
    if error.get("type") == "missing":
        return EventValidationError(field, "is required")
    return EventValidationError(field, error.get("msg", "is invalid").lower())


class InboundEvent(BaseModel):
    """Fields shared by both inbound event types."""

    model_config = ConfigDict(extra="ignore")

    subject_id: NonBlankStr
    owner_id: NonBlankStr
    correlation_id: Optional[str] = None

    @classmethod
    def parse(cls, payload: Any) -> "InboundEvent":
        """Validate a decoded payload, raising :class:`EventValidationError`."""
        if not isinstance(payload, dict):
            raise EventValidationError("payload", "must be a JSON object")
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as exc:
            raise _first_error(exc) from exc


class DelayDetectedEvent(InboundEvent):
    """``delay.detected``: a delay was found and needs a decision."""

    delay_minutes: int
    is_cancellation: StrictBool
    category_code: Optional[str] = None

    @field_validator("delay_minutes", mode="before")
    @classmethod
    def require_number(cls, value: Any) -> Any:
        # whole floats such as 30.0 are accepted, 30.5 fails int validation
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("must be a number")
        return value


class DelayNotDetectedEvent(InboundEvent):
    """``delay.not-detected``: no delay, the outcome is already known."""

    reason: Literal["belowThreshold", "sourceUnavailable"]


class DecisionRequest(BaseModel):
    """Request body for ``POST {base_url}/evaluate``."""

    subject_id: str
    category_code: str = DEFAULT_CATEGORY_CODE
    delay_minutes: int = 0
    fare_amount: int = 0


class DecisionResult(BaseModel):
    """Decision service response. Unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    eligible: bool
    scheme: Optional[str] = None
    compensation_amount: float = 0
    reasons: list[str] = Field(default_factory=list)


class EvaluationCompletedPayload(BaseModel):
    """Payload of the ``evaluation.completed`` outbox event."""

    subject_id: str
    owner_id: Optional[str] = None
    eligible: bool
    scheme: Optional[str] = None
    compensation_amount: float = 0
    delay_minutes: int = 0
    correlation_id: str
