"""Data models for persisted workflow state."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from ..constants import ACTIVE_STATUSES, StepStatus, StepType, WorkflowStatus


def _decode_json(value: Any) -> Any:
    # JSON columns come back as text from both backends
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class Workflow(BaseModel):
    """One evaluation workflow for a journey."""

    id: str
    journey_id: str
    correlation_id: str
    status: WorkflowStatus = WorkflowStatus.INITIATED
    decision_result: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("decision_result", mode="before")
    @classmethod
    def decode_json_columns(cls, value: Any) -> Any:
        return _decode_json(value)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class Step(BaseModel):
    """Record of one workflow phase."""

    id: str
    workflow_id: str
    step_type: StepType
    status: StepStatus = StepStatus.PENDING
    payload: dict[str, Any] = Field(default_factory=dict)
    error_details: Optional[dict[str, Any]] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("payload", "error_details", mode="before")
    @classmethod
    def decode_json_columns(cls, value: Any) -> Any:
        return _decode_json(value)


class OutboxEvent(BaseModel):
    """Event row waiting for the relay to publish it."""

    id: str
    aggregate_id: str
    aggregate_type: str
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    correlation_id: str
    published: bool = False
    created_at: Optional[datetime] = None
    published_at: Optional[datetime] = None

    @field_validator("payload", mode="before")
    @classmethod
    def decode_json_columns(cls, value: Any) -> Any:
        return _decode_json(value)
