"""Shared constants for the evaluation coordinator."""

from __future__ import annotations

from enum import Enum


class WorkflowStatus(str, Enum):
    INITIATED = "INITIATED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    FAILED = "FAILED"


class StepType(str, Enum):
    DECISION_CHECK = "DECISION_CHECK"
    FOLLOW_ON_ACTION = "FOLLOW_ON_ACTION"


class StepStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"


# A new workflow for a journey is refused while one of these exists.
ACTIVE_STATUSES = (
    WorkflowStatus.INITIATED,
    WorkflowStatus.IN_PROGRESS,
    WorkflowStatus.PARTIAL_SUCCESS,
)

AGGREGATE_TYPE = "EVALUATION_WORKFLOW"
EVALUATION_COMPLETED_EVENT = "evaluation.completed"

DELAY_DETECTED_TOPIC = "delay.detected"
DELAY_NOT_DETECTED_TOPIC = "delay.not-detected"

DEFAULT_DECISION_TIMEOUT_SECONDS = 30.0
DEFAULT_CATEGORY_CODE = "UNKNOWN"

SCHEMA_NAME = "evaluation_coordinator"
