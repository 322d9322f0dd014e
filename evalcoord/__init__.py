"""Evaluation coordinator: idempotent evaluation workflows with a transactional outbox."""

from .contracts import DecisionRequest, DecisionResult, DelayDetectedEvent, DelayNotDetectedEvent
from .gateway import DecisionGateway
from .intake import DelayDetectedHandler, DelayNotDetectedHandler
from .orchestrator import WorkflowOrchestrator
from .persistence import WorkflowStore, get_database
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "DecisionGateway",
    "DecisionRequest",
    "DecisionResult",
    "DelayDetectedEvent",
    "DelayNotDetectedEvent",
    "DelayDetectedHandler",
    "DelayNotDetectedHandler",
    "WorkflowOrchestrator",
    "WorkflowStore",
    "get_database",
    "get_transport",
]
