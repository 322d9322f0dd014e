"""Shared behaviour of the inbound event handlers."""

from __future__ import annotations

import abc
import logging
import uuid
from typing import Any, ClassVar, Optional

from ..contracts import InboundEvent
from ..errors import DuplicateWorkflowError
from ..orchestrator import WorkflowOrchestrator
from ..persistence.models import Workflow
from ..persistence.store import WorkflowStore

logger = logging.getLogger(__name__)


class EventHandler(metaclass=abc.ABCMeta):
    """Validate, deduplicate and hand an inbound event to the orchestrator.

    Subclasses set :attr:`topic` and :attr:`event_model` and implement
    :meth:`process`.
    """

    topic: ClassVar[str]
    event_model: ClassVar[type[InboundEvent]]

    def __init__(
        self,
        orchestrator: WorkflowOrchestrator,
        store: WorkflowStore | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = store or orchestrator.store
        self._log = log or logger

    async def handle(self, payload: Any) -> Optional[Workflow]:
        """Process one decoded event payload.

        Returns the created workflow, or ``None`` when the event was a
        duplicate.

        Raises:
            EventValidationError: if the payload is malformed. Nothing has
                been written in that case.
        """
        event = self.event_model.parse(payload)
        correlation_id = self._resolve_correlation_id(event)

        existing = await self._store.get_workflow_by_journey_id(event.subject_id)
        if existing is not None:
            self._log.info(
                f"Skipping duplicate {self.topic} event for subject_id={event.subject_id} "
                f"(existing status {existing.status.value}) correlation_id={correlation_id}"
            )
            return None

        try:
            workflow = await self._orchestrator.start_workflow(
                event.subject_id, correlation_id, reject_any_existing=True
            )
        except DuplicateWorkflowError:
            self._log.info(
                f"Skipping duplicate {self.topic} event for subject_id={event.subject_id}: "
                f"workflow created concurrently correlation_id={correlation_id}"
            )
            return None

        try:
            await self.process(event, workflow)
        except Exception as exc:
            self._log.error(
                f"Failed to process {self.topic} event for subject_id={event.subject_id} "
                f"workflow {workflow.id} correlation_id={correlation_id}: {exc}"
            )
            raise
        return workflow

    def _resolve_correlation_id(self, event: InboundEvent) -> str:
        if event.correlation_id and event.correlation_id.strip():
            return event.correlation_id
        correlation_id = str(uuid.uuid4())
        self._log.warning(
            f"correlation_id missing from {self.topic} payload for "
            f"subject_id={event.subject_id}, generated correlation_id={correlation_id}"
        )
        return correlation_id

    @abc.abstractmethod
    async def process(self, event: Any, workflow: Workflow) -> None:
        """Drive ``workflow`` to a terminal state for ``event``."""
        raise NotImplementedError
