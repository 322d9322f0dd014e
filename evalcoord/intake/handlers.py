"""Handlers for ``delay.detected`` and ``delay.not-detected`` events."""

from __future__ import annotations

from ..constants import DELAY_DETECTED_TOPIC, DELAY_NOT_DETECTED_TOPIC
from ..contracts import DecisionRequest, DelayDetectedEvent, DelayNotDetectedEvent
from ..persistence.models import Workflow
from .base import EventHandler


class DelayDetectedHandler(EventHandler):
    """A delay was detected; ask the decision service for a verdict."""

    topic = DELAY_DETECTED_TOPIC
    event_model = DelayDetectedEvent

    async def process(self, event: DelayDetectedEvent, workflow: Workflow) -> None:
        self._log.info(
            f"Created workflow {workflow.id} for {self.topic} subject_id={event.subject_id} "
            f"delay_minutes={event.delay_minutes} is_cancellation={event.is_cancellation} "
            f"correlation_id={workflow.correlation_id}"
        )
        if not event.category_code:
            await self._orchestrator.fail_precondition(
                workflow,
                "missing_category_code",
                "category_code is required for evaluation but was not present "
                f"in the {self.topic} payload",
            )
            return

        request = DecisionRequest(
            subject_id=event.subject_id,
            category_code=event.category_code,
            delay_minutes=event.delay_minutes,
            fare_amount=0,
        )
        await self._orchestrator.run_decision_check(
            workflow, request, owner_id=event.owner_id
        )


class DelayNotDetectedHandler(EventHandler):
    """No delay was detected; the outcome is known without a decision call."""

    topic = DELAY_NOT_DETECTED_TOPIC
    event_model = DelayNotDetectedEvent

    async def process(self, event: DelayNotDetectedEvent, workflow: Workflow) -> None:
        await self._orchestrator.complete_with_known_decision(
            workflow, {"eligible": False, "reason": event.reason}
        )
        self._log.info(
            f"Completed workflow {workflow.id} for {self.topic} subject_id={event.subject_id} "
            f"reason={event.reason} correlation_id={workflow.correlation_id}"
        )
