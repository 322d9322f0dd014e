"""Workflow orchestrator: drives one evaluation workflow to a terminal state."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Optional, Protocol

from .constants import StepStatus, StepType, WorkflowStatus
from .contracts import DecisionRequest, DecisionResult, EvaluationCompletedPayload
from .errors import DecisionServiceError, TransactionError
from .metrics import (
    EVALUATIONS_STARTED,
    STEP_FAILURES,
    WORKFLOW_DURATION,
    InMemoryMetrics,
    Metrics,
)
from .persistence.models import Workflow
from .persistence.store import WorkflowStore

logger = logging.getLogger(__name__)


class DecisionClient(Protocol):
    async def evaluate(
        self, request: DecisionRequest, correlation_id: str
    ) -> DecisionResult: ...


class WorkflowOrchestrator:
    """State machine for evaluation workflows.

    ``INITIATED`` → decision check → ``COMPLETED`` (decision stored together
    with an ``evaluation.completed`` outbox row) or ``FAILED`` (step marked
    FAILED/TIMEOUT with classified error details). Failed decision calls are
    never retried.
    """

    def __init__(
        self,
        store: WorkflowStore,
        gateway: DecisionClient,
        metrics: Metrics | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._metrics = metrics or InMemoryMetrics()
        self._log = log or logger
        self._background: set[asyncio.Task] = set()

    @property
    def store(self) -> WorkflowStore:
        return self._store

    @property
    def metrics(self) -> Metrics:
        return self._metrics

    # ------------------------------------------------------------------
    # Entry points
    async def initiate_evaluation(
        self, journey_id: str, correlation_id: Optional[str] = None
    ) -> dict[str, Any]:
        """Create a workflow and run its decision check in the background.

        Only creation errors (e.g. ``DuplicateWorkflowError``) reach the
        caller; the decision outcome is recorded on the workflow. A
        correlation id is generated when none is given.
        """
        correlation_id = correlation_id or str(uuid.uuid4())
        self._log.info(
            f"Initiating evaluation workflow journey_id={journey_id} "
            f"correlation_id={correlation_id}"
        )
        workflow = await self.start_workflow(journey_id, correlation_id)

        task = asyncio.create_task(
            self.run_decision_check(workflow, DecisionRequest(subject_id=journey_id))
        )
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

        return {
            "workflow_id": workflow.id,
            "subject_id": workflow.journey_id,
            "correlation_id": workflow.correlation_id,
            "status": workflow.status.value,
        }

    async def start_workflow(
        self, journey_id: str, correlation_id: str, reject_any_existing: bool = False
    ) -> Workflow:
        workflow = await self._store.create_workflow(
            journey_id, correlation_id, reject_any_existing=reject_any_existing
        )
        self._metrics.increment(EVALUATIONS_STARTED)
        self._log.info(
            f"Workflow {workflow.id} INITIATED for journey_id={journey_id} "
            f"correlation_id={correlation_id}"
        )
        return workflow

    # ------------------------------------------------------------------
    # Transitions
    async def run_decision_check(
        self,
        workflow: Workflow,
        request: DecisionRequest,
        owner_id: Optional[str] = None,
    ) -> WorkflowStatus:
        """Call the decision service and record the terminal outcome."""
        correlation_id = workflow.correlation_id
        started = time.monotonic()
        step = await self._store.create_step(
            workflow.id, StepType.DECISION_CHECK, correlation_id
        )

        try:
            result = await self._gateway.evaluate(request, correlation_id)
        except DecisionServiceError as exc:
            await self._record_failure(
                workflow, step.id, exc.step_status, exc.error_type, exc.details()
            )
            self._observe(started, "failed")
            return WorkflowStatus.FAILED
        except Exception as exc:
            await self._record_failure(
                workflow, step.id, StepStatus.FAILED, "FAILED", {"message": str(exc)}
            )
            self._observe(started, "failed")
            return WorkflowStatus.FAILED

        decision = result.model_dump()
        outbox_payload = EvaluationCompletedPayload(
            subject_id=workflow.journey_id,
            owner_id=owner_id,
            eligible=result.eligible,
            scheme=result.scheme,
            compensation_amount=result.compensation_amount,
            delay_minutes=request.delay_minutes,
            correlation_id=correlation_id,
        )
        try:
            await self._store.complete_with_outbox(
                workflow.id,
                decision,
                outbox_payload.model_dump(),
                correlation_id,
                step_id=step.id,
            )
        except TransactionError as exc:
            await self._record_failure(
                workflow,
                step.id,
                StepStatus.FAILED,
                "TRANSACTION_ERROR",
                {"message": "TRANSACTION_ERROR", "error": str(exc.__cause__ or exc)},
            )
            self._observe(started, "failed")
            return WorkflowStatus.FAILED
        self._log.info(
            f"Workflow {workflow.id} COMPLETED eligible={result.eligible} "
            f"scheme={result.scheme} correlation_id={correlation_id}"
        )

        if result.eligible:
            # the outbox event asks downstream services to act on the decision
            await self._store.create_step(
                workflow.id,
                StepType.FOLLOW_ON_ACTION,
                correlation_id,
                payload={"requested_event": outbox_payload.model_dump()},
            )
            self._log.info(
                f"Follow-on action requested for workflow {workflow.id} "
                f"correlation_id={correlation_id}"
            )

        self._observe(started, "success")
        return WorkflowStatus.COMPLETED

    async def fail_precondition(
        self, workflow: Workflow, message: str, reason: str
    ) -> WorkflowStatus:
        """Fail the workflow without calling the decision service."""
        self._log.warning(
            f"Workflow {workflow.id} cannot be evaluated ({message}) "
            f"correlation_id={workflow.correlation_id}"
        )
        step = await self._store.create_step(
            workflow.id, StepType.DECISION_CHECK, workflow.correlation_id
        )
        await self._record_failure(
            workflow,
            step.id,
            StepStatus.FAILED,
            message,
            {"message": message, "reason": reason},
        )
        return WorkflowStatus.FAILED

    async def complete_with_known_decision(
        self, workflow: Workflow, decision_result: dict[str, Any]
    ) -> WorkflowStatus:
        """Complete a workflow whose decision is already known.

        If the completion cannot be committed the workflow is marked FAILED
        so it does not stay active.
        """
        try:
            await self._store.complete_workflow(
                workflow.id, decision_result, workflow.correlation_id
            )
        except TransactionError as exc:
            self._log.error(
                f"Could not complete workflow {workflow.id}: {exc} "
                f"correlation_id={workflow.correlation_id}"
            )
            await self._store.fail_workflow(
                workflow.id,
                None,
                StepStatus.FAILED,
                {"message": "TRANSACTION_ERROR"},
                workflow.correlation_id,
            )
            return WorkflowStatus.FAILED
        self._log.info(
            f"Workflow {workflow.id} COMPLETED with known decision "
            f"correlation_id={workflow.correlation_id}"
        )
        return WorkflowStatus.COMPLETED

    # ------------------------------------------------------------------
    # Queries
    async def get_workflow_status(self, journey_id: str) -> dict[str, Any] | None:
        workflow = await self._store.get_workflow_by_journey_id(journey_id)
        if workflow is None:
            return None
        steps = await self._store.get_steps(workflow.id)
        return {
            "workflow_id": workflow.id,
            "subject_id": workflow.journey_id,
            "correlation_id": workflow.correlation_id,
            "status": workflow.status.value,
            "decision_result": workflow.decision_result,
            "created_at": workflow.created_at,
            "updated_at": workflow.updated_at,
            "completed_at": workflow.completed_at,
            "steps": [
                {
                    "step_type": s.step_type.value,
                    "status": s.status.value,
                    "payload": s.payload,
                    "error_details": s.error_details,
                    "started_at": s.started_at,
                    "completed_at": s.completed_at,
                }
                for s in steps
            ],
        }

    # ------------------------------------------------------------------
    async def drain(self) -> None:
        """Wait for background decision checks still in flight."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _record_failure(
        self,
        workflow: Workflow,
        step_id: str,
        step_status: StepStatus,
        error_type: str,
        error_details: dict[str, Any],
    ) -> None:
        self._log.error(
            f"Decision check failed for workflow {workflow.id}: {error_details} "
            f"correlation_id={workflow.correlation_id}"
        )
        await self._store.fail_workflow(
            workflow.id, step_id, step_status, error_details, workflow.correlation_id
        )
        self._metrics.increment(
            STEP_FAILURES,
            step_type=StepType.DECISION_CHECK.value,
            error_type=error_type,
        )

    def _observe(self, started: float, status: str) -> None:
        self._metrics.observe(WORKFLOW_DURATION, time.monotonic() - started, status=status)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log.error(f"Background decision check failed: {exc}")
