"""Workflow store: every read and write of workflow, step and outbox rows."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from ..constants import (
    ACTIVE_STATUSES,
    AGGREGATE_TYPE,
    EVALUATION_COMPLETED_EVENT,
    StepStatus,
    StepType,
    WorkflowStatus,
)
from ..errors import ConstraintViolationError, DuplicateWorkflowError, TransactionError
from .database import Connection, Database
from .models import OutboxEvent, Step, Workflow

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _dumps(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value, default=str)


class WorkflowStore:
    """Owns all persistent state of evaluation workflows.

    Single-statement writes go straight to the shared :class:`Database`.
    Compound writes (:meth:`complete_with_outbox`, :meth:`complete_workflow`,
    :meth:`fail_workflow`) run inside one transaction so either every row
    change is visible or none is.
    """

    def __init__(self, db: Database, log: logging.Logger | None = None) -> None:
        self._db = db
        self._log = log or logger
        self._workflows = db.table("evaluation_workflows")
        self._steps = db.table("workflow_steps")
        self._outbox = db.table("outbox")

    # ------------------------------------------------------------------
    # Workflows
    async def create_workflow(
        self,
        journey_id: str,
        correlation_id: str,
        reject_any_existing: bool = False,
    ) -> Workflow:
        """Insert a new INITIATED workflow.

        The existence check and the insert share one transaction. By default
        only workflows in an active status block creation; event intake passes
        ``reject_any_existing=True`` so a redelivered event never re-runs a
        finished evaluation.

        Raises:
            DuplicateWorkflowError: if a blocking workflow already exists for
                ``journey_id``.
        """
        if reject_any_existing:
            check_sql = f"SELECT id, status FROM {self._workflows} WHERE journey_id = $1 LIMIT 1"
            check_args: tuple = (journey_id,)
        else:
            placeholders = ", ".join(f"${i + 2}" for i in range(len(ACTIVE_STATUSES)))
            check_sql = (
                f"SELECT id, status FROM {self._workflows} "
                f"WHERE journey_id = $1 AND status IN ({placeholders}) LIMIT 1"
            )
            check_args = (journey_id, *(s.value for s in ACTIVE_STATUSES))

        now = _now()
        workflow = Workflow(
            id=str(uuid.uuid4()),
            journey_id=journey_id,
            correlation_id=correlation_id,
            status=WorkflowStatus.INITIATED,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._db.transaction() as conn:
                existing = await conn.query_one(check_sql, *check_args)
                if existing:
                    raise DuplicateWorkflowError(journey_id)
                self._log.info(
                    f"Creating evaluation workflow for journey_id={journey_id} "
                    f"correlation_id={correlation_id}"
                )
                await conn.execute(
                    f"INSERT INTO {self._workflows} "
                    "(id, journey_id, correlation_id, status, created_at, updated_at) "
                    "VALUES ($1, $2, $3, $4, $5, $6)",
                    workflow.id,
                    journey_id,
                    correlation_id,
                    workflow.status.value,
                    now,
                    now,
                )
        except ConstraintViolationError as exc:
            # lost the race against a concurrent creator
            raise DuplicateWorkflowError(journey_id) from exc
        return workflow

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        row = await self._db.query_one(
            f"SELECT * FROM {self._workflows} WHERE id = $1", workflow_id
        )
        return Workflow.model_validate(row) if row else None

    async def get_workflow_by_journey_id(self, journey_id: str) -> Workflow | None:
        """Return the most recently created workflow for ``journey_id``."""
        row = await self._db.query_one(
            f"SELECT * FROM {self._workflows} WHERE journey_id = $1 "
            "ORDER BY created_at DESC LIMIT 1",
            journey_id,
        )
        return Workflow.model_validate(row) if row else None

    async def update_status(
        self, workflow_id: str, status: WorkflowStatus, correlation_id: str
    ) -> None:
        self._log.info(
            f"Updating workflow {workflow_id} status to {status.value} "
            f"correlation_id={correlation_id}"
        )
        await self._set_status(self._db, workflow_id, status)

    async def update_decision_result(
        self, workflow_id: str, decision_result: dict, correlation_id: str
    ) -> None:
        self._log.info(
            f"Storing decision result for workflow {workflow_id} "
            f"correlation_id={correlation_id}"
        )
        await self._set_decision_result(self._db, workflow_id, decision_result)

    async def delete_workflow(self, workflow_id: str) -> bool:
        """Administrative cleanup; steps are removed by cascade."""
        deleted = await self._db.execute(
            f"DELETE FROM {self._workflows} WHERE id = $1", workflow_id
        )
        return deleted > 0

    # ------------------------------------------------------------------
    # Steps
    async def create_step(
        self,
        workflow_id: str,
        step_type: StepType,
        correlation_id: str,
        status: StepStatus = StepStatus.PENDING,
        payload: dict | None = None,
    ) -> Step:
        step = Step(
            id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            step_type=step_type,
            status=status,
            payload=payload or {},
            started_at=_now(),
        )
        self._log.info(
            f"Creating {step_type.value} step for workflow {workflow_id} "
            f"correlation_id={correlation_id}"
        )
        await self._db.execute(
            f"INSERT INTO {self._steps} "
            "(id, workflow_id, step_type, status, payload, started_at) "
            "VALUES ($1, $2, $3, $4, $5, $6)",
            step.id,
            workflow_id,
            step_type.value,
            status.value,
            _dumps(step.payload),
            step.started_at,
        )
        return step

    async def update_step(
        self,
        step_id: str,
        status: StepStatus,
        correlation_id: str,
        payload: dict | None = None,
        error_details: dict | None = None,
    ) -> None:
        self._log.info(
            f"Updating step {step_id} to {status.value} correlation_id={correlation_id}"
        )
        await self._set_step(self._db, step_id, status, payload, error_details)

    async def get_steps(self, workflow_id: str) -> list[Step]:
        rows = await self._db.query(
            f"SELECT * FROM {self._steps} WHERE workflow_id = $1 ORDER BY started_at ASC",
            workflow_id,
        )
        return [Step.model_validate(r) for r in rows]

    # ------------------------------------------------------------------
    # Outbox
    async def create_outbox_event(
        self,
        aggregate_id: str,
        aggregate_type: str,
        event_type: str,
        payload: dict,
        correlation_id: str,
    ) -> OutboxEvent:
        self._log.info(
            f"Creating outbox event {event_type} for {aggregate_id} "
            f"correlation_id={correlation_id}"
        )
        return await self._insert_outbox(
            self._db, aggregate_id, aggregate_type, event_type, payload, correlation_id
        )

    async def list_unpublished_events(self, limit: int = 100) -> list[OutboxEvent]:
        rows = await self._db.query(
            f"SELECT * FROM {self._outbox} WHERE published = FALSE "
            "ORDER BY created_at ASC LIMIT $1",
            limit,
        )
        return [OutboxEvent.model_validate(r) for r in rows]

    async def list_events(self, aggregate_id: str) -> list[OutboxEvent]:
        rows = await self._db.query(
            f"SELECT * FROM {self._outbox} WHERE aggregate_id = $1 ORDER BY created_at ASC",
            aggregate_id,
        )
        return [OutboxEvent.model_validate(r) for r in rows]

    async def mark_event_published(self, event_id: str) -> bool:
        """Flip ``published`` to true. Returns ``False`` if it already was."""
        updated = await self._db.execute(
            f"UPDATE {self._outbox} SET published = TRUE, published_at = $2 "
            "WHERE id = $1 AND published = FALSE",
            event_id,
            _now(),
        )
        return updated > 0

    # ------------------------------------------------------------------
    # Transactional completions
    async def complete_with_outbox(
        self,
        workflow_id: str,
        decision_result: dict,
        outbox_payload: dict,
        correlation_id: str,
        step_id: str | None = None,
    ) -> OutboxEvent:
        """Store the decision, mark COMPLETED and write the outbox row atomically.

        When ``step_id`` is given the decision step is marked COMPLETED with
        the decision as payload in the same transaction.

        Raises:
            TransactionError: if any statement fails. Nothing is written and
                the original exception is chained as ``__cause__``.
        """
        self._log.info(
            f"Completing workflow {workflow_id} with outbox event "
            f"correlation_id={correlation_id}"
        )
        try:
            async with self._db.transaction() as tx:
                if step_id is not None:
                    await self._set_step(
                        tx, step_id, StepStatus.COMPLETED, decision_result, None
                    )
                await self._set_decision_result(tx, workflow_id, decision_result)
                await self._set_status(tx, workflow_id, WorkflowStatus.COMPLETED)
                event = await self._insert_outbox(
                    tx,
                    workflow_id,
                    AGGREGATE_TYPE,
                    EVALUATION_COMPLETED_EVENT,
                    outbox_payload,
                    correlation_id,
                )
        except Exception as exc:
            self._log.error(
                f"Transaction rolled back for workflow {workflow_id} "
                f"correlation_id={correlation_id}: {exc}"
            )
            raise TransactionError(
                f"Failed to complete workflow {workflow_id}: {exc}"
            ) from exc
        return event

    async def complete_workflow(
        self, workflow_id: str, decision_result: dict, correlation_id: str
    ) -> None:
        """Store the decision and mark COMPLETED without an outbox row."""
        self._log.info(
            f"Completing workflow {workflow_id} correlation_id={correlation_id}"
        )
        try:
            async with self._db.transaction() as tx:
                await self._set_decision_result(tx, workflow_id, decision_result)
                await self._set_status(tx, workflow_id, WorkflowStatus.COMPLETED)
        except Exception as exc:
            raise TransactionError(
                f"Failed to complete workflow {workflow_id}: {exc}"
            ) from exc

    async def fail_workflow(
        self,
        workflow_id: str,
        step_id: str | None,
        step_status: StepStatus,
        error_details: dict,
        correlation_id: str,
    ) -> None:
        """Record a failed step and move the workflow to FAILED together.

        Without ``step_id`` only the workflow status changes.
        """
        self._log.info(
            f"Failing workflow {workflow_id} at step {step_id} ({step_status.value}) "
            f"correlation_id={correlation_id}"
        )
        try:
            async with self._db.transaction() as tx:
                if step_id is not None:
                    await self._set_step(tx, step_id, step_status, None, error_details)
                await self._set_status(tx, workflow_id, WorkflowStatus.FAILED)
        except Exception as exc:
            raise TransactionError(
                f"Failed to record failure of workflow {workflow_id}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Statement helpers, usable on the pool or inside a transaction
    async def _set_status(
        self, conn: Connection, workflow_id: str, status: WorkflowStatus
    ) -> None:
        now = _now()
        completed_at = now if status is WorkflowStatus.COMPLETED else None
        await conn.execute(
            f"UPDATE {self._workflows} SET status = $1, updated_at = $2, "
            "completed_at = COALESCE($3, completed_at) WHERE id = $4",
            status.value,
            now,
            completed_at,
            workflow_id,
        )

    async def _set_decision_result(
        self, conn: Connection, workflow_id: str, decision_result: dict
    ) -> None:
        await conn.execute(
            f"UPDATE {self._workflows} SET decision_result = $1, updated_at = $2 "
            "WHERE id = $3",
            _dumps(decision_result),
            _now(),
            workflow_id,
        )

    async def _set_step(
        self,
        conn: Connection,
        step_id: str,
        status: StepStatus,
        payload: dict | None,
        error_details: dict | None,
    ) -> None:
        await conn.execute(
            f"UPDATE {self._steps} SET status = $1, payload = $2, "
            "error_details = $3, completed_at = $4 WHERE id = $5",
            status.value,
            _dumps(payload or {}),
            _dumps(error_details),
            _now(),
            step_id,
        )

    async def _insert_outbox(
        self,
        conn: Connection,
        aggregate_id: str,
        aggregate_type: str,
        event_type: str,
        payload: dict,
        correlation_id: str,
    ) -> OutboxEvent:
        event = OutboxEvent(
            id=str(uuid.uuid4()),
            aggregate_id=aggregate_id,
            aggregate_type=aggregate_type,
            event_type=event_type,
            payload=payload,
            correlation_id=correlation_id,
            published=False,
            created_at=_now(),
        )
        await conn.execute(
            f"INSERT INTO {self._outbox} "
            "(id, aggregate_id, aggregate_type, event_type, payload, "
            "correlation_id, published, created_at) "
            "VALUES ($1, $2, $3, $4, $5, $6, $7, $8)",
            event.id,
            aggregate_id,
            aggregate_type,
            event_type,
            _dumps(payload),
            correlation_id,
            False,
            event.created_at,
        )
        return event
