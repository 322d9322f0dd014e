import uuid
import pytest

from evalcoord.constants import (
    AGGREGATE_TYPE,
    EVALUATION_COMPLETED_EVENT,
    StepStatus,
    StepType,
    WorkflowStatus,
)
from evalcoord.errors import DuplicateWorkflowError, TransactionError
from evalcoord.persistence import WorkflowStore


@pytest.mark.asyncio
async def test_create_and_fetch_workflow(store, journey_id):
    wf = await store.create_workflow(journey_id, "corr-1")

    assert wf.status == WorkflowStatus.INITIATED
    assert wf.decision_result is None
    assert wf.completed_at is None

    fetched = await store.get_workflow(wf.id)
    assert fetched is not None
    assert fetched.journey_id == journey_id
    assert fetched.correlation_id == "corr-1"
    assert fetched.status == WorkflowStatus.INITIATED

    by_journey = await store.get_workflow_by_journey_id(journey_id)
    assert by_journey is not None
    assert by_journey.id == wf.id


@pytest.mark.asyncio
async def test_unknown_ids_return_none(store):
    assert await store.get_workflow(str(uuid.uuid4())) is None
    assert await store.get_workflow_by_journey_id(str(uuid.uuid4())) is None


@pytest.mark.asyncio
async def test_active_workflow_blocks_second_creation(store, journey_id):
    await store.create_workflow(journey_id, "corr-1")

    with pytest.raises(DuplicateWorkflowError) as exc_info:
        await store.create_workflow(journey_id, "corr-2")

    assert exc_info.value.journey_id == journey_id
    assert str(exc_info.value) == f"Active workflow already exists for journey {journey_id}"


@pytest.mark.asyncio
async def test_terminal_workflow_allows_re_evaluation(store, journey_id):
    first = await store.create_workflow(journey_id, "corr-1")
    await store.complete_workflow(first.id, {"eligible": False}, "corr-1")

    second = await store.create_workflow(journey_id, "corr-2")

    assert second.id != first.id
    latest = await store.get_workflow_by_journey_id(journey_id)
    assert latest.id == second.id


@pytest.mark.asyncio
async def test_reject_any_existing_blocks_after_completion(store, journey_id):
    first = await store.create_workflow(journey_id, "corr-1")
    await store.complete_workflow(first.id, {"eligible": False}, "corr-1")

    with pytest.raises(DuplicateWorkflowError):
        await store.create_workflow(journey_id, "corr-2", reject_any_existing=True)


@pytest.mark.asyncio
async def test_step_payload_defaults_to_empty_object(store, journey_id):
    wf = await store.create_workflow(journey_id, "corr-1")
    step = await store.create_step(wf.id, StepType.DECISION_CHECK, "corr-1")

    assert step.status == StepStatus.PENDING
    steps = await store.get_steps(wf.id)
    assert len(steps) == 1
    assert steps[0].payload == {}
    assert steps[0].error_details is None
    assert steps[0].completed_at is None


@pytest.mark.asyncio
async def test_update_step_records_payload_and_completion(store, journey_id):
    wf = await store.create_workflow(journey_id, "corr-1")
    step = await store.create_step(wf.id, StepType.DECISION_CHECK, "corr-1")

    await store.update_step(step.id, StepStatus.COMPLETED, "corr-1", payload={"eligible": True})

    [stored] = await store.get_steps(wf.id)
    assert stored.status == StepStatus.COMPLETED
    assert stored.payload == {"eligible": True}
    assert stored.completed_at is not None


@pytest.mark.asyncio
async def test_update_status_sets_completed_at_only_on_completion(store, journey_id):
    wf = await store.create_workflow(journey_id, "corr-1")

    await store.update_status(wf.id, WorkflowStatus.IN_PROGRESS, "corr-1")
    in_progress = await store.get_workflow(wf.id)
    assert in_progress.status == WorkflowStatus.IN_PROGRESS
    assert in_progress.completed_at is None

    await store.update_status(wf.id, WorkflowStatus.COMPLETED, "corr-1")
    completed = await store.get_workflow(wf.id)
    assert completed.completed_at is not None


@pytest.mark.asyncio
async def test_complete_with_outbox_writes_decision_status_and_event(store, journey_id):
    wf = await store.create_workflow(journey_id, "corr-1")
    decision = {"eligible": True, "scheme": "DR15", "compensation_amount": 25}

    event = await store.complete_with_outbox(
        wf.id, decision, {"subject_id": journey_id, "eligible": True}, "corr-1"
    )

    stored = await store.get_workflow(wf.id)
    assert stored.status == WorkflowStatus.COMPLETED
    assert stored.decision_result == decision
    assert stored.completed_at is not None

    events = await store.list_events(wf.id)
    assert [e.id for e in events] == [event.id]
    assert events[0].aggregate_type == AGGREGATE_TYPE
    assert events[0].event_type == EVALUATION_COMPLETED_EVENT
    assert events[0].payload == {"subject_id": journey_id, "eligible": True}
    assert events[0].correlation_id == "corr-1"
    assert events[0].published is False
    assert events[0].published_at is None


@pytest.mark.asyncio
async def test_complete_with_outbox_rolls_back_when_outbox_insert_fails(
    db, failing_db, journey_id
):
    store = WorkflowStore(db)
    wf = await store.create_workflow(journey_id, "corr-1")
    step = await store.create_step(wf.id, StepType.DECISION_CHECK, "corr-1")
    failing_store = WorkflowStore(failing_db("INSERT INTO outbox"))

    with pytest.raises(TransactionError) as exc_info:
        await failing_store.complete_with_outbox(
            wf.id, {"eligible": True}, {"subject_id": journey_id}, "corr-1", step_id=step.id
        )

    assert isinstance(exc_info.value.__cause__, RuntimeError)
    unchanged = await store.get_workflow(wf.id)
    assert unchanged.status == WorkflowStatus.INITIATED
    assert unchanged.decision_result is None
    assert await store.list_events(wf.id) == []
    [pending] = await store.get_steps(wf.id)
    assert pending.status == StepStatus.PENDING
    assert pending.payload == {}


@pytest.mark.asyncio
async def test_complete_with_outbox_completes_step_in_same_transaction(store, journey_id):
    wf = await store.create_workflow(journey_id, "corr-1")
    step = await store.create_step(wf.id, StepType.DECISION_CHECK, "corr-1")

    await store.complete_with_outbox(
        wf.id, {"eligible": False}, {"subject_id": journey_id}, "corr-1", step_id=step.id
    )

    [completed] = await store.get_steps(wf.id)
    assert completed.status == StepStatus.COMPLETED
    assert completed.payload == {"eligible": False}
    assert completed.completed_at is not None


@pytest.mark.asyncio
async def test_fail_workflow_without_step_only_changes_status(store, journey_id):
    wf = await store.create_workflow(journey_id, "corr-1")

    await store.fail_workflow(wf.id, None, StepStatus.FAILED, {"message": "x"}, "corr-1")

    assert (await store.get_workflow(wf.id)).status == WorkflowStatus.FAILED
    assert await store.get_steps(wf.id) == []


@pytest.mark.asyncio
async def test_complete_workflow_writes_no_outbox_row(store, journey_id):
    wf = await store.create_workflow(journey_id, "corr-1")

    await store.complete_workflow(
        wf.id, {"eligible": False, "reason": "belowThreshold"}, "corr-1"
    )

    stored = await store.get_workflow(wf.id)
    assert stored.status == WorkflowStatus.COMPLETED
    assert stored.decision_result == {"eligible": False, "reason": "belowThreshold"}
    assert await store.list_events(wf.id) == []


@pytest.mark.asyncio
async def test_fail_workflow_marks_step_and_workflow(store, journey_id):
    wf = await store.create_workflow(journey_id, "corr-1")
    step = await store.create_step(wf.id, StepType.DECISION_CHECK, "corr-1")

    await store.fail_workflow(
        wf.id, step.id, StepStatus.TIMEOUT, {"message": "TIMEOUT", "timeout_ms": 30000}, "corr-1"
    )

    stored = await store.get_workflow(wf.id)
    assert stored.status == WorkflowStatus.FAILED
    assert stored.completed_at is None
    [failed] = await store.get_steps(wf.id)
    assert failed.status == StepStatus.TIMEOUT
    assert failed.error_details == {"message": "TIMEOUT", "timeout_ms": 30000}
    assert failed.payload == {}


@pytest.mark.asyncio
async def test_mark_event_published_is_monotonic(store, journey_id):
    wf = await store.create_workflow(journey_id, "corr-1")
    event = await store.complete_with_outbox(wf.id, {"eligible": True}, {}, "corr-1")

    assert [e.id for e in await store.list_unpublished_events()] == [event.id]

    assert await store.mark_event_published(event.id) is True
    assert await store.mark_event_published(event.id) is False

    [published] = await store.list_events(wf.id)
    assert published.published is True
    assert published.published_at is not None
    assert await store.list_unpublished_events() == []


@pytest.mark.asyncio
async def test_delete_workflow_cascades_to_steps(store, journey_id):
    wf = await store.create_workflow(journey_id, "corr-1")
    await store.create_step(wf.id, StepType.DECISION_CHECK, "corr-1")
    await store.create_step(wf.id, StepType.FOLLOW_ON_ACTION, "corr-1")
    assert len(await store.get_steps(wf.id)) == 2

    assert await store.delete_workflow(wf.id) is True

    assert await store.get_workflow(wf.id) is None
    assert await store.get_steps(wf.id) == []
    assert await store.delete_workflow(wf.id) is False


@pytest.mark.asyncio
async def test_create_outbox_event_outside_completion(store, journey_id):
    wf = await store.create_workflow(journey_id, "corr-1")

    event = await store.create_outbox_event(
        wf.id, AGGREGATE_TYPE, EVALUATION_COMPLETED_EVENT, {"eligible": False}, "corr-1"
    )

    [stored] = await store.list_unpublished_events(limit=10)
    assert stored.id == event.id
    assert stored.payload == {"eligible": False}
