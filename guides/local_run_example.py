"""Run the coordinator in-process and feed it one event of each type.

Uses the in-memory transport and an in-memory SQLite database. The
decision service is expected at DECISION_SERVICE_URL (default
http://localhost:3002).
"""

import asyncio
import uuid

from evalcoord.app import EvaluationCoordinatorApp
from evalcoord.config import load_config
from evalcoord.constants import DELAY_DETECTED_TOPIC, DELAY_NOT_DETECTED_TOPIC
from evalcoord.transports import InMemoryTransport


async def main():
    transport = InMemoryTransport()
    coordinator = EvaluationCoordinatorApp(
        load_config(),
        transports={DELAY_DETECTED_TOPIC: transport, DELAY_NOT_DETECTED_TOPIC: transport},
        serve_http=False,
    )
    await coordinator.start()

    detected_id, not_detected_id = str(uuid.uuid4()), str(uuid.uuid4())
    await transport.publish(
        DELAY_DETECTED_TOPIC,
        {
            "subject_id": detected_id,
            "owner_id": "owner-1",
            "delay_minutes": 42,
            "is_cancellation": False,
            "category_code": "OFF_PEAK",
        },
    )
    await transport.publish(
        DELAY_NOT_DETECTED_TOPIC,
        {"subject_id": not_detected_id, "owner_id": "owner-2", "reason": "belowThreshold"},
    )

    # give the consumers a moment to pick the events up
    await asyncio.sleep(2)

    for subject_id in (detected_id, not_detected_id):
        status = await coordinator.orchestrator.get_workflow_status(subject_id)
        print(subject_id, status["status"] if status else "not found")

    for event in await coordinator.store.list_unpublished_events():
        print(f"outbox: {event.event_type} {event.payload}")

    await coordinator.stop()


if __name__ == "__main__":
    asyncio.run(main())
