"""Example showing how to publish a delay.detected event to the configured broker."""

import asyncio
import sys
import uuid

from evalcoord import get_transport
from evalcoord.constants import DELAY_DETECTED_TOPIC


async def main():
    subject_id = sys.argv[1] if len(sys.argv) > 1 else str(uuid.uuid4())

    transport = get_transport(topic=DELAY_DETECTED_TOPIC)
    await transport.connect()

    correlation_id = str(uuid.uuid4())
    await transport.publish(
        DELAY_DETECTED_TOPIC,
        {
            "subject_id": subject_id,
            "owner_id": "owner-123",
            "delay_minutes": 35,
            "is_cancellation": False,
            "category_code": "ANYTIME",
            "correlation_id": correlation_id,
        },
    )

    print(f"Published {DELAY_DETECTED_TOPIC} for subject_id={subject_id}")
    print(f"Correlation ID: {correlation_id}")

    await transport.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
