"""In-memory transport for testing and local runs."""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict, deque
from typing import Any, AsyncIterator, Deque, Dict, Optional, Tuple

from .base import BaseTransport, decode_payload

RawMessage = Tuple[str, str]


class InMemoryTransport(BaseTransport[RawMessage]):
    """Simple in-process queue with at-least-once redelivery on nack."""

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[RawMessage]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self.acked: list[RawMessage] = []

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        """Publish payload to in-memory queue."""
        await self.publish_raw(topic, json.dumps(payload))

    async def publish_raw(self, topic: str, value: str) -> None:
        async with self._lock:
            self._queues[topic].append((topic, value))

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessage, Any]]:
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            async with self._lock:
                raw_message = (
                    self._queues[topic].popleft() if self._queues[topic] else None
                )
            if raw_message is not None:
                yield raw_message, decode_payload(raw_message[1])
                continue

            await asyncio.sleep(0.01)

    async def ack(self, raw_message: RawMessage) -> None:
        self.acked.append(raw_message)

    async def nack(self, raw_message: RawMessage, requeue: bool = True) -> None:
        if requeue:
            async with self._lock:
                self._queues[raw_message[0]].append(raw_message)
        else:
            await self.ack(raw_message)

    def pending(self, topic: str) -> int:
        return len(self._queues[topic])
