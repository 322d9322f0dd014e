"""Transport seam between the event broker and the consumers."""

from __future__ import annotations

import abc
import json
from typing import Any, AsyncIterator, Generic, Optional, Tuple, TypeVar

RawMessageT = TypeVar("RawMessageT")


def decode_payload(value: bytes | str | None) -> Optional[Any]:
    """Decode a JSON event value, or ``None`` if it is empty or not JSON."""
    if not value:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    try:
        return json.loads(value)
    except ValueError:
        return None


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Delivers JSON event payloads from one broker to the consumers.

    Delivery is at-least-once: a message comes back until it is acked.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        """Publish ``payload`` as JSON on ``topic``."""
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, Any]]:
        """Yield ``(raw_message, payload)`` for each delivery on ``topic``.

        ``payload`` is ``None`` when the value could not be decoded; the
        consumer rejects it like any other invalid event. ``lifespan`` bounds
        consumption to that many seconds.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Mark ``raw_message`` processed so it is not delivered again."""
        raise NotImplementedError

    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Hand ``raw_message`` back; without ``requeue`` it is dropped."""
        await self.ack(raw_message)
