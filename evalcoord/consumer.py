"""Event consumer loop: feeds one topic's deliveries to one handler."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .errors import EventValidationError
from .intake import EventHandler
from .transports import BaseTransport

logger = logging.getLogger(__name__)


@dataclass
class ConsumerStats:
    processed_count: int = 0
    error_count: int = 0
    last_processed_at: Optional[datetime] = None
    is_running: bool = False


class EventConsumer:
    """Consume ``topic`` from ``transport`` and dispatch to ``handler``.

    Successful deliveries are acknowledged. Validation failures are logged
    and acknowledged, since redelivery cannot fix them. Any other error is
    logged and the delivery is nacked for redelivery; the handler's
    idempotency check makes the retry safe.
    """

    def __init__(
        self,
        transport: BaseTransport,
        handler: EventHandler,
        topic: Optional[str] = None,
        log: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._handler = handler
        self.topic = topic or handler.topic
        self._log = log or logger
        self.stats = ConsumerStats()
        self._task: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Connect and start consuming in a background task."""
        self._log.info(f"Subscribing to topic {self.topic}")
        await self._transport.connect()
        self.stats.is_running = True
        self._task = asyncio.create_task(self.run(), name=f"consumer:{self.topic}")

    async def stop(self) -> None:
        """Stop pulling deliveries, finish the one in flight, then disconnect.

        Never raises.
        """
        if self._task is None:
            self._log.warning(f"Consumer for {self.topic} not running, nothing to stop")
            return
        self._log.info(f"Shutting down consumer for {self.topic}")
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            self._log.error(f"Consumer for {self.topic} ended with error: {exc}")
        self._task = None
        if self._in_flight is not None and not self._in_flight.done():
            self._log.info(f"Waiting for in-flight {self.topic} event to finish")
            try:
                await self._in_flight
            except Exception as exc:
                self._log.error(f"In-flight {self.topic} event failed during shutdown: {exc}")
        self._in_flight = None
        try:
            await self._transport.disconnect()
        except Exception as exc:
            self._log.error(f"Error during shutdown of consumer for {self.topic}: {exc}")
        self.stats.is_running = False

    async def run(self, lifespan: Optional[float] = None) -> None:
        """Consume until cancelled or ``lifespan`` seconds have passed.

        Cancellation only interrupts the wait for the next delivery; the
        delivery being processed keeps running and :meth:`stop` awaits it.
        """
        async for raw_message, payload in self._transport.subscribe(
            self.topic, lifespan=lifespan
        ):
            self._in_flight = asyncio.ensure_future(self.process(raw_message, payload))
            await asyncio.shield(self._in_flight)
            self._in_flight = None

    async def process(self, raw_message, payload) -> None:
        try:
            await self._handler.handle(payload)
        except EventValidationError as exc:
            self.stats.error_count += 1
            self._log.error(f"Rejected invalid {self.topic} event: {exc}")
            await self._transport.ack(raw_message)
            return
        except Exception as exc:
            self.stats.error_count += 1
            self._log.error(f"Failed to handle {self.topic} event, will redeliver: {exc}")
            await self._transport.nack(raw_message, requeue=True)
            return

        self.stats.processed_count += 1
        self.stats.last_processed_at = datetime.now(timezone.utc)
        await self._transport.ack(raw_message)
