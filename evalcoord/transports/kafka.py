"""Kafka transport implementation using aiokafka."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Iterable, Optional, Tuple

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from aiokafka.helpers import create_ssl_context
from aiokafka.structs import TopicPartition

from .base import BaseTransport, decode_payload

logger = logging.getLogger(__name__)


class KafkaTransport(BaseTransport[Any]):
    """Kafka-based transport with manual offset commits.

    One transport serves one consumer group; create a transport per
    subscribed topic so handlers never share partition assignments.
    """

    def __init__(
        self,
        brokers: Iterable[str] | str = "localhost:9092",
        group_id: str = "evaluation-coordinator",
        username: Optional[str] = None,
        password: Optional[str] = None,
        ssl: bool = False,
    ) -> None:
        self.brokers = [brokers] if isinstance(brokers, str) else list(brokers)
        self.group_id = group_id
        self.username = username
        self.password = password
        self.ssl = ssl
        self._producer: Optional[AIOKafkaProducer] = None
        self._consumer: Optional[AIOKafkaConsumer] = None

    def _security_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if self.username and self.password:
            options.update(
                security_protocol="SASL_SSL" if self.ssl else "SASL_PLAINTEXT",
                sasl_mechanism="PLAIN",
                sasl_plain_username=self.username,
                sasl_plain_password=self.password,
            )
        elif self.ssl:
            options["security_protocol"] = "SSL"
        if self.ssl:
            options["ssl_context"] = create_ssl_context()
        return options

    async def connect(self) -> None:
        options = self._security_options()
        self._producer = AIOKafkaProducer(bootstrap_servers=self.brokers, **options)
        self._consumer = AIOKafkaConsumer(
            bootstrap_servers=self.brokers,
            group_id=self.group_id,
            enable_auto_commit=False,
            auto_offset_reset="earliest",
            **options,
        )
        await self._producer.start()
        await self._consumer.start()

    async def disconnect(self) -> None:
        if self._consumer:
            await self._consumer.stop()
            self._consumer = None
        if self._producer:
            await self._producer.stop()
            self._producer = None

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        if not self._producer:
            raise RuntimeError("KafkaTransport not connected")
        await self._producer.send_and_wait(topic, value=json.dumps(payload).encode())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[Any, Any]]:
        if not self._consumer:
            raise RuntimeError("KafkaTransport not connected")
        self._consumer.subscribe([topic])
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break
            msg = await self._consumer.getone()
            payload = decode_payload(msg.value)
            if payload is None:
                logger.error(
                    f"Undecodable message on topic={msg.topic} "
                    f"partition={msg.partition} offset={msg.offset}"
                )
            yield msg, payload

    async def ack(self, raw_message: Any) -> None:
        if not self._consumer:
            raise RuntimeError("KafkaTransport not connected")
        tp = TopicPartition(raw_message.topic, raw_message.partition)
        await self._consumer.commit({tp: raw_message.offset + 1})

    async def nack(self, raw_message: Any, requeue: bool = True) -> None:
        if not self._consumer:
            raise RuntimeError("KafkaTransport not connected")
        if requeue:
            tp = TopicPartition(raw_message.topic, raw_message.partition)
            self._consumer.seek(tp, raw_message.offset)
        else:
            await self.ack(raw_message)
