"""Transport factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import CoordinatorConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport


def get_transport(
    backend: Optional[str] = None,
    config: Optional[CoordinatorConfig] = None,
    topic: Optional[str] = None,
) -> BaseTransport:
    """Factory function to get the configured transport.

    For Kafka, ``topic`` selects the consumer group so that every topic is
    consumed by its own group.
    """

    config = config or load_config()
    backend = (
        backend
        or os.getenv("EVALCOORD_TRANSPORT")
        or config.transport.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryTransport()
    elif backend == "kafka":
        from .kafka import KafkaTransport

        kafka_conf = config.transport.kafka
        return KafkaTransport(
            brokers=kafka_conf.brokers,
            group_id=kafka_conf.group_id(topic or "default"),
            username=kafka_conf.username,
            password=kafka_conf.password,
            ssl=kafka_conf.ssl,
        )
    else:
        raise ValueError(f"Unsupported transport backend: {backend}")


__all__ = ["BaseTransport", "InMemoryTransport", "get_transport"]
