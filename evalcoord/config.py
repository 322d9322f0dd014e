from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_DECISION_TIMEOUT_SECONDS,
    DELAY_DETECTED_TOPIC,
    DELAY_NOT_DETECTED_TOPIC,
)


class KafkaConfig(BaseModel):
    """Configuration for the Kafka event consumers."""

    brokers: list[str] = Field(default_factory=lambda: ["localhost:9092"])
    username: Optional[str] = None
    password: Optional[str] = None
    ssl: bool = True
    group_prefix: str = "evaluation-coordinator"
    delay_detected_topic: str = DELAY_DETECTED_TOPIC
    delay_not_detected_topic: str = DELAY_NOT_DETECTED_TOPIC

    def group_id(self, topic: str) -> str:
        """Consumer group for ``topic``; each topic gets its own group."""
        return f"{self.group_prefix}-{topic.replace('.', '-')}"


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "kafka"] = "inmemory"
    kafka: KafkaConfig = KafkaConfig()


class DecisionServiceConfig(BaseModel):
    base_url: str = "http://localhost:3002"
    timeout_seconds: float = DEFAULT_DECISION_TIMEOUT_SECONDS


class HttpConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000


class CoordinatorConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    http: HttpConfig = HttpConfig()
    decision_service: DecisionServiceConfig = DecisionServiceConfig()
    transport: TransportConfig = TransportConfig()


def _env_flag(value: str) -> bool:
    return value.strip().lower() not in ("0", "false", "no", "off")


def load_config(path: Optional[str] = None) -> CoordinatorConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to EVALCOORD_CONFIG env
            variable or 'config.yaml' in the current directory.

    Environment variables override file values: ``DATABASE_URL``,
    ``DECISION_SERVICE_URL``, ``EVALCOORD_TRANSPORT``, ``KAFKA_BROKERS``
    (comma separated), ``KAFKA_USERNAME``, ``KAFKA_PASSWORD``,
    ``KAFKA_SSL_ENABLED`` and ``KAFKA_GROUP_PREFIX``.
    """

    config_path = path or os.getenv("EVALCOORD_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = CoordinatorConfig(**data)
    else:
        config = CoordinatorConfig()

    env_db_url = os.getenv("EVALCOORD_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    if os.getenv("DECISION_SERVICE_URL"):
        config.decision_service.base_url = os.environ["DECISION_SERVICE_URL"]
    if os.getenv("EVALCOORD_TRANSPORT"):
        config.transport.backend = os.environ["EVALCOORD_TRANSPORT"].lower()

    kafka = config.transport.kafka
    if os.getenv("KAFKA_BROKERS"):
        kafka.brokers = [
            b.strip() for b in os.environ["KAFKA_BROKERS"].split(",") if b.strip()
        ]
    if os.getenv("KAFKA_USERNAME"):
        kafka.username = os.environ["KAFKA_USERNAME"]
    if os.getenv("KAFKA_PASSWORD"):
        kafka.password = os.environ["KAFKA_PASSWORD"]
    if os.getenv("KAFKA_SSL_ENABLED"):
        kafka.ssl = _env_flag(os.environ["KAFKA_SSL_ENABLED"])
    if os.getenv("KAFKA_GROUP_PREFIX"):
        kafka.group_prefix = os.environ["KAFKA_GROUP_PREFIX"]
    return config
