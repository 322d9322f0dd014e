"""Tests for configuration loading."""

import pytest

from evalcoord.config import load_config
from evalcoord.constants import DELAY_DETECTED_TOPIC, DELAY_NOT_DETECTED_TOPIC
from evalcoord.persistence import SQLiteDatabase, get_database
from evalcoord.transports import InMemoryTransport, get_transport
from evalcoord.transports.kafka import KafkaTransport

_ENV_VARS = [
    "EVALCOORD_CONFIG",
    "EVALCOORD_DATABASE_URL",
    "DATABASE_URL",
    "DECISION_SERVICE_URL",
    "EVALCOORD_TRANSPORT",
    "KAFKA_BROKERS",
    "KAFKA_USERNAME",
    "KAFKA_PASSWORD",
    "KAFKA_SSL_ENABLED",
    "KAFKA_GROUP_PREFIX",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults_without_config_file():
    config = load_config()

    assert config.database_url is None
    assert config.http.port == 3000
    assert config.decision_service.base_url == "http://localhost:3002"
    assert config.decision_service.timeout_seconds == 30.0
    assert config.transport.backend == "inmemory"


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "coordinator.yaml"
    config_path.write_text(
        """
database_url: sqlite:///tmp/coordinator.db
decision_service:
  base_url: http://decision:3002
  timeout_seconds: 5
transport:
  backend: kafka
  kafka:
    brokers: ["kafka-1:9092"]
    group_prefix: coordinator
"""
    )
    monkeypatch.setenv("EVALCOORD_CONFIG", str(config_path))

    config = load_config()
    assert config.database_url == "sqlite:///tmp/coordinator.db"
    assert config.decision_service.base_url == "http://decision:3002"
    assert config.decision_service.timeout_seconds == 5
    assert config.transport.backend == "kafka"
    assert config.transport.kafka.brokers == ["kafka-1:9092"]


def test_environment_overrides_file_values(tmp_path, monkeypatch):
    config_path = tmp_path / "coordinator.yaml"
    config_path.write_text("decision_service:\n  base_url: http://from-file\n")
    monkeypatch.setenv("DECISION_SERVICE_URL", "http://from-env")
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/coordinator")
    monkeypatch.setenv("KAFKA_BROKERS", "k1:9092, k2:9092")
    monkeypatch.setenv("KAFKA_USERNAME", "svc")
    monkeypatch.setenv("KAFKA_PASSWORD", "secret")
    monkeypatch.setenv("KAFKA_SSL_ENABLED", "false")

    config = load_config(str(config_path))

    assert config.decision_service.base_url == "http://from-env"
    assert config.database_url == "postgresql://u:p@db/coordinator"
    kafka = config.transport.kafka
    assert kafka.brokers == ["k1:9092", "k2:9092"]
    assert kafka.username == "svc"
    assert kafka.password == "secret"
    assert kafka.ssl is False


def test_each_topic_gets_its_own_consumer_group(monkeypatch):
    monkeypatch.setenv("KAFKA_GROUP_PREFIX", "coordinator")
    kafka = load_config().transport.kafka

    detected = kafka.group_id(DELAY_DETECTED_TOPIC)
    not_detected = kafka.group_id(DELAY_NOT_DETECTED_TOPIC)

    assert detected == "coordinator-delay-detected"
    assert not_detected == "coordinator-delay-not-detected"


def test_get_transport_uses_config(monkeypatch):
    monkeypatch.setenv("EVALCOORD_TRANSPORT", "kafka")
    monkeypatch.setenv("KAFKA_BROKERS", "confighost:9093")
    monkeypatch.setenv("KAFKA_SSL_ENABLED", "0")

    transport = get_transport(topic=DELAY_DETECTED_TOPIC)
    assert isinstance(transport, KafkaTransport)
    assert transport.brokers == ["confighost:9093"]
    assert transport.group_id == "evaluation-coordinator-delay-detected"
    assert transport.ssl is False


def test_get_transport_defaults_to_inmemory():
    assert isinstance(get_transport(), InMemoryTransport)


def test_get_transport_rejects_unknown_backend():
    with pytest.raises(ValueError):
        get_transport("carrier-pigeon")


def test_get_database_selects_backend(tmp_path):
    assert isinstance(get_database(), SQLiteDatabase)
    sqlite_db = get_database(f"sqlite://{tmp_path / 'wf.db'}")
    assert isinstance(sqlite_db, SQLiteDatabase)
    assert sqlite_db.db_path == str(tmp_path / "wf.db")
    with pytest.raises(ValueError):
        get_database("mysql://localhost/db")
