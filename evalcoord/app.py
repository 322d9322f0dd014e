"""Application wiring: one object owns the HTTP server and both consumers."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import uvicorn

from .api import create_app
from .config import CoordinatorConfig, load_config
from .consumer import EventConsumer
from .gateway import DecisionGateway
from .intake import DelayDetectedHandler, DelayNotDetectedHandler
from .metrics import InMemoryMetrics, Metrics
from .orchestrator import WorkflowOrchestrator
from .persistence import Database, WorkflowStore, get_database
from .transports import BaseTransport, InMemoryTransport, get_transport

logger = logging.getLogger(__name__)


class EvaluationCoordinatorApp:
    """Owns the database, orchestrator, HTTP server and event consumers.

    ``stop()`` tears down in dependency order: no new HTTP requests or event
    deliveries, then in-flight workflows finish, then the database closes.
    """

    def __init__(
        self,
        config: Optional[CoordinatorConfig] = None,
        database: Optional[Database] = None,
        gateway: Optional[DecisionGateway] = None,
        metrics: Optional[Metrics] = None,
        transports: Optional[dict[str, BaseTransport]] = None,
        serve_http: bool = True,
    ) -> None:
        self.config = config or load_config()
        self.database = database or get_database(config=self.config)
        self.gateway = gateway or DecisionGateway(
            self.config.decision_service.base_url,
            timeout=self.config.decision_service.timeout_seconds,
        )
        self.metrics = metrics or InMemoryMetrics()
        self.store = WorkflowStore(self.database)
        self.orchestrator = WorkflowOrchestrator(self.store, self.gateway, self.metrics)
        self.http_app = create_app(self.orchestrator)

        kafka_conf = self.config.transport.kafka
        handlers = {
            kafka_conf.delay_detected_topic: DelayDetectedHandler(self.orchestrator),
            kafka_conf.delay_not_detected_topic: DelayNotDetectedHandler(
                self.orchestrator
            ),
        }
        transports = transports or self._build_transports(list(handlers))
        self.consumers = [
            EventConsumer(transports[topic], handler, topic=topic)
            for topic, handler in handlers.items()
        ]

        self._serve_http = serve_http
        self._server: Optional[uvicorn.Server] = None
        self._server_task: Optional[asyncio.Task] = None

    def _build_transports(self, topics: list[str]) -> dict[str, BaseTransport]:
        if self.config.transport.backend == "inmemory":
            shared = InMemoryTransport()
            return {topic: shared for topic in topics}
        return {
            topic: get_transport(config=self.config, topic=topic) for topic in topics
        }

    async def start(self) -> None:
        logger.info("Starting evaluation coordinator")
        await self.database.connect()
        for consumer in self.consumers:
            await consumer.start()
        if self._serve_http:
            self._server = uvicorn.Server(
                uvicorn.Config(
                    self.http_app,
                    host=self.config.http.host,
                    port=self.config.http.port,
                    log_config=None,
                )
            )
            self._server_task = asyncio.create_task(self._server.serve())
        logger.info("Evaluation coordinator started")

    async def stop(self) -> None:
        logger.info("Stopping evaluation coordinator")
        if self._server is not None and self._server_task is not None:
            self._server.should_exit = True
            await self._server_task
            self._server = None
            self._server_task = None
        for consumer in self.consumers:
            await consumer.stop()
        await self.orchestrator.drain()
        await self.gateway.aclose()
        await self.database.close()
        logger.info("Evaluation coordinator stopped")

    async def run_forever(self) -> None:
        await self.start()
        try:
            if self._server_task is not None:
                await self._server_task
            else:
                await asyncio.Event().wait()
        finally:
            await self.stop()
