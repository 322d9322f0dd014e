import asyncio
import uuid
from contextlib import asynccontextmanager

import pytest

from evalcoord.contracts import DecisionRequest, DecisionResult
from evalcoord.metrics import InMemoryMetrics
from evalcoord.orchestrator import WorkflowOrchestrator
from evalcoord.persistence import SQLiteDatabase, WorkflowStore


class _FailingConnection:
    def __init__(self, inner, fail_on):
        self._inner = inner
        self._fail_on = fail_on

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def execute(self, sql, *args):
        if self._fail_on in sql:
            raise RuntimeError(f"statement failed: {self._fail_on}")
        return await self._inner.execute(sql, *args)


class FailingTransactionDatabase:
    """Wraps a database so statements containing ``fail_on`` raise inside
    ``transaction()``. Statements outside a transaction pass through.
    """

    def __init__(self, inner, fail_on):
        self._inner = inner
        self._fail_on = fail_on

    def __getattr__(self, name):
        return getattr(self._inner, name)

    @asynccontextmanager
    async def transaction(self):
        async with self._inner.transaction() as conn:
            yield _FailingConnection(conn, self._fail_on)


class FakeGateway:
    """Stands in for the decision service.

    ``release`` lets a test hold every call open until it sets the event.
    """

    def __init__(self, result=None, error=None, release: asyncio.Event | None = None):
        self.result = result or {"eligible": True, "scheme": "DR15", "compensation_amount": 25}
        self.error = error
        self.release = release
        self.calls: list[tuple[DecisionRequest, str]] = []

    async def evaluate(self, request, correlation_id):
        self.calls.append((request, correlation_id))
        if self.release is not None:
            await self.release.wait()
        if self.error is not None:
            raise self.error
        return DecisionResult.model_validate(self.result)

    async def aclose(self):
        pass


@pytest.fixture
def db(tmp_path):
    return SQLiteDatabase(tmp_path / "coordinator.db")


@pytest.fixture
def store(db):
    return WorkflowStore(db)


@pytest.fixture
def metrics():
    return InMemoryMetrics()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def orchestrator(store, gateway, metrics):
    return WorkflowOrchestrator(store, gateway, metrics)


@pytest.fixture
def journey_id():
    return str(uuid.uuid4())


@pytest.fixture
def make_gateway():
    return FakeGateway


@pytest.fixture
def failing_db(db):
    """Factory for ``db`` wrapped so transactional statements matching ``fail_on`` raise."""

    def _make(fail_on):
        return FailingTransactionDatabase(db, fail_on)

    return _make
