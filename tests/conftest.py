from __future__ import annotations

from collections.abc import Iterable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from apps.api.metrics import MetricsRegistry, register_default_metrics
from apps.api.ops.simulator import TransitionSimulator
from apps.api.services.ops import OpsLogRepository, OpsService
from apps.api.services.tickets import TicketRepository, TicketService


class ScriptedRandom:
    """Random source returning a fixed sequence of draws."""

    def __init__(self, draws: Iterable[float]):
        self._draws = list(draws)
        self.calls = 0

    def random(self) -> float:
        if not self._draws:
            raise AssertionError("ScriptedRandom ran out of draws")
        self.calls += 1
        return self._draws.pop(0)


@pytest.fixture
def scripted_random():
    return ScriptedRandom


@pytest_asyncio.fixture
async def engine() -> AsyncEngine:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def ticket_repository(session_factory, engine) -> TicketRepository:
    return TicketRepository(session_factory, engine=engine)


@pytest.fixture
def log_repository(session_factory) -> OpsLogRepository:
    return OpsLogRepository(session_factory)


@pytest.fixture
def ticket_service(ticket_repository) -> TicketService:
    return TicketService(ticket_repository)


@pytest.fixture
def metrics() -> MetricsRegistry:
    return register_default_metrics(MetricsRegistry())


@pytest.fixture
def make_ops_service(ticket_repository, log_repository, metrics):
    def factory(draws: Iterable[float]) -> OpsService:
        simulator = TransitionSimulator(rng=ScriptedRandom(draws))
        return OpsService(ticket_repository, log_repository, simulator=simulator, metrics=metrics)

    return factory
