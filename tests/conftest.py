"""
Pytest configuration and fixtures.

Each test gets its own file-backed SQLite database so that sessions use
independent connections and leasing contention behaves as in production.
"""

import asyncio
from typing import AsyncGenerator, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from boxoffice.app.core.config import Settings
from boxoffice.app.core.database import Base
from boxoffice.app.services.domain_action_repository import DomainActionRepository
from boxoffice.app.services.domain_event_publisher import DomainEventPublisherService
from boxoffice.app.workers.executors import DomainActionExecutor
from boxoffice.app.workers.domain_action_monitor import DomainActionMonitor
from boxoffice.app.workers.routing import DomainActionRouter

# Import all models to register them with Base.metadata
import boxoffice.app.models  # noqa: F401


class RecordingExecutor(DomainActionExecutor):
    """Test executor: records every call, optionally hangs or fails."""

    def __init__(self, delay: float = 0.0, error: Optional[Exception] = None, hang_first: bool = False):
        self.calls: List[str] = []
        self.delay = delay
        self.error = error
        self.hang_first = hang_first

    async def execute(self, action, session) -> None:
        self.calls.append(action.id)
        if self.hang_first and len(self.calls) == 1:
            await asyncio.sleep(3600)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_pool_size=5,
        database_max_overflow=5,
        domain_action_poll_interval_seconds=0.05,
        domain_event_poll_interval_seconds=0.05,
        domain_action_lease_seconds=2,
        domain_action_execution_timeout_seconds=0.5,
        block_external_comms=True,
        front_end_url="https://tickets.example.test",
    )


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'boxoffice_test.db'}",
        connect_args={"timeout": 15},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    """Returns the session factory for testing."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def repository(session_factory) -> DomainActionRepository:
    return DomainActionRepository(session_factory)


@pytest.fixture
def email_executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def router(email_executor) -> DomainActionRouter:
    router = DomainActionRouter()
    router.register("SendEmail", email_executor)
    return router


@pytest.fixture
def monitor(settings, session_factory, router) -> DomainActionMonitor:
    return DomainActionMonitor(
        settings=settings,
        session_factory=session_factory,
        router=router,
        publisher_service=DomainEventPublisherService(session_factory, settings),
    )


@pytest.fixture
def executor_factory():
    """Builds RecordingExecutors for tests that need more than one behaviour."""
    return RecordingExecutor
