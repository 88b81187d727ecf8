"""
Integration tests for the domain action monitor: dispatch passes, outcome
reconciliation, the drain mode and the loop lifecycle.
"""
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool

from boxoffice.app.core.database import utc_now
from boxoffice.app.core.errors import ExecutionError, ExecutorNotFoundError
from boxoffice.app.schemas.domain_actions import DomainActionStatus, DomainActionType
from boxoffice.app.services.domain_action_repository import NewDomainAction
from boxoffice.app.workers.domain_action_monitor import (
    DISPATCH_LOOP,
    PUBLISH_LOOP,
    DispatchReport,
    DomainActionMonitor,
)
from boxoffice.app.workers.executors import DomainActionExecutor

EMAIL = {"destinations": ["fan@example.com"]}
SMS = {"destinations": ["+15550100"]}


class WriteThenFailExecutor(DomainActionExecutor):
    """Queues a follow-up action, then reports a permanent failure."""

    async def execute(self, action, session):
        await NewDomainAction(DomainActionType.SEND_EMAIL, EMAIL).commit(session)
        raise ExecutionError("template rendering failed")


class FailingPublisherService:
    async def find_and_publish_events(self, limit=None):
        raise RuntimeError("event log unavailable")


async def wait_for_status(repository, action_id, status, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        action = await repository.get(action_id)
        if action.status == status or asyncio.get_running_loop().time() > deadline:
            return action
        await asyncio.sleep(0.05)


@pytest.fixture
async def pool_of(tmp_path, engine):
    """Builds engines on the test database with a fixed size connection pool."""
    engines = []

    def build(size: int):
        small = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'boxoffice_test.db'}",
            poolclass=AsyncAdaptedQueuePool,
            pool_size=size,
            max_overflow=0,
            pool_timeout=0.2,
            connect_args={"timeout": 15},
        )
        engines.append(small)
        return small

    yield build
    for small in engines:
        await small.dispose()


def monitor_on(small_engine, settings, router, batch_size=None):
    if batch_size is not None:
        settings = settings.model_copy(update={"domain_action_batch_size": batch_size})
    return DomainActionMonitor(
        settings=settings,
        session_factory=async_sessionmaker(small_engine, class_=AsyncSession, expire_on_commit=False),
        router=router,
    )


@pytest.mark.asyncio
async def test_due_action_runs_to_success(monitor, repository, email_executor):
    action = await repository.create(DomainActionType.SEND_EMAIL, EMAIL)

    report = await monitor.dispatch_pass()

    stored = await repository.get(action.id)
    assert stored.status == DomainActionStatus.SUCCESS
    assert stored.busy_until is None
    assert stored.attempt_count == 1
    assert email_executor.calls == [action.id]
    assert report.found == 1
    assert report.leased == 1
    assert report.succeeded == 1


@pytest.mark.asyncio
async def test_future_action_is_not_dispatched(monitor, repository, email_executor):
    action = await repository.create(
        DomainActionType.SEND_EMAIL, EMAIL, scheduled_at=utc_now() + timedelta(hours=1)
    )

    report = await monitor.dispatch_pass()

    assert (await repository.get(action.id)).status == DomainActionStatus.PENDING
    assert email_executor.calls == []
    assert report.found == 0


@pytest.mark.asyncio
async def test_stuck_lease_is_released_and_executed(monitor, repository, email_executor):
    action = await repository.create(DomainActionType.SEND_EMAIL, EMAIL)
    # Simulates a worker that died holding the lease
    await repository.lease(action.id, 1)

    await asyncio.sleep(1.2)
    await monitor.dispatch_pass()

    stored = await repository.get(action.id)
    assert stored.status == DomainActionStatus.SUCCESS
    assert stored.attempt_count == 2
    assert email_executor.calls == [action.id]


@pytest.mark.asyncio
async def test_missing_executor_errors_action_and_batch_continues(monitor, repository, email_executor):
    unrouted = await repository.create(DomainActionType.SEND_SMS, SMS)
    routed = await repository.create(DomainActionType.SEND_EMAIL, EMAIL)

    report = await monitor.dispatch_pass()

    errored = await repository.get(unrouted.id)
    assert errored.status == DomainActionStatus.ERRORED
    assert "SendSms" in errored.last_error
    assert (await repository.get(routed.id)).status == DomainActionStatus.SUCCESS
    assert email_executor.calls == [routed.id]
    assert report.configuration_errors == ["SendSms"]
    with pytest.raises(ExecutorNotFoundError) as exc_info:
        report.raise_for_configuration_errors()
    assert exc_info.value.action_types == ["SendSms"]


@pytest.mark.asyncio
async def test_execution_error_marks_errored_and_discards_executor_writes(monitor, router, repository):
    router.register(DomainActionType.SEND_SMS, WriteThenFailExecutor())
    action = await repository.create(DomainActionType.SEND_SMS, SMS)

    report = await monitor.dispatch_pass()

    stored = await repository.get(action.id)
    assert stored.status == DomainActionStatus.ERRORED
    assert stored.last_error == "template rendering failed"
    assert report.errored == 1
    # The follow-up the executor queued was rolled back with it
    assert await repository.find_pending() == []


@pytest.mark.asyncio
async def test_unexpected_executor_exception_leaves_action_busy(monitor, router, repository, executor_factory):
    router.register(DomainActionType.SEND_SMS, executor_factory(error=ConnectionResetError("peer reset")))
    action = await repository.create(DomainActionType.SEND_SMS, SMS)

    report = await monitor.dispatch_pass()

    stored = await repository.get(action.id)
    assert stored.status == DomainActionStatus.BUSY
    assert stored.busy_until is not None
    assert report.failed == 1


@pytest.mark.asyncio
async def test_timed_out_action_is_retried_after_lease_expiry(monitor, router, repository, executor_factory):
    hanging = executor_factory(hang_first=True)
    router.register(DomainActionType.SEND_SMS, hanging)
    action = await repository.create(DomainActionType.SEND_SMS, SMS)

    first = await monitor.dispatch_pass()
    assert first.timed_out == 1
    assert (await repository.get(action.id)).status == DomainActionStatus.BUSY

    # Lease (2s) outlives the execution timeout (0.5s): not re-run yet
    second = await monitor.dispatch_pass()
    assert second.found == 0
    assert hanging.calls == [action.id]

    await asyncio.sleep(2.1)
    third = await monitor.dispatch_pass()

    stored = await repository.get(action.id)
    assert third.succeeded == 1
    assert stored.status == DomainActionStatus.SUCCESS
    assert stored.attempt_count == 2
    assert hanging.calls == [action.id, action.id]


@pytest.mark.asyncio
async def test_action_over_attempt_ceiling_is_errored_without_executing(
    monitor, repository, session_factory, email_executor
):
    async with session_factory() as session:
        action = await NewDomainAction(DomainActionType.SEND_EMAIL, EMAIL, max_attempt_count=1).commit(session)
        await session.commit()
    await repository.lease(action.id, 1)
    await asyncio.sleep(1.2)

    report = await monitor.dispatch_pass()

    stored = await repository.get(action.id)
    assert stored.status == DomainActionStatus.ERRORED
    assert "maximum attempts" in stored.last_error
    assert stored.attempt_count == 2
    assert email_executor.calls == []
    assert report.exhausted == 1


@pytest.mark.asyncio
async def test_dispatch_pass_is_bounded_by_batch_limit(settings, session_factory, router, repository):
    monitor = DomainActionMonitor(
        settings=settings.model_copy(update={"domain_action_batch_size": 2}),
        session_factory=session_factory,
        router=router,
    )
    for _ in range(3):
        await repository.create(DomainActionType.SEND_EMAIL, EMAIL)

    report = await monitor.dispatch_pass()

    assert report.found == 2
    assert report.succeeded == 2
    assert len(await repository.find_pending()) == 1


@pytest.mark.asyncio
async def test_leased_actions_hold_a_connection_until_recorded(settings, router, repository, pool_of):
    small = pool_of(2)
    monitor = monitor_on(small, settings, router, batch_size=4)
    for _ in range(4):
        await repository.create(DomainActionType.SEND_EMAIL, EMAIL)

    report = DispatchReport()
    leased = await monitor.find_actions(report)
    try:
        assert report.found == 4
        assert len(leased) == 2
        assert report.pool_exhausted
        assert small.sync_engine.pool.checkedout() == 2
    finally:
        await asyncio.gather(*(monitor._execute(item, report) for item in leased))

    assert small.sync_engine.pool.checkedout() == 0
    assert report.succeeded == 2
    deferred = await repository.find_pending()
    assert len(deferred) == 2
    assert all(action.attempt_count == 0 for action in deferred)


@pytest.mark.asyncio
async def test_run_til_empty_drains_through_a_small_pool(settings, router, repository, email_executor, pool_of):
    small = pool_of(2)
    monitor = monitor_on(small, settings, router, batch_size=4)
    due = [await repository.create(DomainActionType.SEND_EMAIL, EMAIL) for _ in range(4)]

    report = await monitor.run_til_empty()

    assert report.pool_exhausted
    assert report.succeeded == 4
    assert report.failed == 0
    assert sorted(email_executor.calls) == sorted(a.id for a in due)
    assert small.sync_engine.pool.checkedout() == 0


@pytest.mark.asyncio
async def test_pass_stops_leasing_when_no_connection_is_free(
    settings, router, repository, email_executor, pool_of, monkeypatch
):
    small = pool_of(1)
    monitor = monitor_on(small, settings, router)
    action = await repository.create(DomainActionType.SEND_EMAIL, EMAIL)

    held = []
    find_pending = monitor.repository.find_pending

    async def find_pending_then_take_last_connection(*args, **kwargs):
        pending = await find_pending(*args, **kwargs)
        held.append(await small.connect())
        return pending

    monkeypatch.setattr(monitor.repository, "find_pending", find_pending_then_take_last_connection)
    try:
        report = await monitor.run_til_empty()
    finally:
        for connection in held:
            await connection.close()

    assert report.passes == 1
    assert report.found == 1
    assert report.leased == 0
    assert report.pool_exhausted
    assert monitor.poll_delay(report) == settings.domain_action_poll_interval_seconds
    stored = await repository.get(action.id)
    assert stored.status == DomainActionStatus.PENDING
    assert stored.attempt_count == 0
    assert email_executor.calls == []


@pytest.mark.asyncio
async def test_execution_timeout_counts_from_the_lease(monitor, router, repository, executor_factory):
    hanging = executor_factory(hang_first=True)
    router.register("SendEmail", hanging)
    action = await repository.create(DomainActionType.SEND_EMAIL, EMAIL)

    report = DispatchReport()
    [leased] = await monitor.find_actions(report)
    # Stands in for the time spent leasing the rest of a batch
    await asyncio.sleep(0.3)
    assert await monitor.execution_window(leased) < 0.3

    loop = asyncio.get_running_loop()
    started = loop.time()
    await monitor._execute(leased, report)
    elapsed = loop.time() - started

    assert report.timed_out == 1
    assert elapsed < 0.45
    stored = await repository.get(action.id)
    assert stored.status == DomainActionStatus.BUSY
    assert stored.busy_until > utc_now()


@pytest.mark.asyncio
async def test_action_is_not_started_once_its_window_has_passed(monitor, repository, email_executor):
    action = await repository.create(DomainActionType.SEND_EMAIL, EMAIL)

    report = DispatchReport()
    [leased] = await monitor.find_actions(report)
    await asyncio.sleep(0.6)
    await monitor._execute(leased, report)

    assert email_executor.calls == []
    assert report.timed_out == 1
    stored = await repository.get(action.id)
    assert stored.status == DomainActionStatus.BUSY
    assert stored.attempt_count == 1


@pytest.mark.asyncio
async def test_run_til_empty_drains_due_actions(monitor, repository, email_executor):
    due = [await repository.create(DomainActionType.SEND_EMAIL, EMAIL) for _ in range(5)]
    future = await repository.create(
        DomainActionType.SEND_EMAIL, EMAIL, scheduled_at=utc_now() + timedelta(hours=1)
    )

    report = await monitor.run_til_empty()

    assert report.succeeded == 5
    assert report.passes >= 2
    assert sorted(email_executor.calls) == sorted(a.id for a in due)
    assert (await repository.get(future.id)).status == DomainActionStatus.PENDING
    assert await repository.find_pending() == []


@pytest.mark.asyncio
async def test_run_til_empty_reports_configuration_errors(monitor, repository):
    await repository.create(DomainActionType.REDEEM_ON_CHAIN, {"ticket_ids": ["t-1"], "wallet_id": "w-1"})
    await repository.create(DomainActionType.SEND_EMAIL, EMAIL)

    report = await monitor.run_til_empty()

    assert report.succeeded == 1
    assert report.configuration_errors == ["RedeemOnChain"]


@pytest.mark.asyncio
async def test_run_til_empty_on_empty_queue(monitor):
    report = await monitor.run_til_empty()
    assert report.passes == 1
    assert report.found == 0


def test_poll_delay_drains_eagerly_then_idles(monitor, settings):
    assert monitor.poll_delay(DispatchReport(found=0)) == settings.domain_action_poll_interval_seconds
    assert monitor.poll_delay(DispatchReport(found=3, succeeded=3)) == 0.0
    assert monitor.poll_delay(DispatchReport(found=3, pool_exhausted=True)) == settings.domain_action_poll_interval_seconds


@pytest.mark.asyncio
async def test_start_runs_both_loops_until_stopped(monitor, repository, email_executor):
    await monitor.start()
    try:
        health = monitor.health()
        assert health["running"] is True
        assert set(health["loops"]) == {DISPATCH_LOOP, PUBLISH_LOOP}

        action = await repository.create(DomainActionType.SEND_EMAIL, EMAIL)
        stored = await wait_for_status(repository, action.id, DomainActionStatus.SUCCESS)
        assert stored.status == DomainActionStatus.SUCCESS
        assert email_executor.calls == [action.id]
    finally:
        await monitor.stop()

    assert monitor.is_running is False
    assert monitor.health()["running"] is False


@pytest.mark.asyncio
async def test_start_twice_is_rejected(monitor):
    await monitor.start()
    try:
        with pytest.raises(RuntimeError):
            await monitor.start()
    finally:
        await monitor.stop()


@pytest.mark.asyncio
async def test_stop_surfaces_loop_failure(settings, session_factory, router):
    monitor = DomainActionMonitor(
        settings=settings,
        session_factory=session_factory,
        router=router,
        publisher_service=FailingPublisherService(),
    )
    await monitor.start()
    await asyncio.sleep(0.2)

    health = monitor.health()
    assert health["running"] is False
    assert health["loops"][PUBLISH_LOOP]["alive"] is False
    assert "event log unavailable" in health["loops"][PUBLISH_LOOP]["error"]
    assert health["loops"][DISPATCH_LOOP]["alive"] is True

    with pytest.raises(RuntimeError, match="event log unavailable"):
        await monitor.stop()


@pytest.mark.asyncio
async def test_strict_executor_check_refuses_to_start(settings, session_factory, router):
    monitor = DomainActionMonitor(
        settings=settings.model_copy(update={"strict_executor_check": True}),
        session_factory=session_factory,
        router=router,
    )

    with pytest.raises(ExecutorNotFoundError) as exc_info:
        await monitor.start()

    assert "SendSms" in exc_info.value.action_types
    assert "SendEmail" not in exc_info.value.action_types
    assert monitor.is_running is False
