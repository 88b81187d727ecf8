"""
Domain Action Monitor.

Runs two independently stoppable background loops:

- Dispatch loop (run_actions): polls for due actions, leases them, runs
  each through its executor under a timeout and records the outcome. When a
  pass finds work it polls again immediately, otherwise it sleeps for the
  poll interval.
- Publication loop (publish_events_to_actions): hands unpublished domain
  events to their publishers, sleeping a fixed interval between cycles to
  bound the outbound call rate.

Each leased action checks out its own pooled connection before it is
leased and keeps it until its outcome is recorded. When the pool runs dry
the pass stops leasing and runs what it already holds.

Outcomes:
- Executor succeeded: Success, committed with the executor's own writes.
- ExecutionError: Errored with the message, executor writes rolled back.
- Timeout or any other exception: left Busy. The timeout is counted from
  the lease, so it fires while the lease is still held and the action
  becomes due again once the lease expires.
- No executor registered: Errored, reported as a configuration error.
- attempt_count above max_attempt_count: Errored without executing.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession, async_sessionmaker

from boxoffice.app.core.config import Settings, get_settings
from boxoffice.app.core.database import async_session_maker, store_now
from boxoffice.app.core.errors import (
    ActionNotFoundError,
    ConcurrencyError,
    ExecutionError,
    ExecutorNotFoundError,
    InvalidStateTransitionError,
    StorageError,
)
from boxoffice.app.core.logging import action_id_ctx, get_logger
from boxoffice.app.models.domain_action_orm import DomainActionORM
from boxoffice.app.services.domain_action_repository import DomainActionRepository
from boxoffice.app.services.domain_event_publisher import DomainEventPublisherService
from boxoffice.app.workers.executors import DomainActionExecutor
from boxoffice.app.workers.routing import DomainActionRouter, build_router
from boxoffice.app.workers.scheduled import sleep_until_stopped, start_loop

logger = get_logger(__name__)

DISPATCH_LOOP = "domain-action-dispatch"
PUBLISH_LOOP = "domain-event-publish"


@dataclass
class DispatchReport:
    """Outcome counts of one or more dispatch passes."""
    found: int = 0
    leased: int = 0
    skipped: int = 0
    succeeded: int = 0
    errored: int = 0
    timed_out: int = 0
    failed: int = 0
    exhausted: int = 0
    passes: int = 0
    pool_exhausted: bool = False
    configuration_errors: List[str] = field(default_factory=list)

    def merge(self, other: "DispatchReport") -> "DispatchReport":
        for name in ("found", "leased", "skipped", "succeeded", "errored",
                     "timed_out", "failed", "exhausted", "passes"):
            setattr(self, name, getattr(self, name) + getattr(other, name))
        self.pool_exhausted = self.pool_exhausted or other.pool_exhausted
        self.configuration_errors.extend(other.configuration_errors)
        return self

    def raise_for_configuration_errors(self) -> None:
        if self.configuration_errors:
            raise ExecutorNotFoundError(sorted(set(self.configuration_errors)))

    def as_dict(self) -> Dict:
        return {
            "found": self.found,
            "leased": self.leased,
            "skipped": self.skipped,
            "succeeded": self.succeeded,
            "errored": self.errored,
            "timed_out": self.timed_out,
            "failed": self.failed,
            "exhausted": self.exhausted,
            "passes": self.passes,
            "configuration_errors": sorted(set(self.configuration_errors)),
        }


@dataclass
class _LeasedAction:
    action: DomainActionORM
    executor: DomainActionExecutor
    session: AsyncSession
    connection: AsyncConnection

    async def release(self) -> None:
        await self.session.close()
        await self.connection.close()


@dataclass
class _Worker:
    name: str
    stop_event: asyncio.Event
    task: asyncio.Task


class DomainActionMonitor:

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        router: Optional[DomainActionRouter] = None,
        publisher_service: Optional[DomainEventPublisherService] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory or async_session_maker
        self.engine = engine or self.session_factory.kw["bind"]
        self.repository = DomainActionRepository(self.session_factory)
        self.publisher_service = publisher_service or DomainEventPublisherService(
            self.session_factory, self.settings
        )
        self.router = router or build_router(self.settings, publisher_service=self.publisher_service)
        self._workers: List[_Worker] = []

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def poll_delay(self, report: DispatchReport) -> float:
        """Drain eagerly, else idle: no sleep after a pass that found work."""
        if report.found == 0 or report.pool_exhausted:
            return self.settings.domain_action_poll_interval_seconds
        return 0.0

    async def find_actions(self, report: DispatchReport) -> List[_LeasedAction]:
        """Lease up to dispatch_batch_limit due actions.

        Every returned action holds a checked out connection, released by
        _execute once its outcome is recorded.
        """
        pending = await self.repository.find_pending(limit=self.settings.dispatch_batch_limit)
        report.found += len(pending)

        leased = []
        for candidate in pending:
            try:
                connection = await self.engine.connect()
            except SQLAlchemyError as e:
                logger.warning(f"Hit connection pool maximum, deferring remaining actions: {e}")
                report.pool_exhausted = True
                break

            # Bound to the connection, commits keep it checked out
            session = self.session_factory(bind=connection)
            try:
                claimed = await self._lease(candidate, session, connection, report)
            except (StorageError, SQLAlchemyError) as e:
                await session.close()
                await connection.close()
                logger.warning(f"Could not lease domain action {candidate.id}, ending pass early: {e}")
                report.pool_exhausted = True
                break
            if claimed is None:
                await session.close()
                await connection.close()
            else:
                leased.append(claimed)
        return leased

    async def _lease(
        self,
        candidate: DomainActionORM,
        session: AsyncSession,
        connection: AsyncConnection,
        report: DispatchReport,
    ) -> Optional[_LeasedAction]:
        try:
            action = await self.repository.lease(
                candidate.id, self.settings.domain_action_lease_seconds, session=session
            )
            await session.commit()
        except ConcurrencyError as e:
            await session.rollback()
            logger.debug(f"Skipping domain action: {e}")
            report.skipped += 1
            return None
        except (InvalidStateTransitionError, ActionNotFoundError) as e:
            await session.rollback()
            logger.debug(f"Skipping domain action: {e}")
            report.skipped += 1
            return None
        report.leased += 1

        if action.attempt_count > action.max_attempt_count:
            await self.repository.mark_errored(
                action.id,
                f"Exceeded maximum attempts ({action.max_attempt_count})",
                session=session,
            )
            await session.commit()
            logger.error(
                f"Domain action {action.id} ({action.action_type.value}) exceeded "
                f"{action.max_attempt_count} attempts, marked Errored"
            )
            report.exhausted += 1
            return None

        executor = self.router.get_executor_for(action.action_type)
        if executor is None:
            await self.repository.mark_errored(
                action.id,
                f"Could not find executor for action type {action.action_type.value}",
                session=session,
            )
            await session.commit()
            logger.error(
                f"No executor registered for {action.action_type.value}, "
                f"domain action {action.id} marked Errored"
            )
            report.configuration_errors.append(action.action_type.value)
            return None

        return _LeasedAction(action=action, executor=executor, session=session, connection=connection)

    async def execution_window(self, leased: _LeasedAction) -> float:
        """Seconds the executor may run, counted from the lease rather than from now.

        The rest of the batch is leased before anything runs, so the time
        spent since this lease is taken off the execution timeout.
        """
        timeout = self.settings.domain_action_execution_timeout_seconds
        margin = self.settings.domain_action_lease_seconds - timeout
        left = (leased.action.busy_until - await store_now(leased.session)).total_seconds()
        return min(timeout, left - margin)

    async def _execute(self, leased: _LeasedAction, report: DispatchReport) -> None:
        session = leased.session
        action_id = leased.action.id
        action_type = leased.action.action_type.value
        token = action_id_ctx.set(action_id)
        try:
            timeout = await self.execution_window(leased)
            if timeout <= 0:
                await session.rollback()
                logger.error(
                    f"Domain action {action_type} waited out its execution window before starting, "
                    f"will retry once the lease expires"
                )
                report.timed_out += 1
                return
            try:
                await asyncio.wait_for(leased.executor.execute(leased.action, session), timeout=timeout)
            except ExecutionError as e:
                await session.rollback()
                await self.repository.mark_errored(action_id, str(e), session=session)
                await session.commit()
                logger.warning(f"Domain action {action_type} failed: {e}")
                report.errored += 1
                return
            except asyncio.TimeoutError:
                await session.rollback()
                logger.error(
                    f"Domain action {action_type} timed out after {timeout:.1f}s, "
                    f"will retry once the lease expires"
                )
                report.timed_out += 1
                return
            except Exception as e:
                await session.rollback()
                logger.error(
                    f"Domain action {action_type} raised, will retry once the lease expires: {e}",
                    exc_info=True,
                )
                report.failed += 1
                return

            await self.repository.mark_success(action_id, session=session)
            await session.commit()
            logger.debug(f"Domain action {action_type} succeeded")
            report.succeeded += 1
        except (StorageError, SQLAlchemyError) as e:
            # Outcome not recorded; the expiring lease makes the action due again
            logger.error(f"Could not record outcome of domain action {action_type}: {e}", exc_info=True)
            report.failed += 1
        finally:
            await leased.release()
            action_id_ctx.reset(token)

    async def dispatch_pass(self) -> DispatchReport:
        """Find, lease and execute one batch of due actions."""
        report = DispatchReport(passes=1)
        leased = await self.find_actions(report)
        if leased:
            await asyncio.gather(*(self._execute(item, report) for item in leased))
        if report.found:
            logger.debug("Dispatch pass complete", extra={"extra_data": report.as_dict()})
        return report

    async def run_til_empty(self) -> DispatchReport:
        """Run dispatch passes until one finds nothing due. Returns the combined report."""
        total = DispatchReport()
        while True:
            report = await self.dispatch_pass()
            total.merge(report)
            if report.found == 0:
                break
            if report.pool_exhausted and report.leased == 0:
                # Nothing could be leased, retrying immediately would spin
                break
        if total.configuration_errors:
            logger.error(
                f"Drain finished with configuration errors for: "
                f"{', '.join(sorted(set(total.configuration_errors)))}"
            )
        return total

    async def run_actions(self, stop_event: asyncio.Event) -> None:
        logger.info("Domain action dispatch loop started")
        while not stop_event.is_set():
            report = await self.dispatch_pass()
            if report.configuration_errors:
                logger.error(
                    f"Dispatch pass hit configuration errors for: "
                    f"{', '.join(sorted(set(report.configuration_errors)))}"
                )
            if await sleep_until_stopped(stop_event, self.poll_delay(report)):
                break
        logger.info("Domain action dispatch loop stopped")

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    async def publish_events_to_actions(self, stop_event: asyncio.Event) -> None:
        logger.info("Domain event publication loop started")
        while not stop_event.is_set():
            try:
                await self.publisher_service.find_and_publish_events(self.settings.domain_event_batch_size)
            except SQLAlchemyError as e:
                raise StorageError(f"Could not publish domain events: {e}") from e
            if await sleep_until_stopped(stop_event, self.settings.domain_event_poll_interval_seconds):
                break
        logger.info("Domain event publication loop stopped")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        if self._workers:
            raise RuntimeError("Domain action monitor is already running")
        if self.settings.strict_executor_check:
            missing = self.router.unregistered_types()
            if missing:
                raise ExecutorNotFoundError([t.value for t in missing])

        for name, loop in ((DISPATCH_LOOP, self.run_actions), (PUBLISH_LOOP, self.publish_events_to_actions)):
            stop_event = asyncio.Event()
            task = start_loop(name, loop, stop_event)
            task.add_done_callback(self._log_loop_exit)
            self._workers.append(_Worker(name=name, stop_event=stop_event, task=task))
        logger.info("🚀 Domain action monitor started")

    async def stop(self) -> None:
        """Signal both loops and wait for them. Re-raises the first loop failure."""
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.stop_event.set()

        results = await asyncio.gather(*(w.task for w in workers), return_exceptions=True)
        logger.info("Domain action monitor stopped")
        for worker, result in zip(workers, results):
            if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                raise result

    def health(self) -> Dict:
        loops = {}
        for worker in self._workers:
            error = None
            if worker.task.done() and not worker.task.cancelled():
                exc = worker.task.exception()
                error = repr(exc) if exc else None
            loops[worker.name] = {"alive": not worker.task.done(), "error": error}
        return {
            "running": bool(loops) and all(loop["alive"] for loop in loops.values()),
            "loops": loops,
        }

    @staticmethod
    def _log_loop_exit(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Loop {task.get_name()} died: {exc}", exc_info=exc)
