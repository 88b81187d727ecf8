"""
Domain Action Repository - durable, race-safe storage of domain actions.

Leasing is a single conditional UPDATE: it only matches a row that is
Pending, or Busy with an expired lease, so at most one worker can hold a
live lease on an action. All times are read from the store clock.

Every operation accepts an optional session. When given, the operation joins
the caller's transaction and does not commit; otherwise it opens, commits
and closes its own session.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, List, Optional, Union

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.app.core.config import get_settings
from boxoffice.app.core.database import async_session_maker, store_now, to_store_time
from boxoffice.app.core.errors import (
    ActionNotFoundError,
    ConcurrencyError,
    InvalidStateTransitionError,
    StorageError,
)
from boxoffice.app.core.logging import get_logger
from boxoffice.app.models.domain_action_orm import DomainActionORM
from boxoffice.app.schemas.domain_actions import (
    CHANNEL_FOR_ACTION_TYPE,
    DomainActionStatus,
    DomainActionType,
    Tables,
    parse_action_type,
    validate_payload,
)

logger = get_logger(__name__)

Status = DomainActionStatus


def _table_name(main_table: Union[Tables, str, None]) -> Optional[str]:
    if isinstance(main_table, Tables):
        return main_table.value
    return main_table


class NewDomainAction:
    """An action that has been validated but not yet written.

    Usage::

        action = NewDomainAction(DomainActionType.SEND_EMAIL, payload, Tables.ORDERS, order_id)
        action.schedule_at(send_at)
        await action.commit(session)
    """

    def __init__(
        self,
        action_type: Union[DomainActionType, str],
        payload: Any,
        main_table: Union[Tables, str, None] = None,
        main_table_id: Optional[Any] = None,
        domain_event_id: Optional[str] = None,
        max_attempt_count: Optional[int] = None,
    ):
        self.action_type = parse_action_type(action_type)
        self.payload = validate_payload(self.action_type, payload if payload is not None else {})
        self.main_table = _table_name(main_table)
        self.main_table_id = str(main_table_id) if main_table_id is not None else None
        self.domain_event_id = domain_event_id
        self.communication_channel_type = CHANNEL_FOR_ACTION_TYPE.get(self.action_type)
        self.max_attempt_count = max_attempt_count or get_settings().domain_action_max_attempts
        self.scheduled_at: Optional[datetime] = None

    def schedule_at(self, when: datetime) -> "NewDomainAction":
        self.scheduled_at = to_store_time(when)
        return self

    async def commit(self, session: AsyncSession) -> DomainActionORM:
        """Insert as Pending inside the caller's transaction."""
        try:
            scheduled_at = self.scheduled_at or await store_now(session)
            action = DomainActionORM(
                action_type=self.action_type,
                communication_channel_type=self.communication_channel_type,
                payload=self.payload,
                main_table=self.main_table,
                main_table_id=self.main_table_id,
                domain_event_id=self.domain_event_id,
                status=Status.PENDING,
                scheduled_at=scheduled_at,
                attempt_count=0,
                max_attempt_count=self.max_attempt_count,
            )
            session.add(action)
            await session.flush()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not create domain action: {e}") from e

        logger.debug(
            f"Domain action created: {action.action_type.value} id={action.id}",
            extra={"extra_data": {
                "action_type": action.action_type.value,
                "scheduled_at": scheduled_at.isoformat(),
                "main_table": self.main_table,
                "main_table_id": self.main_table_id,
            }},
        )
        return action


class DomainActionRepository:
    """Repository for domain action storage and state transitions."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory or async_session_maker

    @asynccontextmanager
    async def _get_session(self, session: Optional[AsyncSession] = None):
        if session is not None:
            yield session
        else:
            async with self.session_factory() as new_session:
                try:
                    yield new_session
                    await new_session.commit()
                except Exception:
                    await new_session.rollback()
                    raise
                finally:
                    await new_session.close()

    @asynccontextmanager
    async def _scope(self, operation: str, session: Optional[AsyncSession] = None):
        """Session scope that reports store failures as StorageError."""
        try:
            async with self._get_session(session) as s:
                yield s
        except SQLAlchemyError as e:
            raise StorageError(f"Could not {operation}: {e}") from e

    async def create(
        self,
        action_type: Union[DomainActionType, str],
        payload: Any,
        main_table: Union[Tables, str, None] = None,
        main_table_id: Optional[Any] = None,
        scheduled_at: Optional[datetime] = None,
        domain_event_id: Optional[str] = None,
        session: Optional[AsyncSession] = None,
    ) -> DomainActionORM:
        """Validate and insert a Pending action, due at scheduled_at (default: now)."""
        new_action = NewDomainAction(
            action_type,
            payload,
            main_table=main_table,
            main_table_id=main_table_id,
            domain_event_id=domain_event_id,
        )
        if scheduled_at is not None:
            new_action.schedule_at(scheduled_at)
        async with self._scope("create domain action", session) as s:
            return await new_action.commit(s)

    async def get(self, action_id: str, session: Optional[AsyncSession] = None) -> DomainActionORM:
        async with self._scope("load domain action", session) as s:
            action = await s.get(DomainActionORM, action_id, populate_existing=True)
            if action is None:
                raise ActionNotFoundError(f"Domain action {action_id} not found")
            return action

    async def find_pending(
        self,
        limit: Optional[int] = None,
        session: Optional[AsyncSession] = None,
    ) -> List[DomainActionORM]:
        """Due, unleased actions, oldest scheduled_at first.

        Busy actions whose lease has expired are due again.
        """
        async with self._scope("find pending domain actions", session) as s:
            now = await store_now(s)
            stmt = (
                select(DomainActionORM)
                .where(DomainActionORM.scheduled_at <= now)
                .where(or_(
                    DomainActionORM.status == Status.PENDING,
                    and_(
                        DomainActionORM.status == Status.BUSY,
                        DomainActionORM.busy_until <= now,
                    ),
                ))
                .order_by(DomainActionORM.scheduled_at.asc(), DomainActionORM.created_at.asc())
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            result = await s.execute(stmt)
            return list(result.scalars().all())

    async def find_by_resource(
        self,
        main_table: Union[Tables, str],
        main_table_id: Any,
        action_type: Union[DomainActionType, str],
        status: DomainActionStatus,
        session: Optional[AsyncSession] = None,
    ) -> List[DomainActionORM]:
        async with self._scope("find domain actions by resource", session) as s:
            stmt = (
                select(DomainActionORM)
                .where(DomainActionORM.main_table == _table_name(main_table))
                .where(DomainActionORM.main_table_id == str(main_table_id))
                .where(DomainActionORM.action_type == parse_action_type(action_type))
                .where(DomainActionORM.status == DomainActionStatus(status))
                .order_by(DomainActionORM.scheduled_at.asc())
            )
            result = await s.execute(stmt)
            return list(result.scalars().all())

    async def lease(
        self,
        action_id: str,
        lease_duration_seconds: float,
        session: Optional[AsyncSession] = None,
    ) -> DomainActionORM:
        """Take the lease on an action: Pending (or lease-expired Busy) -> Busy.

        Raises ConcurrencyError when another worker holds a live lease.
        Each successful lease counts as one attempt.
        """
        async with self._scope("lease domain action", session) as s:
            now = await store_now(s)
            busy_until = now + timedelta(seconds=lease_duration_seconds)
            result = await s.execute(
                update(DomainActionORM)
                .where(DomainActionORM.id == action_id)
                .where(or_(
                    DomainActionORM.status == Status.PENDING,
                    and_(
                        DomainActionORM.status == Status.BUSY,
                        DomainActionORM.busy_until <= now,
                    ),
                ))
                .values(
                    status=Status.BUSY,
                    busy_until=busy_until,
                    last_attempted_at=now,
                    attempt_count=DomainActionORM.attempt_count + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            action = await s.get(DomainActionORM, action_id, populate_existing=True)
            if action is None:
                raise ActionNotFoundError(f"Domain action {action_id} not found")
            if result.rowcount != 1:
                if action.is_terminal:
                    raise InvalidStateTransitionError(
                        f"Domain action {action_id} is {action.status.value} and cannot be leased"
                    )
                raise ConcurrencyError(
                    f"Domain action {action_id} is leased by another worker until {action.busy_until}"
                )
            return action

    async def mark_success(self, action_id: str, session: Optional[AsyncSession] = None) -> DomainActionORM:
        return await self._transition(
            action_id, Status.SUCCESS, {Status.PENDING, Status.BUSY}, session,
        )

    async def mark_errored(
        self,
        action_id: str,
        message: str,
        session: Optional[AsyncSession] = None,
    ) -> DomainActionORM:
        return await self._transition(
            action_id, Status.ERRORED, {Status.PENDING, Status.BUSY}, session, last_error=message,
        )

    async def mark_cancelled(self, action_id: str, session: Optional[AsyncSession] = None) -> DomainActionORM:
        # Only work nobody has picked up can be cancelled
        return await self._transition(action_id, Status.CANCELLED, {Status.PENDING}, session)

    async def _transition(
        self,
        action_id: str,
        target: DomainActionStatus,
        allowed_from: set,
        session: Optional[AsyncSession],
        **values,
    ) -> DomainActionORM:
        async with self._scope(f"mark domain action {target.value}", session) as s:
            now = await store_now(s)
            result = await s.execute(
                update(DomainActionORM)
                .where(DomainActionORM.id == action_id)
                .where(DomainActionORM.status.in_(list(allowed_from)))
                .values(status=target, busy_until=None, updated_at=now, **values)
                .execution_options(synchronize_session=False)
            )
            action = await s.get(DomainActionORM, action_id, populate_existing=True)
            if action is None:
                raise ActionNotFoundError(f"Domain action {action_id} not found")
            if result.rowcount != 1:
                if action.is_terminal:
                    # Terminal transitions are idempotent
                    logger.debug(
                        f"Domain action {action_id} already {action.status.value}, "
                        f"ignoring transition to {target.value}"
                    )
                    return action
                raise InvalidStateTransitionError(
                    f"Domain action {action_id} cannot move from {action.status.value} to {target.value}"
                )
            return action
