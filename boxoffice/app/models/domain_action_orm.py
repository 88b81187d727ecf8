"""
Domain Action ORM.

A domain action is a durable, leasable unit of asynchronous work. Rows are
kept after completion as an audit trail.
"""
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Integer, DateTime, JSON, Text, Enum, Index, update
from sqlalchemy.exc import SQLAlchemyError

from boxoffice.app.core.database import Base, store_now, utc_now
from boxoffice.app.core.errors import ActionNotFoundError, InvalidStateTransitionError, StorageError
from boxoffice.app.schemas.domain_actions import (
    CommunicationChannelType,
    DomainActionStatus,
    DomainActionType,
)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class DomainActionORM(Base):
    __tablename__ = "domain_actions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    domain_event_id = Column(String(36), nullable=True, index=True)
    action_type = Column(
        Enum(DomainActionType, name="domain_action_type", native_enum=False,
             values_callable=_enum_values, length=64),
        nullable=False,
    )
    communication_channel_type = Column(
        Enum(CommunicationChannelType, name="communication_channel_type", native_enum=False,
             values_callable=_enum_values, length=20),
        nullable=True,
    )
    payload = Column(JSON, nullable=False, default=dict)

    # Owning business entity, e.g. ("Events", <event id>)
    main_table = Column(String(64), nullable=True)
    main_table_id = Column(String(36), nullable=True)

    status = Column(
        Enum(DomainActionStatus, name="domain_action_status", native_enum=False,
             values_callable=_enum_values, length=20),
        nullable=False,
        default=DomainActionStatus.PENDING,
    )
    scheduled_at = Column(DateTime, nullable=False)
    busy_until = Column(DateTime, nullable=True)  # lease expiry

    attempt_count = Column(Integer, nullable=False, default=0)
    max_attempt_count = Column(Integer, nullable=False, default=5)
    last_attempted_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("ix_domain_actions_due", "status", "scheduled_at"),
        Index("ix_domain_actions_resource", "main_table", "main_table_id", "action_type", "status"),
    )

    async def set_cancelled(self, session) -> "DomainActionORM":
        """Cancel this (pending) action inside the caller's transaction.

        Already finished actions are left as they are.
        """
        try:
            now = await store_now(session)
            result = await session.execute(
                update(DomainActionORM)
                .where(DomainActionORM.id == self.id)
                .where(DomainActionORM.status == DomainActionStatus.PENDING)
                .values(status=DomainActionStatus.CANCELLED, busy_until=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            current = await session.get(DomainActionORM, self.id, populate_existing=True)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not cancel domain action {self.id}: {e}") from e
        if current is None:
            raise ActionNotFoundError(f"Domain action {self.id} not found")
        if result.rowcount != 1 and not current.is_terminal:
            raise InvalidStateTransitionError(
                f"Domain action {self.id} cannot move from {current.status.value} to Cancelled"
            )
        if current is not self:
            self.status = current.status
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def lease_expired(self, now: datetime) -> bool:
        return self.busy_until is not None and self.busy_until <= now

    def __repr__(self):
        return f"<DomainAction {self.id} {self.action_type} status={self.status}>"
