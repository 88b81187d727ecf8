"""
ORM Models for the domain event log and its publishers.

domain_events is append-only. Publication state is tracked per publisher in
the domain_event_published side table so that each subscriber progresses
independently.
"""
import uuid
from sqlalchemy import Column, String, Text, DateTime, JSON, Boolean, Enum, Index, PrimaryKeyConstraint

from boxoffice.app.core.database import Base, utc_now
from boxoffice.app.models.domain_action_orm import _enum_values
from boxoffice.app.schemas.domain_actions import DomainActionType
from boxoffice.app.schemas.domain_events import DomainEventType


class DomainEventORM(Base):
    __tablename__ = "domain_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_type = Column(
        Enum(DomainEventType, name="domain_event_type", native_enum=False,
             values_callable=_enum_values, length=64),
        nullable=False,
        index=True,
    )
    display_text = Column(Text, nullable=False)
    event_data = Column(JSON, nullable=True)

    # Entity reference (no FK constraint, the business tables live elsewhere)
    main_table = Column(String(64), nullable=False)
    main_table_id = Column(String(36), nullable=True)
    user_id = Column(String(36), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now, index=True)

    __table_args__ = (
        Index("ix_domain_events_resource", "main_table", "main_table_id"),
    )

    def __repr__(self):
        return f"<DomainEvent {self.id} {self.event_type}>"


class DomainEventPublisherORM(Base):
    """A subscriber to a set of domain event types.

    Delivers either straight to webhook_url, or by enqueueing an action of
    domain_action_type that performs the delivery.
    """
    __tablename__ = "domain_event_publishers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), nullable=True, index=True)
    event_types = Column(JSON, nullable=False, default=list)  # List[DomainEventType values]
    webhook_url = Column(String(2048), nullable=True)
    domain_action_type = Column(
        Enum(DomainActionType, name="publisher_domain_action_type", native_enum=False,
             values_callable=_enum_values, length=64),
        nullable=True,
    )
    import_historic_events = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f"<DomainEventPublisher {self.id} types={self.event_types}>"


class DomainEventPublishedORM(Base):
    __tablename__ = "domain_event_published"

    domain_event_publisher_id = Column(String(36), nullable=False)
    domain_event_id = Column(String(36), nullable=False, index=True)
    published_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        PrimaryKeyConstraint("domain_event_publisher_id", "domain_event_id"),
    )
