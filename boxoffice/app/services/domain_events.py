"""
Domain event log access.

Business logic appends events with record_domain_event inside its own
transaction. The publisher loop reads, per publisher, the events it has not
yet been sent and records each delivery in domain_event_published.
"""
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.app.core.database import store_now
from boxoffice.app.core.logging import get_logger
from boxoffice.app.models.domain_event_orm import (
    DomainEventORM,
    DomainEventPublishedORM,
    DomainEventPublisherORM,
)
from boxoffice.app.schemas.domain_actions import DomainActionType, Tables
from boxoffice.app.schemas.domain_events import DomainEventType

logger = get_logger(__name__)


async def record_domain_event(
    session: AsyncSession,
    event_type: Union[DomainEventType, str],
    display_text: str,
    main_table: Union[Tables, str],
    main_table_id: Optional[Any] = None,
    user_id: Optional[str] = None,
    event_data: Optional[Dict[str, Any]] = None,
) -> DomainEventORM:
    """Append an event to the log. Joins the caller's transaction."""
    event = DomainEventORM(
        event_type=DomainEventType(event_type),
        display_text=display_text,
        main_table=main_table.value if isinstance(main_table, Tables) else main_table,
        main_table_id=str(main_table_id) if main_table_id is not None else None,
        user_id=user_id,
        event_data=event_data or {},
        created_at=await store_now(session),
    )
    session.add(event)
    await session.flush()
    logger.debug(f"Domain event recorded: {event.event_type.value} id={event.id}")
    return event


async def create_domain_event_publisher(
    session: AsyncSession,
    event_types: List[Union[DomainEventType, str]],
    webhook_url: Optional[str] = None,
    domain_action_type: Optional[DomainActionType] = None,
    import_historic_events: bool = False,
    organization_id: Optional[str] = None,
) -> DomainEventPublisherORM:
    """Register a subscriber. Joins the caller's transaction.

    created_at is read from the store clock, the same clock events are
    stamped with, since it decides which events count as historic.
    """
    now = await store_now(session)
    publisher = DomainEventPublisherORM(
        organization_id=organization_id,
        event_types=[DomainEventType(t).value for t in event_types],
        webhook_url=webhook_url,
        domain_action_type=domain_action_type,
        import_historic_events=import_historic_events,
        created_at=now,
        updated_at=now,
    )
    session.add(publisher)
    await session.flush()
    logger.info(f"Domain event publisher registered: id={publisher.id} types={publisher.event_types}")
    return publisher


async def find_with_unpublished_domain_events(
    session: AsyncSession,
    limit: int,
) -> List[Tuple[DomainEventPublisherORM, List[DomainEventORM]]]:
    """
    For every publisher, up to `limit` events it subscribes to and has not
    been sent yet, oldest first. Publishers with nothing to send are omitted.
    """
    publishers = (await session.execute(
        select(DomainEventPublisherORM).order_by(DomainEventPublisherORM.created_at.asc())
    )).scalars().all()

    pending = []
    for publisher in publishers:
        event_types = []
        for value in publisher.event_types or []:
            try:
                event_types.append(DomainEventType(value))
            except ValueError:
                logger.warning(f"Publisher {publisher.id} subscribes to unknown event type {value!r}")
        if not event_types:
            continue

        already_published = (
            select(DomainEventPublishedORM.domain_event_id)
            .where(DomainEventPublishedORM.domain_event_publisher_id == publisher.id)
            .where(DomainEventPublishedORM.domain_event_id == DomainEventORM.id)
            .exists()
        )
        stmt = (
            select(DomainEventORM)
            .where(DomainEventORM.event_type.in_(event_types))
            .where(~already_published)
            .order_by(DomainEventORM.created_at.asc(), DomainEventORM.id.asc())
            .limit(limit)
        )
        if not publisher.import_historic_events:
            stmt = stmt.where(DomainEventORM.created_at >= publisher.created_at)

        events = list((await session.execute(stmt)).scalars().all())
        if events:
            pending.append((publisher, events))
    return pending


async def mark_published(
    session: AsyncSession,
    publisher_id: str,
    domain_event_id: str,
) -> bool:
    """Record that a publisher has been sent an event.

    Returns False if it was already recorded.
    """
    if await is_published(session, publisher_id, domain_event_id):
        logger.debug(f"Domain event {domain_event_id} already published to {publisher_id}")
        return False
    session.add(DomainEventPublishedORM(
        domain_event_publisher_id=publisher_id,
        domain_event_id=domain_event_id,
        published_at=await store_now(session),
    ))
    await session.flush()
    return True


async def is_published(session: AsyncSession, publisher_id: str, domain_event_id: str) -> bool:
    row = await session.get(DomainEventPublishedORM, (publisher_id, domain_event_id))
    return row is not None
