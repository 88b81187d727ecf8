"""
Transfer drip scheduling.

Pending ticket transfers get reminder notifications ("drips") at fixed points
before the event starts. Only the next drip is ever queued; processing it
queues the one after. When an event's start time changes the queued drip is
cancelled and recomputed.
"""
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.app.core.database import store_now, to_store_time
from boxoffice.app.core.logging import get_logger
from boxoffice.app.models.domain_action_orm import DomainActionORM
from boxoffice.app.schemas.domain_actions import (
    DomainActionStatus,
    DomainActionType,
    ProcessTransferDripPayload,
    RegenerateDripActionsPayload,
    SourceOrDestination,
    Tables,
)
from boxoffice.app.services.domain_action_repository import DomainActionRepository, NewDomainAction

logger = get_logger(__name__)

# Days before the event start at which a drip goes out, furthest first
DRIP_DAYS_PRIOR_TO_EVENT = (7, 3, 1, 0)
# Day 0 drip goes out this many hours before the start
DRIP_HOURS_PRIOR_TO_EVENT = 3


def days_until_event(event_start: datetime, now: datetime) -> int:
    hours = int((event_start - now).total_seconds() // 3600)
    days = hours // 24
    # Drips fire relative to event_start, allow for the hour lost to scheduling delay
    if days >= 0 and hours % 24 == 23:
        days += 1
    return days


def next_drip_date(event_start: Optional[datetime], now: datetime) -> Optional[datetime]:
    """When the next drip for an event should be sent, or None if no drips remain."""
    if event_start is None:
        return None
    event_start = to_store_time(event_start)
    if event_start < now:
        return None

    days = days_until_event(event_start, now)
    for drip_day in DRIP_DAYS_PRIOR_TO_EVENT:
        if days > drip_day:
            if drip_day == 0:
                return event_start - timedelta(hours=DRIP_HOURS_PRIOR_TO_EVENT)
            return event_start - timedelta(days=drip_day)
    return None


async def clear_pending_drip_actions(
    session: AsyncSession,
    event_id: str,
    repository: Optional[DomainActionRepository] = None,
) -> int:
    """Cancel the queued drip actions of an event. Returns how many were cancelled."""
    repository = repository or DomainActionRepository()
    drips = await repository.find_by_resource(
        Tables.EVENTS,
        event_id,
        DomainActionType.PROCESS_TRANSFER_DRIP,
        DomainActionStatus.PENDING,
        session=session,
    )
    for drip in drips:
        await drip.set_cancelled(session)
    if drips:
        logger.info(f"Cancelled {len(drips)} pending drip action(s) for event {event_id}")
    return len(drips)


async def create_next_transfer_drip_action(
    session: AsyncSession,
    event_id: str,
    event_start: Optional[datetime],
    destinations: Iterable[str] = (),
    source_or_destination: SourceOrDestination = SourceOrDestination.DESTINATION,
) -> Optional[DomainActionORM]:
    now = await store_now(session)
    when = next_drip_date(event_start, now)
    if when is None:
        return None

    action = NewDomainAction(
        DomainActionType.PROCESS_TRANSFER_DRIP,
        ProcessTransferDripPayload(
            event_id=event_id,
            event_start=to_store_time(event_start),
            source_or_destination=source_or_destination,
            destinations=list(destinations),
        ),
        main_table=Tables.EVENTS,
        main_table_id=event_id,
    )
    action.schedule_at(when)
    return await action.commit(session)


async def regenerate_drip_actions(
    session: AsyncSession,
    event_id: str,
    event_start: Optional[datetime] = None,
    destinations: List[str] = None,
) -> DomainActionORM:
    """Queue a RegenerateDripActions action, e.g. after an event's start time changed."""
    return await NewDomainAction(
        DomainActionType.REGENERATE_DRIP_ACTIONS,
        RegenerateDripActionsPayload(event_start=event_start, destinations=destinations or []),
        main_table=Tables.EVENTS,
        main_table_id=event_id,
    ).commit(session)
