"""Models package."""

from boxoffice.app.models.domain_action_orm import DomainActionORM
from boxoffice.app.models.domain_event_orm import (
    DomainEventORM,
    DomainEventPublisherORM,
    DomainEventPublishedORM,
)

__all__ = [
    "DomainActionORM",
    "DomainEventORM",
    "DomainEventPublisherORM",
    "DomainEventPublishedORM",
]
