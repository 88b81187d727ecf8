"""Services package."""

from boxoffice.app.services.domain_action_repository import DomainActionRepository, NewDomainAction
from boxoffice.app.services.domain_event_publisher import DomainEventPublisherService

__all__ = [
    "DomainActionRepository",
    "DomainEventPublisherService",
    "NewDomainAction",
]
