"""
Domain Event Schema Definitions.

Domain events are an append-only log of things that happened in the
ticketing domain. Publishers subscribe to event types and receive the
WebhookPayload body below.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class DomainEventType(str, Enum):
    BROADCAST_SCHEDULED = "BroadcastScheduled"
    EVENT_CANCELLED = "EventCancelled"
    EVENT_CREATED = "EventCreated"
    EVENT_DELETED = "EventDeleted"
    EVENT_PUBLISHED = "EventPublished"
    EVENT_UNPUBLISHED = "EventUnpublished"
    EVENT_UPDATED = "EventUpdated"
    GENRES_UPDATED = "GenresUpdated"
    ORDER_COMPLETED = "OrderCompleted"
    ORDER_REFUND = "OrderRefund"
    TICKET_REDEEMED = "TicketRedeemed"
    TRANSFER_TICKET_CANCELLED = "TransferTicketCancelled"
    TRANSFER_TICKET_COMPLETED = "TransferTicketCompleted"
    TRANSFER_TICKET_DRIP_DESTINATION_SENT = "TransferTicketDripDestinationSent"
    TRANSFER_TICKET_DRIP_SOURCE_SENT = "TransferTicketDripSourceSent"
    TRANSFER_TICKET_STARTED = "TransferTicketStarted"


class WebhookPayload(BaseModel):
    """Body POSTed to a publisher's webhook for one domain event."""

    id: str = Field(description="Domain event id, stable across redeliveries")
    event_type: DomainEventType
    display_text: str
    main_table: Optional[str] = None
    main_table_id: Optional[str] = None
    user_id: Optional[str] = None
    event_data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    site_url: Optional[str] = Field(
        default=None,
        description="Front end URL of the deployment that emitted the event"
    )
