"""
Domain Action Schemas and Enums.

Every action type has a payload model. Payloads are validated when an action
is created and are interpreted only by the executor registered for the type.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, Field, ValidationError

from boxoffice.app.core.errors import ActionValidationError


class DomainActionStatus(str, Enum):
    PENDING = "Pending"
    BUSY = "Busy"
    SUCCESS = "Success"
    ERRORED = "Errored"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    DomainActionStatus.SUCCESS,
    DomainActionStatus.ERRORED,
    DomainActionStatus.CANCELLED,
})


class DomainActionType(str, Enum):
    SEND_EMAIL = "SendEmail"
    SEND_SMS = "SendSms"
    SEND_PUSH_NOTIFICATION = "SendPushNotification"
    BROADCAST_PUSH_NOTIFICATION = "BroadcastPushNotification"
    PROCESS_TRANSFER_DRIP = "ProcessTransferDrip"
    REGENERATE_DRIP_ACTIONS = "RegenerateDripActions"
    REDEEM_ON_CHAIN = "RedeemOnChain"
    SUBMIT_WEBHOOK = "SubmitWebhook"


class CommunicationChannelType(str, Enum):
    EMAIL = "Email"
    SMS = "Sms"
    PUSH = "Push"


class Tables(str, Enum):
    """Business tables an action or event can point back to."""
    BROADCASTS = "Broadcasts"
    DOMAIN_EVENT_PUBLISHERS = "DomainEventPublishers"
    EVENTS = "Events"
    ORDERS = "Orders"
    TICKET_INSTANCES = "TicketInstances"
    TRANSFERS = "Transfers"


class SourceOrDestination(str, Enum):
    SOURCE = "Source"
    DESTINATION = "Destination"


class CommunicationPayload(BaseModel):
    """SendEmail / SendSms / SendPushNotification."""
    destinations: List[str] = Field(min_length=1)
    source: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    template_id: Optional[str] = None
    template_data: Dict[str, Any] = Field(default_factory=dict)
    categories: List[str] = Field(default_factory=list)


class BroadcastPushNotificationPayload(BaseModel):
    event_id: str
    message: str = Field(min_length=1)
    destinations: List[str] = Field(default_factory=list)
    batch_size: int = Field(default=100, ge=1)


class ProcessTransferDripPayload(BaseModel):
    event_id: str
    event_start: datetime
    source_or_destination: SourceOrDestination
    destinations: List[str] = Field(default_factory=list)


class RegenerateDripActionsPayload(BaseModel):
    event_start: Optional[datetime] = None
    destinations: List[str] = Field(default_factory=list)


class RedeemOnChainPayload(BaseModel):
    ticket_ids: List[str] = Field(min_length=1)
    wallet_id: str


class SubmitWebhookPayload(BaseModel):
    domain_event_publisher_id: str
    domain_event_id: str


PAYLOAD_SCHEMAS: Dict[DomainActionType, Type[BaseModel]] = {
    DomainActionType.SEND_EMAIL: CommunicationPayload,
    DomainActionType.SEND_SMS: CommunicationPayload,
    DomainActionType.SEND_PUSH_NOTIFICATION: CommunicationPayload,
    DomainActionType.BROADCAST_PUSH_NOTIFICATION: BroadcastPushNotificationPayload,
    DomainActionType.PROCESS_TRANSFER_DRIP: ProcessTransferDripPayload,
    DomainActionType.REGENERATE_DRIP_ACTIONS: RegenerateDripActionsPayload,
    DomainActionType.REDEEM_ON_CHAIN: RedeemOnChainPayload,
    DomainActionType.SUBMIT_WEBHOOK: SubmitWebhookPayload,
}

CHANNEL_FOR_ACTION_TYPE: Dict[DomainActionType, CommunicationChannelType] = {
    DomainActionType.SEND_EMAIL: CommunicationChannelType.EMAIL,
    DomainActionType.SEND_SMS: CommunicationChannelType.SMS,
    DomainActionType.SEND_PUSH_NOTIFICATION: CommunicationChannelType.PUSH,
}


def parse_action_type(value) -> DomainActionType:
    try:
        return DomainActionType(value)
    except ValueError:
        raise ActionValidationError(f"Unknown domain action type: {value!r}") from None


def validate_payload(action_type: DomainActionType, payload: Any) -> Dict[str, Any]:
    """Validate a payload for its action type and return its JSON form."""
    schema = PAYLOAD_SCHEMAS[action_type]
    if isinstance(payload, schema):
        return payload.model_dump(mode="json")
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    try:
        return schema.model_validate(payload).model_dump(mode="json")
    except ValidationError as e:
        raise ActionValidationError(
            f"Invalid payload for {action_type.value}: {e.error_count()} error(s): {e.errors()[0]['msg']}"
        ) from e


def load_payload(action_type: DomainActionType, payload: Dict[str, Any]) -> BaseModel:
    """Parse a stored payload back into its model (used by executors)."""
    return PAYLOAD_SCHEMAS[action_type].model_validate(payload or {})
