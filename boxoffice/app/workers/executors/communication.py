"""Executors for outbound communications."""
import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.app.core.logging import get_logger
from boxoffice.app.models.domain_action_orm import DomainActionORM
from boxoffice.app.schemas.domain_actions import (
    CHANNEL_FOR_ACTION_TYPE,
    BroadcastPushNotificationPayload,
    CommunicationPayload,
    DomainActionType,
    Tables,
)
from boxoffice.app.services.communication_gateway import CommunicationGateway, OutboundMessage
from boxoffice.app.services.domain_action_repository import NewDomainAction
from boxoffice.app.workers.executors.base import DomainActionExecutor, raise_for_rejection

logger = get_logger(__name__)


class SendCommunicationExecutor(DomainActionExecutor):
    """SendEmail, SendSms and SendPushNotification."""

    def __init__(self, gateway: CommunicationGateway):
        self.gateway = gateway

    async def execute(self, action: DomainActionORM, session: AsyncSession) -> None:
        payload = self.payload(action, CommunicationPayload)
        channel = action.communication_channel_type or CHANNEL_FOR_ACTION_TYPE[action.action_type]
        message = OutboundMessage(channel=channel, **payload.model_dump())
        try:
            await self.gateway.send(message)
        except httpx.HTTPStatusError as e:
            raise_for_rejection(e, f"{channel.value} delivery")


class BroadcastPushNotificationExecutor(DomainActionExecutor):
    """Fans a broadcast out into one SendPushNotification action per batch of destinations.

    The fan-out is written in the monitor's transaction, so it is committed
    exactly when the broadcast is marked Success.
    """

    async def execute(self, action: DomainActionORM, session: AsyncSession) -> None:
        payload = self.payload(action, BroadcastPushNotificationPayload)
        if not payload.destinations:
            logger.info(f"Broadcast {action.id} for event {payload.event_id} has no destinations")
            return

        batches = 0
        for start in range(0, len(payload.destinations), payload.batch_size):
            await NewDomainAction(
                DomainActionType.SEND_PUSH_NOTIFICATION,
                CommunicationPayload(
                    destinations=payload.destinations[start:start + payload.batch_size],
                    body=payload.message,
                    template_data={"event_id": payload.event_id},
                ),
                main_table=action.main_table or Tables.BROADCASTS,
                main_table_id=action.main_table_id,
                domain_event_id=action.domain_event_id,
            ).commit(session)
            batches += 1
        logger.info(
            f"Broadcast {action.id} queued {batches} push notification batch(es) "
            f"for {len(payload.destinations)} destination(s)"
        )
