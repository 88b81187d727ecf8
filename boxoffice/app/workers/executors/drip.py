"""Executors that keep transfer reminder drips on schedule."""
import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.app.core.errors import ExecutionError
from boxoffice.app.models.domain_action_orm import DomainActionORM
from boxoffice.app.schemas.domain_actions import (
    CommunicationChannelType,
    ProcessTransferDripPayload,
    RegenerateDripActionsPayload,
    SourceOrDestination,
)
from boxoffice.app.services.communication_gateway import CommunicationGateway, OutboundMessage
from boxoffice.app.services.drip_actions import (
    clear_pending_drip_actions,
    create_next_transfer_drip_action,
)
from boxoffice.app.workers.executors.base import DomainActionExecutor, raise_for_rejection

TEMPLATE_FOR_RECIPIENT = {
    SourceOrDestination.SOURCE: "transfer_tickets_drip_source",
    SourceOrDestination.DESTINATION: "transfer_tickets_drip_destination",
}


class ProcessTransferDripExecutor(DomainActionExecutor):
    """Sends one transfer reminder and queues the next one."""

    def __init__(self, gateway: CommunicationGateway):
        self.gateway = gateway

    async def execute(self, action: DomainActionORM, session: AsyncSession) -> None:
        payload = self.payload(action, ProcessTransferDripPayload)
        if payload.destinations:
            message = OutboundMessage(
                channel=CommunicationChannelType.EMAIL,
                destinations=payload.destinations,
                template_id=TEMPLATE_FOR_RECIPIENT[payload.source_or_destination],
                template_data={
                    "event_id": payload.event_id,
                    "event_start": payload.event_start.isoformat(),
                },
                categories=["transfer_drip"],
            )
            try:
                await self.gateway.send(message)
            except httpx.HTTPStatusError as e:
                raise_for_rejection(e, "Transfer drip")

        await create_next_transfer_drip_action(
            session,
            payload.event_id,
            payload.event_start,
            destinations=payload.destinations,
            source_or_destination=payload.source_or_destination,
        )


class RegenerateDripActionsExecutor(DomainActionExecutor):
    """Replaces an event's queued drip after its start time changed."""

    async def execute(self, action: DomainActionORM, session: AsyncSession) -> None:
        payload = self.payload(action, RegenerateDripActionsPayload)
        if not action.main_table_id:
            raise ExecutionError("RegenerateDripActions requires the event as main_table_id")

        await clear_pending_drip_actions(session, action.main_table_id)
        if payload.event_start is not None:
            await create_next_transfer_drip_action(
                session,
                action.main_table_id,
                payload.event_start,
                destinations=payload.destinations,
            )
