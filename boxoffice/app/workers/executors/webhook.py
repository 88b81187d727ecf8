"""Queued webhook delivery for publishers configured with SubmitWebhook."""
import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.app.core.errors import ExecutionError
from boxoffice.app.models.domain_action_orm import DomainActionORM
from boxoffice.app.models.domain_event_orm import DomainEventORM, DomainEventPublisherORM
from boxoffice.app.schemas.domain_actions import SubmitWebhookPayload
from boxoffice.app.services.domain_event_publisher import DomainEventPublisherService
from boxoffice.app.workers.executors.base import DomainActionExecutor, raise_for_rejection


class SubmitWebhookExecutor(DomainActionExecutor):

    def __init__(self, publisher_service: DomainEventPublisherService):
        self.publisher_service = publisher_service

    async def execute(self, action: DomainActionORM, session: AsyncSession) -> None:
        payload = self.payload(action, SubmitWebhookPayload)
        publisher = await session.get(DomainEventPublisherORM, payload.domain_event_publisher_id)
        if publisher is None:
            raise ExecutionError(f"Domain event publisher {payload.domain_event_publisher_id} no longer exists")
        if not publisher.webhook_url:
            raise ExecutionError(f"Domain event publisher {publisher.id} has no webhook_url")
        event = await session.get(DomainEventORM, payload.domain_event_id)
        if event is None:
            raise ExecutionError(f"Domain event {payload.domain_event_id} no longer exists")

        try:
            await self.publisher_service.deliver(publisher, event)
        except httpx.HTTPStatusError as e:
            raise_for_rejection(e, f"Webhook to {publisher.webhook_url}")
