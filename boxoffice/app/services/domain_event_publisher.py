"""
Domain Event Publisher Service.

Bridges the domain event log to subscribers. Each publisher receives the
events it subscribes to either directly (POST to its webhook_url) or through
a queued action of its domain_action_type, which is then retried through
the normal leasing machinery.

Direct delivery failures are logged and skipped: no publication marker is
written, so the event is offered again on the next cycle. Storage failures
propagate to the caller.
"""
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.app.core.config import Settings, get_settings
from boxoffice.app.core.database import async_session_maker
from boxoffice.app.core.errors import ActionValidationError
from boxoffice.app.core.logging import domain_event_id_ctx, get_logger
from boxoffice.app.core.resilience import CircuitBreakerOpenException, CircuitBreakerRegistry
from boxoffice.app.models.domain_event_orm import DomainEventORM, DomainEventPublisherORM
from boxoffice.app.schemas.domain_actions import SubmitWebhookPayload, Tables
from boxoffice.app.schemas.domain_events import WebhookPayload
from boxoffice.app.services.domain_action_repository import NewDomainAction
from boxoffice.app.services.domain_events import (
    find_with_unpublished_domain_events,
    mark_published,
)

logger = get_logger(__name__)


def build_webhook_payload(event: DomainEventORM, site_url: Optional[str] = None) -> WebhookPayload:
    return WebhookPayload(
        id=event.id,
        event_type=event.event_type,
        display_text=event.display_text,
        main_table=event.main_table,
        main_table_id=event.main_table_id,
        user_id=event.user_id,
        event_data=event.event_data or {},
        created_at=event.created_at,
        site_url=site_url,
    )


class DomainEventPublisherService:
    """Publishes unpublished domain events to their subscribers."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
    ):
        self.session_factory = session_factory or async_session_maker
        self.settings = settings or get_settings()
        self._http_client = http_client
        self.breakers = breakers or CircuitBreakerRegistry(failure_threshold=5, recovery_timeout=60)

    async def deliver(self, publisher: DomainEventPublisherORM, event: DomainEventORM) -> httpx.Response:
        """POST one event to a publisher's webhook. Raises httpx.HTTPError on failure."""
        body = build_webhook_payload(event, self.settings.front_end_url).model_dump(mode="json")
        headers = {"X-Domain-Event-Id": event.id, "X-Domain-Event-Type": event.event_type.value}

        async def _post() -> httpx.Response:
            if self._http_client is not None:
                resp = await self._http_client.post(
                    publisher.webhook_url, json=body, headers=headers,
                    timeout=self.settings.webhook_timeout_seconds,
                )
            else:
                async with httpx.AsyncClient(timeout=self.settings.webhook_timeout_seconds) as client:
                    resp = await client.post(publisher.webhook_url, json=body, headers=headers)
            resp.raise_for_status()
            return resp

        return await self.breakers.get(publisher.id).call(_post)

    async def publish(
        self,
        publisher: DomainEventPublisherORM,
        event: DomainEventORM,
        session: AsyncSession,
    ) -> bool:
        """Publish one event to one publisher inside the caller's transaction.

        Returns True when the event was handed over (delivered, or queued as
        an action) and marked published.
        """
        if publisher.domain_action_type is not None:
            action = NewDomainAction(
                publisher.domain_action_type,
                SubmitWebhookPayload(domain_event_publisher_id=publisher.id, domain_event_id=event.id),
                main_table=Tables.DOMAIN_EVENT_PUBLISHERS,
                main_table_id=publisher.id,
                domain_event_id=event.id,
            )
            await action.commit(session)
        elif publisher.webhook_url:
            try:
                await self.deliver(publisher, event)
            except (httpx.HTTPError, CircuitBreakerOpenException) as e:
                logger.warning(
                    f"Webhook delivery to publisher {publisher.id} failed, will retry: {e}",
                    extra={"extra_data": {"webhook_url": publisher.webhook_url}},
                )
                return False
        else:
            logger.warning(f"Publisher {publisher.id} has neither a webhook_url nor a domain_action_type")
            return False

        await mark_published(session, publisher.id, event.id)
        return True

    async def find_and_publish_events(self, limit: Optional[int] = None) -> int:
        """One publication cycle. Returns the number of events handed over."""
        limit = limit or self.settings.domain_event_batch_size
        async with self.session_factory() as session:
            pending = await find_with_unpublished_domain_events(session, limit)

        published = 0
        for publisher, events in pending:
            for event in events:
                token = domain_event_id_ctx.set(event.id)
                try:
                    async with self.session_factory() as session:
                        try:
                            done = await self.publish(publisher, event, session)
                        except ActionValidationError as e:
                            # Misconfigured publisher, the other publishers keep going
                            logger.error(f"Cannot publish to {publisher.id}: {e}")
                            await session.rollback()
                            break
                        await session.commit()
                finally:
                    domain_event_id_ctx.reset(token)
                if done:
                    published += 1

        if published:
            logger.info(f"Published {published} domain event(s)")
        return published
