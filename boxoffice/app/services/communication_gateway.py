"""
Communication Gateway Abstraction Layer.

Provides a provider-agnostic interface for outbound email, SMS and push
messages. Template rendering belongs to the provider; this layer only
forwards the message and its template data.

The HttpCommunicationGateway posts messages to a single delivery API. When
block_external_comms is set (test and staging deployments) messages are
logged and dropped instead of sent.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from boxoffice.app.core.config import Settings
from boxoffice.app.core.logging import get_logger
from boxoffice.app.schemas.domain_actions import CommunicationChannelType

logger = get_logger(__name__)


class OutboundMessage(BaseModel):
    channel: CommunicationChannelType
    destinations: List[str] = Field(min_length=1)
    source: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    template_id: Optional[str] = None
    template_data: Dict[str, Any] = Field(default_factory=dict)
    categories: List[str] = Field(default_factory=list)


class CommunicationGateway(ABC):
    """Abstract outbound messaging gateway."""

    @abstractmethod
    async def send(self, message: OutboundMessage) -> None:
        """Deliver a message. Raises httpx.HTTPError on delivery failure."""
        ...


class HttpCommunicationGateway(CommunicationGateway):

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._client = client

    def default_source(self, channel: CommunicationChannelType) -> str:
        if channel == CommunicationChannelType.SMS:
            return self.settings.communication_default_source_phone
        return self.settings.communication_default_source_email

    async def send(self, message: OutboundMessage) -> None:
        source = message.source or self.default_source(message.channel)
        if self.settings.block_external_comms:
            logger.info(
                f"External communications blocked, not sending {message.channel.value} "
                f"to {len(message.destinations)} destination(s)",
                extra={"extra_data": {"template_id": message.template_id, "source": source}},
            )
            return

        body = message.model_dump(mode="json")
        body["source"] = source
        headers = {}
        if self.settings.communication_api_key:
            headers["Authorization"] = f"Bearer {self.settings.communication_api_key}"

        url = f"{self.settings.communication_api_url}/v1/messages"
        if self._client is not None:
            resp = await self._client.post(url, json=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=30.0) as client:
                resp = await client.post(url, json=body, headers=headers)
        resp.raise_for_status()
        logger.info(
            f"Sent {message.channel.value} to {len(message.destinations)} destination(s)"
        )
