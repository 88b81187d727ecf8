"""
Blockchain Client Abstraction.

Ticket redemption is recorded on chain. The node API is consumed only
through this narrow interface so executors can be tested without a node.
"""
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from boxoffice.app.core.config import Settings


class BlockchainClient(ABC):
    """Abstract ticket ledger client."""

    @abstractmethod
    async def is_redeemed(self, ticket_id: str) -> bool:
        ...

    @abstractmethod
    async def redeem(self, ticket_id: str, wallet_id: str) -> str:
        """Redeem a ticket and return the transaction id."""
        ...


class HttpBlockchainClient(BlockchainClient):

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.base_url = settings.blockchain_api_url.rstrip("/")
        self.api_key = settings.blockchain_api_key
        self._client = client

    def _headers(self):
        return {"X-API-Key": self.api_key} if self.api_key else {}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        if self._client is not None:
            resp = await self._client.request(method, url, headers=self._headers(), **kwargs)
        else:
            async with httpx.AsyncClient(timeout=30.0) as client:
                resp = await client.request(method, url, headers=self._headers(), **kwargs)
        return resp

    async def is_redeemed(self, ticket_id: str) -> bool:
        resp = await self._request("GET", f"/assets/{ticket_id}")
        resp.raise_for_status()
        return bool(resp.json().get("redeemed", False))

    async def redeem(self, ticket_id: str, wallet_id: str) -> str:
        resp = await self._request(
            "POST",
            f"/assets/{ticket_id}/redeem",
            json={"wallet_id": wallet_id},
        )
        resp.raise_for_status()
        return resp.json().get("transaction_id", "")
