"""On-chain ticket redemption."""
import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.app.core.logging import get_logger
from boxoffice.app.models.domain_action_orm import DomainActionORM
from boxoffice.app.schemas.domain_actions import RedeemOnChainPayload
from boxoffice.app.services.blockchain_client import BlockchainClient
from boxoffice.app.workers.executors.base import DomainActionExecutor, raise_for_rejection

logger = get_logger(__name__)


class RedeemOnChainExecutor(DomainActionExecutor):
    """Redeems each ticket unless a previous attempt already did."""

    def __init__(self, client: BlockchainClient):
        self.client = client

    async def execute(self, action: DomainActionORM, session: AsyncSession) -> None:
        payload = self.payload(action, RedeemOnChainPayload)
        for ticket_id in payload.ticket_ids:
            try:
                if await self.client.is_redeemed(ticket_id):
                    logger.debug(f"Ticket {ticket_id} already redeemed on chain")
                    continue
                tx_id = await self.client.redeem(ticket_id, payload.wallet_id)
            except httpx.HTTPStatusError as e:
                raise_for_rejection(e, f"Redeem of ticket {ticket_id}")
            logger.info(f"Ticket {ticket_id} redeemed on chain (tx={tx_id})")
