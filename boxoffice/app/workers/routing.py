"""
Domain Action Router.

Maps an action type to the executor that performs it. Built once at process
start and read-only afterwards. Registering a type twice replaces the earlier
executor, so deployments can override a shipped executor after build_router().
"""
from typing import Dict, List, Optional, Union

import httpx

from boxoffice.app.core.config import Settings, get_settings
from boxoffice.app.core.logging import get_logger
from boxoffice.app.schemas.domain_actions import DomainActionType, parse_action_type
from boxoffice.app.services.blockchain_client import BlockchainClient, HttpBlockchainClient
from boxoffice.app.services.communication_gateway import CommunicationGateway, HttpCommunicationGateway
from boxoffice.app.services.domain_event_publisher import DomainEventPublisherService
from boxoffice.app.workers.executors import (
    BroadcastPushNotificationExecutor,
    DomainActionExecutor,
    ProcessTransferDripExecutor,
    RedeemOnChainExecutor,
    RegenerateDripActionsExecutor,
    SendCommunicationExecutor,
    SubmitWebhookExecutor,
)

logger = get_logger(__name__)


class DomainActionRouter:

    def __init__(self):
        self._executors: Dict[DomainActionType, DomainActionExecutor] = {}

    def register(self, action_type: Union[DomainActionType, str], executor: DomainActionExecutor) -> None:
        action_type = parse_action_type(action_type)
        if action_type in self._executors:
            logger.info(
                f"Executor for {action_type.value} replaced: "
                f"{type(self._executors[action_type]).__name__} -> {type(executor).__name__}"
            )
        self._executors[action_type] = executor
        logger.debug(f"Executor registered: {action_type.value} -> {type(executor).__name__}")

    def get_executor_for(self, action_type: Union[DomainActionType, str]) -> Optional[DomainActionExecutor]:
        try:
            return self._executors.get(DomainActionType(action_type))
        except ValueError:
            return None

    def unregistered_types(self) -> List[DomainActionType]:
        return [t for t in DomainActionType if t not in self._executors]

    def __contains__(self, action_type) -> bool:
        return self.get_executor_for(action_type) is not None


def build_router(
    settings: Optional[Settings] = None,
    gateway: Optional[CommunicationGateway] = None,
    blockchain: Optional[BlockchainClient] = None,
    publisher_service: Optional[DomainEventPublisherService] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> DomainActionRouter:
    """Router with every shipped executor registered."""
    settings = settings or get_settings()
    gateway = gateway or HttpCommunicationGateway(settings, client=http_client)
    blockchain = blockchain or HttpBlockchainClient(settings, client=http_client)
    publisher_service = publisher_service or DomainEventPublisherService(
        settings=settings, http_client=http_client
    )

    router = DomainActionRouter()
    send = SendCommunicationExecutor(gateway)
    router.register(DomainActionType.SEND_EMAIL, send)
    router.register(DomainActionType.SEND_SMS, send)
    router.register(DomainActionType.SEND_PUSH_NOTIFICATION, send)
    router.register(DomainActionType.BROADCAST_PUSH_NOTIFICATION, BroadcastPushNotificationExecutor())
    router.register(DomainActionType.PROCESS_TRANSFER_DRIP, ProcessTransferDripExecutor(gateway))
    router.register(DomainActionType.REGENERATE_DRIP_ACTIONS, RegenerateDripActionsExecutor())
    router.register(DomainActionType.REDEEM_ON_CHAIN, RedeemOnChainExecutor(blockchain))
    router.register(DomainActionType.SUBMIT_WEBHOOK, SubmitWebhookExecutor(publisher_service))
    return router
