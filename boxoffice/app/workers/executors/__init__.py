"""Executors shipped with the action monitor, one per action type."""

from boxoffice.app.workers.executors.base import DomainActionExecutor
from boxoffice.app.workers.executors.blockchain import RedeemOnChainExecutor
from boxoffice.app.workers.executors.communication import (
    BroadcastPushNotificationExecutor,
    SendCommunicationExecutor,
)
from boxoffice.app.workers.executors.drip import (
    ProcessTransferDripExecutor,
    RegenerateDripActionsExecutor,
)
from boxoffice.app.workers.executors.webhook import SubmitWebhookExecutor

__all__ = [
    "BroadcastPushNotificationExecutor",
    "DomainActionExecutor",
    "ProcessTransferDripExecutor",
    "RedeemOnChainExecutor",
    "RegenerateDripActionsExecutor",
    "SendCommunicationExecutor",
    "SubmitWebhookExecutor",
]
