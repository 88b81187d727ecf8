"""
Executor interface.

An executor performs the side effect of one action type. It is handed the
leased action and a session bound to a transaction the monitor commits
together with the action's Success status.

Raise ExecutionError for a permanent failure of this attempt (the action is
marked Errored). Any other exception is treated as transient: the action
stays Busy and is retried once its lease expires, so side effects should be
idempotent where the collaborator allows it.
"""
from abc import ABC, abstractmethod
from typing import Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.app.core.errors import ExecutionError
from boxoffice.app.models.domain_action_orm import DomainActionORM
from boxoffice.app.schemas.domain_actions import load_payload

PayloadT = TypeVar("PayloadT", bound=BaseModel)


class DomainActionExecutor(ABC):

    @abstractmethod
    async def execute(self, action: DomainActionORM, session: AsyncSession) -> None:
        ...

    def payload(self, action: DomainActionORM, expected: Type[PayloadT]) -> PayloadT:
        """Parse the stored payload. A payload that no longer parses cannot succeed on retry."""
        try:
            payload = load_payload(action.action_type, action.payload)
        except ValidationError as e:
            raise ExecutionError(f"Stored payload is invalid: {e.errors()[0]['msg']}") from e
        if not isinstance(payload, expected):
            raise ExecutionError(
                f"{type(self).__name__} cannot execute {action.action_type.value} actions"
            )
        return payload


def raise_for_rejection(e: httpx.HTTPStatusError, what: str) -> None:
    """4xx means the request itself is wrong and will not succeed on retry."""
    if 400 <= e.response.status_code < 500 and e.response.status_code != 429:
        raise ExecutionError(f"{what} rejected with HTTP {e.response.status_code}") from e
    raise e
