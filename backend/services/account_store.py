"""Account Store - broker profile lookups (corretores collection)."""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from services.errors import NotFoundError

logger = logging.getLogger(__name__)


class AccountStore(ABC):
    """Persistence contract for broker accounts."""

    @abstractmethod
    async def get_account(self, account_id: str) -> Dict[str, Any]:
        pass

    async def get_plan(self, account_id: str) -> Optional[str]:
        """Raw stored plan string; validation belongs to the plan catalog."""
        account = await self.get_account(account_id)
        return account.get("plano")


class MongoAccountStore(AccountStore):

    def __init__(self, db):
        self.db = db

    async def get_account(self, account_id: str) -> Dict[str, Any]:
        account = await self.db.corretores.find_one(
            {"id": account_id},
            {"_id": 0, "id": 1, "nome": 1, "slug": 1, "plano": 1, "ativo": 1},
        )
        if not account:
            raise NotFoundError(f"Account not found: {account_id}", {"account_id": account_id})
        return account
