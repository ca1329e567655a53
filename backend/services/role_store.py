"""Role Store - persisted account -> role tags mapping (user_roles collection).

One document per (user_id, role) pair; a unique index on the pair gives the
set semantics, so add/remove are idempotent upserts/deletes.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Set

logger = logging.getLogger(__name__)


class RoleStore(ABC):
    """Persistence contract for role tags."""

    @abstractmethod
    async def get_roles(self, account_id: str) -> Set[str]:
        pass

    @abstractmethod
    async def add_role(self, account_id: str, role: str) -> bool:
        """Add a role; returns True if it was not held before."""
        pass

    @abstractmethod
    async def remove_role(self, account_id: str, role: str) -> bool:
        """Remove a role; returns True if it was held before."""
        pass


class MongoRoleStore(RoleStore):
    """MongoDB implementation backed by the user_roles collection."""

    def __init__(self, db):
        self.db = db

    async def get_roles(self, account_id: str) -> Set[str]:
        cursor = self.db.user_roles.find({"user_id": account_id}, {"_id": 0, "role": 1})
        rows = await cursor.to_list(length=100)
        return {row["role"] for row in rows}

    async def add_role(self, account_id: str, role: str) -> bool:
        result = await self.db.user_roles.update_one(
            {"user_id": account_id, "role": role},
            {"$setOnInsert": {
                "id": str(uuid.uuid4()),
                "user_id": account_id,
                "role": role,
                "created_at": datetime.now(timezone.utc),
            }},
            upsert=True,
        )
        created = result.upserted_id is not None
        if created:
            logger.info("Role added: user_id=%s role=%s", account_id, role)
        return created

    async def remove_role(self, account_id: str, role: str) -> bool:
        result = await self.db.user_roles.delete_one({"user_id": account_id, "role": role})
        removed = result.deleted_count > 0
        if removed:
            logger.info("Role removed: user_id=%s role=%s", account_id, role)
        return removed
