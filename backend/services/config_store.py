"""Config Store - per-broker landing customization record (landing_configs).

Writes are a single find_one_and_update: $set carries only the fields in the
update, $setOnInsert the immutable identity. MongoDB applies a single-document
update atomically, so an abandoned save commits all of its fields or none.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pymongo import ReturnDocument

logger = logging.getLogger(__name__)


class ConfigStore(ABC):
    """Persistence contract for landing config records."""

    @abstractmethod
    async def get_config(self, account_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def upsert_config(self, account_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Apply fields to the record (creating it if absent); return the stored record."""
        pass


class MongoConfigStore(ConfigStore):

    def __init__(self, db):
        self.db = db

    async def get_config(self, account_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.landing_configs.find_one({"corretor_id": account_id}, {"_id": 0})

    async def upsert_config(self, account_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        update = {
            "$set": {**fields, "updated_at": now},
            "$setOnInsert": {
                "id": str(uuid.uuid4()),
                "corretor_id": account_id,
                "created_at": now,
            },
        }
        record = await self.db.landing_configs.find_one_and_update(
            {"corretor_id": account_id},
            update,
            projection={"_id": 0},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        logger.info(
            "Landing config written: corretor_id=%s fields=%s",
            account_id, sorted(fields.keys())
        )
        return record
