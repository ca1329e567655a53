"""Editor Session - staged edits applied only after a confirmed save.

The session keeps the last confirmed record and a draft. Staging touches
the draft only; commit sends the changed fields to ConfigResolver.save and
promotes the draft on success. Any failure (including cancellation) reverts
the draft to the last confirmed state and the error propagates.
"""
import logging
from typing import Any, Dict, Optional

from models import EDITABLE_CONFIG_FIELDS, LandingConfigRecord
from services.config_resolver import ConfigResolver

logger = logging.getLogger(__name__)


def _editable(record: Optional[LandingConfigRecord]) -> Dict[str, Any]:
    if record is None:
        return {field: None for field in EDITABLE_CONFIG_FIELDS}
    data = record.model_dump(mode="json")
    return {field: data.get(field) for field in EDITABLE_CONFIG_FIELDS}


class EditorSession:

    def __init__(self, resolver: ConfigResolver, account_id: str, actor_id: Optional[str] = None):
        self.resolver = resolver
        self.account_id = account_id
        self.actor_id = actor_id
        self._confirmed: Dict[str, Any] = _editable(None)
        self._draft: Dict[str, Any] = dict(self._confirmed)

    async def load(self) -> Dict[str, Any]:
        record = await self.resolver.get_record(self.account_id)
        self._confirmed = _editable(record)
        self._draft = dict(self._confirmed)
        return self.confirmed

    @property
    def confirmed(self) -> Dict[str, Any]:
        return dict(self._confirmed)

    @property
    def draft(self) -> Dict[str, Any]:
        return dict(self._draft)

    @property
    def pending_changes(self) -> Dict[str, Any]:
        return {k: v for k, v in self._draft.items() if self._confirmed.get(k) != v}

    @property
    def is_dirty(self) -> bool:
        return bool(self.pending_changes)

    def stage(self, **fields: Any) -> None:
        """Edit the draft only; unknown fields are left for save() to reject."""
        self._draft.update(fields)

    def discard(self) -> None:
        self._draft = dict(self._confirmed)

    async def commit(self) -> Dict[str, Any]:
        changes = self.pending_changes
        if not changes:
            return self.confirmed

        committed = False
        try:
            record = await self.resolver.save(self.account_id, changes, actor_id=self.actor_id)
            committed = True
        finally:
            if not committed:
                logger.info("Editor save failed for %s; reverting draft", self.account_id)
                self.discard()

        self._confirmed = _editable(record)
        self._draft = dict(self._confirmed)
        return self.confirmed
