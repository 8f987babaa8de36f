"""Draft edit sessions kept in the persistent tier.

An editor parks its unsaved canvas here so that work survives a reload;
the sync engine clears the draft once the canvas reaches the remote store.
"""

from typing import Any, Dict, Optional

from canvas_sync.app.core.cache import PersistentStore
from canvas_sync.app.core.logging import get_log_context, get_logger
from canvas_sync.app.core.scheduler import Clock

logger = get_logger(__name__)


class DraftSessionStore:
    def __init__(
        self,
        store: PersistentStore,
        key_prefix: str,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._key_prefix = key_prefix
        self._clock = clock or Clock()

    def _key(self, entity_id: str) -> str:
        return f"{self._key_prefix}:session:{entity_id}"

    async def save(self, entity_id: str, data: Dict[str, Any]) -> None:
        await self._store.put(
            self._key(entity_id),
            {"data": data, "saved_at": self._clock.now()},
        )
        logger.debug("Draft session saved", extra=get_log_context(entity_id=entity_id))

    async def load(self, entity_id: str) -> Optional[Dict[str, Any]]:
        record = await self._store.get(self._key(entity_id))
        if record is None:
            return None
        return record.get("data")

    async def clear(self, entity_id: str) -> None:
        await self._store.delete(self._key(entity_id))

    async def has(self, entity_id: str) -> bool:
        return await self._store.get(self._key(entity_id)) is not None
