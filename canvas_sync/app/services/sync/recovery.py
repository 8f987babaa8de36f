"""Bounded offline recovery for writes that failed with a network error.

Retries are not timer driven: the engine walks the queue whenever the
network comes back, and each entry is only retried when its spacing and
budget allow it.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from canvas_sync.app.exceptions import is_network_error
from canvas_sync.app.services.sync.models import OfflineRecoveryEntry, WritePayload


@dataclass
class RecoveryPolicy:
    """Retry budget and spacing for offline recovery.

    Attributes:
        max_retries: Attempts allowed per entry (default: 5)
        min_interval: Seconds required between two attempts (default: 10.0)

    Example:
        >>> policy = RecoveryPolicy(max_retries=5, min_interval=10.0)
        >>> policy.is_due(entry, now=entry.last_attempt + 12)  # True
    """

    max_retries: int = 5
    min_interval: float = 10.0

    def is_due(self, entry: OfflineRecoveryEntry, now: float) -> bool:
        """Check spacing and budget for the next attempt."""
        if self.is_exhausted(entry):
            return False
        return now - entry.last_attempt >= self.min_interval

    def is_exhausted(self, entry: OfflineRecoveryEntry) -> bool:
        return entry.retry_count >= self.max_retries

    def is_retryable(self, exception: Exception) -> bool:
        """Only network-class failures keep an entry queued.

        Validation rejections and other 4xx statuses are final.
        """
        return is_network_error(exception)


class OfflineRecoveryQueue:
    """At most one recovery entry per entity.

    A newer failed write for the same entity replaces the queued payload
    and resets its budget.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, OfflineRecoveryEntry] = {}

    def enqueue(self, entity_id: str, payload: WritePayload, now: float) -> OfflineRecoveryEntry:
        entry = OfflineRecoveryEntry(
            entity_id=entity_id,
            payload=payload,
            retry_count=0,
            last_attempt=now,
        )
        self._entries[entity_id] = entry
        return entry

    def get(self, entity_id: str) -> Optional[OfflineRecoveryEntry]:
        return self._entries.get(entity_id)

    def remove(self, entity_id: str) -> Optional[OfflineRecoveryEntry]:
        return self._entries.pop(entity_id, None)

    def entries(self) -> List[OfflineRecoveryEntry]:
        return list(self._entries.values())

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
