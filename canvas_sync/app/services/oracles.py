"""Ownership and account-age oracles.

Both are consulted per call and never cached by the sync core beyond
that single call.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from canvas_sync.app.core.logging import get_logger
from canvas_sync.app.core.scheduler import Clock
from canvas_sync.app.exceptions import TransportStatusError
from canvas_sync.app.services.transport import Transport

logger = get_logger(__name__)

UNCLAIMED = "unconquered"


@dataclass(frozen=True)
class OwnerState:
    """Resolved ownership of a territory.

    Attributes:
        owner_id: Controlling user, or None when nobody rules the territory
        state: Sovereignty label (unconquered, contested, ruled, protected)
    """
    owner_id: Optional[str]
    state: str = "ruled"

    @property
    def is_claimed(self) -> bool:
        return self.owner_id is not None and self.state != UNCLAIMED

    @classmethod
    def unclaimed(cls) -> "OwnerState":
        return cls(owner_id=None, state=UNCLAIMED)


class OwnershipOracle(ABC):
    @abstractmethod
    async def resolve(self, entity_id: str) -> OwnerState:
        pass


class AccountAgeOracle(ABC):
    @abstractmethod
    async def is_new_account(self, user_id: str) -> bool:
        pass


class OwnershipRegistry:
    """In-process ownership table kept current by the territory layer.

    Consulted before the oracle so that known territories resolve
    without a network round trip.
    """

    def __init__(self) -> None:
        self._owners: Dict[str, OwnerState] = {}

    def get(self, entity_id: str) -> Optional[OwnerState]:
        return self._owners.get(entity_id)

    def set(self, entity_id: str, owner: OwnerState) -> None:
        self._owners[entity_id] = owner

    def remove(self, entity_id: str) -> None:
        self._owners.pop(entity_id, None)

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._owners

    def __len__(self) -> int:
        return len(self._owners)


class TransportOwnershipOracle(OwnershipOracle):
    """Reads ``ruler_id`` / ``sovereignty`` from the territory document."""

    def __init__(self, transport: Transport):
        self._transport = transport

    async def resolve(self, entity_id: str) -> OwnerState:
        try:
            territory = await self._transport.get(f"/territories/{entity_id}")
        except TransportStatusError as e:
            if e.status_code == 404:
                return OwnerState.unclaimed()
            raise
        territory = territory or {}
        owner_id = territory.get("ruler_id") or territory.get("ruler_firebase_uid")
        if owner_id is None and isinstance(territory.get("ruler"), dict):
            owner_id = territory["ruler"].get("id")
        state = territory.get("sovereignty") or (UNCLAIMED if owner_id is None else "ruled")
        return OwnerState(owner_id=str(owner_id) if owner_id is not None else None, state=state)


def _parse_created_at(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        # Millisecond epoch timestamps are what the store writes
        return value / 1000.0 if value > 1e11 else float(value)
    if isinstance(value, dict) and "_seconds" in value:
        return float(value["_seconds"])
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    return None


class TransportAccountAgeOracle(AccountAgeOracle):
    """Account age from the wallet creation time, then the user document.

    Lookup failures are the caller's to handle; the rate limiter treats
    them as an established account.
    """

    def __init__(
        self,
        transport: Transport,
        max_age_seconds: float = 3600.0,
        clock: Optional[Clock] = None,
    ):
        self._transport = transport
        self.max_age_seconds = max_age_seconds
        self._clock = clock or Clock()

    async def _created_at(self, path: str) -> Optional[float]:
        try:
            document = await self._transport.get(path)
        except TransportStatusError as e:
            if e.status_code == 404:
                return None
            raise
        if not isinstance(document, dict):
            return None
        return _parse_created_at(document.get("createdAt"))

    async def is_new_account(self, user_id: str) -> bool:
        created_at = await self._created_at(f"/wallets/{user_id}")
        if created_at is None:
            created_at = await self._created_at(f"/users/{user_id}")
        if created_at is None:
            return False
        return self._clock.now() - created_at < self.max_age_seconds
