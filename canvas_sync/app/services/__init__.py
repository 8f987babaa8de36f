"""Services package for the canvas sync core.

This package provides:
- Transport to the remote canvas store (Transport, HttpTransport)
- Ownership and account-age oracles
- Multi-period rate limiting (RateLimiter)
- Tiered canvas synchronization with offline recovery (SyncEngine)
"""

from canvas_sync.app.services.oracles import (
    AccountAgeOracle,
    OwnerState,
    OwnershipOracle,
    OwnershipRegistry,
    TransportAccountAgeOracle,
    TransportOwnershipOracle,
)
from canvas_sync.app.services.rate_limit import (
    ActionType,
    RateLimitConfig,
    RateLimiter,
    RateLimitResult,
)
from canvas_sync.app.services.sync import (
    DeltaPayload,
    EntityPayload,
    OperatingMode,
    SaveResult,
    SyncEngine,
)
from canvas_sync.app.services.transport import HttpTransport, Transport

__all__ = [
    "AccountAgeOracle",
    "OwnerState",
    "OwnershipOracle",
    "OwnershipRegistry",
    "TransportAccountAgeOracle",
    "TransportOwnershipOracle",
    "ActionType",
    "RateLimitConfig",
    "RateLimiter",
    "RateLimitResult",
    "DeltaPayload",
    "EntityPayload",
    "OperatingMode",
    "SaveResult",
    "SyncEngine",
    "HttpTransport",
    "Transport",
]
