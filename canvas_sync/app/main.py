"""Service wiring for the canvas sync core.

``canvas_services`` builds the shared HTTP client, persistent store,
event bus, rate limiter and sync engine, and tears them down in order.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

import httpx

from canvas_sync.app.core.cache import PersistentStore, create_store
from canvas_sync.app.core.config import settings
from canvas_sync.app.core.events import EventBus
from canvas_sync.app.core.http_client import http_client_context
from canvas_sync.app.core.logging import get_logger, setup_logging
from canvas_sync.app.core.scheduler import Clock, Scheduler
from canvas_sync.app.services.oracles import (
    OwnershipRegistry,
    TransportAccountAgeOracle,
    TransportOwnershipOracle,
)
from canvas_sync.app.services.rate_limit import RateLimiter
from canvas_sync.app.services.sync import SyncEngine
from canvas_sync.app.services.transport import HttpTransport, TokenProvider

logger = get_logger(__name__)


@dataclass
class CanvasServices:
    """Everything a client needs to read and write canvases."""
    http_client: httpx.AsyncClient
    transport: HttpTransport
    store: PersistentStore
    event_bus: EventBus
    registry: OwnershipRegistry
    rate_limiter: RateLimiter
    engine: SyncEngine


@asynccontextmanager
async def canvas_services(
    token_provider: Optional[TokenProvider] = None,
    store: Optional[PersistentStore] = None,
    clock: Optional[Clock] = None,
    configure_logging: bool = True,
    **http_kwargs,
) -> AsyncGenerator[CanvasServices, None]:
    """Build and start the services, then shut them down on exit.

    Args:
        token_provider: Returns the current bearer token, if any
        store: Persistent tier; defaults to the configured backend
        clock: Time source shared by every component
        configure_logging: Apply the canvas_sync logging config first
        **http_kwargs: Forwarded to create_http_client (base_url, transport, ...)
    """
    if configure_logging:
        setup_logging()

    if token_provider is None and settings.api_token:
        token_provider = lambda: settings.api_token  # noqa: E731

    clock = clock or Clock()
    store = store or create_store()
    event_bus = EventBus()

    async with http_client_context(**http_kwargs) as http_client:
        transport = HttpTransport(
            http_client,
            token_provider=token_provider,
            timeout=settings.httpx_timeout,
        )
        registry = OwnershipRegistry()
        rate_limiter = RateLimiter(
            age_oracle=TransportAccountAgeOracle(
                transport, max_age_seconds=settings.new_account_age_seconds, clock=clock
            ),
            event_bus=event_bus,
            clock=clock,
        )
        engine = SyncEngine(
            transport,
            store,
            rate_limiter=rate_limiter,
            event_bus=event_bus,
            ownership_oracle=TransportOwnershipOracle(transport),
            ownership_registry=registry,
            scheduler=Scheduler(),
            clock=clock,
        )

        rate_limiter.start()
        logger.info(
            "Canvas services started",
            extra={"store_backend": type(store).__name__, "base_url": str(http_client.base_url)},
        )
        try:
            yield CanvasServices(
                http_client=http_client,
                transport=transport,
                store=store,
                event_bus=event_bus,
                registry=registry,
                rate_limiter=rate_limiter,
                engine=engine,
            )
        finally:
            # Pending writes go out before the client closes
            await engine.close()
            await rate_limiter.stop()
            await store.close()
            event_bus.clear()
            logger.info("Canvas services stopped")
