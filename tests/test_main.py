"""Tests for service wiring and shutdown."""

import json
from unittest.mock import patch

import httpx
import pytest

from canvas_sync.app.core.cache import InMemoryStore
from canvas_sync.app.core.events import Events
from canvas_sync.app.main import canvas_services

BASE_URL = "http://canvas.test/api"


class RemoteStore:
    """httpx handler serving territory documents from a dict."""

    def __init__(self):
        self.documents = {
            "/api/territories/T1": {"ruler_id": "u1", "sovereignty": "ruled"},
            "/api/territories/T1/pixels": {
                "territoryId": "T1",
                "pixels": [{"x": 1, "y": 2, "color": "red"}],
                "lastUpdated": "2024-01-01T00:00:00Z",
            },
        }
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append((request.method, path))
        if request.method == "POST":
            self.documents[path] = json.loads(request.content)
            return httpx.Response(200, json={"success": True})
        if request.method == "PATCH":
            self.documents.setdefault(path, {}).update(json.loads(request.content))
            return httpx.Response(200, json=self.documents[path])
        if path not in self.documents:
            return httpx.Response(404, json={"error": "not found"})
        return httpx.Response(200, json=self.documents[path])


class TestCanvasServices:
    """Tests for the canvas_services lifecycle."""

    @pytest.mark.asyncio
    async def test_load_through_wired_services(self):
        remote = RemoteStore()

        async with canvas_services(
            store=InMemoryStore(),
            configure_logging=False,
            base_url=BASE_URL,
            transport=httpx.MockTransport(remote),
        ) as services:
            payload = await services.engine.load("T1")

        assert payload.value_at(1, 2) == "red"
        assert ("GET", "/api/territories/T1") in remote.requests

    @pytest.mark.asyncio
    async def test_pending_save_flushed_on_exit(self):
        remote = RemoteStore()
        saved = []

        async with canvas_services(
            store=InMemoryStore(),
            configure_logging=False,
            base_url=BASE_URL,
            transport=httpx.MockTransport(remote),
        ) as services:
            services.event_bus.on(Events.PAYLOAD_SAVED, saved.append)
            result = await services.engine.save(
                "T1", {"pixels": [{"x": 0, "y": 0, "c": "blue"}]}, user_id="u1"
            )
            assert result.success
            assert services.engine.has_pending_write("T1")

        posted = remote.documents["/api/territories/T1/pixels"]
        assert posted["pixels"] == [{"x": 0, "y": 0, "c": "blue"}]
        assert saved == [{"territoryId": "T1", "filledPixels": 1}]
        assert services.http_client.is_closed

    @pytest.mark.asyncio
    async def test_other_users_save_declined(self):
        remote = RemoteStore()

        async with canvas_services(
            store=InMemoryStore(),
            configure_logging=False,
            base_url=BASE_URL,
            transport=httpx.MockTransport(remote),
        ) as services:
            result = await services.engine.save(
                "T1", {"pixels": [{"x": 0, "y": 0, "c": "blue"}]}, user_id="intruder"
            )

        assert result.success is False
        assert result.reason == "not_owner"
        assert ("POST", "/api/territories/T1/pixels") not in remote.requests

    @pytest.mark.asyncio
    async def test_rate_limiter_started_and_stopped(self):
        async with canvas_services(
            store=InMemoryStore(),
            configure_logging=False,
            base_url=BASE_URL,
            transport=httpx.MockTransport(RemoteStore()),
        ) as services:
            limiter = services.rate_limiter
            assert limiter.running is True

        assert limiter.running is False

    @pytest.mark.asyncio
    async def test_logging_configured_on_startup(self):
        with patch("canvas_sync.app.main.setup_logging") as setup_logging:
            async with canvas_services(
                store=InMemoryStore(),
                base_url=BASE_URL,
                transport=httpx.MockTransport(RemoteStore()),
            ):
                setup_logging.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_save_updates_territory_summary(self):
        remote = RemoteStore()

        async with canvas_services(
            store=InMemoryStore(),
            configure_logging=False,
            base_url=BASE_URL,
            transport=httpx.MockTransport(remote),
        ) as services:
            await services.engine.save_immediate(
                "T1", {"pixels": [{"x": 0, "y": 0, "c": "blue"}, {"x": 1, "y": 0, "c": "red"}]}
            )

        territory = remote.documents["/api/territories/T1"]
        assert territory["ruler_id"] == "u1"
        assert territory["pixelCanvas"]["filledPixels"] == 2
        assert territory["pixelCanvas"]["width"] == 64
        assert isinstance(territory["pixelCanvas"]["lastUpdated"], int)
