import os
import sys
import httpx
import pytest
from unittest.mock import patch, AsyncMock

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from graph.sync import SyncController, SyncError
from pipeline.store import AppState
from tools.cache import SNAPSHOT_CACHE_KEY, SnapshotCache
from tools.errors import ParseError, TransportError
from tools.record_store import RecordStoreClient

def _snapshot(company="Acme"):
    return {
        "contacts": [{"id": 7, "lead_no": "L-100", "company": company, "sales_person": "Bob"}],
        "follow_ups": [{"lead_no": "L-100", "action": "Call", "timestamp": "2024-05-01T10:00:00.000Z"}],
    }

def _payload(snapshot):
    return {"contacts": snapshot["contacts"], "followUps": snapshot["follow_ups"]}

class TestSyncController:
    """Stale-while-revalidate initial load."""

    def setup_method(self):
        with patch("tools.cache.redis.from_url", side_effect=Exception("Connection refused")):
            self.cache = SnapshotCache()
        self.app_state = AppState()
        self.record_store = AsyncMock()
        self.controller = SyncController(self.app_state, self.cache, self.record_store)

    @pytest.mark.asyncio
    async def test_fresh_fetch_publishes_and_caches(self):
        self.record_store.fetch_all.return_value = _snapshot()

        result = await self.controller.load()

        assert result == _snapshot()
        assert self.app_state.snapshot == _snapshot()
        assert self.app_state.is_loading is False
        assert self.app_state.error is None
        assert self.cache.get(SNAPSHOT_CACHE_KEY) == _payload(_snapshot())

    @pytest.mark.asyncio
    async def test_cached_snapshot_replaced_by_fresh(self):
        self.cache.set(SNAPSHOT_CACHE_KEY, _payload(_snapshot("Old Name")))
        self.record_store.fetch_all.return_value = _snapshot("New Name")

        await self.controller.load()

        assert self.app_state.contacts[0]["company"] == "New Name"
        assert self.cache.get(SNAPSHOT_CACHE_KEY)["contacts"][0]["company"] == "New Name"
        # cache publish, then fresh publish
        assert self.app_state.version == 2

    @pytest.mark.asyncio
    async def test_fetch_failure_with_cache_is_swallowed(self):
        self.cache.set(SNAPSHOT_CACHE_KEY, _payload(_snapshot()))
        self.record_store.fetch_all.side_effect = TransportError("timed out")

        result = await self.controller.load()

        assert result == _snapshot()
        assert self.app_state.error is None
        assert self.app_state.is_loading is False

    @pytest.mark.asyncio
    async def test_fetch_failure_without_cache_raises(self):
        self.record_store.fetch_all.side_effect = TransportError("Connection to the record store failed")

        with pytest.raises(SyncError) as exc_info:
            await self.controller.load()

        assert exc_info.value.kind == "transport"
        assert self.app_state.error == "Connection to the record store failed"
        assert self.app_state.is_loading is False
        assert self.app_state.contacts == []

    @pytest.mark.asyncio
    async def test_parse_failure_carries_deployment_message(self):
        self.record_store.fetch_all.side_effect = ParseError("Unexpected token <")

        with pytest.raises(SyncError) as exc_info:
            await self.controller.load()

        assert exc_info.value.kind == "parse"
        assert str(exc_info.value) == ParseError.default_message
        assert self.app_state.error == ParseError.default_message

    @pytest.mark.asyncio
    async def test_loader_suppressed_on_cache_hit(self):
        self.cache.set(SNAPSHOT_CACHE_KEY, _payload(_snapshot()))
        seen = []

        async def fetch_all():
            seen.append(self.app_state.is_loading)
            return _snapshot()

        self.record_store.fetch_all.side_effect = fetch_all

        await self.controller.load(force_show_loading_indicator=True)

        assert seen == [False]

    @pytest.mark.asyncio
    async def test_loader_shown_without_cache(self):
        seen = []

        async def fetch_all():
            seen.append(self.app_state.is_loading)
            return _snapshot()

        self.record_store.fetch_all.side_effect = fetch_all

        await self.controller.load(force_show_loading_indicator=True)

        assert seen == [True]
        assert self.app_state.is_loading is False

    @pytest.mark.asyncio
    async def test_background_reload_without_loader(self):
        seen = []

        async def fetch_all():
            seen.append(self.app_state.is_loading)
            return _snapshot()

        self.record_store.fetch_all.side_effect = fetch_all

        await self.controller.load(force_show_loading_indicator=False)

        assert seen == [False]

    @pytest.mark.asyncio
    async def test_previous_error_cleared_on_load(self):
        self.app_state.fail("Failed to save contact.")
        self.record_store.fetch_all.return_value = _snapshot()

        await self.controller.load()

        assert self.app_state.error is None

class TestMalformedRows:
    """A fetch-all answer whose rows are not objects is a parse failure."""

    def setup_method(self):
        with patch("tools.cache.redis.from_url", side_effect=Exception("Connection refused")):
            self.cache = SnapshotCache()
        self.app_state = AppState()
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"status": "success", "data": {"contacts": [None], "followUps": []}})
        )
        client = RecordStoreClient(url="https://script.example.com/exec", timeout=5, transport=transport)
        self.controller = SyncController(self.app_state, self.cache, client)

    @pytest.mark.asyncio
    async def test_swallowed_when_cached(self):
        self.cache.set(SNAPSHOT_CACHE_KEY, _payload(_snapshot()))

        result = await self.controller.load()

        assert result == _snapshot()
        assert self.app_state.error is None
        assert self.app_state.is_loading is False

    @pytest.mark.asyncio
    async def test_blocking_without_cache(self):
        with pytest.raises(SyncError) as exc_info:
            await self.controller.load()

        assert exc_info.value.kind == "parse"
        assert self.app_state.error == ParseError.default_message
        assert self.app_state.is_loading is False
