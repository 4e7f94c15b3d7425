"""Unit tests for MemoryCacheProvider and ProgressTracker."""

from __future__ import annotations

import pytest

from src.models.ingestion import IngestionStep
from src.pipeline.progress_tracker import ProgressTracker
from src.providers.cache.memory_cache import MemoryCacheProvider


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# ======================================================================
# MemoryCacheProvider
# ======================================================================


class TestMemoryCacheProvider:
    @pytest.fixture()
    def cache(self) -> MemoryCacheProvider:
        return MemoryCacheProvider(max_size=100, ttl=60)

    @pytest.mark.asyncio
    async def test_set_and_get(self, cache: MemoryCacheProvider) -> None:
        await cache.set("key1", (0.1, 0.2))
        assert await cache.get("key1") == (0.1, 0.2)

    @pytest.mark.asyncio
    async def test_get_missing_key_returns_none(self, cache: MemoryCacheProvider) -> None:
        assert await cache.get("nonexistent") is None

    @pytest.mark.asyncio
    async def test_delete_key(self, cache: MemoryCacheProvider) -> None:
        await cache.set("key1", "value1")
        await cache.delete("key1")
        assert await cache.get("key1") is None
        assert cache.size() == 0

    @pytest.mark.asyncio
    async def test_delete_missing_key_no_error(self, cache: MemoryCacheProvider) -> None:
        await cache.delete("nonexistent")

    @pytest.mark.asyncio
    async def test_exists(self, cache: MemoryCacheProvider) -> None:
        await cache.set("key1", "value1")
        assert await cache.exists("key1") is True
        assert await cache.exists("key2") is False

    @pytest.mark.asyncio
    async def test_entries_expire_after_ttl(self) -> None:
        clock = _FakeClock()
        cache = MemoryCacheProvider(max_size=10, ttl=60, timer=clock)
        await cache.set("key1", "value1")

        clock.now = 59.0
        assert await cache.get("key1") == "value1"
        clock.now = 61.0
        assert await cache.get("key1") is None
        assert await cache.exists("key1") is False

    @pytest.mark.asyncio
    async def test_max_size_evicts(self) -> None:
        cache = MemoryCacheProvider(max_size=2, ttl=60)
        for key in ("a", "b", "c"):
            await cache.set(key, key)
        assert cache.size() == 2
        assert await cache.get("c") == "c"


# ======================================================================
# ProgressTracker
# ======================================================================


class TestProgressTracker:
    @pytest.fixture()
    def tracker(self) -> ProgressTracker:
        return ProgressTracker()

    @pytest.mark.asyncio
    async def test_update_stores_status(self, tracker: ProgressTracker) -> None:
        await tracker.update("j1", IngestionStep.EMBEDDING, 60.0, "Generating embeddings...")
        status = tracker.get_status("j1")
        assert status == {
            "step": "embedding",
            "progress": 60.0,
            "message": "Generating embeddings...",
        }

    @pytest.mark.asyncio
    async def test_get_status_unknown_job(self, tracker: ProgressTracker) -> None:
        assert tracker.get_status("unknown") == {"step": "pending", "progress": 0.0, "message": ""}

    @pytest.mark.asyncio
    async def test_progress_clamped_to_0_100(self, tracker: ProgressTracker) -> None:
        await tracker.update("j1", IngestionStep.CHUNKING, -10.0, "Negative")
        assert tracker.get_status("j1")["progress"] == 0.0

        await tracker.update("j1", IngestionStep.CHUNKING, 150.0, "Over")
        assert tracker.get_status("j1")["progress"] == 100.0

    @pytest.mark.asyncio
    async def test_async_listener_notified(self, tracker: ProgressTracker) -> None:
        received: list[tuple] = []

        async def callback(job_id: str, step: IngestionStep, progress: float, msg: str) -> None:
            received.append((job_id, step, progress, msg))

        tracker.register_listener("j1", callback)
        await tracker.update("j1", IngestionStep.STORING, 80.0, "Storing")

        assert received == [("j1", IngestionStep.STORING, 80.0, "Storing")]

    @pytest.mark.asyncio
    async def test_sync_listener_notified(self, tracker: ProgressTracker) -> None:
        received: list[tuple] = []

        def callback(job_id: str, step: IngestionStep, progress: float, msg: str) -> None:
            received.append((job_id, step))

        tracker.register_listener("j1", callback)
        await tracker.update("j1", IngestionStep.STORING, 80.0)

        assert received == [("j1", IngestionStep.STORING)]

    @pytest.mark.asyncio
    async def test_listeners_do_not_cross_jobs(self, tracker: ProgressTracker) -> None:
        received: list[str] = []
        tracker.register_listener("j1", lambda job_id, *_: received.append(job_id))

        await tracker.update("j2", IngestionStep.CHUNKING, 30.0)
        assert received == []

    @pytest.mark.asyncio
    async def test_wildcard_listener_hears_every_job(self, tracker: ProgressTracker) -> None:
        received: list[str] = []
        tracker.register_listener("*", lambda job_id, *_: received.append(job_id))

        await tracker.update("j1", IngestionStep.CHUNKING, 30.0)
        await tracker.update("j2", IngestionStep.CHUNKING, 30.0)
        assert received == ["j1", "j2"]

    @pytest.mark.asyncio
    async def test_unregister_listener(self, tracker: ProgressTracker) -> None:
        received: list[str] = []

        def callback(job_id: str, *_: object) -> None:
            received.append(job_id)

        tracker.register_listener("j1", callback)
        tracker.unregister_listener("j1", callback)
        await tracker.update("j1", IngestionStep.CHUNKING, 30.0, "Should not notify")

        assert received == []

    @pytest.mark.asyncio
    async def test_duplicate_registration_notifies_once(self, tracker: ProgressTracker) -> None:
        received: list[str] = []

        def callback(job_id: str, *_: object) -> None:
            received.append(job_id)

        tracker.register_listener("j1", callback)
        tracker.register_listener("j1", callback)
        await tracker.update("j1", IngestionStep.CHUNKING, 30.0)

        assert received == ["j1"]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, tracker: ProgressTracker) -> None:
        received: list[str] = []

        def broken(*_: object) -> None:
            raise RuntimeError("listener exploded")

        tracker.register_listener("j1", broken)
        tracker.register_listener("j1", lambda job_id, *_: received.append(job_id))
        await tracker.update("j1", IngestionStep.EMBEDDING, 60.0)

        assert received == ["j1"]
        assert tracker.get_status("j1")["step"] == "embedding"

    @pytest.mark.asyncio
    async def test_forget_drops_status_and_listeners(self, tracker: ProgressTracker) -> None:
        received: list[str] = []
        tracker.register_listener("j1", lambda job_id, *_: received.append(job_id))
        await tracker.update("j1", IngestionStep.EMBEDDING, 60.0)

        tracker.forget("j1")
        await tracker.update("j1", IngestionStep.STORING, 80.0)

        assert received == ["j1"]
