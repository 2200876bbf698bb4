"""Tests for the disk-backed TTL cache."""

import asyncio
import hashlib

import pytest

from apishield.domain.models.policies import CacheConfig
from apishield.infrastructure.cache.caching_service import TEMP_SUFFIX, TTLCache


def make_cache(cache_dir, clock, max_size=1024, max_age=60.0, cleanup_interval=300.0):
    config = CacheConfig(max_size=max_size, max_age=max_age, cleanup_interval=cleanup_interval)
    return TTLCache(cache_dir=cache_dir, config=config, clock=clock)


def file_name_for(key):
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def assert_accounting(cache):
    assert cache.total_size == sum(e.size_bytes for e in cache.entries())
    assert cache.total_size <= cache.config.max_size


class TestStoreAndRetrieve:
    """Basic round trips and expiry."""

    @pytest.mark.asyncio
    async def test_round_trip(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock)

        await cache.store(b"hello", "greeting")

        assert await cache.retrieve("greeting") == b"hello"
        assert (cache_dir / file_name_for("greeting")).read_bytes() == b"hello"
        assert_accounting(cache)

    @pytest.mark.asyncio
    async def test_unknown_key_is_a_miss(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock)
        assert await cache.retrieve("nothing") is None

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock)
        await cache.store(b"x" * 10, "k", ttl=5)

        clock.advance(5)
        assert await cache.retrieve("k") == b"x" * 10  # now == expires_at is still valid

        clock.advance(0.001)
        assert await cache.retrieve("k") is None

        # Expired entries stay on disk and in the accounting until swept.
        assert (cache_dir / file_name_for("k")).exists()
        assert cache.total_size == 10

    @pytest.mark.asyncio
    async def test_default_ttl_is_max_age(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock, max_age=30)
        await cache.store(b"abc", "k")

        (entry,) = cache.entries()
        assert entry.expires_at == clock.now + 30

    @pytest.mark.asyncio
    async def test_restore_replaces_size(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock)
        await cache.store(b"a" * 100, "k")
        await cache.store(b"b" * 30, "k")

        assert cache.total_size == 30
        assert len(cache) == 1
        assert await cache.retrieve("k") == b"b" * 30

    @pytest.mark.asyncio
    async def test_payload_larger_than_max_size_is_not_cached(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock, max_size=100)
        await cache.store(b"x" * 40, "small")

        await cache.store(b"y" * 101, "huge")

        assert await cache.retrieve("huge") is None
        assert await cache.retrieve("small") == b"x" * 40
        assert cache.total_size == 40

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock)
        await cache.store(b"data", "k")

        assert not list(cache_dir.glob(f"*{TEMP_SUFFIX}"))


class TestEviction:
    """Soonest-to-expire entries make room for new ones."""

    @pytest.mark.asyncio
    async def test_eviction_frees_enough_space(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock, max_size=100)
        await cache.store(b"a" * 60, "a", ttl=10)

        await cache.store(b"b" * 50, "b", ttl=100)

        assert await cache.retrieve("a") is None
        assert await cache.retrieve("b") == b"b" * 50
        assert cache.total_size == 50
        assert not (cache_dir / file_name_for("a")).exists()

    @pytest.mark.asyncio
    async def test_soonest_expiry_is_evicted_first(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock, max_size=100)
        await cache.store(b"1" * 40, "late", ttl=300)
        await cache.store(b"2" * 40, "soon", ttl=10)

        await cache.store(b"3" * 40, "new", ttl=50)

        assert await cache.retrieve("soon") is None
        assert await cache.retrieve("late") == b"1" * 40
        assert await cache.retrieve("new") == b"3" * 40
        assert_accounting(cache)

    @pytest.mark.asyncio
    async def test_accounting_holds_over_many_stores(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock, max_size=500)

        for i in range(50):
            clock.advance(1)
            await cache.store(bytes(i * 7 % 120), f"key-{i % 12}", ttl=(i * 13) % 40 + 1)
            assert_accounting(cache)


class TestCorruption:
    """Files that disappear or change size are dropped on read."""

    @pytest.mark.asyncio
    async def test_missing_file_is_a_miss(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock)
        await cache.store(b"payload", "k")
        (cache_dir / file_name_for("k")).unlink()

        assert await cache.retrieve("k") is None
        assert len(cache) == 0
        assert cache.total_size == 0

    @pytest.mark.asyncio
    async def test_size_mismatch_removes_entry(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock)
        await cache.store(b"payload", "k")
        (cache_dir / file_name_for("k")).write_bytes(b"tampered with")

        assert await cache.retrieve("k") is None
        assert len(cache) == 0
        assert not (cache_dir / file_name_for("k")).exists()


class TestRemoveAndClear:
    """Explicit removal."""

    @pytest.mark.asyncio
    async def test_remove(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock)
        await cache.store(b"a" * 10, "a")
        await cache.store(b"b" * 20, "b")

        await cache.remove("a")
        await cache.remove("never-stored")

        assert await cache.retrieve("a") is None
        assert cache.total_size == 20
        assert not (cache_dir / file_name_for("a")).exists()

    @pytest.mark.asyncio
    async def test_clear_all(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock)
        await cache.store(b"a" * 10, "a")
        await cache.store(b"b" * 20, "b")

        await cache.clear_all()

        assert cache.total_size == 0
        assert len(cache) == 0
        assert cache_dir.is_dir()
        assert list(cache_dir.iterdir()) == []


class TestStartupReconciliation:
    """The index is rebuilt from the directory on construction."""

    @pytest.mark.asyncio
    async def test_entries_survive_restart(self, cache_dir, clock):
        first = make_cache(cache_dir, clock)
        await first.store(b"persisted", "k", ttl=5)

        clock.advance(3)
        second = make_cache(cache_dir, clock, max_age=60)

        assert second.total_size == len(b"persisted")
        assert await second.retrieve("k") == b"persisted"
        # Rediscovered files get a fresh max_age.
        (entry,) = second.entries()
        assert entry.expires_at == clock.now + 60

    def test_leftover_temp_files_are_deleted(self, cache_dir, clock):
        (cache_dir / f"abc{TEMP_SUFFIX}").write_bytes(b"partial")
        (cache_dir / "abc").write_bytes(b"complete")

        cache = make_cache(cache_dir, clock)

        assert not (cache_dir / f"abc{TEMP_SUFFIX}").exists()
        assert len(cache) == 1
        assert cache.total_size == len(b"complete")

    def test_missing_directory_is_created(self, tmp_path, clock):
        target = tmp_path / "nested" / "cache"

        cache = make_cache(target, clock)

        assert target.is_dir()
        assert len(cache) == 0


class TestSweep:
    """Expired entries are reclaimed by the sweep."""

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock)
        await cache.store(b"a" * 10, "short", ttl=1)
        await cache.store(b"b" * 10, "long", ttl=100)

        clock.advance(2)
        removed = await cache.cleanup_expired()

        assert removed == 1
        assert cache.total_size == 10
        assert not (cache_dir / file_name_for("short")).exists()

    @pytest.mark.asyncio
    async def test_configure_sweeps_immediately(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock)
        await cache.store(b"a" * 10, "k", ttl=1)
        clock.advance(2)

        await cache.configure(CacheConfig(max_size=2048, max_age=10, cleanup_interval=60))

        assert len(cache) == 0
        assert cache.config.max_size == 2048

    @pytest.mark.asyncio
    async def test_configure_smaller_max_size_evicts(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock, max_size=300)
        await cache.store(b"a" * 100, "soon", ttl=10)
        await cache.store(b"b" * 100, "middle", ttl=20)
        await cache.store(b"c" * 100, "late", ttl=30)

        await cache.configure(CacheConfig(max_size=150, max_age=60, cleanup_interval=300))

        status = await cache.status()
        assert status["total_size"] == 100
        assert status["available_space"] == 50
        assert status["utilization"] <= 1.0
        assert await cache.retrieve("late") == b"c" * 100
        assert await cache.retrieve("soon") is None
        assert_accounting(cache)

    @pytest.mark.asyncio
    async def test_background_sweep_runs_on_interval(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock, cleanup_interval=0.01)
        await cache.store(b"a" * 10, "k", ttl=1)
        clock.advance(2)

        async with cache:
            for _ in range(100):
                if len(cache) == 0:
                    break
                await asyncio.sleep(0.01)

        assert len(cache) == 0
        assert cache._cleanup_task is None

    @pytest.mark.asyncio
    async def test_close_without_start_is_a_no_op(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock)
        await cache.close()


class TestStatus:
    """Status reports accounting and utilisation."""

    @pytest.mark.asyncio
    async def test_status(self, cache_dir, clock):
        cache = make_cache(cache_dir, clock, max_size=200)
        await cache.store(b"x" * 50, "k")

        status = await cache.status()

        assert status["total_size"] == 50
        assert status["entry_count"] == 1
        assert status["max_size"] == 200
        assert status["available_space"] == 150
        assert status["utilization"] == pytest.approx(0.25)
