"""
Tests for the uploader cache and provisioner.
"""
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from upload_relay.exceptions import ConfigError, DestinationNotFoundError, ResolutionError
from upload_relay.storage import S3Backend, UploaderCache, UploaderProvisioner


class TestUploaderCache:
    """Tests for UploaderCache."""

    def test_get_missing(self):
        """Test a miss returns None."""
        assert UploaderCache(2).get("nope") is None

    def test_put_if_absent_inserts_once(self):
        """Test the first insert wins and later ones see it."""
        cache = UploaderCache(2)
        first, second = object(), object()

        assert cache.put_if_absent("bucket", first) == (first, True)
        assert cache.put_if_absent("bucket", second) == (first, False)
        assert cache.get("bucket") is first
        assert len(cache) == 1

    def test_evicts_least_recently_used(self):
        """Test inserting beyond capacity evicts the LRU bucket, with lookups refreshing recency."""
        cache = UploaderCache(2)
        cache.put_if_absent("a", object())
        cache.put_if_absent("b", object())

        cache.get("a")
        cache.put_if_absent("c", object())

        assert "b" not in cache
        assert cache.bucket_names() == ["a", "c"]

    def test_never_exceeds_capacity(self):
        """Test the cache stays within its capacity."""
        cache = UploaderCache(3)
        for i in range(10):
            cache.put_if_absent(f"bucket-{i}", object())
            assert len(cache) <= 3

        assert cache.bucket_names() == ["bucket-7", "bucket-8", "bucket-9"]

    def test_evicted_entry_still_usable(self):
        """Test eviction only drops the mapping."""
        cache = UploaderCache(1)
        held = MagicMock()
        cache.put_if_absent("a", held)
        cache.put_if_absent("b", object())

        assert "a" not in cache
        held.upload("a", "key", None)
        held.upload.assert_called_once()

    @pytest.mark.parametrize("capacity", [0, -1])
    def test_invalid_capacity(self, capacity: int):
        """Test a cache must hold at least one entry."""
        with pytest.raises(ValueError):
            UploaderCache(capacity)


class TestUploaderProvisioner:
    """Tests for UploaderProvisioner."""

    @pytest.fixture
    def backend(self) -> MagicMock:
        mock = MagicMock(spec=S3Backend)
        mock.load_session.return_value = MagicMock(name="session")
        mock.resolve_region.return_value = "us-west-2"
        mock.new_uploader.side_effect = lambda session, region: MagicMock(region=region)
        return mock

    def test_cold_path_builds_and_caches(self, backend: MagicMock):
        """Test a miss loads config, resolves the region and caches the uploader."""
        provisioner = UploaderProvisioner(backend, UploaderCache(4))

        uploader = provisioner.get_uploader("my-bucket")

        session = backend.load_session.return_value
        backend.resolve_region.assert_called_once_with(session, "my-bucket")
        backend.new_uploader.assert_called_once_with(session, "us-west-2")
        assert uploader.region == "us-west-2"
        assert provisioner.cache.get("my-bucket") is uploader

    def test_cache_hit_does_no_io(self, backend: MagicMock):
        """Test a hit returns the cached uploader without touching the backend."""
        cache = UploaderCache(4)
        cached = MagicMock()
        cache.put_if_absent("my-bucket", cached)
        provisioner = UploaderProvisioner(backend, cache)

        assert provisioner.get_uploader("my-bucket") is cached
        backend.load_session.assert_not_called()
        backend.resolve_region.assert_not_called()

    def test_second_call_is_cached(self, backend: MagicMock):
        """Test repeated use of a bucket provisions once."""
        provisioner = UploaderProvisioner(backend, UploaderCache(4))

        first = provisioner.get_uploader("my-bucket")
        second = provisioner.get_uploader("my-bucket")

        assert first is second
        assert backend.new_uploader.call_count == 1

    @pytest.mark.parametrize("error", [
        ConfigError("no credentials"),
        DestinationNotFoundError("gone", "missing"),
        ResolutionError("boom", "missing"),
    ])
    def test_errors_propagate_and_nothing_is_cached(self, backend: MagicMock, error: Exception):
        """Test provisioning failures reach the caller and leave the cache untouched."""
        if isinstance(error, ConfigError):
            backend.load_session.side_effect = error
        else:
            backend.resolve_region.side_effect = error
        provisioner = UploaderProvisioner(backend, UploaderCache(4))

        with pytest.raises(type(error)):
            provisioner.get_uploader("missing")

        assert len(provisioner.cache) == 0

    def test_concurrent_first_use_caches_one_uploader(self, backend: MagicMock):
        """Test racing cold calls all get an uploader and exactly one is cached."""
        workers = 8
        barrier = threading.Barrier(workers)

        def slow_resolve(session, bucket):
            time.sleep(0.05)
            return "us-west-2"

        built = []

        def new_uploader(session, region):
            uploader = MagicMock(region=region)
            built.append(uploader)
            return uploader

        backend.resolve_region.side_effect = slow_resolve
        backend.new_uploader.side_effect = new_uploader
        provisioner = UploaderProvisioner(backend, UploaderCache(4))

        def provision(_):
            barrier.wait()
            return provisioner.get_uploader("shared-bucket")

        with ThreadPoolExecutor(max_workers=workers) as executor:
            uploaders = list(executor.map(provision, range(workers)))

        assert all(u is not None for u in uploaders)
        assert len(provisioner.cache) == 1
        assert provisioner.cache.bucket_names() == ["shared-bucket"]

        cached = provisioner.cache.get("shared-bucket")
        assert any(u is cached for u in uploaders)
        assert all(any(u is b for b in built) for u in uploaders)
