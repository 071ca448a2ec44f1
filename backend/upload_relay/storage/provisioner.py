"""
Per-bucket uploader provisioning.

Building an uploader costs a credential load and a region lookup, so built
uploaders are kept in a bounded LRU cache keyed by bucket name. A cached
uploader stays valid for the life of its bucket (regions don't move), and
an evicted one can still be used by whoever already holds it.
"""
import logging
import threading
from collections import OrderedDict
from typing import List, Optional, Tuple

from upload_relay.storage.s3_backend import S3Backend, Uploader
from upload_relay.utils.logging import log_uploader_provisioned
from upload_relay.utils.metrics import uploader_cache_lookups_total

logger = logging.getLogger(__name__)


class UploaderCache:
    """
    Thread-safe LRU mapping of bucket name to uploader.

    Args:
        capacity: Maximum number of buckets held; must be at least 1
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"Cache capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._entries: "OrderedDict[str, Uploader]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, bucket: str) -> Optional[Uploader]:
        """Return the cached entry for ``bucket`` and mark it most recently used."""
        with self._lock:
            entry = self._entries.get(bucket)
            if entry is not None:
                self._entries.move_to_end(bucket)
            return entry

    def put_if_absent(self, bucket: str, entry: Uploader) -> Tuple[Uploader, bool]:
        """
        Insert ``entry`` unless ``bucket`` already has one.

        Returns:
            Tuple of (entry now cached for bucket, whether ours was inserted)
        """
        with self._lock:
            existing = self._entries.get(bucket)
            if existing is not None:
                return existing, False

            self._entries[bucket] = entry
            if len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted uploader for bucket {evicted!r}")
            return entry, True

    def bucket_names(self) -> List[str]:
        """Cached bucket names, least recently used first."""
        with self._lock:
            return list(self._entries)

    def __contains__(self, bucket: str) -> bool:
        with self._lock:
            return bucket in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class UploaderProvisioner:
    """
    Hands out uploaders bound to the region that owns a bucket.

    Safe to call from many threads at once. Concurrent first use of a bucket
    may build more than one uploader; only one of them is kept in the cache
    and every caller gets a working uploader back.
    """

    def __init__(self, backend: S3Backend, cache: UploaderCache):
        self.backend = backend
        self.cache = cache

    def get_uploader(self, bucket: str) -> Uploader:
        """
        Get the uploader for ``bucket``, building it on a cache miss.

        Args:
            bucket: Bucket name

        Returns:
            Uploader bound to the bucket's region

        Raises:
            ConfigError: If AWS credentials/config can't be loaded
            DestinationNotFoundError: If the bucket does not exist
            ResolutionError: If the bucket's region can't be determined
        """
        uploader = self.cache.get(bucket)
        if uploader is not None:
            uploader_cache_lookups_total.labels(result="hit").inc()
            return uploader

        uploader_cache_lookups_total.labels(result="miss").inc()

        session = self.backend.load_session()
        region = self.backend.resolve_region(session, bucket)
        logger.debug(f"Bucket {bucket!r} is in region: {region}")

        uploader = self.backend.new_uploader(session, region)

        # Don't overwrite an entry another request cached in the meantime
        _, inserted = self.cache.put_if_absent(bucket, uploader)
        log_uploader_provisioned(logger, bucket=bucket, region=region, cached=inserted)

        return uploader
