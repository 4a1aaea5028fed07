import threading
import time
from typing import Callable, Sequence

from aiusage.models import UsageRecord

# results are reused for two minutes by default
DEFAULT_TTL_SECONDS = 120.0


class UsageCache:
    """
    UsageCache: Is a thread-safe store of recent provider results.

    Entries are keyed by provider id and the config fingerprint, so
    editing a provider's settings never serves results fetched under
    the old ones. Entries older than the TTL are ignored on lookup and
    removed by evict_expired() to prevent unbounded memory growth.
    """

    def __init__(
        self,
        ttl_seconds: "float" = DEFAULT_TTL_SECONDS,
        clock: "Callable[[], float]" = time.monotonic,
    ) -> "None":
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock: "threading.Lock" = threading.Lock()
        self._entries: "dict[tuple[str, str], tuple[float, tuple[UsageRecord, ...]]]" = {}

    @property
    def ttl(self) -> "float":
        return self._ttl

    def get(
        self,
        provider_id: "str",
        fingerprint: "str",
    ) -> "list[UsageRecord] | None":
        """
        returns the cached records, or None when there is no entry or
        it has expired.
        """
        with self._lock:
            entry = self._entries.get((provider_id, fingerprint))
        if entry is None:
            return None

        stored_at, records = entry
        if self._clock() - stored_at >= self._ttl:
            return None
        return list(records)

    def put(
        self,
        provider_id: "str",
        fingerprint: "str",
        records: "Sequence[UsageRecord]",
    ) -> "None":
        with self._lock:
            self._entries[(provider_id, fingerprint)] = (self._clock(), tuple(records))

    def invalidate(self, provider_id: "str") -> "int":
        """
        drops every entry for provider_id. Returns the number dropped.
        """
        with self._lock:
            keys = [k for k in self._entries if k[0] == provider_id]
            for k in keys:
                del self._entries[k]
            return len(keys)

    def evict_expired(self) -> "int":
        """
        removes all entries older than the TTL. Returns the number of
        evicted entries.
        """
        cutoff = self._clock() - self._ttl
        with self._lock:
            to_remove = [k for k, (ts, _) in self._entries.items() if ts <= cutoff]
            for k in to_remove:
                del self._entries[k]
            return len(to_remove)

    def __len__(self) -> "int":
        with self._lock:
            return len(self._entries)
