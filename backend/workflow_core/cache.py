"""
workflow_core/cache.py

Per-tenant TTL cache for read-mostly configuration (trigger rules, settings).
Writers call invalidate(tenant) synchronously before reporting success.
"""
from typing import Any, Callable, Dict, Hashable, Optional, Tuple
import logging
import threading
import time

logger = logging.getLogger(__name__)

_MISSING = object()


class TenantCache:
    """
    Tenant-partitioned cache with a fixed time-to-live.

    Entries live under (tenant, key). Invalidation always drops every key of
    a tenant, since one configuration write can affect several cached views.

    Example:
        >>> cache = TenantCache(ttl_seconds=60)
        >>> rules = cache.get_or_load("org_a", ("triggers", "campaign_created"), load_rules)
        >>> cache.invalidate("org_a")
    """

    def __init__(self, ttl_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Dict[Hashable, Tuple[float, Any]]] = {}
        self._lock = threading.RLock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, tenant: str, key: Hashable, default: Any = None) -> Any:
        """Return a live entry or default."""
        with self._lock:
            bucket = self._entries.get(tenant)
            if not bucket or key not in bucket:
                return default
            stored_at, value = bucket[key]
            if self._clock() - stored_at >= self._ttl:
                del bucket[key]
                return default
            return value

    def set(self, tenant: str, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries.setdefault(tenant, {})[key] = (self._clock(), value)

    def get_or_load(self, tenant: str, key: Hashable, loader: Callable[[], Any]) -> Any:
        """
        Return the cached value, loading and storing it on a miss.

        Args:
            tenant: Tenant identifier
            key: Cache key within the tenant
            loader: Zero-argument callable producing the value

        Returns:
            Cached or freshly loaded value
        """
        value = self.get(tenant, key, _MISSING)
        if value is not _MISSING:
            return value
        value = loader()
        self.set(tenant, key, value)
        return value

    def invalidate(self, tenant: str) -> None:
        """Drop every entry of a tenant."""
        with self._lock:
            removed = self._entries.pop(tenant, None)
        if removed:
            logger.debug(f"Invalidated {len(removed)} cache entries for tenant {tenant}")

    def clear(self) -> None:
        """Drop everything (tests)."""
        with self._lock:
            self._entries.clear()

    def size(self, tenant: Optional[str] = None) -> int:
        with self._lock:
            if tenant is not None:
                return len(self._entries.get(tenant, {}))
            return sum(len(bucket) for bucket in self._entries.values())


__all__ = ["TenantCache"]
