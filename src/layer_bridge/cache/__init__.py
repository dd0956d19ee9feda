"""In-memory caches gating backend invocations."""

from layer_bridge.cache.auth_cache import AuthStatus, AuthStatusCache, FailureInfo
from layer_bridge.cache.result_cache import CacheEntry, CacheLookup, ResultCache

__all__ = [
    "AuthStatus",
    "AuthStatusCache",
    "CacheEntry",
    "CacheLookup",
    "FailureInfo",
    "ResultCache",
]
