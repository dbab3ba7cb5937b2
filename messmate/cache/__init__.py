"""Response cache package."""

from messmate.cache.response_cache import CacheKeys, CacheTTL, ResponseCache

__all__ = ["CacheKeys", "CacheTTL", "ResponseCache"]
