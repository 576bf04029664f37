"""In-memory response cache and request deduplication."""

from .dedup import DeduplicationGuard, build_dedup_key
from .response_cache import ResponseCache, build_cache_key
from .ttl_map import TTLMap

__all__ = [
    "DeduplicationGuard",
    "ResponseCache",
    "TTLMap",
    "build_cache_key",
    "build_dedup_key",
]
