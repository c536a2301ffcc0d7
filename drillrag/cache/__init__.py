from drillrag.cache.context import PipelineContext
from drillrag.cache.ttl_cache import CacheEntry, TTLCache, make_cache_key, normalize_query

__all__ = ["PipelineContext", "CacheEntry", "TTLCache", "make_cache_key", "normalize_query"]
