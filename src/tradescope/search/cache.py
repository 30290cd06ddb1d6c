"""Redis cache for search results keyed by canonical query.

Cache Keys:
- search:result:{query_hash} -> serialized SearchResult (TTL: TS_SEARCH_CACHE_TTL_SEC)

The cache is an optimization only: any redis failure is logged and treated
as a miss, never surfaced to the caller.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Optional

import redis

from tradescope.search.models import SearchQuery, SearchResult, search_result_from_dict

logger = logging.getLogger(__name__)

DEFAULT_TTL_SEC = 300


class SearchCache:
    """No-op cache used when redis caching is disabled."""

    def get(self, query: SearchQuery) -> Optional[SearchResult]:
        return None

    def set(self, query: SearchQuery, result: SearchResult) -> None:
        return None

    def ping(self) -> bool:
        return True


class RedisSearchCache(SearchCache):
    def __init__(
        self,
        url: Optional[str] = None,
        *,
        ttl: Optional[int] = None,
        client: Optional[redis.Redis] = None,
    ) -> None:
        self.url = url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.ttl = ttl if ttl is not None else int(os.getenv("TS_SEARCH_CACHE_TTL_SEC", str(DEFAULT_TTL_SEC)))
        self._client = client or redis.from_url(
            self.url,
            decode_responses=True,
            socket_keepalive=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )

    @staticmethod
    def key_for(query: SearchQuery) -> str:
        return f"search:result:{query.cache_key()}"

    def get(self, query: SearchQuery) -> Optional[SearchResult]:
        try:
            data = self._client.get(self.key_for(query))
        except redis.exceptions.RedisError as exc:
            logger.warning("Search cache read failed: %s", exc)
            return None
        if not data:
            return None
        try:
            return search_result_from_dict(json.loads(data))
        except (json.JSONDecodeError, TypeError, KeyError, ValueError):
            logger.warning("Discarding malformed search cache entry %s", self.key_for(query))
            return None

    def set(self, query: SearchQuery, result: SearchResult) -> None:
        try:
            self._client.setex(self.key_for(query), self.ttl, json.dumps(result.to_dict()))
        except redis.exceptions.RedisError as exc:
            logger.warning("Search cache write failed: %s", exc)

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.exceptions.ConnectionError:
            return False


def cache_from_env() -> SearchCache:
    """Redis cache when ``TS_SEARCH_CACHE`` is on, else the no-op cache."""
    if os.getenv("TS_SEARCH_CACHE", "off").strip().lower() in {"1", "on", "true", "yes"}:
        return RedisSearchCache()
    return SearchCache()
