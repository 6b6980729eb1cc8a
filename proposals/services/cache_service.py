"""
Redis cache for the product catalog.

Listings are stored under a generation number. Bumping the generation after
a price import retires every cached listing at once; the old keys simply run
out their TTL. Any Redis failure falls back to loading from the database.
"""

import json
import logging
from typing import Callable, List, Optional

import redis
from redis.exceptions import RedisError
from flask import Flask, current_app

logger = logging.getLogger(__name__)


class CatalogCache:

    def __init__(self, client: Optional[redis.Redis] = None, prefix: str = 'proposals', ttl: int = 300):
        self.client = client
        self.prefix = prefix
        self.ttl = ttl

    @classmethod
    def from_config(cls, config) -> 'CatalogCache':
        prefix = config.get('CACHE_KEY_PREFIX', 'proposals')
        ttl = config.get('CACHE_PRODUCTS_TTL', 300)
        if not config.get('CACHE_ENABLED', True):
            logger.info("[CACHE] Catalog cache disabled via config")
            return cls(None, prefix, ttl)

        url = config.get('REDIS_URL', 'redis://redis:6379/0')
        client = redis.from_url(url, decode_responses=True, socket_connect_timeout=3, socket_timeout=3)
        try:
            client.ping()
        except RedisError as e:
            logger.warning(f"[CACHE] Redis at {url} unreachable ({e}), catalog reads go to the database")
            return cls(None, prefix, ttl)

        logger.info(f"[CACHE] Catalog cache on {url}")
        return cls(client, prefix, ttl)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _generation_key(self) -> str:
        return f"{self.prefix}:catalog:generation"

    def _listing_key(self, name: str, generation: int) -> str:
        return f"{self.prefix}:catalog:{generation}:{name}"

    def listing(self, name: str, loader: Callable[[], List[dict]]) -> List[dict]:
        """Cached listing `name`, loaded and stored on a miss."""
        if not self.enabled:
            return loader()

        try:
            generation = int(self.client.get(self._generation_key()) or 0)
            key = self._listing_key(name, generation)
            cached = self.client.get(key)
            if cached is not None:
                return json.loads(cached)
        except (RedisError, ValueError) as e:
            logger.warning(f"[CACHE] Read of catalog listing '{name}' failed: {e}")
            return loader()

        rows = loader()
        try:
            self.client.setex(key, self.ttl, json.dumps(rows))
        except RedisError as e:
            logger.warning(f"[CACHE] Write of catalog listing '{name}' failed: {e}")
        return rows

    def invalidate(self) -> None:
        """Retire every cached listing."""
        if not self.enabled:
            return
        try:
            generation = self.client.incr(self._generation_key())
        except RedisError as e:
            # listings stay stale for at most one TTL
            logger.warning(f"[CACHE] Catalog invalidation failed: {e}")
            return
        logger.info(f"[CACHE] Catalog cache moved to generation {generation}")


def init_cache(app: Flask) -> CatalogCache:
    cache = CatalogCache.from_config(app.config)
    app.extensions['catalog_cache'] = cache
    return cache


def get_cache() -> CatalogCache:
    return current_app.extensions['catalog_cache']
