"""
Durable name -> blob storage for cached board aggregates.

The cache coordinator persists each preview aggregate under its cache name
("sp_previews", "coop_previews") so a Fresh key can be served without
recomputation. Two backends: JSON files on disk and Redis.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import redis.asyncio as redis

from boards.config import Config
from boards.utils.board_exceptions import PersistenceReadError, PersistenceWriteError

logger = logging.getLogger(__name__)


class CachePersistence(ABC):
    """Interface the cache coordinator persists through."""

    @abstractmethod
    async def write(self, name: str, blob: bytes) -> None:
        """Store a blob. Raises PersistenceWriteError on failure."""
        pass

    @abstractmethod
    async def read(self, name: str) -> Optional[bytes]:
        """Return the stored blob, None if absent. Raises PersistenceReadError on failure."""
        pass

    @abstractmethod
    async def delete(self, name: str) -> None:
        """Remove a blob if present. Raises PersistenceWriteError on failure."""
        pass

    async def close(self):
        pass


class FileCachePersistence(CachePersistence):
    """One `<name>.json` file per cache name under a directory."""

    def __init__(self, cache_dir: Optional[str] = None):
        self.cache_dir = Path(cache_dir or Config.get_cache_dir())

    def _path(self, name: str) -> Path:
        return self.cache_dir / f"{name}.json"

    def _write_sync(self, name: str, blob: bytes):
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        path = self._path(name)
        tmp_path = path.with_suffix('.json.tmp')
        tmp_path.write_bytes(blob)
        # Readers never see a half-written file
        os.replace(tmp_path, path)

    def _read_sync(self, name: str) -> Optional[bytes]:
        path = self._path(name)
        if not path.exists():
            return None
        return path.read_bytes()

    async def write(self, name: str, blob: bytes) -> None:
        try:
            await asyncio.to_thread(self._write_sync, name, blob)
        except OSError as e:
            logger.error(f"Failed to write cache file for {name}: {e}")
            raise PersistenceWriteError(name, str(e))

    async def read(self, name: str) -> Optional[bytes]:
        try:
            return await asyncio.to_thread(self._read_sync, name)
        except OSError as e:
            logger.error(f"Failed to read cache file for {name}: {e}")
            raise PersistenceReadError(name, str(e))

    async def delete(self, name: str) -> None:
        try:
            await asyncio.to_thread(self._path(name).unlink, missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete cache file for {name}: {e}")
            raise PersistenceWriteError(name, str(e))


class RedisCachePersistence(CachePersistence):
    """Blobs stored as plain Redis string values under a key prefix."""

    def __init__(self, client: redis.Redis, key_prefix: str = "boards:cache:"):
        self.client = client
        self.key_prefix = key_prefix

    def _key(self, name: str) -> str:
        return f"{self.key_prefix}{name}"

    async def write(self, name: str, blob: bytes) -> None:
        try:
            await self.client.set(self._key(name), blob)
        except redis.RedisError as e:
            logger.error(f"Failed to write Redis cache for {name}: {e}")
            raise PersistenceWriteError(name, str(e))

    async def read(self, name: str) -> Optional[bytes]:
        try:
            return await self.client.get(self._key(name))
        except redis.RedisError as e:
            logger.error(f"Failed to read Redis cache for {name}: {e}")
            raise PersistenceReadError(name, str(e))

    async def delete(self, name: str) -> None:
        try:
            await self.client.delete(self._key(name))
        except redis.RedisError as e:
            logger.error(f"Failed to delete Redis cache for {name}: {e}")
            raise PersistenceWriteError(name, str(e))

    async def close(self):
        await self.client.aclose()


def resolve_redis_url() -> Optional[str]:
    """
    The Redis URL the cache may use, or None.

    Outside DEBUG only a TLS URL with credentials is accepted; with DEBUG and
    no REDIS_URL set, a local server is assumed.
    """
    if Config.REDIS_URL:
        if _is_acceptable_redis_url(Config.REDIS_URL):
            return Config.REDIS_URL
        logger.error("REDIS_URL rejected for cache persistence")
        return None

    if not Config.DEBUG:
        logger.error("REDIS_URL is required for the redis cache backend outside DEBUG")
        return None

    logger.warning("DEBUG: no REDIS_URL set, using redis://localhost:6379 for the cache")
    return 'redis://localhost:6379'


def _is_acceptable_redis_url(redis_url: str) -> bool:
    if Config.DEBUG:
        if not redis_url.startswith(('redis://localhost', 'redis://127.0.0.1', 'rediss://')):
            logger.warning(f"Cache Redis URL is neither local nor TLS: {redis_url}")
        return True

    if not redis_url.startswith('rediss://'):
        logger.error("Cache Redis must use rediss:// (TLS) outside DEBUG")
        return False
    if '@' not in redis_url:
        logger.error("Cache Redis URL must carry credentials outside DEBUG")
        return False
    return True


async def connect_redis() -> Optional[redis.Redis]:
    """A pinged Redis client for the cache, or None when none is usable."""
    redis_url = resolve_redis_url()
    if not redis_url:
        return None

    client = redis.from_url(redis_url)
    try:
        await client.ping()
    except redis.RedisError as e:
        logger.error(f"Cache Redis at {redis_url} unreachable: {e}")
        await client.aclose()
        return None
    logger.info("Connected to cache Redis")
    return client


async def create_cache_persistence() -> CachePersistence:
    """Build the configured backend. Falls back to files when Redis is unreachable."""
    if Config.CACHE_BACKEND == 'redis':
        client = await connect_redis()
        if client is not None:
            logger.info("Using Redis cache persistence")
            return RedisCachePersistence(client)
        logger.warning("Redis unavailable, falling back to file cache persistence")
    logger.info(f"Using file cache persistence in {Config.get_cache_dir()}")
    return FileCachePersistence()
