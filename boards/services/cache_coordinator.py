"""
Freshness coordinator for cached board aggregates.

Each cache name has one entry that is either Stale or Fresh. A read of a Fresh
key serves the persisted blob; a read of a Stale key runs exactly one
recompute (single-flight) that every concurrent reader awaits, persists the
result and marks the key Fresh. Writers call invalidate() after their change
is committed.

Only this module reads or changes freshness state.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from boards.services.cache_persistence import CachePersistence
from boards.utils.board_exceptions import PersistenceReadError, PersistenceWriteError

logger = logging.getLogger(__name__)

Encoder = Callable[[Any], bytes]
Decoder = Callable[[bytes], Any]


class Freshness(Enum):
    STALE = "stale"
    FRESH = "fresh"


@dataclass
class CacheEntry:
    """State for one cache name. Mutated only while holding `lock`."""
    key: str
    freshness: Freshness = Freshness.STALE
    generation: int = 0
    inflight: Optional[asyncio.Task] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


# Written in place of a blob that could not be deleted; never decodes
STALE_MARKER = b"!stale"


def _encode_json(value: Any) -> bytes:
    return json.dumps(value).encode('utf-8')


def _decode_json(blob: bytes) -> Any:
    return json.loads(blob.decode('utf-8'))


class CacheCoordinator:
    """Per-key Stale/Fresh state machine with single-flight recompute."""

    def __init__(self, persistence: CachePersistence, adopt_persisted: bool = False):
        self.persistence = persistence
        self.adopt_persisted = adopt_persisted
        self._entries: Dict[str, CacheEntry] = {}
        self._table_lock = asyncio.Lock()
        self._background_tasks: Set[asyncio.Task] = set()
        self.recompute_count: Dict[str, int] = {}

    async def _get_entry(self, key: str) -> CacheEntry:
        async with self._table_lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = CacheEntry(key=key)
                self._entries[key] = entry
                if self.adopt_persisted:
                    # First reference in this process; a clean persisted blob counts as Fresh
                    entry.freshness = Freshness.FRESH
                logger.debug(f"Created cache entry {key} ({entry.freshness.value})")
            return entry

    async def is_fresh(self, key: str) -> bool:
        """
        Whether this process has marked the key Fresh.

        A key never referenced in this process reports False, including in
        adopt_persisted mode where its first read may still be served from the
        persisted blob without a recompute.
        """
        entry = self._entries.get(key)
        if entry is None:
            return False
        async with entry.lock:
            return entry.freshness is Freshness.FRESH

    async def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Awaitable[Any]],
        encode: Encoder = _encode_json,
        decode: Decoder = _decode_json
    ) -> Any:
        """
        Serve a key from persistence when Fresh, otherwise recompute it once.

        Concurrent callers that find the key Stale share one in-flight
        recompute. A caller being cancelled does not cancel that recompute.
        Errors from compute_fn propagate to every waiter and leave the key Stale.
        """
        entry = await self._get_entry(key)

        while True:
            async with entry.lock:
                if entry.freshness is Freshness.FRESH:
                    generation = entry.generation
                    task = None
                else:
                    if entry.inflight is None:
                        entry.inflight = self._start_recompute(entry, compute_fn, encode)
                    task = entry.inflight

            if task is not None:
                return await asyncio.shield(task)

            try:
                return await self._read_persisted(key, decode)
            except PersistenceReadError as e:
                logger.warning(f"Cache {key} marked fresh but unreadable, forcing recompute: {e}")
                async with entry.lock:
                    # Someone may already have invalidated or refreshed it meanwhile
                    if entry.generation == generation and entry.freshness is Freshness.FRESH:
                        entry.freshness = Freshness.STALE

    async def invalidate(self, key: str):
        """
        Mark a key Stale. Any recompute already running cannot mark it Fresh.

        In adopt_persisted mode the persisted blob is removed, or overwritten
        with a stale marker when removal fails. Raises PersistenceWriteError
        if neither works; the key is Stale in this process either way.
        """
        entry = await self._get_entry(key)
        async with entry.lock:
            entry.generation += 1
            entry.freshness = Freshness.STALE
            # Readers after this point must not join a recompute that began before the write
            entry.inflight = None
            if self.adopt_persisted:
                # Another process must not adopt the blob we just declared stale
                await self._retire_persisted(key)
        logger.info(f"Cache {key} invalidated")

    async def invalidate_all(self):
        """Mark every known key Stale."""
        async with self._table_lock:
            keys = list(self._entries)
        for key in keys:
            await self.invalidate(key)

    async def _read_persisted(self, key: str, decode: Decoder) -> Any:
        blob = await self.persistence.read(key)
        if blob is None:
            raise PersistenceReadError(key, "blob not found")
        if blob == STALE_MARKER:
            raise PersistenceReadError(key, "blob marked stale")
        try:
            return decode(blob)
        except (ValueError, KeyError, TypeError) as e:
            raise PersistenceReadError(key, f"corrupt blob: {e}")

    async def _retire_persisted(self, key: str):
        # Caller holds the entry lock
        try:
            await self.persistence.delete(key)
            return
        except PersistenceWriteError as e:
            logger.warning(f"Could not remove persisted blob for stale cache {key}, marking it stale: {e}")
        try:
            await self.persistence.write(key, STALE_MARKER)
        except PersistenceWriteError as e:
            logger.error(f"Persisted blob for {key} is stale and could not be retired: {e}")
            raise

    def _start_recompute(self, entry: CacheEntry, compute_fn, encode: Encoder) -> asyncio.Task:
        # Caller holds entry.lock
        task = asyncio.create_task(
            self._recompute(entry, entry.generation, compute_fn, encode),
            name=f"cache-recompute:{entry.key}"
        )
        self._background_tasks.add(task)
        task.add_done_callback(self._on_recompute_done)
        self.recompute_count[entry.key] = self.recompute_count.get(entry.key, 0) + 1
        return task

    async def _recompute(self, entry: CacheEntry, generation: int, compute_fn, encode: Encoder) -> Any:
        logger.info(f"Recomputing cache {entry.key}")
        try:
            value = await compute_fn()
            blob = encode(value)

            # Persisting under the lock keeps an outdated result from overwriting a newer blob
            async with entry.lock:
                if entry.generation != generation:
                    logger.info(f"Cache {entry.key} invalidated during recompute, not persisting")
                    return value
                try:
                    await self.persistence.write(entry.key, blob)
                except PersistenceWriteError as e:
                    # The value is still good for this round of readers; the next one retries
                    logger.warning(f"Cache {entry.key} computed but not persisted, staying stale: {e}")
                    return value
                entry.freshness = Freshness.FRESH
                logger.info(f"Cache {entry.key} is fresh")
            return value
        finally:
            async with entry.lock:
                if entry.inflight is asyncio.current_task():
                    entry.inflight = None

    def _on_recompute_done(self, task: asyncio.Task):
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            # Waiters get the error; this also covers the case where every waiter was cancelled
            logger.error(f"Cache recompute {task.get_name()} failed: {error}")

    async def cleanup(self):
        """Wait for in-flight recomputes during graceful shutdown."""
        if self._background_tasks:
            logger.info(f"Waiting for {len(self._background_tasks)} cache recomputes to complete...")
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
            self._background_tasks.clear()
