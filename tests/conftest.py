"""
Shared fakes for board tests.

The result source and the cache persistence are collaborators of the ranking
engine; these in-memory stand-ins record how often they are called and can be
told to fail or to block until released.
"""

import asyncio
import os
import tempfile

os.environ.setdefault('LOG_DIR', os.path.join(tempfile.gettempdir(), 'boards-test-logs'))

import pytest

from boards.data_models.leaderboard import ScoreEntry, PairedScoreEntry, MapInfo
from boards.services.cache_persistence import CachePersistence
from boards.utils.board_exceptions import (
    UpstreamFetchError, PersistenceReadError, PersistenceWriteError
)


def make_entry(player_id, score, map_id="47458", category_id=1, **kwargs) -> ScoreEntry:
    return ScoreEntry(player_id=player_id, score=score, map_id=map_id, category_id=category_id, **kwargs)


def make_pair(player_id_a, player_id_b, score, map_id="52642", category_id=1, **kwargs) -> PairedScoreEntry:
    return PairedScoreEntry(
        player_id_a=player_id_a,
        player_id_b=player_id_b,
        score=score,
        map_id=map_id,
        category_id=category_id,
        **kwargs
    )


class FakeResultSource:
    """Serves canned rows per map; rows must already be sorted by score."""

    def __init__(self, sp_maps=None, coop_maps=None, rows=None, coop_rows=None):
        self.sp_maps = sp_maps or []
        self.coop_maps = coop_maps or []
        self.rows = rows or {}
        self.coop_rows = coop_rows or {}
        self.fail = False
        self.gate = None  # asyncio.Event; when set, fetches wait on it
        self.get_maps_calls = 0
        self.fetch_calls = []

    async def _wait(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise UpstreamFetchError("fake fetch", "source unavailable")

    async def get_maps(self, game_id=1, is_coop=False):
        self.get_maps_calls += 1
        await self._wait()
        return list(self.coop_maps if is_coop else self.sp_maps)

    async def get_default_category(self, map_id):
        for map_info in self.sp_maps + self.coop_maps:
            if map_info.map_id == map_id:
                return map_info.default_cat_id
        return None

    async def fetch_ranked_candidates(self, map_id, category_id, game_id=1, limit=None):
        self.fetch_calls.append(('sp', map_id, category_id, game_id, limit))
        await self._wait()
        rows = self.rows.get(map_id, [])
        return list(rows if limit is None else rows[:limit])

    async def fetch_coop_candidates(self, map_id, category_id, game_id=1, limit=None):
        self.fetch_calls.append(('coop', map_id, category_id, game_id, limit))
        await self._wait()
        rows = self.coop_rows.get(map_id, [])
        return list(rows if limit is None else rows[:limit])

    async def get_banned_scores(self, map_id, category_id):
        return []

    async def is_score_banned(self, map_id, player_id, score, category_id, game_id=1):
        return False


class InMemoryPersistence(CachePersistence):
    """Dict-backed persistence with switchable failures."""

    def __init__(self):
        self.blobs = {}
        self.fail_writes = False
        self.fail_reads = False
        self.writes = 0
        self.reads = 0

    async def write(self, name, blob):
        self.writes += 1
        if self.fail_writes:
            raise PersistenceWriteError(name, "disk full")
        self.blobs[name] = blob

    async def read(self, name):
        self.reads += 1
        if self.fail_reads:
            raise PersistenceReadError(name, "I/O error")
        return self.blobs.get(name)

    async def delete(self, name):
        self.blobs.pop(name, None)


SP_MAPS = [
    MapInfo(map_id="47458", name="Portal Gun", default_cat_id=1),
    MapInfo(map_id="47455", name="Smooth Jazz", default_cat_id=1),
]

COOP_MAPS = [
    MapInfo(map_id="52642", name="Doors", default_cat_id=1, is_coop=True),
]


@pytest.fixture
def persistence():
    return InMemoryPersistence()


@pytest.fixture
def result_source():
    return FakeResultSource(
        sp_maps=list(SP_MAPS),
        coop_maps=list(COOP_MAPS),
        rows={
            "47458": [
                make_entry("P1", 100),
                make_entry("P2", 150),
                make_entry("P1", 200),
            ],
            "47455": [],
        },
        coop_rows={
            "52642": [
                make_pair("A", "B", 100),
                make_pair("A", "C", 150),
                make_pair("D", "B", 200),
                make_pair("A", "B", 250),
            ],
        },
    )


def run(coro):
    return asyncio.run(coro)
