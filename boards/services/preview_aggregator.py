"""
Board-wide preview aggregation.

Builds the top-N slice of every map's board for the overview pages. Each map
is fetched with headroom (PREVIEW_FETCH_LIMIT raw rows) so that enough rows
survive deduplication to fill PREVIEW_SIZE slots.
"""

import logging
from typing import List, Optional

from boards.config import Config
from boards.data_models.leaderboard import PreviewRecord, MapInfo
from boards.utils.dedup import dedupe_scores, dedupe_pairs
from boards.utils.ranking import RankingUtility

logger = logging.getLogger(__name__)


class PreviewAggregator:
    """Computes PreviewRecord lists for solo and cooperative boards."""

    def __init__(self, result_source, preview_size: Optional[int] = None, fetch_limit: Optional[int] = None):
        self.result_source = result_source
        self.preview_size = Config.PREVIEW_SIZE if preview_size is None else preview_size
        self.fetch_limit = Config.PREVIEW_FETCH_LIMIT if fetch_limit is None else fetch_limit
        if self.preview_size < 0:
            raise ValueError("preview_size must not be negative")
        if self.fetch_limit < self.preview_size:
            raise ValueError("fetch_limit must be at least preview_size")

    async def build_sp_previews(self, game_id: int = 1) -> List[PreviewRecord]:
        """Top-N solo rows for every solo map of a game, in registry order."""
        maps = await self.result_source.get_maps(game_id, is_coop=False)
        previews = []
        for map_info in maps:
            previews.append(await self.build_sp_preview(map_info, game_id))
        logger.info(f"Built solo previews for {len(previews)} maps (game {game_id})")
        return previews

    async def build_sp_preview(self, map_info: MapInfo, game_id: int = 1) -> PreviewRecord:
        raw = await self.result_source.fetch_ranked_candidates(
            map_info.map_id, map_info.default_cat_id, game_id, self.fetch_limit
        )
        entries = RankingUtility.assign_ranks(dedupe_scores(raw), self.preview_size)
        return PreviewRecord(map_id=map_info.map_id, entries=entries)

    async def build_coop_previews(self, game_id: int = 1) -> List[PreviewRecord]:
        """Top-N cooperative rows for every cooperative map of a game."""
        maps = await self.result_source.get_maps(game_id, is_coop=True)
        previews = []
        for map_info in maps:
            previews.append(await self.build_coop_preview(map_info, game_id))
        logger.info(f"Built coop previews for {len(previews)} maps (game {game_id})")
        return previews

    async def build_coop_preview(self, map_info: MapInfo, game_id: int = 1) -> PreviewRecord:
        raw = await self.result_source.fetch_coop_candidates(
            map_info.map_id, map_info.default_cat_id, game_id, self.fetch_limit
        )
        entries = RankingUtility.assign_ranks(dedupe_pairs(raw), self.preview_size)
        return PreviewRecord(map_id=map_info.map_id, entries=entries)
