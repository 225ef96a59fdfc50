"""
Leaderboard service for solo and cooperative boards.

The surface the routing layer calls: cached board-wide previews, always-fresh
ranked map pages, and cache invalidation for the write path.
"""

import logging
from typing import List, Optional, Tuple, Union

from boards.config import Config
from boards.constants import BoardKind
from boards.data_models.leaderboard import (
    PreviewRecord, RankedEntry, MapInfo, ScoreValidation, PbHistory,
    encode_previews, decode_previews
)
from boards.services.cache_coordinator import CacheCoordinator
from boards.services.preview_aggregator import PreviewAggregator
from boards.utils.board_exceptions import MapNotFoundError
from boards.utils.dedup import dedupe_scores, dedupe_pairs
from boards.utils.ranking import RankingUtility

logger = logging.getLogger(__name__)


class LeaderboardService:
    """Ranked pages, cached previews and invalidation."""

    def __init__(
        self,
        result_source,
        coordinator: CacheCoordinator,
        aggregator: Optional[PreviewAggregator] = None,
        page_size: Optional[int] = None,
        game_id: Optional[int] = None
    ):
        self.result_source = result_source
        self.coordinator = coordinator
        self.aggregator = aggregator or PreviewAggregator(result_source)
        self.page_size = Config.PAGE_SIZE if page_size is None else page_size
        self.game_id = Config.DEFAULT_GAME_ID if game_id is None else game_id

    async def get_preview(self, board_kind: Union[str, BoardKind]) -> List[PreviewRecord]:
        """Board-wide previews, served from cache while fresh."""
        kind = RankingUtility.parse_board_kind(board_kind)
        if kind.is_coop:
            compute_fn = lambda: self.aggregator.build_coop_previews(self.game_id)
        else:
            compute_fn = lambda: self.aggregator.build_sp_previews(self.game_id)

        return await self.coordinator.get_or_compute(
            kind.cache_name,
            compute_fn,
            encode=encode_previews,
            decode=decode_previews
        )

    async def get_ranked_page(
        self,
        map_id: str,
        category_id: Optional[int] = None,
        game_id: Optional[int] = None
    ) -> List[RankedEntry]:
        """Full ranked solo board for a map. Never cached."""
        category_id = await self._resolve_category(map_id, category_id)
        raw = await self.result_source.fetch_ranked_candidates(
            map_id, category_id, game_id or self.game_id
        )
        logger.debug(f"Ranking {len(raw)} solo rows for map {map_id}, category {category_id}")
        return RankingUtility.assign_ranks(dedupe_scores(raw), self.page_size)

    async def get_coop_ranked_page(
        self,
        map_id: str,
        category_id: Optional[int] = None,
        game_id: Optional[int] = None
    ) -> List[RankedEntry]:
        """Full ranked cooperative board for a map. Never cached."""
        category_id = await self._resolve_category(map_id, category_id)
        raw = await self.result_source.fetch_coop_candidates(
            map_id, category_id, game_id or self.game_id
        )
        logger.debug(f"Ranking {len(raw)} coop rows for map {map_id}, category {category_id}")
        return RankingUtility.assign_ranks(dedupe_pairs(raw), self.page_size)

    async def invalidate(self, board_kind: Union[str, BoardKind]):
        """Mark a board kind's preview aggregate stale. Call only after the write commits."""
        kind = RankingUtility.parse_board_kind(board_kind)
        await self.coordinator.invalidate(kind.cache_name)

    async def invalidate_all(self):
        for kind in BoardKind:
            await self.coordinator.invalidate(kind.cache_name)

    async def get_maps(self, is_coop: bool = False, game_id: Optional[int] = None) -> List[MapInfo]:
        return await self.result_source.get_maps(game_id or self.game_id, is_coop=is_coop)

    async def get_banned_scores(self, map_id: str, category_id: Optional[int] = None) -> List[Tuple[str, int]]:
        category_id = await self._resolve_category(map_id, category_id)
        return await self.result_source.get_banned_scores(map_id, category_id)

    async def is_score_banned(
        self,
        map_id: str,
        player_id: str,
        score: int,
        category_id: Optional[int] = None,
        game_id: Optional[int] = None
    ) -> bool:
        category_id = await self._resolve_category(map_id, category_id)
        return await self.result_source.is_score_banned(
            map_id, player_id, score, category_id, game_id or self.game_id
        )

    async def get_coop_banned_scores(self, map_id: str, category_id: Optional[int] = None) -> List[Tuple[str, str, int]]:
        category_id = await self._resolve_category(map_id, category_id)
        return await self.result_source.get_coop_banned_scores(map_id, category_id)

    async def get_pb_history(
        self,
        map_id: str,
        player_id: str,
        category_id: Optional[int] = None,
        game_id: Optional[int] = None
    ) -> Optional[PbHistory]:
        """A player's solo runs on a map, newest first. None for an unknown player."""
        category_id = await self._resolve_category(map_id, category_id)
        return await self.result_source.get_pb_history(
            map_id, player_id, category_id, game_id or self.game_id
        )

    async def score_details(
        self,
        map_id: str,
        player_id: str,
        score: int,
        category_id: Optional[int] = None,
        game_id: Optional[int] = None
    ) -> ScoreValidation:
        """
        Rank a prospective solo score against the current board.

        The board is deduplicated and ranked in full, without the page limit.
        post_rank counts every other player whose best is at or below the new
        score, since an equal score that arrived earlier keeps the better rank.
        """
        category_id = await self._resolve_category(map_id, category_id)
        game_id = game_id or self.game_id
        raw = await self.result_source.fetch_ranked_candidates(map_id, category_id, game_id)
        board = RankingUtility.assign_ranks(dedupe_scores(raw), len(raw))

        previous = next((ranked for ranked in board if ranked.entry.player_id == player_id), None)
        ahead = sum(
            1 for ranked in board
            if ranked.entry.player_id != player_id and ranked.entry.score <= score
        )
        banned = await self.result_source.is_score_banned(map_id, player_id, score, category_id, game_id)
        return ScoreValidation(
            previous_id=previous.entry.changelog_id if previous else None,
            pre_rank=previous.rank if previous else None,
            post_rank=ahead + 1,
            score_delta=previous.entry.score - score if previous else None,
            banned=banned
        )

    async def validate_score(
        self,
        map_id: str,
        player_id: str,
        score: int,
        category_id: Optional[int] = None,
        game_id: Optional[int] = None
    ) -> Optional[ScoreValidation]:
        """
        Details for a score that would become the player's new best.

        Returns None when the score is not a positive whole number or does not
        beat the player's current best on this board.
        """
        if not RankingUtility.is_valid_score(score):
            return None
        details = await self.score_details(map_id, player_id, score, category_id, game_id)
        if details.score_delta is not None and details.score_delta <= 0:
            logger.debug(f"Score {score} for {player_id} on {map_id} does not improve on their best")
            return None
        return details

    async def _resolve_category(self, map_id: str, category_id: Optional[int]) -> int:
        if category_id is not None:
            return category_id
        default_cat_id = await self.result_source.get_default_category(map_id)
        if default_cat_id is None:
            raise MapNotFoundError(map_id)
        return default_cat_id

    async def cleanup(self):
        """Cleanup in-flight cache work for graceful shutdown."""
        await self.coordinator.cleanup()
