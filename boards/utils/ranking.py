"""
Shared ranking utilities for solo and cooperative boards.

Ranks are assigned by position in an already deduplicated, score-ascending
sequence, so map pages and previews rank the same way.
"""

from typing import Sequence, List, Union

from boards.constants import BoardKind, PointsConstants
from boards.data_models.leaderboard import AnyScoreEntry, RankedEntry
from boards.utils.board_exceptions import InvalidBoardKindError


def points(rank: int) -> float:
    """
    Points awarded for a 1-based rank.

    Quadratic decay from MAX_POINTS at rank 1 with a floor of MIN_POINTS.
    Depends on the rank only.
    """
    if not isinstance(rank, int) or rank < 1:
        raise ValueError("rank must be a positive integer")
    base = max(PointsConstants.MAX_POINTS - (rank - 1), 0.0)
    value = base * base / PointsConstants.MAX_POINTS
    return round(max(PointsConstants.MIN_POINTS, value), PointsConstants.DECIMALS)


class RankingUtility:
    """Shared ranking logic for board pages and previews."""

    @staticmethod
    def assign_ranks(entries: Sequence[AnyScoreEntry], limit: int) -> List[RankedEntry]:
        """
        Rank a deduplicated sequence and truncate it to `limit` rows.

        Rank is the 1-based position. Equal scores do NOT share a rank; the
        earlier row (by arrival order) gets the better rank.
        """
        if limit < 0:
            raise ValueError("limit must not be negative")
        # TODO: Tied scores should share a rank once the board agrees on tie semantics.
        return [
            RankedEntry(entry=entry, rank=rank, points=points(rank))
            for rank, entry in enumerate(entries[:limit], start=1)
        ]

    @staticmethod
    def is_valid_score(score) -> bool:
        """Scores are positive whole numbers; bool is rejected although it is an int."""
        return isinstance(score, int) and not isinstance(score, bool) and score > 0

    @staticmethod
    def parse_board_kind(board_kind: Union[str, BoardKind]) -> BoardKind:
        """Resolve 'sp'/'coop' (or a BoardKind) to a BoardKind."""
        if isinstance(board_kind, BoardKind):
            return board_kind
        try:
            return BoardKind(str(board_kind).lower())
        except ValueError:
            raise InvalidBoardKindError(str(board_kind))
