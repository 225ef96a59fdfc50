"""
Duplicate filtering for raw board results.

Raw rows arrive sorted by score ascending (best first), so the first time a
player shows up is that player's best qualifying run. Both filters are a single
linear pass over the rows with a seen-set of player ids.
"""

from enum import Enum
from typing import Iterable, List, Set, Tuple

from boards.constants import PlayerConstants
from boards.data_models.leaderboard import ScoreEntry, PairedScoreEntry


class PairDecision(Enum):
    """Outcome of checking both slots of a cooperative run against the seen-set."""
    BOTH_NEW = "both_new"
    A_NEW = "a_new"
    B_NEW = "b_new"
    BOTH_SEEN = "both_seen"


# A pair is dropped only when neither slot brings a new player
KEEP_PAIR = {
    PairDecision.BOTH_NEW: True,
    PairDecision.A_NEW: True,
    PairDecision.B_NEW: True,
    PairDecision.BOTH_SEEN: False,
}


def is_placeholder(player_id) -> bool:
    """True for blank ids and system placeholder ids."""
    if player_id is None:
        return True
    player_id = str(player_id)
    return not player_id.strip() or player_id in PlayerConstants.PLACEHOLDER_PLAYER_IDS


def _new_seen_set() -> Set[str]:
    return set(PlayerConstants.PLACEHOLDER_PLAYER_IDS)


def _mark(seen: Set[str], player_id) -> bool:
    """Mark a slot used. Returns True if it was unused before."""
    if is_placeholder(player_id):
        return False
    if player_id in seen:
        return False
    seen.add(player_id)
    return True


def dedupe_scores(entries: Iterable[ScoreEntry]) -> List[ScoreEntry]:
    """Keep only the first (best) entry per player, preserving order."""
    seen = _new_seen_set()
    return [entry for entry in entries if _mark(seen, entry.player_id)]


def classify_pair(seen: Set[str], entry: PairedScoreEntry) -> PairDecision:
    """
    Mark both slots of a pair and report which of them were new.

    Slot A is marked first; slot B is always marked too, so a later run by
    B alone is recognised as a repeat even when this pair was kept for A.
    """
    a_new = _mark(seen, entry.player_id_a)
    b_new = _mark(seen, entry.player_id_b)
    if a_new and b_new:
        return PairDecision.BOTH_NEW
    if a_new:
        return PairDecision.A_NEW
    if b_new:
        return PairDecision.B_NEW
    return PairDecision.BOTH_SEEN


def classify_pairs(entries: Iterable[PairedScoreEntry]) -> List[Tuple[PairedScoreEntry, PairDecision]]:
    """Decision for every pair in order; useful for auditing why a run was hidden."""
    seen = _new_seen_set()
    return [(entry, classify_pair(seen, entry)) for entry in entries]


def dedupe_pairs(entries: Iterable[PairedScoreEntry]) -> List[PairedScoreEntry]:
    """Drop cooperative runs where both players already have a better run."""
    return [entry for entry, decision in classify_pairs(entries) if KEEP_PAIR[decision]]
