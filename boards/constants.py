"""
Board-wide constants for the results board.

Cache names, board kinds and the scoring curve parameters live here so the
ranking engine and the cache layer agree on them.
"""

from enum import Enum


class BoardKind(Enum):
    """Kinds of board that have a cached preview aggregate."""
    SP = "sp"
    COOP = "coop"
    
    @property
    def cache_name(self) -> str:
        return CacheNames.BY_KIND[self.value]
    
    @property
    def is_coop(self) -> bool:
        return self is BoardKind.COOP


class CacheNames:
    """Persisted blob names, one per board kind."""
    
    SP_PREVIEWS = "sp_previews"
    COOP_PREVIEWS = "coop_previews"
    
    BY_KIND = {
        "sp": SP_PREVIEWS,
        "coop": COOP_PREVIEWS,
    }


class PointsConstants:
    """Constants for the rank -> points curve."""
    
    # Points awarded to rank 1
    MAX_POINTS = 200.0
    
    # No ranked entry scores below this
    MIN_POINTS = 1.0
    
    DECIMALS = 2


class PlayerConstants:
    """Constants for player identities in raw results."""
    
    # System entries that must never occupy a ranked slot
    PLACEHOLDER_PLAYER_IDS = frozenset({"", "N/A"})
