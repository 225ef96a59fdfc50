"""
Leaderboard data models for solo and cooperative boards.

Provides immutable data transfer objects for raw score rows, ranked rows and
per-map previews, plus the JSON codec used for the persisted preview blobs.
"""

import json
from dataclasses import dataclass, asdict
from typing import List, Optional, Union


@dataclass(frozen=True)
class ScoreEntry:
    """Single solo run as returned by the result source."""
    player_id: str
    score: int
    map_id: str
    category_id: int
    timestamp: Optional[str] = None
    note: Optional[str] = None
    youtube_id: Optional[str] = None
    demo_id: Optional[int] = None
    submission: bool = False
    user_name: Optional[str] = None
    avatar: Optional[str] = None
    changelog_id: Optional[int] = None
    banned: bool = False
    verified: bool = True


@dataclass(frozen=True)
class PairedScoreEntry:
    """Single cooperative run; player_id_a and player_id_b are the two slots."""
    player_id_a: str
    player_id_b: str
    score: int
    map_id: str
    category_id: int
    a_is_host: bool = True
    timestamp: Optional[str] = None
    user_name_a: Optional[str] = None
    user_name_b: Optional[str] = None
    avatar_a: Optional[str] = None
    avatar_b: Optional[str] = None
    note_a: Optional[str] = None
    note_b: Optional[str] = None
    youtube_id_a: Optional[str] = None
    youtube_id_b: Optional[str] = None
    demo_id_a: Optional[int] = None
    demo_id_b: Optional[int] = None
    submission_a: bool = False
    submission_b: bool = False


AnyScoreEntry = Union[ScoreEntry, PairedScoreEntry]


@dataclass(frozen=True)
class RankedEntry:
    """Leaderboard row with its 1-based rank and derived points."""
    entry: AnyScoreEntry
    rank: int
    points: float

    def to_dict(self) -> dict:
        return {'entry': asdict(self.entry), 'rank': self.rank, 'points': self.points}

    @classmethod
    def from_dict(cls, data: dict) -> "RankedEntry":
        raw = data['entry']
        entry_cls = PairedScoreEntry if 'player_id_a' in raw else ScoreEntry
        return cls(entry=entry_cls(**raw), rank=data['rank'], points=data['points'])


@dataclass(frozen=True)
class PreviewRecord:
    """Top-N slice of one map's board."""
    map_id: str
    entries: List[RankedEntry]

    def to_dict(self) -> dict:
        return {'map_id': self.map_id, 'entries': [entry.to_dict() for entry in self.entries]}

    @classmethod
    def from_dict(cls, data: dict) -> "PreviewRecord":
        return cls(
            map_id=data['map_id'],
            entries=[RankedEntry.from_dict(entry) for entry in data['entries']]
        )


@dataclass(frozen=True)
class MapInfo:
    """Map registry row."""
    map_id: str
    name: str
    default_cat_id: int
    is_coop: bool = False


@dataclass(frozen=True)
class ScoreValidation:
    """
    Where a prospective solo score would land on its board.

    previous_id is the changelog id of the player's current best run, and
    score_delta is how much the new score improves on it. Both are None for a
    player's first run on the board. pre_rank is None in the same case.
    """
    previous_id: Optional[int]
    pre_rank: Optional[int]
    post_rank: int
    score_delta: Optional[int]
    banned: bool = False


@dataclass(frozen=True)
class PbHistory:
    """Every solo run a player has on one map/category, newest first."""
    player_id: str
    user_name: Optional[str]
    avatar: Optional[str]
    entries: List[ScoreEntry]


def encode_previews(previews: List[PreviewRecord]) -> bytes:
    """Serialize a board-wide preview list into a cache blob."""
    return json.dumps([preview.to_dict() for preview in previews]).encode('utf-8')


def decode_previews(blob: bytes) -> List[PreviewRecord]:
    """Inverse of encode_previews. Raises ValueError/KeyError/TypeError on malformed blobs."""
    data = json.loads(blob.decode('utf-8'))
    if not isinstance(data, list):
        raise ValueError("preview blob must be a JSON array")
    return [PreviewRecord.from_dict(item) for item in data]
