"""
Services package for the results board.

Read-side services (result source, preview aggregation, cache coordination)
and the leaderboard surface that the routing layer calls.
"""

from .base import BaseService

__all__ = ['BaseService']
