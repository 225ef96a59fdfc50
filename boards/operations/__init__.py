"""
Write-path operations for the results board.
"""

from boards.operations.score_operations import ScoreOperations

__all__ = ['ScoreOperations']
