"""
Results board for solo and cooperative timed runs.

Ranks raw score rows into deduplicated leaderboards and keeps the board-wide
preview aggregates cached until a score write invalidates them.
"""
