"""
Custom exceptions for the results board with user-facing error messages.
"""

FETCH_FAILED_MESSAGE = "Could not fetch leaderboard. Please try again later."

class BoardException(Exception):
    """Base exception for board-related errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class UpstreamFetchError(BoardException):
    """Raised when the result source or database fails during a read."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Upstream fetch failed during {operation}: {details}",
            FETCH_FAILED_MESSAGE
        )

class PersistenceWriteError(BoardException):
    """Raised when a cache blob could not be written."""
    def __init__(self, name: str, details: str = None):
        super().__init__(
            f"Could not write cache blob '{name}': {details}",
            FETCH_FAILED_MESSAGE
        )

class PersistenceReadError(BoardException):
    """Raised when a cache blob is missing, unreadable or corrupt."""
    def __init__(self, name: str, details: str = None):
        super().__init__(
            f"Could not read cache blob '{name}': {details}",
            FETCH_FAILED_MESSAGE
        )

class InvalidBoardKindError(BoardException):
    """Raised when a board kind other than sp/coop is requested."""
    def __init__(self, board_kind: str):
        super().__init__(
            f"Unknown board kind '{board_kind}'",
            "Board must be 'sp' or 'coop'."
        )

class MapNotFoundError(BoardException):
    """Raised when a map id is not in the map registry."""
    def __init__(self, map_id: str):
        super().__init__(
            f"Map '{map_id}' not found",
            f"Map '{map_id}' does not exist on this board."
        )

class ScoreNotFoundError(BoardException):
    """Raised when a changelog entry does not exist."""
    def __init__(self, changelog_id: int):
        super().__init__(
            f"Changelog entry {changelog_id} not found",
            "That score does not exist."
        )

class ScoreValidationError(BoardException):
    """Raised when a submitted score fails validation."""
    def __init__(self, score, reason: str):
        super().__init__(
            f"Invalid score {score}: {reason}",
            reason
        )

class DatabaseError(BoardException):
    """Raised when a write to the store fails."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Database error during {operation}: {details}",
            "Database error occurred. Please try again later."
        )
