"""
Exceptions raised by the Spelltale client.

Core reading operations never let these escape to their caller; they are
raised at the HTTP seam and turned into fallback content one level up.
The world API surface propagates ``WorldServiceError``.
"""


class SpelltaleError(Exception):
    """Base exception for all Spelltale client errors."""
    pass


class ContentServiceError(SpelltaleError):
    """Raised when the story service cannot deliver a usable response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class WorldServiceError(SpelltaleError):
    """Raised when a world simulation request fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
