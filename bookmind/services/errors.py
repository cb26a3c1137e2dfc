"""Exceptions raised by the bookmark services and translated by the API layer."""


class BookmarkError(Exception):
    pass


class InvalidBookmarkRequest(BookmarkError):
    """Raised for requests that fail validation before anything is written."""


class BookmarkNotFound(BookmarkError):
    def __init__(self, bookmark_id: str) -> None:
        self.bookmark_id = bookmark_id
        super().__init__(f"Bookmark not found: {bookmark_id}")


class ProviderUnavailable(BookmarkError):
    """Raised by the AI provider when it is not configured."""
