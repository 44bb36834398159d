"""
Exception hierarchy shared by the loaders, the query cache and the aggregator.
"""

from typing import Optional


class BugSearchError(Exception):
    """Base class for every error raised while resolving bug searches."""


class UnsupportedSearchError(BugSearchError):
    """Raised when a search descriptor names a type no loader handles."""

    def __init__(self, search_type: Optional[str]):
        self.search_type = search_type
        super().__init__(f"Unsupported bug search type: {search_type!r}")


class InvalidSearchError(BugSearchError, ValueError):
    """Raised when a search descriptor of a known type is missing a required field."""


class TrackerError(BugSearchError):
    """A remote tracker call failed."""

    source = "tracker"

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(f"{self.source}: {message}" + (f" (status {status})" if status else ""))


class BugzillaError(TrackerError):
    source = "bugzilla"


class GitHubError(TrackerError):
    source = "github"


__all__ = ["BugSearchError", "UnsupportedSearchError", "InvalidSearchError", "TrackerError", "BugzillaError", "GitHubError"]
