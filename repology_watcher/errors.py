"""Exceptions raised by Repology Watcher."""


class WatcherError(Exception):
    """Base class for all Repology Watcher errors."""


class FetchError(WatcherError):
    """Raised when the Repology API cannot be fetched or decoded."""


class StateError(WatcherError):
    """Raised when the package snapshot cannot be written."""


class FeedWriteError(WatcherError):
    """Raised when the RSS feed cannot be persisted. Fatal to a run."""
