from __future__ import annotations


class DigestError(Exception):
    """Base class for failures that end a generation run."""


class ConfigError(DigestError):
    pass


class FetchError(DigestError):
    """A single feed could not be fetched or parsed.

    Raised per source and handled by the fetcher, which skips the source.
    """

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Feed fetch failed ({url}): {reason}")
        self.url = url
        self.reason = reason


class SummarizeError(DigestError):
    pass


class PublishError(DigestError):
    pass


class PersistenceError(DigestError):
    pass
