"""Error taxonomy for the crawler."""

from typing import Optional


class CrawlerError(Exception):
    """Base class for all crawler errors."""


class FetchError(CrawlerError):
    """Network, HTTP or timeout failure while fetching a source."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class ParseError(CrawlerError):
    """Malformed feed, JSON or HTML payload."""


class ItemValidationError(CrawlerError):
    """Item is missing mandatory fields and was dropped."""


class ConfigError(CrawlerError):
    """Source or adapter configuration is unusable."""


class StorageError(CrawlerError):
    """Content or index write failed and was rolled back."""


class CrawlSystemError(CrawlerError):
    """Unexpected failure inside the run loop."""


ERROR_CATEGORIES = (
    (FetchError, "fetch"),
    (ParseError, "parse"),
    (ItemValidationError, "validation"),
    (ConfigError, "config"),
    (StorageError, "storage"),
)


def error_category(error: BaseException) -> str:
    """Category name of an error, as kept in the source error log."""
    for error_class, name in ERROR_CATEGORIES:
        if isinstance(error, error_class):
            return name
    return "system"
