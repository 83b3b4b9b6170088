"""Error taxonomy shared by the fetch layer and its consumers."""


class PortfolioError(Exception):
    """Base class for portfolio synchronization errors."""
    pass


class RateLimitError(PortfolioError):
    """Raised when the API is throttling requests.

    Always recoverable by waiting until ``reset_at`` (epoch seconds).
    """

    def __init__(self, message: str, reset_at: float):
        super().__init__(message)
        self.reset_at = reset_at


class FetchError(PortfolioError):
    """Raised when a request could not be completed at the transport level."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Request to {url} failed: {reason}")
        self.url = url
        self.reason = reason


class PrimaryFetchFailed(PortfolioError):
    """Raised when the account identity could not be fetched."""
    pass


class StorageError(PortfolioError):
    """Raised when a persisted blob cannot be written."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Failed to write {key}: {reason}")
        self.key = key
        self.reason = reason
