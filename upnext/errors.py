from typing import Optional


class SyncError(Exception):
    """Base class for errors raised by the sync engine."""
    pass


class StoreUnavailable(SyncError):
    """The local store cannot be reached. Fatal for a batch."""
    pass


class ConstraintViolation(SyncError):
    """An insert or update broke a uniqueness or foreign key constraint."""
    pass


class NotFound(SyncError):
    """A referenced show, episode or movie is missing locally."""
    pass


class NotAuthenticated(SyncError):
    """No credentials are available."""
    pass


class Unauthorized(SyncError):
    """Token refresh failed or the remote rejected the token."""
    pass


class RateLimited(SyncError):
    """The remote API kept answering 429 after the retry."""

    def __init__(self, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__("API rate limit exceeded")


class HttpError(SyncError):
    """The remote API answered with an unexpected status code."""

    def __init__(self, status_code: int, url: str = ""):
        self.status_code = status_code
        self.url = url
        super().__init__(f"HTTP error: {status_code}" + (f" ({url})" if url else ""))


class NetworkError(SyncError):
    """The request never produced a response."""
    pass


class DecodingError(SyncError):
    """The remote payload did not match the expected shape."""
    pass
