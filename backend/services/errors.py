"""Error taxonomy shared by the TikTok client, token vault, store and job."""

from typing import Optional


class TikTokAPIError(Exception):
    """Base class for failures talking to the TikTok API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code


class InvalidRequest(TikTokAPIError):
    """Missing or malformed input; no request was sent."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message, 400, error_code)


class RateLimited(TikTokAPIError):
    """TikTok answered 429."""

    def __init__(self, retry_after: Optional[int] = None):
        message = "Rate limit exceeded"
        if retry_after:
            message = f"Rate limit exceeded. Retry after {retry_after} seconds."
        super().__init__(message, 429, "rate_limit_exceeded")
        self.retry_after = retry_after


class TokenExpired(TikTokAPIError):
    """Access token rejected with 401; refresh or reconnect required."""

    def __init__(self):
        super().__init__("Access token has expired", 401, "token_expired")


class ProviderError(TikTokAPIError):
    """Any other upstream failure (non-2xx, bad payload, transport error)."""


class AuthError(Exception):
    """OAuth handshake state is missing, mismatched, tampered or expired."""


class InvalidOrExpiredSeal(Exception):
    """A sealed token failed signature or expiry verification."""


class PersistenceError(Exception):
    """The database rejected or failed a store operation."""
