"""TikTok OAuth and API client.

Handles the token endpoint (code exchange and refresh), user info and the
paginated video list for connected creator accounts. Read-only access - only
fetches analytics, doesn't post content.

TikTok wraps payloads inconsistently ({"data": {...}} vs a flat object), so
every response is normalised into the typed models below. Failures are
raised as typed errors from services.errors so callers can branch on them.
"""

import logging
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel

from config import Settings
from services.errors import (
    InvalidRequest,
    ProviderError,
    RateLimited,
    TikTokAPIError,
    TokenExpired,
)

logger = logging.getLogger(__name__)

TIKTOK_AUTHORIZE_URL = "https://www.tiktok.com/v2/auth/authorize/"
TIKTOK_API_BASE = "https://open.tiktokapis.com/v2"
TIKTOK_TOKEN_URL = f"{TIKTOK_API_BASE}/oauth/token/"
TIKTOK_USER_INFO_URL = f"{TIKTOK_API_BASE}/user/info/"
TIKTOK_VIDEO_LIST_URL = f"{TIKTOK_API_BASE}/video/list/"

USER_INFO_FIELDS = "open_id,display_name,avatar_url,follower_count,likes_count"
VIDEO_FIELDS = "id,create_time,view_count,like_count,comment_count,share_count"

# Body-level error codes TikTok sends alongside HTTP 200
BODY_OK_CODES = (None, "", 0, "ok")
BODY_TOKEN_CODES = ("access_token_invalid", "invalid_token", "token_expired")
BODY_RATE_LIMIT_CODES = ("rate_limit_exceeded",)


class TokenGrant(BaseModel):
    """Normalised response of the token endpoint."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    open_id: Optional[str] = None


class Profile(BaseModel):
    open_id: Optional[str] = None
    display_name: str = ""
    avatar_url: str = ""
    follower_count: int = 0
    likes_count: int = 0


class Video(BaseModel):
    id: str
    create_time: Optional[int] = None
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    share_count: int = 0


class VideoPage(BaseModel):
    videos: list[Video]
    cursor: Optional[str] = None
    has_more: bool = False


def _parse_body(response: httpx.Response) -> Any:
    """Decode JSON, keeping a truncated raw body when TikTok sends something else."""
    try:
        return response.json()
    except ValueError:
        return {"error": "Invalid JSON response", "raw_response": response.text[:500]}


def _unwrap(body: Any) -> dict:
    """Return the inner object of {"data": {...}} or the flat body itself."""
    if isinstance(body, dict):
        data = body.get("data")
        if isinstance(data, dict) and data:
            return data
        return body
    return {}


def _retry_after(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _error_details(body: Any) -> tuple[Optional[str], Optional[str]]:
    """Extract (error_code, message) from the several error shapes TikTok uses."""
    if not isinstance(body, dict):
        return None, None
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("code"), error.get("message")
    message = body.get("error_description") or body.get("message")
    if isinstance(error, str):
        return body.get("error_code") or error, message or error
    return body.get("error_code"), message


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class TikTokClient:
    """Typed async client for the TikTok v2 API."""

    def __init__(self, settings: Settings):
        self.client_key = settings.tiktok_client_key
        self.client_secret = settings.tiktok_client_secret
        self.redirect_uri = settings.tiktok_redirect_uri
        self.scopes = settings.tiktok_scopes
        self.timeout = settings.http_timeout_seconds

    # --- OAuth ---

    def build_authorization_url(self, state: str, code_challenge: str) -> str:
        """Build the TikTok authorization URL for the PKCE flow."""
        if not self.client_key:
            raise InvalidRequest("TIKTOK_CLIENT_KEY not configured", "missing_credentials")

        params = {
            "client_key": self.client_key,
            "redirect_uri": self.redirect_uri,
            "scope": self.scopes,
            "response_type": "code",
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{TIKTOK_AUTHORIZE_URL}?{urlencode(params)}"

    @staticmethod
    def classify_authorization_error(error: str, description: Optional[str] = None) -> str:
        """Map an error reported on the OAuth callback to a dashboard error code.

        Exact error codes win; the description substring check only covers
        responses where TikTok puts the detail in free text.
        """
        error = (error or "").strip()
        description = description or ""

        if error in ("invalid_client_key", "invalid_client"):
            return "invalid_client_key"
        if error == "invalid_redirect_uri":
            return "invalid_redirect_uri"
        if error == "access_denied":
            return "oauth_denied"

        if "client_key" in description or "client_key" in error:
            return "invalid_client_key"
        if "redirect_uri" in description or "redirect_uri" in error:
            return "invalid_redirect_uri"
        return "oauth_denied"

    async def exchange_authorization_code(self, code: str, code_verifier: str) -> TokenGrant:
        """Exchange an authorization code (plus PKCE verifier) for tokens."""
        if not code or not code.strip():
            raise InvalidRequest("Authorization code is required", "missing_code")
        if not code_verifier or not code_verifier.strip():
            raise InvalidRequest("Code verifier is required for PKCE", "missing_code_verifier")
        self._require_credentials()

        logger.info(
            f"Token exchange request: client_key={self.client_key[:4]}..., "
            f"code_length={len(code)}, code_verifier_length={len(code_verifier)}"
        )
        return await self._token_request({
            "client_key": self.client_key,
            "client_secret": self.client_secret,
            "code": code.strip(),
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
            "code_verifier": code_verifier.strip(),
        }, "exchange code for tokens")

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Get a new access token using a refresh token."""
        if not refresh_token or not refresh_token.strip():
            raise InvalidRequest("Refresh token is required", "missing_refresh_token")
        self._require_credentials()

        return await self._token_request({
            "client_key": self.client_key,
            "client_secret": self.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }, "refresh access token")

    # --- Data endpoints ---

    async def fetch_profile(self, access_token: str) -> Profile:
        """Fetch the authorised user's profile and public counters."""
        body = await self._get(
            TIKTOK_USER_INFO_URL,
            access_token,
            {"fields": USER_INFO_FIELDS},
            "fetch user info",
        )

        data = _unwrap(body)
        user = data.get("user") if isinstance(data.get("user"), dict) else data
        if not user or not isinstance(user, dict):
            logger.error(f"Unexpected TikTok user info structure: {body}")
            raise ProviderError("Unexpected response structure from TikTok user info", 500)

        return Profile(
            open_id=user.get("open_id") or user.get("openId"),
            display_name=user.get("display_name") or user.get("displayName") or "",
            avatar_url=user.get("avatar_url") or user.get("avatarUrl") or "",
            follower_count=_int(user.get("follower_count") or user.get("followerCount")),
            likes_count=_int(user.get("likes_count") or user.get("likesCount")),
        )

    async def fetch_video_page(
        self, access_token: str, cursor: Optional[str] = None
    ) -> VideoPage:
        """Fetch one page of the user's videos."""
        params = {"fields": VIDEO_FIELDS}
        if cursor:
            params["cursor"] = cursor

        body = await self._get(TIKTOK_VIDEO_LIST_URL, access_token, params, "fetch user videos")

        data = _unwrap(body)
        videos = []
        for item in data.get("videos") or []:
            if not isinstance(item, dict) or item.get("id") is None:
                continue
            videos.append(Video(
                id=str(item["id"]),
                create_time=item.get("create_time"),
                view_count=_int(item.get("view_count")),
                like_count=_int(item.get("like_count")),
                comment_count=_int(item.get("comment_count")),
                share_count=_int(item.get("share_count")),
            ))

        next_cursor = data.get("cursor")
        return VideoPage(
            videos=videos,
            cursor=str(next_cursor) if next_cursor not in (None, "") else None,
            has_more=bool(data.get("has_more", False)),
        )

    # --- Internals ---

    def _require_credentials(self) -> None:
        if not self.client_key or not self.client_secret:
            raise InvalidRequest(
                "TikTok client credentials are not configured", "missing_credentials"
            )

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise ProviderError(f"Connection error talking to TikTok: {e}") from e

    async def _token_request(self, form: dict, action: str) -> TokenGrant:
        response = await self._send(
            "POST",
            TIKTOK_TOKEN_URL,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        body = _parse_body(response)

        if not response.is_success:
            self._raise_for_response(response, body, action, token_endpoint=True)

        error_code, message = _error_details(body)
        data = _unwrap(body)
        if not data.get("access_token"):
            logger.error(f"Unexpected token response from TikTok ({action}): {body}")
            raise ProviderError(
                f"Failed to {action}: {message or 'no access_token in response'}",
                response.status_code,
                error_code,
            )

        expires_in = data.get("expires_in")
        return TokenGrant(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or None,
            expires_in=_int(expires_in) if expires_in is not None else None,
            open_id=data.get("open_id"),
        )

    async def _get(self, url: str, access_token: str, params: dict, action: str) -> dict:
        response = await self._send(
            "GET",
            url,
            params=params,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
        )
        body = _parse_body(response)

        if not response.is_success:
            self._raise_for_response(response, body, action)

        error_code, message = _error_details(body)
        if error_code not in BODY_OK_CODES:
            logger.warning(f"TikTok API error in response ({action}): code={error_code} msg={message}")
            if error_code in BODY_TOKEN_CODES:
                raise TokenExpired()
            if error_code in BODY_RATE_LIMIT_CODES:
                raise RateLimited(_retry_after(response))
            raise ProviderError(
                f"Failed to {action}: {message or error_code}",
                response.status_code,
                str(error_code),
            )
        return body if isinstance(body, dict) else {}

    def _raise_for_response(
        self,
        response: httpx.Response,
        body: Any,
        action: str,
        token_endpoint: bool = False,
    ) -> None:
        """Raise the typed error matching a non-2xx response."""
        status = response.status_code
        logger.error(f"TikTok {action} failed: status={status} body={body}")

        if status == 429:
            raise RateLimited(_retry_after(response))
        # 401 on the token endpoint means bad client credentials or a dead
        # refresh token, not an expired access token.
        if status == 401 and not token_endpoint:
            raise TokenExpired()

        error_code, message = _error_details(body)
        raise ProviderError(
            f"Failed to {action}: {message or f'HTTP {status}'}",
            status,
            error_code,
        )


__all__ = [
    "TikTokAPIError",
    "TikTokClient",
    "TokenGrant",
    "Profile",
    "Video",
    "VideoPage",
]
