"""TikTok OAuth handshake - authorization code flow with PKCE.

begin() produces the authorization URL plus the CSRF state and PKCE verifier,
each wrapped in a short-lived signed value meant for an http-only cookie.
complete() validates the callback against those values, exchanges the code,
fetches the profile and upserts the account. complete() never raises: every
exit is a HandshakeOutcome carrying a success or error code for the UI.
"""

import base64
import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from pydantic import BaseModel

from config import Settings
from services.errors import (
    AuthError,
    InvalidOrExpiredSeal,
    PersistenceError,
    RateLimited,
    TikTokAPIError,
    TokenExpired,
)
from services.snapshot_store import SnapshotStore
from services.tiktok_service import TikTokClient
from services.token_vault import TokenVault

logger = logging.getLogger(__name__)

STATE_COOKIE = "oauth_state"
VERIFIER_COOKIE = "oauth_code_verifier"

# Human-readable message per code, shown by the dashboard
MESSAGES: dict[str, str] = {
    # Success
    "tiktok_connected": "TikTok account connected successfully!",
    "account_disconnected": "Account disconnected successfully.",
    # Errors
    "oauth_denied": "OAuth authorization was denied.",
    "invalid_client_key": "TikTok client key is invalid. Check the app configuration.",
    "invalid_redirect_uri": "Redirect URI is not registered with TikTok. Check redirect URI settings.",
    "no_code": "Authorization code not received. Check redirect URI settings.",
    "invalid_state": "Invalid authorization state.",
    "token_exchange_failed": "Failed to exchange authorization code.",
    "user_fetch_failed": "Failed to fetch user information.",
    "token_expired": "Access token has expired. Please reconnect your account.",
    "rate_limit": "Rate limit exceeded. Please try again later.",
    "database_error": "Database error occurred.",
    "unexpected_error": "An unexpected error occurred.",
    "disconnect_failed": "Failed to disconnect account.",
    "configuration_error": "TikTok OAuth is not configured.",
}


def generate_code_verifier() -> str:
    """43-character URL-safe PKCE verifier."""
    return secrets.token_urlsafe(32)


def generate_code_challenge(code_verifier: str) -> str:
    """S256 challenge: base64url(SHA-256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class HandshakeStateSigner:
    """Signs handshake values (state, verifier) into expiring tokens.

    Each value carries a purpose claim so a state token can't be replayed
    as a verifier or vice versa.
    """

    def __init__(self, secret: str, algorithm: str = "HS256", ttl_seconds: int = 600):
        self.ttl_seconds = ttl_seconds
        self._vault = TokenVault(secret, algorithm, timedelta(seconds=ttl_seconds))

    @classmethod
    def from_settings(cls, settings: Settings) -> "HandshakeStateSigner":
        return cls(settings.jwt_secret, settings.jwt_algorithm, settings.oauth_state_ttl_seconds)

    def sign(self, purpose: str, value: str) -> str:
        return self._vault.seal({"purpose": purpose, "value": value})

    def unsign(self, purpose: str, signed: Optional[str]) -> str:
        if not signed:
            raise AuthError(f"Missing {purpose}")
        try:
            payload = self._vault.open(signed)
        except InvalidOrExpiredSeal as e:
            raise AuthError(f"Invalid or expired {purpose}") from e
        if not isinstance(payload, dict) or payload.get("purpose") != purpose or not payload.get("value"):
            raise AuthError(f"Signed value is not a {purpose}")
        return payload["value"]


class HandshakeStart(BaseModel):
    authorization_url: str
    state: str
    code_verifier: str
    state_cookie: str
    verifier_cookie: str


class HandshakeOutcome(BaseModel):
    """Terminal result of a callback."""
    success: bool
    code: str
    account_id: Optional[str] = None
    state_consumed: bool = False
    verifier_consumed: bool = False

    @property
    def query_param(self) -> str:
        return "success" if self.success else "error"

    @property
    def message(self) -> str:
        return MESSAGES.get(self.code, "An error occurred.")


class OAuthHandshakeController:
    """Drives one authorization attempt from redirect to stored account."""

    def __init__(
        self,
        client: TikTokClient,
        vault: TokenVault,
        signer: HandshakeStateSigner,
        store: SnapshotStore,
    ):
        self.client = client
        self.vault = vault
        self.signer = signer
        self.store = store

    def begin(self) -> HandshakeStart:
        """Generate state and PKCE pair and build the authorization URL."""
        state = secrets.token_hex(32)
        code_verifier = generate_code_verifier()
        code_challenge = generate_code_challenge(code_verifier)

        authorization_url = self.client.build_authorization_url(state, code_challenge)

        return HandshakeStart(
            authorization_url=authorization_url,
            state=state,
            code_verifier=code_verifier,
            state_cookie=self.signer.sign(STATE_COOKIE, state),
            verifier_cookie=self.signer.sign(VERIFIER_COOKIE, code_verifier),
        )

    async def complete(
        self,
        params: Mapping[str, str],
        state_cookie: Optional[str],
        verifier_cookie: Optional[str],
    ) -> HandshakeOutcome:
        """Handle the OAuth callback. Never raises."""
        outcome = HandshakeOutcome(success=False, code="unexpected_error")
        try:
            return await self._complete(params, state_cookie, verifier_cookie, outcome)
        except Exception as e:
            logger.exception(f"Unexpected error in OAuth callback: {e}")
            outcome.success = False
            outcome.code = "unexpected_error"
            return outcome

    async def _complete(
        self,
        params: Mapping[str, str],
        state_cookie: Optional[str],
        verifier_cookie: Optional[str],
        outcome: HandshakeOutcome,
    ) -> HandshakeOutcome:
        def fail(code: str) -> HandshakeOutcome:
            outcome.success = False
            outcome.code = code
            return outcome

        error = params.get("error")
        if error:
            description = params.get("error_description") or error
            logger.error(
                f"TikTok OAuth error: error={error} description={description} "
                f"error_code={params.get('error_code')} log_id={params.get('log_id')}"
            )
            return fail(self.client.classify_authorization_error(error, description))

        code = params.get("code")
        if not code:
            if len(params) == 0:
                logger.error("OAuth callback received no parameters; redirect URI is likely misconfigured")
                return fail("invalid_redirect_uri")
            logger.error("No authorization code received")
            return fail("no_code")

        # CSRF state - the cookie is consumed whatever the result
        outcome.state_consumed = True
        try:
            stored_state = self.signer.unsign(STATE_COOKIE, state_cookie)
        except AuthError as e:
            logger.error(f"Invalid CSRF state: {e}")
            return fail("invalid_state")
        received_state = params.get("state") or ""
        if not hmac.compare_digest(stored_state.encode(), received_state.encode()):
            logger.error("Invalid CSRF state: state parameter does not match cookie")
            return fail("invalid_state")

        # PKCE verifier
        outcome.verifier_consumed = True
        try:
            code_verifier = self.signer.unsign(VERIFIER_COOKIE, verifier_cookie)
        except AuthError as e:
            logger.error(f"Code verifier not available: {e}")
            return fail("invalid_state")

        try:
            grant = await self.client.exchange_authorization_code(code, code_verifier)
        except RateLimited as e:
            logger.error(f"Token exchange rate limited: {e}")
            return fail("rate_limit")
        except TikTokAPIError as e:
            logger.error(f"Token exchange failure: {e}")
            return fail("token_exchange_failed")

        try:
            profile = await self.client.fetch_profile(grant.access_token)
        except RateLimited as e:
            logger.error(f"User info rate limited: {e}")
            return fail("rate_limit")
        except TokenExpired as e:
            logger.error(f"Fresh access token rejected: {e}")
            return fail("token_expired")
        except TikTokAPIError as e:
            logger.error(f"Failed to fetch TikTok user info: {e}")
            return fail("user_fetch_failed")

        provider_user_id = grant.open_id or profile.open_id
        if not provider_user_id:
            logger.error("Neither token response nor profile carried an open_id")
            return fail("user_fetch_failed")

        sealed_access = self.vault.seal_token(grant.access_token)
        sealed_refresh = self.vault.seal_token(grant.refresh_token) if grant.refresh_token else None
        token_expires_at = (
            datetime.now(timezone.utc) + timedelta(seconds=grant.expires_in)
            if grant.expires_in
            else None
        )

        try:
            account = await self.store.upsert_account_by_provider_id(
                provider_user_id,
                sealed_access,
                sealed_refresh,
                profile.display_name,
                avatar_url=profile.avatar_url,
                token_expires_at=token_expires_at,
            )
        except PersistenceError as e:
            logger.error(f"Database error during account upsert: {e}")
            return fail("database_error")

        logger.info(f"TikTok account connected: {provider_user_id} ({profile.display_name})")
        outcome.success = True
        outcome.code = "tiktok_connected"
        outcome.account_id = account.id
        return outcome
