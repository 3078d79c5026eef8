"""Tests for OAuthHandshakeController.

The controller works on cookie values directly, so the whole handshake is
exercised without a browser or HTTP server. TikTok is mocked with respx.
"""

from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import respx

from services.errors import PersistenceError
from services.oauth_handshake import (
    HandshakeStart,
    HandshakeStateSigner,
    OAuthHandshakeController,
    generate_code_challenge,
)
from services.snapshot_store import SnapshotStore
from services.tiktok_service import TIKTOK_TOKEN_URL, TIKTOK_USER_INFO_URL, TikTokClient
from services.token_vault import TokenVault

TOKEN_BODY = {
    "access_token": "act.fresh",
    "refresh_token": "rft.fresh",
    "expires_in": 86400,
    "open_id": "open-id-1",
}

USER_BODY = {
    "data": {"user": {"open_id": "open-id-1", "display_name": "creator_one", "follower_count": 10}},
    "error": {"code": "ok", "message": ""},
}


@pytest.fixture
def controller(tiktok_client: TikTokClient, vault: TokenVault, settings, store: SnapshotStore) -> OAuthHandshakeController:
    return OAuthHandshakeController(tiktok_client, vault, HandshakeStateSigner.from_settings(settings), store)


def _callback_params(start: HandshakeStart, **overrides) -> dict[str, str]:
    params = {"code": "auth-code", "state": start.state, "scopes": "user.info.basic"}
    params.update(overrides)
    return params


class TestBegin:
    def test_authorization_url_carries_state_and_challenge(self, controller: OAuthHandshakeController) -> None:
        start = controller.begin()
        query = parse_qs(urlparse(start.authorization_url).query)

        assert query["state"] == [start.state]
        assert query["code_challenge"] == [generate_code_challenge(start.code_verifier)]
        assert len(start.state) == 64

    def test_each_begin_is_unique(self, controller: OAuthHandshakeController) -> None:
        assert controller.begin().state != controller.begin().state


class TestComplete:
    @pytest.mark.asyncio
    async def test_happy_path_creates_account(
        self, controller: OAuthHandshakeController, store: SnapshotStore, vault: TokenVault
    ) -> None:
        start = controller.begin()

        with respx.mock:
            token_route = respx.post(TIKTOK_TOKEN_URL).mock(return_value=httpx.Response(200, json=TOKEN_BODY))
            respx.get(TIKTOK_USER_INFO_URL).mock(return_value=httpx.Response(200, json=USER_BODY))
            outcome = await controller.complete(_callback_params(start), start.state_cookie, start.verifier_cookie)

        assert outcome.success is True
        assert outcome.code == "tiktok_connected"
        assert outcome.query_param == "success"
        assert outcome.state_consumed and outcome.verifier_consumed

        form = parse_qs(token_route.calls.last.request.content.decode())
        assert form["code_verifier"] == [start.code_verifier]

        account = await store.get_account(outcome.account_id)
        assert account.tiktok_user_id == "open-id-1"
        assert account.display_name == "creator_one"
        assert account.access_token != "act.fresh"
        assert vault.open_token(account.access_token) == "act.fresh"
        assert vault.open_token(account.refresh_token) == "rft.fresh"
        assert account.token_expires_at is not None

    @pytest.mark.asyncio
    async def test_open_id_falls_back_to_profile(self, controller: OAuthHandshakeController, store) -> None:
        start = controller.begin()
        token_body = {k: v for k, v in TOKEN_BODY.items() if k != "open_id"}

        with respx.mock:
            respx.post(TIKTOK_TOKEN_URL).mock(return_value=httpx.Response(200, json=token_body))
            respx.get(TIKTOK_USER_INFO_URL).mock(return_value=httpx.Response(200, json=USER_BODY))
            outcome = await controller.complete(_callback_params(start), start.state_cookie, start.verifier_cookie)

        assert outcome.success is True
        account = await store.get_account(outcome.account_id)
        assert account.tiktok_user_id == "open-id-1"

    @pytest.mark.asyncio
    async def test_empty_callback_is_redirect_uri_problem(self, controller: OAuthHandshakeController) -> None:
        outcome = await controller.complete({}, None, None)

        assert outcome.success is False
        assert outcome.code == "invalid_redirect_uri"
        assert not outcome.state_consumed

    @pytest.mark.asyncio
    async def test_missing_code_with_other_params(self, controller: OAuthHandshakeController) -> None:
        start = controller.begin()
        outcome = await controller.complete({"state": start.state}, start.state_cookie, start.verifier_cookie)
        assert outcome.code == "no_code"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,description,expected",
        [
            ("access_denied", "User cancelled", "oauth_denied"),
            ("invalid_request", "client_key is wrong", "invalid_client_key"),
            ("invalid_request", "redirect_uri not registered", "invalid_redirect_uri"),
        ],
    )
    async def test_provider_error_is_classified(
        self, controller: OAuthHandshakeController, error: str, description: str, expected: str
    ) -> None:
        params = {"error": error, "error_description": description, "code": "ignored"}
        outcome = await controller.complete(params, None, None)

        assert outcome.success is False
        assert outcome.code == expected

    @pytest.mark.asyncio
    async def test_state_mismatch(self, controller: OAuthHandshakeController) -> None:
        start = controller.begin()
        params = _callback_params(start, state="forged-state")

        with respx.mock:
            outcome = await controller.complete(params, start.state_cookie, start.verifier_cookie)

        assert outcome.code == "invalid_state"
        assert outcome.state_consumed is True

    @pytest.mark.asyncio
    async def test_missing_state_cookie(self, controller: OAuthHandshakeController) -> None:
        start = controller.begin()
        outcome = await controller.complete(_callback_params(start), None, start.verifier_cookie)
        assert outcome.code == "invalid_state"

    @pytest.mark.asyncio
    async def test_expired_state_cookie(self, controller: OAuthHandshakeController, settings) -> None:
        start = controller.begin()
        expired_signer = HandshakeStateSigner(settings.jwt_secret, ttl_seconds=-1)
        expired_cookie = expired_signer.sign("oauth_state", start.state)

        outcome = await controller.complete(_callback_params(start), expired_cookie, start.verifier_cookie)
        assert outcome.code == "invalid_state"

    @pytest.mark.asyncio
    async def test_verifier_cookie_cannot_stand_in_for_state(self, controller: OAuthHandshakeController) -> None:
        start = controller.begin()
        outcome = await controller.complete(_callback_params(start), start.verifier_cookie, start.verifier_cookie)
        assert outcome.code == "invalid_state"

    @pytest.mark.asyncio
    async def test_missing_verifier_cookie(self, controller: OAuthHandshakeController) -> None:
        start = controller.begin()
        outcome = await controller.complete(_callback_params(start), start.state_cookie, None)

        assert outcome.code == "invalid_state"
        assert outcome.verifier_consumed is True

    @pytest.mark.asyncio
    async def test_token_exchange_failure(self, controller: OAuthHandshakeController) -> None:
        start = controller.begin()
        with respx.mock:
            respx.post(TIKTOK_TOKEN_URL).mock(
                return_value=httpx.Response(400, json={"error": "invalid_grant"})
            )
            outcome = await controller.complete(_callback_params(start), start.state_cookie, start.verifier_cookie)

        assert outcome.code == "token_exchange_failed"

    @pytest.mark.asyncio
    async def test_token_exchange_rate_limited(self, controller: OAuthHandshakeController) -> None:
        start = controller.begin()
        with respx.mock:
            respx.post(TIKTOK_TOKEN_URL).mock(return_value=httpx.Response(429, json={}))
            outcome = await controller.complete(_callback_params(start), start.state_cookie, start.verifier_cookie)

        assert outcome.code == "rate_limit"

    @pytest.mark.asyncio
    async def test_user_fetch_failure(self, controller: OAuthHandshakeController) -> None:
        start = controller.begin()
        with respx.mock:
            respx.post(TIKTOK_TOKEN_URL).mock(return_value=httpx.Response(200, json=TOKEN_BODY))
            respx.get(TIKTOK_USER_INFO_URL).mock(return_value=httpx.Response(500, json={}))
            outcome = await controller.complete(_callback_params(start), start.state_cookie, start.verifier_cookie)

        assert outcome.code == "user_fetch_failed"

    @pytest.mark.asyncio
    async def test_missing_open_id_everywhere(self, controller: OAuthHandshakeController) -> None:
        start = controller.begin()
        token_body = {k: v for k, v in TOKEN_BODY.items() if k != "open_id"}
        user_body = {"data": {"user": {"display_name": "anonymous"}}, "error": {"code": "ok"}}

        with respx.mock:
            respx.post(TIKTOK_TOKEN_URL).mock(return_value=httpx.Response(200, json=token_body))
            respx.get(TIKTOK_USER_INFO_URL).mock(return_value=httpx.Response(200, json=user_body))
            outcome = await controller.complete(_callback_params(start), start.state_cookie, start.verifier_cookie)

        assert outcome.code == "user_fetch_failed"

    @pytest.mark.asyncio
    async def test_persistence_failure(self, controller: OAuthHandshakeController, monkeypatch) -> None:
        start = controller.begin()
        monkeypatch.setattr(
            controller.store,
            "upsert_account_by_provider_id",
            AsyncMock(side_effect=PersistenceError("Failed to upsert account")),
        )

        with respx.mock:
            respx.post(TIKTOK_TOKEN_URL).mock(return_value=httpx.Response(200, json=TOKEN_BODY))
            respx.get(TIKTOK_USER_INFO_URL).mock(return_value=httpx.Response(200, json=USER_BODY))
            outcome = await controller.complete(_callback_params(start), start.state_cookie, start.verifier_cookie)

        assert outcome.code == "database_error"

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_unexpected_error(
        self, controller: OAuthHandshakeController, monkeypatch
    ) -> None:
        start = controller.begin()
        monkeypatch.setattr(
            controller.client,
            "exchange_authorization_code",
            AsyncMock(side_effect=RuntimeError("boom")),
        )

        outcome = await controller.complete(_callback_params(start), start.state_cookie, start.verifier_cookie)

        assert outcome.success is False
        assert outcome.code == "unexpected_error"
        assert outcome.message == "An unexpected error occurred."
