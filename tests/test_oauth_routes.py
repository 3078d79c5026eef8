"""Tests for the /api/auth routes (cookies, redirects, callback methods)."""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import respx
from httpx import AsyncClient

from config import Settings, get_settings
from main import app
from services.oauth_handshake import MESSAGES, STATE_COOKIE, VERIFIER_COOKIE
from services.tiktok_service import TIKTOK_TOKEN_URL, TIKTOK_USER_INFO_URL

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


def _set_cookie_headers(response: httpx.Response, name: str) -> list[str]:
    return [h for h in response.headers.get_list("set-cookie") if h.startswith(f"{name}=")]


def _result(response: httpx.Response) -> dict[str, list[str]]:
    location = urlparse(response.headers["location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == "http://dashboard.test/connect"
    return parse_qs(location.query)


async def _start(client: AsyncClient) -> str:
    """Run the start route and return the state TikTok would echo back."""
    response = await client.get("/api/auth/tiktok/start")
    assert response.status_code == 307
    return parse_qs(urlparse(response.headers["location"]).query)["state"][0]


class TestStart:
    @pytest.mark.asyncio
    async def test_redirects_to_tiktok_and_sets_cookies(self, client: AsyncClient) -> None:
        response = await client.get("/api/auth/tiktok/start")

        assert response.status_code == 307
        assert response.headers["location"].startswith("https://www.tiktok.com/v2/auth/authorize/?")

        for name in (STATE_COOKIE, VERIFIER_COOKIE):
            headers = _set_cookie_headers(response, name)
            assert len(headers) == 1
            header = headers[0].lower()
            assert "httponly" in header
            assert "samesite=lax" in header
            assert "max-age=600" in header
            assert "path=/" in header

    @pytest.mark.asyncio
    async def test_missing_client_key_redirects_with_configuration_error(self, client: AsyncClient) -> None:
        app.dependency_overrides[get_settings] = lambda: Settings(tiktok_client_key="")

        response = await client.get("/api/auth/tiktok/start")

        assert response.status_code == 303
        assert _result(response) == {"error": ["configuration_error"]}


class TestCallback:
    @pytest.mark.asyncio
    async def test_full_flow_connects_account(self, client: AsyncClient) -> None:
        state = await _start(client)

        with respx.mock:
            respx.post(TIKTOK_TOKEN_URL).mock(return_value=httpx.Response(200, json=TOKEN_BODY))
            respx.get(TIKTOK_USER_INFO_URL).mock(return_value=httpx.Response(200, json=USER_BODY))
            response = await client.get(
                "/api/auth/tiktok/callback", params={"code": "auth-code", "state": state}
            )

        assert response.status_code == 303
        assert _result(response) == {"success": ["tiktok_connected"]}
        # Both handshake cookies are cleared
        assert _set_cookie_headers(response, STATE_COOKIE)
        assert _set_cookie_headers(response, VERIFIER_COOKIE)

        accounts = (await client.get("/api/accounts")).json()
        assert [a["account"]["tiktok_user_id"] for a in accounts] == ["open-id-1"]

    @pytest.mark.asyncio
    async def test_form_post_callback(self, client: AsyncClient) -> None:
        state = await _start(client)

        with respx.mock:
            respx.post(TIKTOK_TOKEN_URL).mock(return_value=httpx.Response(200, json=TOKEN_BODY))
            respx.get(TIKTOK_USER_INFO_URL).mock(return_value=httpx.Response(200, json=USER_BODY))
            response = await client.post(
                "/api/auth/tiktok/callback", data={"code": "auth-code", "state": state}
            )

        assert _result(response) == {"success": ["tiktok_connected"]}

    @pytest.mark.asyncio
    async def test_empty_callback(self, client: AsyncClient) -> None:
        response = await client.get("/api/auth/tiktok/callback")

        assert response.status_code == 303
        assert _result(response) == {"error": ["invalid_redirect_uri"]}
        assert not _set_cookie_headers(response, STATE_COOKIE)

    @pytest.mark.asyncio
    async def test_provider_denial(self, client: AsyncClient) -> None:
        response = await client.get(
            "/api/auth/tiktok/callback",
            params={"error": "access_denied", "error_description": "The user denied the request"},
        )
        assert _result(response) == {"error": ["oauth_denied"]}

    @pytest.mark.asyncio
    async def test_forged_state(self, client: AsyncClient) -> None:
        await _start(client)
        response = await client.get(
            "/api/auth/tiktok/callback", params={"code": "auth-code", "state": "forged"}
        )

        assert _result(response) == {"error": ["invalid_state"]}
        assert _set_cookie_headers(response, STATE_COOKIE)

    @pytest.mark.asyncio
    async def test_callback_without_cookies(self, client: AsyncClient) -> None:
        response = await client.get(
            "/api/auth/tiktok/callback", params={"code": "auth-code", "state": "abc"}
        )
        assert _result(response) == {"error": ["invalid_state"]}


class TestMessages:
    @pytest.mark.asyncio
    async def test_every_code_has_a_message(self, client: AsyncClient) -> None:
        response = await client.get("/api/auth/messages")

        assert response.status_code == 200
        body = response.json()
        assert body == MESSAGES
        for code in ("tiktok_connected", "account_disconnected", "invalid_state", "rate_limit", "database_error"):
            assert body[code]
