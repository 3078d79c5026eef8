"""OAuth router - connects TikTok creator accounts via authorization code + PKCE.

The dashboard sends the user to /api/auth/tiktok/start; TikTok sends them back
to /api/auth/tiktok/callback, which always ends in a redirect to the
dashboard's /connect page with a success or error code.
"""

import logging
from typing import Annotated
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from config import Settings, get_settings
from dependencies import get_handshake_controller
from middleware.rate_limit import limiter
from services.errors import InvalidRequest
from services.oauth_handshake import (
    MESSAGES,
    STATE_COOKIE,
    VERIFIER_COOKIE,
    OAuthHandshakeController,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["oauth"])

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def dashboard_redirect(settings: Settings, **params: str) -> RedirectResponse:
    """Redirect to the dashboard's connect page with a result code."""
    url = f"{settings.app_url.rstrip('/')}/connect"
    if params:
        url = f"{url}?{urlencode(params)}"
    return RedirectResponse(url=url, status_code=303)


@router.get("/tiktok/start")
@limiter.limit("20/minute")
async def tiktok_auth_start(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    controller: Annotated[OAuthHandshakeController, Depends(get_handshake_controller)],
):
    """Start the TikTok OAuth flow.

    Stores the signed state and PKCE verifier in http-only cookies and
    redirects to TikTok's consent page.
    """
    try:
        start = controller.begin()
    except InvalidRequest as e:
        logger.error(f"TikTok OAuth not configured: {e}")
        return dashboard_redirect(settings, error="configuration_error")

    response = RedirectResponse(url=start.authorization_url, status_code=307)
    cookie_options = {
        "httponly": True,
        "secure": settings.secure_cookies,
        "samesite": "lax",
        "max_age": settings.oauth_state_ttl_seconds,
        "path": "/",
    }
    response.set_cookie(STATE_COOKIE, start.state_cookie, **cookie_options)
    response.set_cookie(VERIFIER_COOKIE, start.verifier_cookie, **cookie_options)

    logger.info("Redirecting to TikTok authorization page")
    return response


@router.api_route("/tiktok/callback", methods=["GET", "POST"])
async def tiktok_callback(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    controller: Annotated[OAuthHandshakeController, Depends(get_handshake_controller)],
):
    """TikTok OAuth callback handler.

    TikTok normally uses GET, but some configurations post the result as a
    form body, so both are accepted and merged.
    """
    params = dict(request.query_params)
    if request.method == "POST":
        content_type = request.headers.get("content-type", "")
        if content_type.startswith(FORM_CONTENT_TYPES):
            form = await request.form()
            for key, value in form.items():
                if isinstance(value, str):
                    params.setdefault(key, value)

    outcome = await controller.complete(
        params,
        request.cookies.get(STATE_COOKIE),
        request.cookies.get(VERIFIER_COOKIE),
    )

    response = dashboard_redirect(settings, **{outcome.query_param: outcome.code})
    if outcome.state_consumed:
        response.delete_cookie(STATE_COOKIE, path="/")
    if outcome.verifier_consumed:
        response.delete_cookie(VERIFIER_COOKIE, path="/")
    return response


@router.get("/messages")
async def auth_messages() -> dict[str, str]:
    """Human-readable message for every success and error code."""
    return MESSAGES
