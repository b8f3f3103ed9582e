import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import ACCESS_TOKEN_COOKIE, ID_TOKEN_COOKIE
from core.config import settings
from core.errors import InvalidRequest, NoCredential, StorageError, UpstreamError
from core.oidc import IdentityProvider
from db.database import get_async_session
from db.users import User
from schemas.users import GraphProfile

logger = logging.getLogger(__name__)

router = APIRouter()

STATE_COOKIE = "oauth_state"


def get_identity_provider(request: Request) -> IdentityProvider:
    provider: Optional[IdentityProvider] = getattr(request.app.state, "identity_provider", None)
    if provider is None:
        raise RuntimeError("identity provider not initialised")
    return provider


def _cookie_options() -> dict:
    # SameSite=None is only accepted by browsers together with Secure
    return {
        "path": "/",
        "httponly": True,
        "secure": settings.cookie_secure,
        "samesite": "none" if settings.cookie_secure else "lax",
    }


@router.get("/login")
async def login(provider: IdentityProvider = Depends(get_identity_provider)):
    """Redirect the browser to the provider's sign-in page"""
    state = secrets.token_urlsafe(16)
    response = RedirectResponse(provider.authorization_url(state), status_code=status.HTTP_302_FOUND)
    response.set_cookie(STATE_COOKIE, state, max_age=600, **_cookie_options())
    return response


@router.get("/redirect")
async def oauth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    provider: IdentityProvider = Depends(get_identity_provider),
):
    """Exchange the authorization code and store the tokens as HttpOnly cookies"""
    if not code:
        raise InvalidRequest("missing code")
    expected_state = request.cookies.get(STATE_COOKIE)
    if not expected_state or not state or not secrets.compare_digest(expected_state, state):
        raise InvalidRequest("state mismatch")

    tokens = await provider.exchange_code(code)

    response = RedirectResponse(settings.post_login_redirect_url, status_code=status.HTTP_302_FOUND)
    options = _cookie_options()
    response.set_cookie(ID_TOKEN_COOKIE, tokens["id_token"], **options)
    if tokens.get("access_token"):
        response.set_cookie(ACCESS_TOKEN_COOKIE, tokens["access_token"], **options)
    response.delete_cookie(STATE_COOKIE, **options)
    logger.info("Sign-in completed, scopes=%s", tokens.get("scope"))
    return response


@router.get("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout():
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    options = _cookie_options()
    response.delete_cookie(ID_TOKEN_COOKIE, **options)
    response.delete_cookie(ACCESS_TOKEN_COOKIE, **options)
    return response


@router.get("/me")
async def profile(
    request: Request,
    provider: IdentityProvider = Depends(get_identity_provider),
    db: AsyncSession = Depends(get_async_session),
):
    """Fetch the caller's Graph profile, upsert it into users and return it"""
    access_token = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not access_token:
        raise NoCredential("not authenticated")

    raw = await provider.fetch_profile(access_token)
    try:
        graph_user = GraphProfile.model_validate(raw)
    except ValidationError as e:
        raise UpstreamError("failed to parse graph response") from e

    try:
        await db.merge(User(**graph_user.to_columns()))
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("[users] profile upsert failed for %s", graph_user.id)
        raise StorageError("failed to upsert user") from e

    return JSONResponse(content=raw)
