"""Yoto OAuth endpoints: PKCE start, code exchange and token refresh."""

import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from storycard.api.settings import Settings, get_settings
from storycard.errors import AuthenticationFailure, StorycardError
from storycard.models import TokenPair
from storycard.services.token_manager import TokenManager

logger = logging.getLogger(__name__)


class PKCERequest(BaseModel):
    redirect_uri: str
    state: str | None = None


class PKCEResponse(BaseModel):
    code_verifier: str
    code_challenge: str
    authorization_url: str


class CallbackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str | None = None
    code_verifier: str | None = Field(None, alias="codeVerifier")
    redirect_uri: str | None = Field(None, alias="redirectUri")


class RefreshRequest(BaseModel):
    refresh_token: str | None = None


async def get_token_manager(
    settings: Settings = Depends(get_settings),
) -> AsyncGenerator[TokenManager, None]:
    """Token manager dependency."""
    manager = TokenManager(
        client_id=settings.yoto_client_id,
        client_secret=settings.yoto_client_secret,
        auth_base_url=settings.yoto_auth_base_url,
        audience=settings.yoto_audience,
        timeout=settings.http_timeout,
    )
    try:
        yield manager
    finally:
        await manager.aclose()


def _require_client_id(settings: Settings) -> str:
    if not settings.yoto_client_id:
        logger.error("YOTO_CLIENT_ID not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="YOTO_CLIENT_ID is not configured",
        )
    return settings.yoto_client_id


router = APIRouter(prefix="/api/v1/auth", tags=["authentication"])


@router.post("/pkce", response_model=PKCEResponse)
async def start_authorization(
    request: PKCERequest,
    settings: Settings = Depends(get_settings),
    token_manager: TokenManager = Depends(get_token_manager),
):
    """Create a PKCE pair and the authorization URL to send the user to.

    The caller keeps ``code_verifier`` and presents it to ``/callback``.
    """
    client_id = _require_client_id(settings)
    challenge = token_manager.generate_challenge()
    try:
        url = token_manager.build_authorization_url(
            client_id, request.redirect_uri, challenge.challenge, request.state
        )
    except StorycardError as e:
        raise HTTPException(status_code=e.status_code, detail=e.user_message) from e

    return PKCEResponse(
        code_verifier=challenge.verifier,
        code_challenge=challenge.challenge,
        authorization_url=url,
    )


@router.post("/callback", response_model=TokenPair)
async def exchange_callback(
    request: CallbackRequest,
    settings: Settings = Depends(get_settings),
    token_manager: TokenManager = Depends(get_token_manager),
):
    """Exchange the authorization code for a token pair."""
    if not request.code:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Authorization code is required")
    if not request.code_verifier:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="PKCE code verifier is required")

    client_id = _require_client_id(settings)
    logger.info(
        f"Attempting token exchange (code length {len(request.code)}, verifier length {len(request.code_verifier)})"
    )

    try:
        return await token_manager.exchange_code(
            client_id, request.code, request.code_verifier, request.redirect_uri or ""
        )
    except AuthenticationFailure as e:
        logger.error(f"Token exchange failed: {e.message}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message) from e
    except StorycardError as e:
        logger.error(f"Token exchange failed: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.user_message) from e


@router.post("/refresh", response_model=TokenPair)
async def refresh_tokens(
    request: RefreshRequest,
    settings: Settings = Depends(get_settings),
    token_manager: TokenManager = Depends(get_token_manager),
):
    """Run a refresh grant for the caller's refresh token."""
    if not request.refresh_token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Refresh token is required")

    client_id = _require_client_id(settings)
    try:
        return await token_manager.refresh(request.refresh_token, client_id)
    except StorycardError as e:
        raise HTTPException(status_code=e.status_code, detail=e.user_message) from e
