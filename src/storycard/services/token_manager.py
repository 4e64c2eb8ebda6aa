"""OAuth 2.0 PKCE client and token lifecycle for the Yoto authorization server."""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time
from collections.abc import Sequence
from typing import Any
from urllib.parse import urlencode

import httpx
import jwt
from jwt import InvalidTokenError

from storycard.errors import (
    AuthenticationFailure,
    ConfigurationFailure,
    ExternalServiceFailure,
    ValidationFailure,
)
from storycard.models import PKCEChallenge, TokenPair

EXPIRY_SAFETY_MARGIN_SECONDS = 5 * 60
DEFAULT_SCOPE = "offline_access library:read library:write"


class CredentialStrategy:
    """How the client authenticates itself to the token endpoint."""

    name: str = "base"

    def apply(self, form: dict[str, str], client_id: str) -> tuple[dict[str, str], dict[str, str]]:
        """Return the (form, headers) to send for this presentation method."""
        raise NotImplementedError


class ClientIdInBody(CredentialStrategy):
    name = "client_id_in_body"

    def apply(self, form: dict[str, str], client_id: str) -> tuple[dict[str, str], dict[str, str]]:
        return {**form, "client_id": client_id}, {}


class HttpBasicClientAuth(CredentialStrategy):
    """Client id (and secret, if any) in an HTTP Basic header."""

    name = "http_basic"

    def __init__(self, client_secret: str | None = None) -> None:
        self.client_secret = client_secret

    def apply(self, form: dict[str, str], client_id: str) -> tuple[dict[str, str], dict[str, str]]:
        raw = f"{client_id}:{self.client_secret or ''}".encode()
        header = f"Basic {base64.b64encode(raw).decode()}"
        body = {k: v for k, v in form.items() if k != "client_id"}
        return body, {"Authorization": header}


def _upstream_error(response: httpx.Response) -> tuple[str, str | None]:
    """Extract ``error`` / ``error_description`` from a token endpoint failure."""
    try:
        body = response.json()
    except ValueError:
        return "invalid_response", response.text
    if not isinstance(body, dict):
        return "invalid_response", response.text
    return body.get("error") or "Unknown error", body.get("error_description")


class TokenManager:
    """Maintains a single access/refresh token pair for the Yoto API."""

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None = None,
        auth_base_url: str = "https://login.yotoplay.com",
        audience: str = "https://api.yotoplay.com",
        strategies: Sequence[CredentialStrategy] | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client_id = client_id
        self.auth_base_url = auth_base_url.rstrip("/")
        self.audience = audience
        self.strategies: list[CredentialStrategy] = list(
            strategies or [ClientIdInBody(), HttpBasicClientAuth(client_secret)]
        )
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self.logger = logger or logging.getLogger(__name__)

    @property
    def token_url(self) -> str:
        return f"{self.auth_base_url}/oauth/token"

    # ------------------------------------------------------------------
    # PKCE
    # ------------------------------------------------------------------

    @staticmethod
    def generate_challenge() -> PKCEChallenge:
        """Generate a PKCE verifier and its S256 challenge."""
        verifier = secrets.token_urlsafe(64)
        digest = hashlib.sha256(verifier.encode()).digest()
        challenge = base64.urlsafe_b64encode(digest).decode().rstrip("=")
        return PKCEChallenge(verifier=verifier, challenge=challenge)

    def build_authorization_url(
        self, client_id: str, redirect_uri: str, challenge: str, state: str | None = None
    ) -> str:
        for field_name, value in (
            ("client_id", client_id),
            ("redirect_uri", redirect_uri),
            ("code_challenge", challenge),
        ):
            if not value:
                raise ValidationFailure(f"{field_name} is required to build the authorization URL")

        params = {
            "audience": self.audience,
            "scope": DEFAULT_SCOPE,
            "response_type": "code",
            "client_id": client_id,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
            "redirect_uri": redirect_uri,
        }
        if state:
            params["state"] = state
        return f"{self.auth_base_url}/authorize?{urlencode(params)}"

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    async def _post_token(self, form: dict[str, str], headers: dict[str, str]) -> httpx.Response:
        try:
            return await self._http.post(
                self.token_url,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded", **headers},
            )
        except httpx.HTTPError as e:
            raise ExternalServiceFailure("Yoto auth", f"Token endpoint unreachable: {e}") from e

    async def exchange_code(
        self, client_id: str, code: str, verifier: str, redirect_uri: str
    ) -> TokenPair:
        """Exchange an authorization code, falling back across credential strategies on 401."""
        form = {
            "grant_type": "authorization_code",
            "code_verifier": verifier,
            "code": code,
            "redirect_uri": redirect_uri,
        }

        response: httpx.Response | None = None
        for attempt, strategy in enumerate(self.strategies, start=1):
            body, headers = strategy.apply(form, client_id)
            self.logger.info(f"Token exchange attempt {attempt} using {strategy.name}")
            response = await self._post_token(body, headers)
            self.logger.info(f"Token exchange response status: {response.status_code}")
            if response.is_success:
                self.logger.info("Token exchange successful")
                return TokenPair.from_token_response(response.json())
            if response.status_code != 401:
                break

        if response is None:
            raise ConfigurationFailure("No credential strategies configured for token exchange")

        error_code, description = _upstream_error(response)
        self.logger.error(
            "Token exchange failed",
            extra={"status": response.status_code, "error": error_code, "description": description},
        )
        message = f"Token exchange failed: {error_code}"
        if description:
            message += f" - {description}"
        raise AuthenticationFailure(message, error_code=error_code, error_description=description)

    async def refresh(self, refresh_token: str, client_id: str) -> TokenPair:
        """Run a refresh_token grant."""
        self.logger.info("Refreshing Yoto access token")
        response = await self._post_token(
            {"grant_type": "refresh_token", "client_id": client_id, "refresh_token": refresh_token},
            {},
        )
        if not response.is_success:
            error_code, description = _upstream_error(response)
            self.logger.error(
                "Token refresh failed",
                extra={"status": response.status_code, "error": error_code, "description": description},
            )
            raise AuthenticationFailure(
                f"Token refresh failed: {error_code}",
                error_code=error_code,
                error_description=description,
            )

        self.logger.info("Token refresh successful")
        return TokenPair.from_token_response(response.json(), previous_refresh_token=refresh_token)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def is_expired(self, access_token: str, now: float | None = None) -> bool:
        """True if the token expires within the safety margin or cannot be decoded."""
        try:
            claims: dict[str, Any] = jwt.decode(access_token, options={"verify_signature": False})
            expiry = float(claims["exp"])
        except (InvalidTokenError, KeyError, TypeError, ValueError) as e:
            self.logger.warning(f"Failed to decode token, assuming expired: {e}")
            return True

        now = time.time() if now is None else now
        return now + EXPIRY_SAFETY_MARGIN_SECONDS >= expiry

    async def ensure_fresh(self, token_pair: TokenPair) -> TokenPair:
        """Return *token_pair* untouched if usable, otherwise a refreshed pair."""
        if not token_pair.access_token:
            raise AuthenticationFailure("No access token available")

        if not self.is_expired(token_pair.access_token):
            self.logger.debug("Access token is still valid")
            return token_pair

        if not token_pair.refresh_token:
            raise AuthenticationFailure("Token expired and no refresh token available")

        if not self.client_id:
            raise ConfigurationFailure("YOTO_CLIENT_ID not configured")

        self.logger.info("Access token expired, attempting refresh")
        try:
            return await self.refresh(token_pair.refresh_token, self.client_id)
        except (AuthenticationFailure, ExternalServiceFailure) as e:
            self.logger.error(f"Failed to refresh token: {e}")
            raise AuthenticationFailure("Token refresh failed - please re-authenticate") from e

    async def ensure_valid(self, token_pair: TokenPair) -> str:
        """Return a usable access token, refreshing if needed.

        The refreshed pair is not stored anywhere; use ``ensure_fresh`` when the
        caller needs to persist it.
        """
        return (await self.ensure_fresh(token_pair)).access_token

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
