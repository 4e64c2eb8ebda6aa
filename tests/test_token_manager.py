"""Tests for the OAuth PKCE client and token lifecycle."""

import base64
import hashlib
import time
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest

from conftest import TEST_SIGNING_KEY, make_token
from storycard.errors import AuthenticationFailure, ConfigurationFailure, ValidationFailure
from storycard.models import TokenPair
from storycard.services.token_manager import (
    EXPIRY_SAFETY_MARGIN_SECONDS,
    ClientIdInBody,
    HttpBasicClientAuth,
    TokenManager,
)


class TokenEndpoint:
    """Replays queued responses for POST /oauth/token and records form bodies."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)

    def form(self, index: int) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(self.requests[index].content.decode()).items()}


def build_manager(endpoint: TokenEndpoint, client_id: str | None = "client-123", **kwargs) -> TokenManager:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint.handler))
    return TokenManager(
        client_id=client_id,
        auth_base_url="https://login.yotoplay.com",
        http_client=http_client,
        **kwargs,
    )


def token_response(access: str = "new-access", refresh: str | None = "new-refresh") -> httpx.Response:
    body = {"access_token": access, "token_type": "Bearer", "expires_in": 3600}
    if refresh:
        body["refresh_token"] = refresh
    return httpx.Response(200, json=body)


class TestPKCE:
    def test_challenge_is_s256_of_verifier(self):
        pkce = TokenManager.generate_challenge()

        assert 43 <= len(pkce.verifier) <= 128
        digest = hashlib.sha256(pkce.verifier.encode()).digest()
        expected = base64.urlsafe_b64encode(digest).decode().rstrip("=")
        assert pkce.challenge == expected
        assert "=" not in pkce.challenge

    def test_verifiers_are_unique(self):
        assert TokenManager.generate_challenge().verifier != TokenManager.generate_challenge().verifier

    def test_authorization_url(self):
        manager = build_manager(TokenEndpoint())
        url = manager.build_authorization_url("client-123", "http://localhost/cb", "chal", state="xyz")

        parsed = urlparse(url)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        assert parsed.netloc == "login.yotoplay.com"
        assert parsed.path == "/authorize"
        assert params["code_challenge"] == "chal"
        assert params["code_challenge_method"] == "S256"
        assert params["response_type"] == "code"
        assert params["redirect_uri"] == "http://localhost/cb"
        assert params["state"] == "xyz"
        assert "offline_access" in params["scope"]

    def test_authorization_url_requires_redirect(self):
        manager = build_manager(TokenEndpoint())
        with pytest.raises(ValidationFailure):
            manager.build_authorization_url("client-123", "", "chal")


class TestExchangeCode:
    @pytest.mark.asyncio
    async def test_first_strategy_succeeds(self):
        endpoint = TokenEndpoint(token_response())
        manager = build_manager(endpoint)

        pair = await manager.exchange_code("client-123", "code-1", "verifier-1", "http://localhost/cb")

        assert pair.access_token == "new-access"
        assert pair.refresh_token == "new-refresh"
        assert len(endpoint.requests) == 1
        form = endpoint.form(0)
        assert form["grant_type"] == "authorization_code"
        assert form["client_id"] == "client-123"
        assert form["code_verifier"] == "verifier-1"
        assert "authorization" not in endpoint.requests[0].headers

    @pytest.mark.asyncio
    async def test_falls_back_to_basic_auth_on_401(self):
        endpoint = TokenEndpoint(
            httpx.Response(401, json={"error": "access_denied", "error_description": "Unauthorized"}),
            token_response(),
        )
        manager = build_manager(endpoint)

        pair = await manager.exchange_code("client-123", "code-1", "verifier-1", "http://localhost/cb")

        assert pair.access_token == "new-access"
        assert len(endpoint.requests) == 2
        second = endpoint.requests[1]
        expected = base64.b64encode(b"client-123:").decode()
        assert second.headers["authorization"] == f"Basic {expected}"
        assert "client_id" not in endpoint.form(1)

    @pytest.mark.asyncio
    async def test_non_401_does_not_fall_back(self):
        endpoint = TokenEndpoint(
            httpx.Response(400, json={"error": "invalid_grant", "error_description": "bad code"}),
            token_response(),
        )
        manager = build_manager(endpoint)

        with pytest.raises(AuthenticationFailure) as excinfo:
            await manager.exchange_code("client-123", "code-1", "verifier-1", "http://localhost/cb")

        assert len(endpoint.requests) == 1
        assert excinfo.value.message == "Token exchange failed: invalid_grant - bad code"
        assert excinfo.value.error_code == "invalid_grant"

    @pytest.mark.asyncio
    async def test_every_strategy_rejected(self):
        endpoint = TokenEndpoint(
            httpx.Response(401, json={"error": "access_denied"}),
            httpx.Response(401, text="<html>nope</html>"),
        )
        manager = build_manager(endpoint)

        with pytest.raises(AuthenticationFailure) as excinfo:
            await manager.exchange_code("client-123", "code-1", "verifier-1", "http://localhost/cb")

        assert len(endpoint.requests) == 2
        assert "invalid_response" in excinfo.value.message

    @pytest.mark.asyncio
    async def test_custom_strategy_order(self):
        endpoint = TokenEndpoint(token_response())
        manager = build_manager(endpoint, strategies=[HttpBasicClientAuth("s3cret"), ClientIdInBody()])

        await manager.exchange_code("client-123", "code-1", "verifier-1", "http://localhost/cb")

        expected = base64.b64encode(b"client-123:s3cret").decode()
        assert endpoint.requests[0].headers["authorization"] == f"Basic {expected}"


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_keeps_previous_refresh_token_when_omitted(self):
        endpoint = TokenEndpoint(token_response(refresh=None))
        manager = build_manager(endpoint)

        pair = await manager.refresh("old-refresh", "client-123")

        assert pair.access_token == "new-access"
        assert pair.refresh_token == "old-refresh"
        form = endpoint.form(0)
        assert form == {"grant_type": "refresh_token", "client_id": "client-123", "refresh_token": "old-refresh"}

    @pytest.mark.asyncio
    async def test_refresh_rejected(self):
        endpoint = TokenEndpoint(httpx.Response(403, json={"error": "invalid_grant"}))
        manager = build_manager(endpoint)

        with pytest.raises(AuthenticationFailure):
            await manager.refresh("old-refresh", "client-123")


class TestExpiry:
    def test_outside_margin_is_valid(self):
        now = time.time()
        manager = build_manager(TokenEndpoint())
        token = make_token(EXPIRY_SAFETY_MARGIN_SECONDS + 60, now=now)
        assert manager.is_expired(token, now=now) is False

    def test_exactly_at_margin_is_expired(self):
        now = 1_700_000_000.0
        manager = build_manager(TokenEndpoint())
        token = make_token(EXPIRY_SAFETY_MARGIN_SECONDS, now=now)
        assert manager.is_expired(token, now=now) is True

    def test_inside_margin_is_expired(self):
        now = 1_700_000_000.0
        manager = build_manager(TokenEndpoint())
        assert manager.is_expired(make_token(299, now=now), now=now) is True
        assert manager.is_expired(make_token(301, now=now), now=now) is False

    def test_already_expired(self):
        manager = build_manager(TokenEndpoint())
        assert manager.is_expired(make_token(-3600)) is True

    def test_undecodable_token_is_expired(self):
        manager = build_manager(TokenEndpoint())
        assert manager.is_expired("not-a-jwt") is True

    def test_token_without_exp_is_expired(self):
        manager = build_manager(TokenEndpoint())
        token = jwt.encode({"sub": "user-1"}, TEST_SIGNING_KEY, algorithm="HS256")
        assert manager.is_expired(token) is True


class TestEnsureValid:
    @pytest.mark.asyncio
    async def test_valid_token_makes_no_network_call(self):
        endpoint = TokenEndpoint()
        manager = build_manager(endpoint)
        token = make_token(3600)

        result = await manager.ensure_valid(TokenPair(access_token=token, refresh_token="r"))

        assert result == token
        assert endpoint.requests == []

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed(self):
        fresh = make_token(3600)
        endpoint = TokenEndpoint(token_response(access=fresh))
        manager = build_manager(endpoint)

        pair = await manager.ensure_fresh(TokenPair(access_token=make_token(60), refresh_token="r"))

        assert pair.access_token == fresh
        assert pair.refresh_token == "new-refresh"
        assert len(endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token(self):
        manager = build_manager(TokenEndpoint())
        with pytest.raises(AuthenticationFailure):
            await manager.ensure_valid(TokenPair(access_token=make_token(-10)))

    @pytest.mark.asyncio
    async def test_missing_access_token(self):
        manager = build_manager(TokenEndpoint())
        with pytest.raises(AuthenticationFailure):
            await manager.ensure_valid(TokenPair(access_token="", refresh_token="r"))

    @pytest.mark.asyncio
    async def test_refresh_failure_asks_for_reauthentication(self):
        endpoint = TokenEndpoint(httpx.Response(400, json={"error": "invalid_grant"}))
        manager = build_manager(endpoint)

        with pytest.raises(AuthenticationFailure) as excinfo:
            await manager.ensure_valid(TokenPair(access_token=make_token(-10), refresh_token="r"))

        assert excinfo.value.message == "Token refresh failed - please re-authenticate"

    @pytest.mark.asyncio
    async def test_refresh_without_client_id(self):
        manager = build_manager(TokenEndpoint(), client_id=None)
        with pytest.raises(ConfigurationFailure):
            await manager.ensure_valid(TokenPair(access_token=make_token(-10), refresh_token="r"))
