"""Async HTTP client for the Yoto media and content APIs."""

from __future__ import annotations

import logging
from typing import Any

import httpx

AUDIO_CONTENT_TYPE = "audio/mpeg"

logger = logging.getLogger(__name__)


class YotoClient:
    """Thin wrapper over the Yoto endpoints used by the card workflow.

    Every method returns the raw ``httpx.Response``; status interpretation is
    left to the caller. Transport errors (``httpx.HTTPError``) propagate.
    """

    def __init__(
        self,
        base_url: str = "https://api.yotoplay.com",
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def __aenter__(self) -> YotoClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    @staticmethod
    def _auth_headers(access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}

    async def get_upload_url(self, access_token: str) -> httpx.Response:
        """Request a one-time audio upload slot."""
        logger.debug("GET upload URL")
        return await self._client.get(
            self._url("/media/transcode/audio/uploadUrl"), headers=self._auth_headers(access_token)
        )

    async def put_audio(
        self, upload_url: str, audio_bytes: bytes, content_type: str = AUDIO_CONTENT_TYPE
    ) -> httpx.Response:
        """PUT raw audio to a pre-signed upload URL (no bearer token)."""
        logger.debug(f"PUT {len(audio_bytes)} bytes of {content_type}")
        return await self._client.put(
            upload_url, content=audio_bytes, headers={"Content-Type": content_type}
        )

    async def get_transcode_status(
        self, upload_id: str, access_token: str, loudnorm: bool = False
    ) -> httpx.Response:
        return await self._client.get(
            self._url(f"/media/upload/{upload_id}/transcoded"),
            params={"loudnorm": "true" if loudnorm else "false"},
            headers=self._auth_headers(access_token),
        )

    async def list_content(self, access_token: str) -> httpx.Response:
        """List the caller's own cards (summaries)."""
        return await self._client.get(self._url("/content/mine"), headers=self._auth_headers(access_token))

    async def get_content(self, card_id: str, access_token: str) -> httpx.Response:
        """Fetch full card detail, chapters included."""
        return await self._client.get(
            self._url(f"/content/{card_id}"), headers=self._auth_headers(access_token)
        )

    async def write_content(self, payload: dict[str, Any], access_token: str) -> httpx.Response:
        """Create (no ``cardId``) or replace (``cardId`` present) a card."""
        headers = {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}
        return await self._client.post(self._url("/content"), json=payload, headers=headers)
