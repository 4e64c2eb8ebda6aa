from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from storycard.errors import TranscodeTimeout, UploadFailure
from storycard.infrastructure.yoto import AUDIO_CONTENT_TYPE, YotoClient
from storycard.models import TranscodeResult

POLL_INTERVAL_SECONDS = 0.5
MAX_POLL_ATTEMPTS = 60


def _unwrap(body: Any, key: str) -> dict[str, Any]:
    """Return ``body[key]`` when the platform nests the payload, else ``body``."""
    if not isinstance(body, dict):
        return {}
    nested = body.get(key)
    return nested if isinstance(nested, dict) else body


class AudioTranscodeUploader:
    """Uploads raw audio to Yoto and waits for the transcoded asset."""

    def __init__(
        self,
        client: YotoClient,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_poll_attempts: int = MAX_POLL_ATTEMPTS,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.logger = logger or logging.getLogger(__name__)

    async def upload_and_transcode(self, audio_bytes: bytes, access_token: str) -> TranscodeResult:
        """Upload *audio_bytes* and return the transcode result.

        Not idempotent: each call creates a new upload.

        Raises:
            UploadFailure: no usable upload slot, or the PUT was rejected.
            TranscodeTimeout: no content hash within the poll ceiling.
        """
        size = len(audio_bytes)
        self.logger.info(
            f"Starting audio upload to Yoto ({size} bytes, {round(size / 1024 / 1024, 2)} MB)"
        )

        upload_url, upload_id = await self._request_upload_slot(access_token)
        self.logger.info(f"Upload URL received, uploading audio file (upload_id={upload_id})")

        await self._push_audio(upload_url, audio_bytes, upload_id)
        self.logger.info(f"Audio uploaded successfully, waiting for transcoding (upload_id={upload_id})")

        return await self._wait_for_transcode(upload_id, access_token)

    async def _request_upload_slot(self, access_token: str) -> tuple[str, str]:
        try:
            response = await self.client.get_upload_url(access_token)
        except httpx.HTTPError as e:
            raise UploadFailure(f"Failed to get upload URL: {e}") from e

        if not response.is_success:
            raise UploadFailure(
                f"Failed to get upload URL: {response.status_code}",
                {"status": response.status_code, "response_body": response.text},
            )

        try:
            slot = _unwrap(response.json(), "upload")
        except ValueError as e:
            raise UploadFailure("Upload URL response was not JSON") from e

        upload_url = slot.get("uploadUrl")
        upload_id = slot.get("uploadId")
        if not upload_url:
            raise UploadFailure("Upload URL not provided in response", {"upload_id": upload_id})
        if not upload_id:
            raise UploadFailure("Upload id not provided in response")
        return upload_url, str(upload_id)

    async def _push_audio(self, upload_url: str, audio_bytes: bytes, upload_id: str) -> None:
        try:
            response = await self.client.put_audio(upload_url, audio_bytes, AUDIO_CONTENT_TYPE)
        except httpx.HTTPError as e:
            raise UploadFailure(f"Audio upload failed: {e}", {"upload_id": upload_id}) from e

        if not response.is_success:
            raise UploadFailure(
                f"Audio upload failed: {response.status_code}",
                {"upload_id": upload_id, "status": response.status_code},
            )

    async def _wait_for_transcode(self, upload_id: str, access_token: str) -> TranscodeResult:
        for attempt in range(1, self.max_poll_attempts + 1):
            transcode = await self._poll_once(upload_id, access_token)
            if transcode is not None:
                self.logger.info(
                    f"Audio transcoding completed: sha256={transcode.content_hash}, attempts={attempt}"
                )
                return transcode

            if attempt % 10 == 0:
                self.logger.debug(
                    f"Still waiting for transcoding ({attempt}/{self.max_poll_attempts}, upload_id={upload_id})"
                )
            if attempt < self.max_poll_attempts:
                await asyncio.sleep(self.poll_interval)

        self.logger.error(
            "Transcoding timed out",
            extra={"upload_id": upload_id, "attempts": self.max_poll_attempts},
        )
        raise TranscodeTimeout(self.max_poll_attempts, upload_id, self.poll_interval)

    async def _poll_once(self, upload_id: str, access_token: str) -> TranscodeResult | None:
        """One status check; ``None`` means not ready yet."""
        try:
            response = await self.client.get_transcode_status(upload_id, access_token)
        except httpx.HTTPError as e:
            self.logger.warning(f"Transcode status request failed, will retry: {e}")
            return None

        if not response.is_success:
            self.logger.debug(f"Transcode status returned {response.status_code}")
            return None

        try:
            transcode = _unwrap(response.json(), "transcode")
        except ValueError:
            return None

        if not transcode.get("transcodedSha256"):
            return None
        return TranscodeResult.model_validate(transcode)
