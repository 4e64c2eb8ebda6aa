"""Shared fixtures: an in-memory Yoto platform served through httpx.MockTransport."""

import json
import sys
import time
from pathlib import Path

import httpx
import jwt
import pytest

SRC_DIR = Path(__file__).resolve().parent.parent / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from storycard.infrastructure.yoto import YotoClient
from storycard.models import StoryMetadata, TranscodeResult

UPLOAD_URL = "https://uploads.example.com/put/up-1"
API_BASE = "https://api.yotoplay.com"
TEST_SIGNING_KEY = "storycard-test-signing-key-0123456789"


def make_token(expires_in: float, now: float | None = None) -> str:
    """JWT expiring *expires_in* seconds from *now*; the signature is never checked."""
    now = time.time() if now is None else now
    return jwt.encode({"sub": "user-1", "exp": int(now + expires_in)}, TEST_SIGNING_KEY, algorithm="HS256")


def transcode_body(sha: str = "abc123", duration: int = 120, file_size: int = 2_097_152) -> dict:
    return {
        "transcode": {
            "transcodedSha256": sha,
            "transcodedInfo": {
                "duration": duration,
                "fileSize": file_size,
                "channels": "stereo",
                "format": "mp3",
            },
        }
    }


def remote_chapter(key: str, title: str, duration: int, file_size: int, overlay: str | None = None) -> dict:
    chapter = {
        "key": key,
        "title": title,
        "tracks": [
            {
                "key": "01",
                "title": title,
                "trackUrl": f"yoto:#sha-{key}",
                "duration": duration,
                "fileSize": file_size,
                "channels": "stereo",
                "format": "mp3",
                "type": "audio",
                "overlayLabel": "1",
            }
        ],
        "display": {"icon16x16": "yoto:#custom-icon"},
    }
    if overlay is not None:
        chapter["overlayLabel"] = overlay
    return chapter


class FakeYoto:
    """Programmable stand-in for the Yoto media and content endpoints.

    Records every request. Writes to ``POST /content`` are stored so later
    reads observe them, which is enough to exercise read-merge-write.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.upload_slot: tuple[int, dict] = (200, {"upload": {"uploadUrl": UPLOAD_URL, "uploadId": "up-1"}})
        self.put_status = 200
        # Polls consume these in order; the last one repeats
        self.transcode_states: list[tuple[int, dict]] = [(200, transcode_body())]
        self.list_status = 200
        self.summaries: list[dict] = []
        self.details: dict[str, dict] = {}
        self.detail_html: set[str] = set()
        self.write_status = 200
        self.writes: list[dict] = []
        self._created = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path

        if method == "GET" and path == "/media/transcode/audio/uploadUrl":
            status, body = self.upload_slot
            return httpx.Response(status, json=body)
        if method == "PUT":
            return httpx.Response(self.put_status)
        if method == "GET" and path.startswith("/media/upload/"):
            status, body = self.transcode_states[0]
            if len(self.transcode_states) > 1:
                self.transcode_states.pop(0)
            return httpx.Response(status, json=body)
        if method == "GET" and path == "/content/mine":
            if self.list_status != 200:
                return httpx.Response(self.list_status, text="unavailable")
            return httpx.Response(200, json={"cards": self.summaries})
        if method == "GET" and path.startswith("/content/"):
            card_id = path.rsplit("/", 1)[-1]
            if card_id in self.detail_html:
                return httpx.Response(200, text="<html>maintenance</html>")
            if card_id not in self.details:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, json={"card": self.details[card_id]})
        if method == "POST" and path == "/content":
            return self._write(json.loads(request.content))
        return httpx.Response(404)

    def _write(self, payload: dict) -> httpx.Response:
        self.writes.append(payload)
        if self.write_status != 200:
            return httpx.Response(self.write_status, text="card rejected")

        card_id = payload.get("cardId")
        if not card_id:
            self._created += 1
            card_id = f"card-new-{self._created}"
            self.summaries.append(
                {"cardId": card_id, "title": payload["title"], "createdAt": "2025-01-01T00:00:00Z"}
            )
        self.details[card_id] = {**payload, "cardId": card_id}
        return httpx.Response(200, json={"card": {"cardId": card_id}})

    def calls(self, method: str, path_prefix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.startswith(path_prefix)]

    def add_card(self, card_id: str, created_at: str | None, chapters: list[dict] | None = None, title: str = "You're The Hero!"):
        summary = {"cardId": card_id, "title": title}
        if created_at is not None:
            summary["createdAt"] = created_at
        self.summaries.append(summary)
        if chapters is not None:
            self.details[card_id] = {
                "cardId": card_id,
                "title": title,
                "content": {"chapters": chapters},
                "metadata": {"media": {"duration": 0, "fileSize": 0}},
            }


@pytest.fixture
def fake_yoto():
    return FakeYoto()


@pytest.fixture
def yoto_client(fake_yoto):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_yoto.handler))
    return YotoClient(base_url=API_BASE, http_client=http_client)


@pytest.fixture
def story_metadata():
    return StoryMetadata(childName="Maya", adventureType="space-explorer")


@pytest.fixture
def transcode_result():
    return TranscodeResult.model_validate(transcode_body()["transcode"])
