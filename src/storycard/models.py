from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# =============================================================================
# Authentication
# =============================================================================


class TokenPair(BaseModel):
    """Access/refresh token pair held by the calling session."""

    access_token: str = Field(..., description="Bearer access token (JWT)")
    refresh_token: str | None = Field(None, description="Refresh token, if granted")
    token_type: str = Field("Bearer", description="Token type reported by the server")
    expires_at: float | None = Field(None, description="POSIX timestamp of expiry, if known")

    @classmethod
    def from_token_response(
        cls,
        data: dict[str, Any],
        previous_refresh_token: str | None = None,
        now: float | None = None,
    ) -> TokenPair:
        """Build a pair from an OAuth token endpoint response body."""
        now = time.time() if now is None else now
        expires_in = data.get("expires_in")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or previous_refresh_token,
            token_type=data.get("token_type") or "Bearer",
            expires_at=now + float(expires_in) if expires_in is not None else None,
        )


class PKCEChallenge(BaseModel):
    """Verifier (kept by the caller) and its S256 challenge."""

    verifier: str
    challenge: str


# =============================================================================
# Media
# =============================================================================


def _as_str(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    return str(value)


class TranscodeResult(BaseModel):
    """Content-addressed output of the remote transcoder."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    content_hash: str = Field(..., alias="transcodedSha256", min_length=1)
    duration: int | float | None = None
    file_size_bytes: int | None = Field(None, alias="fileSize")
    channel_layout: str | None = Field(None, alias="channels")
    format: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_transcoded_info(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("transcodedInfo"), dict):
            merged = dict(data["transcodedInfo"])
            merged.update({k: v for k, v in data.items() if k != "transcodedInfo"})
            return merged
        return data

    @field_validator("channel_layout", mode="before")
    @classmethod
    def _channels_as_str(cls, v: Any) -> Any:
        return _as_str(v)

    @property
    def media_uri(self) -> str:
        return f"yoto:#{self.content_hash}"

    def to_payload(self) -> dict[str, Any]:
        """Return the transcoder's wire shape."""
        return {
            "transcodedSha256": self.content_hash,
            "transcodedInfo": {
                "duration": self.duration,
                "fileSize": self.file_size_bytes,
                "channels": self.channel_layout,
                "format": self.format,
            },
        }


class CachedTranscodeEntry(BaseModel):
    """Transcode result remembered for a given story text digest."""

    story_text_hash: str
    transcode_result: TranscodeResult
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict[str, Any]:
        return {
            "storyTextHash": self.story_text_hash,
            **self.transcode_result.to_payload(),
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any], story_text_hash: str) -> CachedTranscodeEntry:
        return cls(
            story_text_hash=data.get("storyTextHash") or story_text_hash,
            transcode_result=TranscodeResult.model_validate(data),
            created_at=data["createdAt"],
        )


# =============================================================================
# Cards
# =============================================================================


class Track(BaseModel):
    """Single audio segment of a chapter."""

    model_config = ConfigDict(populate_by_name=True)

    order_key: str = Field("01", alias="key")
    title: str = ""
    media_uri: str | None = Field(None, alias="trackUrl")
    duration: int | float | None = None
    file_size_bytes: int | None = Field(None, alias="fileSize")
    channel_layout: str | None = Field(None, alias="channels")
    format: str | None = None
    kind: str = Field("audio", alias="type")
    overlay_label: str | None = Field(None, alias="overlayLabel")

    @field_validator("order_key", "overlay_label", "channel_layout", mode="before")
    @classmethod
    def _coerce_str(cls, v: Any) -> Any:
        return _as_str(v)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Chapter(BaseModel):
    """One story's entry within a card."""

    model_config = ConfigDict(populate_by_name=True)

    order_key: str = Field("01", alias="key")
    title: str = ""
    overlay_label: str | None = Field(None, alias="overlayLabel")
    tracks: list[Track] = Field(default_factory=list)
    icon: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _lift_display_icon(cls, data: Any) -> Any:
        if isinstance(data, dict) and "icon" not in data:
            display = data.get("display")
            if isinstance(display, dict) and display.get("icon16x16"):
                data = {**data, "icon": display["icon16x16"]}
        return data

    @field_validator("order_key", "overlay_label", mode="before")
    @classmethod
    def _coerce_str(cls, v: Any) -> Any:
        return _as_str(v)

    @field_validator("tracks", mode="before")
    @classmethod
    def _tracks_default(cls, v: Any) -> Any:
        return v or []

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"key": self.order_key, "title": self.title}
        if self.overlay_label is not None:
            payload["overlayLabel"] = self.overlay_label
        payload["tracks"] = [track.to_payload() for track in self.tracks]
        if self.icon:
            payload["display"] = {"icon16x16": self.icon}
        return payload


class CardMedia(BaseModel):
    """Aggregate media metadata of a card."""

    model_config = ConfigDict(populate_by_name=True)

    total_duration: int | float = Field(0, alias="duration")
    total_file_size_bytes: int = Field(0, alias="fileSize")

    @field_validator("total_duration", "total_file_size_bytes", mode="before")
    @classmethod
    def _none_is_zero(cls, v: Any) -> Any:
        return 0 if v is None else v

    @classmethod
    def from_chapters(cls, chapters: list[Chapter]) -> CardMedia:
        """Sum durations and sizes over every track of every chapter."""
        tracks = [track for chapter in chapters for track in chapter.tracks]
        return cls(
            total_duration=sum(t.duration or 0 for t in tracks),
            total_file_size_bytes=sum(t.file_size_bytes or 0 for t in tracks),
        )

    @property
    def readable_file_size(self) -> float:
        """Size in megabytes, one decimal."""
        return round(self.total_file_size_bytes / 1024 / 1024, 1)

    def to_payload(self) -> dict[str, Any]:
        return {
            "duration": self.total_duration,
            "fileSize": self.total_file_size_bytes,
            "readableFileSize": self.readable_file_size,
        }


class Card(BaseModel):
    """Remote playlist document.

    Accepts the platform's list-summary and detail shapes, wrapped under
    ``card`` or flat. ``chapters`` stays ``None`` when the payload carried no
    chapter bodies (list views usually omit them).
    """

    model_config = ConfigDict(populate_by_name=True)

    card_id: str | None = Field(None, alias="cardId")
    title: str = ""
    chapters: list[Chapter] | None = None
    aggregate_media: CardMedia = Field(default_factory=CardMedia)
    created_at: datetime | None = Field(None, alias="createdAt")

    @model_validator(mode="before")
    @classmethod
    def _from_remote(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if isinstance(data.get("card"), dict):
            data = data["card"]
        data = dict(data)
        if not data.get("cardId") and "card_id" not in data and data.get("id"):
            data["cardId"] = data["id"]
        content = data.get("content")
        if "chapters" not in data and isinstance(content, dict) and content.get("chapters") is not None:
            data["chapters"] = content["chapters"]
        metadata = data.get("metadata")
        media = metadata.get("media") if isinstance(metadata, dict) else None
        if "aggregate_media" not in data and isinstance(media, dict):
            data["aggregate_media"] = media
        return data

    @field_validator("card_id", mode="before")
    @classmethod
    def _card_id_str(cls, v: Any) -> Any:
        return _as_str(v)

    @field_validator("created_at", mode="before")
    @classmethod
    def _lenient_created_at(cls, v: Any) -> Any:
        if isinstance(v, str):
            try:
                return datetime.fromisoformat(v.replace("Z", "+00:00"))
            except ValueError:
                return None
        return v

    @property
    def has_chapter_bodies(self) -> bool:
        return self.chapters is not None

    @property
    def created_timestamp(self) -> float:
        """Sort key for recency; naive timestamps are read as UTC."""
        if self.created_at is None:
            return float("-inf")
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return created.timestamp()


# =============================================================================
# Story workflow
# =============================================================================


def title_case(text: str) -> str:
    """Capitalise the first letter of each word, keeping possessives intact."""
    return re.sub(r"\w\S*", lambda m: m.group(0)[0].upper() + m.group(0)[1:].lower(), text)


class StoryMetadata(BaseModel):
    """Caller-supplied details about the story being uploaded."""

    model_config = ConfigDict(populate_by_name=True)

    child_name: str = Field(..., alias="childName", description="Hero of the story")
    adventure_type: str = Field(..., alias="adventureType", description="e.g. 'space-explorer'")
    special_skill: str | None = Field(None, alias="specialSkill")
    title: str | None = Field(None, description="Explicit chapter title")

    def chapter_title(self) -> str:
        if self.title:
            return title_case(self.title)
        adventure = title_case(self.adventure_type.replace("-", " "))
        return title_case(f"{self.child_name}'s {adventure} Adventure")


class ModerationVerdict(BaseModel):
    """Outcome of a content suitability check."""

    is_appropriate: bool
    score: float
    reasoning: str = ""


class StoryUploadResult(BaseModel):
    """Uniform result of a story submission."""

    success: bool
    card_id: str | None = None
    transcode_info: TranscodeResult | None = None
    error: str | None = None
    tokens: TokenPair | None = Field(
        None, description="Token pair after any refresh; callers should persist it"
    )
