"""Read-merge-write synchronisation of the shared story card.

The platform offers no partial updates and no version check, so every write
replaces the whole card document. Concurrent writers race; the last write wins.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from storycard.api.settings import DEFAULT_CHAPTER_ICON, HERO_CARD_TITLE
from storycard.errors import CardWriteFailure
from storycard.infrastructure.yoto import YotoClient
from storycard.models import Card, CardMedia, Chapter, StoryMetadata, Track, TranscodeResult

RESUME_TIMEOUT_SECONDS = 2592000


def order_key(position: int) -> str:
    """Two-digit, 1-based sequence key."""
    return f"{position:02d}"


class CardSynchronizer:
    """Keeps the single well-known card in step with newly narrated stories."""

    def __init__(
        self,
        client: YotoClient,
        card_title: str = HERO_CARD_TITLE,
        chapter_icon: str = DEFAULT_CHAPTER_ICON,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.card_title = card_title
        self.chapter_icon = chapter_icon
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def find_existing_card(self, access_token: str) -> Card | None:
        """Return the most recent card with the well-known title, or ``None``.

        Any failure is logged and reported as "no card"; creation converges on
        the same title so the next lookup finds it.
        """
        try:
            self.logger.info(f'Checking for existing "{self.card_title}" card')
            response = await self.client.list_content(access_token)
            if not response.is_success:
                self.logger.error(
                    f"Failed to get user content: {response.status_code}",
                    extra={"status": response.status_code, "response_body": response.text},
                )
                return None

            body = response.json()
            summaries = body.get("cards") if isinstance(body, dict) else None
            summaries = summaries or []
            self.logger.debug(f"Retrieved user content from Yoto: {len(summaries)} cards")

            matches = [
                Card.model_validate(summary)
                for summary in summaries
                if isinstance(summary, dict) and summary.get("title") == self.card_title
            ]
            if not matches:
                self.logger.info(f'No existing "{self.card_title}" card found')
                return None

            # sorted() is stable, so equal timestamps keep list order
            selected = sorted(matches, key=lambda c: c.created_timestamp, reverse=True)[0]
            self.logger.info(
                f'Found existing "{self.card_title}" card',
                extra={
                    "card_count": len(matches),
                    "card_id": selected.card_id,
                    "created_at": str(selected.created_at),
                },
            )

            detailed = await self._fetch_detail(selected.card_id, access_token)
            if detailed is None:
                self.logger.warning(
                    f"Failed to get full card details, using basic card info (card_id={selected.card_id})"
                )
                return selected
            return detailed

        except Exception as e:
            self.logger.error(f"Failed to check for existing card: {e}")
            return None

    async def _fetch_detail(self, card_id: str | None, access_token: str) -> Card | None:
        if not card_id:
            return None
        try:
            response = await self.client.get_content(card_id, access_token)
        except httpx.HTTPError as e:
            self.logger.warning(f"Card detail request failed for {card_id}: {e}")
            return None
        if not response.is_success:
            return None

        try:
            body = response.json()
        except ValueError:
            self.logger.warning(f"Card detail response for {card_id} was not JSON")
            return None

        card = Card.model_validate(body)
        if not card.card_id:
            card = card.model_copy(update={"card_id": card_id})
        self.logger.debug(f"Full card details retrieved successfully (card_id={card_id})")
        return card

    # ------------------------------------------------------------------
    # Chapter construction
    # ------------------------------------------------------------------

    def build_chapter(
        self, story_metadata: StoryMetadata, transcode_result: TranscodeResult, number: int
    ) -> Chapter:
        """New chapter with a single track pointing at the transcoded audio."""
        title = story_metadata.chapter_title()
        track = Track(
            order_key="01",
            title=title,
            media_uri=transcode_result.media_uri,
            duration=transcode_result.duration,
            file_size_bytes=transcode_result.file_size_bytes,
            channel_layout=transcode_result.channel_layout,
            format=transcode_result.format,
            kind="audio",
            overlay_label="1",
        )
        return Chapter(
            order_key=order_key(number),
            title=title,
            overlay_label=str(number),
            tracks=[track],
            icon=self.chapter_icon,
        )

    def normalize_chapters(self, chapters: list[Chapter]) -> list[Chapter]:
        """Rebuild chapters in the canonical write shape with contiguous keys.

        Keys are regenerated from position rather than trusted from the remote
        card. Existing overlay labels and icons are kept when present.
        """
        normalized = []
        for position, chapter in enumerate(chapters, start=1):
            tracks = [
                track.model_copy(
                    update={
                        "order_key": order_key(track_position),
                        "overlay_label": track.overlay_label or str(track_position),
                    }
                )
                for track_position, track in enumerate(chapter.tracks, start=1)
            ]
            normalized.append(
                Chapter(
                    order_key=order_key(position),
                    title=chapter.title,
                    overlay_label=chapter.overlay_label or str(position),
                    tracks=tracks,
                    icon=chapter.icon or self.chapter_icon,
                )
            )
        return normalized

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_card(
        self, story_metadata: StoryMetadata, transcode_result: TranscodeResult, access_token: str
    ) -> str | None:
        """Create the well-known card holding a single chapter. Returns the new card id."""
        self.logger.info(f'Creating new "{self.card_title}" card')
        chapters = [self.build_chapter(story_metadata, transcode_result, 1)]
        media = CardMedia.from_chapters(chapters)

        payload = {
            "title": self.card_title,
            "content": {
                "chapters": [chapter.to_payload() for chapter in chapters],
                "playbackType": "linear",
                "config": {"resumeTimeout": RESUME_TIMEOUT_SECONDS},
            },
            "metadata": {"media": media.to_payload()},
        }
        self.logger.debug("Card creation request payload", extra={"payload": payload})

        result = await self._write(payload, access_token, chapter_count=1, action="create")
        card_id = self._card_id_from_response(result)
        self.logger.info(f"Card creation successful (card_id={card_id}, title={self.card_title})")
        return card_id

    async def update_card(
        self,
        existing_card: Card,
        story_metadata: StoryMetadata,
        transcode_result: TranscodeResult,
        access_token: str,
    ) -> str | None:
        """Append a chapter to *existing_card* and replace the remote document."""
        card = existing_card
        if not card.has_chapter_bodies and card.card_id:
            detailed = await self._fetch_detail(card.card_id, access_token)
            if detailed is None:
                # Writing now would replace the remote chapters with only the new one
                raise CardWriteFailure(
                    f"Failed to update card: could not read existing chapters of {card.card_id}",
                    chapter_count=len(card.chapters or []) + 1,
                    card_id=card.card_id,
                )
            card = detailed

        existing_chapters = card.chapters or []
        next_number = len(existing_chapters) + 1
        self.logger.info(
            f"Adding new chapter to existing card: existing={len(existing_chapters)}, new={next_number}"
        )

        chapters = self.normalize_chapters(existing_chapters)
        chapters.append(self.build_chapter(story_metadata, transcode_result, next_number))
        media = CardMedia.from_chapters(chapters)

        payload = {
            "cardId": card.card_id,
            "title": self.card_title,
            "content": {"chapters": [chapter.to_payload() for chapter in chapters]},
            "metadata": {"media": media.to_payload()},
        }
        self.logger.info(
            "Preparing complete card update",
            extra={
                "card_id": card.card_id,
                "chapter_count": len(chapters),
                "total_duration": media.total_duration,
                "total_file_size": media.total_file_size_bytes,
            },
        )

        result = await self._write(
            payload, access_token, chapter_count=len(chapters), action="update", card_id=card.card_id
        )
        card_id = self._card_id_from_response(result) or card.card_id
        self.logger.info(f"Card {card_id} updated with chapter {next_number}")
        return card_id

    async def _write(
        self,
        payload: dict[str, Any],
        access_token: str,
        chapter_count: int,
        action: str,
        card_id: str | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self.client.write_content(payload, access_token)
        except httpx.HTTPError as e:
            raise CardWriteFailure(
                f"Failed to {action} card: {e}", chapter_count=chapter_count, card_id=card_id
            ) from e

        if not response.is_success:
            raise CardWriteFailure(
                f"Failed to {action} card ({chapter_count} chapters): {response.text}",
                chapter_count=chapter_count,
                status=response.status_code,
                response_body=response.text,
                card_id=card_id,
            )

        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _card_id_from_response(body: dict[str, Any]) -> str | None:
        nested = body.get("card") if isinstance(body.get("card"), dict) else {}
        card_id = body.get("cardId") or nested.get("cardId") or body.get("id")
        return str(card_id) if card_id else None
