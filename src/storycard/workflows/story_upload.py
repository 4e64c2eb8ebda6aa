"""Story submission workflow: narrate, transcode, and file the chapter on the card.

Usage::

    from storycard.workflows.story_upload import StoryUploadWorkflow
    workflow = StoryUploadWorkflow.from_settings(get_settings())
    result = await workflow.run(story_text, StoryMetadata(...), token_pair)
    if result.tokens:
        save(result.tokens)  # may have been refreshed
"""

from __future__ import annotations

import logging

from opentelemetry import trace

from storycard.api.settings import Settings
from storycard.errors import (
    AuthenticationFailure,
    ConfigurationFailure,
    StorycardError,
    ValidationFailure,
)
from storycard.infrastructure.moderation import ContentScorer, OpenAIContentScorer
from storycard.infrastructure.yoto import YotoClient
from storycard.models import (
    ModerationVerdict,
    StoryMetadata,
    StoryUploadResult,
    TokenPair,
    TranscodeResult,
)
from storycard.services.card_sync import CardSynchronizer
from storycard.services.token_manager import TokenManager
from storycard.services.transcode_cache import TranscodeCache, cache_key
from storycard.services.transcode_uploader import AudioTranscodeUploader
from storycard.services.tts_generator import TTSGenerator

tracer = trace.get_tracer(__name__)

GENERIC_ERROR = "An unexpected error occurred. Please try again."


class StoryUploadWorkflow:
    """Sequences TTS, upload/transcode, caching and the card merge for one story."""

    def __init__(
        self,
        tts_generator: TTSGenerator,
        uploader: AudioTranscodeUploader,
        cache: TranscodeCache,
        card_sync: CardSynchronizer,
        token_manager: TokenManager | None = None,
        moderator: ContentScorer | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.tts_generator = tts_generator
        self.uploader = uploader
        self.cache = cache
        self.card_sync = card_sync
        self.token_manager = token_manager
        self.moderator = moderator
        self.logger = logger or logging.getLogger(__name__)
        self._yoto_client: YotoClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> StoryUploadWorkflow:
        client = YotoClient(base_url=settings.yoto_api_base_url, timeout=settings.http_timeout)
        moderator = None
        if settings.moderation_enabled:
            moderator = OpenAIContentScorer(
                api_key=settings.openai_api_key,
                model=settings.moderation_model,
                threshold=settings.moderation_threshold,
            )
        workflow = cls(
            tts_generator=TTSGenerator.from_settings(settings),
            uploader=AudioTranscodeUploader(
                client,
                poll_interval=settings.transcode_poll_interval,
                max_poll_attempts=settings.transcode_max_poll_attempts,
            ),
            cache=TranscodeCache(
                settings.transcode_cache_dir, enabled=settings.transcode_cache_enabled
            ),
            card_sync=CardSynchronizer(
                client, card_title=settings.card_title, chapter_icon=settings.chapter_icon
            ),
            token_manager=TokenManager(
                client_id=settings.yoto_client_id,
                client_secret=settings.yoto_client_secret,
                auth_base_url=settings.yoto_auth_base_url,
                audience=settings.yoto_audience,
                timeout=settings.http_timeout,
            ),
            moderator=moderator,
        )
        workflow._yoto_client = client
        return workflow

    async def aclose(self) -> None:
        if self._yoto_client is not None:
            await self._yoto_client.aclose()
        if self.token_manager is not None:
            await self.token_manager.aclose()

    async def run(
        self,
        story_text: str,
        story_metadata: StoryMetadata,
        access_token: str | TokenPair,
        voice_id: str | None = None,
    ) -> StoryUploadResult:
        """Upload *story_text* as a new chapter. Never raises.

        *access_token* may be a bare token or a ``TokenPair``; in the latter
        case the (possibly refreshed) pair is returned in ``result.tokens``.
        """
        tokens = access_token if isinstance(access_token, TokenPair) else None
        try:
            with tracer.start_as_current_span("StoryUploadWorkflow.run") as span:
                token, tokens = await self._resolve_token(access_token)

                if not isinstance(story_text, str) or not story_text.strip():
                    raise ValidationFailure("story text is required")

                if self.moderator is not None:
                    await self._check_content(story_text)

                key = cache_key(story_text)
                cached = self.cache.get(key)
                span.set_attribute("storycard.cache_hit", cached is not None)

                if cached is not None:
                    transcode = cached.transcode_result
                else:
                    self.logger.info(f"Cache miss - generating audio and uploading to Yoto (key={key})")
                    transcode = await self._narrate_and_transcode(story_text, token, voice_id)
                    self.cache.put(key, transcode)

                card_id = await self._file_chapter(story_metadata, transcode, token)
                span.set_attribute("storycard.card_id", card_id or "")

            return StoryUploadResult(
                success=True, card_id=card_id, transcode_info=transcode, tokens=tokens
            )

        except StorycardError as e:
            self.logger.error(
                f"Story upload failed: {e.message}",
                extra={"error_type": type(e).__name__, "context": e.context},
            )
            return StoryUploadResult(success=False, error=e.user_message, tokens=tokens)
        except Exception as e:
            self.logger.exception(f"Story upload failed with unexpected error: {e}")
            return StoryUploadResult(success=False, error=GENERIC_ERROR, tokens=tokens)

    async def _resolve_token(self, access_token: str | TokenPair) -> tuple[str, TokenPair | None]:
        if isinstance(access_token, TokenPair):
            pair = access_token
            if self.token_manager is not None:
                pair = await self.token_manager.ensure_fresh(pair)
            return pair.access_token, pair
        if not access_token:
            raise AuthenticationFailure("No access token available")
        if self.token_manager is not None:
            # No refresh token to fall back on, so an expired bare token fails here
            await self.token_manager.ensure_fresh(TokenPair(access_token=access_token))
        return access_token, None

    async def _check_content(self, story_text: str) -> None:
        """Reject unsuitable stories; a scorer failure counts as unsuitable."""
        with tracer.start_as_current_span("StoryUploadWorkflow.moderate"):
            try:
                verdict = await self.moderator.score(story_text)
            except Exception as e:
                self.logger.error(f"Content moderation failed, rejecting story: {e}")
                verdict = ModerationVerdict(
                    is_appropriate=False,
                    score=1,
                    reasoning="Unable to verify content safety due to moderation service error",
                )

        if not verdict.is_appropriate:
            self.logger.warning(
                f"Story rejected by moderation: score={verdict.score}, reasoning={verdict.reasoning}"
            )
            raise ValidationFailure(
                f"Content not suitable for children ages 5-13 (score: {verdict.score:g}/10). "
                f"{verdict.reasoning}".strip()
            )

    async def _narrate_and_transcode(
        self, story_text: str, access_token: str, voice_id: str | None
    ) -> TranscodeResult:
        selected_voice = voice_id or self.tts_generator.random_voice_id()
        if not selected_voice:
            raise ConfigurationFailure("No voices configured for audio generation")

        with tracer.start_as_current_span("StoryUploadWorkflow.synthesize") as span:
            span.set_attribute("storycard.voice_id", selected_voice)
            audio = await self.tts_generator.generate_audio(story_text, selected_voice)

        with tracer.start_as_current_span("StoryUploadWorkflow.transcode") as span:
            span.set_attribute("storycard.audio_bytes", len(audio))
            return await self.uploader.upload_and_transcode(audio, access_token)

    async def _file_chapter(
        self, story_metadata: StoryMetadata, transcode: TranscodeResult, access_token: str
    ) -> str | None:
        with tracer.start_as_current_span("StoryUploadWorkflow.sync_card") as span:
            existing = await self.card_sync.find_existing_card(access_token)
            span.set_attribute("storycard.card_exists", existing is not None)
            if existing is not None:
                return await self.card_sync.update_card(
                    existing, story_metadata, transcode, access_token
                )
            return await self.card_sync.create_card(story_metadata, transcode, access_token)
