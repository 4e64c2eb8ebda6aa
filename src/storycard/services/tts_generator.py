from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Sequence

from storycard.api.settings import Settings
from storycard.errors import ConfigurationFailure, ExternalServiceFailure, StorycardError, ValidationFailure
from storycard.infrastructure.tts import ElevenLabsProvider, TTSProvider

logger = logging.getLogger(__name__)

MAX_WORDS = 1000


def count_words(text: str) -> int:
    return len(text.split()) if isinstance(text, str) else 0


class TTSGenerator:
    """Single-voice narration for story text."""

    def __init__(
        self,
        provider: TTSProvider | None = None,
        voice_ids: Sequence[str] = (),
        max_words: int = MAX_WORDS,
        api_key: str | None = None,
        model_id: str = "eleven_monolingual_v1",
    ) -> None:
        self._provider = provider
        self.api_key = api_key
        self.model_id = model_id
        self.voice_ids: list[str] = [v.strip() for v in voice_ids if v and v.strip()]
        self.max_words = max_words

    @classmethod
    def from_settings(cls, settings: Settings) -> TTSGenerator:
        return cls(
            voice_ids=settings.voice_ids,
            max_words=settings.tts_max_words,
            api_key=settings.eleven_labs_api_key,
            model_id=settings.elevenlabs_model_id,
        )

    @property
    def provider(self) -> TTSProvider:
        # Built lazily so a cache hit never needs TTS credentials
        if self._provider is None:
            self._provider = ElevenLabsProvider(api_key=self.api_key, model_id=self.model_id)
        return self._provider

    def default_voice_id(self) -> str | None:
        return self.voice_ids[0] if self.voice_ids else None

    def random_voice_id(self) -> str | None:
        return random.choice(self.voice_ids) if self.voice_ids else None

    def is_valid_voice_id(self, voice_id: str) -> bool:
        return voice_id in self.voice_ids

    def validate_text_length(self, text: str) -> bool:
        """Between one word and the configured ceiling."""
        return 1 <= count_words(text) <= self.max_words

    async def generate_audio(self, text: str, voice_id: str) -> bytes:
        """Narrate *text* with *voice_id*.

        Returns non-empty audio bytes or raises a ``StorycardError``:
        ``ValidationFailure`` for bad input, ``ConfigurationFailure`` when the
        provider has no credentials, ``ExternalServiceFailure`` for anything
        the provider throws.
        """
        if not voice_id:
            raise ConfigurationFailure("No voices configured for audio generation")

        if not self.validate_text_length(text):
            logger.warning(
                "TTS generation failed: invalid text length",
                extra={"text_length": len(text or ""), "word_count": count_words(text)},
            )
            raise ValidationFailure("Text length invalid for TTS generation")

        logger.info(f"Starting TTS generation with voice {voice_id} ({count_words(text)} words)")

        loop = asyncio.get_running_loop()
        try:
            provider = self.provider
            audio: bytes = await loop.run_in_executor(
                None, lambda: provider.synthesize(text=text, voice_id=voice_id)
            )
        except StorycardError:
            raise
        except Exception as e:
            logger.error(f"TTS generation failed: {e}", extra={"voice_id": voice_id})
            raise ExternalServiceFailure("ElevenLabs", str(e), {"voice_id": voice_id}) from e

        if not audio:
            raise ExternalServiceFailure("ElevenLabs", "Provider returned no audio", {"voice_id": voice_id})

        logger.info(
            f"TTS generation completed: {len(audio)} bytes "
            f"({round(len(audio) / 1024 / 1024, 2)} MB)"
        )
        return audio
