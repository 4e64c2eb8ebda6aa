from __future__ import annotations

import os

from dotenv import load_dotenv
from elevenlabs import VoiceSettings
from elevenlabs.client import ElevenLabs

from storycard.errors import ConfigurationFailure
from storycard.infrastructure.tts.base import TTSProvider

load_dotenv()

# Tuned for child-friendly narration
NARRATION_VOICE_SETTINGS = VoiceSettings(
    stability=0.7,
    similarity_boost=0.8,
    style=0.3,
    use_speaker_boost=True,
)


class ElevenLabsProvider(TTSProvider):
    """TTS provider for ElevenLabs API."""

    name: str = "eleven"

    def __init__(
        self,
        api_key: str | None = None,
        model_id: str = "eleven_monolingual_v1",
        output_format: str = "mp3_44100_128",
    ) -> None:
        key = api_key or os.getenv("ELEVENLABS_API_KEY") or os.getenv("ELEVEN_LABS_API_KEY")
        if not key:
            raise ConfigurationFailure("ElevenLabs API key not configured")
        self.client = ElevenLabs(api_key=key)
        self.model_id = model_id
        self.output_format = output_format

    def synthesize(self, *, text: str, voice_id: str) -> bytes:
        """Synthesize audio using the ElevenLabs text-to-speech API."""
        audio_stream = self.client.text_to_speech.convert(
            voice_id=voice_id,
            text=text,
            model_id=self.model_id,
            output_format=self.output_format,
            voice_settings=NARRATION_VOICE_SETTINGS,
        )
        return b"".join(chunk for chunk in audio_stream if isinstance(chunk, bytes))
