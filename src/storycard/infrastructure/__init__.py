"""I/O boundary adapters (Yoto platform, TTS, moderation)."""

from .moderation import ContentScorer, OpenAIContentScorer
from .tts import ElevenLabsProvider, TTSProvider
from .yoto import YotoClient

__all__ = [
    "ContentScorer",
    "ElevenLabsProvider",
    "OpenAIContentScorer",
    "TTSProvider",
    "YotoClient",
]
