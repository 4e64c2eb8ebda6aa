"""Stateless, testable building blocks (auth, TTS, upload, cache, card merge) live here."""

from .card_sync import CardSynchronizer
from .token_manager import TokenManager
from .transcode_cache import TranscodeCache
from .transcode_uploader import AudioTranscodeUploader
from .tts_generator import TTSGenerator
