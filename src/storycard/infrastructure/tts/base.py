from __future__ import annotations

from abc import ABC, abstractmethod


class TTSProvider(ABC):
    """Abstract base class for TTS providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the (unique) short-name for this provider (e.g. 'eleven')."""

    @abstractmethod
    def synthesize(
        self,
        *,  # force keyword-only args
        text: str,
        voice_id: str,
    ) -> bytes:
        """Synthesise *text* with *voice_id* and return the encoded audio bytes."""
