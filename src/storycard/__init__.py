"""
Storycard – narrated stories delivered to a Yoto card.

This top-level package exposes the core models shared by the services,
the workflow and the HTTP surface.
"""

from .models import (
    Card,
    Chapter,
    StoryMetadata,
    StoryUploadResult,
    TokenPair,
    Track,
    TranscodeResult,
)

__all__ = [
    "Card",
    "Chapter",
    "StoryMetadata",
    "StoryUploadResult",
    "TokenPair",
    "Track",
    "TranscodeResult",
]
