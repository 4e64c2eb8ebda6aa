import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

HERO_CARD_TITLE = "You're The Hero!"
DEFAULT_CHAPTER_ICON = "yoto:#gTMbacpoeSMYqc9fNLJnxPjylraNG6jIrYEWevyzYbA"


class Settings(BaseSettings):
    """Application settings loaded from environment variables or `.env` file."""

    env: Literal["dev", "docker", "production"] = Field(
        default="dev",
        description="Runtime environment: dev (local), docker (docker-compose), or production",
    )
    log_level: str = Field(default="INFO", description="Logging level")

    # Yoto OAuth + platform
    yoto_client_id: str | None = Field(default=None, alias="YOTO_CLIENT_ID")
    yoto_client_secret: str | None = Field(default=None, alias="YOTO_CLIENT_SECRET")
    yoto_auth_base_url: str = "https://login.yotoplay.com"
    yoto_api_base_url: str = "https://api.yotoplay.com"
    yoto_audience: str = "https://api.yotoplay.com"
    http_timeout: float = Field(default=30.0, description="Per-request timeout in seconds")

    # ElevenLabs TTS
    eleven_labs_api_key: str | None = Field(default=None, alias="ELEVENLABS_API_KEY")
    elevenlabs_voice_ids: str = Field(
        default="", alias="ELEVENLABS_VOICE_IDS", description="Comma-separated ElevenLabs voice IDs"
    )
    elevenlabs_model_id: str = "eleven_monolingual_v1"
    tts_max_words: int = 1000

    # Content moderation (OpenAI)
    openai_api_key: str | None = None
    moderation_enabled: bool = False
    moderation_model: str = "gpt-4o-mini"
    moderation_threshold: float = 7

    # Transcoding
    transcode_cache_dir: str = ".cache/transcodes"
    transcode_poll_interval: float = 0.5
    transcode_max_poll_attempts: int = 60

    # Card layout
    card_title: str = HERO_CARD_TITLE
    chapter_icon: str = DEFAULT_CHAPTER_ICON

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "populate_by_name": True,
        "extra": "ignore",
    }

    @property
    def voice_ids(self) -> list[str]:
        return [voice_id.strip() for voice_id in self.elevenlabs_voice_ids.split(",") if voice_id.strip()]

    @property
    def transcode_cache_enabled(self) -> bool:
        # Reusing another request's audio is only acceptable outside production
        return self.env != "production"


@lru_cache
def get_settings() -> Settings:  # pragma: no cover
    """Return a cached instance of Settings."""
    s = Settings()
    logging.basicConfig(level=s.log_level)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info(f"Starting Storycard in {s.env.upper()} environment")
    logger.info("=" * 60)
    logger.info(f"Yoto API: {s.yoto_api_base_url}")
    logger.info(f"Voices configured: {len(s.voice_ids)}")
    logger.info(f"Transcode cache: {'enabled' if s.transcode_cache_enabled else 'disabled'}")
    logger.info(f"Moderation: {'enabled' if s.moderation_enabled else 'disabled'}")
    logger.info("=" * 60)

    if s.env == "production":
        if not s.yoto_client_id:
            logger.warning("YOTO_CLIENT_ID not set in production!")
        if not s.eleven_labs_api_key:
            logger.warning("ELEVENLABS_API_KEY not set in production - audio generation will fail!")
        if s.moderation_enabled and not s.openai_api_key:
            logger.warning("OPENAI_API_KEY not set in production - story uploads will fail!")

    return s
