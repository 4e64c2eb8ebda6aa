"""Send a finished story to the caller's Yoto card."""

import json
import logging
import uuid
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from storycard.api.settings import Settings, get_settings
from storycard.errors import AuthenticationFailure, StorycardError
from storycard.models import StoryMetadata, TokenPair
from storycard.services.tts_generator import TTSGenerator, count_words
from storycard.workflows.story_upload import StoryUploadWorkflow

logger = logging.getLogger(__name__)


class NarrateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: Any = None
    voice_id: str | None = Field(None, alias="voiceId")


class SendToCardRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    story: Any = None
    story_metadata: dict[str, Any] | None = Field(None, alias="storyMetadata")
    voice_id: str | None = Field(None, alias="voiceId")


async def get_workflow(
    settings: Settings = Depends(get_settings),
) -> AsyncGenerator[StoryUploadWorkflow, None]:
    """Story upload workflow dependency."""
    try:
        workflow = StoryUploadWorkflow.from_settings(settings)
    except StorycardError as e:
        logger.error(f"Failed to build story upload workflow: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.user_message) from e
    try:
        yield workflow
    finally:
        await workflow.aclose()


def get_tts_generator(settings: Settings = Depends(get_settings)) -> TTSGenerator:
    return TTSGenerator.from_settings(settings)


def parse_bearer(authorization: str | None) -> str | TokenPair:
    """Extract the credential from an ``Authorization: Bearer`` header.

    The value is either a raw access token or a JSON-encoded token pair.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationFailure("Authorization header missing or invalid")

    raw = authorization[len("Bearer "):].strip()
    try:
        data = json.loads(raw)
    except ValueError:
        data = None

    if isinstance(data, dict):
        try:
            return TokenPair.model_validate(data)
        except ValidationError as e:
            raise AuthenticationFailure("Bearer token pair is malformed") from e
    if not raw:
        raise AuthenticationFailure("Authorization header missing or invalid")
    return raw


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


router = APIRouter(prefix="/api/v1/story", tags=["story"])


@router.post("/send-to-card")
async def send_to_card(
    request: SendToCardRequest,
    authorization: str | None = Header(None),
    workflow: StoryUploadWorkflow = Depends(get_workflow),
):
    """Narrate the story and add it as the next chapter of the hero card."""
    request_id = uuid.uuid4().hex[:9]
    logger.info(f"Send to card workflow started (request_id={request_id})")

    try:
        credential = parse_bearer(authorization)
    except AuthenticationFailure as e:
        logger.warning(f"Send to card: authentication failed (request_id={request_id})")
        return _error(e.status_code, e.user_message)

    if not isinstance(request.story, str) or not request.story.strip():
        return _error(400, "story text is required")

    metadata_body = request.story_metadata or {}
    if not metadata_body.get("childName") or not metadata_body.get("adventureType"):
        logger.warning(f"Send to card: missing story metadata (request_id={request_id})")
        return _error(400, "storyMetadata with childName and adventureType is required")
    try:
        metadata = StoryMetadata.model_validate(metadata_body)
    except ValidationError as e:
        return _error(400, f"storyMetadata is invalid: {e.errors()[0]['msg']}")

    word_count = count_words(request.story)
    if not workflow.tts_generator.validate_text_length(request.story):
        return _error(400, f"Story must be between 1 and {workflow.tts_generator.max_words} words")

    logger.info(
        f"Send to card parameters validated (request_id={request_id}, words={word_count}, "
        f"adventure={metadata.adventure_type})"
    )

    result = await workflow.run(request.story, metadata, credential, voice_id=request.voice_id)
    tokens = result.tokens.model_dump() if result.tokens else None

    if not result.success:
        logger.error(f"Card upload failed (request_id={request_id}): {result.error}")
        content: dict[str, Any] = {"error": f"Card upload failed: {result.error}"}
        if tokens:
            content["tokens"] = tokens
        return JSONResponse(status_code=500, content=content)

    logger.info(f"Send to card workflow completed (request_id={request_id}, card_id={result.card_id})")

    duration = (result.transcode_info.duration if result.transcode_info else None) or 0
    file_size = (result.transcode_info.file_size_bytes if result.transcode_info else None) or 0
    return {
        "success": True,
        "message": "Story added to your Yoto library successfully!",
        "story": {"title": metadata.chapter_title(), "wordCount": word_count},
        "audio": {
            "duration": duration,
            "fileSize": file_size,
            "readableFileSize": round(file_size / 1024 / 1024, 1),
        },
        "card": {
            "cardId": result.card_id,
            "cardTitle": workflow.card_sync.card_title,
            "message": "Added to your Yoto library - check your Yoto app!",
        },
        "tokens": tokens,
    }


@router.post("/narrate")
async def narrate(
    request: NarrateRequest,
    tts_generator: TTSGenerator = Depends(get_tts_generator),
):
    """Narrate text and return the MP3 without touching the card."""
    if not isinstance(request.text, str) or not request.text.strip():
        return _error(400, "Text content is required for audio generation")

    word_count = count_words(request.text)
    if not tts_generator.validate_text_length(request.text):
        return _error(
            400,
            f"Text too long for audio generation. Current: {word_count} words. "
            f"Maximum: {tts_generator.max_words} words allowed.",
        )

    voice_id = request.voice_id
    if not voice_id:
        voice_id = tts_generator.default_voice_id()
        if not voice_id:
            return _error(500, "No voices configured for text-to-speech")
    elif not tts_generator.is_valid_voice_id(voice_id):
        available = ", ".join(tts_generator.voice_ids)
        return _error(400, f"Invalid voice selection. Available voices: {available}")

    logger.info(f"Generating audio for {word_count} words using voice: {voice_id}")
    try:
        audio = await tts_generator.generate_audio(request.text, voice_id)
    except StorycardError as e:
        logger.error(f"Audio generation failed: {e.message}")
        return _error(500, f"Failed to generate audio: {e.message}")

    logger.info(f"Audio generated successfully: {len(audio)} bytes")
    return Response(
        content=audio,
        media_type="audio/mpeg",
        headers={
            "Content-Disposition": 'attachment; filename="story-audio.mp3"',
            "Cache-Control": "public, max-age=31536000",
        },
    )
