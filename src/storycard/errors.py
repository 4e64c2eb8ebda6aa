"""Typed failures raised by the storycard components."""

from __future__ import annotations

from typing import Any


class StorycardError(Exception):
    """Base class for every failure the workflow knows how to report."""

    status_code: int = 500
    default_user_message: str = "An unexpected error occurred. Please try again."

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        return self.default_user_message


class ConfigurationFailure(StorycardError):
    """Required credentials or settings are missing."""

    status_code = 500
    default_user_message = "Service temporarily unavailable due to configuration issues."


class AuthenticationFailure(StorycardError):
    """Token invalid, expired and unrefreshable, or rejected upstream."""

    status_code = 401
    default_user_message = "Authentication required. Please log in with your Yoto account."

    def __init__(
        self,
        message: str = "Authentication failed",
        error_code: str | None = None,
        error_description: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.error_code = error_code
        self.error_description = error_description
        super().__init__(message, context)


class ValidationFailure(StorycardError):
    """Caller input is malformed. The message is safe to show as-is."""

    status_code = 400

    @property
    def user_message(self) -> str:
        return self.message


class ExternalServiceFailure(StorycardError):
    """An upstream service returned non-2xx or the transport failed."""

    status_code = 502
    default_user_message = "External service temporarily unavailable. Please try again."

    def __init__(self, service: str, message: str, context: dict[str, Any] | None = None):
        self.service = service
        super().__init__(f"{service}: {message}", context)


class UploadFailure(ExternalServiceFailure):
    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__("Yoto API", message, context)


class TranscodeTimeout(ExternalServiceFailure):
    """The transcoder never reported a content hash within the poll ceiling."""

    def __init__(self, attempts: int, upload_id: str, poll_interval: float):
        self.attempts = attempts
        self.upload_id = upload_id
        super().__init__(
            "Yoto API",
            f"Transcoding timed out after {attempts * poll_interval:g} seconds",
            {"attempts": attempts, "upload_id": upload_id},
        )


class CardWriteFailure(ExternalServiceFailure):
    """Card create/update was rejected. Operator-facing, so the upstream text is kept."""

    def __init__(
        self,
        message: str,
        chapter_count: int,
        status: int | None = None,
        response_body: str | None = None,
        card_id: str | None = None,
    ):
        self.chapter_count = chapter_count
        self.status = status
        self.response_body = response_body
        self.card_id = card_id
        super().__init__(
            "Yoto API",
            message,
            {
                "chapter_count": chapter_count,
                "status": status,
                "card_id": card_id,
                "response_body": response_body,
            },
        )

    @property
    def user_message(self) -> str:
        return self.message
