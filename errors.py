"""Shared error codes, user-facing messages and exception types."""

from __future__ import annotations

PRECONDITION_NOT_MET = "PRECONDITION_NOT_MET"
BUSY = "BUSY"
CONTENT_UNAVAILABLE = "CONTENT_UNAVAILABLE"
INVALID_MEDIA = "INVALID_MEDIA"
GENERATION_FAILED = "GENERATION_FAILED"
PLAYBACK_FAILED = "PLAYBACK_FAILED"
NO_SPEECH_DETECTED = "NO_SPEECH_DETECTED"
PERMISSION_DENIED = "PERMISSION_DENIED"
ALREADY_CAPTURING = "ALREADY_CAPTURING"
NOT_FOUND = "NOT_FOUND"
NO_API_KEY = "NO_API_KEY"
AUTH_FAILED = "AUTH_FAILED"
NETWORK_ERROR = "NETWORK_ERROR"
EMPTY_RESPONSE = "EMPTY_RESPONSE"
NO_AUDIO_CONTENT = "NO_AUDIO_CONTENT"
PROTOCOL_ERROR = "PROTOCOL_ERROR"

ERROR_MESSAGES = {
    PRECONDITION_NOT_MET: "Please select an image, enter age, and choose a focus area.",
    BUSY: "A response is already being generated.",
    CONTENT_UNAVAILABLE: "This image needs to be added again before it can be used.",
    INVALID_MEDIA: "Only image files can be used.",
    GENERATION_FAILED: "No response received, please try again.",
    PLAYBACK_FAILED: "Text-to-speech failed.",
    NO_SPEECH_DETECTED: "No speech detected. Try speaking louder or closer to the microphone.",
    PERMISSION_DENIED: "Microphone access was denied.",
    ALREADY_CAPTURING: "Voice capture is already in progress.",
    NOT_FOUND: "File not found.",
    NO_API_KEY: "No API key configured.",
    AUTH_FAILED: "API key is invalid.",
    NETWORK_ERROR: "Network failed, please retry.",
    EMPTY_RESPONSE: "The model returned an empty response.",
    NO_AUDIO_CONTENT: "No audio content received.",
    PROTOCOL_ERROR: "Service response format is invalid.",
}


class AppError(Exception):
    code = PROTOCOL_ERROR

    def __init__(self, message: str = "", code: str | None = None) -> None:
        if code:
            self.code = code
        self.message = message or ERROR_MESSAGES.get(self.code, self.code)
        super().__init__(self.message)


class PreconditionNotMet(AppError):
    code = PRECONDITION_NOT_MET


class Busy(AppError):
    code = BUSY


class ContentUnavailable(AppError):
    code = CONTENT_UNAVAILABLE


class InvalidMedia(AppError):
    code = INVALID_MEDIA


class GenerationFailed(AppError):
    code = GENERATION_FAILED


class PlaybackFailed(AppError):
    code = PLAYBACK_FAILED


class NoSpeechDetected(AppError):
    code = NO_SPEECH_DETECTED


class PermissionDenied(AppError):
    code = PERMISSION_DENIED


class AlreadyCapturing(AppError):
    code = ALREADY_CAPTURING


class NotFound(AppError):
    code = NOT_FOUND


class GatewayError(AppError):
    """Failure reported by a remote model or speech service."""

    code = NETWORK_ERROR


def classify_exception(exc: BaseException) -> str:
    """Map an SDK/network exception to one of the codes above."""
    if isinstance(exc, AppError):
        return exc.code
    low = str(exc).lower()
    if "401" in low or "auth" in low or "api key" in low:
        return AUTH_FAILED
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return NETWORK_ERROR
    if "timeout" in low or "timed out" in low or "network" in low or "connection" in low:
        return NETWORK_ERROR
    return PROTOCOL_ERROR
