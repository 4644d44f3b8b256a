import logging
from typing import Any, Dict, Optional, Protocol

from pydantic import ValidationError

from .errors import TranscriptionError
from .media_providers import segment_confidence
from .models import TranscriptionResult, TranscriptionStatus, TranscriptSegment

logger = logging.getLogger("slidecoach.transcription")

DEGRADED_TEXT = (
    "Transcription service encountered an issue. Your practice session was recorded, "
    "but we couldn't generate a complete transcript."
)


class Transcriber(Protocol):
    async def transcribe(self, audio: bytes, *, filename: str, content_type: str) -> Dict[str, Any]: ...


def degraded_transcription(reason: str) -> TranscriptionResult:
    return TranscriptionResult(
        text=DEGRADED_TEXT,
        segments=[TranscriptSegment(id=0, start=0, end=1, text=DEGRADED_TEXT, confidence=1)],
        status=TranscriptionStatus.DEGRADED,
        reason=reason,
    )


def to_transcription(payload: Dict[str, Any]) -> TranscriptionResult:
    if not isinstance(payload, dict):
        raise TranscriptionError(f"expected an object, got {type(payload).__name__}")
    segments = []
    for index, raw in enumerate(payload.get("segments") or []):
        segments.append(TranscriptSegment(
            id=raw.get("id", index),
            start=raw.get("start", 0.0),
            end=raw.get("end", 0.0),
            text=(raw.get("text") or "").strip(),
            confidence=segment_confidence(raw),
        ))
    return TranscriptionResult(text=(payload.get("text") or "").strip(), segments=segments)


class TranscriptionService:
    """Wrap the transcription collaborator; failures yield a tagged degraded transcript, never an exception."""

    def __init__(self, transcriber: Optional[Transcriber]):
        self.transcriber = transcriber

    async def transcribe(
        self, audio: bytes, *, filename: str = "recording.webm", content_type: str = "audio/webm"
    ) -> TranscriptionResult:
        if not audio:
            return degraded_transcription("empty recording")
        if self.transcriber is None:
            return degraded_transcription("transcription service not configured")
        try:
            payload = await self.transcriber.transcribe(audio, filename=filename, content_type=content_type)
            result = to_transcription(payload)
        except (TranscriptionError, ValidationError, TypeError, ValueError, AttributeError) as e:
            logger.error("Transcription failed: %s", e)
            return degraded_transcription(str(e))
        if not result.text:
            return degraded_transcription("transcription was empty")
        return result
