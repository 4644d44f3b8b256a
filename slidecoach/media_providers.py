"""HTTP collaborators for images, speech synthesis and transcription."""

import base64
import logging
import math
from typing import Any, Dict

import httpx

from .errors import ImageGenerationError, SpeechSynthesisError, TranscriptionError
from .llm_providers import ProviderClient, RetryableProviderError, raise_for_provider_error

logger = logging.getLogger("slidecoach.media")

TRANSCRIPTION_PROMPT = "Transcribe naturally, including disfluencies like um, uh, so."


def _endpoint(base: str, path: str) -> str:
    return base.rstrip("/") + path


class ImageClient(ProviderClient):
    """OpenAI-compatible image generation returning raw PNG bytes."""

    label = "image"

    def __init__(self, api_key: str, *, base_url: str, model: str = "dall-e-3", size: str = "1024x1024", **kwargs):
        super().__init__(api_key, **kwargs)
        self.base_url = base_url
        self.model = model
        self.size = size

    async def generate(self, prompt: str) -> bytes:
        if not self.api_key:
            raise ImageGenerationError("Image API key not configured")
        data = {
            "model": self.model,
            "prompt": prompt,
            "n": 1,
            "size": self.size,
            "response_format": "b64_json",
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with self.session() as client:
                r = await client.post(_endpoint(self.base_url, "/images/generations"), headers=headers, json=data)
                if r.status_code >= 400:
                    raise_for_provider_error(r, "Image", ImageGenerationError)
                items = r.json().get("data") or []
        except (httpx.HTTPError, RetryableProviderError, ValueError) as e:
            raise ImageGenerationError(f"Image request failed: {e}") from e

        b64 = items[0].get("b64_json") if items else None
        if not b64:
            raise ImageGenerationError("Image API did not return b64_json data")
        try:
            return base64.b64decode(b64)
        except ValueError as e:
            raise ImageGenerationError(f"Image payload is not valid base64: {e}") from e


class SpeechClient(ProviderClient):
    """Text-to-speech over an OpenAI-compatible ``/audio/speech`` endpoint (Groq by default)."""

    label = "speech"

    def __init__(self, api_key: str, *, base_url: str, model: str = "playai-tts", **kwargs):
        super().__init__(api_key, **kwargs)
        self.base_url = base_url
        self.model = model

    async def synthesize(self, text: str, *, voice: str, response_format: str = "wav") -> bytes:
        if not self.api_key:
            raise SpeechSynthesisError("Speech API key not configured", text)
        data = {"model": self.model, "voice": voice, "input": text, "response_format": response_format}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with self.session() as client:
                r = await client.post(_endpoint(self.base_url, "/audio/speech"), headers=headers, json=data)
                if r.status_code >= 400:
                    raise_for_provider_error(r, "Speech", SpeechSynthesisError)
                audio = r.content
        except SpeechSynthesisError as e:
            raise SpeechSynthesisError(str(e), text) from e
        except (httpx.HTTPError, RetryableProviderError) as e:
            raise SpeechSynthesisError(f"Speech request failed: {e}", text) from e
        if not audio:
            raise SpeechSynthesisError("Speech API returned no audio", text)
        return audio


class WhisperClient(ProviderClient):
    """Whisper-style transcription (``verbose_json``) over an OpenAI-compatible endpoint."""

    label = "transcription"

    def __init__(self, api_key: str, *, base_url: str, model: str = "whisper-large-v3", **kwargs):
        super().__init__(api_key, **kwargs)
        self.base_url = base_url
        self.model = model

    async def transcribe(self, audio: bytes, *, filename: str = "recording.webm", content_type: str = "audio/webm") -> Dict[str, Any]:
        if not self.api_key:
            raise TranscriptionError("Transcription API key not configured")
        files = {"file": (filename, audio, content_type)}
        form = {"model": self.model, "response_format": "verbose_json", "prompt": TRANSCRIPTION_PROMPT}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with self.session() as client:
                r = await client.post(
                    _endpoint(self.base_url, "/audio/transcriptions"), headers=headers, data=form, files=files
                )
                if r.status_code >= 400:
                    raise_for_provider_error(r, "Transcription", TranscriptionError)
                return r.json()
        except (httpx.HTTPError, RetryableProviderError, ValueError) as e:
            raise TranscriptionError(f"Transcription request failed: {e}") from e


def segment_confidence(segment: Dict[str, Any]) -> float:
    """Whisper reports ``avg_logprob``; expose it as a probability clamped to [0, 1]."""
    if "confidence" in segment:
        try:
            return max(0.0, min(1.0, float(segment["confidence"])))
        except (TypeError, ValueError):
            return 1.0
    logprob = segment.get("avg_logprob")
    if logprob is None:
        return 1.0
    try:
        return max(0.0, min(1.0, math.exp(float(logprob))))
    except (TypeError, ValueError, OverflowError):
        return 1.0
