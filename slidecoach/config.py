"""Environment-driven settings for the SlideCoach service."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

LOGGER = logging.getLogger("slidecoach.config")


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        LOGGER.warning("Ignoring non-numeric %s=%r; using %s", key, raw, default)
        return default


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    return int(_float(env, key, float(default)))


def parse_api_tokens(raw: str) -> Dict[str, str]:
    """Parse ``token:user,token2:user2`` into a token → user id mapping."""
    tokens: Dict[str, str] = {}
    for pair in (raw or "").split(","):
        pair = pair.strip()
        if not pair:
            continue
        token, sep, user = pair.partition(":")
        if not sep or not token.strip() or not user.strip():
            LOGGER.warning("Skipping malformed API token entry")
            continue
        tokens[token.strip()] = user.strip()
    return tokens


@dataclass(frozen=True)
class Settings:
    llm_provider: str = "openai"
    llm_model: str = ""
    llm_api_key: str = ""
    openai_base: str = "https://api.openai.com/v1"
    openai_api_key: str = ""
    image_model: str = "dall-e-3"
    groq_base: str = "https://api.groq.com/openai/v1"
    groq_api_key: str = ""
    tts_model: str = "playai-tts"
    tts_voice: str = "Fritz-PlayAI"
    tts_format: str = "wav"
    transcription_model: str = "whisper-large-v3"
    firecrawl_base: str = "https://api.firecrawl.dev/v1"
    firecrawl_api_key: str = ""
    api_tokens: Dict[str, str] = field(default_factory=dict)
    media_dir: Path = Path("media")
    public_url: str = "http://127.0.0.1:8000"
    generation_temperature: float = 0.5
    image_concurrency: int = 1
    llm_timeout: float = 60.0
    image_timeout: float = 120.0
    crawl_timeout: float = 60.0
    speech_timeout: float = 60.0

    @property
    def media_url(self) -> str:
        return self.public_url.rstrip("/") + "/media"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        openai_key = env.get("OPENAI_API_KEY", "")
        return cls(
            llm_provider=env.get("LLM_PROVIDER", "openai").strip().lower(),
            llm_model=env.get("LLM_MODEL", "").strip(),
            llm_api_key=env.get("LLM_API_KEY", "") or openai_key,
            openai_base=env.get("OPENAI_BASE", cls.openai_base),
            openai_api_key=openai_key,
            image_model=env.get("IMAGE_MODEL", cls.image_model),
            groq_base=env.get("GROQ_BASE", cls.groq_base),
            groq_api_key=env.get("GROQ_API_KEY", ""),
            tts_model=env.get("TTS_MODEL", cls.tts_model),
            tts_voice=env.get("TTS_VOICE", cls.tts_voice),
            tts_format=env.get("TTS_FORMAT", cls.tts_format),
            transcription_model=env.get("TRANSCRIPTION_MODEL", cls.transcription_model),
            firecrawl_base=env.get("FIRECRAWL_BASE", cls.firecrawl_base),
            firecrawl_api_key=env.get("FIRECRAWL_API_KEY", ""),
            api_tokens=parse_api_tokens(env.get("SLIDECOACH_API_TOKENS", "")),
            media_dir=Path(env.get("SLIDECOACH_MEDIA_DIR", "media")),
            public_url=env.get("SLIDECOACH_PUBLIC_URL", cls.public_url),
            generation_temperature=_float(env, "GENERATION_TEMPERATURE", cls.generation_temperature),
            image_concurrency=max(1, _int(env, "IMAGE_CONCURRENCY", cls.image_concurrency)),
            llm_timeout=_float(env, "LLM_TIMEOUT", cls.llm_timeout),
            image_timeout=_float(env, "IMAGE_TIMEOUT", cls.image_timeout),
            crawl_timeout=_float(env, "CRAWL_TIMEOUT", cls.crawl_timeout),
            speech_timeout=_float(env, "SPEECH_TIMEOUT", cls.speech_timeout),
        )
