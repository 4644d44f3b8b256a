from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from slidecoach.analyzer import ClarityJudge, TranscriptAnalyzer
from slidecoach.config import Settings
from slidecoach.crawler import CrawledPage
from slidecoach.errors import CrawlError, ImageGenerationError, LLMError, SpeechSynthesisError
from slidecoach.interactive import TurnEngine
from slidecoach.main import Services
from slidecoach.orchestrator import GenerationOrchestrator
from slidecoach.resolver import ContentResolver, UrlSummarizer
from slidecoach.store import InMemoryPracticeStore, InMemorySlideStore
from slidecoach.transcription import TranscriptionService

API_TOKEN = "test-token"
USER_ID = "user-1"


def slide(title: str, content: str = "• Point one\n• Point two", image_prompt: Optional[str] = "A bold pop art scene") -> Dict[str, Any]:
    item = {"title": title, "content": content}
    if image_prompt is not None:
        item["image_prompt"] = image_prompt
    return item


class StubChat:
    """Returns queued responses (or raises queued exceptions) and records every call."""

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, system_prompt, user_prompt, *, temperature=0.3, json_response=False,
                       history=(), max_tokens=2000):
        self.calls.append({
            "system": system_prompt,
            "user": user_prompt,
            "temperature": temperature,
            "json": json_response,
            "history": [dict(m) for m in history],
        })
        if not self.responses:
            raise LLMError("no stubbed response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if not isinstance(response, str):
            return json.dumps(response)
        return response


class StubImages:
    def __init__(self, fail_prompts: tuple = ()):
        self.fail_prompts = set(fail_prompts)
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> bytes:
        self.prompts.append(prompt)
        if prompt in self.fail_prompts:
            raise ImageGenerationError(f"refused: {prompt}")
        return b"\x89PNG fake"


class RecordingStorage:
    def __init__(self):
        self.objects: Dict[str, bytes] = {}

    def upload(self, key: str, data: bytes, content_type: str) -> str:
        self.objects[key] = data
        return f"https://cdn.test/{key}"


class StubCrawler:
    def __init__(self, pages: Optional[List[CrawledPage]] = None, error: Optional[Exception] = None):
        self.pages = pages or []
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def crawl(self, url, *, max_pages, max_depth, main_content_only):
        self.calls.append({"url": url, "max_pages": max_pages, "max_depth": max_depth,
                           "main_content_only": main_content_only})
        if self.error is not None:
            raise self.error
        return self.pages


class StubSpeech:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.texts: List[str] = []

    async def synthesize(self, text, *, voice, response_format="wav"):
        self.texts.append(text)
        if self.fail:
            raise SpeechSynthesisError("tts down", text)
        return b"RIFFfake"


class StubTranscriber:
    def __init__(self, payload: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None):
        self.payload = payload
        self.error = error

    async def transcribe(self, audio, *, filename, content_type):
        if self.error is not None:
            raise self.error
        return self.payload


@pytest.fixture()
def slide_store() -> InMemorySlideStore:
    return InMemorySlideStore()


@pytest.fixture()
def storage() -> RecordingStorage:
    return RecordingStorage()


def make_orchestrator(chat, images=None, store=None, storage=None, crawler=None, **kwargs) -> GenerationOrchestrator:
    return GenerationOrchestrator(
        chat,
        images or StubImages(),
        store or InMemorySlideStore(),
        storage or RecordingStorage(),
        ContentResolver(crawler or StubCrawler(error=CrawlError("offline"))),
        **kwargs,
    )


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(api_tokens={API_TOKEN: USER_ID}, media_dir=tmp_path / "media")


def make_services(chat=None, images=None, speech=None, transcriber=None, crawler=None,
                  store=None, storage=None) -> Services:
    chat = chat or StubChat()
    images = images or StubImages()
    store = store or InMemorySlideStore()
    storage = storage or RecordingStorage()
    return Services(
        orchestrator=make_orchestrator(chat, images, store, storage, crawler),
        analyzer=TranscriptAnalyzer(ClarityJudge(chat)),
        transcription=TranscriptionService(transcriber),
        turn_engine=TurnEngine(chat, speech or StubSpeech()),
        summarizer=UrlSummarizer(crawler, chat),
        chat=chat,
        images=images,
        slide_store=store,
        object_storage=storage,
        practice_store=InMemoryPracticeStore(),
    )
