"""Progress events: the in-process channel, the SSE wire framing, and the client-side reducer."""

import asyncio
import codecs
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from .errors import GenerationStreamError
from .models import GenerationMode, PersistedSlide, ProgressEvent

logger = logging.getLogger("slidecoach.progress")

STEP_INIT = "init"
STEP_URL_CRAWL = "url_crawl"
STEP_PROMPT_SETUP = "prompt_setup"
STEP_LLM_CONTENT = "llm_content"
STEP_SAVE_SLIDES = "save_initial_slides"
STEP_IMAGES = "image_generation_overall"
STEP_FINALIZE = "finalize"

GENERATION_STEPS = (
    STEP_INIT,
    STEP_URL_CRAWL,
    STEP_PROMPT_SETUP,
    STEP_LLM_CONTENT,
    STEP_SAVE_SLIDES,
    STEP_IMAGES,
    STEP_FINALIZE,
)

FRAME_DELIMITER = "\n\n"
DATA_PREFIX = "data: "


def steps_for_mode(mode: Union[GenerationMode, str]) -> List[str]:
    """Stage ids a generation request in ``mode`` reports, in execution order."""
    if GenerationMode(mode) is GenerationMode.SUMMARY:
        return list(GENERATION_STEPS)
    return [step for step in GENERATION_STEPS if step != STEP_URL_CRAWL]


def slide_step_id(slide_id: str) -> str:
    return f"image_gen_slide_{slide_id}"


def step_update(step_id: str, status: str, message: Optional[str] = None, **extra: Any) -> ProgressEvent:
    return ProgressEvent(type="step_update", step_id=step_id, status=status, message=message, **extra)


def error_event(message: str, step_id: Optional[str] = None) -> ProgressEvent:
    return ProgressEvent(type="error", step_id=step_id, status="error", message=message)


def final_event(presentation_id: str, slides: Sequence[PersistedSlide], message: str) -> ProgressEvent:
    return ProgressEvent(
        type="final_data",
        message=message,
        data={"presentationId": presentation_id, "slides": [s.to_wire() for s in slides]},
    )


# =========================
# Channel
# =========================
_CLOSED = object()


class ProgressChannel:
    """Append-only, single-consumer queue of progress events.

    Producers call :meth:`emit`; the transport iterates with ``async for``
    until :meth:`close`. Events emitted after close are dropped.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._closed = False
        self.emitted = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: ProgressEvent) -> None:
        if self._closed:
            logger.debug("Dropping %s event on closed channel", event.type)
            return
        self.emitted += 1
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def drain(self) -> List[ProgressEvent]:
        return [event async for event in self]


# =========================
# Wire framing
# =========================
def encode_event(event: ProgressEvent) -> str:
    return DATA_PREFIX + json.dumps(event.to_wire(), ensure_ascii=False) + FRAME_DELIMITER


async def sse_frames(channel: ProgressChannel, worker: Optional["asyncio.Task[Any]"] = None) -> AsyncIterator[bytes]:
    """Serialize channel events for a streaming HTTP response.

    When the consumer goes away (client disconnect cancels this generator),
    the worker task is cancelled; whatever it already persisted stays.
    """
    try:
        async for event in channel:
            yield encode_event(event).encode("utf-8")
    finally:
        if worker is not None and not worker.done():
            logger.info("Stream cancelled by client; stopping generation worker")
            worker.cancel()


class SseDecoder:
    """Incrementally split a byte/str stream into ``ProgressEvent`` values.

    Partial frames (and partial UTF-8 sequences) are buffered until the next
    chunk completes them.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""

    def feed(self, chunk: Union[bytes, str]) -> List[ProgressEvent]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk
        frames = self._buffer.split(FRAME_DELIMITER)
        self._buffer = frames.pop()
        return [event for event in (self._parse(frame) for frame in frames) if event is not None]

    def finish(self) -> List[ProgressEvent]:
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if not tail.strip():
            return []
        event = self._parse(tail)
        return [event] if event is not None else []

    @staticmethod
    def _parse(frame: str) -> Optional[ProgressEvent]:
        data_lines = [line[len(DATA_PREFIX):] for line in frame.splitlines() if line.startswith(DATA_PREFIX)]
        if not data_lines:
            return None
        payload = "\n".join(data_lines)
        try:
            return ProgressEvent.model_validate(json.loads(payload))
        except (ValueError, ValidationError) as e:
            logger.warning("Skipping malformed stream frame: %s (%.120r)", e, payload)
            return None


# =========================
# Client-side reducer
# =========================
class ProgressTracker:
    """Fold progress events into UI state.

    Keeps the active step, the latest status and message per step, and a
    completed-step set that only ever grows, so ``overall_progress`` never
    goes backwards. Per-slide image steps are tracked but do not count
    towards the stage total.
    """

    def __init__(self, steps: Sequence[str] = GENERATION_STEPS):
        self.steps = list(steps)
        self.active_step_id: Optional[str] = None
        self.statuses: Dict[str, str] = {step: "pending" for step in self.steps}
        self.messages: Dict[str, Optional[str]] = {}
        self.error: Optional[str] = None
        self.final_data: Optional[Dict[str, Any]] = None
        self._completed: set = set()

    @property
    def completed_count(self) -> int:
        return len(self._completed)

    @property
    def overall_progress(self) -> float:
        if not self.steps:
            return 0.0
        return self.completed_count / len(self.steps) * 100

    @property
    def finished(self) -> bool:
        return self.error is not None or self.final_data is not None

    def apply(self, event: ProgressEvent) -> None:
        if self.error is not None:
            return
        if event.type == "step_update" and event.step_id:
            self.active_step_id = event.step_id
            self.statuses[event.step_id] = event.status or "in_progress"
            if event.message:
                self.messages[event.step_id] = event.message
            if event.status == "completed" and event.step_id in self.steps:
                self._completed.add(event.step_id)
        elif event.type == "final_data":
            self.final_data = event.data or {}
        elif event.type == "error":
            self.error = event.message or "An unknown error occurred during generation."
            if event.step_id:
                self.statuses[event.step_id] = "error"
                self.messages[event.step_id] = event.message

    def slides(self) -> List[PersistedSlide]:
        """Return the generated slides, or raise when the stream did not end successfully."""
        if self.error is not None:
            raise GenerationStreamError(self.error)
        if self.final_data is None:
            raise GenerationStreamError("Generation stream ended before the presentation was ready.")
        return [PersistedSlide.model_validate(item) for item in self.final_data.get("slides", [])]
