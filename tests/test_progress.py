import asyncio
import json

import pytest

from slidecoach.errors import GenerationStreamError
from slidecoach.models import PersistedSlide, ProgressEvent
from slidecoach.progress import (
    GENERATION_STEPS,
    STEP_INIT,
    STEP_LLM_CONTENT,
    STEP_URL_CRAWL,
    ProgressChannel,
    ProgressTracker,
    SseDecoder,
    encode_event,
    error_event,
    final_event,
    slide_step_id,
    sse_frames,
    steps_for_mode,
    step_update,
)


def sample_events():
    slides = [
        PersistedSlide(id="s1", presentation_id="p1", title="Café ☕ économie", content="• Ünïcode", order=0),
    ]
    return [
        step_update(STEP_INIT, "in_progress", "Initializing presentation generation..."),
        step_update(slide_step_id("s1"), "completed", "Image for “Café” ready.", slide_id="s1",
                    slide_title="Café ☕", image_url="https://cdn.test/a.png"),
        final_event("p1", slides, "Presentation generated successfully! 🎉"),
    ]


def test_encode_event_frames_one_json_object():
    frame = encode_event(step_update(STEP_INIT, "in_progress", "hi"))
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    payload = json.loads(frame[len("data: "):])
    assert payload == {"type": "step_update", "stepId": "init", "status": "in_progress", "message": "hi"}


def test_final_event_payload_is_camel_case():
    payload = json.loads(encode_event(sample_events()[2])[len("data: "):])
    assert payload["type"] == "final_data"
    assert payload["data"]["presentationId"] == "p1"
    assert payload["data"]["slides"][0]["imageUrl"] is None
    assert payload["data"]["slides"][0]["order"] == 0


def test_decoder_reassembles_any_chunk_split():
    events = sample_events()
    wire = "".join(encode_event(e) for e in events).encode("utf-8")
    for cut in range(1, len(wire)):
        decoder = SseDecoder()
        decoded = decoder.feed(wire[:cut]) + decoder.feed(wire[cut:]) + decoder.finish()
        assert decoded == events, f"split at byte {cut}"


def test_decoder_handles_byte_by_byte_stream():
    events = sample_events()
    wire = "".join(encode_event(e) for e in events).encode("utf-8")
    decoder = SseDecoder()
    decoded = []
    for i in range(len(wire)):
        decoded.extend(decoder.feed(wire[i:i + 1]))
    decoded.extend(decoder.finish())
    assert decoded == events


def test_decoder_skips_malformed_frames():
    decoder = SseDecoder()
    good = encode_event(step_update(STEP_INIT, "completed"))
    decoded = decoder.feed("data: {not json}\n\n: comment\n\n" + good)
    assert decoded == [step_update(STEP_INIT, "completed")]


def test_decoder_flushes_unterminated_last_frame():
    decoder = SseDecoder()
    frame = encode_event(error_event("boom", STEP_LLM_CONTENT)).rstrip("\n")
    assert decoder.feed(frame) == []
    assert decoder.finish() == [error_event("boom", STEP_LLM_CONTENT)]


@pytest.mark.asyncio
async def test_channel_drops_events_after_close():
    channel = ProgressChannel()
    channel.emit(step_update(STEP_INIT, "in_progress"))
    channel.close()
    channel.emit(step_update(STEP_INIT, "completed"))
    events = await channel.drain()
    assert [e.status for e in events] == ["in_progress"]
    assert channel.emitted == 1


@pytest.mark.asyncio
async def test_sse_frames_cancels_worker_when_consumer_leaves():
    channel = ProgressChannel()

    async def worker():
        channel.emit(step_update(STEP_INIT, "in_progress"))
        await asyncio.sleep(3600)

    task = asyncio.create_task(worker())
    frames = sse_frames(channel, task)
    first = await frames.__anext__()
    assert first.startswith(b"data: ")
    await frames.aclose()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert task.cancelled()


def test_steps_for_mode_includes_crawl_only_for_summary():
    assert steps_for_mode("summary") == list(GENERATION_STEPS)
    assert STEP_URL_CRAWL not in steps_for_mode("topic")
    assert len(steps_for_mode("bullets")) == len(GENERATION_STEPS) - 1


def test_tracker_progress_is_monotonic():
    steps = steps_for_mode("topic")
    tracker = ProgressTracker(steps)
    seen = []
    for step in steps:
        for status in ("in_progress", "completed"):
            tracker.apply(step_update(step, status))
            seen.append(tracker.overall_progress)
        # a repeated in_progress never takes a completed step back
        tracker.apply(step_update(step, "in_progress"))
        seen.append(tracker.overall_progress)
    assert seen == sorted(seen)
    assert tracker.overall_progress == 100


def test_tracker_ignores_slide_steps_in_total():
    tracker = ProgressTracker(steps_for_mode("topic"))
    tracker.apply(step_update(slide_step_id("s1"), "completed", slide_id="s1"))
    assert tracker.overall_progress == 0
    assert tracker.statuses[slide_step_id("s1")] == "completed"
    assert tracker.active_step_id == slide_step_id("s1")


def test_error_is_terminal():
    tracker = ProgressTracker(steps_for_mode("topic"))
    tracker.apply(step_update(STEP_INIT, "completed"))
    tracker.apply(error_event("Failed to parse AI-generated content.", STEP_LLM_CONTENT))
    tracker.apply(step_update(STEP_LLM_CONTENT, "completed"))
    tracker.apply(final_event("p1", [], "done"))

    assert tracker.finished
    assert tracker.statuses[STEP_LLM_CONTENT] == "error"
    assert tracker.final_data is None
    with pytest.raises(GenerationStreamError, match="Failed to parse"):
        tracker.slides()


def test_slides_requires_final_data():
    tracker = ProgressTracker()
    tracker.apply(step_update(STEP_INIT, "completed"))
    assert not tracker.finished
    with pytest.raises(GenerationStreamError):
        tracker.slides()


def test_slides_from_final_data():
    tracker = ProgressTracker()
    tracker.apply(sample_events()[2])
    slides = tracker.slides()
    assert slides[0].title == "Café ☕ économie"
    assert slides[0].image_url is None


def test_progress_event_accepts_wire_names():
    event = ProgressEvent.model_validate({"type": "step_update", "stepId": "init", "status": "completed"})
    assert event.step_id == "init"
