import asyncio

import pytest

from conftest import USER_ID, RecordingStorage, StubChat, StubCrawler, StubImages, make_orchestrator, slide
from slidecoach.crawler import CrawledPage
from slidecoach.errors import LLMError
from slidecoach.models import GenerationRequest
from slidecoach.progress import ProgressChannel, slide_step_id


def request(mode="topic", raw_input="Quarterly results", **extra) -> GenerationRequest:
    return GenerationRequest(mode=mode, raw_input=raw_input, presentation_id="p1", **extra)


async def run(orchestrator, req=None, caller=USER_ID):
    channel = ProgressChannel()
    result = await orchestrator.run(req or request(), caller, channel)
    assert channel.closed
    return result, await channel.drain()


def stage_trail(events):
    return [(e.type, e.step_id, e.status) for e in events if not (e.step_id or "").startswith("image_gen_slide_")]


@pytest.mark.asyncio
async def test_three_valid_slides_are_saved_in_order(slide_store):
    orchestrator = make_orchestrator(StubChat([slide("A"), slide("B"), slide("C")]), store=slide_store)
    result, events = await run(orchestrator)

    assert [s.order for s in result] == [0, 1, 2]
    assert [s.title for s in result] == ["A", "B", "C"]
    assert all(s.image_url for s in result)
    assert not any(e.type == "error" for e in events)
    assert [s.order for s in slide_store.list_slides("p1")] == [0, 1, 2]

    final = events[-1]
    assert final.type == "final_data"
    assert final.data["presentationId"] == "p1"
    assert [s["title"] for s in final.data["slides"]] == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_stage_events_arrive_in_order():
    _, events = await run(make_orchestrator(StubChat([slide("A")])))
    assert stage_trail(events) == [
        ("step_update", "init", "in_progress"),
        ("step_update", "init", "completed"),
        ("step_update", "prompt_setup", "in_progress"),
        ("step_update", "prompt_setup", "completed"),
        ("step_update", "llm_content", "in_progress"),
        ("step_update", "llm_content", "completed"),
        ("step_update", "save_initial_slides", "in_progress"),
        ("step_update", "save_initial_slides", "completed"),
        ("step_update", "image_generation_overall", "in_progress"),
        ("step_update", "image_generation_overall", "completed"),
        ("step_update", "finalize", "in_progress"),
        ("step_update", "finalize", "completed"),
        ("final_data", None, None),
    ]


@pytest.mark.asyncio
async def test_per_slide_events_sit_inside_image_stage():
    _, events = await run(make_orchestrator(StubChat([slide("A"), slide("B")])))
    ids = [e.step_id for e in events]
    start = ids.index("image_generation_overall")
    end = len(ids) - 1 - ids[::-1].index("image_generation_overall")
    slide_events = [i for i, e in enumerate(events) if (e.step_id or "").startswith("image_gen_slide_")]
    assert len(slide_events) == 4
    assert all(start < i < end for i in slide_events)
    assert events[slide_events[1]].image_url.startswith("https://cdn.test/slideimages/generated_image_")


@pytest.mark.asyncio
async def test_invalid_draft_is_skipped_and_orders_stay_contiguous(slide_store):
    chat = StubChat([slide("A"), slide("B", image_prompt=None), slide("C")])
    result, events = await run(make_orchestrator(chat, store=slide_store))

    assert [(s.title, s.order) for s in result] == [("A", 0), ("C", 1)]
    assert len(slide_store.list_slides("p1")) == 2
    saved = [e for e in events if e.step_id == "save_initial_slides" and e.status == "completed"][0]
    assert "1 invalid slide(s) skipped" in saved.message


@pytest.mark.asyncio
async def test_one_image_failure_keeps_slide_without_image(slide_store):
    chat = StubChat([slide("A"), slide("B", image_prompt="refuse me"), slide("C")])
    images = StubImages(fail_prompts=("refuse me",))
    result, events = await run(make_orchestrator(chat, images, slide_store))

    final = events[-1]
    assert final.type == "final_data"
    assert len(final.data["slides"]) == 3
    assert [s["imageUrl"] is None for s in final.data["slides"]] == [False, True, False]

    failed = result[1]
    errors = [e for e in events if e.status == "error"]
    assert len(errors) == 1
    assert errors[0].type == "step_update"
    assert errors[0].step_id == slide_step_id(failed.id)
    assert errors[0].slide_title == "B"
    assert slide_store.list_slides("p1")[1].image_url is None


@pytest.mark.asyncio
async def test_storage_failure_is_an_image_failure(slide_store):
    class BrokenStorage(RecordingStorage):
        def upload(self, key, data, content_type):
            raise OSError("disk full")

    result, events = await run(make_orchestrator(StubChat([slide("A")]), store=slide_store, storage=BrokenStorage()))
    assert result[0].image_url is None
    assert events[-1].type == "final_data"


@pytest.mark.asyncio
async def test_missing_caller_fails_at_init(slide_store):
    chat = StubChat([slide("A")])
    result, events = await run(make_orchestrator(chat, store=slide_store), caller=None)

    assert result is None
    assert [(e.type, e.step_id) for e in events] == [("step_update", "init"), ("error", "init")]
    assert events[-1].message == "User authentication failed."
    assert chat.calls == []
    assert slide_store.list_slides("p1") == []


@pytest.mark.asyncio
async def test_llm_failure_is_fatal_at_llm_content(slide_store):
    result, events = await run(make_orchestrator(StubChat(LLMError("HTTP 500")), store=slide_store))

    assert result is None
    error = events[-1]
    assert error.type == "error"
    assert error.step_id == "llm_content"
    assert error.message.startswith("Failed to generate presentation content")
    assert sum(1 for e in events if e.type == "error") == 1
    assert not any(e.type == "final_data" for e in events)
    assert slide_store.list_slides("p1") == []


@pytest.mark.asyncio
async def test_unparseable_response_is_fatal():
    _, events = await run(make_orchestrator(StubChat("I'd love to help, but here is prose.")))
    assert events[-1].type == "error"
    assert events[-1].step_id == "llm_content"
    assert events[-1].message == "Failed to parse AI-generated content."


@pytest.mark.asyncio
async def test_no_valid_slides_is_fatal_at_save(slide_store):
    chat = StubChat({"slides": [{"title": "A", "content": ["a", "b"], "image_prompt": "x"}]})
    _, events = await run(make_orchestrator(chat, store=slide_store))

    assert events[-1].type == "error"
    assert events[-1].step_id == "save_initial_slides"
    assert events[-1].message == "No valid slides could be saved."
    assert slide_store.list_slides("p1") == []


@pytest.mark.asyncio
async def test_unexpected_crash_reports_generic_message():
    class ExplodingStore:
        def create_slide(self, *args):
            raise RuntimeError("db gone")

    orchestrator = make_orchestrator(StubChat([slide("A")]), store=ExplodingStore())
    _, events = await run(orchestrator)
    assert events[-1].type == "error"
    assert events[-1].step_id == "save_initial_slides"
    assert events[-1].message == "An internal server error occurred during presentation generation."


@pytest.mark.asyncio
async def test_summary_mode_crawls_and_reports_url_stage():
    chat = StubChat([slide("A")])
    crawler = StubCrawler(pages=[CrawledPage(markdown="# Launch notes\nShipped v2.")])
    _, events = await run(make_orchestrator(chat, crawler=crawler), request("summary", "https://example.com/blog"))

    ids = [e.step_id for e in events]
    assert ids.index("init") < ids.index("url_crawl") < ids.index("prompt_setup")
    assert "Shipped v2." in chat.calls[0]["user"]
    assert crawler.calls[0]["max_pages"] == 3


@pytest.mark.asyncio
async def test_summary_mode_falls_back_to_literal_url_when_crawl_fails():
    chat = StubChat([slide("A")])
    _, events = await run(make_orchestrator(chat), request("summary", "https://example.com/blog"))

    assert events[-1].type == "final_data"
    assert "https://example.com/blog" in chat.calls[0]["user"]
    crawl = [e for e in events if e.step_id == "url_crawl"]
    assert [e.status for e in crawl] == ["in_progress", "completed"]


@pytest.mark.asyncio
async def test_generation_prompt_carries_context_and_json_mode():
    chat = StubChat([slide("A")])
    await run(make_orchestrator(chat, temperature=0.5), request(title="Q3", audience="Board", goal="Approve budget"))

    call = chat.calls[0]
    assert call["json"] is True
    assert call["temperature"] == 0.5
    assert "Quarterly results" in call["user"]
    assert "Target audience: Board" in call["user"]


@pytest.mark.asyncio
async def test_bounded_concurrency_keeps_slide_order():
    class SlowImages:
        def __init__(self):
            self.active = 0
            self.peak = 0

        async def generate(self, prompt):
            self.active += 1
            self.peak = max(self.peak, self.active)
            # later slides finish first
            await asyncio.sleep(0.01 * (5 - int(prompt)))
            self.active -= 1
            return b"png"

    images = SlowImages()
    chat = StubChat([slide(str(i), image_prompt=str(i)) for i in range(5)])
    result, _ = await run(make_orchestrator(chat, images, image_concurrency=2))

    assert images.peak == 2
    assert [s.title for s in result] == ["0", "1", "2", "3", "4"]
    assert [s.order for s in result] == list(range(5))


@pytest.mark.asyncio
async def test_cancelled_run_keeps_saved_slides_and_closes_channel(slide_store):
    started = asyncio.Event()

    class HangingImages:
        async def generate(self, prompt):
            started.set()
            await asyncio.sleep(3600)

    channel = ProgressChannel()
    orchestrator = make_orchestrator(StubChat([slide("A"), slide("B")]), HangingImages(), slide_store)
    task = asyncio.create_task(orchestrator.run(request(), USER_ID, channel))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert channel.closed
    assert len(slide_store.list_slides("p1")) == 2
    events = await channel.drain()
    assert not any(e.type == "final_data" for e in events)
