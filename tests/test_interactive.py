import pytest

from conftest import StubChat, StubSpeech
from slidecoach.errors import LLMError, SpeechSynthesisError, TurnGenerationError
from slidecoach.interactive import TurnEngine, audio_content_type, extend_history
from slidecoach.models import ConversationTurn
from slidecoach.prompts import OPENING_TURN_USER_PROMPT

SLIDE = "• Churn fell 12% after onboarding redesign\n• NPS up 9 points"


@pytest.mark.asyncio
async def test_opening_turn_asks_a_question():
    chat = StubChat("What drove the churn reduction?")
    engine = TurnEngine(chat, StubSpeech())
    text = await engine.next_text(SLIDE, "Retention")

    assert text.endswith("?")
    call = chat.calls[0]
    assert call["user"] == OPENING_TURN_USER_PROMPT
    assert "open-ended question" in call["system"]
    assert "question mark" in call["system"]
    assert '"Retention"' in call["system"]
    assert SLIDE in call["system"]
    assert call["history"] == []


@pytest.mark.asyncio
async def test_follow_up_includes_response_and_prior_history():
    chat = StubChat("Interesting, how did you measure it?")
    engine = TurnEngine(chat, StubSpeech())
    history = [ConversationTurn(role="assistant", content="What drove the churn reduction?")]

    await engine.next_text(SLIDE, "Retention", "Mostly the new checklist.", history)

    call = chat.calls[0]
    assert call["user"] == "Mostly the new checklist."
    assert 'The user has just said: "Mostly the new checklist."' in call["system"]
    # the outgoing history is the state before this turn is appended
    assert call["history"] == [{"role": "assistant", "content": "What drove the churn reduction?"}]


@pytest.mark.asyncio
async def test_blank_slide_content_is_rejected():
    engine = TurnEngine(StubChat("unused"), StubSpeech())
    with pytest.raises(ValueError):
        await engine.next_text("   ")


@pytest.mark.asyncio
async def test_llm_failure_is_turn_failure():
    engine = TurnEngine(StubChat(LLMError("HTTP 503")), StubSpeech())
    with pytest.raises(TurnGenerationError):
        await engine.respond(SLIDE)


@pytest.mark.asyncio
async def test_empty_reply_is_turn_failure():
    engine = TurnEngine(StubChat("   "), StubSpeech())
    with pytest.raises(TurnGenerationError):
        await engine.next_text(SLIDE)


@pytest.mark.asyncio
async def test_respond_returns_text_and_audio():
    speech = StubSpeech()
    engine = TurnEngine(StubChat("  Why now?  "), speech, voice="Nova", audio_format="mp3")
    result = await engine.respond(SLIDE)

    assert result.assistant_text == "Why now?"
    assert result.audio == b"RIFFfake"
    assert result.audio_format == "mp3"
    assert speech.texts == ["Why now?"]


@pytest.mark.asyncio
async def test_speech_failure_keeps_generated_text():
    engine = TurnEngine(StubChat("Why now?"), StubSpeech(fail=True))
    with pytest.raises(SpeechSynthesisError) as info:
        await engine.respond(SLIDE)
    assert info.value.text == "Why now?"


@pytest.mark.asyncio
async def test_missing_speech_backend_still_carries_text():
    engine = TurnEngine(StubChat("Why now?"), None)
    with pytest.raises(SpeechSynthesisError) as info:
        await engine.respond(SLIDE)
    assert info.value.text == "Why now?"


def test_extend_history_appends_user_then_assistant():
    history = [ConversationTurn(role="assistant", content="Q1?")]
    updated = extend_history(history, "A1", "Q2?", "wav")

    assert [t.role for t in updated] == ["assistant", "user", "assistant"]
    assert updated[-1].content == "Q2?"
    assert updated[-1].audio_format == "wav"
    assert len(history) == 1


def test_extend_history_without_user_response():
    updated = extend_history([], None, "Opening question?")
    assert [(t.role, t.content) for t in updated] == [("assistant", "Opening question?")]


def test_audio_content_type():
    assert audio_content_type("wav") == "audio/wav"
    assert audio_content_type("mp3") == "audio/mpeg"
    assert audio_content_type("aac") == "audio/aac"
