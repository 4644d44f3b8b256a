import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from .errors import LLMError, SpeechSynthesisError, TurnGenerationError
from .llm_providers import ChatModel
from .models import ConversationTurn
from .prompts import OPENING_TURN_USER_PROMPT, interactive_system_prompt

logger = logging.getLogger("slidecoach.interactive")


class SpeechModel(Protocol):
    async def synthesize(self, text: str, *, voice: str, response_format: str = ...) -> bytes: ...


@dataclass(frozen=True)
class TurnResult:
    assistant_text: str
    audio: bytes
    audio_format: str


def audio_content_type(audio_format: str) -> str:
    return {"mp3": "audio/mpeg", "wav": "audio/wav", "ogg": "audio/ogg", "flac": "audio/flac"}.get(
        audio_format, f"audio/{audio_format}"
    )


def extend_history(
    history: Sequence[ConversationTurn], user_response: Optional[str], assistant_text: str, audio_format: Optional[str] = None
) -> List[ConversationTurn]:
    """Return the next history: the prior turns, the user's utterance (if any), then the reply."""
    updated = list(history)
    if user_response:
        updated.append(ConversationTurn(role="user", content=user_response))
    updated.append(ConversationTurn(role="assistant", content=assistant_text, audio_format=audio_format))
    return updated


class TurnEngine:
    """Produce one audience turn for the interactive practice mode.

    Stateless between calls: the caller owns and persists the conversation.
    Text and speech fail independently; a speech failure surfaces as
    ``SpeechSynthesisError`` carrying the already generated text.
    """

    def __init__(self, chat: ChatModel, speech: Optional[SpeechModel], *, voice: str = "Fritz-PlayAI",
                 audio_format: str = "wav", temperature: float = 0.7, max_tokens: int = 250):
        self.chat = chat
        self.speech = speech
        self.voice = voice
        self.audio_format = audio_format
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def next_text(
        self,
        slide_content: str,
        slide_title: Optional[str] = None,
        user_response: Optional[str] = None,
        history: Sequence[ConversationTurn] = (),
    ) -> str:
        if not slide_content or not slide_content.strip():
            raise ValueError("slide_content is required")
        user_response = (user_response or "").strip() or None
        system_prompt = interactive_system_prompt(slide_content, slide_title, user_response)
        user_prompt = user_response or OPENING_TURN_USER_PROMPT
        try:
            text = await self.chat.complete(
                system_prompt,
                user_prompt,
                temperature=self.temperature,
                history=[{"role": turn.role, "content": turn.content} for turn in history],
                max_tokens=self.max_tokens,
            )
        except LLMError as e:
            raise TurnGenerationError(f"Failed to generate a response: {e}") from e
        text = (text or "").strip()
        if not text:
            raise TurnGenerationError("The language model returned an empty response")
        return text

    async def speak(self, text: str) -> bytes:
        if self.speech is None:
            raise SpeechSynthesisError("Speech synthesis is not configured", text)
        return await self.speech.synthesize(text, voice=self.voice, response_format=self.audio_format)

    async def respond(
        self,
        slide_content: str,
        slide_title: Optional[str] = None,
        user_response: Optional[str] = None,
        history: Sequence[ConversationTurn] = (),
    ) -> TurnResult:
        text = await self.next_text(slide_content, slide_title, user_response, history)
        try:
            audio = await self.speak(text)
        except SpeechSynthesisError as e:
            logger.warning("Speech synthesis failed, text is still available: %s", e)
            raise SpeechSynthesisError(str(e), text) from e
        return TurnResult(assistant_text=text, audio=audio, audio_format=self.audio_format)
