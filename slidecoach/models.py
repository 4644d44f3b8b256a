from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from . import scoring


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------- Generation ----------

class GenerationMode(str, Enum):
    TOPIC = "topic"
    BULLETS = "bullets"
    CONTENT = "content"
    SUMMARY = "summary"


class GenerationRequest(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    mode: GenerationMode
    raw_input: str = Field(..., min_length=1, validation_alias=AliasChoices("rawInput", "input", "raw_input"))
    presentation_id: str = Field(..., min_length=1)
    title: Optional[str] = None
    audience: Optional[str] = None
    goal: Optional[str] = None

    @field_validator("raw_input", "presentation_id")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v


class ResolvedInput(WireModel):
    text: str
    source_kind: Literal["literal", "crawled"] = "literal"


class SlideDraft(BaseModel):
    """Unvalidated slide candidate as produced by the LLM."""

    title: str
    content: str
    image_prompt: str


class PersistedSlide(WireModel):
    id: str
    presentation_id: str
    title: str
    content: str
    image_url: Optional[str] = None
    order: int = Field(..., ge=0)


StepStatus = Literal["in_progress", "completed", "error"]


class ProgressEvent(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: Literal["step_update", "final_data", "error"]
    step_id: Optional[str] = None
    status: Optional[StepStatus] = None
    message: Optional[str] = None
    slide_id: Optional[str] = None
    slide_title: Optional[str] = None
    image_url: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    def to_wire(self) -> Dict[str, Any]:
        # only top-level absent fields are dropped; nested payloads keep explicit nulls
        wire = self.model_dump(mode="json", by_alias=True)
        return {key: value for key, value in wire.items() if value is not None}


# ---------- Practice: transcription & analysis ----------

class TranscriptionStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"


class TranscriptSegment(WireModel):
    id: int = 0
    start: float = 0.0
    end: float = 0.0
    text: str = ""
    confidence: float = Field(1.0, ge=0.0, le=1.0)


class TranscriptionResult(WireModel):
    text: str = ""
    segments: List[TranscriptSegment] = Field(default_factory=list)
    status: TranscriptionStatus = TranscriptionStatus.OK
    reason: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.status is TranscriptionStatus.DEGRADED


class PaceResult(WireModel):
    score: int
    feedback: str
    wpm: int


class ClarityResult(WireModel):
    score: int
    feedback: str


class FillerWordCount(WireModel):
    word: str
    count: int


class FillerWordsResult(WireModel):
    score: int
    feedback: str
    words: List[FillerWordCount] = Field(default_factory=list)


class AnalysisResult(WireModel):
    pace: PaceResult
    clarity: ClarityResult
    filler_words: FillerWordsResult
    improvements: List[str]
    overall_score: int

    @classmethod
    def build(
        cls,
        pace: PaceResult,
        clarity: ClarityResult,
        filler_words: FillerWordsResult,
        improvements: List[str],
    ) -> "AnalysisResult":
        return cls(
            pace=pace,
            clarity=clarity,
            filler_words=filler_words,
            improvements=improvements,
            overall_score=scoring.overall_score(pace.score, clarity.score, filler_words.score),
        )


class ClarityJudgment(BaseModel):
    score: int
    feedback: str
    improvements: List[str] = Field(default_factory=list)


class AnalyzeRequest(WireModel):
    transcription: TranscriptionResult
    duration_seconds: float = Field(..., gt=0)
    slide_contents: List[str] = Field(default_factory=list)


class PracticeSessionResponse(WireModel):
    session_id: str
    presentation_id: Optional[str] = None
    transcription: TranscriptionResult
    analysis: AnalysisResult


# ---------- Interactive Q&A ----------

class ConversationTurn(WireModel):
    role: Literal["user", "assistant"]
    content: str
    audio_format: Optional[str] = None


class InteractiveChatRequest(WireModel):
    slide_title: Optional[str] = None
    slide_content: str = Field(..., min_length=1)
    user_response: Optional[str] = None
    conversation_history: List[ConversationTurn] = Field(default_factory=list)


class InteractiveChatResponse(WireModel):
    ai_text_response: str
    ai_audio_base64: Optional[str] = None
    content_type: Optional[str] = None
    updated_conversation_history: List[ConversationTurn]


# ---------- Single-shot helpers ----------

class ImageRequest(WireModel):
    image_prompt: str = Field(..., min_length=1)


class ImageResponse(WireModel):
    image_url: str


class TextGenerationRequest(WireModel):
    prompt: str = Field(..., min_length=1)


class TextGenerationResponse(WireModel):
    text: str


class UrlSummaryRequest(WireModel):
    url: str = Field(..., min_length=1)


class UrlSummaryResponse(WireModel):
    summary: str
