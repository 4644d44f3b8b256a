import logging
from typing import List, Optional, Sequence

from pydantic import ValidationError

from .errors import ClarityJudgmentError, LLMError
from .llm_providers import ChatModel, extract_json
from .models import (
    AnalysisResult,
    ClarityJudgment,
    ClarityResult,
    FillerWordCount,
    FillerWordsResult,
    PaceResult,
    TranscriptionResult,
)
from .prompts import CLARITY_SYSTEM_PROMPT, build_clarity_user_prompt
from .scoring import (
    count_filler_words,
    filler_feedback,
    filler_score,
    fillers_per_minute,
    is_valid_duration,
    pace_feedback,
    pace_score,
    round_half_up,
    words_per_minute,
)

logger = logging.getLogger("slidecoach.analyzer")

FALLBACK_CLARITY_SCORE = 70
MAX_CLARITY_IMPROVEMENTS = 2

CLARITY_FALLBACKS = {
    "request": ClarityJudgment(
        score=FALLBACK_CLARITY_SCORE,
        feedback="Clarity analysis via AI failed. Please ensure your pronunciation is clear.",
        improvements=["Try to enunciate words more distinctly.", "Ensure your microphone is positioned correctly."],
    ),
    "format": ClarityJudgment(
        score=FALLBACK_CLARITY_SCORE,
        feedback="Received an unexpected format from AI for clarity analysis.",
        improvements=["Review your recording for clear speech.", "Ensure slide keywords are spoken clearly."],
    ),
    "error": ClarityJudgment(
        score=FALLBACK_CLARITY_SCORE,
        feedback="An error occurred during AI clarity analysis. Please try again.",
        improvements=["Check your internet connection and try recording again.", "Speak directly into the microphone."],
    ),
}

GREAT_JOB = "Great job! No specific areas for improvement identified from this analysis."
ENUNCIATION_TIP = "Focus on enunciating each word clearly, especially technical terms found in your slides."
SLOW_DOWN_TIP = "Your speaking pace is quite fast. Try to consciously slow down, especially during complex parts."
MORE_ENERGY_TIP = (
    "Your speaking pace is a bit slow. Try to inject more energy and vary your pace to keep the audience engaged."
)
PAUSE_TIP = "Be mindful of filler words like 'um' or 'like'. Practice pausing to gather your thoughts instead."


def fallback_analysis() -> AnalysisResult:
    """Conservative result used when the transcript or inputs cannot be scored."""
    return AnalysisResult.build(
        pace=PaceResult(score=75, feedback="Unable to analyze pace due to processing error.", wpm=120),
        clarity=ClarityResult(score=75, feedback="Unable to analyze clarity due to processing error."),
        filler_words=FillerWordsResult(
            score=75, feedback="Unable to analyze filler words due to processing error.", words=[]
        ),
        improvements=[
            "Try recording in a quieter environment",
            "Speak clearly and at a consistent volume",
            "Make sure your microphone is working properly",
        ],
    )


def dedupe(items: Sequence[str]) -> List[str]:
    seen = set()
    unique = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


class ClarityJudge:
    """Ask the LLM to grade clarity; never raises, substituting a fixed fallback instead."""

    def __init__(self, chat: Optional[ChatModel], *, temperature: float = 0.3, max_tokens: int = 300):
        self.chat = chat
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def judge(self, transcript: str, slide_texts: Sequence[str]) -> ClarityJudgment:
        try:
            return await self._judge(transcript, slide_texts)
        except LLMError as e:
            logger.error("Clarity judgment request failed: %s", e)
            return CLARITY_FALLBACKS["request"]
        except ClarityJudgmentError as e:
            logger.error("Invalid clarity judgment: %s", e)
            return CLARITY_FALLBACKS["format"]
        except Exception:
            logger.exception("Clarity judgment crashed")
            return CLARITY_FALLBACKS["error"]

    async def _judge(self, transcript: str, slide_texts: Sequence[str]) -> ClarityJudgment:
        if self.chat is None:
            raise LLMError("No language model configured for clarity analysis")
        raw = await self.chat.complete(
            CLARITY_SYSTEM_PROMPT,
            build_clarity_user_prompt(transcript, slide_texts),
            temperature=self.temperature,
            json_response=True,
            max_tokens=self.max_tokens,
        )
        try:
            data = extract_json(raw)
        except ValueError as e:
            raise ClarityJudgmentError(f"not JSON: {e}") from e
        return parse_clarity(data)


def parse_clarity(data) -> ClarityJudgment:
    """Validate a clarity reply. An empty improvements list is a valid judgment, not a format error."""
    if not isinstance(data, dict):
        raise ClarityJudgmentError(f"expected an object, got {type(data).__name__}")
    score = data.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise ClarityJudgmentError(f"score is not a number: {score!r}")
    improvements = data.get("improvements")
    if not isinstance(improvements, list) or not all(isinstance(i, str) for i in improvements):
        raise ClarityJudgmentError("improvements must be a list of strings")
    try:
        return ClarityJudgment(
            score=round_half_up(max(0, min(100, score))),
            feedback=data.get("feedback"),
            improvements=[i.strip() for i in improvements if i.strip()][:MAX_CLARITY_IMPROVEMENTS],
        )
    except (ValidationError, ValueError) as e:
        raise ClarityJudgmentError(str(e)) from e


class TranscriptAnalyzer:
    """Score a practice transcript on pace, filler words and clarity.

    ``analyze`` never raises: a degraded transcript, an unusable duration or
    any internal error yields :func:`fallback_analysis`, and a failed clarity
    call yields the fixed clarity fallback.
    """

    def __init__(self, clarity_judge: ClarityJudge):
        self.clarity_judge = clarity_judge

    async def analyze(
        self, transcription: TranscriptionResult, duration_seconds: float, slide_texts: Sequence[str]
    ) -> AnalysisResult:
        if transcription.degraded:
            logger.warning("Transcript is degraded (%s); returning fallback analysis", transcription.reason)
            return fallback_analysis()
        if not is_valid_duration(duration_seconds):
            logger.warning("Invalid recording duration %r; returning fallback analysis", duration_seconds)
            return fallback_analysis()
        try:
            return await self._analyze(transcription.text or "", float(duration_seconds), list(slide_texts))
        except Exception:
            logger.exception("Transcript analysis failed; returning fallback analysis")
            return fallback_analysis()

    async def _analyze(self, text: str, duration_seconds: float, slide_texts: List[str]) -> AnalysisResult:
        wpm = words_per_minute(text, duration_seconds)
        fillers = count_filler_words(text)
        per_minute = fillers_per_minute(fillers, duration_seconds)

        pace = pace_score(wpm)
        filler = filler_score(per_minute)
        clarity = await self.clarity_judge.judge(text, slide_texts)

        improvements = list(clarity.improvements)
        if pace < 80:
            improvements.append(pace_feedback(wpm))
        if filler < 80:
            improvements.append(filler_feedback(per_minute))
        if clarity.score < 75:
            improvements.append(ENUNCIATION_TIP)
        if wpm > 160:
            improvements.append(SLOW_DOWN_TIP)
        elif 0 < wpm < 110:
            improvements.append(MORE_ENERGY_TIP)
        if per_minute > 5:
            improvements.append(PAUSE_TIP)

        return AnalysisResult.build(
            pace=PaceResult(score=pace, feedback=pace_feedback(wpm), wpm=wpm),
            clarity=ClarityResult(score=clarity.score, feedback=clarity.feedback),
            filler_words=FillerWordsResult(
                score=filler,
                feedback=filler_feedback(per_minute),
                words=[FillerWordCount(word=word, count=count) for word, count in fillers],
            ),
            improvements=dedupe(improvements) or [GREAT_JOB],
        )
