"""Pure scoring primitives for practice-session transcripts.

Every function here is deterministic and side-effect free; the analyzer
composes them with the AI clarity judgment.
"""

import math
import re
from typing import Dict, List, Sequence, Tuple

FILLER_TERMS: Tuple[str, ...] = (
    "um",
    "uh",
    "like",
    "you know",
    "so",
    "actually",
    "basically",
    "literally",
    "right",
    "okay",
    "well",
    "I mean",
    "kind of",
    "sort of",
)


def _term_pattern(term: str) -> "re.Pattern[str]":
    # multi-word phrases tolerate any run of whitespace between their words
    body = r"\s+".join(re.escape(part) for part in term.split())
    return re.compile(rf"\b{body}\b", re.IGNORECASE)


_FILLER_PATTERNS = [(term.lower(), _term_pattern(term)) for term in FILLER_TERMS]


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (builtin round() is half-to-even)."""
    return int(math.floor(value + 0.5))


def word_count(text: str) -> int:
    return len((text or "").split())


def words_per_minute(text: str, duration_seconds: float) -> int:
    if duration_seconds <= 0:
        raise ValueError("duration_seconds must be positive")
    return round_half_up(word_count(text) / duration_seconds * 60)


def pace_score(wpm: float) -> int:
    """Map words-per-minute onto the pace buckets; 120–150 is ideal."""
    if 120 <= wpm <= 150:
        return 95
    if 150 < wpm <= 170:
        return 85
    if 100 <= wpm < 120:
        return 85
    if wpm > 170:
        return 70
    if wpm < 100:
        return 70
    return 80  # NaN and other non-comparable values


def pace_feedback(wpm: float) -> str:
    if 120 <= wpm <= 150:
        return "Excellent pace. You're speaking at an ideal rate for audience comprehension."
    if wpm > 150:
        return "Your pace is slightly fast. Consider slowing down to improve audience comprehension."
    return "Your pace is slightly slow. Try to speak a bit faster to maintain audience engagement."


def count_filler_words(text: str) -> List[Tuple[str, int]]:
    """Return ``(term, count)`` pairs for every filler term present, most frequent first."""
    counts: Dict[str, int] = {}
    for term, pattern in _FILLER_PATTERNS:
        found = len(pattern.findall(text or ""))
        if found:
            counts[term] = found
    # sorted() is stable, so ties keep the fixed term order
    return sorted(counts.items(), key=lambda item: item[1], reverse=True)


def fillers_per_minute(counts: Sequence[Tuple[str, int]], duration_seconds: float) -> float:
    if duration_seconds <= 0:
        raise ValueError("duration_seconds must be positive")
    total = sum(count for _, count in counts)
    return total / duration_seconds * 60


def filler_score(per_minute: float) -> int:
    if per_minute <= 1:
        return 95
    if per_minute <= 3:
        return 85
    if per_minute <= 5:
        return 75
    if per_minute <= 8:
        return 65
    return 55


def filler_feedback(per_minute: float) -> str:
    if per_minute <= 1:
        return "Excellent! You used very few filler words."
    if per_minute <= 3:
        return "Good job. You used some filler words, but not excessively."
    if per_minute <= 5:
        return "You used a moderate number of filler words. Try to replace them with pauses."
    return "You used filler words frequently. Practice pausing instead of using filler words."


def overall_score(*scores: float) -> int:
    if not scores:
        raise ValueError("at least one score is required")
    return round_half_up(sum(scores) / len(scores))


def is_valid_duration(duration_seconds: float) -> bool:
    try:
        value = float(duration_seconds)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and value > 0
