"""Locate the slide list in a loosely structured LLM response.

Models answer with a bare array, with ``{"slides": [...]}``, or with some
other object whose first array-valued property holds the slides. Strategies
run in that fixed priority order and the outcome is explicit: ``Found`` or
``NotFound``; nothing is coerced.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

from .llm_providers import extract_json
from .models import SlideDraft

logger = logging.getLogger("slidecoach.parser")

REQUIRED_FIELDS = ("title", "content", "image_prompt")


@dataclass(frozen=True)
class Found:
    items: List[Any]
    strategy: str


@dataclass(frozen=True)
class NotFound:
    reason: str


ParseOutcome = Union[Found, NotFound]


def _bare_array(value: Any) -> Optional[List[Any]]:
    return value if isinstance(value, list) else None


def _slides_property(value: Any) -> Optional[List[Any]]:
    if isinstance(value, dict) and isinstance(value.get("slides"), list):
        return value["slides"]
    return None


def _first_array_property(value: Any) -> Optional[List[Any]]:
    if isinstance(value, dict):
        for item in value.values():
            if isinstance(item, list):
                return item
    return None


STRATEGIES = (
    ("bare_array", _bare_array),
    ("slides_property", _slides_property),
    ("first_array_property", _first_array_property),
)


def locate_slides(raw: str) -> ParseOutcome:
    try:
        value = extract_json(raw)
    except ValueError as e:  # json.JSONDecodeError is a ValueError
        return NotFound(f"response is not JSON: {e}")

    for name, strategy in STRATEGIES:
        items = strategy(value)
        if items is not None:
            return Found(items=items, strategy=name)
    return NotFound(f"no array found in {type(value).__name__} response")


def validate_draft(item: Any) -> Optional[SlideDraft]:
    """Return a ``SlideDraft`` when every required field is a non-empty string."""
    if not isinstance(item, dict):
        return None
    for field in REQUIRED_FIELDS:
        value = item.get(field)
        if not isinstance(value, str) or not value.strip():
            return None
    return SlideDraft(
        title=item["title"].strip(),
        content=item["content"].strip(),
        image_prompt=item["image_prompt"].strip(),
    )


def validate_drafts(items: List[Any]) -> Tuple[List[SlideDraft], int]:
    """Split ``items`` into valid drafts (in input order) and a count of skipped ones."""
    drafts: List[SlideDraft] = []
    skipped = 0
    for index, item in enumerate(items):
        draft = validate_draft(item)
        if draft is None:
            skipped += 1
            logger.warning("Skipping invalid slide #%d from LLM: %.200r", index + 1, item)
            continue
        drafts.append(draft)
    return drafts, skipped
