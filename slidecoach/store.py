"""Persistence and object-storage collaborators.

The relational database and the object store are external systems; the core
only needs the narrow protocols below. The in-memory and local-disk
implementations back the default app and the tests.
"""

import logging
import threading
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from .errors import StorageError
from .models import AnalysisResult, PersistedSlide, TranscriptionResult

logger = logging.getLogger("slidecoach.store")


class SlideStore(Protocol):
    def create_slide(
        self, presentation_id: str, title: str, content: str, image_url: Optional[str], order: int
    ) -> PersistedSlide: ...

    def update_slide(self, slide_id: str, *, image_url: Optional[str] = None) -> PersistedSlide: ...

    def list_slides(self, presentation_id: str) -> List[PersistedSlide]: ...


class ObjectStorage(Protocol):
    def upload(self, key: str, data: bytes, content_type: str) -> str: ...


class InMemorySlideStore:
    def __init__(self):
        self._slides: Dict[str, PersistedSlide] = {}
        self._lock = threading.Lock()

    def create_slide(self, presentation_id, title, content, image_url, order):
        slide = PersistedSlide(
            id=str(uuid.uuid4()),
            presentation_id=presentation_id,
            title=title,
            content=content,
            image_url=image_url,
            order=order,
        )
        with self._lock:
            self._slides[slide.id] = slide
        return slide

    def update_slide(self, slide_id, *, image_url=None):
        with self._lock:
            current = self._slides.get(slide_id)
            if current is None:
                raise StorageError(f"Slide {slide_id} not found")
            updated = current.model_copy(update={"image_url": image_url})
            self._slides[slide_id] = updated
        return updated

    def list_slides(self, presentation_id):
        with self._lock:
            slides = [s for s in self._slides.values() if s.presentation_id == presentation_id]
        return sorted(slides, key=lambda s: s.order)

    def delete_presentation(self, presentation_id: str) -> int:
        """Cascade-delete every slide owned by ``presentation_id``."""
        with self._lock:
            doomed = [sid for sid, s in self._slides.items() if s.presentation_id == presentation_id]
            for sid in doomed:
                del self._slides[sid]
        return len(doomed)


class LocalObjectStorage:
    """Writes objects under ``root`` and returns URLs below ``public_base_url``."""

    def __init__(self, root: Path, public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def upload(self, key: str, data: bytes, content_type: str) -> str:
        target = (self.root / key).resolve()
        if self.root.resolve() not in target.parents:
            raise StorageError(f"Refusing to write outside storage root: {key}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Upload of {key} failed: {e}") from e
        logger.info("Stored %s (%d bytes, %s)", key, len(data), content_type)
        return f"{self.public_base_url}/{key}"


def image_object_key() -> str:
    return f"slideimages/generated_image_{uuid.uuid4()}.png"


class InMemoryPracticeStore:
    """Keeps analysed practice sessions; each analysis is stored fresh, never patched."""

    def __init__(self):
        self._sessions: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def save_session(
        self,
        presentation_id: Optional[str],
        user_id: str,
        transcription: TranscriptionResult,
        analysis: AnalysisResult,
        duration_seconds: float,
    ) -> str:
        session_id = str(uuid.uuid4())
        with self._lock:
            self._sessions[session_id] = {
                "presentation_id": presentation_id,
                "user_id": user_id,
                "transcription": transcription,
                "analysis": analysis,
                "duration_seconds": duration_seconds,
            }
        return session_id

    def get_session(self, session_id: str) -> Optional[dict]:
        with self._lock:
            return self._sessions.get(session_id)
