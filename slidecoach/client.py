"""Consume the generation progress stream from Python."""

import logging
from typing import Callable, List, Optional

import httpx

from .errors import GenerationStreamError
from .models import GenerationRequest, PersistedSlide
from .progress import ProgressTracker, SseDecoder, steps_for_mode

logger = logging.getLogger("slidecoach.client")

GENERATE_PATH = "/api/generate-presentation"


class GenerationClient:
    def __init__(self, base_url: str, token: Optional[str] = None, *, timeout: float = 600.0,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._http = http_client

    async def generate(
        self,
        request: GenerationRequest,
        on_update: Optional[Callable[[ProgressTracker], None]] = None,
    ) -> List[PersistedSlide]:
        """Stream a generation run, folding every event into a ``ProgressTracker``.

        Raises ``GenerationStreamError`` on an ``error`` event, on a non-2xx
        response, or when the stream ends without ``final_data``.
        """
        tracker = ProgressTracker(steps_for_mode(request.mode))
        decoder = SseDecoder()
        headers = {"Accept": "text/event-stream"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        client = self._http or httpx.AsyncClient(timeout=self.timeout)
        try:
            async with client.stream(
                "POST", self.base_url + GENERATE_PATH, json=request.to_wire(), headers=headers
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", "replace")[:500]
                    raise GenerationStreamError(f"API request failed: {response.status_code} - {body}")
                async for chunk in response.aiter_bytes():
                    for event in decoder.feed(chunk):
                        tracker.apply(event)
                        if on_update is not None:
                            on_update(tracker)
                    if tracker.error is not None:
                        break
            for event in decoder.finish():
                tracker.apply(event)
        except httpx.HTTPError as e:
            raise GenerationStreamError(f"Generation stream failed: {e}") from e
        finally:
            if self._http is None:
                await client.aclose()
        return tracker.slides()
