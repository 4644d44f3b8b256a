import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .errors import CrawlError
from .llm_providers import ProviderClient, RetryableProviderError, raise_for_provider_error

logger = logging.getLogger("slidecoach.crawler")


@dataclass(frozen=True)
class CrawledPage:
    markdown: str
    url: Optional[str] = None


class FirecrawlClient(ProviderClient):
    """Firecrawl REST crawl: submit a job, then poll it until it settles or the timeout expires."""

    label = "firecrawl"

    def __init__(self, api_key: str, *, base_url: str = "https://api.firecrawl.dev/v1", poll_interval: float = 2.0, **kwargs):
        super().__init__(api_key, **kwargs)
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval

    async def crawl(self, url: str, *, max_pages: int = 3, max_depth: int = 1, main_content_only: bool = True) -> List[CrawledPage]:
        if not self.api_key:
            raise CrawlError("Firecrawl API key not configured")
        try:
            return await asyncio.wait_for(
                self._crawl(url, max_pages=max_pages, max_depth=max_depth, main_content_only=main_content_only),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise CrawlError(f"Crawl of {url} timed out after {self.timeout:.0f}s") from e
        except (httpx.HTTPError, RetryableProviderError, ValueError) as e:
            raise CrawlError(f"Crawl of {url} failed: {e}") from e

    async def _crawl(self, url: str, *, max_pages: int, max_depth: int, main_content_only: bool) -> List[CrawledPage]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        body = {
            "url": url,
            "limit": max_pages,
            "maxDepth": max_depth,
            "scrapeOptions": {"formats": ["markdown"], "onlyMainContent": main_content_only},
        }
        async with self.session() as client:
            r = await client.post(f"{self.base_url}/crawl", headers=headers, json=body)
            if r.status_code >= 400:
                raise_for_provider_error(r, "Firecrawl", CrawlError)
            job = r.json()
            if not job.get("success") or not job.get("id"):
                raise CrawlError(f"Firecrawl rejected the crawl: {job.get('error') or job}")

            while True:
                r = await client.get(f"{self.base_url}/crawl/{job['id']}", headers=headers)
                if r.status_code >= 400:
                    raise_for_provider_error(r, "Firecrawl", CrawlError)
                state = r.json()
                status = state.get("status")
                if status == "completed":
                    return self._pages(state)
                if status in ("failed", "cancelled"):
                    raise CrawlError(f"Firecrawl job {job['id']} {status}")
                await asyncio.sleep(self.poll_interval)

    @staticmethod
    def _pages(state: Dict[str, Any]) -> List[CrawledPage]:
        pages = []
        for item in state.get("data") or []:
            markdown = item.get("markdown") or ""
            source = (item.get("metadata") or {}).get("sourceURL")
            pages.append(CrawledPage(markdown=markdown, url=source))
        return pages
