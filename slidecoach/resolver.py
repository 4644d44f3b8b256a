import logging
import re
from typing import List, Optional, Protocol
from urllib.parse import urlparse

from .crawler import CrawledPage
from .errors import SourceResolutionError
from .llm_providers import ChatModel
from .models import GenerationMode, GenerationRequest, ResolvedInput
from .progress import STEP_URL_CRAWL, ProgressChannel, step_update
from .prompts import URL_SUMMARY_SYSTEM_PROMPT, build_url_summary_prompt

logger = logging.getLogger("slidecoach.resolver")

MAX_CRAWL_PAGES = 3
MAX_CRAWL_DEPTH = 1
MAX_CRAWL_CHARS = 15000
MAX_SUMMARY_SOURCE_CHARS = 10000


class Crawler(Protocol):
    async def crawl(
        self, url: str, *, max_pages: int, max_depth: int, main_content_only: bool
    ) -> List[CrawledPage]: ...


def is_http_url(value: str) -> bool:
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def combine_pages(pages: List[CrawledPage], max_chars: int = MAX_CRAWL_CHARS) -> str:
    """Join page markdown with blank lines, stopping once ``max_chars`` is reached."""
    combined = ""
    for page in pages:
        if page.markdown:
            combined += page.markdown + "\n\n"
        if len(combined) >= max_chars:
            break
    return combined[:max_chars].strip()


class ContentResolver:
    """Turn a generation request's raw input into the text the LLM sees.

    Only ``summary`` mode may crawl, and crawling is best-effort: any failure
    falls back to the raw input as literal text.
    """

    def __init__(self, crawler: Optional[Crawler], *, max_pages: int = MAX_CRAWL_PAGES,
                 max_depth: int = MAX_CRAWL_DEPTH, max_chars: int = MAX_CRAWL_CHARS):
        self.crawler = crawler
        self.max_pages = min(max_pages, MAX_CRAWL_PAGES)
        self.max_depth = min(max_depth, MAX_CRAWL_DEPTH)
        self.max_chars = max_chars

    async def resolve(self, request: GenerationRequest, channel: Optional[ProgressChannel] = None) -> ResolvedInput:
        literal = ResolvedInput(text=request.raw_input, source_kind="literal")
        if request.mode is not GenerationMode.SUMMARY:
            return literal

        self._emit(channel, "in_progress", "Checking for URL and fetching content if needed...")
        if not is_http_url(request.raw_input):
            self._emit(channel, "completed", "Proceeding with input as text.")
            return literal

        try:
            text = await self._crawl(request.raw_input.strip())
        except Exception as e:
            logger.warning("Crawl failed for %s, treating input as text: %s", request.raw_input, e)
            self._emit(channel, "completed", "Proceeding with input as text.")
            return literal

        self._emit(channel, "completed", "URL content fetched.")
        return ResolvedInput(text=text, source_kind="crawled")

    async def _crawl(self, url: str) -> str:
        if self.crawler is None:
            raise SourceResolutionError("No crawler configured")
        pages = await self.crawler.crawl(
            url, max_pages=self.max_pages, max_depth=self.max_depth, main_content_only=True
        )
        if not pages:
            raise SourceResolutionError(f"Crawler returned no pages for {url}")
        text = combine_pages(pages, self.max_chars)
        if not text:
            raise SourceResolutionError(f"Failed to extract content from {url}")
        logger.info("Crawled %d page(s) from %s (%d chars)", len(pages), url, len(text))
        return text

    @staticmethod
    def _emit(channel: Optional[ProgressChannel], status: str, message: str) -> None:
        if channel is not None:
            channel.emit(step_update(STEP_URL_CRAWL, status, message))


class UrlSummarizer:
    """Fetch one page and ask the LLM for a concise summary of its text.

    Fetch problems surface as :class:`SourceResolutionError`; LLM failures
    propagate as :class:`LLMError` so callers can tell the two apart.
    """

    def __init__(self, crawler: Optional[Crawler], chat: ChatModel, *, max_chars: int = MAX_SUMMARY_SOURCE_CHARS):
        self.crawler = crawler
        self.chat = chat
        self.max_chars = max_chars

    async def summarize(self, url: str) -> str:
        url = url.strip()
        text = await self.fetch_text(url)
        return await self.chat.complete(
            URL_SUMMARY_SYSTEM_PROMPT,
            build_url_summary_prompt(url, text),
            temperature=0.5,
            max_tokens=1000,
        )

    async def fetch_text(self, url: str) -> str:
        if not is_http_url(url):
            raise SourceResolutionError(f"Not an http(s) URL: {url!r}")
        if self.crawler is None:
            raise SourceResolutionError("No crawler configured")
        pages = await self.crawler.crawl(url, max_pages=1, max_depth=0, main_content_only=True)
        text = re.sub(r"\s+", " ", combine_pages(pages, self.max_chars + 1)).strip()
        if not text:
            raise SourceResolutionError(f"No readable content at {url}")
        if len(text) > self.max_chars:
            text = text[: self.max_chars] + "..."
        logger.info("Fetched %d chars from %s for summary", len(text), url)
        return text
