import contextlib
import json
import logging
import re
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Protocol, Sequence

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from .errors import LLMError
from .security import mask_api_key

logger = logging.getLogger("slidecoach.llm")

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-sonnet-latest",
    "gemini": "gemini-1.5-pro",
}

# =========================
# Helpers
# =========================
def extract_json(text: str) -> Any:
    """Extract a JSON value from model output (handles ```json fences or prose-wrapped JSON)."""
    if not text or not text.strip():
        raise ValueError("Empty response from model")

    m = re.search(r"```(?:json)?\s*([\[{].*?[\]}])\s*```", text, flags=re.S | re.I)
    if m:
        return json.loads(m.group(1))

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    m = re.search(r"([\[{].*[\]}])", text, flags=re.S)
    if m:
        return json.loads(m.group(1))

    raise ValueError("No JSON value found in model output")


class ChatModel(Protocol):
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = ...,
        json_response: bool = ...,
        history: Sequence[Mapping[str, str]] = ...,
        max_tokens: int = ...,
    ) -> str: ...


class RetryableProviderError(Exception):
    """HTTP 429/5xx from a provider; retried before surfacing."""


def raise_for_provider_error(resp: httpx.Response, provider_label: str, error_cls=LLMError):
    try:
        body = resp.text[:500]
    except Exception:
        body = "<no body>"
    message = f"{provider_label} HTTP {resp.status_code}: {body}"
    if resp.status_code == 429 or resp.status_code >= 500:
        raise RetryableProviderError(message)
    raise error_cls(message)


class ProviderClient:
    """Shared plumbing for the HTTP collaborators: timeouts and an optional injected client."""

    label = "provider"

    def __init__(self, api_key: str, *, timeout: float = 60.0, http_client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key or ""
        self.timeout = timeout
        self._http = http_client

    @contextlib.asynccontextmanager
    async def session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    def __repr__(self) -> str:
        return f"{type(self).__name__}(key={mask_api_key(self.api_key)})"


# =========================
# Chat completion entry point with retries
# =========================
class ChatClient(ProviderClient):
    """Text completion across openai-compatible, anthropic and gemini providers."""

    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str,
        *,
        openai_base: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        max_attempts: int = 3,
        retry_wait: Any = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(api_key, timeout=timeout, http_client=http_client)
        self.provider = (provider or "").strip().lower()
        if self.provider not in DEFAULT_MODELS:
            raise ValueError("Unsupported provider. Use openai|anthropic|gemini.")
        self.model = model or DEFAULT_MODELS[self.provider]
        self.openai_base = openai_base
        self.max_attempts = max(1, max_attempts)
        self.retry_wait = retry_wait or wait_exponential_jitter(initial=1, max=8)
        self.label = self.provider

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.3,
        json_response: bool = False,
        history: Sequence[Mapping[str, str]] = (),
        max_tokens: int = 2000,
    ) -> str:
        if not self.api_key:
            raise LLMError(f"{self.provider} API key not configured")

        p = {
            "system": system_prompt,
            "user": user_prompt,
            "history": [dict(role=m["role"], content=m["content"]) for m in history],
            "temperature": temperature,
            "json": json_response,
            "max_tokens": max_tokens,
        }
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=self.retry_wait,
                retry=retry_if_exception_type((httpx.TransportError, RetryableProviderError)),
                reraise=True,
            ):
                with attempt:
                    content = await self._dispatch(p)
        except LLMError:
            raise
        except (httpx.HTTPError, RetryableProviderError) as e:
            logger.error("%s chat call failed: %s (key=%s)", self.provider, e, mask_api_key(self.api_key))
            raise LLMError(f"{self.provider} call failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise LLMError(f"{self.provider} returned an unexpected payload: {e}") from e

        if not content or not content.strip():
            raise LLMError(f"{self.provider} returned empty content")
        return content

    async def _dispatch(self, p: Dict[str, Any]) -> str:
        if self.provider == "openai":
            return await self._call_openai(p)
        if self.provider == "anthropic":
            return await self._call_anthropic(p)
        return await self._call_gemini(p)

    # =========================
    # OpenAI-compatible
    # =========================
    async def _call_openai(self, p: Dict[str, Any]) -> str:
        """
        Works with api.openai.com and OpenAI-compatible gateways.
        Set OPENAI_BASE to your gateway URL.
        """
        base = self.openai_base
        # accept either full /chat/completions or just /v1
        url = base if base.endswith("/chat/completions") else base.rstrip("/") + "/chat/completions"

        headers = {"Authorization": f"Bearer {self.api_key}"}
        data: Dict[str, Any] = {
            "model": self.model,
            "temperature": p["temperature"],
            "max_tokens": p["max_tokens"],
            "messages": [
                {"role": "system", "content": p["system"]},
                *p["history"],
                {"role": "user", "content": p["user"]},
            ],
        }
        if p["json"]:
            data["response_format"] = {"type": "json_object"}
        async with self.session() as client:
            r = await client.post(url, headers=headers, json=data)
            if r.status_code >= 400:
                raise_for_provider_error(r, "OpenAI-compatible")
            j = r.json()
            return j["choices"][0]["message"]["content"] or ""

    # =========================
    # Anthropic
    # =========================
    async def _call_anthropic(self, p: Dict[str, Any]) -> str:
        url = "https://api.anthropic.com/v1/messages"
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
        }
        system = p["system"]
        if p["json"]:
            system += "\nRespond with JSON only."
        data = {
            "model": self.model,
            "max_tokens": p["max_tokens"],
            "temperature": p["temperature"],
            "system": system,
            "messages": [*p["history"], {"role": "user", "content": p["user"]}],
        }
        async with self.session() as client:
            r = await client.post(url, headers=headers, json=data)
            if r.status_code >= 400:
                raise_for_provider_error(r, "Anthropic")
            j = r.json()
            return "".join([blk.get("text", "") for blk in j.get("content", [])])

    # =========================
    # Gemini (native)
    # =========================
    async def _call_gemini(self, p: Dict[str, Any]) -> str:
        url = f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent?key={self.api_key}"
        contents: List[Dict[str, Any]] = [
            {"role": "model" if m["role"] == "assistant" else "user", "parts": [{"text": m["content"]}]}
            for m in p["history"]
        ]
        contents.append({"role": "user", "parts": [{"text": p["user"]}]})
        generation_config: Dict[str, Any] = {
            "temperature": p["temperature"],
            "maxOutputTokens": p["max_tokens"],
        }
        if p["json"]:
            generation_config["response_mime_type"] = "application/json"
        data = {
            "systemInstruction": {"parts": [{"text": p["system"]}]},
            "contents": contents,
            "generationConfig": generation_config,
        }
        async with self.session() as client:
            r = await client.post(url, json=data)
            if r.status_code >= 400:
                raise_for_provider_error(r, "Gemini")
            j = r.json()
            if not j.get("candidates"):
                raise LLMError(f"Gemini returned no candidates: {str(j)[:200]}")
            cand = j["candidates"][0]
            parts = cand.get("content", {}).get("parts", [])
            if not parts:
                raise LLMError("Gemini returned empty parts")
            return parts[0].get("text", "")
