from __future__ import annotations

import http.client
import json
import logging
from dataclasses import dataclass
from typing import Optional, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from config import get_settings


logger = logging.getLogger(__name__)

GEMINI_ENDPOINT = (
    "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
)
PLACEHOLDER_KEYS = {"", "your-gemini-api-key", "changeme"}


@dataclass(frozen=True)
class GenerationResult:
    text: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.text is not None

    @classmethod
    def failure(cls, error: str) -> "GenerationResult":
        return cls(text=None, error=error)


class TextGenerationClient(Protocol):
    def generate(self, prompt: str) -> GenerationResult: ...


class GeminiClient:
    """Calls the Gemini ``generateContent`` endpoint. Never raises."""

    def __init__(
        self, api_key: Optional[str], model: str, *, timeout: float = 20.0
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and self.api_key.strip() not in PLACEHOLDER_KEYS

    def generate(self, prompt: str) -> GenerationResult:
        if not self.configured:
            return GenerationResult.failure("Gemini API key is not configured")

        url = GEMINI_ENDPOINT.format(model=quote(self.model, safe=""))
        body = json.dumps(
            {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        ).encode("utf-8")
        req = Request(
            f"{url}?key={quote(self.api_key.strip(), safe='')}",
            data=body,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            logger.warning(f"generation_http_error: model={self.model} status={exc.code}")
            return GenerationResult.failure(f"HTTP {exc.code}")
        except (
            URLError,
            OSError,
            http.client.HTTPException,
            UnicodeDecodeError,
            json.JSONDecodeError,
        ) as exc:
            logger.warning(f"generation_failed: model={self.model} error={exc!r}")
            return GenerationResult.failure(str(exc) or exc.__class__.__name__)

        try:
            parts = payload["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError, AttributeError):
            return GenerationResult.failure("Unexpected response shape")
        if not text.strip():
            return GenerationResult.failure("Empty response")
        return GenerationResult(text=text)


class UnavailableClient:
    """Stands in when no usable provider is configured."""

    def __init__(self, reason: str) -> None:
        self.reason = reason

    def generate(self, prompt: str) -> GenerationResult:
        return GenerationResult.failure(self.reason)


def build_client() -> TextGenerationClient:
    settings = get_settings()
    provider = (settings.ai_provider or "gemini").strip().lower()
    if provider != "gemini":
        logger.warning(f"generation_provider_unsupported: provider={provider}")
        return UnavailableClient(f"Unsupported text generation provider: {provider}")
    return GeminiClient(
        settings.ai_api_key, settings.ai_model, timeout=settings.ai_timeout_secs
    )
