"""Async connectors for image-to-image generation services."""

from __future__ import annotations

import asyncio
import base64
import io
import math
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Protocol

import httpx
from PIL import Image, UnidentifiedImageError

from .errors import GenerationError

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class GenerationClient(Protocol):
    async def generate(self, source_image: bytes, prompt: str) -> bytes:
        ...


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int
    backoff_seconds: float
    max_backoff_seconds: float

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RetryConfig":
        return cls(
            max_attempts=max(1, int(data.get("max_attempts", 3))),
            backoff_seconds=float(data.get("backoff_seconds", 2.0)),
            max_backoff_seconds=float(data.get("max_backoff_seconds", 30.0)),
        )

    def backoff(self, attempt: int) -> float:
        delay = self.backoff_seconds * math.pow(2, max(0, attempt - 1))
        return float(min(self.max_backoff_seconds, delay))


def sniff_mime_type(image: bytes) -> str:
    """Return the MIME type Pillow detects for ``image``."""

    try:
        with Image.open(io.BytesIO(image)) as probe:
            fmt = probe.format
    except (UnidentifiedImageError, OSError) as exc:
        raise GenerationError("Source image is not a recognised image format") from exc
    return Image.MIME.get(fmt or "", "image/png")


class GeminiImageClient:
    """Send a source photo plus a prompt to Gemini and return the edited image."""

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        api_key: str | None,
        timeout: float,
        retry: RetryConfig,
        logger,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.retry = retry
        self.logger = logger
        headers = {"x-goog-api-key": api_key} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, logger, **kwargs) -> "GeminiImageClient":
        env_name = str(config.get("api_key_env") or "GEMINI_API_KEY")
        return cls(
            base_url=str(config.get("base_url")),
            model=str(config.get("model")),
            api_key=os.getenv(env_name),
            timeout=float(config.get("timeout", 120)),
            retry=RetryConfig.from_mapping(config.get("retry") or {}),
            logger=logger,
            **kwargs,
        )

    async def generate(self, source_image: bytes, prompt: str) -> bytes:
        payload = self._build_payload(source_image, prompt)
        url = f"/v1beta/models/{self.model}:generateContent"
        attempt = 0
        while True:
            attempt += 1
            try:
                start = time.perf_counter()
                response = await self._client.post(url, json=payload)
                elapsed = time.perf_counter() - start
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code not in RETRYABLE_STATUS or attempt >= self.retry.max_attempts:
                    raise
                await self._wait_before_retry(attempt, exc)
                continue
            except httpx.TransportError as exc:
                if attempt >= self.retry.max_attempts:
                    raise
                await self._wait_before_retry(attempt, exc)
                continue
            self.logger.debug("%s responded in %.2fs", self.model, elapsed)
            return self.extract_image(response.json())

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GeminiImageClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    def _build_payload(self, source_image: bytes, prompt: str) -> Dict[str, Any]:
        return {
            "contents": [
                {
                    "parts": [
                        {
                            "inline_data": {
                                "mime_type": sniff_mime_type(source_image),
                                "data": base64.b64encode(source_image).decode("ascii"),
                            }
                        },
                        {"text": prompt},
                    ]
                }
            ],
            "generationConfig": {"responseModalities": ["IMAGE", "TEXT"]},
        }

    async def _wait_before_retry(self, attempt: int, exc: Exception) -> None:
        delay = self.retry.backoff(attempt)
        self.logger.warning(
            "%s attempt %d/%d failed (%s); retrying in %.1fs",
            self.model,
            attempt,
            self.retry.max_attempts,
            exc,
            delay,
        )
        await asyncio.sleep(delay)

    @staticmethod
    def extract_image(payload: Mapping[str, Any]) -> bytes:
        texts: list[str] = []
        candidates = payload.get("candidates") if isinstance(payload, Mapping) else None
        if isinstance(candidates, list):
            for candidate in candidates:
                content = candidate.get("content") if isinstance(candidate, Mapping) else None
                parts = content.get("parts") if isinstance(content, Mapping) else None
                if not isinstance(parts, list):
                    continue
                for part in parts:
                    if not isinstance(part, Mapping):
                        continue
                    inline = part.get("inlineData") or part.get("inline_data")
                    if isinstance(inline, Mapping) and inline.get("data"):
                        return base64.b64decode(inline["data"])
                    text = part.get("text")
                    if isinstance(text, str) and text.strip():
                        texts.append(text.strip())
        if texts:
            raise GenerationError(f"Model returned no image: {' '.join(texts)}")
        feedback = payload.get("promptFeedback") if isinstance(payload, Mapping) else None
        if isinstance(feedback, Mapping) and feedback.get("blockReason"):
            raise GenerationError(f"Request blocked: {feedback['blockReason']}")
        raise GenerationError("Model returned no image")


__all__ = ["GenerationClient", "GeminiImageClient", "RetryConfig", "sniff_mime_type"]
