"""Transport tiers — the four ways one prompt can reach the model.

    proxy-stream     POST {proxy}/api/gemini/stream         {"prompt", "maxTokens"}
                     POST {proxy}/api/gemini/vision-stream  {"contents"}          (image)
    proxy-standard   POST {proxy}/api/gemini/generate       {"contents", "generationConfig"}
                     POST {proxy}/api/gemini/vision         same body, image part  (image)
    direct-stream    POST {provider}/{model}:streamGenerateContent?key=...
    direct-standard  POST {provider}/{model}:generateContent?key=...

Whole-body responses share the provider shape:
    {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}

Streaming tiers decode with divination.sse and surface every change of the
running text to the sink. Failures are raised raw (httpx errors, or
GenerationError from the decoders); the pipeline classifies them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from divination.config import (
    GENERATION_CONFIG,
    PRIMARY_MODEL,
    PROVIDER_BASE_URL,
    PROXY_STREAM_MAX_TOKENS,
    PROXY_TIMEOUT,
    TEXT_TIMEOUT,
    VISION_MODEL,
    VISION_TIMEOUT,
    provider_url,
)
from divination.errors import ErrorKind, GenerationError, extract_text, parse_json_body
from divination.models import GenerationSettings, ImageInput, TierKind
from divination.sse import Dialect, Sink, read_stream

logger = logging.getLogger(__name__)

STREAMING_TIERS = frozenset({TierKind.PROXY_STREAM, TierKind.DIRECT_STREAM})


def build_contents(prompt: str, image: ImageInput | None = None) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = [{"text": prompt}]
    if image is not None:
        parts.append({"inline_data": {"mime_type": image.mime_type, "data": image.data}})
    return [{"role": "user", "parts": parts}]


class TierClient:
    """Issues tier requests over one shared httpx.AsyncClient.

    Args:
        client:            Open client; its transport is what tests replace.
        settings:          The request's settings snapshot.
        provider_base_url: Provider models endpoint, overridable for tests.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: GenerationSettings,
        provider_base_url: str = PROVIDER_BASE_URL,
    ) -> None:
        self._client = client
        self._settings = settings
        self._provider_base_url = provider_base_url

    def _proxy_url(self, path: str) -> str:
        return f"{(self._settings.proxy_base_url or '').rstrip('/')}{path}"

    def build_request(
        self, tier: TierKind, prompt: str, image: ImageInput | None = None
    ) -> tuple[str, dict[str, Any], float]:
        """Return (url, body, timeout) for one tier."""
        contents = build_contents(prompt, image)

        if tier is TierKind.PROXY_STREAM:
            if image is not None:
                return self._proxy_url("/api/gemini/vision-stream"), {"contents": contents}, PROXY_TIMEOUT
            body = {"prompt": prompt, "maxTokens": PROXY_STREAM_MAX_TOKENS}
            return self._proxy_url("/api/gemini/stream"), body, PROXY_TIMEOUT

        body = {"contents": contents, "generationConfig": dict(GENERATION_CONFIG)}

        if tier is TierKind.PROXY_STANDARD:
            path = "/api/gemini/vision" if image is not None else "/api/gemini/generate"
            return self._proxy_url(path), body, PROXY_TIMEOUT

        model = VISION_MODEL if image is not None else PRIMARY_MODEL
        endpoint = "streamGenerateContent" if tier is TierKind.DIRECT_STREAM else "generateContent"
        url = provider_url(model, self._settings.api_key, endpoint, base_url=self._provider_base_url)
        return url, body, VISION_TIMEOUT if image is not None else TEXT_TIMEOUT

    @staticmethod
    def dialect(tier: TierKind, image: ImageInput | None = None) -> Dialect:
        if tier is TierKind.DIRECT_STREAM:
            return "provider"
        return "proxy-vision" if image is not None else "proxy"

    async def call(
        self,
        tier: TierKind,
        prompt: str,
        image: ImageInput | None = None,
        sink: Sink | None = None,
    ) -> str:
        """Run one tier and return its non-empty text."""
        url, body, timeout = self.build_request(tier, prompt, image)
        # Direct URLs carry the API key; log the tier only.
        logger.debug(
            "tier call tier=%s vision=%s prompt_len=%d timeout=%.0fs",
            tier.value, image is not None, len(prompt), timeout,
        )

        # httpx timeouts bound each read; the deadline bounds the whole call.
        async with asyncio.timeout(timeout):
            if tier in STREAMING_TIERS:
                text = await self._stream(url, body, timeout, self.dialect(tier, image), sink)
            else:
                text = await self._standard(url, body, timeout)

        logger.debug("tier response tier=%s len=%d", tier.value, len(text))
        return text

    async def _standard(self, url: str, body: dict[str, Any], timeout: float) -> str:
        resp = await self._client.post(url, json=body, timeout=timeout)
        resp.raise_for_status()
        return extract_text(parse_json_body(resp))

    async def _stream(
        self,
        url: str,
        body: dict[str, Any],
        timeout: float,
        dialect: Dialect,
        sink: Sink | None,
    ) -> str:
        async with self._client.stream("POST", url, json=body, timeout=timeout) as resp:
            if resp.is_error:
                await resp.aread()
                resp.raise_for_status()
            text = await read_stream(resp.aiter_bytes(), dialect, sink)

        if not text.strip():
            raise GenerationError(ErrorKind.EMPTY_RESULT, "流式响应未返回任何内容")
        return text
