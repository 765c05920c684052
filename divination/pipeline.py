"""Generation pipeline — runs one prompt through the transport tiers.

Request flow:
  1. If a proxy is configured, probe it. When healthy, try the proxy tier
     matching prefer_streaming (proxy-stream, or proxy-standard replayed
     through the typewriter).
  2. Any proxy failure is logged and falls through, once, to the direct tier.
  3. Direct tier: check the API key, try direct-stream, then once
     direct-standard (typewriter replay).
  4. The first success wins. If everything failed, the last tier's
     classified error is raised, with every TransportAttempt attached.

Callers get incremental text either through a sink callable (run/generate)
or as an async iterator (stream). Frames within one request never shrink
and the last frame always equals the returned text.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import suppress

import httpx
from pydantic import BaseModel, Field

from divination.config import (
    PROVIDER_BASE_URL,
    TYPEWRITER_CHUNK_SIZE,
    TYPEWRITER_INTERVAL,
    is_supported_image_type,
    is_valid_api_key_format,
    is_valid_image_size,
)
from divination.errors import ErrorKind, GenerationError, classify
from divination.health import probe
from divination.models import GenerationSettings, ImageInput, TierKind, TransportAttempt
from divination.sse import Sink
from divination.tiers import STREAMING_TIERS, TierClient
from divination.typewriter import simulate

logger = logging.getLogger(__name__)


class GenerationOutcome(BaseModel):
    text: str
    attempts: list[TransportAttempt] = Field(default_factory=list)


def validate_image(image: ImageInput) -> None:
    """Raise INVALID_INPUT for an image no tier would accept."""
    if not image.data or image.size <= 0:
        raise GenerationError(ErrorKind.INVALID_INPUT, "图片数据为空，请重新选择图片")
    if not is_supported_image_type(image.mime_type):
        raise GenerationError(
            ErrorKind.INVALID_INPUT,
            f"不支持的图片格式: {image.mime_type}，请使用JPEG、PNG、WEBP或GIF格式",
        )
    # The declared size cannot be smaller than what the payload decodes to.
    decoded = len(image.data) * 3 // 4 - image.data.count("=", -2)
    if not is_valid_image_size(max(image.size, decoded)):
        raise GenerationError(ErrorKind.INVALID_INPUT, "图片文件过大，请选择小于1MB的图片")


def check_api_key(settings: GenerationSettings) -> None:
    """Raise unless the direct tier has a usable key."""
    if not settings.api_key:
        if settings.proxy_configured:
            raise GenerationError(
                ErrorKind.AUTH_INVALID,
                "后端服务器不可用，且未配置有效的Gemini API密钥。请检查服务器状态或配置API密钥。",
            )
        raise GenerationError(ErrorKind.AUTH_INVALID, "请先在设置中配置有效的Gemini API密钥")
    if not is_valid_api_key_format(settings.api_key):
        raise GenerationError(ErrorKind.INVALID_INPUT, "API密钥格式无效，Gemini API密钥应以AIza开头")


class _RequestSink:
    """Wraps the caller's sink so frames never repeat or shrink."""

    def __init__(self, sink: Sink) -> None:
        self._sink = sink
        self.last: str | None = None

    def __call__(self, text: str) -> None:
        if self.last is not None and len(text) <= len(self.last):
            return
        self.last = text
        self._sink(text)

    def finish(self, text: str) -> None:
        """Deliver the final text, even if a failed tier got further."""
        if text == self.last:
            return
        if self.last is not None and len(text) < len(self.last):
            logger.warning(
                "Final text (%d chars) is shorter than an earlier partial frame (%d chars)",
                len(text), len(self.last),
            )
        self.last = text
        self._sink(text)


class GenerationPipeline:
    """Tier selection, fallback and incremental delivery for one prompt at a time.

    Args:
        transport:           httpx transport for every request (tests pass
                             an httpx.MockTransport). None means the network.
        typewriter_interval: Delay between replayed frames, in seconds.
        chunk_size:          Code points added per replayed frame.
        provider_base_url:   Provider models endpoint.
    """

    def __init__(
        self,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        typewriter_interval: float = TYPEWRITER_INTERVAL,
        chunk_size: int = TYPEWRITER_CHUNK_SIZE,
        provider_base_url: str = PROVIDER_BASE_URL,
    ) -> None:
        self._transport = transport
        self._interval = typewriter_interval
        self._chunk_size = chunk_size
        self._provider_base_url = provider_base_url

    async def run(
        self,
        prompt: str,
        settings: GenerationSettings,
        *,
        image: ImageInput | None = None,
        sink: Sink | None = None,
    ) -> GenerationOutcome:
        """Generate text for `prompt`; raises GenerationError when every tier failed."""
        attempts: list[TransportAttempt] = []
        try:
            text = await self._run(prompt, settings, image, sink, attempts)
        except GenerationError as e:
            e.attempts = attempts
            raise
        return GenerationOutcome(text=text, attempts=attempts)

    async def generate(
        self,
        prompt: str,
        settings: GenerationSettings,
        *,
        image: ImageInput | None = None,
        sink: Sink | None = None,
    ) -> str:
        outcome = await self.run(prompt, settings, image=image, sink=sink)
        return outcome.text

    async def stream(
        self,
        prompt: str,
        settings: GenerationSettings,
        *,
        image: ImageInput | None = None,
    ) -> AsyncIterator[str]:
        """Yield frames as they arrive. Closing the iterator cancels the request.

        A failed request raises its GenerationError from the iterator after
        any frames already produced.
        """
        queue: asyncio.Queue = asyncio.Queue()
        finished = object()

        async def _produce() -> None:
            try:
                await self.run(prompt, settings, image=image, sink=queue.put_nowait)
            finally:
                queue.put_nowait(finished)

        task = asyncio.create_task(_produce())
        try:
            while True:
                frame = await queue.get()
                if frame is finished:
                    break
                yield frame
            await task
        finally:
            if not task.done():
                logger.debug("Stream consumer went away, cancelling request")
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

    # ------------------------------------------------------------------
    # Tier state machine
    # ------------------------------------------------------------------

    async def _run(
        self,
        prompt: str,
        settings: GenerationSettings,
        image: ImageInput | None,
        sink: Sink | None,
        attempts: list[TransportAttempt],
    ) -> str:
        if not prompt.strip():
            raise GenerationError(ErrorKind.INVALID_INPUT, "提示词不能为空")
        if image is not None:
            validate_image(image)

        request_sink = _RequestSink(sink) if sink is not None else None
        logger.info(
            "generation start proxy=%s streaming=%s vision=%s prompt_len=%d",
            settings.proxy_configured, settings.prefer_streaming, image is not None, len(prompt),
        )

        async with httpx.AsyncClient(transport=self._transport) as client:
            tiers = TierClient(client, settings, provider_base_url=self._provider_base_url)

            if settings.proxy_configured:
                if await probe(settings.proxy_base_url, client=client):
                    tier = TierKind.PROXY_STREAM if settings.prefer_streaming else TierKind.PROXY_STANDARD
                    try:
                        return await self._attempt(tiers, tier, prompt, image, request_sink, attempts)
                    except GenerationError:
                        logger.info("Proxy tier failed, falling back to the direct provider")
                else:
                    logger.info("Proxy unavailable, falling back to the direct provider")

            check_api_key(settings)

            try:
                return await self._attempt(
                    tiers, TierKind.DIRECT_STREAM, prompt, image, request_sink, attempts
                )
            except GenerationError:
                logger.info("Direct stream failed, retrying with a standard request")

            return await self._attempt(
                tiers, TierKind.DIRECT_STANDARD, prompt, image, request_sink, attempts
            )

    async def _attempt(
        self,
        tiers: TierClient,
        tier: TierKind,
        prompt: str,
        image: ImageInput | None,
        sink: _RequestSink | None,
        attempts: list[TransportAttempt],
    ) -> str:
        attempt = TransportAttempt(tier=tier)
        attempts.append(attempt)
        try:
            if tier in STREAMING_TIERS:
                text = await tiers.call(tier, prompt, image, sink)
            else:
                text = await tiers.call(tier, prompt, image)
                if sink is not None:
                    await simulate(text, sink, self._chunk_size, self._interval)
        except Exception as e:
            error = classify(e, vision=image is not None)
            attempt.error_kind = error.kind
            attempt.message = error.message
            logger.warning("Tier %s failed (%s): %s", tier.value, error.kind.value, error.message)
            if error is e:
                raise
            raise error from e

        attempt.text = text
        if sink is not None:
            sink.finish(text)
        logger.info("generation done tier=%s len=%d", tier.value, len(text))
        return text
