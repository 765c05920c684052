"""High-level operations used by the API layer.

    interpret       — structured reading → prompt → generated interpretation
    interpret_palm  — palm photo → vision request → interpretation
    encode_image    — raw upload bytes → validated ImageInput
    validate_api_key — format check plus a live model-listing call
"""

from __future__ import annotations

import asyncio
import base64
import logging

import httpx

from divination.config import VALIDATION_TIMEOUT, is_valid_api_key_format, models_list_url
from divination.errors import ErrorKind, GenerationError, classify
from divination.models import GenerationSettings, ImageInput, PalmImagePayload, Persona
from divination.pipeline import GenerationPipeline, validate_image
from divination.prompts import assemble
from divination.sse import Sink

logger = logging.getLogger(__name__)


def build_prompt(
    payload,
    persona: Persona,
    settings: GenerationSettings,
    category: str | None = None,
    user_context: str | None = None,
) -> str:
    """Assemble the prompt for a reading. `category` defaults to the payload's own."""
    return assemble(
        persona,
        payload,
        category or getattr(payload, "category", None),
        user_context,
        word_limit=settings.word_limit,
    )


async def interpret(
    payload,
    persona: Persona,
    settings: GenerationSettings,
    *,
    category: str | None = None,
    user_context: str | None = None,
    sink: Sink | None = None,
    pipeline: GenerationPipeline | None = None,
) -> str:
    prompt = build_prompt(payload, persona, settings, category, user_context)
    pipeline = pipeline or GenerationPipeline()
    return await pipeline.generate(prompt, settings, sink=sink)


def build_palm_prompt(
    persona: Persona,
    settings: GenerationSettings,
    user_context: str | None = None,
) -> str:
    payload = PalmImagePayload(question=user_context or None)
    return assemble(persona, payload, "palm-image", word_limit=settings.word_limit)


async def interpret_palm(
    image: ImageInput,
    persona: Persona,
    settings: GenerationSettings,
    *,
    user_context: str | None = None,
    sink: Sink | None = None,
    pipeline: GenerationPipeline | None = None,
) -> str:
    validate_image(image)
    prompt = build_palm_prompt(persona, settings, user_context)
    pipeline = pipeline or GenerationPipeline()
    return await pipeline.generate(prompt, settings, image=image, sink=sink)


def encode_image(data: bytes, mime_type: str) -> ImageInput:
    """Validate raw image bytes and base64-encode them for a vision request."""
    image = ImageInput(
        mime_type=mime_type.strip().lower(),
        data=base64.b64encode(data).decode("ascii"),
        size=len(data),
    )
    validate_image(image)
    return image


async def validate_api_key(
    api_key: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Check a Gemini API key against the model listing endpoint.

    Returns True on success; raises GenerationError describing why not.
    """
    key = api_key.strip()
    if not is_valid_api_key_format(key):
        raise GenerationError(ErrorKind.INVALID_INPUT, "API Key格式不正确，Gemini API Key应该以AIza开头")

    try:
        async with asyncio.timeout(VALIDATION_TIMEOUT):
            async with httpx.AsyncClient(transport=transport, timeout=VALIDATION_TIMEOUT) as client:
                resp = await client.get(models_list_url(key))
                resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        logger.warning("API key validation failed with HTTP %d", status)
        if status == 400:
            raise GenerationError(ErrorKind.AUTH_INVALID, "API Key无效或已被禁用", status_code=status) from e
        if status == 403:
            raise GenerationError(ErrorKind.PERMISSION_DENIED, "API Key权限不足", status_code=status) from e
        if status == 429:
            raise GenerationError(ErrorKind.RATE_LIMITED, "API请求频率限制，请稍后再试", status_code=status) from e
        raise classify(e) from e
    except (httpx.TimeoutException, TimeoutError) as e:
        raise GenerationError(ErrorKind.TIMEOUT, "验证请求超时，请检查网络连接后重试") from e
    except httpx.RequestError as e:
        raise GenerationError(ErrorKind.NETWORK_UNREACHABLE, "网络连接失败，请检查网络连接") from e

    logger.info("API key validated")
    return True
