"""Interpretation endpoints: whole-body and SSE stream, for readings and palm images."""

import base64
import binascii
import json
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from divination.errors import ErrorKind, GenerationError
from divination.service import build_palm_prompt, build_prompt, encode_image, interpret_palm

from .models import InterpretBody, PalmBody
from .personas import resolve_persona

logger = logging.getLogger(__name__)

router = APIRouter()

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.AUTH_INVALID: 401,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.TIMEOUT: 504,
}


def http_error(e: GenerationError) -> HTTPException:
    """Translate a GenerationError into an HTTP error; upstream trouble is a 502."""
    return HTTPException(STATUS_BY_KIND.get(e.kind, 502), e.to_dict())


def _sse(data: dict) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


def _decode_base64(value: str) -> bytes:
    if value.startswith("data:") and "," in value:
        value = value.split(",", 1)[1]
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(400, {"kind": ErrorKind.INVALID_INPUT.value, "message": "图片数据不是有效的Base64编码"})


def _event_stream(pipeline, prompt: str, settings, image=None) -> StreamingResponse:
    """SSE response: {"text": <text so far>} per frame, then {"done": true},
    or {"error": <message>, "kind": <ErrorKind>} if generation failed.
    """

    async def events():
        try:
            async for frame in pipeline.stream(prompt, settings, image=image):
                yield _sse({"text": frame})
        except GenerationError as e:
            logger.info("Streamed interpretation failed: %s", e.message)
            yield _sse({"error": e.message, "kind": e.kind.value})
            return
        yield _sse({"done": True})

    return StreamingResponse(events(), media_type="text/event-stream")


@router.post("/interpret")
async def interpret(body: InterpretBody, request: Request):
    """Generate an interpretation and return it whole."""
    persona = resolve_persona(request, body.persona_id)
    settings = request.app.state.settings.snapshot()
    try:
        prompt = build_prompt(body.payload, persona, settings, body.category, body.user_context)
        text = await request.app.state.pipeline.generate(prompt, settings)
    except GenerationError as e:
        raise http_error(e)
    return {"text": text}


@router.post("/interpret/stream")
async def interpret_stream(body: InterpretBody, request: Request):
    """Stream an interpretation as SSE."""
    persona = resolve_persona(request, body.persona_id)
    settings = request.app.state.settings.snapshot()
    try:
        prompt = build_prompt(body.payload, persona, settings, body.category, body.user_context)
    except GenerationError as e:
        raise http_error(e)
    return _event_stream(request.app.state.pipeline, prompt, settings)


@router.post("/interpret/palm")
async def interpret_palm_image(body: PalmBody, request: Request):
    """Interpret a palm photo (base64 JSON body)."""
    persona = resolve_persona(request, body.persona_id)
    settings = request.app.state.settings.snapshot()
    data = _decode_base64(body.image_base64)
    try:
        image = encode_image(data, body.mime_type)
        text = await interpret_palm(
            image, persona, settings,
            user_context=body.user_context,
            pipeline=request.app.state.pipeline,
        )
    except GenerationError as e:
        raise http_error(e)
    return {"text": text}


@router.post("/interpret/palm/stream")
async def interpret_palm_stream(body: PalmBody, request: Request):
    """Stream a palm photo interpretation as SSE. Bad images fail before streaming."""
    persona = resolve_persona(request, body.persona_id)
    settings = request.app.state.settings.snapshot()
    data = _decode_base64(body.image_base64)
    try:
        image = encode_image(data, body.mime_type)
        prompt = build_palm_prompt(persona, settings, body.user_context)
    except GenerationError as e:
        raise http_error(e)
    return _event_stream(request.app.state.pipeline, prompt, settings, image=image)
