"""Health check, settings, and API key validation endpoints."""

from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError

from divination.errors import GenerationError
from divination.models import GenerationSettings
from divination.service import validate_api_key

from .models import UpdateSettings, ValidateKeyBody

router = APIRouter()


def _public(settings: GenerationSettings) -> dict:
    """Settings as the client sees them; the key itself never leaves the server."""
    return {
        "has_api_key": bool(settings.api_key),
        "proxy_base_url": settings.proxy_base_url,
        "prefer_streaming": settings.prefer_streaming,
        "word_limit": settings.word_limit,
    }


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings(request: Request):
    """Get the current generation settings (API key masked)."""
    return _public(request.app.state.settings.snapshot())


@router.patch("/settings")
async def update_settings(body: UpdateSettings, request: Request):
    """Update generation settings (partial merge)."""
    try:
        updated = request.app.state.settings.update(body.model_dump(exclude_unset=True))
    except ValidationError as e:
        raise HTTPException(422, e.errors(include_url=False, include_context=False))
    return _public(updated)


@router.post("/validate-key")
async def validate_key(body: ValidateKeyBody, request: Request):
    """Check an API key against the provider without saving it."""
    try:
        await validate_api_key(body.api_key, transport=request.app.state.transport)
    except GenerationError as e:
        return {"ok": False, **e.to_dict()}
    return {"ok": True}
