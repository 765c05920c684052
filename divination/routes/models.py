"""Pydantic request/response models for API endpoints."""

from pydantic import BaseModel

from divination.models import Category, DivinationPayload


class InterpretBody(BaseModel):
    payload: DivinationPayload
    persona_id: str | None = None
    category: Category | None = None
    user_context: str | None = None


class PalmBody(BaseModel):
    image_base64: str  # raw base64 or a data: URL
    mime_type: str
    persona_id: str | None = None
    user_context: str | None = None


class ValidateKeyBody(BaseModel):
    api_key: str


class UpdateSettings(BaseModel):
    api_key: str | None = None
    proxy_base_url: str | None = None
    prefer_streaming: bool | None = None
    word_limit: int | None = None
