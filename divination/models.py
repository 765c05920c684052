"""Core domain models.

Every stage of the generation pipeline operates on these types.
Pydantic is used for validation and serialisation at every data boundary.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from divination.errors import ErrorKind

Category = Literal["hexagram", "time-chart", "dream", "palm-image"]

CATEGORIES: tuple[str, ...] = ("hexagram", "time-chart", "dream", "palm-image")


# ---------------------------------------------------------------------------
# Personas
# ---------------------------------------------------------------------------

class CategoryOverride(BaseModel):
    """Persona-specific wording for one divination category."""

    model_config = ConfigDict(frozen=True)

    role_text: str
    style_text: str = ""


class Persona(BaseModel):
    """A named interpretation style ("master") that drives prompt construction."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    description: str
    base_prompt: str
    overrides: dict[Category, CategoryOverride] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Divination payloads — produced by the computation engines, read-only here
# ---------------------------------------------------------------------------

class HexagramLine(BaseModel):
    value: int = Field(ge=6, le=9)  # 6 old yin, 7 young yang, 8 young yin, 9 old yang
    changing: bool


class HexagramPayload(BaseModel):
    """A six-line coin cast, bottom line first."""

    category: Literal["hexagram"] = "hexagram"
    lines: list[HexagramLine] = Field(min_length=6, max_length=6)
    original_hexagram: str
    changed_hexagram: str | None = None
    changing_positions: list[int] = Field(default_factory=list)
    question: str | None = None


class Pillar(BaseModel):
    stem: str
    branch: str


class FourPillars(BaseModel):
    year: Pillar
    month: Pillar
    day: Pillar
    hour: Pillar


class TimeChartPayload(BaseModel):
    """A four-pillar chart computed from a birth date and hour."""

    category: Literal["time-chart"] = "time-chart"
    name: str = ""
    gender: Literal["男", "女"]
    birth_date: str
    is_lunar: bool = False
    birth_hour: int = Field(ge=0, le=23)
    pillars: FourPillars
    zodiac_animal: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    question: str | None = None


class DreamPayload(BaseModel):
    """A dream description plus the keyword classifier's verdict."""

    category: Literal["dream"] = "dream"
    dream_text: str = Field(min_length=1)
    keywords: list[str] = Field(default_factory=list)
    fortune: str | None = None
    question: str | None = None


class PalmImagePayload(BaseModel):
    """Placeholder payload for a palm photo; the image travels separately."""

    category: Literal["palm-image"] = "palm-image"
    message: str = "请分析这张手相图片"
    question: str | None = None


DivinationPayload = Annotated[
    Union[HexagramPayload, TimeChartPayload, DreamPayload, PalmImagePayload],
    Field(discriminator="category"),
]

PAYLOAD_TYPES = (HexagramPayload, TimeChartPayload, DreamPayload, PalmImagePayload)


class ImageInput(BaseModel):
    """A validated, base64-encoded image ready for a vision request."""

    model_config = ConfigDict(frozen=True)

    mime_type: str
    data: str  # base64, without any data: URL prefix
    size: int


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

DEFAULT_WORD_LIMIT = 1200


class GenerationSettings(BaseModel):
    """Per-request snapshot of the user's generation preferences."""

    model_config = ConfigDict(frozen=True)

    api_key: str = ""
    proxy_base_url: str | None = None
    prefer_streaming: bool = False
    word_limit: int = Field(default=DEFAULT_WORD_LIMIT, ge=100, le=10000)

    @property
    def proxy_configured(self) -> bool:
        return bool(self.proxy_base_url and self.proxy_base_url.strip())


# ---------------------------------------------------------------------------
# Transport bookkeeping
# ---------------------------------------------------------------------------

class TierKind(str, Enum):
    PROXY_STREAM = "proxy-stream"
    PROXY_STANDARD = "proxy-standard"
    DIRECT_STREAM = "direct-stream"
    DIRECT_STANDARD = "direct-standard"


class TransportAttempt(BaseModel):
    """One try of one tier. Never persisted."""

    tier: TierKind
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    text: str | None = None
    error_kind: ErrorKind | None = None
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error_kind is None and self.text is not None
