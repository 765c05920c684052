"""Provider constants, URL builders, and the process-wide settings store.

The store is the only place GenerationSettings is mutated. Requests never
read it implicitly: callers take snapshot() once and hand the frozen value
to the pipeline, so a concurrent update() cannot change an in-flight
request's transport choice.
"""

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from divination.models import DEFAULT_WORD_LIMIT, GenerationSettings  # noqa: F401

# ── Provider (Gemini) ────────────────────────────────────

PROVIDER_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
PRIMARY_MODEL = "gemini-2.5-flash-lite-preview-06-17"
VISION_MODEL = "gemini-2.5-flash-lite-preview-06-17"

GENERATION_CONFIG: dict[str, Any] = {
    "temperature": 0.7,
    "topK": 32,
    "topP": 1,
    "maxOutputTokens": 4096,
}
PROXY_STREAM_MAX_TOKENS = 4096

API_KEY_PREFIX = "AIza"
API_KEY_MIN_LENGTH = 20

# ── Timeouts (seconds) ───────────────────────────────────

HEALTH_TIMEOUT = 5.0
TEXT_TIMEOUT = 30.0
VISION_TIMEOUT = 60.0
PROXY_TIMEOUT = 60.0
VALIDATION_TIMEOUT = 10.0

# ── Images ───────────────────────────────────────────────

SUPPORTED_IMAGE_TYPES: tuple[str, ...] = ("image/jpeg", "image/png", "image/webp", "image/gif")
MAX_IMAGE_BYTES = 1 * 1024 * 1024

# ── Prompting / typewriter ───────────────────────────────

QUESTION_WORD_BONUS = 200
TYPEWRITER_CHUNK_SIZE = 3
TYPEWRITER_INTERVAL = 0.03


def provider_url(model: str, api_key: str, endpoint: str = "generateContent",
                 base_url: str = PROVIDER_BASE_URL) -> str:
    """{base}/{model}:{endpoint}?key={api_key}"""
    return f"{base_url.rstrip('/')}/{model}:{endpoint}?key={api_key}"


def models_list_url(api_key: str, base_url: str = PROVIDER_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}?key={api_key}"


def is_valid_api_key_format(api_key: str) -> bool:
    key = api_key.strip()
    return len(key) >= API_KEY_MIN_LENGTH and key.startswith(API_KEY_PREFIX)


def is_supported_image_type(mime_type: str) -> bool:
    return mime_type in SUPPORTED_IMAGE_TYPES


def is_valid_image_size(size: int) -> bool:
    return 0 < size <= MAX_IMAGE_BYTES


# ── Settings ─────────────────────────────────────────────

_TRUTHY = {"1", "true", "yes", "on"}


def settings_from_env(env_file: Path | None = None) -> GenerationSettings:
    """Build the initial settings from the environment (and .env, if present).

    GEMINI_API_KEY         pre-configured provider key
    DIVINATION_PROXY_URL   base URL of the self-hosted proxy
    DIVINATION_STREAMING   prefer streaming tiers ("1"/"true")
    DIVINATION_WORD_LIMIT  reply word ceiling
    """
    load_dotenv(env_file or Path.cwd() / ".env")
    fields: dict[str, Any] = {
        "api_key": os.getenv("GEMINI_API_KEY", "").strip(),
        "proxy_base_url": os.getenv("DIVINATION_PROXY_URL", "").strip() or None,
        "prefer_streaming": os.getenv("DIVINATION_STREAMING", "").strip().lower() in _TRUTHY,
    }
    word_limit = os.getenv("DIVINATION_WORD_LIMIT", "").strip()
    if word_limit:
        fields["word_limit"] = int(word_limit)
    return GenerationSettings.model_validate(fields)


class SettingsStore:
    """Holds the current GenerationSettings; update() is the only mutator."""

    def __init__(self, initial: GenerationSettings | None = None) -> None:
        self._current = initial or GenerationSettings()

    def snapshot(self) -> GenerationSettings:
        # Frozen model: handing out the instance itself is a snapshot.
        return self._current

    def update(self, fields: dict[str, Any]) -> GenerationSettings:
        """Merge fields into the settings and return the new value.

        Unknown keys are ignored; values are re-validated, so a bad update
        raises pydantic.ValidationError and leaves the store untouched.
        """
        merged = self._current.model_dump()
        for key, value in fields.items():
            if key in merged:
                merged[key] = value
        if isinstance(merged.get("api_key"), str):
            merged["api_key"] = merged["api_key"].strip()
        if isinstance(merged.get("proxy_base_url"), str):
            merged["proxy_base_url"] = merged["proxy_base_url"].strip() or None
        self._current = GenerationSettings.model_validate(merged)
        return self._current
