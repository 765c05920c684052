"""Persona catalogue — the "masters" users pick to interpret a reading.

The catalogue is a JSON file:

    {"personas": [
        {"id": "...", "display_name": "...", "description": "...",
         "base_prompt": "...",
         "overrides": {"hexagram": {"role_text": "...", "style_text": "..."}}}
    ]}

Personas are immutable once loaded. Invalid entries are skipped with a
warning.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from divination.errors import ErrorKind, GenerationError
from divination.models import Persona

logger = logging.getLogger(__name__)

PRESETS_PATH = Path(__file__).parent / "presets" / "personas.json"
DEFAULT_PERSONA_ID = "zhouwenwang"


def is_valid_persona(persona: Persona) -> bool:
    return all(
        value.strip()
        for value in (persona.id, persona.display_name, persona.description, persona.base_prompt)
    )


def load_personas(path: Path | None = None) -> list[Persona]:
    """Read and validate the persona catalogue at `path` (default: bundled presets)."""
    path = path or PRESETS_PATH
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise GenerationError(ErrorKind.INVALID_INPUT, f"无法加载大师配置文件: {path.name}") from e

    if not isinstance(raw, dict) or not isinstance(raw.get("personas"), list):
        raise GenerationError(ErrorKind.INVALID_INPUT, "配置文件格式错误：缺少personas数组")

    personas: list[Persona] = []
    for entry in raw["personas"]:
        try:
            persona = Persona.model_validate(entry)
        except ValidationError as e:
            logger.warning("Skipping invalid persona entry %r: %s", _entry_id(entry), e)
            continue
        if not is_valid_persona(persona):
            logger.warning("Skipping persona %r with blank fields", persona.id)
            continue
        personas.append(persona)

    logger.debug("Loaded %d personas from %s", len(personas), path)
    return personas


def find_persona(personas: list[Persona], persona_id: str) -> Persona | None:
    for persona in personas:
        if persona.id == persona_id:
            return persona
    return None


def default_persona(personas: list[Persona]) -> Persona | None:
    """The preferred default persona, else the first one, else None."""
    if not personas:
        return None
    return find_persona(personas, DEFAULT_PERSONA_ID) or personas[0]


def _entry_id(entry: object) -> object:
    return entry.get("id") if isinstance(entry, dict) else entry
