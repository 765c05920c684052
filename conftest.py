from pathlib import Path

import pytest

from divination.models import (
    DreamPayload,
    FourPillars,
    GenerationSettings,
    HexagramLine,
    HexagramPayload,
    Persona,
    Pillar,
    TimeChartPayload,
)
from divination.personas import load_personas

PRESETS_PATH = Path(__file__).parent / "divination" / "presets" / "personas.json"

VALID_KEY = "AIzaSyTestKey0123456789abcdef"
PROXY_URL = "http://proxy.test"


@pytest.fixture
def personas() -> list[Persona]:
    return load_personas(PRESETS_PATH)


@pytest.fixture
def persona(personas) -> Persona:
    return next(p for p in personas if p.id == "zhouwenwang")


@pytest.fixture
def plain_persona() -> Persona:
    """A persona without any category overrides."""
    return Persona(
        id="plain",
        display_name="测试大师",
        description="用于测试的大师",
        base_prompt="你是一位测试用的占卜师。",
    )


@pytest.fixture
def hexagram_payload() -> HexagramPayload:
    values = [7, 8, 9, 7, 6, 8]
    return HexagramPayload(
        lines=[HexagramLine(value=v, changing=v in (6, 9)) for v in values],
        original_hexagram="既济",
        changed_hexagram="屯",
        changing_positions=[3, 5],
    )


@pytest.fixture
def time_chart_payload() -> TimeChartPayload:
    return TimeChartPayload(
        name="张三",
        gender="男",
        birth_date="1990-05-17",
        birth_hour=9,
        pillars=FourPillars(
            year=Pillar(stem="庚", branch="午"),
            month=Pillar(stem="辛", branch="巳"),
            day=Pillar(stem="甲", branch="子"),
            hour=Pillar(stem="己", branch="巳"),
        ),
        zodiac_animal="马",
    )


@pytest.fixture
def dream_payload() -> DreamPayload:
    return DreamPayload(dream_text="梦见自己在水中游泳，水很清。", keywords=["水", "游泳"], fortune="吉")


@pytest.fixture
def direct_settings() -> GenerationSettings:
    return GenerationSettings(api_key=VALID_KEY)


@pytest.fixture
def proxy_settings() -> GenerationSettings:
    return GenerationSettings(api_key=VALID_KEY, proxy_base_url=PROXY_URL)


@pytest.fixture
def personas_file(tmp_path) -> Path:
    """A copy of the bundled catalogue that tests may rewrite."""
    path = tmp_path / "personas.json"
    path.write_text(PRESETS_PATH.read_text(encoding="utf-8"), encoding="utf-8")
    return path
