"""Tests for divination.config — URL builders, format checks, settings store."""

import pytest
from pydantic import ValidationError

from divination.config import (
    MAX_IMAGE_BYTES,
    SettingsStore,
    is_supported_image_type,
    is_valid_api_key_format,
    is_valid_image_size,
    models_list_url,
    provider_url,
    settings_from_env,
)
from divination.models import GenerationSettings


def test_provider_url():
    url = provider_url("gemini-x", "AIzaKEY", "streamGenerateContent", base_url="https://p.test/models/")
    assert url == "https://p.test/models/gemini-x:streamGenerateContent?key=AIzaKEY"


def test_provider_url_default_endpoint():
    assert provider_url("m", "k").endswith("/m:generateContent?key=k")


def test_models_list_url():
    assert models_list_url("k", base_url="https://p.test/models") == "https://p.test/models?key=k"


@pytest.mark.parametrize("key, ok", [
    ("AIzaSyTestKey0123456789abcdef", True),
    ("  AIzaSyTestKey0123456789  ", True),
    ("AIza123", False),
    ("sk-0123456789abcdefghijkl", False),
    ("", False),
])
def test_api_key_format(key, ok):
    assert is_valid_api_key_format(key) is ok


def test_image_checks():
    assert is_supported_image_type("image/png")
    assert not is_supported_image_type("image/bmp")
    assert is_valid_image_size(MAX_IMAGE_BYTES)
    assert not is_valid_image_size(MAX_IMAGE_BYTES + 1)
    assert not is_valid_image_size(0)


# ── settings_from_env ────────────────────────────────────────


def test_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("GEMINI_API_KEY", " AIzaSyTestKey0123456789 ")
    monkeypatch.setenv("DIVINATION_PROXY_URL", "http://proxy.test")
    monkeypatch.setenv("DIVINATION_STREAMING", "true")
    monkeypatch.setenv("DIVINATION_WORD_LIMIT", "800")
    settings = settings_from_env(tmp_path / "missing.env")
    assert settings.api_key == "AIzaSyTestKey0123456789"
    assert settings.proxy_base_url == "http://proxy.test"
    assert settings.prefer_streaming is True
    assert settings.word_limit == 800


def test_settings_from_env_reads_dotenv(monkeypatch, tmp_path):
    for name in ("GEMINI_API_KEY", "DIVINATION_PROXY_URL", "DIVINATION_STREAMING", "DIVINATION_WORD_LIMIT"):
        monkeypatch.delenv(name, raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("DIVINATION_PROXY_URL=http://from-dotenv.test\n")
    settings = settings_from_env(env_file)
    assert settings.proxy_base_url == "http://from-dotenv.test"
    assert settings.prefer_streaming is False


# ── SettingsStore ────────────────────────────────────────────


def test_store_partial_update():
    store = SettingsStore()
    updated = store.update({"prefer_streaming": True, "unknown": 1})
    assert updated.prefer_streaming is True
    assert store.snapshot() is updated


def test_store_normalises_strings():
    store = SettingsStore(GenerationSettings(proxy_base_url="http://p"))
    updated = store.update({"api_key": "  AIzaKEY  ", "proxy_base_url": "   "})
    assert updated.api_key == "AIzaKEY"
    assert updated.proxy_base_url is None


def test_store_rejects_invalid_update():
    store = SettingsStore()
    before = store.snapshot()
    with pytest.raises(ValidationError):
        store.update({"word_limit": 5})
    assert store.snapshot() is before


def test_snapshot_unaffected_by_later_update():
    store = SettingsStore()
    snapshot = store.snapshot()
    store.update({"prefer_streaming": True})
    assert snapshot.prefer_streaming is False
