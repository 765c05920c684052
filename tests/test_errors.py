"""Tests for divination.errors — classification of transport, HTTP and body failures."""

import json

import httpx
import pytest

from divination.errors import (
    ErrorKind,
    GenerationError,
    classify,
    classify_status,
    extract_text,
    parse_json_body,
)

REQUEST = httpx.Request("POST", "https://example.test/generate")


def _status_error(status: int, body: dict | None = None) -> httpx.HTTPStatusError:
    content = json.dumps(body).encode() if body is not None else b""
    response = httpx.Response(status, content=content, request=REQUEST)
    return httpx.HTTPStatusError("", request=REQUEST, response=response)


# ── classify ─────────────────────────────────────────────────


def test_connect_error_is_network_unreachable():
    err = classify(httpx.ConnectError("refused", request=REQUEST))
    assert err.kind is ErrorKind.NETWORK_UNREACHABLE


def test_read_error_is_network_unreachable():
    err = classify(httpx.ReadError("reset", request=REQUEST))
    assert err.kind is ErrorKind.NETWORK_UNREACHABLE


def test_timeout():
    err = classify(httpx.ReadTimeout("slow", request=REQUEST))
    assert err.kind is ErrorKind.TIMEOUT
    assert "超时" in err.message


def test_deadline_timeout_error_is_timeout():
    assert classify(TimeoutError()).kind is ErrorKind.TIMEOUT
    assert "图" in classify(TimeoutError(), vision=True).message


def test_timeout_vision_wording():
    err = classify(httpx.ConnectTimeout("slow", request=REQUEST), vision=True)
    assert err.kind is ErrorKind.TIMEOUT
    assert "图" in err.message


@pytest.mark.parametrize("status, kind", [
    (400, ErrorKind.INVALID_INPUT),
    (401, ErrorKind.AUTH_INVALID),
    (403, ErrorKind.PERMISSION_DENIED),
    (413, ErrorKind.INVALID_INPUT),
    (429, ErrorKind.RATE_LIMITED),
    (500, ErrorKind.SERVER_FAULT),
    (503, ErrorKind.SERVER_FAULT),
    (404, ErrorKind.UNKNOWN),
    (418, ErrorKind.UNKNOWN),
])
def test_http_status_mapping(status, kind):
    err = classify(_status_error(status))
    assert err.kind is kind
    assert err.status_code == status


def test_400_includes_provider_message():
    err = classify(_status_error(400, {"error": {"message": "API key not valid"}}))
    assert "API key not valid" in err.message


def test_400_tolerates_non_json_body():
    response = httpx.Response(400, content=b"<html>bad</html>", request=REQUEST)
    err = classify(httpx.HTTPStatusError("", request=REQUEST, response=response))
    assert err.kind is ErrorKind.INVALID_INPUT


def test_403_vision_wording():
    assert "Vision" in classify_status(403, vision=True).message
    assert "Vision" not in classify_status(403).message


def test_generation_error_passes_through():
    original = GenerationError(ErrorKind.EMPTY_RESULT, "空")
    assert classify(original) is original


def test_json_error_is_malformed():
    with pytest.raises(json.JSONDecodeError) as info:
        json.loads("{not json")
    assert classify(info.value).kind is ErrorKind.MALFORMED_RESPONSE


def test_anything_else_is_unknown():
    err = classify(RuntimeError("boom"))
    assert err.kind is ErrorKind.UNKNOWN
    assert err.message


def test_generation_error_to_dict():
    err = GenerationError(ErrorKind.RATE_LIMITED, "慢一点")
    assert err.to_dict() == {"kind": "rate_limited", "message": "慢一点"}
    assert str(err) == "慢一点"


# ── extract_text ─────────────────────────────────────────────


def test_extract_text_happy_path():
    body = {"candidates": [{"content": {"parts": [{"text": "  卦象吉。 "}]}}]}
    assert extract_text(body) == "卦象吉。"


def test_extract_text_empty_candidates():
    with pytest.raises(GenerationError) as info:
        extract_text({"candidates": []})
    assert info.value.kind is ErrorKind.EMPTY_RESULT


def test_extract_text_blank_text():
    with pytest.raises(GenerationError) as info:
        extract_text({"candidates": [{"content": {"parts": [{"text": "   "}]}}]})
    assert info.value.kind is ErrorKind.EMPTY_RESULT


@pytest.mark.parametrize("body", [
    {},
    {"candidates": "nope"},
    {"candidates": [{}]},
    {"candidates": [{"content": {"parts": []}}]},
    {"candidates": [{"content": {"parts": [{"inline": 1}]}}]},
    {"candidates": [{"content": {"parts": [{"text": 42}]}}]},
    ["not", "a", "dict"],
])
def test_extract_text_malformed(body):
    with pytest.raises(GenerationError) as info:
        extract_text(body)
    assert info.value.kind is ErrorKind.MALFORMED_RESPONSE


def test_parse_json_body_invalid():
    response = httpx.Response(200, content=b"not json", request=REQUEST)
    with pytest.raises(GenerationError) as info:
        parse_json_body(response)
    assert info.value.kind is ErrorKind.MALFORMED_RESPONSE
