"""Error taxonomy for the generation pipeline.

Every failure that leaves the pipeline is a GenerationError carrying one
ErrorKind from a small closed set plus a user-facing message in Simplified
Chinese. Transport, HTTP and parse failures are mapped by classify();
2xx bodies are unpacked by extract_text(), which raises the same error type
when the provider answered with something unusable.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import httpx


class ErrorKind(str, Enum):
    NETWORK_UNREACHABLE = "network_unreachable"
    TIMEOUT = "timeout"
    AUTH_INVALID = "auth_invalid"
    PERMISSION_DENIED = "permission_denied"
    RATE_LIMITED = "rate_limited"
    SERVER_FAULT = "server_fault"
    MALFORMED_RESPONSE = "malformed_response"
    EMPTY_RESULT = "empty_result"
    INVALID_INPUT = "invalid_input"
    UNKNOWN = "unknown"


class GenerationError(Exception):
    """Raised when a generation request (or its input) cannot be fulfilled."""

    def __init__(self, kind: ErrorKind, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.attempts: list = []  # TransportAttempt records, filled in by the pipeline

    def __repr__(self) -> str:
        return f"GenerationError({self.kind.value!r}, {self.message!r})"

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "message": self.message}


# ---------------------------------------------------------------------------
# classify — raw failure → GenerationError
# ---------------------------------------------------------------------------

def classify(exc: BaseException, *, vision: bool = False) -> GenerationError:
    """Map any failure raised while talking to a tier onto the taxonomy.

    `vision` selects the image-specific wording for the cases where the
    user can act on it (bad image, image too large, slow upload).
    """
    if isinstance(exc, GenerationError):
        return exc

    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        if vision:
            return GenerationError(ErrorKind.TIMEOUT, "图像分析超时，请稍后重试或选择较小的图片")
        return GenerationError(ErrorKind.TIMEOUT, "API调用超时，请检查网络连接后重试")

    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        return classify_status(response.status_code, _provider_detail(response), vision=vision)

    if isinstance(exc, httpx.DecodingError):
        return GenerationError(ErrorKind.MALFORMED_RESPONSE, "API返回数据无法解码")

    if isinstance(exc, httpx.RequestError):
        # Connection refused, DNS failure, reset mid-read: no usable response.
        return GenerationError(ErrorKind.NETWORK_UNREACHABLE, "网络连接失败，请检查网络连接后重试")

    if isinstance(exc, ValueError):  # includes json.JSONDecodeError
        return GenerationError(ErrorKind.MALFORMED_RESPONSE, "API返回数据格式错误")

    return GenerationError(ErrorKind.UNKNOWN, "未知错误发生")


def classify_status(status: int, detail: str | None = None, *, vision: bool = False) -> GenerationError:
    """Map a non-2xx HTTP status onto the taxonomy."""
    if status == 400:
        fallback = "请求参数有误，请检查图片格式和大小" if vision else "请求参数有误"
        return GenerationError(ErrorKind.INVALID_INPUT, f"API请求错误: {detail or fallback}", status_code=status)
    if status == 401:
        return GenerationError(ErrorKind.AUTH_INVALID, "API密钥无效，请检查设置中的Gemini API密钥", status_code=status)
    if status == 403:
        message = "API访问被拒绝，请检查API密钥权限"
        if vision:
            message += "或是否启用了Vision API"
        return GenerationError(ErrorKind.PERMISSION_DENIED, message, status_code=status)
    if status == 413:
        message = "图片文件过大，请选择较小的图片文件" if vision else "请求内容过大，请精简后重试"
        return GenerationError(ErrorKind.INVALID_INPUT, message, status_code=status)
    if status == 429:
        return GenerationError(ErrorKind.RATE_LIMITED, "API调用频率超限，请稍后再试", status_code=status)
    if 500 <= status < 600:
        return GenerationError(ErrorKind.SERVER_FAULT, "Gemini服务器内部错误，请稍后再试", status_code=status)
    return GenerationError(
        ErrorKind.UNKNOWN,
        f"API调用失败 (HTTP {status}): {detail or '未知错误'}",
        status_code=status,
    )


def _provider_detail(response: httpx.Response) -> str | None:
    """Pull `error.message` out of a provider error body, if there is one."""
    try:
        body = response.json()
    except (ValueError, httpx.StreamError):
        return None
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str):
        return error
    return None


# ---------------------------------------------------------------------------
# extract_text — 2xx body → non-empty text
# ---------------------------------------------------------------------------

def extract_text(body: Any) -> str:
    """Return the first candidate's text from a generateContent-shaped body.

    Response: {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}
    """
    if not isinstance(body, dict):
        raise GenerationError(ErrorKind.MALFORMED_RESPONSE, "API返回数据格式错误")

    candidates = body.get("candidates")
    if not isinstance(candidates, list):
        raise GenerationError(ErrorKind.MALFORMED_RESPONSE, "API返回数据格式错误：没有候选结果")
    if not candidates:
        raise GenerationError(ErrorKind.EMPTY_RESULT, "API未返回任何候选结果")

    try:
        text = candidates[0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        raise GenerationError(ErrorKind.MALFORMED_RESPONSE, "API返回数据格式错误：没有内容部分") from None

    if not isinstance(text, str):
        raise GenerationError(ErrorKind.MALFORMED_RESPONSE, "API返回数据格式错误：文本字段无效")
    if not text.strip():
        raise GenerationError(ErrorKind.EMPTY_RESULT, "API返回的分析结果为空")
    return text.strip()


def parse_json_body(response: httpx.Response) -> Any:
    """Decode a response body as JSON, classifying failure as MALFORMED_RESPONSE."""
    try:
        return response.json()
    except ValueError as e:  # JSONDecodeError, UnicodeDecodeError
        raise GenerationError(ErrorKind.MALFORMED_RESPONSE, "API返回数据不是有效的JSON") from e
