"""Error variants raised across the relay and the classifier that turns them into
user-facing sentences.

Upstream adapters translate SDK exceptions into the variants below at the boundary,
so :func:`classify_error` matches on a closed set of types instead of probing
attributes. Anything else falls through to keyword matching on the message.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    UPSTREAM_HTTP = "upstream_http"
    NETWORK = "network"
    CANCELLED = "cancelled"
    CONFIG = "config"


class RelayError(Exception):
    """Base for every error the relay raises on purpose."""

    kind: ErrorKind = ErrorKind.UPSTREAM_HTTP

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        code: Optional[str] = None,
        type: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.type = type


class InvalidRequestError(RelayError):
    """The caller sent something we refuse to forward."""

    kind = ErrorKind.VALIDATION


class UpstreamHTTPError(RelayError):
    """The provider answered with an error status (or an error payload mid-stream)."""

    kind = ErrorKind.UPSTREAM_HTTP


class UpstreamNetworkError(RelayError):
    """Connection refused, reset, or timed out while talking to the provider."""

    kind = ErrorKind.NETWORK


class OperationCancelled(RelayError):
    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message)


class CredentialsNotConfigured(RelayError):
    kind = ErrorKind.CONFIG


class ErrorCategory(str, Enum):
    CREDENTIAL_NOT_CONFIGURED = "credential_not_configured"
    UPSTREAM_AUTH_FAILURE = "upstream_auth_failure"
    RATE_LIMITED = "rate_limited"
    INVALID_CREDENTIAL = "invalid_credential"
    GENERIC_UPSTREAM_ERROR = "generic_upstream_error"
    CONTENT_LENGTH_EXCEEDED = "content_length_exceeded"
    NETWORK_OR_TIMEOUT = "network_or_timeout"
    AUTHENTICATION_OTHER = "authentication_other"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClassifiedError:
    category: ErrorCategory
    message: str


class GenerationError(RelayError):
    """Raised by the relay client once a failure has been classified."""

    def __init__(self, classified: ClassifiedError, *, status: Optional[int] = None):
        super().__init__(classified.message, status=status)
        self.category = classified.category


_NOT_CONFIGURED = "API key not configured"
_LENGTH_KEYWORDS = ("token", "context_length_exceeded")
_NETWORK_KEYWORDS = ("network", "timeout", "fetch failed")
_AUTH_KEYWORDS = ("authentication", "认证")
_UNKNOWN_PREFIX = "生成内容失败: "


def _message_of(exc: BaseException) -> str:
    msg = getattr(exc, "message", None) or str(exc)
    return msg or exc.__class__.__name__ or "未知错误"


def _classify_http(exc: UpstreamHTTPError) -> ClassifiedError:
    msg = exc.message
    if exc.status == 401:
        return ClassifiedError(
            ErrorCategory.UPSTREAM_AUTH_FAILURE,
            f"API认证失败：{msg} (状态码: {exc.status})，请联系管理员。",
        )
    if exc.status == 429:
        return ClassifiedError(
            ErrorCategory.RATE_LIMITED,
            f"请求过于频繁：{msg} (状态码: {exc.status})，请稍后再试。",
        )
    if exc.code == "invalid_api_key":
        return ClassifiedError(
            ErrorCategory.INVALID_CREDENTIAL,
            f"无效的API密钥：{msg}。请联系管理员。",
        )
    return ClassifiedError(
        ErrorCategory.GENERIC_UPSTREAM_ERROR,
        f"上游API错误：{msg} (状态码: {exc.status}, 类型: {exc.type}, Code: {exc.code})",
    )


def classify_error(exc: BaseException) -> ClassifiedError:
    """Map any caught failure onto exactly one :class:`ErrorCategory`.

    Cancellation is not an error category; callers must handle
    ``asyncio.CancelledError`` / :class:`OperationCancelled` before getting here.
    """
    msg = _message_of(exc)

    if isinstance(exc, CredentialsNotConfigured) or _NOT_CONFIGURED in msg:
        return ClassifiedError(ErrorCategory.CREDENTIAL_NOT_CONFIGURED, "API密钥未配置，请联系管理员")

    if isinstance(exc, UpstreamHTTPError):
        return _classify_http(exc)

    if isinstance(exc, UpstreamNetworkError):
        return ClassifiedError(
            ErrorCategory.NETWORK_OR_TIMEOUT,
            "网络连接错误，请检查您的网络连接或API Base URL是否正确，并重试",
        )

    lowered = msg.lower()
    if any(k in lowered for k in _LENGTH_KEYWORDS):
        return ClassifiedError(ErrorCategory.CONTENT_LENGTH_EXCEEDED, "内容长度超出模型限制，请尝试减少输入内容")
    if any(k in lowered for k in _NETWORK_KEYWORDS):
        return ClassifiedError(ErrorCategory.NETWORK_OR_TIMEOUT, "网络连接错误，请检查您的网络连接并重试")
    if any(k in lowered for k in _AUTH_KEYWORDS):
        return ClassifiedError(ErrorCategory.AUTHENTICATION_OTHER, "API认证失败，请联系管理员")

    return ClassifiedError(ErrorCategory.UNKNOWN, f"{_UNKNOWN_PREFIX}{msg}")


_MESSAGE_PREFIXES = (
    ("API密钥未配置", ErrorCategory.CREDENTIAL_NOT_CONFIGURED),
    ("API认证失败：", ErrorCategory.UPSTREAM_AUTH_FAILURE),
    ("请求过于频繁", ErrorCategory.RATE_LIMITED),
    ("无效的API密钥", ErrorCategory.INVALID_CREDENTIAL),
    ("上游API错误", ErrorCategory.GENERIC_UPSTREAM_ERROR),
    ("内容长度超出", ErrorCategory.CONTENT_LENGTH_EXCEEDED),
    ("网络连接错误", ErrorCategory.NETWORK_OR_TIMEOUT),
    ("API认证失败，", ErrorCategory.AUTHENTICATION_OTHER),
)


def category_for_message(message: str) -> ErrorCategory:
    """Recover the category of a sentence produced by :func:`classify_error`."""
    for prefix, category in _MESSAGE_PREFIXES:
        if message.startswith(prefix):
            return category
    return classify_error(RuntimeError(message)).category


def is_classified_message(message: str) -> bool:
    """True for sentences :func:`classify_error` can produce."""
    if message.startswith(_UNKNOWN_PREFIX):
        return True
    return any(message.startswith(prefix) for prefix, _ in _MESSAGE_PREFIXES)
