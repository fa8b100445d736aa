"""Wire format of the relay stream.

    <content bytes>* [ "\\n__USAGE_DATA__:" <compact usage json> ] [ "\\n\\nERROR: " <message> ]

Content is raw UTF-8. The usage record appears at most once, after all content and
never after the error escape.
"""

from __future__ import annotations

from typing import Optional, Tuple

from ..generate.types import Usage

ENCODING = "utf-8"
USAGE_MARKER = "__USAGE_DATA__:"
USAGE_DELIMITER = "\n" + USAGE_MARKER
ERROR_PREFIX = "\n\nERROR: "


def encode_content(text: str) -> bytes:
    return text.encode(ENCODING)


def encode_usage(usage: Usage) -> bytes:
    return (USAGE_DELIMITER + usage.to_json()).encode(ENCODING)


def encode_error(message: str) -> bytes:
    return (ERROR_PREFIX + message).encode(ENCODING)


def split_inline_error(text: str) -> Tuple[str, Optional[str]]:
    """Split decoded output into (content, error message or None)."""
    idx = text.rfind(ERROR_PREFIX)
    if idx < 0:
        return text, None
    return text[:idx], text[idx + len(ERROR_PREFIX):]
