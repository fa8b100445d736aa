# Typed dataclasses shared by the relay server, the decoder and the upstream clients.

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

ROLES = ("user", "system", "assistant")

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 64000


@dataclass
class Message:
    """Single chat turn: system, user, or assistant."""
    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class Usage:
    """Token accounting reported once, after the last content fragment."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self):
        for name in ("prompt_tokens", "completion_tokens", "total_tokens"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Usage":
        if not isinstance(data, Mapping):
            raise ValueError(f"usage must be an object, got {type(data).__name__}")
        return cls(
            prompt_tokens=data.get("prompt_tokens", 0),
            completion_tokens=data.get("completion_tokens", 0),
            total_tokens=data.get("total_tokens", 0),
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


@dataclass
class GenerateRequest:
    """A validated request, ready to go upstream."""
    messages: List[Message]
    model: str
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    cancellation: Optional[asyncio.Event] = None

    def payload_messages(self) -> List[Dict[str, str]]:
        return [m.to_dict() for m in self.messages]


@dataclass
class GenerateOptions:
    """Caller-side knobs for the relay client."""
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    cancel_event: Optional[asyncio.Event] = None


@dataclass(frozen=True)
class UpstreamChunk:
    """One increment from the provider. Usage only ever rides on the last one."""
    content: str = ""
    usage: Optional[Usage] = None


@dataclass(frozen=True)
class StreamEvent:
    """Decoded relay output: either a content fragment or the usage record."""
    kind: str
    text: str = ""
    usage: Optional[Usage] = field(default=None)

    CONTENT = "content"
    USAGE = "usage"

    @classmethod
    def content(cls, text: str) -> "StreamEvent":
        return cls(kind=cls.CONTENT, text=text)

    @classmethod
    def usage_record(cls, usage: Usage) -> "StreamEvent":
        return cls(kind=cls.USAGE, usage=usage)
