# Data models for the prompt layer: stored templates, references to them, and
# per-user selections.

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from ..generate.types import Message


@dataclass
class Prompt:
    """A stored instruction template, looked up by id."""
    id: str
    content: str
    title: str = ""
    type: str = ""
    description: str = ""
    meta: Optional[Dict[str, Any]] = None


@dataclass
class PromptReference:
    """An opaque prompt id found inside a system message (the carrier)."""
    id: str
    carrier: Message


@dataclass
class PromptSelection:
    """A prompt a user has added to their own list."""
    user_id: str
    prompt_id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[int] = None


@dataclass
class User:
    id: str
    email: Optional[str] = None
