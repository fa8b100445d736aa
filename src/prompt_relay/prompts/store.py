# Prompt lookup and per-user prompt selections.
#
# PromptStore resolves prompt ids for the template expander; it is loaded once
# from a YAML file of the form:
#
#   prompts:
#     <id>:
#       title: ...
#       content: ...
#
# SelectionRepository keeps which prompts each user picked, on top of any
# record store offering get_all / add / remove.

from __future__ import annotations

import logging
import os
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Protocol

import yaml

from .types import Prompt, PromptSelection, User

logger = logging.getLogger(__name__)


class PromptLookupError(RuntimeError):
    """The prompt source could not be read."""


class NotAuthenticated(RuntimeError):
    """No current user for an operation that needs one."""


class PromptLookup(Protocol):
    def get_prompt(self, prompt_id: str) -> Optional[Prompt]: ...


class PromptStore:
    def __init__(self, prompts: Optional[Iterable[Prompt]] = None):
        self._prompts: Dict[str, Prompt] = {p.id: p for p in (prompts or [])}

    @classmethod
    def from_yaml(cls, path: str) -> "PromptStore":
        if not os.path.exists(path):
            raise PromptLookupError(f"Prompt file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise PromptLookupError(f"Cannot read prompt file {path}: {e}") from e

        entries = data.get("prompts", {}) if isinstance(data, dict) else None
        if not isinstance(entries, dict):
            raise PromptLookupError(f"'prompts' must be a mapping in {path}")

        prompts = []
        for key, p in entries.items():
            if isinstance(p, str):
                p = {"content": p}
            elif not isinstance(p, dict):
                p = {}
            prompts.append(
                Prompt(
                    id=str(key),
                    content=str(p.get("content", "")),
                    title=p.get("title", ""),
                    type=p.get("type", ""),
                    description=p.get("description", ""),
                    meta=p,
                )
            )
        logger.info("loaded %d prompts from %s", len(prompts), path)
        return cls(prompts)

    def add(self, prompt: Prompt) -> Prompt:
        self._prompts[prompt.id] = prompt
        return prompt

    def get_prompt(self, prompt_id: str) -> Optional[Prompt]:
        return self._prompts.get(str(prompt_id))

    def __len__(self) -> int:
        return len(self._prompts)


# ------------------------------------------------------------
# Selections
# ------------------------------------------------------------
class RecordStore(Protocol):
    def get_all(self) -> List[PromptSelection]: ...

    def add(self, record: PromptSelection) -> PromptSelection: ...

    def remove(self, record_id: int) -> None: ...


class InMemoryRecordStore:
    def __init__(self):
        self._records: Dict[int, PromptSelection] = {}
        self._next_id = 1

    def get_all(self) -> List[PromptSelection]:
        return list(self._records.values())

    def add(self, record: PromptSelection) -> PromptSelection:
        stored = replace(record, id=self._next_id)
        self._records[stored.id] = stored
        self._next_id += 1
        return stored

    def remove(self, record_id: int) -> None:
        self._records.pop(record_id, None)


class SelectionRepository:
    """Prompts selected by the current user.

    Reads degrade to "nothing selected" when there is no user or the store fails;
    writes raise instead.
    """

    def __init__(self, records: RecordStore, current_user: Callable[[], Optional[User]]):
        self.records = records
        self.current_user = current_user

    def _require_user(self) -> User:
        user = self.current_user()
        if user is None:
            raise NotAuthenticated("用户未登录")
        return user

    def _find(self, user_id: str, prompt_id: str) -> Optional[PromptSelection]:
        for s in self.records.get_all():
            if s.user_id == user_id and str(s.prompt_id) == str(prompt_id):
                return s
        return None

    def list_selected(self) -> List[str]:
        user = self.current_user()
        if user is None:
            return []
        try:
            return [str(s.prompt_id) for s in self.records.get_all() if s.user_id == user.id]
        except Exception as e:
            logger.error("failed to list prompt selections: %s", e)
            return []

    def add(self, prompt_id: str) -> PromptSelection:
        user = self._require_user()
        existing = self._find(user.id, prompt_id)
        if existing is not None:
            return existing
        return self.records.add(PromptSelection(user_id=user.id, prompt_id=str(prompt_id)))

    def remove(self, prompt_id: str) -> None:
        user = self._require_user()
        existing = self._find(user.id, prompt_id)
        if existing is not None and existing.id is not None:
            self.records.remove(existing.id)

    def is_selected(self, prompt_id: str) -> bool:
        user = self.current_user()
        if user is None:
            return False
        try:
            return self._find(user.id, prompt_id) is not None
        except Exception as e:
            logger.error("failed to check prompt selection: %s", e)
            return False
