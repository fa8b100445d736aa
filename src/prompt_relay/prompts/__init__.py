# Makes the folder importable as a package.
# Exports the expander and prompt store for convenience.

from .expander import TemplateExpander
from .store import PromptStore, SelectionRepository, InMemoryRecordStore
from .types import Prompt, PromptSelection, User

__all__ = [
    "TemplateExpander",
    "PromptStore",
    "SelectionRepository",
    "InMemoryRecordStore",
    "Prompt",
    "PromptSelection",
    "User",
]
