# Expands prompt references inside system messages into the stored template text.
#
# Two template dialects:
#   - tagged: the system message carries <提示词内容>...</提示词内容>; only the text
#     between the tags is replaced, and the character policy is added once.
#   - legacy: no tags; the message becomes defense clause + policy clause + prompt.
# Expansion is best effort: any failure keeps the original message.

from __future__ import annotations

import logging
import re
from typing import List, Optional

from ..generate.types import Message
from .store import PromptLookup
from .templates import REFERENCE_PATTERN, REFERENCE_PREFIX, expand_legacy, expand_tagged, is_tagged
from .types import PromptReference

logger = logging.getLogger(__name__)

_REFERENCE = re.compile(REFERENCE_PATTERN)


def find_reference(message: Message) -> Optional[PromptReference]:
    if message.role != "system" or REFERENCE_PREFIX not in message.content:
        return None
    m = _REFERENCE.search(message.content)
    if not m:
        return None
    return PromptReference(id=m.group(1), carrier=message)


class TemplateExpander:
    def __init__(self, lookup: PromptLookup):
        self.lookup = lookup

    def expand(self, messages: List[Message]) -> List[Message]:
        """Return new message objects; the caller's list is left untouched."""
        return [self.expand_message(m) for m in messages]

    def expand_message(self, message: Message) -> Message:
        ref = find_reference(message)
        if ref is None:
            if message.role == "system" and REFERENCE_PREFIX in message.content:
                logger.warning("could not extract prompt id from system message")
            return Message(role=message.role, content=message.content)

        logger.info("resolving prompt reference %s", ref.id)
        try:
            prompt = self.lookup.get_prompt(ref.id)
        except Exception as e:
            logger.error("prompt lookup failed for %s: %s", ref.id, e)
            return Message(role=message.role, content=message.content)
        if prompt is None:
            logger.warning("prompt %s not found, keeping original message", ref.id)
            return Message(role=message.role, content=message.content)

        carrier = ref.carrier.content
        try:
            if is_tagged(carrier):
                content = expand_tagged(carrier, prompt.content)
            else:
                content = expand_legacy(prompt.content)
        except ValueError as e:
            logger.error("cannot expand prompt %s: %s", ref.id, e)
            return Message(role=message.role, content=message.content)

        return Message(role="system", content=content)
