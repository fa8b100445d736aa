# Dummy streaming client for local dev and testing without API calls.
# Echoes the last user message back word by word and reports whitespace token counts.

import asyncio
import re
from typing import AsyncIterator, List

from ..types import GenerateRequest, UpstreamChunk, Usage

_PIECES = re.compile(r"\S+\s*|\s+")


class EchoDevClient:
    def __init__(self, delay: float = 0.0):
        self.model = "echo-dev"
        self.delay = delay

    def set_model(self, model: str):
        self.model = model

    def _compose(self, request: GenerateRequest) -> str:
        user_inputs = [m.content for m in request.messages if m.role == "user"]
        return f"[ECHO RESPONSE]\n{user_inputs[-1] if user_inputs else '(no user input)'}"

    async def open_stream(self, request: GenerateRequest) -> AsyncIterator[UpstreamChunk]:
        return self._iter_chunks(request)

    async def _iter_chunks(self, request: GenerateRequest) -> AsyncIterator[UpstreamChunk]:
        pieces: List[str] = _PIECES.findall(self._compose(request))
        prompt_tokens = sum(len(m.content.split()) for m in request.messages)
        completion_tokens = sum(1 for p in pieces if p.strip())
        for i, piece in enumerate(pieces):
            if self.delay:
                await asyncio.sleep(self.delay)
            usage = None
            if i == len(pieces) - 1:
                usage = Usage(
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    total_tokens=prompt_tokens + completion_tokens,
                )
            yield UpstreamChunk(content=piece, usage=usage)
