# Async client for OpenAI-compatible Chat Completions endpoints.
# Streams with usage reporting and translates SDK exceptions into relay errors.

from __future__ import annotations

import logging
from typing import AsyncIterator, Optional

import openai
from openai import AsyncOpenAI

from ..types import GenerateRequest, UpstreamChunk, Usage
from ...relay.errors import RelayError, UpstreamHTTPError, UpstreamNetworkError

logger = logging.getLogger(__name__)


def translate_error(e: openai.OpenAIError) -> RelayError:
    """Turn an SDK exception into one of the tagged relay variants."""
    if isinstance(e, openai.APIConnectionError):
        # APITimeoutError is a subclass
        return UpstreamNetworkError(str(e) or e.__class__.__name__)
    if isinstance(e, openai.APIStatusError):
        return UpstreamHTTPError(e.message, status=e.status_code, code=e.code, type=e.type)
    if isinstance(e, openai.APIError):
        return UpstreamHTTPError(e.message, code=e.code, type=e.type)
    return UpstreamHTTPError(str(e))


class OpenAIClient:
    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout: Optional[float] = None,
    ):
        self.model = model
        kwargs = {"api_key": api_key}
        if base_url:
            kwargs["base_url"] = base_url
        if timeout is not None:
            kwargs["timeout"] = timeout
        self.client = AsyncOpenAI(**kwargs)

    @classmethod
    def from_settings(cls, settings) -> "OpenAIClient":
        return cls(
            api_key=settings.require_credentials(),
            base_url=settings.OPENAI_BASE_URL,
            model=settings.DEFAULT_MODEL,
            timeout=settings.REQUEST_TIMEOUT,
        )

    def set_model(self, model: str):
        self.model = model

    async def open_stream(self, request: GenerateRequest) -> AsyncIterator[UpstreamChunk]:
        """Start the upstream call. Errors here happen before any byte is relayed."""
        try:
            stream = await self.client.chat.completions.create(
                model=request.model or self.model,
                messages=request.payload_messages(),
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                stream=True,
                stream_options={"include_usage": True},
            )
        except openai.OpenAIError as e:
            raise translate_error(e) from e
        logger.info("upstream stream opened model=%s", request.model or self.model)
        return self._iter_chunks(stream)

    async def _iter_chunks(self, stream) -> AsyncIterator[UpstreamChunk]:
        try:
            async for chunk in stream:
                content = ""
                if chunk.choices:
                    delta = chunk.choices[0].delta
                    content = (delta.content if delta else None) or ""
                usage = None
                if chunk.usage:
                    usage = Usage(
                        prompt_tokens=chunk.usage.prompt_tokens or 0,
                        completion_tokens=chunk.usage.completion_tokens or 0,
                        total_tokens=chunk.usage.total_tokens or 0,
                    )
                if content or usage:
                    yield UpstreamChunk(content=content, usage=usage)
        except openai.OpenAIError as e:
            raise translate_error(e) from e
        finally:
            await stream.close()
