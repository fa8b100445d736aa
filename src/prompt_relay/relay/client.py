"""Async client for the relay endpoint.

Posts a message list, decodes the relay stream and hands content and usage back
either as an event iterator or through callbacks. Cancellation is cooperative: set
``GenerateOptions.cancel_event`` and the pending read is abandoned with
:class:`OperationCancelled`.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from ..generate.types import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    GenerateOptions,
    Message,
    StreamEvent,
    Usage,
)
from .cancellation import run_cancellable
from .decoder import decode_stream
from .errors import (
    ClassifiedError,
    ErrorCategory,
    GenerationError,
    OperationCancelled,
    RelayError,
    UpstreamNetworkError,
    category_for_message,
    classify_error,
    is_classified_message,
)
from .protocol import split_inline_error

logger = logging.getLogger(__name__)

STREAM_PATH = "/api/ai/stream"


def _server_error(message: str) -> ClassifiedError:
    """Keep the sentence the relay already produced; only derive its category."""
    return ClassifiedError(category_for_message(message), message)


class RelayClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        default_model: str = "gemini-2.5-flash-preview-04-17",
        timeout: Optional[float] = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.default_model = default_model
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    async def aclose(self):
        await self._http.aclose()

    async def __aenter__(self) -> "RelayClient":
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    def _build_body(self, messages: List[Message], options: GenerateOptions) -> Dict[str, Any]:
        return {
            "messages": [m.to_dict() for m in messages],
            "model": options.model or self.default_model,
            "temperature": DEFAULT_TEMPERATURE if options.temperature is None else options.temperature,
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
        }

    async def _raise_for_status(self, response: httpx.Response):
        if response.is_success:
            return
        body = await response.aread()
        try:
            payload = json.loads(body)
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            payload = {}
        message = payload.get("error") or f"HTTP {response.status_code}: {response.reason_phrase}"
        classified = _server_error(message)
        category = payload.get("category")
        if category in {c.value for c in ErrorCategory}:
            classified = ClassifiedError(ErrorCategory(category), message)
        raise GenerationError(classified, status=response.status_code)

    async def events(
        self, messages: List[Message], options: Optional[GenerateOptions] = None
    ) -> AsyncIterator[StreamEvent]:
        """Content and usage events in arrival order. Does not handle cancel_event."""
        options = options or GenerateOptions()
        body = self._build_body(messages, options)
        logger.info("sending stream request model=%s", body["model"])
        try:
            async with self._http.stream("POST", STREAM_PATH, json=body) as response:
                await self._raise_for_status(response)
                async for event in decode_stream(response.aiter_bytes()):
                    yield event
        except httpx.TimeoutException as e:
            raise UpstreamNetworkError(f"timeout: {e}") from e
        except httpx.TransportError as e:
            raise UpstreamNetworkError(f"network error: {e}") from e

    async def _consume(
        self,
        messages: List[Message],
        options: GenerateOptions,
        on_chunk: Callable[[str], None],
        on_usage: Optional[Callable[[Usage], None]],
    ):
        events = self.events(messages, options)
        try:
            async for event in events:
                if event.kind == StreamEvent.USAGE:
                    if on_usage is not None:
                        on_usage(event.usage)
                else:
                    on_chunk(event.text)
        finally:
            await events.aclose()

    async def generate_stream(
        self,
        messages: List[Message],
        options: Optional[GenerateOptions] = None,
        on_chunk: Optional[Callable[[str], None]] = None,
        on_usage: Optional[Callable[[Usage], None]] = None,
    ) -> None:
        if not messages or on_chunk is None:
            return
        options = options or GenerateOptions()
        try:
            await run_cancellable(
                self._consume(messages, options, on_chunk, on_usage), options.cancel_event
            )
        except OperationCancelled:
            logger.info("stream generation cancelled by caller")
            raise
        except GenerationError:
            raise
        except (RelayError, httpx.HTTPError) as e:
            classified = classify_error(e)
            logger.error("stream request failed (%s): %s", classified.category.value, e)
            raise GenerationError(classified, status=getattr(e, "status", None)) from e

    async def generate(self, messages: List[Message], options: Optional[GenerateOptions] = None) -> str:
        """Whole response as one string; a relay error at the end becomes GenerationError."""
        if not messages:
            return ""
        parts: List[str] = []
        await self.generate_stream(messages, options, parts.append)
        full = "".join(parts)
        _, error = split_inline_error(full)
        if error is not None and is_classified_message(error):
            raise GenerationError(_server_error(error))
        # escape text the model wrote itself stays part of the answer
        return full
