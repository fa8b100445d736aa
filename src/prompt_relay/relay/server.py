"""Sending side of the relay: request validation and the upstream → wire encoder."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

from ..generate.types import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    GenerateRequest,
    Message,
    UpstreamChunk,
)
from ..prompts.expander import TemplateExpander
from .cancellation import run_cancellable
from .errors import InvalidRequestError, OperationCancelled, classify_error
from .protocol import encode_content, encode_error, encode_usage

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


class ChatTurn(BaseModel):
    role: Literal["user", "system", "assistant"]
    content: str


class StreamRequest(BaseModel):
    messages: List[ChatTurn]
    model: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = Field(default=None, gt=0)


class ModelClient(Protocol):
    async def open_stream(self, request: GenerateRequest) -> AsyncIterator[UpstreamChunk]: ...


def validate_request(body: Any) -> GenerateRequest:
    """Check a decoded JSON body. Raises InvalidRequestError before anything goes upstream."""
    if not isinstance(body, dict):
        raise InvalidRequestError("请求体必须是JSON对象")
    messages = body.get("messages")
    if not isinstance(messages, list) or not messages:
        raise InvalidRequestError("消息数组不能为空")
    model = body.get("model")
    if not isinstance(model, str) or not model.strip():
        raise InvalidRequestError("模型参数不能为空")

    try:
        req = StreamRequest.model_validate(body)
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(p) for p in first.get("loc", ()))
        raise InvalidRequestError(f"请求参数无效: {where} {first.get('msg', '')}".strip()) from e

    return GenerateRequest(
        messages=[Message(role=t.role, content=t.content) for t in req.messages],
        model=req.model,
        temperature=DEFAULT_TEMPERATURE if req.temperature is None else req.temperature,
        max_tokens=req.max_tokens or DEFAULT_MAX_TOKENS,
    )


def redact_messages(messages: List[Message]) -> List[Dict[str, str]]:
    """Messages as logged: system prompts are never written to the log."""
    return [
        {"role": m.role, "content": "(system prompt)" if m.role == "system" else m.content}
        for m in messages
    ]


async def _next_chunk(chunks: AsyncIterator[UpstreamChunk]) -> UpstreamChunk:
    return await chunks.__anext__()


async def encode_stream(
    chunks: AsyncIterator[UpstreamChunk],
    cancel_event: Optional[asyncio.Event] = None,
) -> AsyncIterator[bytes]:
    """Re-encode upstream chunks into the wire format, one flush per chunk.

    A failure after streaming began ends the stream with the error escape. Cancellation,
    by task cancel or by ``cancel_event``, propagates and writes nothing further.
    """
    usage_sent = False
    try:
        while True:
            try:
                chunk = await run_cancellable(_next_chunk(chunks), cancel_event)
            except StopAsyncIteration:
                break
            buf = b""
            if chunk.content:
                buf += encode_content(chunk.content)
            if chunk.usage is not None:
                if usage_sent:
                    logger.warning("ignoring repeated usage record: %s", chunk.usage)
                else:
                    logger.info("upstream usage: %s", chunk.usage.to_dict())
                    buf += encode_usage(chunk.usage)
                    usage_sent = True
            if buf:
                yield buf
    except (asyncio.CancelledError, OperationCancelled):
        logger.info("relay stream cancelled")
        raise
    except Exception as e:
        classified = classify_error(e)
        logger.error("upstream failed mid-stream (%s): %s", classified.category.value, e)
        yield encode_error(classified.message)
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()


class RelayServer:
    def __init__(self, model_client: ModelClient, expander: Optional[TemplateExpander] = None):
        self.model_client = model_client
        self.expander = expander

    def prepare(self, request: GenerateRequest) -> GenerateRequest:
        if self.expander is None:
            messages = [Message(role=m.role, content=m.content) for m in request.messages]
        else:
            messages = self.expander.expand(request.messages)
        return replace(request, messages=messages)

    async def open(self, request: GenerateRequest) -> AsyncIterator[bytes]:
        """Open the upstream call and return the outbound byte stream.

        Errors raised here happen before any byte was written and are the caller's
        to report synchronously.
        """
        upstream = self.prepare(request)
        logger.info(
            "relaying model=%s temperature=%s messages=%s",
            upstream.model,
            upstream.temperature,
            redact_messages(upstream.messages),
        )
        chunks = await run_cancellable(self.model_client.open_stream(upstream), upstream.cancellation)
        return encode_stream(chunks, upstream.cancellation)
