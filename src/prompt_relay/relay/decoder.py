"""Receiving side of the relay stream.

:class:`StreamDecoder` is a push decoder: feed it raw byte chunks in arrival order and
it returns the :class:`StreamEvent` objects that became certain with that chunk. The
result does not depend on where the chunk boundaries fall:

- split multi-byte characters are reassembled by an incremental UTF-8 decoder;
- a tail that could still turn into ``\\n__USAGE_DATA__:`` is held back until the
  next chunk decides it;
- the usage payload is held until it parses as a JSON object, a newline ends it, or
  it outgrows :data:`MAX_USAGE_PAYLOAD`.

A delimiter that is not followed by ``{`` is model output and passes through as
content. A payload that starts like a record but does not parse is dropped up to the
end of its line; what follows (typically the error escape) is content again.

:func:`decode_stream` and :func:`consume_stream` wrap the decoder around an async
byte source.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import AsyncIterable, AsyncIterator, Callable, List, Optional

from ..generate.types import StreamEvent, Usage
from .protocol import ENCODING, USAGE_DELIMITER

logger = logging.getLogger(__name__)

# compact usage json is well under 100 characters
MAX_USAGE_PAYLOAD = 4096

_json = json.JSONDecoder()

_WAIT, _USAGE, _NOT_USAGE, _MALFORMED = "wait", "usage", "not_usage", "malformed"


def _held_prefix_len(text: str) -> int:
    """Length of the longest tail of ``text`` that may still grow into the delimiter."""
    longest = min(len(text), len(USAGE_DELIMITER) - 1)
    for n in range(longest, 0, -1):
        if USAGE_DELIMITER.startswith(text[-n:]):
            return n
    return 0


class StreamDecoder:
    # content -> payload (delimiter seen, waiting for usage json) -> trailer (usage done)
    CONTENT, PAYLOAD, TRAILER = "content", "payload", "trailer"

    def __init__(self):
        self._utf8 = codecs.getincrementaldecoder(ENCODING)(errors="replace")
        self._state = self.CONTENT
        self._pending = ""
        self.usage: Optional[Usage] = None

    @property
    def state(self) -> str:
        return self._state

    def feed(self, data: bytes) -> List[StreamEvent]:
        text = self._utf8.decode(data)
        if not text:
            return []
        return self._advance(self._pending + text, final=False)

    def finish(self) -> List[StreamEvent]:
        """Flush whatever is still held once the source is exhausted."""
        text = self._pending + self._utf8.decode(b"", final=True)
        return self._advance(text, final=True)

    def _advance(self, text: str, final: bool) -> List[StreamEvent]:
        self._pending = ""
        events: List[StreamEvent] = []

        while True:
            if self._state == self.TRAILER:
                # whatever follows the usage record (normally nothing, or the error escape)
                if text:
                    events.append(StreamEvent.content(text))
                return events

            if self._state == self.CONTENT:
                idx = text.find(USAGE_DELIMITER)
                if idx < 0:
                    hold = 0 if final else _held_prefix_len(text)
                    content = text[: len(text) - hold]
                    self._pending = text[len(text) - hold:]
                    if content:
                        events.append(StreamEvent.content(content))
                    return events
                if idx:
                    events.append(StreamEvent.content(text[:idx]))
                self._state = self.PAYLOAD
                text = text[idx + len(USAGE_DELIMITER):]

            outcome, usage, rest = self._parse_usage(text, final)
            if outcome == _WAIT:
                self._pending = text
                return events
            if outcome == _USAGE:
                self.usage = usage
                events.append(StreamEvent.usage_record(usage))
                self._state = self.TRAILER
            elif outcome == _NOT_USAGE:
                events.append(StreamEvent.content(USAGE_DELIMITER))
                self._state = self.CONTENT
            else:
                self._state = self.CONTENT
            text = rest

    def _parse_usage(self, text: str, final: bool):
        """Return ``(outcome, usage, rest)`` for the text after the delimiter."""
        stripped = text.lstrip(" \t")
        if not stripped:
            if final:
                logger.warning("usage marker without payload")
                return _MALFORMED, None, ""
            return _WAIT, None, text
        if not stripped.startswith("{"):
            return _NOT_USAGE, None, text

        newline = stripped.find("\n")
        line = stripped if newline < 0 else stripped[:newline]
        try:
            data, end = _json.raw_decode(line)
        except json.JSONDecodeError as e:
            if newline < 0 and not final and len(stripped) <= MAX_USAGE_PAYLOAD:
                return _WAIT, None, text
            logger.error("failed to parse usage payload: %s (%r)", e, line[:200])
            return _MALFORMED, None, ("" if newline < 0 else stripped[newline:])
        try:
            usage = Usage.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.error("invalid usage payload: %s", e)
            return _MALFORMED, None, stripped[end:]
        logger.debug("received usage: %s", usage)
        return _USAGE, usage, stripped[end:]


async def decode_stream(source: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
    """Yield decoded events from an async byte source, closing it on every exit path."""
    decoder = StreamDecoder()
    try:
        async for chunk in source:
            for event in decoder.feed(chunk):
                yield event
        for event in decoder.finish():
            yield event
    finally:
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()


async def consume_stream(
    source: AsyncIterable[bytes],
    on_content: Callable[[str], None],
    on_usage: Optional[Callable[[Usage], None]] = None,
) -> Optional[Usage]:
    """Callback adapter over :func:`decode_stream`. Returns the usage record, if any."""
    usage = None
    events = decode_stream(source)
    try:
        async for event in events:
            if event.kind == StreamEvent.USAGE:
                usage = event.usage
                if on_usage is not None:
                    on_usage(event.usage)
            else:
                on_content(event.text)
    finally:
        await events.aclose()
    return usage
