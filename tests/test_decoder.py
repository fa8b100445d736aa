import asyncio

import pytest

from prompt_relay.generate.types import StreamEvent, Usage
from prompt_relay.relay.decoder import MAX_USAGE_PAYLOAD, StreamDecoder, consume_stream, decode_stream
from prompt_relay.relay.protocol import split_inline_error

USAGE_JSON = '{"prompt_tokens":5,"completion_tokens":2,"total_tokens":7}'
USAGE = Usage(5, 2, 7)


def decode_chunks(chunks):
    decoder = StreamDecoder()
    events = []
    for c in chunks:
        events.extend(decoder.feed(c))
    events.extend(decoder.finish())
    return events


def summarize(events):
    content = "".join(e.text for e in events if e.kind == StreamEvent.CONTENT)
    usages = [e.usage for e in events if e.kind == StreamEvent.USAGE]
    return content, usages


class TrackingSource:
    """Async byte source that records whether it was released."""

    def __init__(self, chunks, fail_with=None):
        self.chunks = list(chunks)
        self.fail_with = fail_with
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.chunks:
            if self.fail_with is not None:
                raise self.fail_with
            raise StopAsyncIteration
        return self.chunks.pop(0)

    async def aclose(self):
        self.closed = True


def test_worked_example():
    events = decode_chunks([
        b"Hello",
        (' world\n__USAGE_DATA__:' + USAGE_JSON).encode(),
    ])
    assert events == [
        StreamEvent.content("Hello"),
        StreamEvent.content(" world"),
        StreamEvent.usage_record(USAGE),
    ]


def test_plain_content_passes_through():
    content, usages = summarize(decode_chunks([b"line one\n", b"line two\n"]))
    assert content == "line one\nline two\n"
    assert usages == []


def test_multibyte_character_split_across_reads():
    data = "你好，世界".encode()
    events = decode_chunks([data[:1], data[1:4], data[4:]])
    assert summarize(events) == ("你好，世界", [])


def test_marker_split_inside_keyword():
    events = decode_chunks([b"abc\n__USA", b"GE_DA", ("TA__:" + USAGE_JSON).encode()])
    assert summarize(events) == ("abc", [USAGE])


def test_usage_payload_split_across_reads():
    decoder = StreamDecoder()
    assert decoder.feed(b'ok\n__USAGE_DATA__:{"prompt_tokens":5,') == [StreamEvent.content("ok")]
    assert decoder.feed(b'"completion_tokens":2,"total_tokens":7}') == [StreamEvent.usage_record(USAGE)]
    assert decoder.finish() == []
    assert decoder.usage == USAGE


def test_split_invariance_over_every_pair_of_boundaries():
    data = ("你好 world，" + "\n__USAGE_DATA__:" + USAGE_JSON).encode()
    expected = ("你好 world，", [USAGE])
    assert summarize(decode_chunks([data])) == expected
    for i in range(len(data) + 1):
        for j in range(i, len(data) + 1):
            chunks = [data[:i], data[i:j], data[j:]]
            assert summarize(decode_chunks(chunks)) == expected, (i, j)


def test_underscores_in_content_are_not_lost():
    content, usages = summarize(decode_chunks([b"snake_", b"case __init__", b"\n"]))
    assert content == "snake_case __init__\n"
    assert usages == []


def test_malformed_usage_is_swallowed():
    events = decode_chunks([b"abc\n__USAGE_DATA__:{not json"])
    assert summarize(events) == ("abc", [])


def test_usage_with_negative_counts_is_swallowed():
    payload = '{"prompt_tokens":-1,"completion_tokens":2,"total_tokens":1}'
    events = decode_chunks([("abc\n__USAGE_DATA__:" + payload).encode()])
    assert summarize(events) == ("abc", [])


def test_error_escape_arrives_as_content():
    content, usages = summarize(decode_chunks([b"partial", "\n\nERROR: 网络连接错误".encode()]))
    assert usages == []
    assert split_inline_error(content) == ("partial", "网络连接错误")


def test_text_after_usage_is_content():
    raw = ("done\n__USAGE_DATA__:" + USAGE_JSON + "\n\nERROR: boom").encode()
    content, usages = summarize(decode_chunks([raw]))
    assert usages == [USAGE]
    assert content == "done\n\nERROR: boom"


def test_decode_stream_releases_source_on_completion():
    source = TrackingSource([b"Hello", ("\n__USAGE_DATA__:" + USAGE_JSON).encode()])

    async def run():
        return [e async for e in decode_stream(source)]

    events = asyncio.run(run())
    assert summarize(events) == ("Hello", [USAGE])
    assert source.closed


def test_decode_stream_releases_source_on_error():
    source = TrackingSource([b"Hello"], fail_with=ConnectionResetError("reset"))

    async def run():
        return [e async for e in decode_stream(source)]

    with pytest.raises(ConnectionResetError):
        asyncio.run(run())
    assert source.closed


def test_consume_stream_invokes_callbacks_in_order():
    source = TrackingSource([b"Hel", b"lo", ("\n__USAGE_DATA__:" + USAGE_JSON).encode()])
    seen = []

    usage = asyncio.run(
        consume_stream(source, lambda t: seen.append(("content", t)), lambda u: seen.append(("usage", u)))
    )

    assert seen == [("content", "Hel"), ("content", "lo"), ("usage", USAGE)]
    assert usage == USAGE
    assert source.closed


def test_consume_stream_releases_source_when_callback_raises():
    source = TrackingSource([b"Hello", b" again"])

    def explode(_):
        raise RuntimeError("consumer gave up")

    with pytest.raises(RuntimeError):
        asyncio.run(consume_stream(source, explode))
    assert source.closed


def test_marker_text_in_model_output_is_content():
    chunks = [
        "the relay writes __USAGE_DATA__: then json.\nNext line.".encode(),
        ("\n__USAGE_DATA__:" + USAGE_JSON).encode(),
    ]
    content, usages = summarize(decode_chunks(chunks))
    assert content == "the relay writes __USAGE_DATA__: then json.\nNext line."
    assert usages == [USAGE]


def test_delimiter_without_record_stays_content():
    raw = "a\n__USAGE_DATA__: not a record\nb\n__USAGE_DATA__:" + USAGE_JSON
    content, usages = summarize(decode_chunks([raw.encode()]))
    assert content == "a\n__USAGE_DATA__: not a record\nb"
    assert usages == [USAGE]


def test_malformed_usage_then_error_escape():
    events = decode_chunks([b"x\n__USAGE_DATA__:{bad", "\n\nERROR: 网络连接错误".encode()])
    content, usages = summarize(events)
    assert usages == []
    assert split_inline_error(content) == ("x", "网络连接错误")


def test_invalid_usage_does_not_end_decoding():
    bad = '{"prompt_tokens":-1,"completion_tokens":2,"total_tokens":1}'
    raw = "a\n__USAGE_DATA__:" + bad + "b\n__USAGE_DATA__:" + USAGE_JSON
    content, usages = summarize(decode_chunks([raw.encode()]))
    assert content == "ab"
    assert usages == [USAGE]


def test_unterminated_payload_is_bounded():
    decoder = StreamDecoder()
    decoder.feed(b"x\n__USAGE_DATA__:{")
    events = decoder.feed(b"a" * (MAX_USAGE_PAYLOAD + 1))
    assert decoder.state == StreamDecoder.CONTENT
    events += decoder.feed(b"tail")
    events += decoder.finish()
    assert summarize(events) == ("tail", [])
