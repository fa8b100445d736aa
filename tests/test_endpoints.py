import json

import pytest
from fastapi.testclient import TestClient

from prompt_relay.app import create_app
from prompt_relay.generate.types import UpstreamChunk
from prompt_relay.prompts.templates import CHARACTER_POLICY_CLAUSE, INJECTION_DEFENSE_CLAUSE
from prompt_relay.relay.errors import CredentialsNotConfigured, UpstreamHTTPError, UpstreamNetworkError
from prompt_relay.settings import Settings

USAGE_JSON = '{"prompt_tokens":5,"completion_tokens":2,"total_tokens":7}'


def make_client(upstream, prompt_store=None, cfg=None):
    app = create_app(cfg=cfg, model_client=upstream, prompt_store=prompt_store)
    return TestClient(app)


def body(**overrides):
    data = {"messages": [{"role": "user", "content": "hi"}], "model": "gpt-test"}
    data.update(overrides)
    return data


def test_root_ok(fake_upstream):
    client = make_client(fake_upstream())
    r = client.get("/")
    assert r.status_code == 200
    assert "message" in r.json()


def test_health_ok(fake_upstream):
    client = make_client(fake_upstream())
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert client.get("/healthz").json()["ok"] is True


def test_stream_relays_content_then_usage(fake_upstream, hello_chunks):
    upstream = fake_upstream(hello_chunks)
    client = make_client(upstream)

    r = client.post("/api/ai/stream", json=body())

    assert r.status_code == 200
    assert r.text == "Hello world\n__USAGE_DATA__:" + USAGE_JSON
    assert r.headers["content-type"].startswith("text/plain")
    assert r.headers["cache-control"] == "no-cache"
    assert upstream.closed


def test_stream_uses_defaults(fake_upstream, hello_chunks):
    upstream = fake_upstream(hello_chunks)
    make_client(upstream).post("/api/ai/stream", json=body())

    sent = upstream.requests[0]
    assert sent.model == "gpt-test"
    assert sent.temperature == 0.7
    assert sent.max_tokens == 64000


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"model": "gpt-test"}, "消息数组不能为空"),
        ({"messages": [], "model": "gpt-test"}, "消息数组不能为空"),
        ({"messages": "hi", "model": "gpt-test"}, "消息数组不能为空"),
        ({"messages": [{"role": "user", "content": "hi"}]}, "模型参数不能为空"),
        ({"messages": [{"role": "user", "content": "hi"}], "model": ""}, "模型参数不能为空"),
    ],
)
def test_invalid_request_rejected_before_upstream(fake_upstream, payload, expected):
    upstream = fake_upstream([UpstreamChunk(content="never")])
    client = make_client(upstream)

    r = client.post("/api/ai/stream", json=payload)

    assert r.status_code == 400
    assert r.json()["error"] == expected
    assert upstream.requests == []


def test_unknown_role_rejected(fake_upstream):
    upstream = fake_upstream()
    r = make_client(upstream).post(
        "/api/ai/stream", json=body(messages=[{"role": "tool", "content": "x"}])
    )
    assert r.status_code == 400
    assert upstream.requests == []


def test_malformed_json_rejected(fake_upstream):
    upstream = fake_upstream()
    r = make_client(upstream).post(
        "/api/ai/stream", content=b"{not json", headers={"content-type": "application/json"}
    )
    assert r.status_code == 400
    assert "error" in r.json()


def test_upstream_failure_before_streaming_is_500(fake_upstream):
    upstream = fake_upstream(open_error=UpstreamHTTPError("Too many requests", status=429))
    r = make_client(upstream).post("/api/ai/stream", json=body())

    assert r.status_code == 500
    data = r.json()
    assert data["category"] == "rate_limited"
    assert "请求过于频繁" in data["error"]
    assert "__USAGE_DATA__" not in r.text


def test_upstream_failure_mid_stream_ends_with_error_escape(fake_upstream, hello_chunks):
    upstream = fake_upstream(
        hello_chunks, fail_at=1, fail_error=UpstreamNetworkError("Connection reset")
    )
    r = make_client(upstream).post("/api/ai/stream", json=body())

    assert r.status_code == 200
    assert r.text.startswith("Hello\n\nERROR: ")
    assert "网络连接错误" in r.text
    assert "__USAGE_DATA__" not in r.text


def test_system_prompt_reference_is_expanded(fake_upstream, hello_chunks, prompt_store):
    upstream = fake_upstream(hello_chunks)
    client = make_client(upstream, prompt_store=prompt_store)
    messages = [
        {"role": "system", "content": "__ENCRYPTED_PROMPT_ID__:abc-123"},
        {"role": "user", "content": "hi"},
    ]

    r = client.post("/api/ai/stream", json=body(messages=messages))

    assert r.status_code == 200
    sent = upstream.requests[0].messages
    assert sent[0].content == INJECTION_DEFENSE_CLAUSE + CHARACTER_POLICY_CLAUSE + "Be concise."
    assert sent[1].content == "hi"


def test_missing_credentials_reported_as_500(fake_upstream):
    cfg = Settings(_env_file=None, OPENAI_API_KEY=None, USE_ECHO=False, PROMPTS_PATH="nope.yaml")
    client = TestClient(create_app(cfg=cfg))

    r = client.post("/api/ai/stream", json=body())

    assert r.status_code == 500
    assert r.json()["category"] == "credential_not_configured"


def test_startup_fails_without_credentials(bare_settings):
    app = create_app(cfg=bare_settings)
    with pytest.raises(CredentialsNotConfigured):
        with TestClient(app):
            pass


def test_echo_client_streams_end_to_end():
    cfg = Settings(_env_file=None, USE_ECHO=True, PROMPTS_PATH="nope.yaml")
    with TestClient(create_app(cfg=cfg)) as client:
        r = client.post("/api/ai/stream", json=body(messages=[{"role": "user", "content": "ping pong"}]))

    assert r.status_code == 200
    content, _, usage = r.text.partition("\n__USAGE_DATA__:")
    assert content == "[ECHO RESPONSE]\nping pong"
    assert json.loads(usage)["completion_tokens"] == 4


def test_prompt_selections_require_user(fake_upstream):
    client = make_client(fake_upstream())
    assert client.post("/api/prompts/selections/abc-123").status_code == 401
    assert client.get("/api/prompts/selections").json() == {"prompt_ids": []}


def test_prompt_selections_roundtrip(fake_upstream):
    client = make_client(fake_upstream())
    alice = {"X-User-Id": "alice"}

    first = client.post("/api/prompts/selections/abc-123", headers=alice).json()
    again = client.post("/api/prompts/selections/abc-123", headers=alice).json()
    assert first["id"] == again["id"]

    assert client.get("/api/prompts/selections", headers=alice).json() == {"prompt_ids": ["abc-123"]}
    assert client.get("/api/prompts/selections", headers={"X-User-Id": "bob"}).json() == {"prompt_ids": []}
    assert client.get("/api/prompts/selections/abc-123", headers=alice).json()["selected"] is True

    assert client.delete("/api/prompts/selections/abc-123", headers=alice).json() == {"ok": True}
    assert client.get("/api/prompts/selections/abc-123", headers=alice).json()["selected"] is False
