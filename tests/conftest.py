import pytest

from prompt_relay.generate.types import UpstreamChunk, Usage
from prompt_relay.prompts import Prompt, PromptStore
from prompt_relay.settings import Settings


class FakeModelClient:
    """Upstream stand-in: records requests, replays chunks, fails on demand."""

    def __init__(self, chunks=None, open_error=None, fail_at=None, fail_error=None):
        self.chunks = list(chunks or [])
        self.open_error = open_error
        self.fail_at = fail_at
        self.fail_error = fail_error
        self.requests = []
        self.closed = False

    async def open_stream(self, request):
        self.requests.append(request)
        if self.open_error is not None:
            raise self.open_error
        return self._iter()

    async def _iter(self):
        try:
            for i, chunk in enumerate(self.chunks):
                if self.fail_at is not None and i == self.fail_at:
                    raise self.fail_error
                yield chunk
        finally:
            self.closed = True


USAGE = Usage(prompt_tokens=5, completion_tokens=2, total_tokens=7)
USAGE_JSON = '{"prompt_tokens":5,"completion_tokens":2,"total_tokens":7}'


@pytest.fixture
def usage():
    return USAGE


@pytest.fixture
def hello_chunks():
    return [UpstreamChunk(content="Hello"), UpstreamChunk(content=" world", usage=USAGE)]


@pytest.fixture
def prompt_store():
    return PromptStore([
        Prompt(id="abc-123", content="Be concise.", title="简洁回答"),
        Prompt(id="3f6c2a1e-8d4b-4c1a-9e2f-5b7d0c9a1e42", content="你是一名写作助手。"),
    ])


@pytest.fixture
def bare_settings():
    return Settings(_env_file=None, OPENAI_API_KEY=None, USE_ECHO=False, PROMPTS_PATH="does-not-exist.yaml")


@pytest.fixture
def fake_upstream():
    """Factory for FakeModelClient instances."""
    return FakeModelClient
