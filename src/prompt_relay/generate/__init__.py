# Makes generate/ importable and exposes the shared types and the dev client.

from .types import Message, Usage, GenerateRequest, GenerateOptions, UpstreamChunk, StreamEvent
from .clients.echo_dev_client import EchoDevClient

__all__ = [
    "Message",
    "Usage",
    "GenerateRequest",
    "GenerateOptions",
    "UpstreamChunk",
    "StreamEvent",
    "EchoDevClient",
]
