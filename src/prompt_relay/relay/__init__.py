# Relay stream: wire format, encoder, decoder, and error taxonomy.

from .decoder import StreamDecoder, consume_stream, decode_stream
from .errors import (
    ClassifiedError,
    CredentialsNotConfigured,
    ErrorCategory,
    GenerationError,
    InvalidRequestError,
    OperationCancelled,
    RelayError,
    UpstreamHTTPError,
    UpstreamNetworkError,
    classify_error,
)
from .protocol import ERROR_PREFIX, USAGE_MARKER, split_inline_error

__all__ = [
    "StreamDecoder",
    "consume_stream",
    "decode_stream",
    "ClassifiedError",
    "CredentialsNotConfigured",
    "ErrorCategory",
    "GenerationError",
    "InvalidRequestError",
    "OperationCancelled",
    "RelayError",
    "UpstreamHTTPError",
    "UpstreamNetworkError",
    "classify_error",
    "ERROR_PREFIX",
    "USAGE_MARKER",
    "split_inline_error",
]
