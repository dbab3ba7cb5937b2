"""Remote service client package."""

from messmate.services.remote.client import (
    AuthTokenStore,
    HealthStatus,
    RemoteClient,
    RemoteRequest,
    RemoteResult,
)
from messmate.services.remote.decoding import (
    ResponseShapeError,
    decode_ack,
    decode_list,
    decode_one,
    decode_optional,
    decode_value,
)

__all__ = [
    # Client
    "AuthTokenStore",
    "HealthStatus",
    "RemoteClient",
    "RemoteRequest",
    "RemoteResult",
    # Decoding
    "ResponseShapeError",
    "decode_ack",
    "decode_list",
    "decode_one",
    "decode_optional",
    "decode_value",
]
