"""opencodepy: a synchronous client for opencode servers.

Architecture:
- Server: spawns and supervises a local ``opencode serve`` process
- HttpTransport: unary JSON calls plus one SSE subscription per instance
- Client / Session: typed facade over the server's HTTP API
- EventStream: blocking iterator over decoded server events
"""

from opencodepy.core.client import Client
from opencodepy.core.configs import ClientOptions, ServerOptions, get_client_options
from opencodepy.core.errors import (
    APIError,
    ConnectionFailed,
    NotFound,
    OpencodeError,
    ProtocolError,
    ServerError,
    TransportError,
)
from opencodepy.core.session import Session
from opencodepy.core.stream import END_OF_STREAM, BlockingStream, EventStream
from opencodepy.core.streaming import StreamOptions
from opencodepy.server.supervisor import Server

__version__ = "0.1.0"

__all__ = [
    "Client",
    "ClientOptions",
    "ServerOptions",
    "get_client_options",
    "Session",
    "Server",
    "StreamOptions",
    "BlockingStream",
    "EventStream",
    "END_OF_STREAM",
    "OpencodeError",
    "TransportError",
    "ConnectionFailed",
    "ServerError",
    "ProtocolError",
    "APIError",
    "NotFound",
]
