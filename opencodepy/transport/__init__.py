"""HTTP transport and the SSE wire parser."""

from opencodepy.transport.http import HttpRequest, HttpResponse, HttpTransport, StreamState
from opencodepy.transport.sse import SSEParser, SSERecord

__all__ = ["HttpRequest", "HttpResponse", "HttpTransport", "StreamState", "SSEParser", "SSERecord"]
