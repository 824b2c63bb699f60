"""HTTP transport: unary JSON calls plus one long-lived SSE subscription.

The unary side and the streaming side share configuration (host, port,
credentials, directory header, timeouts) but never a connection: every
subscription gets its own httpx client, driven by its own worker thread.
"""

from dataclasses import dataclass, field
from enum import Enum
import logging
import re
import socket
import threading
from typing import Callable, List, Optional, Sequence, Tuple

import httpx

from opencodepy.transport.sse import SSEParser, SSERecord

logger = logging.getLogger(__name__)

DIRECTORY_HEADER = "x-opencode-directory"
SUPPORTED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")

# The push channel idles between events, so its read timeout is long.
STREAM_READ_TIMEOUT = 600
STREAM_CONNECT_TIMEOUT = 30

Headers = Sequence[Tuple[str, str]]
RecordCallback = Callable[[SSERecord], None]
ErrorCallback = Callable[[str], None]
CloseCallback = Callable[[], None]


@dataclass
class HttpRequest:
    method: str
    path: str
    body: str = ""
    headers: List[Tuple[str, str]] = field(default_factory=list)
    content_type: Optional[str] = "application/json"


@dataclass
class HttpResponse:
    """Result of one unary call. ``error`` is non-empty if no response arrived."""
    status: int = 0
    body: str = ""
    headers: List[Tuple[str, str]] = field(default_factory=list)
    error: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.error and 200 <= self.status < 300


class StreamState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


def parse_url(url: str) -> Tuple[str, int]:
    """
    Split ``http(s)://host[:port]`` into host and port.

    Falls back to 127.0.0.1:4096 when the URL cannot be parsed.
    """
    match = re.match(r"^https?://([^:/]+)(?::(\d+))?", url)
    if not match:
        return "127.0.0.1", 4096
    host = match.group(1)
    if match.group(2):
        return host, int(match.group(2))
    return host, 443 if url.startswith("https://") else 80


class _Subscription:
    """Bookkeeping for the single live stream of a transport."""

    def __init__(self, path: str):
        self.path = path
        self.stop_event = threading.Event()
        self.state = StreamState.CONNECTING
        self.response: Optional[httpx.Response] = None
        self.thread: Optional[threading.Thread] = None


class HttpTransport:
    """
    Transport for one server.

    ``request`` performs blocking unary calls. ``start_stream`` runs an SSE
    subscription on a worker thread; at most one is live at a time.

    Args:
        host: Server host name
        port: Server port
        username: Basic auth user (only used together with password)
        password: Basic auth password
        directory: Value for the directory-scoping header
        connection_timeout: Connect timeout in seconds
        read_timeout: Read timeout for unary calls in seconds
        stream_read_timeout: Read timeout for the push channel in seconds
        transport: Optional httpx transport shared by both clients
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: Optional[str] = None,
        password: Optional[str] = None,
        *,
        directory: Optional[str] = None,
        connection_timeout: float = 30,
        read_timeout: float = 30,
        stream_read_timeout: float = STREAM_READ_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.host = host
        self.port = port
        self.base_url = f"http://{host}:{port}"
        self._auth = None
        self._credentials: Optional[Tuple[str, str]] = None
        if username is not None and password is not None:
            self._credentials = (username, password)
            self._auth = httpx.BasicAuth(username, password)
        self._directory = directory
        self._connection_timeout = connection_timeout
        self._read_timeout = read_timeout
        self._stream_read_timeout = stream_read_timeout
        self._transport = transport

        self._client = httpx.Client(
            base_url=self.base_url,
            auth=self._auth,
            timeout=self._unary_timeout(),
            transport=transport,
        )
        self._lock = threading.Lock()
        self._subscription: Optional[_Subscription] = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def _unary_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self._read_timeout, connect=self._connection_timeout)

    def set_directory(self, directory: Optional[str]) -> None:
        """Set the directory-scoping header sent with every request."""
        self._directory = directory

    def set_connection_timeout(self, seconds: float) -> None:
        self._connection_timeout = seconds
        self._client.timeout = self._unary_timeout()

    def set_read_timeout(self, seconds: float) -> None:
        self._read_timeout = seconds
        self._client.timeout = self._unary_timeout()

    def clone(self) -> "HttpTransport":
        """A new transport to the same server with the same settings."""
        username, password = self._credentials or (None, None)
        return HttpTransport(
            self.host,
            self.port,
            username,
            password,
            directory=self._directory,
            connection_timeout=self._connection_timeout,
            read_timeout=self._read_timeout,
            stream_read_timeout=self._stream_read_timeout,
            transport=self._transport,
        )

    def _scoped_headers(self, headers: Headers) -> List[Tuple[str, str]]:
        merged = list(headers)
        if self._directory:
            merged.append((DIRECTORY_HEADER, self._directory))
        return merged

    # ------------------------------------------------------------------
    # Unary calls
    # ------------------------------------------------------------------

    def request(self, req: HttpRequest) -> HttpResponse:
        """
        Execute one HTTP request. Never raises for network failures.

        Returns:
            HttpResponse with status/body, or with ``error`` set
        """
        method = req.method.upper()
        if method not in SUPPORTED_METHODS:
            return HttpResponse(error=f"Unsupported HTTP method: {req.method}")

        headers = self._scoped_headers(req.headers)
        headers.append(("Accept", "application/json"))
        content = None
        if req.body and method not in ("GET", "DELETE"):
            content = req.body.encode("utf-8")
            headers.append(("Content-Type", req.content_type or "application/json"))

        try:
            response = self._client.request(method, req.path, content=content, headers=headers)
        except httpx.TimeoutException as e:
            logger.debug("%s %s timed out: %s", method, req.path, e)
            return HttpResponse(error=f"Timeout: {e}", timed_out=True)
        except httpx.HTTPError as e:
            logger.debug("%s %s failed: %s", method, req.path, e)
            return HttpResponse(error=str(e) or type(e).__name__)
        except (httpx.InvalidURL, RuntimeError) as e:
            # Unencodable URL, or the client was already closed.
            logger.debug("%s %s not sent: %s", method, req.path, e)
            return HttpResponse(error=str(e) or type(e).__name__)

        return HttpResponse(
            status=response.status_code,
            body=response.text,
            headers=list(response.headers.items()),
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def start_stream(
        self,
        path: str,
        headers: Headers,
        on_record: RecordCallback,
        on_error: ErrorCallback,
        on_close: CloseCallback,
    ) -> bool:
        """
        Open the push channel on a worker thread. Stops any previous stream.

        ``on_record`` and ``on_error`` run on the worker; ``on_close`` runs
        exactly once when the worker loop ends, whatever the reason.
        """
        self.stop_stream()

        subscription = _Subscription(path)
        thread = threading.Thread(
            target=self._run_stream,
            args=(subscription, list(headers), on_record, on_error, on_close),
            name=f"opencode-sse-{self.port}",
            daemon=True,
        )
        subscription.thread = thread
        with self._lock:
            self._subscription = subscription
        thread.start()
        return True

    def stop_stream(self) -> None:
        """Stop the live stream, if any, and join its worker. Idempotent."""
        with self._lock:
            subscription = self._subscription
            self._subscription = None
            if subscription is None:
                return
            subscription.stop_event.set()
            if subscription.state is not StreamState.CLOSED:
                subscription.state = StreamState.CLOSING
            response = subscription.response

        if response is not None:
            _interrupt(response)

        thread = subscription.thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._connection_timeout + 1)
            if thread.is_alive():
                logger.warning("SSE worker for %s did not exit in time", subscription.path)

    @property
    def stream_state(self) -> StreamState:
        with self._lock:
            if self._subscription is None:
                return StreamState.CLOSED
            return self._subscription.state

    @property
    def stream_connected(self) -> bool:
        return self.stream_state is StreamState.OPEN

    def _stream_client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            auth=self._auth,
            timeout=httpx.Timeout(
                self._stream_read_timeout,
                connect=min(self._connection_timeout, STREAM_CONNECT_TIMEOUT),
            ),
            transport=self._transport,
        )

    def _set_state(self, subscription: _Subscription, state: StreamState) -> None:
        with self._lock:
            subscription.state = state

    def _run_stream(
        self,
        subscription: _Subscription,
        headers: List[Tuple[str, str]],
        on_record: RecordCallback,
        on_error: ErrorCallback,
        on_close: CloseCallback,
    ) -> None:
        stop = subscription.stop_event
        parser = SSEParser()
        request_headers = [
            ("Accept", "text/event-stream"),
            ("Cache-Control", "no-cache"),
            ("Connection", "keep-alive"),
        ] + self._scoped_headers(headers)

        def deliver(record: SSERecord) -> None:
            if stop.is_set():
                return
            try:
                on_record(record)
            except Exception:
                logger.exception("SSE record handler failed")

        error: Optional[str] = None
        try:
            with self._stream_client() as client:
                with client.stream("GET", subscription.path, headers=request_headers) as response:
                    with self._lock:
                        subscription.response = response
                        if not stop.is_set():
                            subscription.state = StreamState.OPEN
                    if stop.is_set():
                        return
                    if not 200 <= response.status_code < 300:
                        error = f"Stream rejected with HTTP {response.status_code}"
                        return
                    logger.debug("SSE stream open on %s%s", self.base_url, subscription.path)
                    for chunk in response.iter_bytes():
                        if stop.is_set():
                            break
                        parser.feed(chunk, deliver)
        except httpx.TimeoutException as e:
            error = f"Timeout: {e}"
        except httpx.HTTPError as e:
            error = str(e) or type(e).__name__
        except Exception as e:
            logger.exception("SSE worker crashed")
            error = str(e) or type(e).__name__
        finally:
            self._set_state(subscription, StreamState.CLOSED)
            if error and not stop.is_set():
                logger.debug("SSE stream error: %s", error)
                try:
                    on_error(error)
                except Exception:
                    logger.exception("SSE error handler failed")
            try:
                on_close()
            except Exception:
                logger.exception("SSE close handler failed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop the stream and release the unary connection pool."""
        self.stop_stream()
        self._client.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _interrupt(response: httpx.Response) -> None:
    """Unblock a worker stuck reading ``response`` by shutting its socket."""
    network_stream = response.extensions.get("network_stream")
    if network_stream is None:
        return
    sock = network_stream.get_extra_info("socket")
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        # Already closed by the peer or the worker.
        pass
