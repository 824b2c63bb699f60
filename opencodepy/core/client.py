"""Client facade for an opencode server.

Usage:
    with Client(ClientOptions(base_url="http://127.0.0.1:4096")) as client:
        session = client.create_session("demo")
        reply = session.send("Summarise this repository")
        print(reply.text())

Without a base_url the client spawns a private server on an OS-assigned port
and stops it again on ``close()``.
"""

import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

from opencodepy.core.configs import ClientOptions, server_options_for
from opencodepy.core.errors import (
    APIError,
    ConnectionFailed,
    MalformedResponse,
    NotFound,
    ProtocolError,
    TransportTimeout,
)
from opencodepy.core.events import dispatch_record
from opencodepy.core.session import Session
from opencodepy.core.stream import BlockingStream, EventStream
from opencodepy.core.streaming import EVENT_PATH, StreamingSend, StreamOptions
from opencodepy.core.types import (
    HealthInfo,
    MessageWithParts,
    PermissionReply,
    PermissionRequest,
    Project,
    SessionInfo,
    decode_health,
    decode_message_with_parts,
    decode_permission_request,
    decode_project,
    decode_session,
)
from opencodepy.server.supervisor import Server
from opencodepy.transport.http import HttpRequest, HttpResponse, HttpTransport, parse_url

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 2.0


def _segment(value: str) -> str:
    """Percent-encode an id for use as one URL path segment."""
    return quote(value, safe="")


def _decode(decoder: Callable[[Any], Any], data: Any, what: str) -> Any:
    try:
        return decoder(data)
    except ProtocolError as e:
        raise MalformedResponse(f"Unexpected {what} in response: {e}") from e


def _decode_list(decoder: Callable[[Any], Any], data: Any, what: str) -> List[Any]:
    if not isinstance(data, list):
        raise MalformedResponse(f"Expected a list of {what}, got {type(data).__name__}")
    return [_decode(decoder, item, what) for item in data]


class Client:
    """
    Connection to one server.

    Args:
        options: How to reach (or spawn) the server
        transport: Pre-built transport; skips both spawning and the
            connectivity probe

    Raises:
        ConnectionFailed: The server did not answer the health probe
        ServerError: A private server could not be started
    """

    def __init__(
        self,
        options: Optional[ClientOptions] = None,
        transport: Optional[HttpTransport] = None,
    ):
        self.options = options or ClientOptions()
        self._server: Optional[Server] = None
        self._streams: List[EventStream] = []
        self._lock = threading.Lock()
        self._closed = False

        if transport is not None:
            self._transport = transport
            return

        if self.options.base_url:
            host, port = parse_url(self.options.base_url)
            self._transport = self._make_transport(host, port)
        else:
            self._server = Server.spawn(server_options_for(self.options))
            self._transport = self._make_transport(self._server.hostname, self._server.port)

        try:
            self._probe()
        except Exception:
            self.close()
            raise

    def _make_transport(self, host: str, port: int) -> HttpTransport:
        username, password = self.options.basic_auth or (None, None)
        return HttpTransport(
            host,
            port,
            username,
            password,
            directory=self.options.directory,
            connection_timeout=self.options.connection_timeout,
            read_timeout=self.options.read_timeout,
        )

    def _probe(self) -> None:
        """Quick health check with short timeouts."""
        transport = self._transport
        transport.set_connection_timeout(PROBE_TIMEOUT)
        transport.set_read_timeout(PROBE_TIMEOUT)
        try:
            response = transport.request(HttpRequest("GET", "/global/health"))
        finally:
            transport.set_connection_timeout(self.options.connection_timeout)
            transport.set_read_timeout(self.options.read_timeout)
        if not response.ok:
            reason = response.error or f"HTTP {response.status}"
            raise ConnectionFailed(f"Cannot reach server at {transport.base_url}: {reason}")
        logger.debug("Connected to %s", transport.base_url)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        return self._transport.base_url

    @property
    def server(self) -> Optional[Server]:
        """The private server, if this client spawned one."""
        return self._server

    def _call(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """
        Perform one JSON call and return the decoded body (None if empty).

        Raises:
            TransportTimeout / ConnectionFailed: No response
            NotFound / APIError: Non-2xx response
            MalformedResponse: Body is not JSON
        """
        body = json.dumps(payload) if payload is not None else ""
        response = self._transport.request(HttpRequest(method, path, body))
        self._check(method, path, response)
        if not response.body.strip():
            return None
        try:
            return json.loads(response.body)
        except ValueError as e:
            raise MalformedResponse(f"{method} {path} returned invalid JSON: {e}") from e

    @staticmethod
    def _check(method: str, path: str, response: HttpResponse) -> None:
        if response.timed_out:
            raise TransportTimeout(f"{method} {path}: {response.error}")
        if response.error:
            raise ConnectionFailed(f"{method} {path}: {response.error}")
        if response.status == 404:
            raise NotFound(f"{method} {path} not found", response.status, response.body)
        if not response.ok:
            raise APIError(f"{method} {path} failed", response.status, response.body)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self) -> HealthInfo:
        return _decode(decode_health, self._call("GET", "/global/health"), "health")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def list_sessions(self) -> List[SessionInfo]:
        return _decode_list(decode_session, self._call("GET", "/session"), "session")

    def create_session(self, title: Optional[str] = None) -> Session:
        """Create a session. An empty title lets the server pick one."""
        payload: Dict[str, Any] = {}
        if title:
            payload["title"] = title
        info = _decode(decode_session, self._call("POST", "/session", payload), "session")
        logger.debug("Created session %s", info.id)
        return Session(self, info)

    def get_session(self, session_id: str) -> Session:
        """
        Fetch an existing session.

        Raises:
            NotFound: No session with that id
        """
        data = self._call("GET", f"/session/{_segment(session_id)}")
        return Session(self, _decode(decode_session, data, "session"))

    def get_session_info(self, session_id: str) -> SessionInfo:
        return self.get_session(session_id).info

    def delete_session(self, session_id: str) -> bool:
        result = self._call("DELETE", f"/session/{_segment(session_id)}")
        return result is not False

    def abort_session(self, session_id: str) -> bool:
        """Ask the server to stop generating in ``session_id``."""
        result = self._call("POST", f"/session/{_segment(session_id)}/abort")
        return result is not False

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def _message_payload(
        self, prompt: str, provider_id: Optional[str], model_id: Optional[str]
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"parts": [{"type": "text", "text": prompt}]}
        provider_id = provider_id or self.options.default_provider
        model_id = model_id or self.options.default_model
        if provider_id or model_id:
            model: Dict[str, str] = {}
            if provider_id:
                model["providerID"] = provider_id
            if model_id:
                model["modelID"] = model_id
            payload["model"] = model
        return payload

    def send_message(
        self,
        session_id: str,
        prompt: str,
        provider_id: Optional[str] = None,
        model_id: Optional[str] = None,
    ) -> MessageWithParts:
        """Send a prompt and block until the assistant reply is complete."""
        data = self._call(
            "POST",
            f"/session/{_segment(session_id)}/message",
            self._message_payload(prompt, provider_id, model_id),
        )
        return _decode(decode_message_with_parts, data, "message")

    def send_message_streaming(
        self,
        session_id: str,
        prompt: str,
        options: StreamOptions,
        provider_id: Optional[str] = None,
        model_id: Optional[str] = None,
    ) -> Optional[MessageWithParts]:
        """
        Send a prompt and forward its parts to ``options.on_part`` as they
        are generated. Blocks like ``send_message``.

        Exactly one of ``on_complete`` / ``on_error`` is called, after the
        last ``on_part``. Returns the final message, or None on failure.
        """
        operation = StreamingSend(
            self._transport.clone,
            lambda: self.send_message(session_id, prompt, provider_id, model_id),
            session_id,
            options,
        )
        return operation.run()

    def get_messages(self, session_id: str, limit: Optional[int] = None) -> List[MessageWithParts]:
        path = f"/session/{_segment(session_id)}/message"
        if limit is not None:
            path += f"?limit={limit}"
        return _decode_list(decode_message_with_parts, self._call("GET", path), "message")

    # ------------------------------------------------------------------
    # Permissions / projects
    # ------------------------------------------------------------------

    def list_permissions(self) -> List[PermissionRequest]:
        data = self._call("GET", "/permission")
        return _decode_list(decode_permission_request, data, "permission request")

    def reply_permission(self, reply: PermissionReply) -> bool:
        payload: Dict[str, Any] = {"action": reply.action}
        if reply.message is not None:
            payload["message"] = reply.message
        result = self._call("POST", f"/permission/{_segment(reply.request_id)}", payload)
        return result is not False

    def list_projects(self) -> List[Project]:
        return _decode_list(decode_project, self._call("GET", "/project"), "project")

    def current_project(self) -> Project:
        return _decode(decode_project, self._call("GET", "/project/current"), "project")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe_events(self) -> EventStream:
        """
        Open a subscription to the server's event stream.

        Events are queued in arrival order. The stream closes when the
        connection fails (``stream.error`` says why) or when the caller or
        the client closes it; closing it stops its connection.
        """
        transport = self._transport.clone()
        stream: EventStream = BlockingStream(on_close=transport.close)

        def on_record(record) -> None:
            dispatch_record(record, stream.put)

        transport.start_stream(
            EVENT_PATH,
            [],
            on_record,
            lambda error: stream.close(error=error),
            stream.close,
        )
        with self._lock:
            self._streams = [s for s in self._streams if not s.closed]
            self._streams.append(stream)
        return stream

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close open event streams, the transport and any private server. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            streams, self._streams = self._streams, []

        for stream in streams:
            stream.close()
        self._transport.close()
        if self._server is not None:
            self._server.stop()

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
