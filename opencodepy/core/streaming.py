"""Send-and-stream: one blocking send merged with the deltas pushed for it.

The server answers ``POST /session/{id}/message`` only once the assistant
message is complete, while the partial output travels over ``/event`` as
``message.part.updated`` records. ``StreamingSend`` opens a private push
subscription, waits briefly for the server's handshake, issues the send and
forwards the deltas of the target session to ``on_part`` until the send
resolves. Exactly one of ``on_complete`` / ``on_error`` runs afterwards, and
never while an ``on_part`` call is still in flight.
"""

from dataclasses import dataclass
import logging
import threading
from typing import Callable, Optional

from opencodepy.core.errors import OpencodeError, ProtocolError
from opencodepy.core.events import (
    MessagePartUpdatedEvent,
    ServerConnectedEvent,
    decode_part_update,
    parse_payload,
    record_properties,
    record_type,
)
from opencodepy.core.types import MessageWithParts, Part
from opencodepy.transport.http import HttpTransport
from opencodepy.transport.sse import SSERecord

logger = logging.getLogger(__name__)

EVENT_PATH = "/event"
HANDSHAKE_TIMEOUT = 2.0


@dataclass
class StreamOptions:
    """
    Callbacks for a streaming send.

    ``on_part`` runs on the stream worker thread; ``on_complete`` and
    ``on_error`` run on the caller's thread after the worker has stopped.
    """
    on_part: Optional[Callable[[Part], None]] = None
    on_complete: Optional[Callable[[MessageWithParts], None]] = None
    on_error: Optional[Callable[[str], None]] = None


class _StreamState:
    """Correlation state for one send-and-stream call."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.connected = False
        self.closed = False
        self.done = False
        self.stream_error: Optional[str] = None
        self.cond = threading.Condition()

    def handshake_settled(self) -> bool:
        return self.connected or self.closed or self.stream_error is not None


class StreamingSend:
    """
    One send-and-stream operation.

    Args:
        transport_factory: Builds a fresh transport for the private
            subscription; it is closed when the operation ends
        send_call: Performs the blocking send and returns the final message;
            any exception it raises becomes the on_error outcome
        session_id: Only deltas of this session are forwarded
        options: Callbacks
        handshake_timeout: Seconds to wait for ``server.connected`` before
            sending anyway
    """

    def __init__(
        self,
        transport_factory: Callable[[], HttpTransport],
        send_call: Callable[[], MessageWithParts],
        session_id: str,
        options: StreamOptions,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
    ):
        self._transport_factory = transport_factory
        self._send_call = send_call
        self._options = options
        self._handshake_timeout = handshake_timeout
        self._state = _StreamState(session_id)

    @property
    def stream_error(self) -> Optional[str]:
        """Push-channel failure seen during the call, if any."""
        with self._state.cond:
            return self._state.stream_error

    def run(self) -> Optional[MessageWithParts]:
        """
        Execute the send. Blocks until the message is complete.

        Returns:
            The final message, or None if the send failed
        """
        state = self._state
        message: Optional[MessageWithParts] = None
        error: Optional[str] = None

        transport = self._transport_factory()
        try:
            transport.start_stream(
                EVENT_PATH, [], self._on_record, self._on_stream_error, self._on_stream_close
            )

            with state.cond:
                if not state.cond.wait_for(state.handshake_settled, self._handshake_timeout):
                    logger.debug(
                        "No stream handshake within %.1fs; sending anyway", self._handshake_timeout
                    )

            try:
                message = self._send_call()
            except OpencodeError as e:
                error = str(e)
            except Exception as e:
                logger.exception("Send failed unexpectedly")
                error = str(e) or type(e).__name__

            with state.cond:
                state.done = True
            transport.stop_stream()
        finally:
            transport.close()

        if state.stream_error is not None:
            logger.warning("Event stream failed during send: %s", state.stream_error)

        if error is not None:
            if self._options.on_error:
                self._options.on_error(error)
            return None
        if self._options.on_complete:
            self._options.on_complete(message)
        return message

    # ------------------------------------------------------------------
    # Worker-thread callbacks
    # ------------------------------------------------------------------

    def _on_record(self, record: SSERecord) -> None:
        state = self._state
        try:
            payload = parse_payload(record)
        except ProtocolError as e:
            logger.debug("Dropping record: %s", e)
            return

        kind = record_type(payload)
        if kind == ServerConnectedEvent.type:
            with state.cond:
                state.connected = True
                state.cond.notify_all()
            return
        if kind != MessagePartUpdatedEvent.type:
            return

        with state.cond:
            if state.done:
                return

        try:
            event = decode_part_update(record_properties(payload))
        except ProtocolError as e:
            logger.debug("Dropping part update: %s", e)
            return
        if event.session_id != state.session_id:
            return

        if self._options.on_part:
            try:
                self._options.on_part(event.part)
            except Exception:
                logger.exception("on_part callback failed")

    def _on_stream_error(self, error: str) -> None:
        with self._state.cond:
            self._state.stream_error = error
            self._state.cond.notify_all()

    def _on_stream_close(self) -> None:
        with self._state.cond:
            self._state.closed = True
            self._state.cond.notify_all()
