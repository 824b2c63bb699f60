"""Typed events pushed by the server over the ``/event`` stream.

Each SSE record carries a JSON object ``{"type": ..., "properties": {...}}``.
``decode_event`` maps it onto one variant of the closed ``Event`` union;
anything that does not fit raises MalformedRecord or ProtocolMismatch, and
``dispatch_record`` turns those into silent drops so a bad record can never
take a subscription down.
"""

from dataclasses import dataclass
import json
import logging
from typing import Any, Callable, ClassVar, Dict, Optional, Union

from opencodepy.core.errors import MalformedRecord, ProtocolError, ProtocolMismatch
from opencodepy.core.types import (
    Message,
    Part,
    PermissionRequest,
    Project,
    SessionInfo,
    SessionStatus,
    TextPart,
    decode_message,
    decode_part,
    decode_permission_request,
    decode_project,
    decode_session,
    decode_session_status,
)
from opencodepy.transport.sse import SSERecord

logger = logging.getLogger(__name__)

JsonObject = Dict[str, Any]


# ============================================================================
# Server
# ============================================================================

@dataclass
class ServerConnectedEvent:
    type: ClassVar[str] = "server.connected"


@dataclass
class ServerHeartbeatEvent:
    type: ClassVar[str] = "server.heartbeat"


@dataclass
class ServerInstanceDisposedEvent:
    type: ClassVar[str] = "server.instance.disposed"
    directory: str = ""


@dataclass
class GlobalDisposedEvent:
    type: ClassVar[str] = "global.disposed"


# ============================================================================
# Session
# ============================================================================

@dataclass
class SessionCreatedEvent:
    type: ClassVar[str] = "session.created"
    session: SessionInfo


@dataclass
class SessionUpdatedEvent:
    type: ClassVar[str] = "session.updated"
    session: SessionInfo


@dataclass
class SessionDeletedEvent:
    type: ClassVar[str] = "session.deleted"
    session_id: str


@dataclass
class SessionStatusEvent:
    type: ClassVar[str] = "session.status"
    session_id: str
    status: SessionStatus


@dataclass
class SessionIdleEvent:
    type: ClassVar[str] = "session.idle"
    session_id: str


@dataclass
class SessionErrorEvent:
    type: ClassVar[str] = "session.error"
    session_id: str
    error: str = ""


# ============================================================================
# Message
# ============================================================================

@dataclass
class MessageUpdatedEvent:
    type: ClassVar[str] = "message.updated"
    info: Message


@dataclass
class MessageRemovedEvent:
    type: ClassVar[str] = "message.removed"
    session_id: str
    message_id: str


@dataclass
class MessagePartUpdatedEvent:
    type: ClassVar[str] = "message.part.updated"
    session_id: str
    message_id: str
    part: Part
    delta: Optional[str] = None


@dataclass
class MessagePartRemovedEvent:
    type: ClassVar[str] = "message.part.removed"
    session_id: str
    message_id: str
    part_id: str


# ============================================================================
# Permission / project / file / installation
# ============================================================================

@dataclass
class PermissionAskedEvent:
    type: ClassVar[str] = "permission.asked"
    request: PermissionRequest


@dataclass
class PermissionRepliedEvent:
    type: ClassVar[str] = "permission.replied"
    request_id: str
    session_id: str
    reply: str  # once, always, reject


@dataclass
class ProjectUpdatedEvent:
    type: ClassVar[str] = "project.updated"
    project: Project


@dataclass
class FileEditedEvent:
    type: ClassVar[str] = "file.edited"
    file: str


@dataclass
class InstallationUpdatedEvent:
    type: ClassVar[str] = "installation.updated"
    version: str


@dataclass
class InstallationUpdateAvailableEvent:
    type: ClassVar[str] = "installation.update-available"
    version: str


Event = Union[
    ServerConnectedEvent,
    ServerHeartbeatEvent,
    ServerInstanceDisposedEvent,
    GlobalDisposedEvent,
    SessionCreatedEvent,
    SessionUpdatedEvent,
    SessionDeletedEvent,
    SessionStatusEvent,
    SessionIdleEvent,
    SessionErrorEvent,
    MessageUpdatedEvent,
    MessageRemovedEvent,
    MessagePartUpdatedEvent,
    MessagePartRemovedEvent,
    PermissionAskedEvent,
    PermissionRepliedEvent,
    ProjectUpdatedEvent,
    FileEditedEvent,
    InstallationUpdatedEvent,
    InstallationUpdateAvailableEvent,
]


# ============================================================================
# Decoding
# ============================================================================

def _s(props: JsonObject, *keys: str) -> str:
    for key in keys:
        value = props.get(key)
        if isinstance(value, str):
            return value
    return ""


def _info(props: JsonObject) -> Any:
    """Some events wrap their payload in ``info``; older servers do not."""
    return props.get("info", props)


def _error_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        data = value.get("data")
        if isinstance(data, dict) and isinstance(data.get("message"), str):
            return data["message"]
        if isinstance(value.get("message"), str):
            return value["message"]
        return _s(value, "name")
    return ""


def decode_part_update(props: JsonObject) -> MessagePartUpdatedEvent:
    """
    Decode ``message.part.updated`` properties.

    A string ``delta`` replaces the text of a text part, which is then
    flagged with ``is_delta``.
    """
    part_obj = props.get("part")
    if not isinstance(part_obj, dict):
        raise ProtocolMismatch("message.part.updated without a part object")
    part = decode_part(part_obj)
    delta = props.get("delta")
    if not isinstance(delta, str):
        delta = None
    if delta is not None and isinstance(part, TextPart):
        part.text = delta
        part.is_delta = True
    return MessagePartUpdatedEvent(
        session_id=_s(part_obj, "sessionID"),
        message_id=_s(part_obj, "messageID"),
        part=part,
        delta=delta,
    )


EVENT_DECODERS: Dict[str, Callable[[JsonObject], Event]] = {
    ServerConnectedEvent.type: lambda p: ServerConnectedEvent(),
    ServerHeartbeatEvent.type: lambda p: ServerHeartbeatEvent(),
    ServerInstanceDisposedEvent.type: lambda p: ServerInstanceDisposedEvent(
        directory=_s(p, "directory")
    ),
    GlobalDisposedEvent.type: lambda p: GlobalDisposedEvent(),
    SessionCreatedEvent.type: lambda p: SessionCreatedEvent(session=decode_session(_info(p))),
    SessionUpdatedEvent.type: lambda p: SessionUpdatedEvent(session=decode_session(_info(p))),
    SessionDeletedEvent.type: lambda p: SessionDeletedEvent(
        session_id=_s(p, "sessionID") or _s(p.get("info") or {}, "id")
    ),
    SessionStatusEvent.type: lambda p: SessionStatusEvent(
        session_id=_s(p, "sessionID"), status=decode_session_status(p.get("status"))
    ),
    SessionIdleEvent.type: lambda p: SessionIdleEvent(session_id=_s(p, "sessionID")),
    SessionErrorEvent.type: lambda p: SessionErrorEvent(
        session_id=_s(p, "sessionID"), error=_error_text(p.get("error"))
    ),
    MessageUpdatedEvent.type: lambda p: MessageUpdatedEvent(info=decode_message(_info(p))),
    MessageRemovedEvent.type: lambda p: MessageRemovedEvent(
        session_id=_s(p, "sessionID"), message_id=_s(p, "messageID")
    ),
    MessagePartUpdatedEvent.type: decode_part_update,
    MessagePartRemovedEvent.type: lambda p: MessagePartRemovedEvent(
        session_id=_s(p, "sessionID"), message_id=_s(p, "messageID"), part_id=_s(p, "partID")
    ),
    PermissionAskedEvent.type: lambda p: PermissionAskedEvent(
        request=decode_permission_request(p)
    ),
    PermissionRepliedEvent.type: lambda p: PermissionRepliedEvent(
        request_id=_s(p, "requestID", "permissionID"),
        session_id=_s(p, "sessionID"),
        reply=_s(p, "reply", "response"),
    ),
    ProjectUpdatedEvent.type: lambda p: ProjectUpdatedEvent(project=decode_project(_info(p))),
    FileEditedEvent.type: lambda p: FileEditedEvent(file=_s(p, "file")),
    InstallationUpdatedEvent.type: lambda p: InstallationUpdatedEvent(version=_s(p, "version")),
    InstallationUpdateAvailableEvent.type: lambda p: InstallationUpdateAvailableEvent(
        version=_s(p, "version")
    ),
}


def parse_payload(record: SSERecord) -> JsonObject:
    """
    JSON-decode a record's data.

    Raises:
        MalformedRecord: If the data is not a JSON object
    """
    try:
        payload = json.loads(record.data)
    except ValueError as e:
        raise MalformedRecord(f"Record data is not JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedRecord("Record data is not a JSON object")
    return payload


def record_type(payload: JsonObject) -> str:
    value = payload.get("type")
    return value if isinstance(value, str) else ""


def record_properties(payload: JsonObject) -> JsonObject:
    props = payload.get("properties")
    return props if isinstance(props, dict) else {}


def decode_event(record: SSERecord) -> Event:
    """
    Decode one record into an Event.

    Raises:
        MalformedRecord: Data is not a JSON object
        ProtocolMismatch: Unknown event type or unexpected shape
    """
    payload = parse_payload(record)
    kind = record_type(payload)
    decoder = EVENT_DECODERS.get(kind)
    if decoder is None:
        raise ProtocolMismatch(f"Unknown event type: {kind or '<missing>'}")
    try:
        return decoder(record_properties(payload))
    except ProtocolError:
        raise
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise ProtocolMismatch(f"Bad {kind} payload: {e}") from e


def dispatch_record(record: SSERecord, sink: Callable[[Event], Any]) -> bool:
    """
    Decode ``record`` and hand the event to ``sink``.

    Returns False (and logs at debug level) when the record was dropped.
    """
    try:
        event = decode_event(record)
    except ProtocolError as e:
        logger.debug("Dropping record: %s", e)
        return False
    sink(event)
    return True
