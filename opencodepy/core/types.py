"""Domain types returned by the server, and their JSON decoders.

Parts and messages are closed tagged unions: each variant is a dataclass
with a class-level ``type`` (or ``role``) tag, and decoding picks the variant
once, from a dispatch table, when the JSON is parsed. ``None`` on an
Optional field means the server did not send it.
"""

from dataclasses import dataclass, field
import json
import logging
from typing import Any, Callable, ClassVar, Dict, List, Optional, Union

from opencodepy.core.errors import ProtocolMismatch

logger = logging.getLogger(__name__)

JsonObject = Dict[str, Any]


def _str(obj: JsonObject, key: str, default: str = "") -> str:
    value = obj.get(key)
    return value if isinstance(value, str) else default


def _opt_str(obj: JsonObject, key: str) -> Optional[str]:
    value = obj.get(key)
    return value if isinstance(value, str) else None


def _opt_int(obj: JsonObject, key: str) -> Optional[int]:
    value = obj.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _object(obj: JsonObject, key: str) -> JsonObject:
    value = obj.get(key)
    return value if isinstance(value, dict) else {}


def _require_object(obj: Any, what: str) -> JsonObject:
    if not isinstance(obj, dict):
        raise ProtocolMismatch(f"Expected a JSON object for {what}, got {type(obj).__name__}")
    return obj


# ============================================================================
# Time / sessions / projects
# ============================================================================

@dataclass
class TimeInfo:
    created: int = 0
    updated: int = 0
    compacting: Optional[int] = None
    archived: Optional[int] = None
    completed: Optional[int] = None


def decode_time(obj: Any) -> TimeInfo:
    if not isinstance(obj, dict):
        return TimeInfo()
    return TimeInfo(
        created=_opt_int(obj, "created") or 0,
        updated=_opt_int(obj, "updated") or 0,
        compacting=_opt_int(obj, "compacting"),
        archived=_opt_int(obj, "archived"),
        completed=_opt_int(obj, "completed"),
    )


@dataclass
class SessionInfo:
    id: str
    slug: str = ""
    project_id: str = ""
    directory: str = ""
    title: str = ""
    version: str = ""
    time: TimeInfo = field(default_factory=TimeInfo)
    parent_id: Optional[str] = None
    share_url: Optional[str] = None


def decode_session(obj: Any) -> SessionInfo:
    obj = _require_object(obj, "session")
    share = obj.get("share")
    share_url = _opt_str(obj, "shareURL")
    if share_url is None and isinstance(share, dict):
        share_url = _opt_str(share, "url")
    return SessionInfo(
        id=_str(obj, "id"),
        slug=_str(obj, "slug"),
        project_id=_str(obj, "projectID"),
        directory=_str(obj, "directory"),
        title=_str(obj, "title"),
        version=_str(obj, "version"),
        time=decode_time(obj.get("time")),
        parent_id=_opt_str(obj, "parentID"),
        share_url=share_url,
    )


@dataclass
class SessionStatus:
    status: str
    message_id: Optional[str] = None
    part_id: Optional[str] = None


def decode_session_status(obj: Any) -> SessionStatus:
    if isinstance(obj, str):
        return SessionStatus(status=obj)
    obj = _require_object(obj, "session status")
    return SessionStatus(
        status=_str(obj, "type") or _str(obj, "status"),
        message_id=_opt_str(obj, "messageID"),
        part_id=_opt_str(obj, "partID"),
    )


@dataclass
class Project:
    id: str
    worktree: str = ""
    vcs: Optional[str] = None
    name: Optional[str] = None
    time: TimeInfo = field(default_factory=TimeInfo)
    sandboxes: List[str] = field(default_factory=list)


def decode_project(obj: Any) -> Project:
    obj = _require_object(obj, "project")
    sandboxes = obj.get("sandboxes")
    return Project(
        id=_str(obj, "id"),
        worktree=_str(obj, "worktree"),
        vcs=_opt_str(obj, "vcs"),
        name=_opt_str(obj, "name"),
        time=decode_time(obj.get("time")),
        sandboxes=[s for s in sandboxes if isinstance(s, str)] if isinstance(sandboxes, list) else [],
    )


@dataclass
class PermissionRequest:
    id: str
    session_id: str = ""
    permission: str = ""
    patterns: List[str] = field(default_factory=list)
    tool_message_id: Optional[str] = None
    tool_call_id: Optional[str] = None
    time: TimeInfo = field(default_factory=TimeInfo)


def decode_permission_request(obj: Any) -> PermissionRequest:
    obj = _require_object(obj, "permission request")
    patterns = obj.get("patterns")
    tool = _object(obj, "tool")
    return PermissionRequest(
        id=_str(obj, "id"),
        session_id=_str(obj, "sessionID"),
        permission=_str(obj, "permission"),
        patterns=[p for p in patterns if isinstance(p, str)] if isinstance(patterns, list) else [],
        tool_message_id=_opt_str(tool, "messageID"),
        tool_call_id=_opt_str(tool, "callID"),
        time=decode_time(obj.get("time")),
    )


PERMISSION_ACTIONS = ("once", "always", "reject")


@dataclass
class PermissionReply:
    request_id: str
    action: str = "once"
    message: Optional[str] = None

    def __post_init__(self) -> None:
        if self.action not in PERMISSION_ACTIONS:
            raise ValueError(
                f"Invalid permission action '{self.action}'. "
                f"Expected one of: {', '.join(PERMISSION_ACTIONS)}"
            )


@dataclass
class HealthInfo:
    healthy: bool = False
    version: str = ""


def decode_health(obj: Any) -> HealthInfo:
    obj = _require_object(obj, "health")
    return HealthInfo(healthy=obj.get("healthy") is True, version=_str(obj, "version"))


# ============================================================================
# Parts
# ============================================================================

@dataclass
class TextPart:
    type: ClassVar[str] = "text"
    id: str = ""
    text: str = ""
    is_delta: bool = False


@dataclass
class FilePart:
    type: ClassVar[str] = "file"
    id: str = ""
    file: str = ""
    content: Optional[str] = None


@dataclass
class ToolState:
    status: str = ""  # pending, running, completed, error
    error: Optional[str] = None


@dataclass
class ToolPart:
    type: ClassVar[str] = "tool"
    id: str = ""
    tool: str = ""
    input: Dict[str, str] = field(default_factory=dict)
    state: Optional[ToolState] = None


@dataclass
class ReasoningPart:
    type: ClassVar[str] = "reasoning"
    id: str = ""
    text: str = ""


Part = Union[TextPart, FilePart, ToolPart, ReasoningPart]


def _decode_text(obj: JsonObject) -> TextPart:
    return TextPart(id=_str(obj, "id"), text=_str(obj, "text"))


def _decode_file(obj: JsonObject) -> FilePart:
    return FilePart(
        id=_str(obj, "id"),
        file=_str(obj, "file") or _str(obj, "filename"),
        content=_opt_str(obj, "content"),
    )


def _decode_tool(obj: JsonObject) -> ToolPart:
    state_obj = obj.get("state")
    state = None
    if isinstance(state_obj, dict):
        state = ToolState(status=_str(state_obj, "status"), error=_opt_str(state_obj, "error"))
    # Tool input may sit on the part or inside the state.
    raw_input = obj.get("input")
    if not isinstance(raw_input, dict) and isinstance(state_obj, dict):
        raw_input = state_obj.get("input")
    inputs: Dict[str, str] = {}
    if isinstance(raw_input, dict):
        for key, value in raw_input.items():
            inputs[key] = value if isinstance(value, str) else json.dumps(value)
    return ToolPart(
        id=_str(obj, "id"),
        tool=_str(obj, "tool"),
        input=inputs,
        state=state,
    )


def _decode_reasoning(obj: JsonObject) -> ReasoningPart:
    return ReasoningPart(id=_str(obj, "id"), text=_str(obj, "text"))


PART_DECODERS: Dict[str, Callable[[JsonObject], Part]] = {
    TextPart.type: _decode_text,
    FilePart.type: _decode_file,
    ToolPart.type: _decode_tool,
    ReasoningPart.type: _decode_reasoning,
}


def decode_part(obj: Any) -> Part:
    """
    Decode one part. Raises ProtocolMismatch for an unknown part kind.
    """
    obj = _require_object(obj, "part")
    kind = _str(obj, "type", "text")
    decoder = PART_DECODERS.get(kind)
    if decoder is None:
        raise ProtocolMismatch(f"Unknown part type: {kind}")
    return decoder(obj)


def decode_parts(items: Any) -> List[Part]:
    """Decode a part list, skipping kinds this client does not model."""
    parts: List[Part] = []
    if not isinstance(items, list):
        return parts
    for item in items:
        try:
            parts.append(decode_part(item))
        except ProtocolMismatch as e:
            logger.debug("Skipping part: %s", e)
    return parts


# ============================================================================
# Messages
# ============================================================================

@dataclass
class CacheTokens:
    read: int = 0
    write: int = 0


@dataclass
class TokenInfo:
    input: int = 0
    output: int = 0
    reasoning: int = 0
    cache: CacheTokens = field(default_factory=CacheTokens)


@dataclass
class ModelRef:
    provider_id: str = ""
    model_id: str = ""


@dataclass
class UserMessage:
    role: ClassVar[str] = "user"
    id: str = ""
    session_id: str = ""
    time: TimeInfo = field(default_factory=TimeInfo)
    agent: str = ""
    model: ModelRef = field(default_factory=ModelRef)
    system: Optional[str] = None


@dataclass
class AssistantMessage:
    role: ClassVar[str] = "assistant"
    id: str = ""
    session_id: str = ""
    time: TimeInfo = field(default_factory=TimeInfo)
    parent_id: str = ""
    model_id: str = ""
    provider_id: str = ""
    mode: str = ""
    agent: str = ""
    cwd: str = ""
    root: str = ""
    cost: float = 0.0
    tokens: TokenInfo = field(default_factory=TokenInfo)
    finish: Optional[str] = None


Message = Union[UserMessage, AssistantMessage]


def _decode_tokens(obj: Any) -> TokenInfo:
    if not isinstance(obj, dict):
        return TokenInfo()
    cache = _object(obj, "cache")
    return TokenInfo(
        input=_opt_int(obj, "input") or 0,
        output=_opt_int(obj, "output") or 0,
        reasoning=_opt_int(obj, "reasoning") or 0,
        cache=CacheTokens(read=_opt_int(cache, "read") or 0, write=_opt_int(cache, "write") or 0),
    )


def _decode_user(obj: JsonObject) -> UserMessage:
    model = _object(obj, "model")
    return UserMessage(
        id=_str(obj, "id"),
        session_id=_str(obj, "sessionID"),
        time=decode_time(obj.get("time")),
        agent=_str(obj, "agent"),
        model=ModelRef(provider_id=_str(model, "providerID"), model_id=_str(model, "modelID")),
        system=_opt_str(obj, "system"),
    )


def _decode_assistant(obj: JsonObject) -> AssistantMessage:
    path = _object(obj, "path")
    cost = obj.get("cost")
    return AssistantMessage(
        id=_str(obj, "id"),
        session_id=_str(obj, "sessionID"),
        time=decode_time(obj.get("time")),
        parent_id=_str(obj, "parentID"),
        model_id=_str(obj, "modelID"),
        provider_id=_str(obj, "providerID"),
        mode=_str(obj, "mode"),
        agent=_str(obj, "agent"),
        cwd=_str(path, "cwd"),
        root=_str(path, "root"),
        cost=float(cost) if isinstance(cost, (int, float)) else 0.0,
        tokens=_decode_tokens(obj.get("tokens")),
        finish=_opt_str(obj, "finish"),
    )


MESSAGE_DECODERS: Dict[str, Callable[[JsonObject], Message]] = {
    UserMessage.role: _decode_user,
    AssistantMessage.role: _decode_assistant,
}


def decode_message(obj: Any) -> Message:
    obj = _require_object(obj, "message")
    role = _str(obj, "role", "user")
    decoder = MESSAGE_DECODERS.get(role)
    if decoder is None:
        raise ProtocolMismatch(f"Unknown message role: {role}")
    return decoder(obj)


@dataclass
class MessageWithParts:
    info: Message
    parts: List[Part] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.info.id

    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def is_assistant(self) -> bool:
        return isinstance(self.info, AssistantMessage)

    def tokens(self) -> Optional[TokenInfo]:
        if isinstance(self.info, AssistantMessage):
            return self.info.tokens
        return None

    def cost(self) -> Optional[float]:
        if isinstance(self.info, AssistantMessage):
            return self.info.cost
        return None


def decode_message_with_parts(obj: Any) -> MessageWithParts:
    obj = _require_object(obj, "message with parts")
    info = obj.get("info")
    return MessageWithParts(
        info=decode_message(info) if info is not None else UserMessage(),
        parts=decode_parts(obj.get("parts")),
    )
