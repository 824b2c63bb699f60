"""
Terminal output for the CLI: colour helpers and one-line event summaries.
"""

from typing import Optional, TextIO

from opencodepy.core.events import (
    Event,
    FileEditedEvent,
    MessagePartUpdatedEvent,
    PermissionAskedEvent,
    SessionCreatedEvent,
    SessionErrorEvent,
    SessionIdleEvent,
    SessionStatusEvent,
    SessionUpdatedEvent,
)
from opencodepy.core.types import Part, TextPart, ToolPart


TEXT_COLOR_MAPPING = {
    "blue": "36;1",
    "yellow": "33;1",
    "pink": "38;5;200",
    "green": "32;1",
    "red": "31;1",
    "cyan": "96;1",
    "gray": "90",
}

# Event type prefix -> colour used by the events command.
EVENT_COLORS = {
    "server.": "gray",
    "global.": "gray",
    "session.": "blue",
    "message.": "cyan",
    "permission.": "yellow",
    "project.": "pink",
    "file.": "green",
    "installation.": "pink",
}


def get_colored_text(text: str, color: str) -> str:
    """
    Get colored text.

    Raises:
        ValueError: If the specified color is not supported
    """
    if color not in TEXT_COLOR_MAPPING:
        raise ValueError(
            f"Unsupported color: {color}. Available colors: {', '.join(TEXT_COLOR_MAPPING.keys())}"
        )
    return f"\u001b[{TEXT_COLOR_MAPPING[color]}m{text}\u001b[0m"


def event_color(event_type: str) -> str:
    for prefix, color in EVENT_COLORS.items():
        if event_type.startswith(prefix):
            return color
    return "gray"


def describe_part(part: Part) -> str:
    if isinstance(part, TextPart):
        return part.text
    if isinstance(part, ToolPart):
        status = part.state.status if part.state else "pending"
        return f"{part.tool} ({status})"
    return part.type


def describe_event(event: Event) -> str:
    """One-line human summary of an event."""
    if isinstance(event, (SessionCreatedEvent, SessionUpdatedEvent)):
        detail = f"{event.session.id} {event.session.title}".strip()
    elif isinstance(event, SessionStatusEvent):
        detail = f"{event.session_id} {event.status.status}"
    elif isinstance(event, SessionIdleEvent):
        detail = event.session_id
    elif isinstance(event, SessionErrorEvent):
        detail = f"{event.session_id} {event.error}".strip()
    elif isinstance(event, MessagePartUpdatedEvent):
        detail = f"{event.session_id} {event.part.type}: {describe_part(event.part)}"
    elif isinstance(event, PermissionAskedEvent):
        detail = f"{event.request.session_id} {event.request.permission}"
    elif isinstance(event, FileEditedEvent):
        detail = event.file
    else:
        detail = ""
    detail = " ".join(detail.split())
    if len(detail) > 120:
        detail = detail[:117] + "..."
    return f"{event.type} {detail}".rstrip()


class UIManager:
    """Coloured terminal output for the CLI."""

    def __init__(self, color: bool = True):
        self.color = color

    def success(self, message: str) -> None:
        self._print_colored(message, "green")

    def error(self, message: str) -> None:
        self._print_colored(message, "red")

    def warning(self, message: str) -> None:
        self._print_colored(message, "yellow")

    def info(self, message: str) -> None:
        self._print_colored(message, "blue")

    def dim(self, text: str) -> None:
        self._print_colored(text, "gray")

    def event(self, event: Event) -> None:
        self._print_colored(describe_event(event), event_color(event.type))

    def _print_colored(
        self,
        text: str,
        color: str,
        end: str = "\n",
        file: Optional[TextIO] = None,
    ) -> None:
        """
        Print text with color highlighting.

        Args:
            text: The text to print
            color: Color to use
            end: String to append at the end
            file: Optional file object to write to
        """
        if self.color:
            try:
                text = get_colored_text(text, color)
            except ValueError:
                # Fall back to plain text if color is invalid
                pass
        print(text, end=end, file=file)
        if file:
            file.flush()

    def print_text(self, text: str, end: str = "", file: Optional[TextIO] = None) -> None:
        """Print raw text without a newline, flushing so deltas appear at once."""
        print(text, end=end, file=file, flush=True)
