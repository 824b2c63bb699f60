"""Exception hierarchy for opencodepy.

Every error raised by the library derives from OpencodeError so callers can
catch the whole family at one site. Transport failures carry no HTTP status;
APIError carries the status and raw body of a non-2xx response.
"""

from typing import Optional


class OpencodeError(RuntimeError):
    """Base class for all opencodepy errors."""


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class TransportError(OpencodeError):
    """A request could not be completed at the network level."""


class ConnectionFailed(TransportError):
    """The server was unreachable (refused, reset, DNS, ...)."""


class TransportTimeout(TransportError):
    """A connect or read timeout elapsed."""


# ---------------------------------------------------------------------------
# Server process
# ---------------------------------------------------------------------------

class ServerError(OpencodeError):
    """Spawning or supervising the server process failed."""


class ServerSpawnError(ServerError):
    """The server binary could not be launched at all."""


class StartupTimeout(ServerError):
    """No readiness line was seen within the startup timeout."""

    def __init__(self, timeout: float, output: str = ""):
        self.timeout = timeout
        self.output = output
        super().__init__(
            f"Server startup timeout: did not detect listening message within "
            f"{timeout:.1f}s. Output: {output}"
        )


class ProcessExitedDuringStartup(ServerError):
    """The server process exited before announcing readiness."""

    def __init__(self, exit_code: int, output: str = ""):
        self.exit_code = exit_code
        self.output = output
        super().__init__(
            f"Server process exited during startup with code {exit_code}. "
            f"Output: {output}"
        )


# ---------------------------------------------------------------------------
# Wire protocol
# ---------------------------------------------------------------------------

class ProtocolError(OpencodeError):
    """Data from the server did not have the expected shape."""


class MalformedRecord(ProtocolError):
    """A pushed record's data is not a JSON object."""


class ProtocolMismatch(ProtocolError):
    """A pushed record decoded but its type or shape is not recognised."""


class MalformedResponse(ProtocolError):
    """A unary response body could not be decoded."""


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

class APIError(OpencodeError):
    """The server answered with a non-success status."""

    def __init__(self, message: str, status: int, body: Optional[str] = None):
        self.status = status
        self.body = body
        super().__init__(f"{message} (HTTP {status})")


class NotFound(APIError):
    """The requested resource does not exist (HTTP 404)."""
