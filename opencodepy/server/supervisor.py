"""Lifecycle supervision for a local ``opencode serve`` process.

Usage:
    with Server.spawn(ServerOptions(port=0)) as server:
        print(server.url)
        ...
    # stopped here (SIGTERM, 5s grace, then SIGKILL)

Readiness is detected by matching the server's log output. This is a
best-effort heuristic: a server release that words its listening line
differently will no longer be detected and startup will time out.
"""

from enum import Enum
import logging
import re
import threading
import time
import weakref
from typing import Dict, List, Optional, Tuple

from opencodepy.core.configs import ServerOptions
from opencodepy.core.errors import ProcessExitedDuringStartup, StartupTimeout
from opencodepy.server.process import ProcessHandle

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1
STOP_GRACE_PERIOD = 5.0

# "opencode server listening on http://127.0.0.1:4096", "Server running at ..."
URL_PATTERN = re.compile(
    r"(?:listening|running|started|bound)\s+(?:on|at)\s+(https?://\S+)",
    re.IGNORECASE,
)
PORT_PATTERN = re.compile(r":(\d+)")
HOST_PATTERN = re.compile(r"^https?://([^:/\s]+)")
LISTEN_KEYWORDS = ("listen", "bound", "server")


class ServerState(Enum):
    UNSTARTED = "unstarted"
    SPAWNING = "spawning"
    AWAITING_READY = "awaiting_ready"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


def build_command(options: ServerOptions) -> List[str]:
    """Arguments passed to the server binary."""
    args = ["serve", "--hostname", options.hostname, "--port", str(options.port)]
    if options.mdns:
        args.append("--mdns")
    return args


def build_environment(options: ServerOptions) -> Dict[str, str]:
    """Environment overrides for the child; secrets never go on argv."""
    env: Dict[str, str] = {}
    if options.config_json is not None:
        env["OPENCODE_CONFIG_CONTENT"] = options.config_json
    if options.password is not None:
        env["OPENCODE_SERVER_PASSWORD"] = options.password
    if options.username is not None:
        env["OPENCODE_SERVER_USERNAME"] = options.username
    return env


def detect_listening(line: str, options: ServerOptions) -> Optional[Tuple[str, str, int]]:
    """
    Check one output line for a readiness announcement.

    Returns:
        (url, hostname, port) if the line announces the server, else None
    """
    match = URL_PATTERN.search(line)
    if match:
        url = match.group(1).rstrip(".,;)")
        port = options.port
        port_match = PORT_PATTERN.search(url)
        if port_match:
            port = int(port_match.group(1))
        host_match = HOST_PATTERN.search(url)
        hostname = host_match.group(1) if host_match else options.hostname
        return url, hostname, port

    # Port 0 means "let the OS pick"; there is no token to look for.
    if options.port:
        lowered = line.lower()
        if f":{options.port}" in line and any(k in lowered for k in LISTEN_KEYWORDS):
            url = f"http://{options.hostname}:{options.port}"
            return url, options.hostname, options.port

    return None


def _shutdown_process(process: ProcessHandle, grace_period: float) -> Optional[int]:
    """Terminate, wait up to ``grace_period``, kill, then reap."""
    if process.is_running():
        if grace_period > 0:
            process.terminate()
            deadline = time.monotonic() + grace_period
            while process.is_running() and time.monotonic() < deadline:
                time.sleep(POLL_INTERVAL)
        if process.is_running():
            logger.info("Server pid %s did not exit gracefully; killing", process.pid)
            process.kill()
    return process.wait()


class Server:
    """
    Owner of one server process.

    Ownership is exclusive: ``transfer()`` hands the process to a new
    Server and leaves this one empty. The owner stops the process on
    ``stop()``, on leaving a ``with`` block, or when it is garbage collected.
    """

    def __init__(self, options: Optional[ServerOptions] = None):
        self.options = options or ServerOptions()
        self._state = ServerState.UNSTARTED
        self._process: Optional[ProcessHandle] = None
        self._finalizer: Optional[weakref.finalize] = None
        self._url = ""
        self._hostname = ""
        self._port = 0
        self._lock = threading.Lock()

    @classmethod
    def spawn(cls, options: Optional[ServerOptions] = None) -> "Server":
        """
        Spawn a server and wait until it announces it is listening.

        Raises:
            ServerSpawnError: The binary could not be executed
            StartupTimeout: No readiness line within ``startup_timeout``
            ProcessExitedDuringStartup: The process exited first
        """
        server = cls(options)
        server.start()
        return server

    def start(self) -> None:
        """Launch the process and block until it is ready."""
        with self._lock:
            if self._state is not ServerState.UNSTARTED:
                raise RuntimeError(f"Server cannot start from state {self._state.value}")
            self._state = ServerState.SPAWNING

        opts = self.options
        try:
            process = ProcessHandle.spawn(
                opts.opencode_binary,
                build_command(opts),
                env_overrides=build_environment(opts),
                cwd=opts.working_directory,
            )
        except BaseException:
            self._set_state(ServerState.STOPPED)
            raise

        self._set_state(ServerState.AWAITING_READY)
        try:
            url, hostname, port = self._await_ready(process)
        except BaseException:
            # Includes KeyboardInterrupt; the child must not outlive a failed start.
            _shutdown_process(process, 0)
            self._set_state(ServerState.STOPPED)
            raise

        process.start_draining()
        with self._lock:
            self._process = process
            self._url, self._hostname, self._port = url, hostname, port
            self._finalizer = weakref.finalize(
                self, _shutdown_process, process, STOP_GRACE_PERIOD
            )
            self._state = ServerState.RUNNING
        logger.info("Server ready at %s (pid %s)", url, process.pid)

    def _set_state(self, state: ServerState) -> None:
        with self._lock:
            self._state = state

    def _await_ready(self, process: ProcessHandle) -> Tuple[str, str, int]:
        opts = self.options
        start = time.monotonic()
        output: List[str] = []
        detected = None

        while detected is None:
            if time.monotonic() - start >= opts.startup_timeout:
                _shutdown_process(process, 0)
                raise StartupTimeout(opts.startup_timeout, "".join(output))

            line = process.read_line(POLL_INTERVAL)
            if line is not None:
                output.append(line)
                detected = detect_listening(line, opts)
            elif not process.is_running():
                break

        if not process.is_running():
            exit_code = process.wait()
            output.append(process.drain())
            raise ProcessExitedDuringStartup(exit_code, "".join(output))

        return detected

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Graceful stop: SIGTERM, 5s grace, SIGKILL, reap. Idempotent."""
        self._shutdown(graceful=True)

    def force_stop(self) -> None:
        """Immediate SIGKILL and reap. Idempotent."""
        self._shutdown(graceful=False)

    def _shutdown(self, graceful: bool) -> None:
        with self._lock:
            finalizer = self._finalizer
            self._finalizer = None
            if finalizer is None or not finalizer.alive:
                return
            self._state = ServerState.STOPPING

        if graceful:
            # A finalize object runs at most once.
            finalizer()
        else:
            detached = finalizer.detach()
            if detached is not None:
                _, _, (process, _), _ = detached
                _shutdown_process(process, 0)

        with self._lock:
            self._state = ServerState.STOPPED
        logger.info("Server at %s stopped", self._url)

    def transfer(self) -> "Server":
        """Move ownership of the process to a new Server; this one is left empty."""
        with self._lock:
            other = Server(self.options)
            finalizer = self._finalizer
            if finalizer is not None and finalizer.alive:
                finalizer.detach()
                other._process = self._process
                other._url, other._hostname, other._port = self._url, self._hostname, self._port
                other._finalizer = weakref.finalize(
                    other, _shutdown_process, self._process, STOP_GRACE_PERIOD
                )
                other._state = self._state
            self._process = None
            self._finalizer = None
            self._url, self._hostname, self._port = "", "", 0
            if self._state is not ServerState.UNSTARTED:
                self._state = ServerState.STOPPED
        return other

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.is_running()

    @property
    def url(self) -> str:
        return self._url

    @property
    def hostname(self) -> str:
        return self._hostname

    @property
    def port(self) -> int:
        return self._port

    @property
    def pid(self) -> int:
        return self._process.pid if self._process else 0

    def wait(self) -> int:
        """Block until the process exits. Returns -1 if nothing is owned."""
        if self._process is None:
            return -1
        return self._process.wait()

    def __enter__(self) -> "Server":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def __repr__(self) -> str:
        return f"Server(url={self._url!r}, pid={self.pid}, state={self._state.value})"
