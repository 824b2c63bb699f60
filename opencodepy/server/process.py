"""Thin wrapper around the server subprocess and its stdout."""

import logging
import os
import queue
import subprocess
import threading
from typing import Dict, List, Optional, Sequence

from opencodepy.core.errors import ServerSpawnError

logger = logging.getLogger(__name__)


class ProcessHandle:
    """
    A spawned child with a line-oriented view of its stdout.

    A daemon thread reads stdout line by line. Until ``start_draining`` is
    called the lines are queued for ``read_line``; afterwards they go to the
    debug log so the pipe never fills up.
    """

    def __init__(self, popen: subprocess.Popen):
        self._popen = popen
        self._lines: "queue.Queue[Optional[str]]" = queue.Queue()
        self._draining = False
        self._eof = False
        self._reader = threading.Thread(
            target=self._pump, name=f"opencode-stdout-{popen.pid}", daemon=True
        )
        self._reader.start()

    @classmethod
    def spawn(
        cls,
        binary: str,
        args: Sequence[str],
        env_overrides: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> "ProcessHandle":
        """
        Launch ``binary args...`` with the inherited environment plus overrides.

        Raises:
            ServerSpawnError: If the binary cannot be executed
        """
        env = dict(os.environ)
        env.update(env_overrides or {})
        cmd: List[str] = [binary, *args]
        try:
            popen = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                env=env,
                cwd=cwd,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            raise ServerSpawnError(f"Failed to launch {binary}: {e}") from e
        logger.debug("Spawned %s (pid %s)", " ".join(cmd), popen.pid)
        return cls(popen)

    def _pump(self) -> None:
        stdout = self._popen.stdout
        if stdout is None:
            self._lines.put(None)
            return
        for line in stdout:
            if self._draining:
                logger.debug("[server %s] %s", self._popen.pid, line.rstrip())
            else:
                self._lines.put(line)
        self._lines.put(None)

    def read_line(self, timeout: float) -> Optional[str]:
        """Next stdout line, or None if none arrived within ``timeout``."""
        if self._eof:
            # Output is closed; give the child the same time to exit.
            try:
                self._popen.wait(timeout)
            except subprocess.TimeoutExpired:
                pass
            return None
        try:
            line = self._lines.get(timeout=timeout)
        except queue.Empty:
            return None
        if line is None:
            self._eof = True
        return line

    def drain(self, timeout: float = 1.0) -> str:
        """Collect whatever output remains after the child exited."""
        self._reader.join(timeout)
        chunks = []
        while True:
            line = self.read_line(0)
            if line is None:
                break
            chunks.append(line)
        return "".join(chunks)

    def start_draining(self) -> None:
        """Stop queueing output; log it instead."""
        self._draining = True
        while True:
            try:
                line = self._lines.get_nowait()
            except queue.Empty:
                break
            if line is None:
                self._eof = True
                break
            logger.debug("[server %s] %s", self._popen.pid, line.rstrip())

    @property
    def pid(self) -> int:
        return self._popen.pid

    def is_running(self) -> bool:
        return self._popen.poll() is None

    @property
    def returncode(self) -> Optional[int]:
        return self._popen.poll()

    def terminate(self) -> None:
        try:
            self._popen.terminate()
        except ProcessLookupError:
            pass

    def kill(self) -> None:
        try:
            self._popen.kill()
        except ProcessLookupError:
            pass

    def wait(self, timeout: Optional[float] = None) -> int:
        """Block until the child exits and reap it."""
        return self._popen.wait(timeout)
