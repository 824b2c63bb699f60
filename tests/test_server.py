"""
Tests for the server supervisor.

Small Python scripts stand in for the opencode binary so the real process
lifecycle (spawn, readiness, exit, signals, reaping) is exercised.
"""

import gc
import json
import os
import shutil
import sys
import tempfile
import textwrap
import time
import unittest
from pathlib import Path
from unittest.mock import patch

from opencodepy.core.configs import ServerOptions
from opencodepy.core.errors import ProcessExitedDuringStartup, ServerSpawnError, StartupTimeout
from opencodepy.server.process import ProcessHandle
from opencodepy.server.supervisor import (
    Server,
    ServerState,
    build_command,
    build_environment,
    detect_listening,
)

LISTENING = """
import time
print("starting up", flush=True)
print("opencode server listening on http://127.0.0.1:51234", flush=True)
time.sleep(30)
"""

EXITS_WITH_3 = """
import sys
print("fatal: invalid configuration", flush=True)
sys.exit(3)
"""

SILENT = """
import time
time.sleep(30)
"""

IGNORES_SIGTERM = """
import signal
import time
signal.signal(signal.SIGTERM, signal.SIG_IGN)
print("opencode server listening on http://127.0.0.1:51235", flush=True)
time.sleep(30)
"""

RECORDS_INVOCATION = """
import json
import os
import sys
import time
keys = ("OPENCODE_CONFIG_CONTENT", "OPENCODE_SERVER_USERNAME", "OPENCODE_SERVER_PASSWORD")
with open(os.environ["FAKE_SERVER_RECORD"], "w") as handle:
    json.dump({"args": sys.argv[1:], "env": {k: os.environ.get(k) for k in keys}}, handle)
print("Server running at http://127.0.0.1:4242", flush=True)
time.sleep(30)
"""


def pid_exists(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


class ServerTestCase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.servers = []

    def tearDown(self):
        for server in self.servers:
            server.force_stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def script(self, body: str, name: str = "fake-opencode") -> str:
        path = Path(self.temp_dir) / name
        path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
        path.chmod(0o755)
        return str(path)

    def options(self, body: str, **kwargs) -> ServerOptions:
        kwargs.setdefault("port", 0)
        kwargs.setdefault("startup_timeout", 10.0)
        return ServerOptions(opencode_binary=self.script(body), **kwargs)

    def spawn(self, options: ServerOptions) -> Server:
        server = Server.spawn(options)
        self.servers.append(server)
        return server


class TestServerStartup(ServerTestCase):

    def test_reports_os_assigned_port_from_listening_line(self):
        server = self.spawn(self.options(LISTENING))

        self.assertEqual(server.state, ServerState.RUNNING)
        self.assertTrue(server.running)
        self.assertEqual(server.url, "http://127.0.0.1:51234")
        self.assertEqual(server.hostname, "127.0.0.1")
        self.assertEqual(server.port, 51234)
        self.assertGreater(server.pid, 0)

    def test_exit_during_startup_reports_code_and_output(self):
        with self.assertRaises(ProcessExitedDuringStartup) as context:
            Server.spawn(self.options(EXITS_WITH_3))
        self.assertEqual(context.exception.exit_code, 3)
        self.assertIn("fatal: invalid configuration", context.exception.output)

    def test_silent_server_times_out(self):
        start = time.monotonic()
        with self.assertRaises(StartupTimeout) as context:
            Server.spawn(self.options(SILENT, startup_timeout=0.5))
        self.assertLess(time.monotonic() - start, 5)
        self.assertEqual(context.exception.timeout, 0.5)

    def test_missing_binary_raises_spawn_error(self):
        options = ServerOptions(opencode_binary=str(Path(self.temp_dir) / "nope"))
        server = Server(options)
        with self.assertRaises(ServerSpawnError):
            server.start()
        self.assertEqual(server.state, ServerState.STOPPED)

    def test_cannot_start_twice(self):
        server = self.spawn(self.options(LISTENING))
        with self.assertRaises(RuntimeError):
            server.start()

    def test_interrupt_during_startup_reaps_child(self):
        spawned = []
        real_spawn = ProcessHandle.spawn

        def recording_spawn(*args, **kwargs):
            handle = real_spawn(*args, **kwargs)
            spawned.append(handle)
            return handle

        server = Server(self.options(LISTENING))
        with patch("opencodepy.server.supervisor.ProcessHandle.spawn", side_effect=recording_spawn), \
                patch("opencodepy.server.supervisor.detect_listening", side_effect=KeyboardInterrupt):
            with self.assertRaises(KeyboardInterrupt):
                server.start()

        self.assertEqual(server.state, ServerState.STOPPED)
        self.assertEqual(len(spawned), 1)
        self.assertFalse(spawned[0].is_running())
        self.assertFalse(pid_exists(spawned[0].pid))

    def test_command_line_and_environment(self):
        record = Path(self.temp_dir) / "invocation.json"
        options = self.options(
            RECORDS_INVOCATION,
            port=0,
            mdns=True,
            config_json='{"model": "x/y"}',
            username="opencode",
            password="hunter2",
        )
        with patch.dict(os.environ, {"FAKE_SERVER_RECORD": str(record)}):
            server = self.spawn(options)

        invocation = json.loads(record.read_text())
        self.assertEqual(
            invocation["args"], ["serve", "--hostname", "127.0.0.1", "--port", "0", "--mdns"]
        )
        self.assertEqual(invocation["env"]["OPENCODE_CONFIG_CONTENT"], '{"model": "x/y"}')
        self.assertEqual(invocation["env"]["OPENCODE_SERVER_USERNAME"], "opencode")
        self.assertEqual(invocation["env"]["OPENCODE_SERVER_PASSWORD"], "hunter2")
        self.assertNotIn("hunter2", invocation["args"])
        self.assertEqual(server.port, 4242)


class TestServerShutdown(ServerTestCase):

    def test_stop_is_idempotent(self):
        server = self.spawn(self.options(LISTENING))
        pid = server.pid

        server.stop()
        server.stop()

        self.assertEqual(server.state, ServerState.STOPPED)
        self.assertFalse(server.running)
        self.assertFalse(pid_exists(pid))

    def test_context_manager_stops(self):
        with Server.spawn(self.options(LISTENING)) as server:
            pid = server.pid
            self.assertTrue(server.running)
        self.assertFalse(pid_exists(pid))

    def test_force_stop_kills_process_ignoring_sigterm(self):
        server = self.spawn(self.options(IGNORES_SIGTERM))
        pid = server.pid

        start = time.monotonic()
        server.force_stop()
        self.assertLess(time.monotonic() - start, 2)
        self.assertFalse(pid_exists(pid))
        self.assertEqual(server.state, ServerState.STOPPED)

    def test_graceful_stop_escalates_to_kill(self):
        with patch("opencodepy.server.supervisor.STOP_GRACE_PERIOD", 0.3):
            server = self.spawn(self.options(IGNORES_SIGTERM))
        pid = server.pid

        server.stop()
        self.assertFalse(pid_exists(pid))

    def test_garbage_collection_stops_process(self):
        server = Server.spawn(self.options(LISTENING))
        pid = server.pid
        self.assertTrue(pid_exists(pid))

        del server
        gc.collect()

        self.assertFalse(pid_exists(pid))

    def test_transfer_moves_ownership(self):
        original = self.spawn(self.options(LISTENING))
        pid = original.pid

        owner = original.transfer()
        self.servers.append(owner)

        self.assertEqual(original.pid, 0)
        self.assertEqual(original.url, "")
        self.assertEqual(original.state, ServerState.STOPPED)
        self.assertEqual(owner.pid, pid)
        self.assertEqual(owner.port, 51234)

        # The emptied source no longer controls the process.
        original.stop()
        self.assertTrue(owner.running)

        owner.stop()
        self.assertFalse(pid_exists(pid))

    def test_wait_without_process(self):
        self.assertEqual(Server().wait(), -1)


class TestReadinessDetection(unittest.TestCase):

    def test_url_line(self):
        options = ServerOptions(port=0)
        self.assertEqual(
            detect_listening("opencode server listening on http://127.0.0.1:40001", options),
            ("http://127.0.0.1:40001", "127.0.0.1", 40001),
        )

    def test_url_line_trailing_punctuation_and_case(self):
        options = ServerOptions(port=0)
        self.assertEqual(
            detect_listening("Server running at http://localhost:8080.", options),
            ("http://localhost:8080", "localhost", 8080),
        )

    def test_fallback_on_configured_port(self):
        options = ServerOptions(hostname="0.0.0.0", port=4096)
        self.assertEqual(
            detect_listening("server bound to 0.0.0.0:4096", options),
            ("http://0.0.0.0:4096", "0.0.0.0", 4096),
        )

    def test_fallback_disabled_for_os_assigned_port(self):
        options = ServerOptions(port=0)
        self.assertIsNone(detect_listening("server bound to 127.0.0.1:0", options))

    def test_unrelated_line(self):
        options = ServerOptions(port=4096)
        self.assertIsNone(detect_listening("loading plugins", options))
        self.assertIsNone(detect_listening("retrying :4096 later", options))

    def test_build_command(self):
        self.assertEqual(
            build_command(ServerOptions(hostname="::1", port=9000)),
            ["serve", "--hostname", "::1", "--port", "9000"],
        )

    def test_build_environment_omits_unset_values(self):
        self.assertEqual(build_environment(ServerOptions()), {})
        self.assertEqual(
            build_environment(ServerOptions(password="pw")),
            {"OPENCODE_SERVER_PASSWORD": "pw"},
        )


if __name__ == "__main__":
    unittest.main()
