"""
Tests for decoding pushed records into typed events.
"""

import json
import unittest

from opencodepy.core.errors import MalformedRecord, ProtocolMismatch
from opencodepy.core.events import (
    EVENT_DECODERS,
    FileEditedEvent,
    InstallationUpdateAvailableEvent,
    MessagePartRemovedEvent,
    MessagePartUpdatedEvent,
    MessageUpdatedEvent,
    PermissionAskedEvent,
    PermissionRepliedEvent,
    ServerConnectedEvent,
    ServerHeartbeatEvent,
    SessionCreatedEvent,
    SessionErrorEvent,
    SessionStatusEvent,
    decode_event,
    dispatch_record,
)
from opencodepy.core.types import AssistantMessage, ReasoningPart, TextPart
from opencodepy.transport.sse import SSERecord


def rec(kind, **properties):
    return SSERecord(data=json.dumps({"type": kind, "properties": properties}))


class TestDecodeEvent(unittest.TestCase):

    def test_event_table_covers_all_server_event_types(self):
        self.assertEqual(
            set(EVENT_DECODERS),
            {
                "server.connected",
                "server.heartbeat",
                "server.instance.disposed",
                "global.disposed",
                "session.created",
                "session.updated",
                "session.deleted",
                "session.status",
                "session.idle",
                "session.error",
                "message.updated",
                "message.removed",
                "message.part.updated",
                "message.part.removed",
                "permission.asked",
                "permission.replied",
                "project.updated",
                "file.edited",
                "installation.updated",
                "installation.update-available",
            },
        )

    def test_handshake_and_heartbeat(self):
        self.assertIsInstance(decode_event(rec("server.connected")), ServerConnectedEvent)
        self.assertIsInstance(decode_event(rec("server.heartbeat")), ServerHeartbeatEvent)

    def test_session_created_with_info_wrapper(self):
        event = decode_event(rec("session.created", info={"id": "ses_1", "title": "Demo"}))
        self.assertIsInstance(event, SessionCreatedEvent)
        self.assertEqual(event.session.id, "ses_1")
        self.assertEqual(event.session.title, "Demo")

    def test_session_created_without_info_wrapper(self):
        event = decode_event(rec("session.created", id="ses_2", directory="/repo"))
        self.assertEqual(event.session.id, "ses_2")
        self.assertEqual(event.session.directory, "/repo")

    def test_session_status(self):
        event = decode_event(rec("session.status", sessionID="ses_1", status={"type": "busy"}))
        self.assertIsInstance(event, SessionStatusEvent)
        self.assertEqual(event.status.status, "busy")

    def test_session_error_message(self):
        event = decode_event(
            rec(
                "session.error",
                sessionID="ses_1",
                error={"name": "ProviderAuthError", "data": {"message": "bad key"}},
            )
        )
        self.assertIsInstance(event, SessionErrorEvent)
        self.assertEqual(event.error, "bad key")

    def test_message_updated(self):
        event = decode_event(
            rec("message.updated", info={"id": "msg_1", "role": "assistant", "cost": 0.5})
        )
        self.assertIsInstance(event, MessageUpdatedEvent)
        self.assertIsInstance(event.info, AssistantMessage)
        self.assertEqual(event.info.cost, 0.5)

    def test_part_update_with_delta_replaces_text(self):
        event = decode_event(
            rec(
                "message.part.updated",
                part={"id": "p", "sessionID": "ses_1", "messageID": "m", "type": "text",
                      "text": "Hello world"},
                delta=" world",
            )
        )
        self.assertIsInstance(event, MessagePartUpdatedEvent)
        self.assertEqual(event.session_id, "ses_1")
        self.assertEqual(event.message_id, "m")
        self.assertIsInstance(event.part, TextPart)
        self.assertEqual(event.part.text, " world")
        self.assertTrue(event.part.is_delta)

    def test_part_update_delta_ignored_for_non_text_part(self):
        event = decode_event(
            rec(
                "message.part.updated",
                part={"id": "p", "sessionID": "s", "type": "reasoning", "text": "thinking"},
                delta="ing",
            )
        )
        self.assertIsInstance(event.part, ReasoningPart)
        self.assertEqual(event.part.text, "thinking")
        self.assertEqual(event.delta, "ing")

    def test_part_removed(self):
        event = decode_event(
            rec("message.part.removed", sessionID="s", messageID="m", partID="p")
        )
        self.assertEqual(event, MessagePartRemovedEvent(session_id="s", message_id="m", part_id="p"))

    def test_permission_events(self):
        asked = decode_event(
            rec(
                "permission.asked",
                id="per_1",
                sessionID="ses_1",
                permission="bash",
                patterns=["rm *"],
                tool={"messageID": "msg_1", "callID": "call_1"},
            )
        )
        self.assertIsInstance(asked, PermissionAskedEvent)
        self.assertEqual(asked.request.patterns, ["rm *"])
        self.assertEqual(asked.request.tool_call_id, "call_1")

        replied = decode_event(
            rec("permission.replied", sessionID="ses_1", requestID="per_1", reply="once")
        )
        self.assertEqual(
            replied, PermissionRepliedEvent(request_id="per_1", session_id="ses_1", reply="once")
        )

    def test_file_and_installation_events(self):
        self.assertEqual(decode_event(rec("file.edited", file="a.py")), FileEditedEvent(file="a.py"))
        self.assertEqual(
            decode_event(rec("installation.update-available", version="1.2.3")),
            InstallationUpdateAvailableEvent(version="1.2.3"),
        )

    def test_missing_properties_use_defaults(self):
        event = decode_event(SSERecord(data='{"type": "file.edited"}'))
        self.assertEqual(event.file, "")

    def test_bad_json_is_malformed(self):
        with self.assertRaises(MalformedRecord):
            decode_event(SSERecord(data="{not json"))

    def test_non_object_is_malformed(self):
        with self.assertRaises(MalformedRecord):
            decode_event(SSERecord(data="[1, 2]"))

    def test_unknown_type_is_mismatch(self):
        with self.assertRaises(ProtocolMismatch):
            decode_event(rec("tui.toast.show", message="hi"))

    def test_wrong_shape_is_mismatch(self):
        with self.assertRaises(ProtocolMismatch):
            decode_event(rec("session.created", info=["not", "an", "object"]))
        with self.assertRaises(ProtocolMismatch):
            decode_event(rec("message.part.updated", part={"type": "snapshot"}))


class TestDispatchRecord(unittest.TestCase):

    def test_delivers_decoded_event(self):
        events = []
        self.assertTrue(dispatch_record(rec("server.connected"), events.append))
        self.assertEqual(events, [ServerConnectedEvent()])

    def test_drops_undecodable_records_without_raising(self):
        events = []
        self.assertFalse(dispatch_record(SSERecord(data="garbage"), events.append))
        self.assertFalse(dispatch_record(rec("unknown.kind"), events.append))
        self.assertEqual(events, [])


if __name__ == "__main__":
    unittest.main()
