"""
Tests for the JSON decoders of sessions, messages and parts.
"""

import unittest

from opencodepy.core.errors import ProtocolMismatch
from opencodepy.core.types import (
    AssistantMessage,
    FilePart,
    PermissionReply,
    TextPart,
    ToolPart,
    UserMessage,
    decode_health,
    decode_message_with_parts,
    decode_part,
    decode_parts,
    decode_project,
    decode_session,
    decode_session_status,
)


class TestSessionDecoding(unittest.TestCase):

    def test_full_session(self):
        session = decode_session(
            {
                "id": "ses_1",
                "slug": "brave-otter",
                "projectID": "prj_1",
                "directory": "/repo",
                "title": "Refactor",
                "version": "1.0.0",
                "time": {"created": 10, "updated": 20},
                "parentID": "ses_0",
                "share": {"url": "https://opncd.ai/s/abc"},
            }
        )
        self.assertEqual(session.id, "ses_1")
        self.assertEqual(session.project_id, "prj_1")
        self.assertEqual(session.time.updated, 20)
        self.assertIsNone(session.time.archived)
        self.assertEqual(session.parent_id, "ses_0")
        self.assertEqual(session.share_url, "https://opncd.ai/s/abc")

    def test_optional_fields_absent_are_none(self):
        session = decode_session({"id": "ses_2"})
        self.assertIsNone(session.parent_id)
        self.assertIsNone(session.share_url)
        self.assertEqual(session.title, "")

    def test_non_object_is_rejected(self):
        with self.assertRaises(ProtocolMismatch):
            decode_session("ses_1")

    def test_status_as_string_or_object(self):
        self.assertEqual(decode_session_status("idle").status, "idle")
        status = decode_session_status({"type": "busy", "messageID": "msg_1"})
        self.assertEqual(status.status, "busy")
        self.assertEqual(status.message_id, "msg_1")


class TestPartDecoding(unittest.TestCase):

    def test_text_is_default_kind(self):
        part = decode_part({"id": "p", "text": "hi"})
        self.assertIsInstance(part, TextPart)
        self.assertEqual(part.type, "text")
        self.assertFalse(part.is_delta)

    def test_file_part(self):
        part = decode_part({"type": "file", "filename": "notes.md"})
        self.assertIsInstance(part, FilePart)
        self.assertEqual(part.file, "notes.md")
        self.assertIsNone(part.content)

    def test_tool_part_input_from_state(self):
        part = decode_part(
            {
                "type": "tool",
                "tool": "bash",
                "state": {"status": "completed", "input": {"command": "ls", "timeout": 30}},
            }
        )
        self.assertIsInstance(part, ToolPart)
        self.assertEqual(part.state.status, "completed")
        self.assertEqual(part.input, {"command": "ls", "timeout": "30"})

    def test_unknown_kind_raises(self):
        with self.assertRaises(ProtocolMismatch):
            decode_part({"type": "step-start"})

    def test_part_list_skips_unknown_kinds(self):
        parts = decode_parts(
            [{"type": "step-start"}, {"type": "text", "text": "a"}, {"type": "step-finish"}]
        )
        self.assertEqual(parts, [TextPart(text="a")])


class TestMessageDecoding(unittest.TestCase):

    def test_assistant_message_with_parts(self):
        message = decode_message_with_parts(
            {
                "info": {
                    "id": "msg_2",
                    "sessionID": "ses_1",
                    "role": "assistant",
                    "providerID": "anthropic",
                    "modelID": "sonnet",
                    "path": {"cwd": "/repo", "root": "/repo"},
                    "cost": 0.012,
                    "tokens": {"input": 100, "output": 20, "cache": {"read": 5}},
                    "finish": "stop",
                },
                "parts": [
                    {"type": "step-start"},
                    {"type": "text", "text": "Hello "},
                    {"type": "text", "text": "there"},
                ],
            }
        )
        self.assertTrue(message.is_assistant())
        self.assertIsInstance(message.info, AssistantMessage)
        self.assertEqual(message.id, "msg_2")
        self.assertEqual(message.text(), "Hello there")
        self.assertEqual(message.cost(), 0.012)
        self.assertEqual(message.tokens().cache.read, 5)
        self.assertEqual(message.info.cwd, "/repo")

    def test_user_message(self):
        message = decode_message_with_parts(
            {
                "info": {"id": "msg_1", "role": "user", "model": {"providerID": "p", "modelID": "m"}},
                "parts": [{"type": "text", "text": "hi"}],
            }
        )
        self.assertIsInstance(message.info, UserMessage)
        self.assertFalse(message.is_assistant())
        self.assertIsNone(message.tokens())
        self.assertIsNone(message.cost())
        self.assertEqual(message.info.model.model_id, "m")

    def test_unknown_role_raises(self):
        with self.assertRaises(ProtocolMismatch):
            decode_message_with_parts({"info": {"id": "x", "role": "system"}})


class TestMiscDecoding(unittest.TestCase):

    def test_health(self):
        health = decode_health({"healthy": True, "version": "0.9.1"})
        self.assertTrue(health.healthy)
        self.assertEqual(health.version, "0.9.1")

    def test_project(self):
        project = decode_project({"id": "prj", "worktree": "/repo", "vcs": "git", "sandboxes": ["/a", 1]})
        self.assertEqual(project.vcs, "git")
        self.assertIsNone(project.name)
        self.assertEqual(project.sandboxes, ["/a"])

    def test_permission_reply_validates_action(self):
        self.assertEqual(PermissionReply("per_1", "always").action, "always")
        with self.assertRaises(ValueError):
            PermissionReply("per_1", "sometimes")


if __name__ == "__main__":
    unittest.main()
