"""Tests for the agent mailbox."""

import sqlite3
from unittest.mock import patch

import pytest

from fleet.errors import MailError
from fleet.mail import MailClient, MailStore, format_for_injection, get_mail_db_path


@pytest.fixture
def mail_store(project_dir):
    store = MailStore(get_mail_db_path(project_dir))
    yield store
    store.close()


@pytest.fixture
def client(mail_store):
    return MailClient(mail_store)


class TestMailClient:

    def test_send_and_check(self, client):
        message_id = client.send("orchestrator", "builder-1", "Dispatch: task-1", "Start work", type="dispatch")

        messages = client.check("builder-1")

        assert [m.id for m in messages] == [message_id]
        assert messages[0].type == "dispatch"
        assert messages[0].priority == "normal"
        assert message_id.startswith("msg-")

    def test_check_marks_read(self, client, mail_store):
        client.send("a", "b", "s", "body")

        client.check("b")

        assert client.check("b") == []
        assert mail_store.get_all("b")[0].read is True

    def test_check_only_own_mailbox(self, client):
        client.send("a", "lead-1", "s", "body")
        assert client.check("builder-1") == []

    def test_order_preserved(self, client):
        for subject in ("first", "second", "third"):
            client.send("a", "b", subject, "body")

        assert [m.subject for m in client.check("b")] == ["first", "second", "third"]

    def test_unknown_type_rejected(self, client):
        with pytest.raises(MailError) as exc_info:
            client.send("a", "b", "s", "body", type="gossip")
        assert "Unknown message type: gossip" in exc_info.value.message

    def test_unknown_priority_rejected(self, client):
        with pytest.raises(MailError):
            client.send("a", "b", "s", "body", priority="critical")

    def test_write_failure_wrapped(self, client, mail_store):
        with patch.object(mail_store, "insert", side_effect=sqlite3.OperationalError("database is locked")):
            with pytest.raises(MailError) as exc_info:
                client.send("a", "b", "s", "body")

        assert "database is locked" in exc_info.value.message

    def test_shared_across_connections(self, project_dir, client):
        client.send("a", "b", "s", "body")

        with MailStore(get_mail_db_path(project_dir)) as other:
            assert len(other.get_unread("b")) == 1


class TestFormatForInjection:

    def test_empty(self):
        assert format_for_injection([]) == ""

    def test_renders_header_and_body(self, client):
        client.send("lead-1", "builder-1", "Re: scope", "Only touch src/api", type="question", priority="high")

        text = format_for_injection(client.check("builder-1"))

        assert text.startswith("You have 1 new message(s):")
        assert "--- From: lead-1 | question | high | Re: scope" in text
        assert "Only touch src/api" in text
