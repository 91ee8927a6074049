import logging
from unittest.mock import MagicMock

import pytest

from cutroom.core.errors import ValidationFailed
from cutroom.models import DeliveryStatus, NotificationEvent
from cutroom.services import notification


@pytest.fixture
def version(upload_version):
    return upload_version(
        declared_size=1024,
        chunk_size=1024,
        title="Lesson 4",
        notification_lists={"publish": ["audience@example.com", "team@example.com"]},
    )


class TestDispatch:
    def test_empty_recipients_records_nothing(self, session, version, outbox):
        assert notification.dispatch(session, version.id, NotificationEvent.approval, []) is None
        assert notification.history(session, version.id) == []
        assert outbox.messages == []

    def test_one_record_per_fan_out(self, session, version, outbox):
        record = notification.dispatch(
            session,
            version.id,
            NotificationEvent.publish,
            ["a@example.com", "b@example.com", "a@example.com"],
            subject="Published: Lesson 4 (v1)",
            text="hello",
        )

        assert record.delivery_status is DeliveryStatus.sent
        assert record.error is None
        assert record.recipients == ["a@example.com", "b@example.com"]
        assert outbox.messages == [
            {"to": ["a@example.com", "b@example.com"], "subject": "Published: Lesson 4 (v1)", "text": "hello"}
        ]
        assert [r.id for r in notification.history(session, version.id)] == [record.id]

    def test_rejected_message_recorded_as_failed(self, session, version, outbox, caplog):
        outbox.fail = True
        with caplog.at_level(logging.WARNING, logger="cutroom.services.notification"):
            record = notification.dispatch(session, version.id, NotificationEvent.publish, ["a@example.com"])

        assert record.delivery_status is DeliveryStatus.failed
        assert record.error
        assert "NOTIFICATION_DELIVERY_FAILED" in caplog.text

    def test_mailer_exception_recorded_not_raised(self, session, version, outbox):
        outbox.error = OSError("connection refused")
        record = notification.dispatch(session, version.id, NotificationEvent.publish, ["a@example.com"])
        assert record.delivery_status is DeliveryStatus.failed
        assert record.error == "connection refused"

    def test_notify_uses_rendered_message(self, session, version, outbox):
        notification.notify(session, version, NotificationEvent.publish)
        assert outbox.messages[0]["subject"] == "Published: Lesson 4 (v1)"
        assert outbox.messages[0]["to"] == ["audience@example.com", "team@example.com"]


class TestResolveRecipients:
    def test_defaults_are_merged_and_deduplicated(self, version, settings_overrides):
        settings_overrides.NOTIFY_DEFAULT_PUBLISH = "Team@Example.com, ops@example.com"
        assert notification.resolve_recipients(version, NotificationEvent.publish) == [
            "audience@example.com",
            "team@example.com",
            "ops@example.com",
        ]

    def test_lists_are_read_at_dispatch_time(self, version, settings_overrides):
        assert notification.resolve_recipients(version, NotificationEvent.approval) == []
        settings_overrides.NOTIFY_DEFAULT_APPROVAL = "boss@example.com"
        assert notification.resolve_recipients(version, NotificationEvent.approval) == ["boss@example.com"]

    def test_edit_adds_assignee(self, version):
        version.assigned_to = "Editor@Example.com"
        assert notification.resolve_recipients(version, NotificationEvent.edit) == ["editor@example.com"]

    def test_non_address_assignee_is_skipped(self, version):
        version.assigned_to = "editor-team"
        assert notification.resolve_recipients(version, NotificationEvent.edit) == []

    def test_invalid_stored_address_is_dropped(self, version):
        version.notification_lists = {"upload": ["not-an-address", "ok@example.com"]}
        assert notification.resolve_recipients(version, NotificationEvent.upload) == ["ok@example.com"]


class TestNormalizeLists:
    def test_accepts_enum_keys(self):
        lists = notification.normalize_lists({NotificationEvent.rejection: ["A@example.com"]})
        assert lists == {"rejection": ["a@example.com"]}

    def test_empty(self):
        assert notification.normalize_lists(None) == {}

    def test_unknown_event(self):
        with pytest.raises(ValidationFailed):
            notification.normalize_lists({"deleted": ["a@example.com"]})

    def test_bad_address(self):
        with pytest.raises(ValidationFailed) as exc:
            notification.normalize_lists({"upload": ["nobody"]})
        assert exc.value.details == {"event_type": "upload"}


def test_render_messages_per_event(version):
    version.assigned_to = "editor@example.com"
    version.review_notes = "great pacing"
    version.rejection_reason = "audio desync"
    subjects = {event: notification.render_message(version, event)[0] for event in NotificationEvent}
    assert subjects == {
        NotificationEvent.upload: "New upload: Lesson 4 (v1)",
        NotificationEvent.edit: "Edit assigned: Lesson 4 (v1)",
        NotificationEvent.approval: "Approved: Lesson 4 (v1)",
        NotificationEvent.publish: "Published: Lesson 4 (v1)",
        NotificationEvent.rejection: "Changes requested: Lesson 4 (v1)",
    }
    assert "Review notes: great pacing" in notification.render_message(version, NotificationEvent.approval)[1]


class TestMailer:
    def test_dev_mail_goes_to_stdout(self, monkeypatch, capsys):
        from cutroom.services.mailer import Mailer

        monkeypatch.delenv("SMTP_HOST", raising=False)
        assert Mailer().send(["a@example.com", "b@example.com"], "Approved: x (v1)", "body") is True
        assert "[DEV-MAIL] To: a@example.com, b@example.com" in capsys.readouterr().out

    def test_smtp_send(self, monkeypatch):
        from cutroom.services import mailer as mailer_module

        monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
        monkeypatch.setenv("SMTP_USER", "bot")
        monkeypatch.setenv("SMTP_PASS", "secret")
        smtp = MagicMock()
        monkeypatch.setattr(mailer_module.smtplib, "SMTP", smtp)

        m = mailer_module.Mailer()
        m._probed = True
        assert m.send("a@example.com", "Published: x (v1)", "body") is True

        server = smtp.return_value.__enter__.return_value
        server.login.assert_called_once_with("bot", "secret")
        sent = server.send_message.call_args.args[0]
        assert sent["To"] == "a@example.com"
        assert sent["Subject"] == "Published: x (v1)"

    def test_smtp_failure_returns_false(self, monkeypatch):
        from cutroom.services import mailer as mailer_module

        monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
        monkeypatch.setattr(mailer_module.smtplib, "SMTP", MagicMock(side_effect=OSError("unreachable")))

        m = mailer_module.Mailer()
        m._probed = True
        assert m.send("a@example.com", "s", "t") is False
