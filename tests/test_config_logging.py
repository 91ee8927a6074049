import logging

import pytest
from pydantic import ValidationError

from cutroom.core.config import Settings
from cutroom.core.logging_redactor import RedactionFilter


def _record(msg, *args):
    return logging.LogRecord("cutroom.test", logging.INFO, __file__, 1, msg, args, None)


class TestRedaction:
    def test_emails_are_masked(self):
        record = _record("event=notification.recorded recipients=%s", "boss@example.com")
        RedactionFilter().filter(record)
        assert record.getMessage() == "event=notification.recorded recipients=***"

    def test_presigned_signature_is_masked(self):
        record = _record("url=https://r2.example.com/k?X-Amz-Credential=AKIA/x&X-Amz-Signature=0123456789abcdef0123")
        RedactionFilter().filter(record)
        message = record.getMessage()
        assert "AKIA" not in message
        assert "0123456789abcdef0123" not in message

    def test_tasks_secret_is_masked(self):
        record = _record("headers X-Tasks-Auth: super-secret-value")
        RedactionFilter(replacement="[redacted]").filter(record)
        assert "super-secret-value" not in record.getMessage()

    def test_clean_message_untouched(self):
        record = _record("event=upload.initiated parts=%s", 3)
        RedactionFilter().filter(record)
        assert record.args == (3,)
        assert record.getMessage() == "event=upload.initiated parts=3"


class TestSettings:
    def test_production_requires_database(self):
        with pytest.raises(ValidationError):
            Settings(APP_ENV="production", STORAGE_BACKEND="s3", TASKS_AUTH="x" * 32, DATABASE_URL="")

    def test_production_refuses_local_storage(self):
        with pytest.raises(ValidationError):
            Settings(
                APP_ENV="production",
                STORAGE_BACKEND="local",
                TASKS_AUTH="x" * 32,
                DATABASE_URL="postgresql+psycopg://u:p@db.example.com/cutroom",
            )

    def test_production_refuses_default_tasks_secret(self, monkeypatch):
        monkeypatch.delenv("TASKS_AUTH", raising=False)
        with pytest.raises(ValidationError):
            Settings(
                APP_ENV="production",
                STORAGE_BACKEND="s3",
                DATABASE_URL="postgresql+psycopg://u:p@db.example.com/cutroom",
            )

    def test_unknown_backend(self):
        with pytest.raises(ValidationError):
            Settings(APP_ENV="test", STORAGE_BACKEND="ftp")

    def test_default_recipients_split(self):
        settings = Settings(APP_ENV="test", NOTIFY_DEFAULT_REJECTION="a@example.com; b@example.com, ,")
        assert settings.default_recipients("rejection") == ["a@example.com", "b@example.com"]
        assert settings.default_recipients("publish") == []

    def test_environment_flags(self):
        assert Settings(APP_ENV="test").is_dev_mode is True
        assert Settings(APP_ENV="staging", STORAGE_BACKEND="s3", DATABASE_URL="sqlite://", TASKS_AUTH="s").is_production
