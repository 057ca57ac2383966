import pytest
from pydantic import ValidationError

from messaging_toolkit.config import DEFAULT_MAX_MESSAGE_LENGTH, MessagingSettings, get_secret

ENV_VARS = [
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "MESSAGE_MAX_LENGTH",
    "SEQUENTIAL_PARTICIPANT_IDS",
    "INBOX_PLACEHOLDER",
    "HTTP_TIMEOUT_SECONDS",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = MessagingSettings.from_env()

    assert settings.supabase_url is None
    assert settings.max_message_length == DEFAULT_MAX_MESSAGE_LENGTH
    assert settings.sequential_participant_ids is True
    assert settings.http_timeout_seconds == 10.0
    assert settings.log_level == "INFO"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
    monkeypatch.setenv("MESSAGE_MAX_LENGTH", "500")
    monkeypatch.setenv("SEQUENTIAL_PARTICIPANT_IDS", "false")
    monkeypatch.setenv("INBOX_PLACEHOLDER", "Say hi")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = MessagingSettings.from_env()

    assert settings.supabase_url == "https://project.supabase.co"
    assert settings.max_message_length == 500
    assert settings.sequential_participant_ids is False
    assert settings.inbox_placeholder == "Say hi"
    assert settings.log_level == "DEBUG"


def test_backend_credentials_required_when_asked(tmp_path):
    with pytest.raises(ValueError, match="SUPABASE_URL"):
        MessagingSettings.from_env(require_backend=True, secrets_dir=tmp_path)


def test_backend_credentials_from_secret_files(tmp_path):
    (tmp_path / "SUPABASE_URL").write_text("https://project.supabase.co\n")
    (tmp_path / "SUPABASE_ANON_KEY").write_text("anon-key")

    settings = MessagingSettings.from_env(require_backend=True, secrets_dir=tmp_path)

    assert settings.supabase_url == "https://project.supabase.co"
    assert settings.supabase_anon_key == "anon-key"


def test_secret_file_takes_precedence(tmp_path, monkeypatch):
    (tmp_path / "SUPABASE_ANON_KEY").write_text("from-file\n")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "from-env")

    assert get_secret("SUPABASE_ANON_KEY", secrets_dir=tmp_path) == "from-file"


def test_secret_falls_back_to_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")

    assert get_secret("SUPABASE_URL", secrets_dir=tmp_path) == "https://project.supabase.co"


def test_invalid_length_is_rejected():
    with pytest.raises(ValidationError):
        MessagingSettings(max_message_length=0)
