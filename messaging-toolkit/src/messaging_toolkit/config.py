"""
Runtime configuration for the messaging core.

Settings are read from the environment once at start-up and passed around as an
immutable 'MessagingSettings' model. Credentials are looked up with
'get_secret', which prefers a mounted secret file over the environment so that
keys never need to be exported in a shell.

Recognised variables:

    SUPABASE_URL               - base URL of the backend project
    SUPABASE_ANON_KEY          - public API key sent with every request
    MESSAGE_MAX_LENGTH         - maximum message body length (default 2000)
    SEQUENTIAL_PARTICIPANT_IDS - '1' to assign participant ids as max + 1
                                 (legacy schema, default), '0' to let the
                                 store assign them
    INBOX_PLACEHOLDER          - preview text for conversations with no messages
    HTTP_TIMEOUT_SECONDS       - timeout for backend requests (default 10)
    LOG_LEVEL                  - loguru level for the application sink
"""

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

SECRETS_DIR = Path("/secrets")

DEFAULT_MAX_MESSAGE_LENGTH = 2000
DEFAULT_INBOX_PLACEHOLDER = "No messages yet"

_TRUTHY = {"1", "true", "yes", "on"}


def get_secret(name: str, secrets_dir: Path = SECRETS_DIR) -> str:
    """Load a secret from '<secrets_dir>/<name>' or the '<name>' environment variable.

    Raises ValueError if neither is available.
    """
    secret_file = secrets_dir / name
    if secret_file.exists():
        return secret_file.read_text().strip()
    value = os.environ.get(name, "")
    if not value:
        raise ValueError(
            f"{name} not found. Either:\n"
            f"  - Mount it as a secret file at {secret_file}, or\n"
            f"  - Set the {name} environment variable."
        )
    return value


class MessagingSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    max_message_length: int = Field(default=DEFAULT_MAX_MESSAGE_LENGTH, gt=0)
    sequential_participant_ids: bool = True
    inbox_placeholder: str = DEFAULT_INBOX_PLACEHOLDER
    http_timeout_seconds: float = Field(default=10.0, gt=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, require_backend: bool = False, secrets_dir: Path = SECRETS_DIR) -> "MessagingSettings":
        """Build settings from the environment.

        With 'require_backend' the backend URL and key are mandatory and a
        missing value raises ValueError; otherwise they stay None and only
        in-memory backends can be built.
        """
        if require_backend:
            url: str | None = get_secret("SUPABASE_URL", secrets_dir)
            key: str | None = get_secret("SUPABASE_ANON_KEY", secrets_dir)
        else:
            url = os.environ.get("SUPABASE_URL") or None
            key = os.environ.get("SUPABASE_ANON_KEY") or None

        return cls(
            supabase_url=url,
            supabase_anon_key=key,
            max_message_length=int(os.environ.get("MESSAGE_MAX_LENGTH", DEFAULT_MAX_MESSAGE_LENGTH)),
            sequential_participant_ids=os.environ.get("SEQUENTIAL_PARTICIPANT_IDS", "1").lower() in _TRUTHY,
            inbox_placeholder=os.environ.get("INBOX_PLACEHOLDER", DEFAULT_INBOX_PLACEHOLDER),
            http_timeout_seconds=float(os.environ.get("HTTP_TIMEOUT_SECONDS", "10")),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
