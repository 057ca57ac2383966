from datetime import datetime, timezone


def get_current_timestamp() -> int:
    """Milliseconds since the epoch, UTC."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def parse_timestamp(value: str | int | float | datetime) -> int:
    """Coerce an ISO-8601 string, datetime or number into epoch milliseconds."""
    if isinstance(value, bool):
        raise TypeError("timestamp must not be a boolean")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        # PostgREST emits '+00:00' offsets, older clients a trailing 'Z'
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def to_datetime(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
