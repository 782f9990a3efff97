from datetime import datetime, timezone
from typing import Union


def utcnow() -> datetime:
    """Current time as a naive UTC datetime, matching what the database stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Union[str, datetime]) -> datetime:
    """
    Accept a datetime or an ISO 8601 string (a trailing ``Z`` is allowed)
    and return it as naive UTC. Raises ValueError on anything else.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        text = value[:-1] + '+00:00' if value.endswith('Z') else value
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Not a datetime: {value!r}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
