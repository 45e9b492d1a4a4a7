from datetime import datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Naive UTC now; SQLite DateTime columns drop tzinfo anyway."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Union[str, int, float, datetime, None]) -> Optional[datetime]:
    """
    Parse ISO strings ("2024-05-01T10:00:00Z"), unix seconds or datetimes
    into naive UTC datetimes. Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def base36_to_int(value: str) -> str:
    """Reddit ids are base-36; store them as base-10 strings."""
    return str(int(value, 36))
