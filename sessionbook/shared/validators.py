"""Shared validation utilities"""

import json
import re
from datetime import date, datetime
from typing import Any, List, Optional, Tuple

ALLOWED_DURATIONS = (15, 30, 60)

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str) -> Tuple[int, int]:
    """
    Parse a zero-padded 24-hour "HH:MM" string.

    Raises:
        ValueError: If the string is not a valid time of day
    """
    match = _HHMM_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return int(match.group(1)), int(match.group(2))


def hhmm_to_minutes(value: str) -> int:
    hour, minute = parse_hhmm(value)
    return hour * 60 + minute


def validate_duration(minutes: int) -> int:
    if minutes not in ALLOWED_DURATIONS:
        raise ValueError(f"Duration must be one of {', '.join(str(d) for d in ALLOWED_DURATIONS)} minutes")
    return minutes


def parse_iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD")


def parse_month(value: str) -> Tuple[int, int]:
    """Parse "YYYY-MM" into (year, month)."""
    try:
        parsed = datetime.strptime(value, "%Y-%m")
    except (TypeError, ValueError):
        raise ValueError(f"Invalid month '{value}', expected YYYY-MM")
    return parsed.year, parsed.month


def decode_list_field(value: Any) -> List[str]:
    """
    Normalise a list-valued profile field.

    Stored values may be a real list, a JSON-encoded list string, or a
    comma-separated string. Always returns a list of non-empty strings.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                decoded = json.loads(text)
            except json.JSONDecodeError:
                decoded = None
            if isinstance(decoded, list):
                return decode_list_field(decoded)
        return [part.strip() for part in text.split(",") if part.strip()]
    return [str(value)]


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()
    if not re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email):
        raise ValueError("Invalid email format")
    return email
