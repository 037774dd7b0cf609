# timestamps.py
# Description: Helpers for client-generated ids and server timestamp handling.
#
# Imports
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional
#
# 3rd-party Libraries
#
# Local Imports
#
#######################################################################################################################
#
# Functions:

def generate_id() -> str:
    """Client-side identifier so rows can be created while offline."""
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    """Current UTC time, ISO 8601 with millisecond precision and a 'Z' suffix."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_server_timestamp(value: str) -> datetime:
    """
    Parses a server version marker into an aware datetime so markers in
    different ISO 8601 shapes ('2024-03-01', '2024-03-01T10:00:00Z',
    '2024-03-01T10:00:00.123+00:00') compare correctly.

    Naive values are treated as UTC.

    Raises:
        ValueError: If the value is empty or not ISO 8601.
    """
    if not value or not isinstance(value, str):
        raise ValueError(f"Invalid server timestamp: {value!r}")
    text = value.strip()
    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_later(candidate: Optional[str], reference: Optional[str]) -> bool:
    """True when `candidate` is strictly later than `reference`. None is the oldest possible value."""
    if candidate is None:
        return False
    if reference is None:
        return True
    return parse_server_timestamp(candidate) > parse_server_timestamp(reference)


def max_timestamp(values: Iterable[Optional[str]], floor: Optional[str] = None) -> Optional[str]:
    """
    Returns the latest of `values` (original string form), never earlier than `floor`.
    Returns `floor` when no value is later.
    """
    latest = floor
    for value in values:
        if value is None:
            continue
        if is_later(value, latest):
            latest = value
    return latest

#
# End of timestamps.py
#######################################################################################################################
