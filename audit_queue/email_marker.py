"""Helpers for the audit email marker.

The ``email_marker`` column holds either nothing, a committed ISO-8601
timestamp (the email was sent), or a reservation sentinel
``sending_<ISO-8601 timestamp>`` written right before a sender is invoked.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from dateutil import parser as date_parser

RESERVATION_PREFIX = "sending_"


class MarkerState(str, Enum):
    """What an email marker says about the email for an audit."""

    NONE = "none"
    COMMITTED = "committed"
    IN_FLIGHT = "in_flight"
    ABANDONED = "abandoned"


def make_reservation(now: datetime) -> str:
    """Build a reservation sentinel stamped with ``now``."""
    return f"{RESERVATION_PREFIX}{now.isoformat()}"


def make_committed(now: datetime) -> str:
    """Build the committed marker value for an email sent at ``now``."""
    return now.isoformat()


def is_reservation(marker: Optional[str]) -> bool:
    return bool(marker) and marker.startswith(RESERVATION_PREFIX)


def is_committed(marker: Optional[str]) -> bool:
    """Any non-empty value that is not a reservation counts as sent."""
    return bool(marker) and not marker.startswith(RESERVATION_PREFIX)


def reservation_time(marker: Optional[str]) -> Optional[datetime]:
    """Timestamp embedded in a reservation, or None if absent or unparseable."""
    if not is_reservation(marker):
        return None
    try:
        stamped = date_parser.isoparse(marker[len(RESERVATION_PREFIX):])
    except (ValueError, OverflowError):
        return None
    if stamped.tzinfo is None:
        stamped = stamped.replace(tzinfo=timezone.utc)
    return stamped


def classify_marker(
    marker: Optional[str], now: datetime, grace: timedelta
) -> MarkerState:
    """
    Classify an email marker.

    A reservation younger than ``grace`` means another sender is in flight.
    Older reservations, and reservations whose timestamp cannot be read, are
    treated as abandoned.
    """
    if not marker:
        return MarkerState.NONE
    if is_committed(marker):
        return MarkerState.COMMITTED

    stamped = reservation_time(marker)
    if stamped is None:
        return MarkerState.ABANDONED
    if now - stamped < grace:
        return MarkerState.IN_FLIGHT
    return MarkerState.ABANDONED
