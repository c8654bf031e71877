"""
Ticket identity and gate admission rules.

Reference codes are 6 characters drawn from an alphabet without the
look-alike characters (0/O, 1/I/L), so they survive being read aloud or
typed from a printed ticket. The QR payload carries both the booking id
and the reference code; staff can also type the reference code by hand.
"""

from __future__ import annotations

import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID
from zoneinfo import ZoneInfo

from exhibit.models import BookingStatus

REFERENCE_ALPHABET = "23456789ABCDEFGHJKMNPQRSTUVWXYZ"
REFERENCE_LENGTH = 6


class TicketError(Exception):
    """A ticket exists but cannot be admitted right now."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


@dataclass(frozen=True)
class ScanTarget:
    booking_id: UUID | None
    reference_code: str | None


def generate_reference_code() -> str:
    return "".join(
        secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_LENGTH)
    )


def normalize_reference_code(raw: str) -> str:
    return raw.strip().upper()


def qr_payload(booking_id: UUID | str, reference_code: str) -> str:
    return json.dumps({"id": str(booking_id), "ref": reference_code})


def parse_scan(raw: str) -> ScanTarget:
    """
    Decode whatever the scanner (or the manual input box) produced.

    A JSON object with string "id" / "ref" keys is a QR payload; anything
    else is treated as a typed reference code. Raises ValueError on empty input.
    """
    booking_id: UUID | None = None
    reference: str | None = None

    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        data = None

    if isinstance(data, dict):
        if isinstance(data.get("id"), str):
            try:
                booking_id = UUID(data["id"])
            except ValueError:
                booking_id = None
        if isinstance(data.get("ref"), str):
            reference = normalize_reference_code(data["ref"])

    if booking_id is None and reference is None:
        reference = normalize_reference_code(str(raw or ""))

    if booking_id is None and not reference:
        raise ValueError("Enter a code")

    return ScanTarget(booking_id=booking_id, reference_code=reference or None)


def check_window(
    slot_start: datetime,
    slot_end: datetime,
    now: datetime,
    timezone: str,
    early_minutes: int,
    late_minutes: int,
) -> None:
    """Raise TicketError when `now` falls outside the slot's check-in window."""
    opens_at = slot_start - timedelta(minutes=early_minutes)
    closes_at = slot_end + timedelta(minutes=late_minutes)

    if now < opens_at:
        local_open = opens_at.astimezone(ZoneInfo(timezone))
        if local_open.date() != now.astimezone(ZoneInfo(timezone)).date():
            raise TicketError(
                f"Too early. Ticket is valid on {local_open:%d %b %Y} "
                f"from {local_open:%H:%M}"
            )
        raise TicketError(f"Too early. Check-in opens at {local_open:%H:%M}")
    if now > closes_at:
        raise TicketError("Ticket expired")


def assert_admissible(
    status: BookingStatus,
    slot_start: datetime,
    slot_end: datetime,
    now: datetime,
    timezone: str,
    early_minutes: int,
    late_minutes: int,
) -> None:
    """Raise TicketError unless the booking may pass the gate at `now`."""
    if status == BookingStatus.CANCELLED:
        raise TicketError("Ticket cancelled")
    if status == BookingStatus.CHECKED_IN:
        raise TicketError("Already checked in")
    if status != BookingStatus.CONFIRMED:
        raise TicketError("Booking not confirmed")
    check_window(slot_start, slot_end, now, timezone, early_minutes, late_minutes)
