"""Unit tests for exhibit/tickets.py: reference codes, scan parsing, admission."""

from __future__ import annotations

import json
from datetime import datetime, timedelta

import pytest

from exhibit.models import BookingStatus
from exhibit.tickets import (
    REFERENCE_ALPHABET,
    REFERENCE_LENGTH,
    TicketError,
    assert_admissible,
    check_window,
    generate_reference_code,
    parse_scan,
    qr_payload,
)

from .factories import BOOKING_ID, FIRST_SLOT_START, REFERENCE, ROME

SLOT_END = FIRST_SLOT_START + timedelta(minutes=30)


def _window(now: datetime, early: int = 15, late: int = 0) -> None:
    check_window(FIRST_SLOT_START, SLOT_END, now, "Europe/Rome", early, late)


class TestReferenceCodes:
    def test_shape(self):
        for _ in range(50):
            code = generate_reference_code()
            assert len(code) == REFERENCE_LENGTH
            assert set(code) <= set(REFERENCE_ALPHABET)

    def test_alphabet_has_no_look_alikes(self):
        assert not set("01OIL") & set(REFERENCE_ALPHABET)


class TestParseScan:
    def test_qr_payload(self):
        target = parse_scan(qr_payload(BOOKING_ID, REFERENCE))
        assert target.booking_id == BOOKING_ID
        assert target.reference_code == REFERENCE

    def test_manual_code_is_normalized(self):
        target = parse_scan("  a2b3c4 ")
        assert target.booking_id is None
        assert target.reference_code == "A2B3C4"

    def test_json_without_known_keys_is_treated_as_text(self):
        target = parse_scan(json.dumps({"foo": "bar"}))
        assert target.booking_id is None
        assert target.reference_code == '{"FOO": "BAR"}'

    def test_json_with_invalid_id_keeps_reference(self):
        target = parse_scan(json.dumps({"id": "not-a-uuid", "ref": "x9y8z7"}))
        assert target.booking_id is None
        assert target.reference_code == "X9Y8Z7"

    def test_json_number_is_treated_as_text(self):
        assert parse_scan("123456").reference_code == "123456"

    @pytest.mark.parametrize("raw", ["", "   "])
    def test_empty_input_raises(self, raw):
        with pytest.raises(ValueError, match="Enter a code"):
            parse_scan(raw)


class TestCheckWindow:
    def test_open_fifteen_minutes_before_start(self):
        _window(datetime(2026, 6, 1, 8, 45, tzinfo=ROME))

    def test_open_until_slot_end(self):
        _window(SLOT_END)

    def test_too_early_same_day(self):
        with pytest.raises(TicketError) as exc:
            _window(datetime(2026, 6, 1, 8, 44, tzinfo=ROME))
        assert exc.value.message == "Too early. Check-in opens at 08:45"

    def test_too_early_other_day(self):
        with pytest.raises(TicketError) as exc:
            _window(datetime(2026, 5, 30, 12, 0, tzinfo=ROME))
        assert exc.value.message == "Too early. Ticket is valid on 01 Jun 2026 from 08:45"

    def test_expired_after_slot_end(self):
        with pytest.raises(TicketError, match="Ticket expired"):
            _window(SLOT_END + timedelta(seconds=1))

    def test_late_allowance_extends_window(self):
        _window(SLOT_END + timedelta(minutes=5), late=10)


class TestAssertAdmissible:
    now = datetime(2026, 6, 1, 9, 0, tzinfo=ROME)

    def _admit(self, status: BookingStatus) -> None:
        assert_admissible(
            status, FIRST_SLOT_START, SLOT_END, self.now, "Europe/Rome", 15, 0
        )

    def test_confirmed_in_window_passes(self):
        self._admit(BookingStatus.CONFIRMED)

    @pytest.mark.parametrize(
        "status,message",
        [
            (BookingStatus.CANCELLED, "Ticket cancelled"),
            (BookingStatus.CHECKED_IN, "Already checked in"),
            (BookingStatus.HELD, "Booking not confirmed"),
        ],
    )
    def test_rejections(self, status, message):
        with pytest.raises(TicketError) as exc:
            self._admit(status)
        assert exc.value.message == message
