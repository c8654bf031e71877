"""
Endpoint tests for the gate console: /gate.

Scope deps are overridden via conftest.build_app(); CRUD is patched with
AsyncMock so no DB is touched.
"""

from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock, patch

from fastapi import HTTPException

from exhibit.schemas import BookingResponse
from exhibit.tickets import ScanTarget, qr_payload

from .factories import (
    BOOKING_ID,
    GUEST_IDS,
    REFERENCE,
    booking_response,
    guest_dicts,
)

CRUD_PATH = "exhibit.routers.gate.booking_crud"


def booking_model(**overrides) -> BookingResponse:
    return BookingResponse(**booking_response(**overrides))


# ---------------------------------------------------------------------------
# POST /gate/scan
# ---------------------------------------------------------------------------


class TestScanTicket:
    def test_qr_scan_returns_booking(self, staff_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.find_for_scan = AsyncMock(return_value=booking_model())
            mock_crud.validate_ticket = AsyncMock(return_value=None)
            resp = staff_client.post(
                "/gate/scan", json={"code": qr_payload(BOOKING_ID, REFERENCE)}
            )

        assert resp.status_code == 200
        assert resp.json()["id"] == str(BOOKING_ID)
        target = mock_crud.find_for_scan.call_args[0][0]
        assert target == ScanTarget(booking_id=BOOKING_ID, reference_code=REFERENCE)
        mock_crud.validate_ticket.assert_awaited_once()

    def test_manual_code_is_upper_cased(self, staff_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.find_for_scan = AsyncMock(return_value=booking_model())
            mock_crud.validate_ticket = AsyncMock(return_value=None)
            staff_client.post("/gate/scan", json={"code": "a2b3c4"})

        target = mock_crud.find_for_scan.call_args[0][0]
        assert target.reference_code == "A2B3C4"
        assert target.booking_id is None

    def test_empty_code_returns_400(self, staff_client):
        resp = staff_client.post("/gate/scan", json={"code": "  "})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Enter a code"

    def test_unknown_ticket_returns_404(self, staff_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.find_for_scan = AsyncMock(return_value=None)
            resp = staff_client.post("/gate/scan", json={"code": "ZZZZZZ"})
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Ticket Not Found"

    def test_too_early_returns_409(self, staff_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.find_for_scan = AsyncMock(return_value=booking_model())
            mock_crud.validate_ticket = AsyncMock(
                side_effect=HTTPException(
                    status_code=409, detail="Too early. Check-in opens at 08:45"
                )
            )
            resp = staff_client.post("/gate/scan", json={"code": REFERENCE})
        assert resp.status_code == 409
        assert resp.json()["detail"] == "Too early. Check-in opens at 08:45"


# ---------------------------------------------------------------------------
# POST /gate/bookings/{id}/check-in
# ---------------------------------------------------------------------------


class TestCheckIn:
    def _checked_in(self, pax: int) -> BookingResponse:
        guests = guest_dicts()
        for g in guests[:pax]:
            g["checked_in"] = True
        return booking_model(status="checked_in", pax=pax, guests=guests)

    def test_whole_party(self, staff_client, fake_redis):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.check_in = AsyncMock(return_value=(self._checked_in(2), 0))
            resp = staff_client.post(
                f"/gate/bookings/{BOOKING_ID}/check-in",
                json={"arrived_guest_ids": [str(g) for g in GUEST_IDS[:2]]},
            )

        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Success. 2 checked in."
        assert body["checked_in"] == 2
        assert body["released"] == 0
        fake_redis.delete.assert_awaited_once()

    def test_partial_party_releases_places(self, staff_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.check_in = AsyncMock(return_value=(self._checked_in(1), 1))
            resp = staff_client.post(
                f"/gate/bookings/{BOOKING_ID}/check-in",
                json={"arrived_guest_ids": [str(GUEST_IDS[0])]},
            )

        body = resp.json()
        assert body["message"] == "Checked in 1. 1 released."
        assert body["booking"]["pax"] == 1
        _, arrived, _ = mock_crud.check_in.call_args[0]
        assert arrived == [GUEST_IDS[0]]

    def test_nobody_selected_returns_422(self, staff_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.check_in = AsyncMock(
                side_effect=HTTPException(
                    status_code=422, detail="Select at least one arrived guest"
                )
            )
            resp = staff_client.post(
                f"/gate/bookings/{BOOKING_ID}/check-in", json={"arrived_guest_ids": []}
            )
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# GET /gate/bookings
# ---------------------------------------------------------------------------


class TestGuestList:
    def test_defaults_to_today_at_the_exhibition(self, staff_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.list_guest_list = AsyncMock(return_value=[booking_response()])
            resp = staff_client.get("/gate/bookings")

        assert resp.status_code == 200
        assert len(resp.json()) == 1
        mock_crud.list_guest_list.assert_awaited_once_with(date(2026, 6, 1))

    def test_explicit_date(self, staff_client):
        with patch(CRUD_PATH) as mock_crud:
            mock_crud.list_guest_list = AsyncMock(return_value=[])
            staff_client.get("/gate/bookings", params={"date": "2026-06-03"})
        mock_crud.list_guest_list.assert_awaited_once_with(date(2026, 6, 3))
