"""
Tests for exhibit/deps.py: get_current_user, require_scopes, can_operate_gate,
MailerClient. These tests use the real dep functions (no overrides).
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
from fastapi.testclient import TestClient

from exhibit.deps import (
    CurrentUser,
    MailerClient,
    get_current_user,
    get_mailer_client,
)
from exhibit.schemas import BookingResponse

from .factories import (
    STAFF_ID,
    booking_response,
    make_admin,
    make_staff,
)

GATE_CRUD = "exhibit.routers.gate.booking_crud"
ADMIN_CRUD = "exhibit.routers.admin.booking_crud"


def _headers(scopes: str = "gate:scan bookings:read", user_id: str | None = None) -> dict:
    return {
        "X-User-Id": user_id or str(STAFF_ID),
        "X-Username": "door%20staff",
        "X-User-Scopes": scopes,
    }


class TestGetCurrentUser:
    def test_valid_headers_authenticate(self, anon_app):
        with patch(GATE_CRUD) as mock_crud:
            mock_crud.list_guest_list = AsyncMock(return_value=[])
            with TestClient(anon_app) as c:
                resp = c.get("/gate/bookings", headers=_headers())
        assert resp.status_code == 200

    def test_invalid_user_id_returns_401(self, anon_app):
        with TestClient(anon_app) as c:
            resp = c.get("/gate/bookings", headers=_headers(user_id="not-a-uuid"))
        assert resp.status_code == 401

    def test_missing_headers_return_422(self, anon_app):
        with TestClient(anon_app) as c:
            resp = c.get("/gate/bookings")
        assert resp.status_code == 422

    def test_username_is_url_decoded_and_scopes_split(self):
        user = get_current_user(
            x_user_id=str(STAFF_ID),
            x_username="door%20staff",
            x_user_scopes="gate:scan bookings:read",
        )
        assert user.username == "door staff"
        assert user.scopes == ["gate:scan", "bookings:read"]

    def test_empty_scopes_string_parsed_as_empty_list(self):
        user = get_current_user(
            x_user_id=str(STAFF_ID), x_username="u", x_user_scopes=""
        )
        assert user.scopes == []


class TestScopeChecks:
    def test_gate_requires_scan_or_admin(self, anon_app):
        with TestClient(anon_app) as c:
            resp = c.get("/gate/bookings", headers=_headers(scopes="bookings:read"))
        assert resp.status_code == 403

    def test_admin_may_operate_gate(self, anon_app):
        with patch(GATE_CRUD) as mock_crud:
            mock_crud.list_guest_list = AsyncMock(return_value=[])
            with TestClient(anon_app) as c:
                resp = c.get(
                    "/gate/bookings", headers=_headers(scopes="admin:experiences")
                )
        assert resp.status_code == 200

    def test_missing_scope_is_named(self, anon_app):
        with TestClient(anon_app) as c:
            resp = c.post(
                "/admin/reset", json={"confirm": "RESET"}, headers=_headers()
            )
        assert resp.status_code == 403
        assert "admin:reset" in resp.json()["detail"]

    def test_required_scope_passes(self, anon_app):
        with patch(ADMIN_CRUD) as mock_crud:
            mock_crud.list_bookings = AsyncMock(return_value=[])
            with TestClient(anon_app) as c:
                resp = c.get("/admin/bookings", headers=_headers())
        assert resp.status_code == 200


class TestCurrentUserIsAdmin:
    def test_is_admin_true_with_experiences_scope(self):
        assert make_admin().is_admin is True

    def test_is_admin_false_for_staff(self):
        assert make_staff().is_admin is False

    def test_default_scopes_empty(self):
        assert CurrentUser(id=STAFF_ID, username="x").scopes == []


# ---------------------------------------------------------------------------
# MailerClient
# ---------------------------------------------------------------------------


def _mock_http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url="http://mailer-ms", transport=httpx.MockTransport(handler)
    )


def _booking(**overrides) -> BookingResponse:
    return BookingResponse(**booking_response(**overrides))


class TestMailerClient:
    def test_singleton(self):
        assert isinstance(get_mailer_client(), MailerClient)
        assert get_mailer_client() is get_mailer_client()

    def test_confirmation_message_body(self):
        sent = {}

        def handler(request: httpx.Request) -> httpx.Response:
            sent["path"] = request.url.path
            sent["body"] = json.loads(request.content)
            return httpx.Response(202)

        with patch("exhibit.deps._get_mailer_http_client", return_value=_mock_http(handler)):
            ok = asyncio.run(MailerClient().send_booking_confirmed(_booking()))

        assert ok is True
        assert sent["path"] == "/messages"
        assert sent["body"]["template"] == "booking_confirmed"
        assert sent["body"]["to"] == "alberto@example.com"
        assert sent["body"]["context"]["attendees"] == ["Alberto", "Giulia"]
        assert sent["body"]["context"]["reference_code"] == "A2B3C4"

    def test_server_error_returns_false(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        with patch("exhibit.deps._get_mailer_http_client", return_value=_mock_http(handler)):
            ok = asyncio.run(MailerClient().send_booking_cancelled(_booking()))
        assert ok is False

    def test_unreachable_returns_false(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with patch("exhibit.deps._get_mailer_http_client", return_value=_mock_http(handler)):
            ok = asyncio.run(MailerClient().send_booking_confirmed(_booking()))
        assert ok is False

    def test_no_email_skips_send(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("mailer must not be called")

        with patch("exhibit.deps._get_mailer_http_client", return_value=_mock_http(handler)):
            ok = asyncio.run(
                MailerClient().send_booking_confirmed(_booking(visitor_email=None))
            )
        assert ok is False

    def test_client_property_returns_async_client(self):
        assert isinstance(MailerClient()._client, httpx.AsyncClient)
