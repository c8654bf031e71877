"""
Shared pytest fixtures available to every test file automatically.
No imports needed in test files: pytest discovers this by convention.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from exhibit.deps import (
    can_manage_experiences,
    can_manage_schedule,
    can_operate_gate,
    can_read_bookings,
    can_reset_system,
    get_current_user,
    get_mailer_client,
    get_now,
)
from exhibit.routers import admin, booking, experiences, gate

from .factories import NOW, make_admin, make_staff

ROUTERS = (experiences.router, booking.router, gate.router, admin.router)


# ---------------------------------------------------------------------------
# Redis: never talk to a real server in tests
# ---------------------------------------------------------------------------


async def _empty_scan(*args, **kwargs):
    for key in ():
        yield key


def make_fake_redis() -> MagicMock:
    redis = MagicMock()
    redis.get = AsyncMock(return_value=None)
    redis.setex = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.scan_iter = MagicMock(side_effect=_empty_scan)
    return redis


@pytest.fixture(autouse=True)
def fake_redis():
    redis = make_fake_redis()
    with patch("exhibit.cache._redis", redis):
        yield redis


# ---------------------------------------------------------------------------
# Default no-op client mocks: prevent real HTTP calls in tests
# ---------------------------------------------------------------------------


def _noop_mailer_client():
    mock = MagicMock()
    mock.send_booking_confirmed = AsyncMock(return_value=True)
    mock.send_booking_cancelled = AsyncMock(return_value=True)
    return mock


# ---------------------------------------------------------------------------
# App builder: used by all client fixtures
# ---------------------------------------------------------------------------


def build_app(current_user=None, mailer_client=None, now=NOW) -> FastAPI:
    """
    Fresh FastAPI app with the clock pinned to `now`.

    When `current_user` is given, identity/scope dependencies are overridden
    to return it unconditionally. Pass `mailer_client` to inject a custom mock.
    """
    app = FastAPI()
    for router in ROUTERS:
        app.include_router(router)

    if current_user is not None:

        async def _user():
            return current_user

        for dep in (
            can_manage_experiences,
            can_manage_schedule,
            can_operate_gate,
            can_read_bookings,
            can_reset_system,
            get_current_user,
        ):
            app.dependency_overrides[dep] = _user

    mc = mailer_client if mailer_client is not None else _noop_mailer_client()
    app.dependency_overrides[get_mailer_client] = lambda: mc
    app.dependency_overrides[get_now] = lambda: now

    return app


# ---------------------------------------------------------------------------
# Reusable client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def visitor_client():
    return TestClient(build_app(), raise_server_exceptions=True)


@pytest.fixture()
def staff_client():
    return TestClient(build_app(make_staff()), raise_server_exceptions=True)


@pytest.fixture()
def admin_client():
    return TestClient(build_app(make_admin()), raise_server_exceptions=True)


@pytest.fixture()
def anon_app():
    """
    Bare app with NO identity overrides.
    Use this when you want real scope/auth deps to run so you can assert 401/403/422.
    """
    return build_app()


@pytest.fixture()
def client_factory():
    def _make(current_user=None, mailer_client=None, now=NOW) -> TestClient:
        return TestClient(
            build_app(current_user, mailer_client=mailer_client, now=now),
            raise_server_exceptions=True,
        )

    return _make
