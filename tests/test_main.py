"""App wiring: routers mounted, health check, logging setup."""

from fastapi.testclient import TestClient

from exhibit.main import create_app


def test_health():
    with TestClient(create_app(with_db=False)) as c:
        resp = c.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_all_routers_mounted():
    paths = {route.path for route in create_app(with_db=False).routes}
    for expected in (
        "/experiences/",
        "/bookings/holds",
        "/gate/scan",
        "/admin/reset",
    ):
        assert expected in paths
