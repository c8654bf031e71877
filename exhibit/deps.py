from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from urllib.parse import unquote
from uuid import UUID

import httpx
from fastapi import Depends, Header, HTTPException, status
from loguru import logger

from exhibit import settings
from exhibit.schemas import BookingResponse
from exhibit.scopes import ExhibitScope


@dataclass
class CurrentUser:
    id: UUID
    username: str
    scopes: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return ExhibitScope.ADMIN_EXPERIENCES in self.scopes


def get_current_user(
    x_user_id: str = Header(...),
    x_username: str = Header(...),
    x_user_scopes: str = Header(default=""),
) -> CurrentUser:
    """
    Reads the identity headers injected by the gateway after it authenticated
    the staff/admin session. Visitor endpoints never call this.
    """
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity from gateway",
        ) from None

    scopes = x_user_scopes.split(" ") if x_user_scopes else []

    return CurrentUser(id=user_id, username=unquote(x_username), scopes=scopes)


def require_scopes(*required: str):
    """
    Factory that returns a dependency enforcing one or more scopes.

    Usage:
        @router.get("/protected")
        async def route(user = Depends(require_scopes("gate:scan"))):
            ...
    """

    async def _dep(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        missing = [s for s in required if s not in current_user.scopes]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scopes: {', '.join(missing)}",
            )
        return current_user

    return _dep


# ---------------------------------------------------------------------------
# Pre-built scope dependencies
# ---------------------------------------------------------------------------

can_read_bookings = require_scopes(ExhibitScope.BOOKINGS_READ)
can_manage_experiences = require_scopes(ExhibitScope.ADMIN_EXPERIENCES)
can_manage_schedule = require_scopes(ExhibitScope.ADMIN_SCHEDULE)
can_reset_system = require_scopes(ExhibitScope.ADMIN_RESET)


async def can_operate_gate(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """
    The gate console is open to staff and to admins.
    - gate:scan         → gate staff
    - admin:experiences → admins covering the door
    """
    has_scan = ExhibitScope.GATE_SCAN in current_user.scopes
    if not (has_scan or current_user.is_admin):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=(
                f"Requires '{ExhibitScope.GATE_SCAN}' (staff) "
                f"or '{ExhibitScope.ADMIN_EXPERIENCES}' (admin)."
            ),
        )
    return current_user


def get_now() -> datetime:
    """Current instant (UTC). Overridden in tests to pin the clock."""
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# MailerClient: thin async wrapper around mailer-ms internal API
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_mailer_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.mailer_ms_url,
        timeout=httpx.Timeout(5.0),
        follow_redirects=True,
    )


class MailerClient:
    """
    Thin async wrapper around the mailer-ms internal API.
    Sends the ticket confirmation and cancellation emails to visitors.
    Failures are logged and reported as False.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_mailer_http_client()

    def _message(self, template: str, booking: BookingResponse) -> dict:
        return {
            "template": template,
            "to": booking.visitor_email,
            "context": {
                "visitor_name": booking.visitor_name,
                "experience_name": booking.experience_name,
                "date": booking.date,
                "time": booking.time,
                "pax": booking.pax,
                "reference_code": booking.reference_code,
                "qr_payload": booking.qr_payload,
                "attendees": [g.name for g in booking.guests],
            },
        }

    async def _send(self, template: str, booking: BookingResponse) -> bool:
        if not booking.visitor_email:
            return False
        try:
            resp = await self._client.post(
                "/messages", json=self._message(template, booking)
            )
        except httpx.RequestError:
            logger.warning(
                "mailer-ms unreachable, {} not sent for booking {}",
                template,
                booking.id,
            )
            return False
        if resp.status_code >= 400:
            logger.warning(
                "mailer-ms returned {} for {} (booking {})",
                resp.status_code,
                template,
                booking.id,
            )
            return False
        return True

    async def send_booking_confirmed(self, booking: BookingResponse) -> bool:
        """Returns True on success, False on any error (silently degraded)."""
        return await self._send("booking_confirmed", booking)

    async def send_booking_cancelled(self, booking: BookingResponse) -> bool:
        return await self._send("booking_cancelled", booking)


_mailer_client = MailerClient()


def get_mailer_client() -> MailerClient:
    return _mailer_client
