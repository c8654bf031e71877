from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger

from exhibit import settings
from exhibit.cache import invalidate_occupancy_cache
from exhibit.crud import booking_crud
from exhibit.deps import CurrentUser, can_operate_gate, get_now
from exhibit.schemas import BookingResponse, CheckInRequest, CheckInResult, ScanRequest
from exhibit.slots import local_today
from exhibit.tickets import parse_scan

router = APIRouter(prefix="/gate", tags=["gate"])


@router.post("/scan", response_model=BookingResponse)
async def scan_ticket(
    payload: ScanRequest,
    current_user: CurrentUser = Depends(can_operate_gate),
    now=Depends(get_now),
) -> BookingResponse:
    """
    Resolve a QR payload or a typed reference code and validate it against
    the check-in window. Returns the booking with its guest list for roll call.
    """
    try:
        target = parse_scan(payload.code)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from None

    booking = await booking_crud.find_for_scan(target)
    if not booking:
        logger.info("Scan by {}: no ticket for {}", current_user.username, target)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Ticket Not Found"
        )

    await booking_crud.validate_ticket(booking.id, now)
    return booking


@router.post("/bookings/{booking_id}/check-in", response_model=CheckInResult)
async def check_in(
    booking_id: UUID,
    payload: CheckInRequest,
    current_user: CurrentUser = Depends(can_operate_gate),
    now=Depends(get_now),
) -> CheckInResult:
    booking, released = await booking_crud.check_in(
        booking_id, payload.arrived_guest_ids, now
    )
    await invalidate_occupancy_cache(booking.experience_id, booking.date)
    logger.info("Check-in by {}: booking {}", current_user.username, booking.id)

    if released > 0:
        message = f"Checked in {booking.pax}. {released} released."
    else:
        message = f"Success. {booking.pax} checked in."
    return CheckInResult(
        booking=booking, checked_in=booking.pax, released=released, message=message
    )


@router.get("/bookings", response_model=list[BookingResponse])
async def guest_list(
    day: date | None = Query(default=None, alias="date"),
    _: CurrentUser = Depends(can_operate_gate),
    now=Depends(get_now),
) -> list[BookingResponse]:
    """Issued tickets for a day (default: today at the exhibition)."""
    day = day or local_today(settings.DEFAULT_TIMEZONE, now)
    return await booking_crud.list_guest_list(day)
