from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from exhibit.cache import invalidate_occupancy_cache
from exhibit.crud import booking_crud
from exhibit.deps import MailerClient, get_mailer_client, get_now
from exhibit.schemas import (
    BookingConfirm,
    BookingCreate,
    BookingLookup,
    BookingResponse,
    CancelResult,
    HoldCreate,
    HoldResponse,
)

router = APIRouter(prefix="/bookings", tags=["bookings"])


# ---------------------------------------------------------------------------
# Hold → confirm
# ---------------------------------------------------------------------------


@router.post(
    "/holds", response_model=HoldResponse, status_code=status.HTTP_201_CREATED
)
async def create_hold(payload: HoldCreate, now=Depends(get_now)) -> HoldResponse:
    """Reserve places on a slot while the visitor enters the guest names."""
    hold = await booking_crud.hold_slot(
        payload.experience_id, payload.slot_id, payload.pax, now
    )
    await invalidate_occupancy_cache(hold.experience_id, hold.date)
    return hold


@router.post("/holds/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_hold(
    booking_id: UUID,
    payload: BookingConfirm,
    background_tasks: BackgroundTasks,
    now=Depends(get_now),
    mailer: MailerClient = Depends(get_mailer_client),
) -> BookingResponse:
    booking = await booking_crud.confirm_hold(booking_id, payload, now)
    await invalidate_occupancy_cache(booking.experience_id, booking.date)
    background_tasks.add_task(mailer.send_booking_confirmed, booking)
    return booking


@router.delete("/holds/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def release_hold(booking_id: UUID) -> None:
    released = await booking_crud.release_hold(booking_id)
    if not released:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Hold not found"
        )
    await invalidate_occupancy_cache(released.experience_id, released.date)


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    background_tasks: BackgroundTasks,
    now=Depends(get_now),
    mailer: MailerClient = Depends(get_mailer_client),
) -> BookingResponse:
    """Hold and confirm in one step."""
    booking = await booking_crud.book_slot(
        payload.experience_id, payload.slot_id, payload.pax, payload, now
    )
    await invalidate_occupancy_cache(booking.experience_id, booking.date)
    background_tasks.add_task(mailer.send_booking_confirmed, booking)
    return booking


# ---------------------------------------------------------------------------
# Visitor self-service
# ---------------------------------------------------------------------------


@router.post("/lookup", response_model=BookingResponse)
async def lookup_booking(payload: BookingLookup) -> BookingResponse:
    booking = await booking_crud.find_by_reference(
        payload.email, payload.reference_code
    )
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Ticket not found. Check code or email.",
        )
    return booking


@router.post("/cancel", response_model=CancelResult)
async def cancel_booking(
    payload: BookingLookup,
    background_tasks: BackgroundTasks,
    now=Depends(get_now),
    mailer: MailerClient = Depends(get_mailer_client),
) -> CancelResult:
    """Release the visitor's places back to the slot."""
    booking = await booking_crud.cancel_by_reference(
        payload.email, payload.reference_code, now
    )
    await invalidate_occupancy_cache(booking.experience_id, booking.date)
    background_tasks.add_task(mailer.send_booking_cancelled, booking)
    return CancelResult(
        success=True,
        message="Your booking has been removed. We hope to see you another time.",
        booking=booking,
    )
