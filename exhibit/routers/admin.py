from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger

from exhibit import settings
from exhibit.cache import clear_occupancy_cache
from exhibit.crud import booking_crud, experience_crud, schedule_crud, slot_crud
from exhibit.deps import (
    CurrentUser,
    can_manage_experiences,
    can_manage_schedule,
    can_read_bookings,
    can_reset_system,
    get_now,
)
from exhibit.schemas import (
    BookingFilters,
    BookingResponse,
    DayScheduleResponse,
    DayScheduleUpsert,
    ExperienceActiveUpdate,
    ExperienceCreate,
    ExperienceResponse,
    ExperienceUpdate,
    ResetRequest,
    ResetResult,
    Slot,
    SlotBlockResponse,
    SlotBlockUpdate,
)
from exhibit.slots import local_today

router = APIRouter(prefix="/admin", tags=["admin"])


async def _experience_or_404(experience_id: UUID) -> ExperienceResponse:
    experience = await experience_crud.get_experience(experience_id)
    if experience is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Experience not found"
        )
    return experience


# ---------------------------------------------------------------------------
# Experiences
# ---------------------------------------------------------------------------


@router.get(
    "/experiences",
    response_model=list[ExperienceResponse],
    dependencies=[Depends(can_manage_experiences)],
)
async def list_experiences() -> list[ExperienceResponse]:
    """Every experience, including inactive ones."""
    return await experience_crud.list_experiences()


@router.post(
    "/experiences",
    response_model=ExperienceResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_manage_experiences)],
)
async def create_experience(payload: ExperienceCreate) -> ExperienceResponse:
    return await experience_crud.create_experience(payload)


@router.post(
    "/experiences/defaults",
    response_model=list[ExperienceResponse],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(can_manage_experiences)],
)
async def load_default_experiences(now=Depends(get_now)) -> list[ExperienceResponse]:
    """Seed the exhibition's two experiences into an empty system."""
    return await experience_crud.load_defaults(local_today(settings.DEFAULT_TIMEZONE, now))


@router.put(
    "/experiences/{experience_id}",
    response_model=ExperienceResponse,
    dependencies=[Depends(can_manage_experiences)],
)
async def update_experience(
    experience_id: UUID, payload: ExperienceUpdate
) -> ExperienceResponse:
    updated = await experience_crud.update_experience(experience_id, payload)
    if not updated:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Experience not found"
        )
    return updated


@router.patch(
    "/experiences/{experience_id}/active",
    response_model=ExperienceResponse,
    dependencies=[Depends(can_manage_experiences)],
)
async def set_experience_active(
    experience_id: UUID, payload: ExperienceActiveUpdate
) -> ExperienceResponse:
    """Toggle availability without deleting."""
    updated = await experience_crud.set_active(experience_id, payload.is_active)
    if not updated:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Experience not found"
        )
    return updated


@router.delete(
    "/experiences/{experience_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(can_manage_experiences)],
)
async def delete_experience(experience_id: UUID) -> None:
    deleted = await experience_crud.delete_experience(experience_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Experience not found"
        )


# ---------------------------------------------------------------------------
# Calendar: slots, blocks, day schedules
# ---------------------------------------------------------------------------


@router.get(
    "/experiences/{experience_id}/slots",
    response_model=list[Slot],
    dependencies=[Depends(can_manage_schedule)],
)
async def list_experience_slots(
    experience_id: UUID,
    day: date | None = Query(default=None, alias="date"),
    now=Depends(get_now),
) -> list[Slot]:
    """All slots of a day with load and block state, passed ones included."""
    experience = await _experience_or_404(experience_id)
    day = day or local_today(experience.timezone, now)
    return await slot_crud.get_slots(experience, day, now, use_cache=False)


@router.put(
    "/experiences/{experience_id}/slots/{slot_id}/block",
    response_model=SlotBlockResponse,
)
async def set_slot_block(
    experience_id: UUID,
    slot_id: str,
    payload: SlotBlockUpdate,
    current_user: CurrentUser = Depends(can_manage_schedule),
) -> SlotBlockResponse:
    experience = await _experience_or_404(experience_id)
    result = await slot_crud.set_blocked(experience, slot_id, payload.blocked)
    logger.info(
        "{} set block={} on {}", current_user.username, payload.blocked, slot_id
    )
    return result


@router.get(
    "/schedules",
    response_model=list[DayScheduleResponse],
    dependencies=[Depends(can_manage_schedule)],
)
async def list_schedules(
    from_date: date | None = Query(default=None),
) -> list[DayScheduleResponse]:
    return await schedule_crud.list_schedules(from_date)


@router.get(
    "/schedules/{day}",
    response_model=DayScheduleResponse,
    dependencies=[Depends(can_manage_schedule)],
)
async def get_schedule(day: date) -> DayScheduleResponse:
    schedule = await schedule_crud.get_schedule(day)
    if schedule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Schedule not found"
        )
    return schedule


@router.put(
    "/schedules/{day}",
    response_model=DayScheduleResponse,
    dependencies=[Depends(can_manage_schedule)],
)
async def upsert_schedule(day: date, payload: DayScheduleUpsert) -> DayScheduleResponse:
    """Open or close a day, optionally narrowing it to a global time window."""
    return await schedule_crud.upsert_schedule(day, payload)


# ---------------------------------------------------------------------------
# Bookings & reset
# ---------------------------------------------------------------------------


@router.get(
    "/bookings",
    response_model=list[BookingResponse],
    dependencies=[Depends(can_read_bookings)],
)
async def list_bookings(filters: BookingFilters = Depends()) -> list[BookingResponse]:
    return await booking_crud.list_bookings(filters)


@router.post("/reset", response_model=ResetResult)
async def reset_system(
    payload: ResetRequest,
    current_user: CurrentUser = Depends(can_reset_system),
) -> ResetResult:
    """Wipe every experience, booking, guest list and schedule. Irreversible."""
    logger.warning("Factory reset requested by {}", current_user.username)
    result = await booking_crud.reset_system()
    await clear_occupancy_cache()
    return result
