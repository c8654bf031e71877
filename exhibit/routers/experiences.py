import asyncio
from datetime import date, timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from exhibit import settings
from exhibit.crud import experience_crud, slot_crud
from exhibit.deps import get_now
from exhibit.schemas import (
    ExperienceAvailability,
    ExperienceResponse,
    Slot,
    SlotOption,
)
from exhibit.slots import availability_label, find_booking_options, local_today

router = APIRouter(prefix="/experiences", tags=["experiences"])


async def _active_experience(experience_id: UUID) -> ExperienceResponse:
    experience = await experience_crud.get_experience(experience_id)
    if experience is None or not experience.is_active:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Experience not found"
        )
    return experience


@router.get("/", response_model=list[ExperienceAvailability])
async def list_experiences(
    pax: int = Query(default=2, ge=1, le=50),
    now=Depends(get_now),
) -> list[ExperienceAvailability]:
    """
    Active experiences with today's next slot for a party of `pax`.
    Public: visitors are anonymous.
    """
    experiences = await experience_crud.list_experiences(active_only=True)

    async def _card(experience: ExperienceResponse) -> ExperienceAvailability:
        if pax > experience.max_capacity:
            return ExperienceAvailability(
                experience=experience,
                label=f"MAX {experience.max_capacity} PAX",
                available=False,
            )
        today = local_today(experience.timezone, now)
        slots = await slot_crud.get_slots(experience, today, now)
        label, available = availability_label(slots, pax, now)
        return ExperienceAvailability(
            experience=experience, label=label, available=available
        )

    return list(await asyncio.gather(*(_card(e) for e in experiences)))


@router.get("/{experience_id}/slots", response_model=list[Slot])
async def list_slots(
    experience_id: UUID,
    day: date | None = Query(default=None, alias="date"),
    now=Depends(get_now),
) -> list[Slot]:
    """Slots of one day (local to the experience) that have not ended yet."""
    experience = await _active_experience(experience_id)
    day = day or local_today(experience.timezone, now)
    slots = await slot_crud.get_slots(experience, day, now)
    return [s for s in slots if s.end_time > now]


@router.get("/{experience_id}/options", response_model=list[SlotOption])
async def booking_options(
    experience_id: UUID,
    pax: int = Query(ge=1, le=50),
    now=Depends(get_now),
) -> list[SlotOption]:
    """TOGETHER / SPLIT proposals over today and the following day(s)."""
    experience = await _active_experience(experience_id)
    today = local_today(experience.timezone, now)

    slots: list[Slot] = []
    for offset in range(settings.OPTIONS_LOOKAHEAD_DAYS):
        slots.extend(
            await slot_crud.get_slots(experience, today + timedelta(days=offset), now)
        )
    return find_booking_options(slots, pax)
