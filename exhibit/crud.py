from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from uuid import UUID

from fastapi import HTTPException, status
from loguru import logger
from tortoise.exceptions import IntegrityError
from tortoise.expressions import Q
from tortoise.transactions import in_transaction

from exhibit import settings
from exhibit.cache import get_occupancy_cache, set_occupancy_cache
from exhibit.models import (
    ACTIVE_STATUSES,
    Booking,
    BookingStatus,
    DaySchedule,
    Experience,
    Guest,
    SlotBlock,
)
from exhibit.schemas import (
    BookingFilters,
    BookingResponse,
    DayScheduleResponse,
    DayScheduleUpsert,
    ExperienceCreate,
    ExperienceResponse,
    ExperienceUpdate,
    GuestResponse,
    HoldResponse,
    ResetResult,
    Slot,
    SlotBlockResponse,
    SlotStatus,
    VisitorDetails,
)
from exhibit.slots import generate_slots, parse_slot_id
from exhibit.tickets import (
    ScanTarget,
    TicketError,
    assert_admissible,
    generate_reference_code,
)

REFERENCE_CODE_ATTEMPTS = 10


def _to_utc(dt: datetime) -> datetime:
    """Ensure a datetime is UTC-aware, handling both aware and naive inputs."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _active_filter(now: datetime) -> Q:
    """Bookings that occupy places: issued tickets and holds that have not lapsed."""
    return Q(status__in=ACTIVE_STATUSES) | Q(
        status=BookingStatus.HELD, hold_expires_at__gt=now
    )


async def _booking_response(
    inst: Booking, experience_name: str | None = None
) -> BookingResponse:
    guests = await Guest.filter(booking_id=inst.id).order_by("position")
    return BookingResponse(
        id=inst.id,
        experience_id=inst.experience_id,  # type: ignore[attr-defined]
        experience_name=experience_name,
        slot_id=inst.slot_id,
        slot_start=_to_utc(inst.slot_start),
        slot_end=_to_utc(inst.slot_end),
        date=inst.date,
        time=inst.time,
        pax=inst.pax,
        original_pax=inst.original_pax,
        visitor_name=inst.visitor_name,
        visitor_email=inst.visitor_email,
        reference_code=inst.reference_code,
        status=inst.status,
        hold_expires_at=inst.hold_expires_at,
        checked_in_at=inst.checked_in_at,
        guests=[GuestResponse.model_validate(g, from_attributes=True) for g in guests],
    )


# ---------------------------------------------------------------------------
# Experiences
# ---------------------------------------------------------------------------


def default_experiences(today: date) -> list[ExperienceCreate]:
    """The two exhibition experiences, open from today for a year."""
    try:
        next_year = today.replace(year=today.year + 1)
    except ValueError:  # 29 February
        next_year = today + timedelta(days=365)
    return [
        ExperienceCreate(
            name="Immersive Experience",
            description="COLLABORATIVE EXPERIENCE",
            timezone="Europe/Rome",
            max_capacity=4,
            duration_minutes=30,
            offset_minutes=15,
            color="bg-blue-600",
            start_date=today,
            end_date=next_year,
            time_intervals=[{"start_time": "09:00", "end_time": "15:30"}],
        ),
        ExperienceCreate(
            name="VR Experience",
            description="SINGLE USER EXPERIENCE",
            timezone="Europe/Rome",
            max_capacity=12,
            duration_minutes=20,
            offset_minutes=10,
            color="bg-emerald-600",
            start_date=today,
            end_date=next_year,
            time_intervals=[{"start_time": "09:30", "end_time": "15:30"}],
        ),
    ]


class ExperienceCRUD:
    async def list_experiences(self, active_only: bool = False) -> list[ExperienceResponse]:
        qs = Experience.all()
        if active_only:
            qs = qs.filter(is_active=True)
        return [
            ExperienceResponse.model_validate(e, from_attributes=True) for e in await qs
        ]

    async def get_experience(self, experience_id: UUID) -> ExperienceResponse | None:
        inst = await Experience.get_or_none(id=experience_id)
        if not inst:
            return None
        return ExperienceResponse.model_validate(inst, from_attributes=True)

    async def create_experience(self, payload: ExperienceCreate) -> ExperienceResponse:
        inst = await Experience.create(**payload.model_dump())
        logger.info("Experience created: {} ({})", inst.name, inst.id)
        return ExperienceResponse.model_validate(inst, from_attributes=True)

    async def update_experience(
        self, experience_id: UUID, payload: ExperienceUpdate
    ) -> ExperienceResponse | None:
        inst = await Experience.get_or_none(id=experience_id)
        if not inst:
            return None
        inst.update_from_dict(payload.model_dump())
        await inst.save()
        return ExperienceResponse.model_validate(inst, from_attributes=True)

    async def set_active(
        self, experience_id: UUID, is_active: bool
    ) -> ExperienceResponse | None:
        inst = await Experience.get_or_none(id=experience_id)
        if not inst:
            return None
        inst.is_active = is_active
        await inst.save(update_fields=["is_active", "updated_at"])
        return ExperienceResponse.model_validate(inst, from_attributes=True)

    async def delete_experience(self, experience_id: UUID) -> bool:
        deleted = await Experience.filter(id=experience_id).delete()
        if deleted:
            logger.info("Experience deleted: {}", experience_id)
        return deleted > 0

    async def load_defaults(self, today: date) -> list[ExperienceResponse]:
        if await Experience.exists():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Experiences already exist; defaults are only loaded into an empty system",
            )
        return [await self.create_experience(p) for p in default_experiences(today)]


# ---------------------------------------------------------------------------
# Day schedules
# ---------------------------------------------------------------------------


class ScheduleCRUD:
    async def list_schedules(self, from_date: date | None = None) -> list[DayScheduleResponse]:
        qs = DaySchedule.all().order_by("date")
        if from_date is not None:
            qs = qs.filter(date__gte=from_date)
        return [
            DayScheduleResponse.model_validate(s, from_attributes=True) for s in await qs
        ]

    async def get_schedule(self, day: date) -> DayScheduleResponse | None:
        inst = await DaySchedule.get_or_none(date=day)
        if not inst:
            return None
        return DayScheduleResponse.model_validate(inst, from_attributes=True)

    async def upsert_schedule(
        self, day: date, payload: DayScheduleUpsert
    ) -> DayScheduleResponse:
        inst, _ = await DaySchedule.update_or_create(
            date=day, defaults=payload.model_dump()
        )
        return DayScheduleResponse.model_validate(inst, from_attributes=True)


# ---------------------------------------------------------------------------
# Slots (generation inputs, blocking)
# ---------------------------------------------------------------------------


class SlotCRUD:
    async def occupancy(
        self, experience_id: UUID, day: date, now: datetime
    ) -> dict[str, int]:
        """Sum of occupied places per slot id for one experience and local day."""
        rows = await Booking.filter(
            _active_filter(now),
            experience_id=experience_id,
            date=day.isoformat(),
        ).values_list("slot_id", "pax")
        totals: dict[str, int] = defaultdict(int)
        for slot_id, pax in rows:
            totals[slot_id] += pax
        return dict(totals)

    async def cached_occupancy(
        self, experience_id: UUID, day: date, now: datetime
    ) -> dict[str, int]:
        cached = await get_occupancy_cache(experience_id, day)
        if cached is not None:
            logger.debug("Cache hit for occupancy: {} {}", experience_id, day)
            return cached
        logger.debug("Cache miss for occupancy: {} {}", experience_id, day)
        totals = await self.occupancy(experience_id, day, now)
        await set_occupancy_cache(experience_id, day, totals)
        return totals

    async def blocked_slot_ids(self, experience_id: UUID, day: date) -> set[str]:
        prefix = f"{experience_id}-{day:%Y%m%d}-"
        return set(
            await SlotBlock.filter(
                experience_id=experience_id, slot_id__startswith=prefix
            ).values_list("slot_id", flat=True)
        )

    async def get_slots(
        self,
        experience: ExperienceResponse,
        day: date,
        now: datetime,
        use_cache: bool = True,
    ) -> list[Slot]:
        schedule = await schedule_crud.get_schedule(day)
        if use_cache:
            occupancy = await self.cached_occupancy(experience.id, day, now)
        else:
            occupancy = await self.occupancy(experience.id, day, now)
        blocked = await self.blocked_slot_ids(experience.id, day)
        return generate_slots(
            experience,
            day,
            occupancy=occupancy,
            blocked=blocked,
            schedule=schedule,
            now=now,
        )

    async def set_blocked(
        self, experience: ExperienceResponse, slot_id: str, blocked: bool
    ) -> SlotBlockResponse:
        """Idempotently block or unblock one generated slot of an experience."""
        try:
            experience_part, _, _ = parse_slot_id(slot_id)
        except ValueError:
            experience_part = None
        if experience_part != str(experience.id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Slot not found for this experience",
            )

        if blocked:
            await SlotBlock.get_or_create(experience_id=experience.id, slot_id=slot_id)
        else:
            await SlotBlock.filter(experience_id=experience.id, slot_id=slot_id).delete()
        logger.info(
            "Slot {} {}", slot_id, "blocked" if blocked else "unblocked"
        )
        return SlotBlockResponse(
            experience_id=experience.id, slot_id=slot_id, blocked=blocked
        )


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


class BookingCRUD:
    async def _save_with_reference_code(self, booking: Booking) -> None:
        """
        Give the booking an unused reference code and save it. A code taken by a
        concurrent confirmation between the lookup and the save is retried.
        """
        for _ in range(REFERENCE_CODE_ATTEMPTS):
            code = generate_reference_code()
            if await Booking.exists(reference_code=code):
                continue
            booking.reference_code = code
            try:
                async with in_transaction():
                    await booking.save()
                return
            except IntegrityError:
                logger.warning("Reference code {} taken concurrently, retrying", code)
        booking.reference_code = None
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not allocate a reference code, try again",
        )

    async def _lock_experience(self, experience_id: UUID) -> ExperienceResponse:
        inst = await Experience.filter(id=experience_id).select_for_update().first()
        if inst is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Experience not found"
            )
        return ExperienceResponse.model_validate(inst, from_attributes=True)

    async def _hold(
        self, experience_id: UUID, slot_id: str, pax: int, now: datetime
    ) -> Booking:
        """
        Check capacity and insert a held booking. Must run inside a transaction:
        the experience row lock serialises every hold on that experience.
        """
        experience = await self._lock_experience(experience_id)
        try:
            experience_part, day, _ = parse_slot_id(slot_id)
        except ValueError:
            experience_part = None
        if experience_part != str(experience.id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Slot not found"
            )

        slots = await slot_crud.get_slots(experience, day, now, use_cache=False)
        slot = next((s for s in slots if s.id == slot_id), None)
        # closed day, inactive experience, out of range or outside the window
        if slot is None or slot.is_blocked:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="This slot is not available for booking",
            )
        if slot.status == SlotStatus.PASSED:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="This slot has already started",
            )
        if slot.remaining_capacity < pax:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=(
                    f"Only {slot.remaining_capacity} places left in this slot"
                    if slot.remaining_capacity
                    else "This slot is full"
                ),
            )

        return await Booking.create(
            experience_id=experience.id,
            slot_id=slot.id,
            slot_start=_to_utc(slot.start_time),
            slot_end=_to_utc(slot.end_time),
            date=f"{slot.start_time:%Y-%m-%d}",
            time=slot.formatted_time,
            pax=pax,
            original_pax=pax,
            status=BookingStatus.HELD,
            hold_expires_at=now + timedelta(minutes=settings.HOLD_TTL_MINUTES),
        )

    async def _confirm(
        self, booking: Booking, details: VisitorDetails, now: datetime
    ) -> None:
        if booking.status != BookingStatus.HELD:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Booking is already {booking.status}",
            )
        if booking.hold_expires_at is None or _to_utc(booking.hold_expires_at) <= now:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Hold expired, please choose a slot again",
            )
        if len(details.attendee_names) != booking.pax:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Expected {booking.pax} attendee names, got {len(details.attendee_names)}",
            )

        booking.visitor_name = details.visitor_name
        booking.visitor_email = details.visitor_email
        booking.status = BookingStatus.CONFIRMED
        booking.hold_expires_at = None
        await self._save_with_reference_code(booking)

        await Guest.bulk_create(
            [
                Guest(booking_id=booking.id, position=idx, name=name)
                for idx, name in enumerate(details.attendee_names)
            ]
        )

    async def hold_slot(
        self, experience_id: UUID, slot_id: str, pax: int, now: datetime
    ) -> HoldResponse:
        """Reserve `pax` places for HOLD_TTL_MINUTES while the visitor fills the form."""
        async with in_transaction():
            inst = await self._hold(experience_id, slot_id, pax, now)
        logger.info("Hold {} created: {} x{}", inst.id, slot_id, pax)
        return HoldResponse.model_validate(inst, from_attributes=True)

    async def confirm_hold(
        self, booking_id: UUID, details: VisitorDetails, now: datetime
    ) -> BookingResponse:
        async with in_transaction():
            inst = await Booking.filter(id=booking_id).select_for_update().first()
            if inst is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND, detail="Hold not found"
                )
            await self._confirm(inst, details, now)
        logger.info("Booking {} confirmed ({})", inst.id, inst.reference_code)
        return await self._with_experience_name(inst)

    async def book_slot(
        self,
        experience_id: UUID,
        slot_id: str,
        pax: int,
        details: VisitorDetails,
        now: datetime,
    ) -> BookingResponse:
        """Hold and confirm atomically."""
        async with in_transaction():
            inst = await self._hold(experience_id, slot_id, pax, now)
            await self._confirm(inst, details, now)
        logger.info("Booking {} confirmed ({})", inst.id, inst.reference_code)
        return await self._with_experience_name(inst)

    async def release_hold(self, booking_id: UUID) -> HoldResponse | None:
        async with in_transaction():
            inst = await Booking.filter(id=booking_id).select_for_update().first()
            if inst is None:
                return None
            if inst.status != BookingStatus.HELD:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"Only held bookings can be released (status: {inst.status})",
                )
            inst.status = BookingStatus.CANCELLED
            inst.hold_expires_at = None
            await inst.save(update_fields=["status", "hold_expires_at", "updated_at"])
        return HoldResponse.model_validate(inst, from_attributes=True)

    async def _with_experience_name(self, inst: Booking) -> BookingResponse:
        experience = await Experience.get_or_none(id=inst.experience_id)  # type: ignore[attr-defined]
        return await _booking_response(
            inst, experience_name=experience.name if experience else None
        )

    async def find_by_reference(
        self, email: str, reference_code: str
    ) -> BookingResponse | None:
        inst = await Booking.get_or_none(
            reference_code=reference_code.strip().upper(),
            visitor_email__iexact=email.strip(),
        )
        if not inst:
            return None
        return await self._with_experience_name(inst)

    async def cancel_by_reference(
        self, email: str, reference_code: str, now: datetime
    ) -> BookingResponse:
        async with in_transaction():
            inst = (
                await Booking.filter(
                    reference_code=reference_code.strip().upper(),
                    visitor_email__iexact=email.strip(),
                )
                .select_for_update()
                .first()
            )
            if inst is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Ticket not found. Check code or email.",
                )
            if inst.status == BookingStatus.CANCELLED:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="This ticket has already been cancelled.",
                )
            if inst.status == BookingStatus.CHECKED_IN:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Checked-in tickets cannot be cancelled.",
                )
            if _to_utc(inst.slot_start) <= now:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="This slot has already started.",
                )
            inst.status = BookingStatus.CANCELLED
            await inst.save(update_fields=["status", "updated_at"])
        logger.info("Booking {} cancelled by visitor", inst.id)
        return await self._with_experience_name(inst)

    async def get_booking(self, booking_id: UUID) -> BookingResponse | None:
        inst = await Booking.get_or_none(id=booking_id)
        if not inst:
            return None
        return await self._with_experience_name(inst)

    async def find_for_scan(self, target: ScanTarget) -> BookingResponse | None:
        if target.booking_id is not None:
            inst = await Booking.get_or_none(id=target.booking_id)
        else:
            inst = await Booking.get_or_none(reference_code=target.reference_code)
        if not inst:
            return None
        return await self._with_experience_name(inst)

    async def _assert_admissible(self, inst: Booking, now: datetime) -> None:
        experience = await Experience.get(id=inst.experience_id)  # type: ignore[attr-defined]
        try:
            assert_admissible(
                inst.status,
                _to_utc(inst.slot_start),
                _to_utc(inst.slot_end),
                now,
                experience.timezone,
                settings.CHECKIN_EARLY_MINUTES,
                settings.CHECKIN_LATE_MINUTES,
            )
        except TicketError as exc:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT, detail=exc.message
            ) from None

    async def validate_ticket(self, booking_id: UUID, now: datetime) -> None:
        """Raise 404/409 unless the ticket may be admitted right now."""
        inst = await Booking.get_or_none(id=booking_id)
        if not inst:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Ticket Not Found"
            )
        await self._assert_admissible(inst, now)

    async def check_in(
        self, booking_id: UUID, arrived_guest_ids: list[UUID], now: datetime
    ) -> tuple[BookingResponse, int]:
        """
        Admit the arrived guests. The party shrinks to the arrived count and the
        difference goes back to the slot. Returns (booking, released places).
        """
        arrived = set(arrived_guest_ids)
        if not arrived:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Select at least one arrived guest",
            )

        async with in_transaction():
            inst = await Booking.filter(id=booking_id).select_for_update().first()
            if inst is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND, detail="Ticket Not Found"
                )
            await self._assert_admissible(inst, now)

            guests = await Guest.filter(booking_id=inst.id)
            unknown = arrived - {g.id for g in guests}
            if unknown:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail=f"Guests not on this booking: {', '.join(sorted(map(str, unknown)))}",
                )

            for guest in guests:
                guest.checked_in = guest.id in arrived
                await guest.save(update_fields=["checked_in"])

            released = inst.pax - len(arrived)
            inst.pax = len(arrived)
            inst.status = BookingStatus.CHECKED_IN
            inst.checked_in_at = now
            await inst.save(update_fields=["pax", "status", "checked_in_at", "updated_at"])

        logger.info(
            "Booking {} checked in: {} arrived, {} released", inst.id, inst.pax, released
        )
        return await self._with_experience_name(inst), released

    async def list_bookings(self, filters: BookingFilters) -> list[BookingResponse]:
        qs = Booking.all()
        if filters.experience_id is not None:
            qs = qs.filter(experience_id=filters.experience_id)
        if filters.date is not None:
            qs = qs.filter(date=filters.date.isoformat())
        if filters.status is not None:
            qs = qs.filter(status=filters.status)

        offset = (filters.page - 1) * filters.page_size
        qs = qs.order_by("slot_start", "created_at")
        bookings = await qs.offset(offset).limit(filters.page_size)
        return await self._responses(bookings)

    async def _responses(self, bookings: list[Booking]) -> list[BookingResponse]:
        ids = list({b.experience_id for b in bookings})  # type: ignore[attr-defined]
        names = {e.id: e.name for e in await Experience.filter(id__in=ids)}
        return [
            await _booking_response(b, names.get(b.experience_id))  # type: ignore[attr-defined]
            for b in bookings
        ]

    async def list_guest_list(self, day: date) -> list[BookingResponse]:
        """Issued tickets for one local day, for the gate."""
        bookings = await Booking.filter(
            date=day.isoformat(), status__in=ACTIVE_STATUSES
        ).order_by("slot_start")
        return await self._responses(bookings)

    async def reset_system(self) -> ResetResult:
        """Delete every experience, booking, guest, slot block and schedule."""
        async with in_transaction():
            bookings = await Booking.all().count()
            experiences = await Experience.all().count()
            schedules = await DaySchedule.all().count()
            await Guest.all().delete()
            await Booking.all().delete()
            await SlotBlock.all().delete()
            await DaySchedule.all().delete()
            await Experience.all().delete()
        logger.warning(
            "System reset: {} experiences, {} bookings, {} schedules deleted",
            experiences,
            bookings,
            schedules,
        )
        return ResetResult(
            experiences=experiences, bookings=bookings, schedules=schedules
        )


experience_crud = ExperienceCRUD()
schedule_crud = ScheduleCRUD()
slot_crud = SlotCRUD()
booking_crud = BookingCRUD()
