from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from exhibit.schemas import (
    DayScheduleResponse,
    ExperienceResponse,
    OptionType,
    Slot,
    SlotAssignment,
    SlotOption,
    SlotStatus,
    TimeInterval,
)

DEFAULT_INTERVALS = [TimeInterval(start_time="09:00", end_time="18:00")]


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def _local(day: date, hhmm: str, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, _parse_hhmm(hhmm), tzinfo=tz)


def slot_id_for(experience_id, local_start: datetime) -> str:
    return f"{experience_id}-{local_start:%Y%m%d-%H%M}"


def parse_slot_id(slot_id: str) -> tuple[str, date, str]:
    """
    Split "<experience id>-YYYYMMDD-HHMM" into its parts.

    Returns (experience_id, local date, "HH:MM"). Raises ValueError when the
    id is not in that shape.
    """
    try:
        experience_id, day_part, time_part = slot_id.rsplit("-", 2)
        day = datetime.strptime(day_part, "%Y%m%d").date()
        clock = datetime.strptime(time_part, "%H%M").strftime("%H:%M")
    except ValueError:
        raise ValueError(f"Malformed slot id '{slot_id}'") from None
    if not experience_id:
        raise ValueError(f"Malformed slot id '{slot_id}'")
    return experience_id, day, clock


def local_today(timezone: str, now: datetime) -> date:
    return now.astimezone(ZoneInfo(timezone)).date()


def generate_slots(
    experience: ExperienceResponse,
    day: date,
    occupancy: dict[str, int] | None = None,
    blocked: Iterable[str] = (),
    schedule: DayScheduleResponse | None = None,
    now: datetime | None = None,
) -> list[Slot]:
    """
    Walk every configured interval of the experience for `day`.

    A slot starts at the interval start, lasts `duration_minutes`, and the
    next one starts `duration_minutes + offset_minutes` later. A slot must
    fit entirely inside its interval (and inside the day's schedule window,
    when one is set).
    """
    if not experience.is_active:
        return []
    if experience.start_date and day < experience.start_date:
        return []
    if experience.end_date and day > experience.end_date:
        return []
    if experience.duration_minutes <= 0:
        return []
    if schedule is not None and not schedule.is_open:
        return []

    occupancy = occupancy or {}
    blocked_ids = set(blocked)
    tz = ZoneInfo(experience.timezone)

    window: tuple[datetime, datetime] | None = None
    if schedule is not None and schedule.start_time and schedule.end_time:
        window = (
            _local(day, schedule.start_time, tz),
            _local(day, schedule.end_time, tz),
        )

    duration = timedelta(minutes=experience.duration_minutes)
    step = timedelta(minutes=experience.duration_minutes + experience.offset_minutes)
    intervals = experience.time_intervals or DEFAULT_INTERVALS

    slots: dict[str, Slot] = {}
    for interval in intervals:
        current = _local(day, interval.start_time, tz)
        interval_end = _local(day, interval.end_time, tz)

        while current < interval_end:
            slot_end = current + duration
            if slot_end > interval_end:
                break

            if window is None or (window[0] <= current and slot_end <= window[1]):
                slot_id = slot_id_for(experience.id, current)
                booked = occupancy.get(slot_id, 0)
                remaining = experience.max_capacity - booked

                if now is not None and current < now:
                    status = SlotStatus.PASSED
                elif remaining <= 0:
                    status = SlotStatus.FULL
                elif booked > 0:
                    status = SlotStatus.PARTIAL
                else:
                    status = SlotStatus.OPEN

                # overlapping intervals must not produce the same slot twice
                slots.setdefault(
                    slot_id,
                    Slot(
                        id=slot_id,
                        experience_id=experience.id,
                        start_time=current,
                        end_time=slot_end,
                        formatted_time=f"{current:%H:%M}",
                        max_capacity=experience.max_capacity,
                        current_bookings=booked,
                        remaining_capacity=max(0, remaining),
                        status=status,
                        is_blocked=slot_id in blocked_ids,
                    ),
                )

            current += step

    return sorted(slots.values(), key=lambda s: s.start_time)


def find_booking_options(slots: list[Slot], pax: int) -> list[SlotOption]:
    """
    Offer the visitor a way in for a party of `pax`.

    TOGETHER is the first slot that fits the whole party; SPLIT fills the
    earliest slots in order until everyone has a place.
    """
    candidates = sorted((s for s in slots if s.bookable), key=lambda s: s.start_time)
    options: list[SlotOption] = []

    together = next((s for s in candidates if s.remaining_capacity >= pax), None)
    if together is not None:
        options.append(
            SlotOption(
                type=OptionType.TOGETHER,
                description=f"Next available slot for {pax} people together",
                slots=[SlotAssignment(slot=together, pax_to_assign=pax)],
            )
        )

    plan: list[SlotAssignment] = []
    remaining = pax
    for slot in candidates:
        if remaining <= 0:
            break
        take = min(slot.remaining_capacity, remaining)
        if take > 0:
            plan.append(SlotAssignment(slot=slot, pax_to_assign=take))
            remaining -= take

    if remaining == 0:
        if len(plan) > 1:
            options.append(
                SlotOption(
                    type=OptionType.SPLIT,
                    description=f"Earliest start (Split into {len(plan)} groups)",
                    slots=plan,
                )
            )
        elif len(plan) == 1 and together is None:
            options.append(
                SlotOption(
                    type=OptionType.TOGETHER,
                    description="Next available slot",
                    slots=plan,
                )
            )

    return options


def availability_label(slots: list[Slot], pax: int, now: datetime) -> tuple[str, bool]:
    """Label shown on the visitor's experience card for today."""
    upcoming = [s for s in slots if s.start_time > now]
    fitting = [
        s
        for s in upcoming
        if not s.is_blocked and s.remaining_capacity >= pax
    ]
    if fitting:
        first = min(fitting, key=lambda s: s.start_time)
        return f"NEXT: TODAY {first.formatted_time}", True
    if upcoming:
        return "GROUP TOO LARGE", False
    return "NO SLOTS TODAY", False
