from __future__ import annotations

import datetime as dt
from enum import StrEnum
from typing import Literal
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from exhibit import tickets
from exhibit.models import BookingStatus

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# ---------------------------------------------------------------------------
# Experiences
# ---------------------------------------------------------------------------


class TimeInterval(BaseModel):
    start_time: str = Field(pattern=HHMM_PATTERN)
    end_time: str = Field(pattern=HHMM_PATTERN)

    @model_validator(mode="after")
    def validate_order(self) -> TimeInterval:
        # HH:MM strings compare in clock order
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class ExperienceBase(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: str = Field(default="", max_length=2000)
    timezone: str = "Europe/Rome"
    color: str = Field(default="bg-black", max_length=32)
    max_capacity: int = Field(ge=1, le=500)
    duration_minutes: int = Field(ge=1, le=24 * 60)
    offset_minutes: int = Field(default=0, ge=0, le=24 * 60)
    is_active: bool = True
    start_date: dt.date | None = None
    end_date: dt.date | None = None
    time_intervals: list[TimeInterval] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone '{v}'") from None
        return v

    @model_validator(mode="after")
    def validate_date_range(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ExperienceCreate(ExperienceBase):
    pass


class ExperienceUpdate(ExperienceBase):
    """Full replacement of an experience's settings (PUT semantics)."""


class ExperienceActiveUpdate(BaseModel):
    is_active: bool


class ExperienceResponse(ExperienceBase):
    id: UUID

    model_config = ConfigDict(from_attributes=True)


class ExperienceAvailability(BaseModel):
    """Experience card for the visitor picker."""

    experience: ExperienceResponse
    label: str
    available: bool


# ---------------------------------------------------------------------------
# Schedules & slots
# ---------------------------------------------------------------------------


class DayScheduleUpsert(BaseModel):
    is_open: bool = True
    start_time: str | None = Field(default=None, pattern=HHMM_PATTERN)
    end_time: str | None = Field(default=None, pattern=HHMM_PATTERN)

    @model_validator(mode="after")
    def validate_window(self) -> DayScheduleUpsert:
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError("start_time and end_time must be set together")
        if self.start_time and self.end_time and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class DayScheduleResponse(BaseModel):
    date: dt.date
    is_open: bool
    start_time: str | None
    end_time: str | None

    model_config = ConfigDict(from_attributes=True)


class SlotStatus(StrEnum):
    OPEN = "OPEN"
    PARTIAL = "PARTIAL"
    FULL = "FULL"
    PASSED = "PASSED"


class Slot(BaseModel):
    id: str
    experience_id: UUID
    start_time: dt.datetime
    end_time: dt.datetime
    formatted_time: str
    max_capacity: int
    current_bookings: int
    remaining_capacity: int
    status: SlotStatus
    is_blocked: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def bookable(self) -> bool:
        return (
            self.status not in (SlotStatus.PASSED, SlotStatus.FULL)
            and not self.is_blocked
            and self.remaining_capacity > 0
        )


class OptionType(StrEnum):
    TOGETHER = "TOGETHER"
    SPLIT = "SPLIT"


class SlotAssignment(BaseModel):
    slot: Slot
    pax_to_assign: int


class SlotOption(BaseModel):
    type: OptionType
    description: str
    slots: list[SlotAssignment]


class SlotBlockUpdate(BaseModel):
    blocked: bool


class SlotBlockResponse(BaseModel):
    experience_id: UUID
    slot_id: str
    blocked: bool


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


class HoldCreate(BaseModel):
    experience_id: UUID
    slot_id: str = Field(min_length=1, max_length=64)
    pax: int = Field(ge=1, le=50)


class VisitorDetails(BaseModel):
    visitor_name: str = Field(min_length=1, max_length=200)
    visitor_email: EmailStr
    attendee_names: list[str] = Field(min_length=1, max_length=50)
    accepted_terms: bool = False

    @field_validator("visitor_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("visitor_name must not be blank")
        return v

    @field_validator("visitor_email", mode="after")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("attendee_names")
    @classmethod
    def validate_attendees(cls, v: list[str]) -> list[str]:
        names = [n.strip() for n in v]
        if any(not n for n in names):
            raise ValueError("every attendee needs a name")
        if any(len(n) > 200 for n in names):
            raise ValueError("attendee names are limited to 200 characters")
        return names

    @field_validator("accepted_terms")
    @classmethod
    def require_terms(cls, v: bool) -> bool:
        if not v:
            raise ValueError("the terms of use must be accepted")
        return v


class BookingConfirm(VisitorDetails):
    pass


class BookingCreate(VisitorDetails):
    """Hold and confirm in one request."""

    experience_id: UUID
    slot_id: str = Field(min_length=1, max_length=64)
    pax: int = Field(ge=1, le=50)

    @model_validator(mode="after")
    def validate_party(self) -> BookingCreate:
        if len(self.attendee_names) != self.pax:
            raise ValueError("attendee_names must contain one name per person")
        return self


class HoldResponse(BaseModel):
    id: UUID
    experience_id: UUID
    slot_id: str
    date: str
    time: str
    pax: int
    status: BookingStatus
    hold_expires_at: dt.datetime | None

    model_config = ConfigDict(from_attributes=True)


class GuestResponse(BaseModel):
    id: UUID
    position: int
    name: str
    checked_in: bool

    model_config = ConfigDict(from_attributes=True)


class BookingResponse(BaseModel):
    id: UUID
    experience_id: UUID
    experience_name: str | None = None
    slot_id: str
    slot_start: dt.datetime
    slot_end: dt.datetime
    date: str
    time: str
    pax: int
    original_pax: int
    visitor_name: str | None
    visitor_email: str | None
    reference_code: str | None
    status: BookingStatus
    hold_expires_at: dt.datetime | None = None
    checked_in_at: dt.datetime | None = None
    guests: list[GuestResponse] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def qr_payload(self) -> str | None:
        """String a ticket renderer encodes into the QR image."""
        if self.reference_code is None:
            return None
        return tickets.qr_payload(self.id, self.reference_code)


class BookingLookup(BaseModel):
    email: EmailStr
    reference_code: str = Field(min_length=1, max_length=12)


class CancelResult(BaseModel):
    success: bool
    message: str
    booking: BookingResponse


class BookingFilters(BaseModel):
    """Bind to a FastAPI route via Depends(BookingFilters)."""

    experience_id: UUID | None = None
    date: dt.date | None = None
    status: BookingStatus | None = None

    # Pagination
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1, le=200)


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class ScanRequest(BaseModel):
    code: str = Field(default="", max_length=1000)


class CheckInRequest(BaseModel):
    arrived_guest_ids: list[UUID] = Field(default_factory=list)


class CheckInResult(BaseModel):
    booking: BookingResponse
    checked_in: int
    released: int
    message: str


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class ResetRequest(BaseModel):
    confirm: Literal["RESET"]


class ResetResult(BaseModel):
    experiences: int
    bookings: int
    schedules: int
