from enum import StrEnum

from tortoise import fields
from tortoise.models import Model


class BookingStatus(StrEnum):
    HELD = "held"  # places reserved while the visitor fills in the form
    CONFIRMED = "confirmed"  # ticket issued
    CHECKED_IN = "checked_in"  # party admitted at the gate
    CANCELLED = "cancelled"  # released by the visitor, a lapsed hold or a reset


ACTIVE_STATUSES = [BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN]


class TimestampedModel(Model):
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:  # type: ignore
        abstract = True


class Experience(TimestampedModel):
    id = fields.UUIDField(primary_key=True)

    name = fields.CharField(max_length=120)
    description = fields.TextField(default="")
    timezone = fields.CharField(max_length=64, default="Europe/Rome")
    color = fields.CharField(max_length=32, default="bg-black")

    max_capacity = fields.IntField()
    duration_minutes = fields.IntField()
    offset_minutes = fields.IntField(default=0)  # gap between slot end and next start

    is_active = fields.BooleanField(default=True)
    start_date = fields.DateField(null=True)
    end_date = fields.DateField(null=True)

    # [{"start_time": "09:00", "end_time": "15:30"}, ...]
    time_intervals = fields.JSONField(default=list)

    class Meta:  # type: ignore
        table = "experiences"
        ordering = ["created_at"]


class DaySchedule(TimestampedModel):
    id = fields.IntField(primary_key=True)
    date = fields.DateField(unique=True)
    is_open = fields.BooleanField(default=True)
    start_time = fields.CharField(max_length=5, null=True)  # global window, HH:MM
    end_time = fields.CharField(max_length=5, null=True)

    class Meta:  # type: ignore
        table = "day_schedules"
        ordering = ["date"]


class SlotBlock(TimestampedModel):
    id = fields.IntField(primary_key=True)
    experience = fields.ForeignKeyField(
        "models.Experience", related_name="slot_blocks", on_delete=fields.CASCADE
    )
    slot_id = fields.CharField(max_length=64)

    class Meta:  # type: ignore
        table = "slot_blocks"
        unique_together = (("experience", "slot_id"),)


class Booking(TimestampedModel):
    id = fields.UUIDField(primary_key=True)

    experience = fields.ForeignKeyField(
        "models.Experience", related_name="bookings", on_delete=fields.CASCADE
    )
    slot_id = fields.CharField(max_length=64, db_index=True)
    slot_start = fields.DatetimeField()
    slot_end = fields.DatetimeField()
    date = fields.CharField(max_length=10)  # local YYYY-MM-DD snapshot
    time = fields.CharField(max_length=5)  # local HH:MM snapshot

    pax = fields.IntField()
    original_pax = fields.IntField()  # party size before any reduction at the door

    visitor_name = fields.CharField(max_length=200, null=True)
    visitor_email = fields.CharField(max_length=254, null=True)
    reference_code = fields.CharField(max_length=12, unique=True, null=True)

    status = fields.CharEnumField(BookingStatus, default=BookingStatus.HELD)
    hold_expires_at = fields.DatetimeField(null=True)
    checked_in_at = fields.DatetimeField(null=True)

    guests: fields.ReverseRelation["Guest"]

    class Meta:  # type: ignore
        table = "bookings"
        ordering = ["slot_start", "created_at"]


class Guest(Model):
    id = fields.UUIDField(primary_key=True)
    booking = fields.ForeignKeyField(
        "models.Booking", related_name="guests", on_delete=fields.CASCADE
    )
    position = fields.IntField()
    name = fields.CharField(max_length=200)
    checked_in = fields.BooleanField(default=False)

    class Meta:  # type: ignore
        table = "guests"
        ordering = ["position"]
