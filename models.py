from typing import Any, Dict, List, Optional
from datetime import date, datetime, timezone
from enum import Enum

from pydantic import model_validator
from sqlmodel import SQLModel, Field
from sqlalchemy import JSON, Column, DateTime, Index, UniqueConstraint

from errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _utc_column(nullable: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable)


class DayOfWeek(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def of(cls, day: date) -> "DayOfWeek":
        # date.weekday(): Monday == 0
        return list(cls)[day.weekday()]


class BookingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Only these occupy schedule cells
LIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.APPROVED)


class Role(str, Enum):
    STUDENT = "student"
    FACULTY = "faculty"
    ADMIN = "admin"


class Actor(SQLModel):
    """Caller identity as supplied by the auth layer. Trusted as given."""

    user_id: str
    role: Role = Role.STUDENT
    scope_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def manages(self, scope_id: str) -> bool:
        return self.is_admin and self.scope_id is not None and self.scope_id == scope_id


class AvailabilityWindow(SQLModel):
    """Recurring weekly opening, in display-timezone hours. end_hour is exclusive."""

    day: DayOfWeek
    start_hour: int = Field(ge=0, le=23)
    end_hour: int = Field(ge=1, le=24)

    @model_validator(mode="after")
    def check_order(self):
        if self.start_hour >= self.end_hour:
            raise ValueError("start_hour must be before end_hour")
        return self


def validate_availability(windows: List[AvailabilityWindow]) -> List[AvailabilityWindow]:
    seen = set()
    for w in windows:
        if w.day in seen:
            raise ValidationError(f"More than one availability window for {w.day.value}")
        seen.add(w.day)
    return sorted(windows, key=lambda w: list(DayOfWeek).index(w.day))


class Resource(SQLModel, table=True):
    __tablename__ = "resources"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    location: str = ""
    scope_id: str = Field(index=True)  # owning department
    is_active: bool = True
    # None means "never configured", [] means "configured, never open"
    availability: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))
    max_booking_duration: int = Field(default=2, gt=0)
    requires_approval: bool = True

    def availability_windows(self) -> Optional[List[AvailabilityWindow]]:
        if self.availability is None:
            return None
        return [AvailabilityWindow.model_validate(w) for w in self.availability]

    def set_availability(self, windows: Optional[List[AvailabilityWindow]]) -> None:
        if windows is None:
            self.availability = None
            return
        self.availability = [w.model_dump(mode="json") for w in validate_availability(windows)]


class MaintenancePeriod(SQLModel, table=True):
    __tablename__ = "maintenance_periods"

    id: Optional[int] = Field(default=None, primary_key=True)
    resource_id: int = Field(foreign_key="resources.id", index=True)
    start: datetime = Field(sa_column=_utc_column())
    end: datetime = Field(sa_column=_utc_column())
    reason: str = "Maintenance"
    created_by: Optional[str] = None


class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_resource_window", "resource_id", "start_time", "end_time"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    resource_id: int = Field(foreign_key="resources.id", index=True)
    requester_id: str = Field(index=True)
    purpose: str = ""
    start_time: datetime = Field(sa_column=_utc_column())
    end_time: datetime = Field(sa_column=_utc_column())
    status: BookingStatus = Field(default=BookingStatus.PENDING, index=True)
    remarks: Optional[str] = None
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = Field(default=None, sa_column=_utc_column(nullable=True))
    archived: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES


class BookingSlot(SQLModel, table=True):
    """One row per hour held by a live booking."""

    __tablename__ = "booking_slots"
    __table_args__ = (
        # CRITICAL: Database-level protection against double booking
        UniqueConstraint("resource_id", "slot_start", name="unique_resource_slot"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    booking_id: int = Field(foreign_key="bookings.id", index=True)
    resource_id: int = Field(index=True)
    slot_start: datetime = Field(sa_column=_utc_column())


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: Optional[int] = Field(default=None, primary_key=True)
    recipient_id: str = Field(index=True)
    kind: str
    booking_id: Optional[int] = Field(default=None, foreign_key="bookings.id")
    title: str
    message: str
    remarks: Optional[str] = None
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())
