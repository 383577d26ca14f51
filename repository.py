# Data access for resources, bookings and slot claims.
# Keeps the SQL out of the admission / lifecycle logic.
from datetime import datetime
from typing import List, Optional, Tuple

from sqlmodel import select
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFoundError
from models import (
    LIVE_STATUSES,
    Booking,
    BookingSlot,
    BookingStatus,
    MaintenancePeriod,
    Resource,
    utcnow,
)
from timeslots import as_utc, iter_hours


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # --- resources ---

    async def get_resource(self, resource_id: int) -> Optional[Resource]:
        return await self.session.get(Resource, resource_id)

    async def require_resource(self, resource_id: int, active_only: bool = True) -> Resource:
        resource = await self.get_resource(resource_id)
        if resource is None or (active_only and not resource.is_active):
            raise NotFoundError("Resource not available")
        return resource

    async def maintenance_in_window(
        self, resource_id: int, start: datetime, end: datetime
    ) -> List[MaintenancePeriod]:
        statement = select(MaintenancePeriod).where(
            MaintenancePeriod.resource_id == resource_id,
            MaintenancePeriod.start < as_utc(end),
            MaintenancePeriod.end > as_utc(start),
        )
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    # --- bookings ---

    async def get_booking(self, booking_id: int) -> Optional[Booking]:
        return await self.session.get(Booking, booking_id)

    async def require_booking(self, booking_id: int) -> Booking:
        booking = await self.get_booking(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        return booking

    async def live_bookings_in_window(
        self, resource_id: int, start: datetime, end: datetime
    ) -> List[Booking]:
        # Standard half-open overlap: existing.start < end AND existing.end > start
        statement = (
            select(Booking)
            .where(
                Booking.resource_id == resource_id,
                Booking.status.in_(LIVE_STATUSES),
                Booking.start_time < as_utc(end),
                Booking.end_time > as_utc(start),
            )
            .order_by(Booking.start_time)
        )
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def requester_bookings_in_window(
        self, requester_id: str, start: datetime, end: datetime
    ) -> List[Tuple[Booking, Resource]]:
        statement = (
            select(Booking, Resource)
            .join(Resource, Resource.id == Booking.resource_id)
            .where(
                Booking.requester_id == requester_id,
                Booking.status.in_(LIVE_STATUSES),
                Booking.start_time < as_utc(end),
                Booking.end_time > as_utc(start),
            )
            .order_by(Booking.start_time)
        )
        result = await self.session.execute(statement)
        return [(booking, resource) for booking, resource in result.all()]

    async def find_overlap(self, resource_id: int, start: datetime, end: datetime) -> Optional[Booking]:
        overlapping = await self.live_bookings_in_window(resource_id, start, end)
        return overlapping[0] if overlapping else None

    async def insert_with_claims(self, booking: Booking) -> Booking:
        """Insert the booking and one claim per hour in a single transaction.

        Raises IntegrityError if another live booking already holds one of the hours.
        """
        self.session.add(booking)
        await self.session.flush()
        for slot_start in iter_hours(booking.start_time, booking.end_time):
            self.session.add(
                BookingSlot(booking_id=booking.id, resource_id=booking.resource_id, slot_start=slot_start)
            )
        await self.session.commit()
        await self.session.refresh(booking)
        return booking

    async def update_status(
        self,
        booking_id: int,
        expected: BookingStatus,
        new_status: BookingStatus,
        **values,
    ) -> bool:
        """Compare-and-set the status; frees the slot claims when leaving the live states.

        Returns False (and writes nothing) if the status changed underneath us.
        """
        statement = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == expected)
            .values(status=new_status, updated_at=utcnow(), **values)
        )
        result = await self.session.execute(statement)
        if result.rowcount != 1:
            await self.session.rollback()
            return False
        if new_status not in LIVE_STATUSES:
            await self.session.execute(delete(BookingSlot).where(BookingSlot.booking_id == booking_id))
        await self.session.commit()
        return True

    async def refresh(self, booking: Booking) -> Booking:
        await self.session.refresh(booking)
        return booking

    async def bookings_for_requester(self, requester_id: str) -> List[Booking]:
        statement = (
            select(Booking)
            .where(Booking.requester_id == requester_id, Booking.archived == False)  # noqa: E712
            .order_by(Booking.start_time.desc())
        )
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def bookings_in_scope(self, scope_id: str) -> List[Booking]:
        statement = (
            select(Booking)
            .join(Resource, Resource.id == Booking.resource_id)
            .where(Resource.scope_id == scope_id, Booking.archived == False)  # noqa: E712
            .order_by(Booking.start_time.desc())
        )
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def approved_ended_before(self, now: datetime) -> List[Booking]:
        statement = select(Booking).where(
            Booking.status == BookingStatus.APPROVED,
            Booking.end_time <= as_utc(now),
        )
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def archive_ended_before(self, cutoff: datetime) -> int:
        # Per row, not a bulk update: loaded rows may carry naive SQLite datetimes
        statement = select(Booking).where(
            Booking.status.not_in(LIVE_STATUSES),
            Booking.end_time < as_utc(cutoff),
            Booking.archived == False,  # noqa: E712
        )
        result = await self.session.execute(statement)
        stale = list(result.scalars().all())
        now = utcnow()
        for booking in stale:
            booking.archived = True
            booking.updated_at = now
        await self.session.commit()
        return len(stale)
