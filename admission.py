"""Admission control for new bookings.

Checks run in a fixed order and the first failure wins:
  1. both ends hour-aligned
  2. end after start
  3. duration within the resource's maximum
  4. no live booking on the resource overlaps [start, end)

Check 4 is read from the store, then the booking and its per-hour slot claims
are written in one transaction. The unique index on the claims makes the
read-then-write atomic per resource: if a concurrent admission wins, the
insert fails, we re-read once and report the conflict.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt

from errors import ConflictError, DurationExceeded, SlotRaceError, ValidationError
from lifecycle import new_booking
from models import Actor, Booking, Resource
from repository import BookingRepository
from timeslots import as_utc, hours_between, is_hour_aligned

logger = logging.getLogger(__name__)


def check_window(start: datetime, end: datetime, max_hours: int) -> int:
    """Checks 1-3. Returns the duration in hours."""
    if not (is_hour_aligned(start) and is_hour_aligned(end)):
        raise ValidationError("Start and end time must fall on a full hour")
    if end <= start:
        raise ValidationError("End time must be after start time")
    hours = hours_between(start, end)
    if hours > max_hours:
        raise DurationExceeded(hours, max_hours)
    return hours


@retry(
    retry=retry_if_exception_type(SlotRaceError),
    stop=stop_after_attempt(2),
    reraise=True,
    before_sleep=before_sleep_log(logger, logging.WARNING),
)
async def _claim(repo: BookingRepository, resource: Resource, requester_id: str,
                 start: datetime, end: datetime, purpose: str, now: Optional[datetime]) -> Booking:
    existing = await repo.find_overlap(resource.id, start, end)
    if existing is not None:
        logger.info(f"Resource {resource.id}: {start.isoformat()} overlaps booking {existing.id}")
        raise ConflictError()

    booking = new_booking(resource, requester_id, start, end, purpose, now=now)
    try:
        return await repo.insert_with_claims(booking)
    except IntegrityError:
        await repo.session.rollback()
        raise SlotRaceError("Slot claimed by a concurrent booking") from None


async def admit(
    session: AsyncSession,
    resource_id: int,
    actor: Actor,
    start: datetime,
    end: datetime,
    purpose: str = "",
    now: Optional[datetime] = None,
) -> Booking:
    repo = BookingRepository(session)
    resource = await repo.require_resource(resource_id)
    # Detached copy: a rollback inside _claim must not expire what we read here
    snapshot = Resource.model_validate(resource.model_dump())

    start, end = as_utc(start), as_utc(end)
    hours = check_window(start, end, snapshot.max_booking_duration)

    try:
        booking = await _claim(repo, snapshot, actor.user_id, start, end, purpose, now)
    except SlotRaceError:
        logger.warning(f"Resource {resource_id}: lost admission race twice, reporting conflict")
        raise ConflictError() from None

    logger.info(
        f"Admitted booking {booking.id} on resource {resource_id} "
        f"({hours}h, {booking.status.value}) for {actor.user_id}"
    )
    return booking
