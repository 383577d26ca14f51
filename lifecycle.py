"""Booking lifecycle: the only way a booking's status changes.

    pending  --approve-->  approved  --complete-->  completed
    pending  --reject--->  rejected
    pending  --cancel--->  cancelled
    approved --cancel--->  cancelled

rejected, cancelled and completed are terminal. Each transition is a single
compare-and-set write; leaving pending/approved also frees the slot claims.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from errors import AuthorizationError, InvalidTransition, ValidationError
from models import Actor, Booking, BookingStatus, Resource, utcnow
from notifications import NotificationEvent, NotificationKind, NotificationSink, StoredNotificationSink
from repository import BookingRepository
from timeslots import as_utc

logger = logging.getLogger(__name__)

SYSTEM_ACTOR_ID = "system"


class Action(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    COMPLETE = "complete"


TRANSITIONS: Dict[Tuple[BookingStatus, Action], BookingStatus] = {
    (BookingStatus.PENDING, Action.APPROVE): BookingStatus.APPROVED,
    (BookingStatus.PENDING, Action.REJECT): BookingStatus.REJECTED,
    (BookingStatus.PENDING, Action.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.APPROVED, Action.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.APPROVED, Action.COMPLETE): BookingStatus.COMPLETED,
}

NOTIFY_ON = {
    Action.APPROVE: NotificationKind.APPROVED,
    Action.REJECT: NotificationKind.REJECTED,
    Action.CANCEL: NotificationKind.CANCELLED,
}


def next_status(current: BookingStatus, action: Action) -> BookingStatus:
    try:
        return TRANSITIONS[(BookingStatus(current), action)]
    except KeyError:
        raise InvalidTransition(BookingStatus(current).value, action.value) from None


def reachable_from(current: BookingStatus) -> Set[BookingStatus]:
    return {new for (status, _), new in TRANSITIONS.items() if status == current}


def new_booking(
    resource: Resource,
    requester_id: str,
    start: datetime,
    end: datetime,
    purpose: str = "",
    now: Optional[datetime] = None,
) -> Booking:
    """Create step: pending when the resource needs approval, else auto-approved."""
    booking = Booking(
        resource_id=resource.id,
        requester_id=requester_id,
        start_time=start,
        end_time=end,
        purpose=purpose,
    )
    if resource.requires_approval:
        booking.status = BookingStatus.PENDING
    else:
        booking.status = BookingStatus.APPROVED
        booking.decided_by = requester_id
        booking.decided_at = now or utcnow()
    return booking


def authorize(action: Action, actor: Optional[Actor], booking: Booking, resource: Resource) -> None:
    if action is Action.COMPLETE:
        if actor is not None:
            raise AuthorizationError("Completion is system driven")
        return
    if actor is None:
        raise AuthorizationError("An actor is required")
    if action is Action.CANCEL and actor.user_id == booking.requester_id:
        return
    if not actor.manages(resource.scope_id):
        raise AuthorizationError(f"Not authorized to {action.value} this booking")


def remarks_required(action: Action, actor: Optional[Actor], booking: Booking) -> bool:
    if action is Action.REJECT:
        return True
    # Admin cancelling somebody else's booking has to say why
    return action is Action.CANCEL and actor is not None and actor.user_id != booking.requester_id


class BookingLifecycle:
    def __init__(self, session: AsyncSession, sink: Optional[NotificationSink] = None):
        self.repo = BookingRepository(session)
        self.sink = sink or StoredNotificationSink(session)

    async def approve(self, booking_id: int, actor: Actor, remarks: Optional[str] = None) -> Booking:
        return await self._apply(booking_id, Action.APPROVE, actor, remarks)

    async def reject(self, booking_id: int, actor: Actor, remarks: Optional[str]) -> Booking:
        return await self._apply(booking_id, Action.REJECT, actor, remarks)

    async def cancel(self, booking_id: int, actor: Actor, remarks: Optional[str] = None) -> Booking:
        return await self._apply(booking_id, Action.CANCEL, actor, remarks)

    async def complete(self, booking_id: int, now: Optional[datetime] = None) -> Booking:
        now = now or utcnow()
        booking = await self.repo.require_booking(booking_id)
        if as_utc(booking.end_time) > as_utc(now):
            raise InvalidTransition(BookingStatus(booking.status).value, Action.COMPLETE.value)
        return await self._apply(booking_id, Action.COMPLETE, None, None, now=now)

    async def _apply(
        self,
        booking_id: int,
        action: Action,
        actor: Optional[Actor],
        remarks: Optional[str],
        now: Optional[datetime] = None,
    ) -> Booking:
        now = now or utcnow()
        booking = await self.repo.require_booking(booking_id)
        # Decisions on bookings of a since-deactivated resource still apply
        resource = await self.repo.require_resource(booking.resource_id, active_only=False)

        # 1) who may do this, 2) is the move legal, 3) is the remark there
        authorize(action, actor, booking, resource)
        current = BookingStatus(booking.status)
        new = next_status(current, action)
        remarks = (remarks or "").strip() or None
        if remarks_required(action, actor, booking) and not remarks:
            raise ValidationError(f"Remarks are required to {action.value} a booking")

        values = {}
        if remarks:
            values["remarks"] = remarks
        if current is BookingStatus.PENDING:
            values["decided_by"] = actor.user_id if actor else SYSTEM_ACTOR_ID
            values["decided_at"] = now

        resource_name = resource.name
        if not await self.repo.update_status(booking_id, current, new, **values):
            # Someone else moved it first
            raise InvalidTransition(current.value, action.value)

        booking = await self.repo.refresh(booking)
        logger.info(
            f"Booking {booking_id} {current.value} -> {new.value} by {actor.user_id if actor else SYSTEM_ACTOR_ID}"
        )

        kind = NOTIFY_ON.get(action)
        if kind is not None:
            await self.sink.publish(
                NotificationEvent(
                    recipient_id=booking.requester_id,
                    kind=kind,
                    booking_id=booking.id,
                    resource_name=resource_name,
                    window_start=booking.start_time,
                    window_end=booking.end_time,
                    remarks=booking.remarks,
                )
            )
        return booking

    async def complete_due(self, now: Optional[datetime] = None) -> int:
        """Mark approved bookings whose window has ended as completed."""
        now = now or utcnow()
        due = [b.id for b in await self.repo.approved_ended_before(now)]
        completed = 0
        for booking_id in due:
            try:
                await self._apply(booking_id, Action.COMPLETE, None, None, now=now)
                completed += 1
            except InvalidTransition as e:
                logger.warning(f"Skipping completion of booking {booking_id}: {e.message}")
        if completed:
            logger.info(f"Completed {completed} past bookings")
        return completed

    async def archive_past(self, now: Optional[datetime] = None) -> int:
        """Soft-archive finished bookings that ended before yesterday."""
        now = now or utcnow()
        archived = await self.repo.archive_ended_before(now - timedelta(days=1))
        if archived:
            logger.info(f"Archived {archived} past bookings")
        return archived
