"""Lifecycle notification events and the sinks that receive them.

The engine only produces events. Delivery (email, push, sockets) belongs to
whatever sink is plugged in; the default one stores in-app notifications.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import List, Optional, Protocol

from pydantic import BaseModel
from sqlmodel import select
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import Notification
from timeslots import to_slot_key

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class NotificationEvent(BaseModel):
    recipient_id: str
    kind: NotificationKind
    booking_id: int
    resource_name: str
    window_start: datetime
    window_end: datetime
    remarks: Optional[str] = None

    @property
    def title(self) -> str:
        return f"Booking {self.kind.value}"

    @property
    def message(self) -> str:
        start = to_slot_key(self.window_start)
        end = to_slot_key(self.window_end)
        text = f"Your booking for {self.resource_name} ({start} to {end}) was {self.kind.value}."
        if self.remarks:
            text += f" Remarks: {self.remarks}"
        return text


class NotificationSink(Protocol):
    async def publish(self, event: NotificationEvent) -> None: ...


class StoredNotificationSink:
    """Writes each event as an in-app Notification row."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def publish(self, event: NotificationEvent) -> None:
        notification = Notification(
            recipient_id=event.recipient_id,
            kind=event.kind.value,
            booking_id=event.booking_id,
            title=event.title,
            message=event.message,
            remarks=event.remarks,
        )
        self.session.add(notification)
        await self.session.commit()
        logger.info(
            f"Stored {event.kind.value} notification for {event.recipient_id} (booking {event.booking_id})"
        )


async def notifications_for(session: AsyncSession, recipient_id: str) -> List[Notification]:
    statement = (
        select(Notification)
        .where(Notification.recipient_id == recipient_id)
        .order_by(Notification.created_at.desc())
    )
    result = await session.execute(statement)
    return list(result.scalars().all())


async def mark_all_read(session: AsyncSession, recipient_id: str) -> int:
    statement = (
        update(Notification)
        .where(Notification.recipient_id == recipient_id, Notification.is_read == False)  # noqa: E712
        .values(is_read=True)
    )
    result = await session.execute(statement)
    await session.commit()
    logger.info(f"Marked {result.rowcount} notifications read for {recipient_id}")
    return result.rowcount


async def clear_notifications(session: AsyncSession, recipient_id: str) -> int:
    result = await session.execute(delete(Notification).where(Notification.recipient_id == recipient_id))
    await session.commit()
    logger.info(f"Cleared {result.rowcount} notifications for {recipient_id}")
    return result.rowcount
