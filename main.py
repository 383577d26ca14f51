import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from admission import admit
from config import (
    COMPLETION_SWEEP_SECONDS,
    CORS_ORIGINS,
    DISPLAY_TZ,
    DISPLAY_TZ_NAME,
    LOG_LEVEL,
    SCHEDULE_DAYS,
)
from database import async_session, get_session, init_db
from errors import (
    AuthorizationError,
    BookingError,
    ConflictError,
    DurationExceeded,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from grid import build_grid, build_requester_schedule
from lifecycle import BookingLifecycle
from models import Actor, Booking, BookingStatus, Role
from notifications import clear_notifications, mark_all_read, notifications_for
from repository import BookingRepository
from timeslots import SlotKey, as_utc, display_today, to_absolute, to_slot_key

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Resource Booking System")


# Pydantic Schemas for Request/Response
class BookingCreate(BaseModel):
    resource_id: int
    start_time: datetime
    end_time: datetime
    purpose: str = Field(min_length=1)

    @field_validator("start_time", "end_time")
    @classmethod
    def assume_display_tz(cls, value: datetime) -> datetime:
        # People pick times on the display grid; naive input means display time
        if value.tzinfo is None:
            return value.replace(tzinfo=DISPLAY_TZ)
        return value


class DecisionBody(BaseModel):
    remarks: Optional[str] = None


class BookingRead(BaseModel):
    id: int
    resource_id: int
    requester_id: str
    purpose: str
    start_time: datetime
    end_time: datetime
    start_slot: str
    end_slot: str
    status: BookingStatus
    remarks: Optional[str]
    decided_by: Optional[str]
    decided_at: Optional[datetime]

    @classmethod
    def from_booking(cls, b: Booking) -> "BookingRead":
        return cls(
            id=b.id,
            resource_id=b.resource_id,
            requester_id=b.requester_id,
            purpose=b.purpose,
            start_time=as_utc(b.start_time),
            end_time=as_utc(b.end_time),
            start_slot=str(to_slot_key(b.start_time)),
            end_slot=str(to_slot_key(b.end_time)),
            status=b.status,
            remarks=b.remarks,
            decided_by=b.decided_by,
            decided_at=as_utc(b.decided_at) if b.decided_at else None,
        )


class SlotCell(BaseModel):
    state: str
    kind: Optional[str]
    booking_id: Optional[int]
    requester_id: Optional[str]
    purpose: str
    reason: str
    is_start: bool
    is_end: bool
    is_requestable: bool


class TimeRange(BaseModel):
    start_hour: int
    end_hour: int


class ScheduleResponse(BaseModel):
    resource_id: int
    resource_name: str
    is_active: bool
    configured: bool
    timezone: str
    days: List[date]
    time_range: Optional[TimeRange]
    schedule: Optional[Dict[str, SlotCell]]
    counts: Dict[str, int]


class RequesterSlotRead(BaseModel):
    booking_id: int
    kind: str
    resource_id: int
    resource_name: str
    location: str
    purpose: str
    is_start: bool
    is_end: bool


class RequesterScheduleResponse(BaseModel):
    requester_id: str
    timezone: str
    days: List[date]
    schedule: Dict[str, List[RequesterSlotRead]]


class NotificationRead(BaseModel):
    id: int
    kind: str
    booking_id: Optional[int]
    title: str
    message: str
    remarks: Optional[str]
    is_read: bool
    created_at: datetime


# Identity comes from the auth layer in front of us; trusted as given
async def get_actor(
    x_user_id: str = Header(...),
    x_user_role: Role = Header(Role.STUDENT),
    x_scope_id: Optional[str] = Header(None),
) -> Actor:
    return Actor(user_id=x_user_id, role=x_user_role, scope_id=x_scope_id)


# --- Error mapping ---
ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    DurationExceeded: status.HTTP_400_BAD_REQUEST,
    ConflictError: status.HTTP_409_CONFLICT,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
}


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if isinstance(exc, InvalidTransition):
        logger.error(f"Invalid transition on {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": "Request could not be processed"},
        )

    code = next(
        (c for cls, c in ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_400_BAD_REQUEST,
    )
    body = {"detail": exc.message}
    if isinstance(exc, DurationExceeded):
        body["requested_hours"] = exc.requested_hours
        body["allowed_hours"] = exc.allowed_hours
    return JSONResponse(status_code=code, content=body)


# --- Background completion sweep ---
async def run_sweep(session: AsyncSession) -> Dict[str, int]:
    lifecycle = BookingLifecycle(session)
    completed = await lifecycle.complete_due()
    archived = await lifecycle.archive_past()
    return {"completed": completed, "archived": archived}


async def completion_sweeper(interval: int, session_factory=async_session):
    while True:
        await asyncio.sleep(interval)
        try:
            async with session_factory() as session:
                await run_sweep(session)
        except Exception:
            # Log and keep the loop alive
            logger.exception("Completion sweep failed")


@app.on_event("startup")
async def on_startup():
    await init_db()
    if COMPLETION_SWEEP_SECONDS > 0:
        app.state.sweeper = asyncio.create_task(completion_sweeper(COMPLETION_SWEEP_SECONDS))
        logger.info(f"Completion sweep every {COMPLETION_SWEEP_SECONDS}s")


@app.on_event("shutdown")
async def on_shutdown():
    sweeper = getattr(app.state, "sweeper", None)
    if sweeper is not None:
        sweeper.cancel()


# --- GET /resources/{id}/schedule ---
@app.get("/resources/{resource_id}/schedule", response_model=ScheduleResponse)
async def get_resource_schedule(
    resource_id: int,
    days: int = Query(SCHEDULE_DAYS, ge=1, le=31),
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
):
    repo = BookingRepository(session)
    resource = await repo.get_resource(resource_id)
    if resource is None:
        raise NotFoundError("Resource not found")

    # Step 1: window in display days, starting today
    today = display_today()
    day_list = [today + timedelta(days=i) for i in range(days)]
    if not resource.is_active:
        return ScheduleResponse(
            resource_id=resource.id,
            resource_name=resource.name,
            is_active=False,
            configured=resource.availability is not None,
            timezone=DISPLAY_TZ_NAME,
            days=day_list,
            time_range=None,
            schedule=None,
            counts={},
        )

    window_start = to_absolute(SlotKey(today, 0))
    window_end = window_start + timedelta(days=days)

    # Step 2: everything that can close or occupy a cell, one query each
    maintenance = await repo.maintenance_in_window(resource.id, window_start, window_end)
    bookings = await repo.live_bookings_in_window(resource.id, window_start, window_end)

    # Step 3: construct the grid
    grid = build_grid(
        resource.availability_windows(),
        maintenance,
        bookings,
        today,
        days=days,
        viewer_id=actor.user_id,
    )

    return ScheduleResponse(
        resource_id=resource.id,
        resource_name=resource.name,
        is_active=True,
        configured=grid.configured,
        timezone=DISPLAY_TZ_NAME,
        days=grid.days,
        time_range=TimeRange(start_hour=grid.start_hour, end_hour=grid.end_hour) if grid.configured else None,
        schedule={k: SlotCell(**v) for k, v in grid.to_dict().items()},
        counts={state.value: n for state, n in grid.counts().items()},
    )


# --- GET /schedule/me ---
@app.get("/schedule/me", response_model=RequesterScheduleResponse)
async def get_my_schedule(
    days: int = Query(SCHEDULE_DAYS, ge=1, le=31),
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
):
    today = display_today()
    window_start = to_absolute(SlotKey(today, 0))
    window_end = window_start + timedelta(days=days)

    entries = await BookingRepository(session).requester_bookings_in_window(
        actor.user_id, window_start, window_end
    )
    schedule = build_requester_schedule(entries, today, days=days)

    return RequesterScheduleResponse(
        requester_id=actor.user_id,
        timezone=DISPLAY_TZ_NAME,
        days=[today + timedelta(days=i) for i in range(days)],
        schedule={
            str(key): [RequesterSlotRead(**slot.to_dict()) for slot in slots]
            for key, slots in schedule.items()
        },
    )


# --- POST /bookings ---
@app.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
):
    booking = await admit(
        session,
        booking_data.resource_id,
        actor,
        booking_data.start_time,
        booking_data.end_time,
        purpose=booking_data.purpose.strip(),
    )
    return BookingRead.from_booking(booking)


@app.get("/bookings", response_model=List[BookingRead])
async def list_bookings(
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
):
    repo = BookingRepository(session)
    if actor.is_admin and actor.scope_id:
        bookings = await repo.bookings_in_scope(actor.scope_id)
    else:
        bookings = await repo.bookings_for_requester(actor.user_id)
    return [BookingRead.from_booking(b) for b in bookings]


@app.post("/bookings/complete-due")
async def complete_due_bookings(
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
):
    if not actor.is_admin:
        raise AuthorizationError("Only admins can trigger the completion sweep")
    return await run_sweep(session)


@app.post("/bookings/{booking_id}/approve", response_model=BookingRead)
async def approve_booking(
    booking_id: int,
    body: DecisionBody = DecisionBody(),
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
):
    booking = await BookingLifecycle(session).approve(booking_id, actor, body.remarks)
    return BookingRead.from_booking(booking)


@app.post("/bookings/{booking_id}/reject", response_model=BookingRead)
async def reject_booking(
    booking_id: int,
    body: DecisionBody,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
):
    booking = await BookingLifecycle(session).reject(booking_id, actor, body.remarks)
    return BookingRead.from_booking(booking)


@app.post("/bookings/{booking_id}/cancel", response_model=BookingRead)
async def cancel_booking(
    booking_id: int,
    body: DecisionBody = DecisionBody(),
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
):
    booking = await BookingLifecycle(session).cancel(booking_id, actor, body.remarks)
    return BookingRead.from_booking(booking)


@app.get("/notifications", response_model=List[NotificationRead])
async def list_notifications(
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
):
    rows = await notifications_for(session, actor.user_id)
    return [NotificationRead.model_validate(n, from_attributes=True) for n in rows]


@app.post("/notifications/read-all")
async def read_all_notifications(
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
):
    return {"updated": await mark_all_read(session, actor.user_id)}


@app.delete("/notifications")
async def delete_notifications(
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
):
    return {"deleted": await clear_notifications(session, actor.user_id)}


app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
