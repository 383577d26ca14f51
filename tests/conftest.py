import os

# Must be set before config/database are imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["DISPLAY_TZ"] = "Asia/Kolkata"
os.environ["DISPLAY_TZ_NAME"] = "IST"
os.environ["COMPLETION_SWEEP_SECONDS"] = "0"

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from database import get_session, init_db, make_engine, make_session_factory  # noqa: E402
from helpers import office_hours  # noqa: E402
from main import app  # noqa: E402
from models import Resource  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def make_resource(session):
    async def _make(name="Oscilloscope", availability="office", **kwargs):
        kwargs.setdefault("scope_id", "ece")
        kwargs.setdefault("max_booking_duration", 4)
        resource = Resource(name=name, **kwargs)
        resource.set_availability(office_hours() if availability == "office" else availability)
        session.add(resource)
        await session.commit()
        await session.refresh(resource)
        return resource

    return _make


@pytest.fixture
async def client(session_factory):
    async def override_session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = override_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
