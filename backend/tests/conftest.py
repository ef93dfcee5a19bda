"""Shared test fixtures and helpers."""

from datetime import date, datetime, timedelta
from typing import Optional

import pytest
import pytest_asyncio

import app.models  # noqa: F401  registers every table on Base.metadata
from app.core.database import Base, build_engine, build_session_factory
from app.services.db_service import DBService
from app.services.hold_engine import HoldEngine
from app.tools.base import ExecutionContext

# Monday; slots are compared against this wall-clock time.
FIXED_NOW = datetime(2026, 3, 2, 10, 0)
TODAY = FIXED_NOW.date()
TOMORROW = TODAY + timedelta(days=1)

CALLER_PHONE = "+52 55 1234 5678"
CALLER_DIGITS = "525512345678"


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, datetime.min.time()).replace(hour=hour, minute=minute)


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield DBService(session)


@pytest_asyncio.fixture
async def tenant(db):
    return await db.create_tenant({
        "name": "Clínica Dental Sonrisa",
        "vertical": "dental",
        "assistant_type": "dental_standard",
        "timezone": "America/Mexico_City",
        "locale": "es",
        "business_hours": {"sunday": {"closed": True}},
    })


@pytest_asyncio.fixture
async def branch(db, tenant):
    return await db.create_branch({
        "tenant_id": tenant.id,
        "name": "Centro",
        "is_default": True,
    })


@pytest_asyncio.fixture
async def restaurant(db):
    return await db.create_tenant({
        "name": "La Terraza",
        "vertical": "restaurant",
        "assistant_type": "rest_standard",
        "timezone": "America/Mexico_City",
        "locale": "es",
        "business_hours": {},
    })


def make_engine(db: DBService, tenant, clock) -> HoldEngine:
    return HoldEngine(db, tenant.id, clock)


def make_context(
    db: Optional[DBService],
    tenant,
    clock,
    branch=None,
    **overrides,
) -> ExecutionContext:
    """ExecutionContext for a tenant with sensible defaults."""
    values = dict(
        tenant_id=str(tenant.id),
        call_id="call-test-001",
        assistant_type=tenant.assistant_type,
        db=db,
        locale="es",
        branch_id=str(branch.id) if branch is not None else None,
        vertical=tenant.vertical,
        timezone=tenant.timezone,
        caller_phone=CALLER_PHONE,
        clock=clock,
    )
    values.update(overrides)
    return ExecutionContext(**values)
