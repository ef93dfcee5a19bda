from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union

from sqlalchemy import func, insert, literal, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import (
    Booking,
    BookingHold,
    Branch,
    CustomerBlock,
    CustomerTrustScore,
    Staff,
    Tenant,
    ToolExecutionLog,
    TrustScoreEvent,
    VerticalBookingPolicy,
)
from app.models.booking import ACTIVE_BOOKING_STATUSES
from app.models.hold import HOLD_ACTIVE, HOLD_CONVERTED, HOLD_EXPIRED

logger = logging.getLogger(__name__)

IdLike = Union[str, uuid.UUID]

DEFAULT_TRUST_SCORE = 70

PROCEDURES: FrozenSet[str] = frozenset({
    "get_customer_trust_score",
    "create_booking_hold",
    "update_trust_score",
    "find_available_doctor",
    "check_slot_availability",
})


class DataServiceError(Exception):
    """Base error raised by the data service."""


class ProcedureUnavailableError(DataServiceError):
    def __init__(self, name: str):
        super().__init__(f"Procedure not available: {name}")
        self.name = name


class DuplicateConfirmationCodeError(DataServiceError):
    pass


def as_uuid(value: Any) -> Optional[uuid.UUID]:
    """Parse an id; anything that is not a UUID becomes None."""
    if value is None or value == "":
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open [start, end) overlap, same predicate the queries use."""
    return start_a < end_b and end_a > start_b


def _same_branch(column, branch_id: Optional[uuid.UUID]):
    if branch_id is None:
        return column.is_(None)
    return column == branch_id


def hold_overlap_filter(
    tenant_id: uuid.UUID,
    branch_id: Optional[uuid.UUID],
    start: datetime,
    end: datetime,
    now: datetime,
    staff_id: Optional[uuid.UUID] = None,
) -> List[Any]:
    """Conditions matching live holds that claim any part of [start, end).

    A staff-specific request conflicts with holds for the same staff member
    and with holds that claim the whole branch (no staff).
    """
    conditions = [
        BookingHold.tenant_id == tenant_id,
        _same_branch(BookingHold.branch_id, branch_id),
        BookingHold.status == HOLD_ACTIVE,
        BookingHold.expires_at > now,
        BookingHold.slot_datetime < end,
        BookingHold.end_datetime > start,
    ]
    if staff_id is not None:
        conditions.append(or_(BookingHold.staff_id == staff_id, BookingHold.staff_id.is_(None)))
    return conditions


def booking_overlap_filter(
    tenant_id: uuid.UUID,
    branch_id: Optional[uuid.UUID],
    start: datetime,
    end: datetime,
    staff_id: Optional[uuid.UUID] = None,
) -> List[Any]:
    conditions = [
        Booking.tenant_id == tenant_id,
        _same_branch(Booking.branch_id, branch_id),
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        Booking.booking_datetime < end,
        Booking.end_datetime > start,
    ]
    if staff_id is not None:
        conditions.append(or_(Booking.staff_id == staff_id, Booking.staff_id.is_(None)))
    return conditions


class DBService:
    """
    Service for database operations.

    Row CRUD plus the named atomic procedures. ``procedures`` limits which
    procedures this instance may run; callers fall back to the row-level
    methods when one is unavailable.
    """

    def __init__(self, session: AsyncSession, procedures: Optional[Iterable[str]] = None):
        self.session = session
        self.procedures = PROCEDURES if procedures is None else frozenset(procedures)

    def _dialect_name(self) -> str:
        return self.session.get_bind().dialect.name

    # ==================== TENANTS ====================

    async def get_tenant(self, tenant_id: IdLike) -> Optional[Tenant]:
        """Get tenant by ID"""
        t_uuid = as_uuid(tenant_id)
        if t_uuid is None:
            return None
        result = await self.session.execute(select(Tenant).where(Tenant.id == t_uuid))
        return result.scalar_one_or_none()

    async def create_tenant(self, data: dict) -> Tenant:
        tenant = Tenant(**data)
        self.session.add(tenant)
        await self.session.commit()
        await self.session.refresh(tenant)
        return tenant

    # ==================== BRANCHES & STAFF ====================

    async def get_branch(self, tenant_id: IdLike, branch_id: IdLike) -> Optional[Branch]:
        t_uuid, b_uuid = as_uuid(tenant_id), as_uuid(branch_id)
        if t_uuid is None or b_uuid is None:
            return None
        result = await self.session.execute(
            select(Branch).where(Branch.id == b_uuid, Branch.tenant_id == t_uuid)
        )
        return result.scalar_one_or_none()

    async def get_default_branch(self, tenant_id: IdLike) -> Optional[Branch]:
        """Default branch of a tenant, or its first active one"""
        t_uuid = as_uuid(tenant_id)
        if t_uuid is None:
            return None
        result = await self.session.execute(
            select(Branch)
            .where(Branch.tenant_id == t_uuid, Branch.is_active.is_(True))
            .order_by(Branch.is_default.desc(), Branch.created_at.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_branch(self, data: dict) -> Branch:
        branch = Branch(**data)
        self.session.add(branch)
        await self.session.commit()
        await self.session.refresh(branch)
        return branch

    async def create_staff(self, data: dict) -> Staff:
        staff = Staff(**data)
        self.session.add(staff)
        await self.session.commit()
        await self.session.refresh(staff)
        return staff

    # ==================== POLICIES ====================

    async def get_booking_policy(
        self,
        tenant_id: IdLike,
        vertical: str,
        branch_id: Optional[IdLike] = None,
    ) -> Optional[VerticalBookingPolicy]:
        """Active policy for (tenant, vertical); branch-specific and default rows win."""
        t_uuid = as_uuid(tenant_id)
        if t_uuid is None:
            return None
        b_uuid = as_uuid(branch_id)
        branch_filter = (
            or_(VerticalBookingPolicy.branch_id == b_uuid, VerticalBookingPolicy.branch_id.is_(None))
            if b_uuid is not None
            else VerticalBookingPolicy.branch_id.is_(None)
        )
        result = await self.session.execute(
            select(VerticalBookingPolicy)
            .where(
                VerticalBookingPolicy.tenant_id == t_uuid,
                VerticalBookingPolicy.vertical == vertical,
                VerticalBookingPolicy.is_active.is_(True),
                branch_filter,
            )
            .order_by(
                VerticalBookingPolicy.branch_id.is_(None),
                VerticalBookingPolicy.is_default.desc(),
                VerticalBookingPolicy.created_at.desc(),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_policy(self, data: dict) -> VerticalBookingPolicy:
        policy = VerticalBookingPolicy(**data)
        self.session.add(policy)
        await self.session.commit()
        await self.session.refresh(policy)
        return policy

    # ==================== TRUST ====================

    async def get_trust_profile(
        self,
        tenant_id: IdLike,
        *,
        phone: Optional[str] = None,
        lead_id: Optional[IdLike] = None,
    ) -> Optional[CustomerTrustScore]:
        """Profile by lead id when known, else by normalized phone"""
        t_uuid = as_uuid(tenant_id)
        if t_uuid is None:
            return None
        l_uuid = as_uuid(lead_id)
        if l_uuid is not None:
            criteria = CustomerTrustScore.lead_id == l_uuid
        elif phone:
            criteria = CustomerTrustScore.phone_number == phone
        else:
            return None
        result = await self.session.execute(
            select(CustomerTrustScore)
            .where(CustomerTrustScore.tenant_id == t_uuid, criteria)
            .order_by(CustomerTrustScore.created_at.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_trust_profile(self, data: dict) -> CustomerTrustScore:
        profile = CustomerTrustScore(**data)
        self.session.add(profile)
        await self.session.commit()
        await self.session.refresh(profile)
        return profile

    async def get_active_block(
        self,
        tenant_id: IdLike,
        now: datetime,
        *,
        phone: Optional[str] = None,
        lead_id: Optional[IdLike] = None,
    ) -> Optional[CustomerBlock]:
        t_uuid = as_uuid(tenant_id)
        l_uuid = as_uuid(lead_id)
        if t_uuid is None or (not phone and l_uuid is None):
            return None
        who = []
        if phone:
            who.append(CustomerBlock.phone_number == phone)
        if l_uuid is not None:
            who.append(CustomerBlock.lead_id == l_uuid)
        result = await self.session.execute(
            select(CustomerBlock)
            .where(
                CustomerBlock.tenant_id == t_uuid,
                CustomerBlock.is_active.is_(True),
                or_(CustomerBlock.unblock_at.is_(None), CustomerBlock.unblock_at > now),
                or_(*who),
            )
            .order_by(CustomerBlock.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_customer_block(self, data: dict) -> CustomerBlock:
        block = CustomerBlock(**data)
        self.session.add(block)
        await self.session.commit()
        await self.session.refresh(block)
        return block

    async def get_trust_event(
        self, tenant_id: IdLike, reference_id: str, reason: str
    ) -> Optional[TrustScoreEvent]:
        result = await self.session.execute(
            select(TrustScoreEvent).where(
                TrustScoreEvent.tenant_id == as_uuid(tenant_id),
                TrustScoreEvent.reference_id == reference_id,
                TrustScoreEvent.reason == reason,
            )
        )
        return result.scalar_one_or_none()

    async def apply_trust_delta(
        self,
        tenant_id: IdLike,
        *,
        reference_id: str,
        delta: int,
        reason: str,
        now: datetime,
        phone: Optional[str] = None,
        lead_id: Optional[IdLike] = None,
    ) -> Dict[str, Any]:
        """Stage a score change and its audit event, then commit.

        The (tenant, reference, reason) unique constraint turns a repeated
        delivery into an IntegrityError, reported as ``applied: False``.
        """
        t_uuid = as_uuid(tenant_id)
        profile = await self.get_trust_profile(t_uuid, phone=phone, lead_id=lead_id)
        if profile is None:
            profile = CustomerTrustScore(
                tenant_id=t_uuid,
                phone_number=phone,
                lead_id=as_uuid(lead_id),
                trust_score=DEFAULT_TRUST_SCORE,
                is_vip=False,
                is_blocked=False,
                total_bookings=0,
                completed_bookings=0,
                no_shows=0,
            )
            self.session.add(profile)
            await self.session.flush()

        before = profile.trust_score if profile.trust_score is not None else DEFAULT_TRUST_SCORE
        after = max(0, min(100, before + delta))
        profile.trust_score = after
        profile.last_score_change_at = now
        if reason == "booking_completed":
            profile.completed_bookings = (profile.completed_bookings or 0) + 1
            profile.total_bookings = (profile.total_bookings or 0) + 1
        elif reason == "no_show":
            profile.no_shows = (profile.no_shows or 0) + 1

        self.session.add(TrustScoreEvent(
            tenant_id=t_uuid,
            trust_score_id=profile.id,
            reference_id=reference_id,
            reason=reason,
            delta=delta,
            score_before=before,
            score_after=after,
            created_at=now,
        ))
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.info("Trust delta already applied (reference=%s, reason=%s)", reference_id, reason)
            return {"applied": False, "score": None}
        return {"applied": True, "score": after, "score_before": before}

    # ==================== HOLDS ====================

    async def create_hold(self, data: dict) -> BookingHold:
        """Plain insert; the caller is responsible for the overlap check"""
        hold = BookingHold(**data)
        self.session.add(hold)
        await self.session.commit()
        await self.session.refresh(hold)
        return hold

    async def get_hold(self, tenant_id: IdLike, hold_id: IdLike) -> Optional[BookingHold]:
        """Fresh read of a hold owned by the tenant"""
        t_uuid, h_uuid = as_uuid(tenant_id), as_uuid(hold_id)
        if t_uuid is None or h_uuid is None:
            return None
        result = await self.session.execute(
            select(BookingHold)
            .where(BookingHold.id == h_uuid, BookingHold.tenant_id == t_uuid)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_hold_by_idempotency_key(self, tenant_id: IdLike, key: str) -> Optional[BookingHold]:
        result = await self.session.execute(
            select(BookingHold)
            .where(BookingHold.tenant_id == as_uuid(tenant_id), BookingHold.idempotency_key == key)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_overlapping_hold(
        self,
        tenant_id: uuid.UUID,
        branch_id: Optional[uuid.UUID],
        start: datetime,
        end: datetime,
        now: datetime,
        staff_id: Optional[uuid.UUID] = None,
    ) -> Optional[BookingHold]:
        result = await self.session.execute(
            select(BookingHold)
            .where(*hold_overlap_filter(tenant_id, branch_id, start, end, now, staff_id))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_active_holds_between(
        self,
        tenant_id: uuid.UUID,
        branch_id: Optional[uuid.UUID],
        start: datetime,
        end: datetime,
        now: datetime,
        staff_id: Optional[uuid.UUID] = None,
    ) -> List[BookingHold]:
        result = await self.session.execute(
            select(BookingHold)
            .where(*hold_overlap_filter(tenant_id, branch_id, start, end, now, staff_id))
            .order_by(BookingHold.slot_datetime.asc())
        )
        return list(result.scalars().all())

    async def transition_hold(self, hold_id: uuid.UUID, status: str, **fields: Any) -> bool:
        """Move an ``active`` hold to ``status``; False if it was no longer active."""
        result = await self.session.execute(
            update(BookingHold)
            .where(BookingHold.id == hold_id, BookingHold.status == HOLD_ACTIVE)
            .values(status=status, **fields)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def list_session_holds(self, tenant_id: IdLike, session_id: str) -> List[BookingHold]:
        """Active holds created during one call"""
        result = await self.session.execute(
            select(BookingHold)
            .where(
                BookingHold.tenant_id == as_uuid(tenant_id),
                BookingHold.session_id == session_id,
                BookingHold.status == HOLD_ACTIVE,
            )
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def expire_overdue_holds(self, tenant_id: IdLike, now: datetime) -> int:
        result = await self.session.execute(
            update(BookingHold)
            .where(
                BookingHold.tenant_id == as_uuid(tenant_id),
                BookingHold.status == HOLD_ACTIVE,
                BookingHold.expires_at <= now,
            )
            .values(status=HOLD_EXPIRED)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount

    async def get_tenant_holds(self, tenant_id: IdLike, limit: int = 50) -> List[BookingHold]:
        """Get recent holds for tenant"""
        t_uuid = as_uuid(tenant_id)
        if t_uuid is None:
            return []
        result = await self.session.execute(
            select(BookingHold)
            .where(BookingHold.tenant_id == t_uuid)
            .order_by(BookingHold.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ==================== BOOKINGS ====================

    async def create_booking(self, data: dict) -> Booking:
        """Create a booking directly (no hold)"""
        booking = Booking(**data)
        self.session.add(booking)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            self._raise_if_code_collision(exc)
            raise
        await self.session.refresh(booking)
        return booking

    async def find_overlapping_booking(
        self,
        tenant_id: uuid.UUID,
        branch_id: Optional[uuid.UUID],
        start: datetime,
        end: datetime,
        staff_id: Optional[uuid.UUID] = None,
    ) -> Optional[Booking]:
        result = await self.session.execute(
            select(Booking)
            .where(*booking_overlap_filter(tenant_id, branch_id, start, end, staff_id))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_customer_booking(
        self,
        tenant_id: uuid.UUID,
        phone: str,
        start: datetime,
        end: datetime,
    ) -> Optional[Booking]:
        """An active booking of this caller overlapping [start, end), any branch or staff."""
        result = await self.session.execute(
            select(Booking)
            .where(
                Booking.tenant_id == tenant_id,
                Booking.customer_phone == phone,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
                Booking.booking_datetime < end,
                Booking.end_datetime > start,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_bookings_between(
        self,
        tenant_id: uuid.UUID,
        branch_id: Optional[uuid.UUID],
        start: datetime,
        end: datetime,
        staff_id: Optional[uuid.UUID] = None,
    ) -> List[Booking]:
        result = await self.session.execute(
            select(Booking)
            .where(*booking_overlap_filter(tenant_id, branch_id, start, end, staff_id))
            .order_by(Booking.booking_datetime.asc())
        )
        return list(result.scalars().all())

    async def get_booking_by_code(self, tenant_id: IdLike, code: str) -> Optional[Booking]:
        result = await self.session.execute(
            select(Booking)
            .where(
                Booking.tenant_id == as_uuid(tenant_id),
                Booking.confirmation_code == code.strip().upper(),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def cancel_booking(self, booking_id: uuid.UUID, reason: Optional[str], now: datetime) -> bool:
        """Pending/confirmed -> cancelled; False if it was already settled"""
        result = await self.session.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status.in_(ACTIVE_BOOKING_STATUSES))
            .values(status="cancelled", cancelled_at=now, cancellation_reason=reason, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def convert_hold_to_booking(
        self,
        hold_id: uuid.UUID,
        booking_data: dict,
        now: datetime,
        deposit_paid: bool = False,
    ) -> Optional[Booking]:
        """Insert the booking and mark the hold converted in one transaction.

        Returns None when the hold stopped being active before the update
        (a concurrent conversion, release or expiry won).
        """
        booking = Booking(id=uuid.uuid4(), **booking_data)
        hold_values = dict(
            status=HOLD_CONVERTED,
            converted_at=now,
            converted_to_id=booking.id,
            converted_to_type=booking.booking_type,
        )
        if deposit_paid:
            hold_values["deposit_paid"] = True

        result = await self.session.execute(
            update(BookingHold)
            .where(BookingHold.id == hold_id, BookingHold.status == HOLD_ACTIVE)
            .values(**hold_values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            return None

        self.session.add(booking)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            self._raise_if_code_collision(exc)
            raise
        await self.session.refresh(booking)
        return booking

    async def get_tenant_bookings(self, tenant_id: IdLike, limit: int = 50) -> List[Booking]:
        """Get recent bookings for tenant"""
        t_uuid = as_uuid(tenant_id)
        if t_uuid is None:
            return []
        result = await self.session.execute(
            select(Booking)
            .where(Booking.tenant_id == t_uuid)
            .order_by(Booking.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    def _raise_if_code_collision(exc: IntegrityError) -> None:
        if "confirmation_code" in str(exc.orig).lower():
            raise DuplicateConfirmationCodeError(str(exc.orig)) from exc

    # ==================== TOOL EXECUTIONS ====================

    async def log_tool_execution(self, data: dict) -> ToolExecutionLog:
        entry = ToolExecutionLog(**data)
        self.session.add(entry)
        await self.session.commit()
        return entry

    async def get_tool_executions(self, tenant_id: IdLike, limit: int = 50) -> List[ToolExecutionLog]:
        result = await self.session.execute(
            select(ToolExecutionLog)
            .where(ToolExecutionLog.tenant_id == as_uuid(tenant_id))
            .order_by(ToolExecutionLog.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ==================== PROCEDURES ====================

    async def call_procedure(self, name: str, **params: Any) -> Any:
        """Run a named atomic procedure.

        Raises ProcedureUnavailableError when the procedure is not enabled
        for this service instance.
        """
        if name not in self.procedures:
            raise ProcedureUnavailableError(name)
        handler = getattr(self, f"_proc_{name}", None)
        if handler is None:
            raise ProcedureUnavailableError(name)
        return await handler(**params)

    async def _proc_get_customer_trust_score(
        self,
        tenant_id: IdLike,
        now: datetime,
        phone: Optional[str] = None,
        lead_id: Optional[IdLike] = None,
    ) -> Dict[str, Any]:
        profile = await self.get_trust_profile(tenant_id, phone=phone, lead_id=lead_id)
        block = await self.get_active_block(tenant_id, now, phone=phone, lead_id=lead_id)

        is_blocked = False
        block_reason = None
        if block is not None:
            is_blocked, block_reason = True, block.block_reason
        elif profile is not None and profile.is_blocked:
            if profile.blocked_until is None or profile.blocked_until > now:
                is_blocked, block_reason = True, profile.block_reason

        score = DEFAULT_TRUST_SCORE
        if profile is not None and profile.trust_score is not None:
            score = profile.trust_score

        return {
            "found": profile is not None,
            "score": score,
            "is_vip": bool(profile.is_vip) if profile is not None else False,
            "is_blocked": is_blocked,
            "block_reason": block_reason,
            "lead_id": str(profile.lead_id) if profile is not None and profile.lead_id else None,
        }

    async def _proc_create_booking_hold(self, values: dict, now: datetime) -> Dict[str, Any]:
        """Conditional insert: the row is written only if nothing overlaps.

        On PostgreSQL a transaction-scoped advisory lock on (tenant, branch)
        serializes concurrent inserts; SQLite runs the statement under its
        database write lock.
        """
        values = dict(values)
        values.setdefault("id", uuid.uuid4())
        tenant_id = values["tenant_id"]
        branch_id = values.get("branch_id")
        start, end = values["slot_datetime"], values["end_datetime"]
        staff_id = values.get("staff_id")

        if self._dialect_name() == "postgresql":
            lock_key = f"booking_hold:{tenant_id}:{branch_id or '-'}"
            await self.session.execute(select(func.pg_advisory_xact_lock(func.hashtext(lock_key))))

        table = BookingHold.__table__
        columns = [table.c[name] for name in values]
        held = select(BookingHold.id).where(
            *hold_overlap_filter(tenant_id, branch_id, start, end, now, staff_id)
        ).correlate(None).exists()
        booked = select(Booking.id).where(
            *booking_overlap_filter(tenant_id, branch_id, start, end, staff_id)
        ).correlate(None).exists()
        source = select(
            *[literal(values[col.name], type_=col.type) for col in columns]
        ).where(~held, ~booked)

        result = await self.session.execute(insert(table).from_select(columns, source))
        await self.session.commit()

        if result.rowcount == 1:
            return {"hold": await self.get_hold(tenant_id, values["id"]), "conflict": None}

        conflict = "held"
        if await self.find_overlapping_hold(tenant_id, branch_id, start, end, now, staff_id) is None:
            if await self.find_overlapping_booking(tenant_id, branch_id, start, end, staff_id) is not None:
                conflict = "booked"
        return {"hold": None, "conflict": conflict}

    async def _proc_update_trust_score(
        self,
        tenant_id: IdLike,
        reference_id: str,
        delta: int,
        reason: str,
        now: datetime,
        phone: Optional[str] = None,
        lead_id: Optional[IdLike] = None,
    ) -> Dict[str, Any]:
        return await self.apply_trust_delta(
            tenant_id,
            reference_id=reference_id,
            delta=delta,
            reason=reason,
            now=now,
            phone=phone,
            lead_id=lead_id,
        )

    async def _proc_find_available_doctor(
        self,
        tenant_id: IdLike,
        branch_id: Optional[IdLike],
        start: datetime,
        end: datetime,
        now: datetime,
    ) -> Optional[Staff]:
        """First active staff member of the branch free for [start, end)."""
        t_uuid, b_uuid = as_uuid(tenant_id), as_uuid(branch_id)
        held = select(BookingHold.id).where(
            BookingHold.staff_id == Staff.id,
            BookingHold.status == HOLD_ACTIVE,
            BookingHold.expires_at > now,
            BookingHold.slot_datetime < end,
            BookingHold.end_datetime > start,
        ).exists()
        booked = select(Booking.id).where(
            Booking.staff_id == Staff.id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            Booking.booking_datetime < end,
            Booking.end_datetime > start,
        ).exists()
        query = select(Staff).where(
            Staff.tenant_id == t_uuid,
            Staff.is_active.is_(True),
            ~held,
            ~booked,
        )
        if b_uuid is not None:
            query = query.where(or_(Staff.branch_id == b_uuid, Staff.branch_id.is_(None)))
        result = await self.session.execute(query.order_by(Staff.name.asc()).limit(1))
        return result.scalar_one_or_none()

    async def _proc_check_slot_availability(
        self,
        tenant_id: uuid.UUID,
        branch_id: Optional[uuid.UUID],
        start: datetime,
        end: datetime,
        now: datetime,
        staff_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        held = select(BookingHold.id).where(
            *hold_overlap_filter(tenant_id, branch_id, start, end, now, staff_id)
        ).exists()
        booked = select(Booking.id).where(
            *booking_overlap_filter(tenant_id, branch_id, start, end, staff_id)
        ).exists()
        row = (await self.session.execute(select(held.label("held"), booked.label("booked")))).one()
        if row.held:
            return {"available": False, "reason": "held"}
        if row.booked:
            return {"available": False, "reason": "booked"}
        return {"available": True, "reason": None}
