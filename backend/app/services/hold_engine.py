"""
Slot holds: short-lived exclusivity claims on a [start, end) interval.

A hold is created while the caller is still deciding, then either converted
into a booking, released, or left to expire. Expiry is lazy: every read
path compares ``expires_at`` with the tenant clock instead of trusting the
stored status, so nothing has to sweep stale holds for correctness.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.clock import Clock
from app.models import Booking, BookingHold
from app.models.hold import HOLD_ACTIVE, HOLD_EXPIRED, HOLD_RELEASED
from app.services.db_service import (
    DBService,
    DataServiceError,
    DuplicateConfirmationCodeError,
    IdLike,
    ProcedureUnavailableError,
    as_uuid,
    intervals_overlap,
)
from app.services.trust_evaluator import (
    ACTION_BLOCKED,
    ACTION_REQUIRE_DEPOSIT,
    BOOKING_COMPLETED_DELTA,
    TrustDecision,
    TrustEvaluator,
)
from app.services.utils import generate_confirmation_code, normalize_phone

logger = logging.getLogger(__name__)

SLOT_INTERVAL_MINUTES = 30
DEFAULT_OPEN = time(9, 0)
DEFAULT_CLOSE = time(18, 0)
CODE_ATTEMPTS = 5
WEEKDAY_KEYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class HoldError(str, Enum):
    SLOT_IN_PAST = "SlotInPast"
    SLOT_HELD = "SlotHeld"
    SLOT_BOOKED = "SlotBooked"
    CUSTOMER_BLOCKED = "CustomerBlocked"
    HOLD_NOT_FOUND = "HoldNotFound"
    HOLD_NOT_ACTIVE = "HoldNotActive"
    HOLD_EXPIRED = "HoldExpired"
    DEPOSIT_REQUIRED = "DepositRequired"
    BOOKING_NOT_FOUND = "BookingNotFound"
    BOOKING_NOT_ACTIVE = "BookingNotActive"
    DUPLICATE_BOOKING = "DuplicateBooking"
    INVALID_REQUEST = "InvalidRequest"


@dataclass
class HoldResult:
    success: bool
    hold: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[HoldError] = None
    expires_in_minutes: Optional[int] = None
    trust: Optional[TrustDecision] = None


@dataclass
class ReleaseResult:
    success: bool
    released: bool = False
    previous_status: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[HoldError] = None


@dataclass
class ConversionResult:
    success: bool
    booking: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[HoldError] = None
    previous_status: Optional[str] = None
    deposit_amount_cents: Optional[int] = None


@dataclass
class BookingResult:
    success: bool
    booking: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[HoldError] = None
    trust: Optional[TrustDecision] = None
    deposit_amount_cents: Optional[int] = None


@dataclass
class CancellationResult:
    success: bool
    booking: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[HoldError] = None


@dataclass
class AvailabilityResult:
    available: bool
    reason: Optional[str] = None  # held, booked, past, closed
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    slots: List[datetime] = field(default_factory=list)


def _dt_to_iso(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    return value.isoformat()


def hold_to_dict(hold: BookingHold) -> Dict[str, Any]:
    return {
        "hold_id": str(hold.id),
        "status": hold.status,
        "hold_type": hold.hold_type,
        "branch_id": str(hold.branch_id) if hold.branch_id else None,
        "staff_id": str(hold.staff_id) if hold.staff_id else None,
        "customer_phone": hold.customer_phone,
        "customer_name": hold.customer_name,
        "slot_datetime": _dt_to_iso(hold.slot_datetime),
        "end_datetime": _dt_to_iso(hold.end_datetime),
        "duration_minutes": hold.duration_minutes,
        "expires_at": _dt_to_iso(hold.expires_at),
        "trust_score_at_hold": hold.trust_score_at_hold,
        "requires_confirmation": bool(hold.requires_confirmation),
        "requires_deposit": bool(hold.requires_deposit),
        "deposit_amount_cents": hold.deposit_amount_cents,
        "deposit_paid": bool(hold.deposit_paid),
        "released_at": _dt_to_iso(hold.released_at),
        "release_reason": hold.release_reason,
        "converted_to_id": str(hold.converted_to_id) if hold.converted_to_id else None,
    }


def booking_to_dict(booking: Booking) -> Dict[str, Any]:
    return {
        "booking_id": str(booking.id),
        "booking_type": booking.booking_type,
        "confirmation_code": booking.confirmation_code,
        "status": booking.status,
        "customer_name": booking.customer_name,
        "customer_phone": booking.customer_phone,
        "booking_datetime": _dt_to_iso(booking.booking_datetime),
        "end_datetime": _dt_to_iso(booking.end_datetime),
        "duration_minutes": booking.duration_minutes,
        "party_size": booking.party_size,
        "staff_id": str(booking.staff_id) if booking.staff_id else None,
        "hold_id": str(booking.hold_id) if booking.hold_id else None,
        "trust_score_at_booking": booking.trust_score_at_booking,
    }


def booking_type_for(hold_type: Optional[str], vertical: Optional[str]) -> str:
    if vertical == "restaurant" or hold_type == "reservation":
        return "reservation"
    if hold_type == "order":
        return "order"
    return "appointment"


def _parse_clock(value: Any, default: time) -> time:
    if isinstance(value, time):
        return value
    try:
        return datetime.strptime(str(value), "%H:%M").time()
    except (TypeError, ValueError):
        return default


def opening_window(hours: Optional[Dict[str, Any]], day: date) -> Optional[Tuple[time, time]]:
    """Opening and closing time for ``day``; None when closed.

    Days missing from the configuration use the 09:00-18:00 default.
    """
    entry = (hours or {}).get(WEEKDAY_KEYS[day.weekday()])
    if entry is None:
        return DEFAULT_OPEN, DEFAULT_CLOSE
    if entry.get("closed") or entry.get("is_closed"):
        return None
    return _parse_clock(entry.get("open"), DEFAULT_OPEN), _parse_clock(entry.get("close"), DEFAULT_CLOSE)


class HoldEngine:
    """Tenant-scoped hold lifecycle: create, release, expire, convert."""

    def __init__(
        self,
        db: DBService,
        tenant_id: IdLike,
        clock: Clock,
        trust: Optional[TrustEvaluator] = None,
    ):
        self.db = db
        self.tenant_id = as_uuid(tenant_id)
        self.clock = clock
        self.trust = trust or TrustEvaluator(db, self.tenant_id, clock)

    # ==================== CREATE ====================

    async def create_hold(
        self,
        *,
        slot_start: datetime,
        duration_minutes: int,
        customer_phone: str,
        vertical: Optional[str],
        hold_type: str = "appointment",
        branch_id: Optional[IdLike] = None,
        lead_id: Optional[IdLike] = None,
        service_id: Optional[str] = None,
        staff_id: Optional[IdLike] = None,
        customer_name: Optional[str] = None,
        session_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> HoldResult:
        now = self.clock()
        phone = normalize_phone(customer_phone)
        if not phone or duration_minutes <= 0:
            return HoldResult(False, error="Invalid hold request", error_code=HoldError.INVALID_REQUEST)
        if staff_id and as_uuid(staff_id) is None:
            return HoldResult(False, error=f"Invalid staff id: {staff_id}", error_code=HoldError.INVALID_REQUEST)

        if idempotency_key:
            replay = await self._replay(idempotency_key, now)
            if replay is not None:
                return replay

        if slot_start <= now:
            return HoldResult(False, error="Slot in past", error_code=HoldError.SLOT_IN_PAST)

        policy = await self.trust.resolve_policy(vertical, branch_id)
        decision = await self.trust.evaluate(vertical, phone, lead_id, branch_id=branch_id, policy=policy)
        if decision.action == ACTION_BLOCKED:
            logger.info("Hold refused for blocked customer %s", phone)
            return HoldResult(False, error="Customer blocked", error_code=HoldError.CUSTOMER_BLOCKED, trust=decision)

        end = slot_start + timedelta(minutes=duration_minutes)
        meta = dict(metadata or {})
        meta.setdefault("vertical", vertical)
        meta["trust_score_at_hold"] = decision.score

        values = {
            "id": uuid.uuid4(),
            "tenant_id": self.tenant_id,
            "branch_id": as_uuid(branch_id),
            "customer_phone": phone,
            "customer_name": customer_name,
            "lead_id": as_uuid(lead_id or decision.lead_id),
            "hold_type": hold_type,
            "slot_datetime": slot_start,
            "end_datetime": end,
            "duration_minutes": duration_minutes,
            "service_id": service_id,
            "staff_id": as_uuid(staff_id),
            "session_id": session_id,
            "idempotency_key": idempotency_key,
            "status": HOLD_ACTIVE,
            "expires_at": now + timedelta(minutes=policy.hold_duration_minutes),
            "trust_score_at_hold": decision.score,
            "requires_confirmation": decision.requires_confirmation,
            "requires_deposit": decision.requires_deposit,
            "deposit_amount_cents": decision.deposit_amount_cents,
            "deposit_paid": False,
            "metadata": meta,
            "created_at": now,
        }

        try:
            outcome = await self._insert_hold(values, now)
        except IntegrityError:
            await self.db.session.rollback()
            if idempotency_key:
                replay = await self._replay(idempotency_key, now)
                if replay is not None:
                    return replay
            raise

        hold = outcome["hold"]
        if hold is None:
            if outcome["conflict"] == "booked":
                return HoldResult(False, error="Slot already booked", error_code=HoldError.SLOT_BOOKED, trust=decision)
            return HoldResult(False, error="Slot already held", error_code=HoldError.SLOT_HELD, trust=decision)

        logger.info(
            "Hold %s created %s-%s (trust=%s, action=%s)",
            hold.id, slot_start, end, decision.score, decision.action,
        )
        return HoldResult(
            True,
            hold=hold_to_dict(hold),
            expires_in_minutes=policy.hold_duration_minutes,
            trust=decision,
        )

    async def _insert_hold(self, values: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        try:
            return await self.db.call_procedure("create_booking_hold", values=values, now=now)
        except ProcedureUnavailableError as e:
            logger.warning("%s, using check-then-insert", e)
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            logger.warning("create_booking_hold failed, using check-then-insert: %s", e)
            await self.db.session.rollback()

        # Not atomic: two callers can both pass the checks before either inserts.
        tenant_id, branch_id = values["tenant_id"], values["branch_id"]
        start, end, staff_id = values["slot_datetime"], values["end_datetime"], values["staff_id"]
        if await self.db.find_overlapping_hold(tenant_id, branch_id, start, end, now, staff_id):
            return {"hold": None, "conflict": "held"}
        if await self.db.find_overlapping_booking(tenant_id, branch_id, start, end, staff_id):
            return {"hold": None, "conflict": "booked"}

        data = dict(values)
        data["hold_metadata"] = data.pop("metadata")
        return {"hold": await self.db.create_hold(data), "conflict": None}

    async def _replay(self, idempotency_key: str, now: datetime) -> Optional[HoldResult]:
        existing = await self.db.get_hold_by_idempotency_key(self.tenant_id, idempotency_key)
        if existing is None:
            return None
        if existing.status != HOLD_ACTIVE or existing.expires_at <= now:
            return HoldResult(
                False,
                hold=hold_to_dict(existing),
                error=f"Hold already {self._effective_status(existing, now)}",
                error_code=HoldError.HOLD_NOT_ACTIVE,
            )
        remaining = max(0, int((existing.expires_at - now).total_seconds() // 60))
        return HoldResult(True, hold=hold_to_dict(existing), expires_in_minutes=remaining)

    # ==================== RELEASE / EXPIRE ====================

    async def release(self, hold_id: IdLike, reason: str = "customer_cancelled") -> ReleaseResult:
        """Idempotent: a non-active hold reports its status and is left alone."""
        hold = await self.db.get_hold(self.tenant_id, hold_id)
        if hold is None:
            return ReleaseResult(False, error="Hold not found", error_code=HoldError.HOLD_NOT_FOUND)

        now = self.clock()
        if hold.status != HOLD_ACTIVE:
            return ReleaseResult(True, released=False, previous_status=hold.status)
        if hold.expires_at <= now:
            await self.db.transition_hold(hold.id, HOLD_EXPIRED)
            return ReleaseResult(True, released=False, previous_status=HOLD_EXPIRED)

        if await self.db.transition_hold(hold.id, HOLD_RELEASED, released_at=now, release_reason=reason):
            logger.info("Hold %s released (%s)", hold.id, reason)
            return ReleaseResult(True, released=True, previous_status=HOLD_ACTIVE)

        current = await self.db.get_hold(self.tenant_id, hold_id)
        return ReleaseResult(True, released=False, previous_status=current.status if current else None)

    async def release_session_holds(self, session_id: str, reason: str = "call_ended") -> int:
        """Release every active hold created during one call."""
        released = 0
        for hold in await self.db.list_session_holds(self.tenant_id, session_id):
            result = await self.release(hold.id, reason)
            if result.released:
                released += 1
        if released:
            logger.info("Released %d hold(s) for session %s", released, session_id)
        return released

    async def expire_overdue(self) -> int:
        count = await self.db.expire_overdue_holds(self.tenant_id, self.clock())
        if count:
            logger.info("Expired %d overdue hold(s)", count)
        return count

    @staticmethod
    def _effective_status(hold: BookingHold, now: datetime) -> str:
        if hold.status == HOLD_ACTIVE and hold.expires_at <= now:
            return HOLD_EXPIRED
        return hold.status

    # ==================== AVAILABILITY ====================

    async def opening_hours(self, day: date, branch_id: Optional[IdLike] = None) -> Optional[Tuple[time, time]]:
        branch = (
            await self.db.get_branch(self.tenant_id, branch_id)
            if branch_id
            else await self.db.get_default_branch(self.tenant_id)
        )
        hours = branch.business_hours if branch is not None and branch.business_hours else None
        if hours is None:
            tenant = await self.db.get_tenant(self.tenant_id)
            hours = tenant.business_hours if tenant is not None else None
        return opening_window(hours, day)

    async def check_availability(
        self,
        day: date,
        at: Optional[time] = None,
        duration_minutes: int = 30,
        *,
        staff_id: Optional[IdLike] = None,
        branch_id: Optional[IdLike] = None,
        limit: int = 8,
    ) -> AvailabilityResult:
        now = self.clock()
        b_uuid, s_uuid = as_uuid(branch_id), as_uuid(staff_id)
        span = timedelta(minutes=duration_minutes)

        if at is not None:
            start = datetime.combine(day, at)
            end = start + span
            if start <= now:
                return AvailabilityResult(False, "past", start, end)
            try:
                outcome = await self.db.call_procedure(
                    "check_slot_availability",
                    tenant_id=self.tenant_id,
                    branch_id=b_uuid,
                    start=start,
                    end=end,
                    now=now,
                    staff_id=s_uuid,
                )
                return AvailabilityResult(outcome["available"], outcome["reason"], start, end)
            except ProcedureUnavailableError as e:
                logger.warning("%s, checking holds and bookings separately", e)
            except SQLAlchemyError as e:
                logger.warning("check_slot_availability failed, checking separately: %s", e)
                await self.db.session.rollback()

            if await self.db.find_overlapping_hold(self.tenant_id, b_uuid, start, end, now, s_uuid):
                return AvailabilityResult(False, "held", start, end)
            if await self.db.find_overlapping_booking(self.tenant_id, b_uuid, start, end, s_uuid):
                return AvailabilityResult(False, "booked", start, end)
            return AvailabilityResult(True, None, start, end)

        window = await self.opening_hours(day, branch_id)
        if window is None:
            return AvailabilityResult(False, "closed")
        opens, closes = datetime.combine(day, window[0]), datetime.combine(day, window[1])

        # One query per kind for the whole day, then filter in memory.
        holds = await self.db.list_active_holds_between(self.tenant_id, b_uuid, opens, closes, now, s_uuid)
        bookings = await self.db.list_bookings_between(self.tenant_id, b_uuid, opens, closes, s_uuid)
        taken = [(h.slot_datetime, h.end_datetime) for h in holds]
        taken += [(b.booking_datetime, b.end_datetime) for b in bookings]

        slots: List[datetime] = []
        candidate = opens
        step = timedelta(minutes=SLOT_INTERVAL_MINUTES)
        while candidate + span <= closes and len(slots) < limit:
            if candidate > now and not any(
                intervals_overlap(candidate, candidate + span, s, e) for s, e in taken
            ):
                slots.append(candidate)
            candidate += step

        return AvailabilityResult(bool(slots), None if slots else "full", opens, closes, slots)

    # ==================== CONVERT ====================

    async def convert(
        self,
        hold_id: IdLike,
        *,
        customer_name: Optional[str] = None,
        customer_email: Optional[str] = None,
        notes: Optional[str] = None,
        party_size: Optional[int] = None,
        deposit_payment_id: Optional[str] = None,
        deposit_confirmed: bool = False,
        source_call_id: Optional[str] = None,
    ) -> ConversionResult:
        hold = await self.db.get_hold(self.tenant_id, hold_id)
        if hold is None:
            return ConversionResult(False, error="Hold not found", error_code=HoldError.HOLD_NOT_FOUND)

        now = self.clock()
        if hold.status != HOLD_ACTIVE:
            code = HoldError.HOLD_EXPIRED if hold.status == HOLD_EXPIRED else HoldError.HOLD_NOT_ACTIVE
            return ConversionResult(
                False, error=f"Hold already {hold.status}", error_code=code, previous_status=hold.status
            )
        if hold.expires_at <= now:
            await self.db.transition_hold(hold.id, HOLD_EXPIRED)
            logger.info("Hold %s expired before conversion", hold.id)
            return ConversionResult(
                False, error="Hold expired", error_code=HoldError.HOLD_EXPIRED, previous_status=HOLD_EXPIRED
            )

        deposit_ok = deposit_confirmed or bool(deposit_payment_id) or bool(hold.deposit_paid)
        if hold.requires_deposit and not deposit_ok:
            return ConversionResult(
                False,
                error="Deposit required",
                error_code=HoldError.DEPOSIT_REQUIRED,
                previous_status=HOLD_ACTIVE,
                deposit_amount_cents=hold.deposit_amount_cents,
            )

        meta = dict(hold.hold_metadata or {})
        booking_type = booking_type_for(hold.hold_type, meta.get("vertical"))
        if party_size is None:
            party_size = meta.get("party_size") or (2 if booking_type == "reservation" else None)

        booking_data = {
            "tenant_id": self.tenant_id,
            "branch_id": hold.branch_id,
            "booking_type": booking_type,
            "customer_name": customer_name or hold.customer_name or meta.get("customer_name") or "Cliente",
            "customer_phone": hold.customer_phone,
            "customer_email": customer_email,
            "lead_id": hold.lead_id,
            "booking_datetime": hold.slot_datetime,
            "end_datetime": hold.end_datetime,
            "duration_minutes": hold.duration_minutes,
            "party_size": party_size,
            "service_id": hold.service_id,
            "staff_id": hold.staff_id,
            "status": "confirmed",
            "hold_id": hold.id,
            "trust_score_at_booking": hold.trust_score_at_hold,
            "deposit_payment_id": deposit_payment_id,
            "source_call_id": source_call_id or hold.session_id,
            "notes": notes,
            "created_at": now,
            "updated_at": now,
        }
        h_id, phone, lead_id = hold.id, hold.customer_phone, hold.lead_id
        mark_deposit_paid = deposit_ok and bool(hold.requires_deposit)
        if booking_data["staff_id"] is None and booking_type == "appointment":
            booking_data["staff_id"] = await self._assign_staff(
                hold.branch_id, booking_data["booking_datetime"], booking_data["end_datetime"], now
            )

        booking = None
        for attempt in range(CODE_ATTEMPTS):
            booking_data["confirmation_code"] = generate_confirmation_code(booking_type)
            try:
                booking = await self.db.convert_hold_to_booking(
                    h_id, booking_data, now, deposit_paid=mark_deposit_paid
                )
            except DuplicateConfirmationCodeError:
                logger.warning("Confirmation code collision (attempt %d), retrying", attempt + 1)
                continue
            break
        else:
            raise DataServiceError("Could not allocate a unique confirmation code")

        if booking is None:
            current = await self.db.get_hold(self.tenant_id, h_id)
            status = current.status if current is not None else None
            code = HoldError.HOLD_EXPIRED if status == HOLD_EXPIRED else HoldError.HOLD_NOT_ACTIVE
            return ConversionResult(False, error=f"Hold already {status}", error_code=code, previous_status=status)

        summary = booking_to_dict(booking)
        logger.info("Hold %s converted to %s %s", h_id, booking_type, summary["confirmation_code"])

        await self.trust.adjust_score(
            summary["booking_id"],
            BOOKING_COMPLETED_DELTA,
            "booking_completed",
            phone=phone,
            lead_id=lead_id,
        )
        return ConversionResult(True, booking=summary, previous_status=HOLD_ACTIVE)

    async def _assign_staff(
        self,
        branch_id: Optional[uuid.UUID],
        start: datetime,
        end: datetime,
        now: datetime,
    ) -> Optional[uuid.UUID]:
        try:
            staff = await self.db.call_procedure(
                "find_available_doctor",
                tenant_id=self.tenant_id,
                branch_id=branch_id,
                start=start,
                end=end,
                now=now,
            )
        except ProcedureUnavailableError as e:
            logger.warning("%s, booking without staff assignment", e)
            return None
        except SQLAlchemyError as e:
            logger.warning("find_available_doctor failed, booking without staff assignment: %s", e)
            await self.db.session.rollback()
            return None
        return staff.id if staff is not None else None

    # ==================== BOOKINGS ====================

    async def create_booking(
        self,
        *,
        slot_start: datetime,
        duration_minutes: int,
        customer_phone: str,
        customer_name: str,
        vertical: Optional[str],
        booking_type: str = "appointment",
        branch_id: Optional[IdLike] = None,
        staff_id: Optional[IdLike] = None,
        service_id: Optional[str] = None,
        party_size: Optional[int] = None,
        customer_email: Optional[str] = None,
        notes: Optional[str] = None,
        source_call_id: Optional[str] = None,
    ) -> BookingResult:
        """Book a slot in one step, without holding it first.

        Live holds and bookings are honoured the same way hold creation
        honours them. Callers whose trust decision asks for a deposit are
        sent back to the hold flow, which is where deposits are collected.
        """
        now = self.clock()
        phone = normalize_phone(customer_phone)
        if not phone or duration_minutes <= 0:
            return BookingResult(False, error="Invalid booking request", error_code=HoldError.INVALID_REQUEST)
        if staff_id and as_uuid(staff_id) is None:
            return BookingResult(False, error=f"Invalid staff id: {staff_id}", error_code=HoldError.INVALID_REQUEST)
        if slot_start <= now:
            return BookingResult(False, error="Slot in past", error_code=HoldError.SLOT_IN_PAST)

        decision = await self.trust.evaluate(vertical, phone, branch_id=branch_id)
        if decision.action == ACTION_BLOCKED:
            logger.info("Booking refused for blocked customer %s", phone)
            return BookingResult(False, error="Customer blocked", error_code=HoldError.CUSTOMER_BLOCKED, trust=decision)
        if decision.action == ACTION_REQUIRE_DEPOSIT:
            return BookingResult(
                False,
                error="Deposit required",
                error_code=HoldError.DEPOSIT_REQUIRED,
                trust=decision,
                deposit_amount_cents=decision.deposit_amount_cents,
            )

        end = slot_start + timedelta(minutes=duration_minutes)
        b_uuid, s_uuid = as_uuid(branch_id), as_uuid(staff_id)

        existing = await self.db.find_customer_booking(self.tenant_id, phone, slot_start, end)
        if existing is not None:
            return BookingResult(
                False,
                booking=booking_to_dict(existing),
                error="Customer already booked at this time",
                error_code=HoldError.DUPLICATE_BOOKING,
                trust=decision,
            )

        if s_uuid is None and booking_type == "appointment":
            s_uuid = await self._assign_staff(b_uuid, slot_start, end, now)

        # Not atomic: a hold created between these checks and the insert is not seen.
        if await self.db.find_overlapping_hold(self.tenant_id, b_uuid, slot_start, end, now, s_uuid):
            return BookingResult(False, error="Slot already held", error_code=HoldError.SLOT_HELD, trust=decision)
        if await self.db.find_overlapping_booking(self.tenant_id, b_uuid, slot_start, end, s_uuid):
            return BookingResult(False, error="Slot already booked", error_code=HoldError.SLOT_BOOKED, trust=decision)

        data = {
            "tenant_id": self.tenant_id,
            "branch_id": b_uuid,
            "booking_type": booking_type,
            "customer_name": customer_name,
            "customer_phone": phone,
            "customer_email": customer_email,
            "lead_id": as_uuid(decision.lead_id),
            "booking_datetime": slot_start,
            "end_datetime": end,
            "duration_minutes": duration_minutes,
            "party_size": party_size,
            "service_id": service_id,
            "staff_id": s_uuid,
            "status": "confirmed",
            "trust_score_at_booking": decision.score,
            "source_call_id": source_call_id,
            "notes": notes,
            "created_at": now,
            "updated_at": now,
        }
        for attempt in range(CODE_ATTEMPTS):
            data["confirmation_code"] = generate_confirmation_code(booking_type)
            try:
                booking = await self.db.create_booking(dict(data))
            except DuplicateConfirmationCodeError:
                logger.warning("Confirmation code collision (attempt %d), retrying", attempt + 1)
                continue
            break
        else:
            raise DataServiceError("Could not allocate a unique confirmation code")

        summary = booking_to_dict(booking)
        logger.info("Direct %s %s created %s-%s", booking_type, summary["confirmation_code"], slot_start, end)
        await self.trust.adjust_score(
            summary["booking_id"],
            BOOKING_COMPLETED_DELTA,
            "booking_completed",
            phone=phone,
            lead_id=decision.lead_id,
        )
        return BookingResult(True, booking=summary, trust=decision)

    async def cancel_booking(
        self,
        confirmation_code: str,
        customer_phone: Optional[str],
        reason: Optional[str] = None,
    ) -> CancellationResult:
        booking = await self.db.get_booking_by_code(self.tenant_id, confirmation_code)
        phone = normalize_phone(customer_phone or "")
        # Match on the national number so a country prefix does not matter.
        if booking is None or (phone and booking.customer_phone[-10:] != phone[-10:]):
            return CancellationResult(False, error="Booking not found", error_code=HoldError.BOOKING_NOT_FOUND)
        if booking.status not in ("pending", "confirmed"):
            return CancellationResult(
                False,
                booking=booking_to_dict(booking),
                error=f"Booking already {booking.status}",
                error_code=HoldError.BOOKING_NOT_ACTIVE,
            )

        booking_id = booking.id
        if not await self.db.cancel_booking(booking_id, reason, self.clock()):
            current = await self.db.get_booking_by_code(self.tenant_id, confirmation_code)
            return CancellationResult(
                False,
                booking=booking_to_dict(current) if current else None,
                error="Booking no longer active",
                error_code=HoldError.BOOKING_NOT_ACTIVE,
            )
        refreshed = await self.db.get_booking_by_code(self.tenant_id, confirmation_code)
        logger.info("Booking %s cancelled (%s)", confirmation_code, reason)
        return CancellationResult(True, booking=booking_to_dict(refreshed))
