"""Tests for the hold lifecycle, availability and booking cancellation."""

import asyncio
import re
from datetime import time, timedelta

import pytest

from app.models.hold import HOLD_ACTIVE, HOLD_CONVERTED, HOLD_EXPIRED, HOLD_RELEASED
from app.services.db_service import DBService
from app.services.hold_engine import HoldEngine, HoldError, opening_window
from conftest import CALLER_DIGITS, CALLER_PHONE, TODAY, TOMORROW, at, make_engine

OTHER_PHONE = "+52 55 8765 4321"
SUNDAY = TODAY + timedelta(days=6)
CODE_PATTERN = re.compile(r"^APT-[A-HJ-NP-Z2-9]{6}$")


async def hold_at(engine, hour, minute=0, *, phone=CALLER_PHONE, day=TOMORROW, duration=30, **kwargs):
    kwargs.setdefault("vertical", "dental")
    return await engine.create_hold(
        slot_start=at(day, hour, minute),
        duration_minutes=duration,
        customer_phone=phone,
        **kwargs,
    )


class TestOpeningWindow:
    def test_configured_day(self):
        hours = {"tuesday": {"open": "10:00", "close": "14:00"}}
        assert opening_window(hours, TOMORROW) == (time(10), time(14))

    def test_missing_day_uses_default(self):
        assert opening_window({}, TOMORROW) == (time(9), time(18))

    def test_closed_day(self):
        assert opening_window({"sunday": {"closed": True}}, SUNDAY) is None


class TestCreateHold:
    @pytest.mark.asyncio
    async def test_creates_active_hold_with_trust_snapshot(self, db, tenant, clock):
        result = await hold_at(make_engine(db, tenant, clock), 10, session_id="call-1")
        assert result.success is True
        assert result.expires_in_minutes == 15
        hold = result.hold
        assert hold["status"] == HOLD_ACTIVE
        assert hold["customer_phone"] == CALLER_DIGITS
        assert hold["slot_datetime"] == "2026-03-03T10:00:00"
        assert hold["end_datetime"] == "2026-03-03T10:30:00"
        assert hold["expires_at"] == "2026-03-02T10:15:00"
        assert hold["trust_score_at_hold"] == 70
        assert hold["requires_confirmation"] is True
        assert hold["requires_deposit"] is False

    @pytest.mark.asyncio
    async def test_overlapping_request_is_refused(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        assert (await hold_at(engine, 10)).success is True

        same = await hold_at(engine, 10, phone=OTHER_PHONE)
        partial = await hold_at(engine, 10, 15, phone=OTHER_PHONE)
        assert same.error_code == HoldError.SLOT_HELD
        assert partial.error_code == HoldError.SLOT_HELD

    @pytest.mark.asyncio
    async def test_adjacent_slot_is_free(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        await hold_at(engine, 10)
        assert (await hold_at(engine, 10, 30, phone=OTHER_PHONE)).success is True
        assert (await hold_at(engine, 9, 30, phone=OTHER_PHONE)).success is True

    @pytest.mark.asyncio
    async def test_past_slot(self, db, tenant, clock):
        result = await hold_at(make_engine(db, tenant, clock), 9, day=TODAY)
        assert result.error_code == HoldError.SLOT_IN_PAST

    @pytest.mark.asyncio
    async def test_invalid_request(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        assert (await hold_at(engine, 10, phone="")).error_code == HoldError.INVALID_REQUEST
        assert (await hold_at(engine, 10, duration=0)).error_code == HoldError.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_blocked_customer(self, db, tenant, clock):
        await db.create_customer_block({
            "tenant_id": tenant.id,
            "phone_number": CALLER_DIGITS,
            "block_reason": "Fraud",
        })
        result = await hold_at(make_engine(db, tenant, clock), 10)
        assert result.error_code == HoldError.CUSTOMER_BLOCKED
        assert result.trust.block_reason == "Fraud"

    @pytest.mark.asyncio
    async def test_low_trust_requires_deposit(self, db, tenant, clock):
        await db.create_trust_profile({"tenant_id": tenant.id, "phone_number": CALLER_DIGITS, "trust_score": 20})
        result = await hold_at(make_engine(db, tenant, clock), 10)
        assert result.hold["requires_deposit"] is True
        assert result.hold["deposit_amount_cents"] == 10000

    @pytest.mark.asyncio
    async def test_branches_are_independent(self, db, tenant, branch, clock):
        other = await db.create_branch({"tenant_id": tenant.id, "name": "Norte"})
        engine = make_engine(db, tenant, clock)
        assert (await hold_at(engine, 10, branch_id=branch.id)).success is True
        assert (await hold_at(engine, 10, phone=OTHER_PHONE, branch_id=other.id)).success is True

    @pytest.mark.asyncio
    async def test_staff_overlap(self, db, tenant, clock):
        ana = await db.create_staff({"tenant_id": tenant.id, "name": "Ana"})
        luis = await db.create_staff({"tenant_id": tenant.id, "name": "Luis"})
        engine = make_engine(db, tenant, clock)

        assert (await hold_at(engine, 10, staff_id=ana.id)).success is True
        assert (await hold_at(engine, 10, phone=OTHER_PHONE, staff_id=luis.id)).success is True
        clash = await hold_at(engine, 10, phone=OTHER_PHONE, staff_id=ana.id)
        assert clash.error_code == HoldError.SLOT_HELD

    @pytest.mark.asyncio
    async def test_malformed_staff_id_is_refused(self, db, tenant, clock):
        result = await hold_at(make_engine(db, tenant, clock), 10, staff_id="dr-ana")
        assert result.success is False
        assert result.error_code == HoldError.INVALID_REQUEST
        assert await db.get_tenant_holds(tenant.id) == []

    @pytest.mark.asyncio
    async def test_concurrent_requests_yield_one_hold(self, session_factory, tenant, clock):
        async def attempt(phone):
            async with session_factory() as session:
                engine = HoldEngine(DBService(session), tenant.id, clock)
                return await hold_at(engine, 11, phone=phone)

        results = await asyncio.gather(*(attempt(f"55000000{i:02d}") for i in range(4)))
        assert sum(r.success for r in results) == 1
        assert {r.error_code for r in results if not r.success} == {HoldError.SLOT_HELD}

    @pytest.mark.asyncio
    async def test_row_fallback_still_detects_overlap(self, db, tenant, clock):
        engine = HoldEngine(DBService(db.session, procedures=set()), tenant.id, clock)
        assert (await hold_at(engine, 10)).success is True
        assert (await hold_at(engine, 10, phone=OTHER_PHONE)).error_code == HoldError.SLOT_HELD

    @pytest.mark.asyncio
    async def test_idempotency_key_replays_the_same_hold(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        first = await hold_at(engine, 10, idempotency_key="req-1")
        again = await hold_at(engine, 10, idempotency_key="req-1")
        assert again.success is True
        assert again.hold["hold_id"] == first.hold["hold_id"]

        await engine.release(first.hold["hold_id"])
        after_release = await hold_at(engine, 10, idempotency_key="req-1")
        assert after_release.error_code == HoldError.HOLD_NOT_ACTIVE


class TestExpiry:
    @pytest.mark.asyncio
    async def test_expired_hold_stops_blocking_without_a_sweep(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        first = await hold_at(engine, 10)
        clock.advance(minutes=16)

        second = await hold_at(engine, 10, phone=OTHER_PHONE)
        assert second.success is True
        stored = await db.get_hold(tenant.id, first.hold["hold_id"])
        assert stored.status == HOLD_ACTIVE

    @pytest.mark.asyncio
    async def test_expire_overdue_marks_stale_holds(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        first = await hold_at(engine, 10)
        await hold_at(engine, 11)
        clock.advance(minutes=16)

        assert await engine.expire_overdue() == 2
        assert await engine.expire_overdue() == 0
        stored = await db.get_hold(tenant.id, first.hold["hold_id"])
        assert stored.status == HOLD_EXPIRED


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        hold_id = (await hold_at(engine, 10)).hold["hold_id"]

        first = await engine.release(hold_id)
        assert (first.success, first.released, first.previous_status) == (True, True, HOLD_ACTIVE)
        second = await engine.release(hold_id)
        assert (second.success, second.released, second.previous_status) == (True, False, HOLD_RELEASED)

        stored = await db.get_hold(tenant.id, hold_id)
        assert stored.release_reason == "customer_cancelled"
        assert (await hold_at(engine, 10, phone=OTHER_PHONE)).success is True

    @pytest.mark.asyncio
    async def test_release_of_overdue_hold_reports_expired(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        hold_id = (await hold_at(engine, 10)).hold["hold_id"]
        clock.advance(minutes=20)

        result = await engine.release(hold_id)
        assert (result.released, result.previous_status) == (False, HOLD_EXPIRED)
        assert (await db.get_hold(tenant.id, hold_id)).status == HOLD_EXPIRED

    @pytest.mark.asyncio
    async def test_unknown_hold(self, db, tenant, clock):
        result = await make_engine(db, tenant, clock).release("not-a-uuid")
        assert result.error_code == HoldError.HOLD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_session_holds_are_released_together(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        await hold_at(engine, 10, session_id="call-1")
        await hold_at(engine, 11, session_id="call-1")
        other = await hold_at(engine, 12, session_id="call-2")

        assert await engine.release_session_holds("call-1") == 2
        assert await engine.release_session_holds("call-1") == 0
        assert (await db.get_hold(tenant.id, other.hold["hold_id"])).status == HOLD_ACTIVE


class TestConvert:
    @pytest.mark.asyncio
    async def test_converts_into_a_confirmed_appointment(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        hold_id = (await hold_at(engine, 10, customer_name="María", session_id="call-1")).hold["hold_id"]

        result = await engine.convert(hold_id)
        assert result.success is True
        booking = result.booking
        assert CODE_PATTERN.match(booking["confirmation_code"])
        assert booking["status"] == "confirmed"
        assert booking["booking_type"] == "appointment"
        assert booking["customer_name"] == "María"
        assert booking["hold_id"] == hold_id
        assert booking["trust_score_at_booking"] == 70

        stored = await db.get_hold(tenant.id, hold_id)
        assert stored.status == HOLD_CONVERTED
        assert str(stored.converted_to_id) == booking["booking_id"]

    @pytest.mark.asyncio
    async def test_conversion_rewards_the_customer(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        hold_id = (await hold_at(engine, 10)).hold["hold_id"]
        await engine.convert(hold_id)

        profile = await db.get_trust_profile(tenant.id, phone=CALLER_DIGITS)
        assert profile.trust_score == 72

    @pytest.mark.asyncio
    async def test_second_conversion_is_refused(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        hold_id = (await hold_at(engine, 10)).hold["hold_id"]
        assert (await engine.convert(hold_id)).success is True

        again = await engine.convert(hold_id)
        assert again.error_code == HoldError.HOLD_NOT_ACTIVE
        assert again.previous_status == HOLD_CONVERTED

    @pytest.mark.asyncio
    async def test_expired_hold_cannot_convert(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        hold_id = (await hold_at(engine, 10)).hold["hold_id"]
        clock.advance(minutes=15)

        result = await engine.convert(hold_id)
        assert result.error_code == HoldError.HOLD_EXPIRED
        assert (await db.get_hold(tenant.id, hold_id)).status == HOLD_EXPIRED

    @pytest.mark.asyncio
    async def test_deposit_gate(self, db, tenant, clock):
        await db.create_trust_profile({"tenant_id": tenant.id, "phone_number": CALLER_DIGITS, "trust_score": 20})
        engine = make_engine(db, tenant, clock)
        hold_id = (await hold_at(engine, 10)).hold["hold_id"]

        refused = await engine.convert(hold_id)
        assert refused.error_code == HoldError.DEPOSIT_REQUIRED
        assert refused.deposit_amount_cents == 10000

        paid = await engine.convert(hold_id, deposit_payment_id="pay_123")
        assert paid.success is True
        assert (await db.get_hold(tenant.id, hold_id)).deposit_paid is True

    @pytest.mark.asyncio
    async def test_booked_slot_blocks_new_holds(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        await engine.convert((await hold_at(engine, 10)).hold["hold_id"])

        result = await hold_at(engine, 10, phone=OTHER_PHONE)
        assert result.error_code == HoldError.SLOT_BOOKED

    @pytest.mark.asyncio
    async def test_free_staff_member_is_assigned(self, db, tenant, clock):
        staff = await db.create_staff({"tenant_id": tenant.id, "name": "Dra. López"})
        engine = make_engine(db, tenant, clock)
        result = await engine.convert((await hold_at(engine, 10)).hold["hold_id"])
        assert result.booking["staff_id"] == str(staff.id)

    @pytest.mark.asyncio
    async def test_restaurant_reservation(self, db, restaurant, clock):
        engine = make_engine(db, restaurant, clock)
        created = await hold_at(
            engine, 20,
            vertical="restaurant",
            hold_type="reservation",
            duration=90,
            metadata={"party_size": 4},
        )
        result = await engine.convert(created.hold["hold_id"])
        assert result.booking["booking_type"] == "reservation"
        assert result.booking["party_size"] == 4
        assert result.booking["confirmation_code"].startswith("RES-")


class TestAvailability:
    @pytest.mark.asyncio
    async def test_lists_free_slots(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        await hold_at(engine, 10)

        result = await engine.check_availability(TOMORROW, limit=100)
        assert result.available is True
        assert result.slots[0] == at(TOMORROW, 9)
        assert at(TOMORROW, 10) not in result.slots
        assert at(TOMORROW, 10, 30) in result.slots
        assert result.slots[-1] == at(TOMORROW, 17, 30)

    @pytest.mark.asyncio
    async def test_slots_must_end_by_closing(self, db, tenant, clock):
        result = await make_engine(db, tenant, clock).check_availability(TOMORROW, duration_minutes=60, limit=100)
        assert result.slots[-1] == at(TOMORROW, 17)

    @pytest.mark.asyncio
    async def test_today_skips_elapsed_slots(self, db, tenant, clock):
        result = await make_engine(db, tenant, clock).check_availability(TODAY)
        assert result.slots[0] == at(TODAY, 10, 30)

    @pytest.mark.asyncio
    async def test_closed_day(self, db, tenant, clock):
        result = await make_engine(db, tenant, clock).check_availability(SUNDAY)
        assert (result.available, result.reason) == (False, "closed")

    @pytest.mark.asyncio
    async def test_full_day(self, db, tenant, clock):
        short = await db.create_branch({
            "tenant_id": tenant.id,
            "name": "Express",
            "is_default": True,
            "business_hours": {"tuesday": {"open": "09:00", "close": "09:30"}},
        })
        engine = make_engine(db, tenant, clock)
        await hold_at(engine, 9, branch_id=short.id)

        result = await engine.check_availability(TOMORROW, branch_id=short.id)
        assert (result.available, result.reason) == (False, "full")

    @pytest.mark.asyncio
    async def test_specific_time_reasons(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        hold_id = (await hold_at(engine, 10)).hold["hold_id"]

        assert (await engine.check_availability(TOMORROW, time(10))).reason == "held"
        await engine.convert(hold_id)
        assert (await engine.check_availability(TOMORROW, time(10))).reason == "booked"
        assert (await engine.check_availability(TODAY, time(9))).reason == "past"

        free = await engine.check_availability(TOMORROW, time(11))
        assert free.available is True
        assert free.end == at(TOMORROW, 11, 30)

    @pytest.mark.asyncio
    async def test_row_fallback_matches(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        await hold_at(engine, 10)

        fallback = HoldEngine(DBService(db.session, procedures=set()), tenant.id, clock)
        assert (await fallback.check_availability(TOMORROW, time(10))).reason == "held"
        assert (await fallback.check_availability(TOMORROW, time(11))).available is True


async def book_at(engine, hour, minute=0, *, phone=CALLER_PHONE, day=TOMORROW, duration=30, **kwargs):
    kwargs.setdefault("vertical", "dental")
    kwargs.setdefault("customer_name", "Ana López")
    return await engine.create_booking(
        slot_start=at(day, hour, minute),
        duration_minutes=duration,
        customer_phone=phone,
        **kwargs,
    )


class TestDirectBooking:
    @pytest.mark.asyncio
    async def test_books_a_free_slot(self, db, tenant, clock):
        result = await book_at(make_engine(db, tenant, clock), 10, source_call_id="call-3")
        assert result.success is True
        booking = result.booking
        assert booking["status"] == "confirmed"
        assert booking["hold_id"] is None
        assert booking["customer_phone"] == CALLER_DIGITS
        assert booking["booking_datetime"] == "2026-03-03T10:00:00"
        assert booking["trust_score_at_booking"] == 70
        assert CODE_PATTERN.match(booking["confirmation_code"])

        profile = await db.get_trust_profile(tenant.id, phone=CALLER_DIGITS)
        assert profile.trust_score == 72

    @pytest.mark.asyncio
    async def test_active_hold_blocks_direct_booking(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        assert (await hold_at(engine, 10, phone=OTHER_PHONE)).success is True

        blocked = await book_at(engine, 10, minute=15)
        assert blocked.success is False
        assert blocked.error_code == HoldError.SLOT_HELD
        assert await db.get_tenant_bookings(tenant.id) == []

        clock.advance(minutes=16)
        assert (await book_at(engine, 10, minute=15)).success is True

    @pytest.mark.asyncio
    async def test_existing_booking_blocks_direct_booking(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        assert (await book_at(engine, 10, phone=OTHER_PHONE)).success is True
        clash = await book_at(engine, 10, minute=15)
        assert clash.error_code == HoldError.SLOT_BOOKED

    @pytest.mark.asyncio
    async def test_direct_booking_blocks_later_holds(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        assert (await book_at(engine, 10)).success is True
        assert (await hold_at(engine, 10, phone=OTHER_PHONE)).error_code == HoldError.SLOT_BOOKED

    @pytest.mark.asyncio
    async def test_same_caller_twice_is_a_duplicate(self, db, tenant, branch, clock):
        engine = make_engine(db, tenant, clock)
        first = await book_at(engine, 10)
        again = await book_at(engine, 10, branch_id=branch.id)
        assert again.error_code == HoldError.DUPLICATE_BOOKING
        assert again.booking["confirmation_code"] == first.booking["confirmation_code"]

    @pytest.mark.asyncio
    async def test_deposit_customers_must_hold_first(self, db, tenant, clock):
        await db.create_trust_profile({"tenant_id": tenant.id, "phone_number": CALLER_DIGITS, "trust_score": 20})
        result = await book_at(make_engine(db, tenant, clock), 10)
        assert result.error_code == HoldError.DEPOSIT_REQUIRED
        assert result.deposit_amount_cents == 10000

    @pytest.mark.asyncio
    async def test_blocked_and_past_and_bad_staff(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        assert (await book_at(engine, 9, day=TODAY)).error_code == HoldError.SLOT_IN_PAST
        assert (await book_at(engine, 10, staff_id="dr-ana")).error_code == HoldError.INVALID_REQUEST

        await db.create_customer_block({"tenant_id": tenant.id, "phone_number": CALLER_DIGITS, "block_reason": "x"})
        assert (await book_at(engine, 10)).error_code == HoldError.CUSTOMER_BLOCKED

    @pytest.mark.asyncio
    async def test_free_staff_member_is_assigned(self, db, tenant, clock):
        staff = await db.create_staff({"tenant_id": tenant.id, "name": "Dra. López"})
        result = await book_at(make_engine(db, tenant, clock), 10)
        assert result.booking["staff_id"] == str(staff.id)

    @pytest.mark.asyncio
    async def test_restaurant_reservation(self, db, restaurant, clock):
        engine = make_engine(db, restaurant, clock)
        result = await book_at(
            engine, 20, vertical="restaurant", booking_type="reservation", duration=90, party_size=6
        )
        assert result.booking["booking_type"] == "reservation"
        assert result.booking["party_size"] == 6
        assert result.booking["staff_id"] is None
        assert result.booking["confirmation_code"].startswith("RES-")


class TestCancelBooking:
    async def _booked(self, db, tenant, clock):
        engine = make_engine(db, tenant, clock)
        result = await engine.convert((await hold_at(engine, 10)).hold["hold_id"])
        return engine, result.booking["confirmation_code"]

    @pytest.mark.asyncio
    async def test_cancel_matches_national_number(self, db, tenant, clock):
        engine, code = await self._booked(db, tenant, clock)

        result = await engine.cancel_booking(code.lower(), "55 1234 5678", reason="sick")
        assert result.success is True
        assert result.booking["status"] == "cancelled"
        assert (await hold_at(engine, 10, phone=OTHER_PHONE)).success is True

    @pytest.mark.asyncio
    async def test_cancel_twice(self, db, tenant, clock):
        engine, code = await self._booked(db, tenant, clock)
        await engine.cancel_booking(code, CALLER_PHONE)

        again = await engine.cancel_booking(code, CALLER_PHONE)
        assert again.error_code == HoldError.BOOKING_NOT_ACTIVE

    @pytest.mark.asyncio
    async def test_wrong_phone_looks_like_missing_booking(self, db, tenant, clock):
        engine, code = await self._booked(db, tenant, clock)
        result = await engine.cancel_booking(code, OTHER_PHONE)
        assert result.error_code == HoldError.BOOKING_NOT_FOUND
