"""Tests for trust scoring and the friction decision."""

from datetime import timedelta

import pytest
from sqlalchemy import update

from app.models import CustomerTrustScore
from app.services.db_service import DBService
from app.services.trust_evaluator import (
    ACTION_BLOCKED,
    ACTION_PROCEED,
    ACTION_REQUIRE_CONFIRMATION,
    ACTION_REQUIRE_DEPOSIT,
    LEVEL_RISKY,
    LEVEL_TRUSTED,
    LEVEL_VIP,
    PERMISSIVE_DECISION,
    BookingPolicySettings,
    TrustEvaluator,
    classify_level,
    decide_action,
    default_policy,
)
from conftest import CALLER_DIGITS, CALLER_PHONE

POLICY = BookingPolicySettings()


class TestDecideAction:
    def test_thresholds(self):
        assert decide_action(85, POLICY) == ACTION_PROCEED
        assert decide_action(80, POLICY) == ACTION_PROCEED
        assert decide_action(50, POLICY) == ACTION_REQUIRE_CONFIRMATION
        assert decide_action(30, POLICY) == ACTION_REQUIRE_CONFIRMATION
        assert decide_action(20, POLICY) == ACTION_REQUIRE_DEPOSIT

    def test_vip_skips_friction(self):
        assert decide_action(10, POLICY, is_vip=True) == ACTION_PROCEED

    def test_block_wins_over_vip(self):
        assert decide_action(95, POLICY, is_vip=True, is_blocked=True) == ACTION_BLOCKED

    def test_deposit_gating_disabled(self):
        policy = BookingPolicySettings(require_deposit_below_trust=False)
        assert decide_action(20, policy) == ACTION_REQUIRE_CONFIRMATION

    def test_confirmation_gating_disabled(self):
        policy = BookingPolicySettings(require_confirmation_below_trust=False)
        assert decide_action(50, policy) == ACTION_PROCEED
        assert decide_action(20, policy) == ACTION_REQUIRE_DEPOSIT

    def test_restaurant_defaults(self):
        policy = default_policy("restaurant")
        assert decide_action(76, policy) == ACTION_PROCEED
        assert decide_action(26, policy) == ACTION_REQUIRE_CONFIRMATION

    def test_levels(self):
        assert classify_level(90) == LEVEL_TRUSTED
        assert classify_level(10) == LEVEL_RISKY
        assert classify_level(10, is_vip=True) == LEVEL_VIP


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_unknown_customer_gets_default_score(self, db, tenant, clock):
        decision = await TrustEvaluator(db, tenant.id, clock).evaluate("dental", CALLER_PHONE)
        assert decision.score == 70
        assert decision.action == ACTION_REQUIRE_CONFIRMATION

    @pytest.mark.asyncio
    async def test_low_score_requires_deposit(self, db, tenant, clock):
        await db.create_trust_profile({"tenant_id": tenant.id, "phone_number": CALLER_DIGITS, "trust_score": 20})
        decision = await TrustEvaluator(db, tenant.id, clock).evaluate("dental", CALLER_PHONE)
        assert decision.action == ACTION_REQUIRE_DEPOSIT
        assert decision.deposit_amount_cents == 10000

    @pytest.mark.asyncio
    async def test_tenant_policy_overrides_defaults(self, db, tenant, clock):
        await db.create_policy({
            "tenant_id": tenant.id,
            "vertical": "dental",
            "confirmation_threshold": 60,
            "is_default": True,
        })
        decision = await TrustEvaluator(db, tenant.id, clock).evaluate("dental", CALLER_PHONE)
        assert decision.action == ACTION_PROCEED

    @pytest.mark.asyncio
    async def test_active_block(self, db, tenant, clock):
        await db.create_customer_block({
            "tenant_id": tenant.id,
            "phone_number": CALLER_DIGITS,
            "block_reason": "Repeated no-shows",
        })
        decision = await TrustEvaluator(db, tenant.id, clock).evaluate("dental", CALLER_PHONE)
        assert decision.action == ACTION_BLOCKED
        assert decision.block_reason == "Repeated no-shows"

    @pytest.mark.asyncio
    async def test_lapsed_block_is_ignored(self, db, tenant, clock):
        await db.create_customer_block({
            "tenant_id": tenant.id,
            "phone_number": CALLER_DIGITS,
            "block_reason": "Temporary",
            "unblock_at": clock() - timedelta(days=1),
        })
        decision = await TrustEvaluator(db, tenant.id, clock).evaluate("dental", CALLER_PHONE)
        assert decision.is_blocked is False

    @pytest.mark.asyncio
    async def test_profile_block_honours_blocked_until(self, db, tenant, clock):
        await db.create_trust_profile({
            "tenant_id": tenant.id,
            "phone_number": CALLER_DIGITS,
            "trust_score": 90,
            "is_blocked": True,
            "block_reason": "Chargeback",
            "blocked_until": clock() + timedelta(hours=1),
        })
        evaluator = TrustEvaluator(db, tenant.id, clock)
        assert (await evaluator.evaluate("dental", CALLER_PHONE)).action == ACTION_BLOCKED

        clock.advance(hours=2)
        assert (await evaluator.evaluate("dental", CALLER_PHONE)).action == ACTION_PROCEED

    @pytest.mark.asyncio
    async def test_row_fallback_matches_procedure(self, db, tenant, clock):
        await db.create_trust_profile({
            "tenant_id": tenant.id,
            "phone_number": CALLER_DIGITS,
            "trust_score": 95,
            "is_vip": True,
        })
        with_procedure = await TrustEvaluator(db, tenant.id, clock).evaluate("dental", CALLER_PHONE)
        fallback_db = DBService(db.session, procedures=set())
        without = await TrustEvaluator(fallback_db, tenant.id, clock).evaluate("dental", CALLER_PHONE)
        assert with_procedure == without
        assert without.level == LEVEL_VIP

    @pytest.mark.asyncio
    async def test_lookup_failure_fails_open(self, db, tenant, clock):
        class BrokenDB(DBService):
            async def get_trust_profile(self, *args, **kwargs):
                raise RuntimeError("connection reset")

        broken = BrokenDB(db.session, procedures=set())
        decision = await TrustEvaluator(broken, tenant.id, clock).evaluate("dental", CALLER_PHONE)
        assert decision == PERMISSIVE_DECISION

    @pytest.mark.asyncio
    async def test_null_score_reads_as_default(self, db, tenant, clock):
        profile = await db.create_trust_profile({
            "tenant_id": tenant.id,
            "phone_number": CALLER_DIGITS,
            "trust_score": 90,
        })
        await db.session.execute(
            update(CustomerTrustScore).where(CustomerTrustScore.id == profile.id).values(trust_score=None)
        )
        await db.session.commit()

        with_procedure = await TrustEvaluator(db, tenant.id, clock).evaluate("dental", CALLER_PHONE)
        fallback_db = DBService(db.session, procedures=set())
        without = await TrustEvaluator(fallback_db, tenant.id, clock).evaluate("dental", CALLER_PHONE)
        assert with_procedure.score == without.score == 70
        assert with_procedure.action == ACTION_REQUIRE_CONFIRMATION

    @pytest.mark.asyncio
    async def test_unreadable_score_fails_open(self, db, tenant, clock):
        class GarbledDB(DBService):
            async def _proc_get_customer_trust_score(self, *args, **kwargs):
                return {"score": "high", "is_vip": False, "is_blocked": False}

        decision = await TrustEvaluator(GarbledDB(db.session), tenant.id, clock).evaluate("dental", CALLER_PHONE)
        assert decision == PERMISSIVE_DECISION


class TestAdjustScore:
    @pytest.mark.asyncio
    async def test_delta_applies_once_per_reference(self, db, tenant, clock):
        evaluator = TrustEvaluator(db, tenant.id, clock)
        assert await evaluator.adjust_score("booking-1", 2, "booking_completed", phone=CALLER_PHONE) is True
        assert await evaluator.adjust_score("booking-1", 2, "booking_completed", phone=CALLER_PHONE) is False

        profile = await db.get_trust_profile(tenant.id, phone=CALLER_DIGITS)
        await db.session.refresh(profile)
        assert profile.trust_score == 72
        assert profile.completed_bookings == 1

    @pytest.mark.asyncio
    async def test_fallback_path_is_also_idempotent(self, db, tenant, clock):
        fallback_db = DBService(db.session, procedures=set())
        evaluator = TrustEvaluator(fallback_db, tenant.id, clock)
        assert await evaluator.adjust_score("ns-1", -20, "no_show", phone=CALLER_PHONE) is True
        assert await evaluator.adjust_score("ns-1", -20, "no_show", phone=CALLER_PHONE) is False

        profile = await db.get_trust_profile(tenant.id, phone=CALLER_DIGITS)
        await db.session.refresh(profile)
        assert profile.trust_score == 50
        assert profile.no_shows == 1

    @pytest.mark.asyncio
    async def test_score_is_clamped(self, db, tenant, clock):
        await db.create_trust_profile({"tenant_id": tenant.id, "phone_number": CALLER_DIGITS, "trust_score": 99})
        evaluator = TrustEvaluator(db, tenant.id, clock)
        await evaluator.adjust_score("b-1", 5, "booking_completed", phone=CALLER_PHONE)

        profile = await db.get_trust_profile(tenant.id, phone=CALLER_DIGITS)
        await db.session.refresh(profile)
        assert profile.trust_score == 100

    @pytest.mark.asyncio
    async def test_needs_an_identity(self, db, tenant, clock):
        assert await TrustEvaluator(db, tenant.id, clock).adjust_score("x", 2, "booking_completed") is False
