from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.core.clock import Clock
from app.services.db_service import DEFAULT_TRUST_SCORE, DBService, IdLike, ProcedureUnavailableError
from app.services.utils import normalize_phone

logger = logging.getLogger(__name__)

LEVEL_BLOCKED = "blocked"
LEVEL_VIP = "vip"
LEVEL_TRUSTED = "trusted"
LEVEL_NORMAL = "normal"
LEVEL_RISKY = "risky"

ACTION_PROCEED = "proceed"
ACTION_REQUIRE_CONFIRMATION = "require_confirmation"
ACTION_REQUIRE_DEPOSIT = "require_deposit"
ACTION_BLOCKED = "blocked"

BOOKING_COMPLETED_DELTA = 2


@dataclass(frozen=True)
class BookingPolicySettings:
    """Thresholds applied to one (tenant, vertical)."""

    confirmation_threshold: int = 80
    deposit_threshold: int = 30
    require_confirmation_below_trust: bool = True
    require_deposit_below_trust: bool = True
    deposit_amount_cents: int = 10000
    hold_duration_minutes: int = 15

    @classmethod
    def from_row(cls, row: Any, fallback: "BookingPolicySettings") -> "BookingPolicySettings":
        def pick(name: str):
            value = getattr(row, name, None)
            return getattr(fallback, name) if value is None else value

        return cls(**{name: pick(name) for name in cls.__dataclass_fields__})


DEFAULT_POLICY = BookingPolicySettings()
VERTICAL_DEFAULT_POLICIES: Dict[str, BookingPolicySettings] = {
    "restaurant": BookingPolicySettings(confirmation_threshold=75, deposit_threshold=25),
}


def default_policy(vertical: Optional[str]) -> BookingPolicySettings:
    return VERTICAL_DEFAULT_POLICIES.get(vertical or "", DEFAULT_POLICY)


@dataclass(frozen=True)
class TrustDecision:
    score: int
    level: str
    action: str
    is_vip: bool = False
    is_blocked: bool = False
    block_reason: Optional[str] = None
    deposit_amount_cents: Optional[int] = None
    lead_id: Optional[str] = None

    @property
    def requires_confirmation(self) -> bool:
        return self.action == ACTION_REQUIRE_CONFIRMATION

    @property
    def requires_deposit(self) -> bool:
        return self.action == ACTION_REQUIRE_DEPOSIT

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Used whenever the trust lookup itself fails: a new or unknown customer.
PERMISSIVE_DECISION = TrustDecision(score=DEFAULT_TRUST_SCORE, level=LEVEL_NORMAL, action=ACTION_PROCEED)


def classify_level(score: int, is_vip: bool = False, is_blocked: bool = False) -> str:
    """Informational level; fixed breakpoints, independent of policy."""
    if is_blocked:
        return LEVEL_BLOCKED
    if is_vip:
        return LEVEL_VIP
    if score >= 80:
        return LEVEL_TRUSTED
    if score >= 50:
        return LEVEL_NORMAL
    return LEVEL_RISKY


def decide_action(
    score: int,
    policy: BookingPolicySettings,
    is_vip: bool = False,
    is_blocked: bool = False,
) -> str:
    if is_blocked:
        return ACTION_BLOCKED
    if is_vip or score >= policy.confirmation_threshold:
        return ACTION_PROCEED
    if score >= policy.deposit_threshold or not policy.require_deposit_below_trust:
        return ACTION_REQUIRE_CONFIRMATION if policy.require_confirmation_below_trust else ACTION_PROCEED
    return ACTION_REQUIRE_DEPOSIT


class TrustEvaluator:
    """
    Decides how much friction a booking attempt gets.

    Lookup failures never block a booking: they degrade to a permissive
    decision. Only an explicit block refuses.
    """

    def __init__(self, db: DBService, tenant_id: IdLike, clock: Clock):
        self.db = db
        self.tenant_id = tenant_id
        self.clock = clock

    async def resolve_policy(self, vertical: Optional[str], branch_id: Optional[IdLike] = None) -> BookingPolicySettings:
        fallback = default_policy(vertical)
        try:
            row = await self.db.get_booking_policy(self.tenant_id, vertical or "", branch_id)
        except SQLAlchemyError as e:
            logger.warning("Policy lookup failed for vertical=%s, using defaults: %s", vertical, e)
            await self._reset_session()
            return fallback
        if row is None:
            return fallback
        return BookingPolicySettings.from_row(row, fallback)

    async def evaluate(
        self,
        vertical: Optional[str],
        phone: Optional[str],
        lead_id: Optional[IdLike] = None,
        *,
        branch_id: Optional[IdLike] = None,
        policy: Optional[BookingPolicySettings] = None,
    ) -> TrustDecision:
        try:
            policy = policy or await self.resolve_policy(vertical, branch_id)
            trust = await self._load_trust(normalize_phone(phone or ""), lead_id)
            score = int(trust["score"])
            is_vip = bool(trust["is_vip"])
            is_blocked = bool(trust["is_blocked"])
        except Exception as e:
            logger.warning("Trust evaluation failed, proceeding with default score: %s", e)
            await self._reset_session()
            return PERMISSIVE_DECISION

        action = decide_action(score, policy, is_vip=is_vip, is_blocked=is_blocked)

        decision = TrustDecision(
            score=score,
            level=classify_level(score, is_vip, is_blocked),
            action=action,
            is_vip=is_vip,
            is_blocked=is_blocked,
            block_reason=trust.get("block_reason") if is_blocked else None,
            deposit_amount_cents=policy.deposit_amount_cents if action == ACTION_REQUIRE_DEPOSIT else None,
            lead_id=trust.get("lead_id") or (str(lead_id) if lead_id else None),
        )
        logger.info(
            "Trust decision for %s: score=%s level=%s action=%s",
            phone, decision.score, decision.level, decision.action,
        )
        return decision

    async def _load_trust(self, phone: str, lead_id: Optional[IdLike]) -> Dict[str, Any]:
        now = self.clock()
        try:
            return await self.db.call_procedure(
                "get_customer_trust_score",
                tenant_id=self.tenant_id,
                now=now,
                phone=phone or None,
                lead_id=lead_id,
            )
        except ProcedureUnavailableError as e:
            logger.warning("%s, falling back to row lookups", e)
        except SQLAlchemyError as e:
            logger.warning("get_customer_trust_score failed, falling back to row lookups: %s", e)
            await self._reset_session()

        profile = await self.db.get_trust_profile(self.tenant_id, phone=phone or None, lead_id=lead_id)
        block = await self.db.get_active_block(self.tenant_id, now, phone=phone or None, lead_id=lead_id)

        is_blocked, block_reason = False, None
        if block is not None:
            is_blocked, block_reason = True, block.block_reason
        elif profile is not None and profile.is_blocked:
            if profile.blocked_until is None or profile.blocked_until > now:
                is_blocked, block_reason = True, profile.block_reason

        if profile is None:
            return {
                "score": DEFAULT_TRUST_SCORE,
                "is_vip": False,
                "is_blocked": is_blocked,
                "block_reason": block_reason,
                "lead_id": None,
            }
        return {
            "score": profile.trust_score if profile.trust_score is not None else DEFAULT_TRUST_SCORE,
            "is_vip": bool(profile.is_vip),
            "is_blocked": is_blocked,
            "block_reason": block_reason,
            "lead_id": str(profile.lead_id) if profile.lead_id else None,
        }

    async def adjust_score(
        self,
        reference_id: str,
        delta: int,
        reason: str,
        *,
        phone: Optional[str] = None,
        lead_id: Optional[IdLike] = None,
    ) -> bool:
        """Apply a score delta once per (reference_id, reason). Never raises."""
        phone = normalize_phone(phone or "") or None
        if phone is None and lead_id is None:
            return False
        now = self.clock()
        params = dict(
            reference_id=reference_id,
            delta=delta,
            reason=reason,
            now=now,
            phone=phone,
            lead_id=lead_id,
        )
        try:
            outcome = await self.db.call_procedure("update_trust_score", tenant_id=self.tenant_id, **params)
            return bool(outcome["applied"])
        except ProcedureUnavailableError as e:
            logger.warning("%s, applying delta manually", e)
        except SQLAlchemyError as e:
            logger.warning("update_trust_score failed, applying delta manually: %s", e)
            await self._reset_session()

        try:
            if await self.db.get_trust_event(self.tenant_id, reference_id, reason) is not None:
                return False
            outcome = await self.db.apply_trust_delta(self.tenant_id, **params)
            return bool(outcome["applied"])
        except Exception as e:
            logger.warning("Could not adjust trust score (reference=%s): %s", reference_id, e)
            await self._reset_session()
            return False

    async def _reset_session(self) -> None:
        try:
            await self.db.session.rollback()
        except SQLAlchemyError as e:
            logger.warning("Session rollback failed: %s", e)
