from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Text, UniqueConstraint, Uuid
from datetime import datetime
import uuid
from app.core.database import Base

class CustomerTrustScore(Base):
    __tablename__ = "customer_trust_scores"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False, index=True)
    lead_id = Column(Uuid, nullable=True, index=True)
    phone_number = Column(String, nullable=True, index=True)  # digits only

    trust_score = Column(Integer, default=70)
    is_vip = Column(Boolean, default=False)
    is_blocked = Column(Boolean, default=False)
    block_reason = Column(Text, nullable=True)
    blocked_until = Column(DateTime, nullable=True)  # null while blocked = permanent

    # Rolling counters
    total_bookings = Column(Integer, default=0)
    completed_bookings = Column(Integer, default=0)
    no_shows = Column(Integer, default=0)

    last_score_change_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<CustomerTrustScore(phone={self.phone_number}, score={self.trust_score})>"


class CustomerBlock(Base):
    __tablename__ = "customer_blocks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False, index=True)
    phone_number = Column(String, nullable=True, index=True)
    lead_id = Column(Uuid, nullable=True)
    block_reason = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True)
    unblock_at = Column(DateTime, nullable=True)  # null = permanent

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<CustomerBlock(phone={self.phone_number}, active={self.is_active})>"


class TrustScoreEvent(Base):
    """Append-only audit of score deltas; one row per (tenant, reference, reason)."""
    __tablename__ = "trust_score_events"
    __table_args__ = (
        UniqueConstraint("tenant_id", "reference_id", "reason", name="uq_trust_event_reference"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False)
    trust_score_id = Column(Uuid, ForeignKey("customer_trust_scores.id"), nullable=False)
    reference_id = Column(String, nullable=False)
    reason = Column(String, nullable=False)
    delta = Column(Integer, nullable=False)
    score_before = Column(Integer, nullable=False)
    score_after = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
