from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, JSON, Index, UniqueConstraint, Uuid
from datetime import datetime
import uuid
from app.core.database import Base

HOLD_ACTIVE = "active"
HOLD_EXPIRED = "expired"
HOLD_RELEASED = "released"
HOLD_CONVERTED = "converted"

class BookingHold(Base):
    __tablename__ = "booking_holds"
    __table_args__ = (
        Index("idx_booking_holds_slot", "tenant_id", "branch_id", "status", "slot_datetime"),
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_booking_holds_idempotency"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False)
    branch_id = Column(Uuid, ForeignKey("branches.id"), nullable=True)

    # Customer
    customer_phone = Column(String, nullable=False)  # digits only
    customer_name = Column(String, nullable=True)
    lead_id = Column(Uuid, nullable=True)

    hold_type = Column(String, nullable=False, default="appointment")  # appointment, reservation, order

    # Claimed interval [slot_datetime, end_datetime)
    slot_datetime = Column(DateTime, nullable=False)
    end_datetime = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    service_id = Column(String, nullable=True)
    staff_id = Column(Uuid, ForeignKey("staff.id"), nullable=True)
    session_id = Column(String, nullable=True, index=True)  # call that created the hold
    idempotency_key = Column(String, nullable=True)  # client-supplied, replays return the same hold

    status = Column(String, nullable=False, default=HOLD_ACTIVE)
    expires_at = Column(DateTime, nullable=False)

    # Trust snapshot, stamped at creation and never recomputed
    trust_score_at_hold = Column(Integer, nullable=True)
    requires_confirmation = Column(Boolean, default=False)
    requires_deposit = Column(Boolean, default=False)
    deposit_amount_cents = Column(Integer, nullable=True)
    deposit_paid = Column(Boolean, default=False)

    hold_metadata = Column("metadata", JSON, default=dict)

    released_at = Column(DateTime, nullable=True)
    release_reason = Column(String, nullable=True)
    converted_at = Column(DateTime, nullable=True)
    converted_to_id = Column(Uuid, nullable=True)
    converted_to_type = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<BookingHold(id={self.id}, slot={self.slot_datetime}, status={self.status})>"
