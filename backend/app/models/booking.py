from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Text, Index, Uuid
from datetime import datetime
import uuid
from app.core.database import Base

# Statuses that still occupy their slot
ACTIVE_BOOKING_STATUSES = ("pending", "confirmed")

class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("idx_bookings_tenant_branch_datetime", "tenant_id", "branch_id", "booking_datetime"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False)
    branch_id = Column(Uuid, ForeignKey("branches.id"), nullable=True)
    booking_type = Column(String, nullable=False, default="appointment")  # appointment, reservation, order

    # Customer Info
    customer_name = Column(String, nullable=False)
    customer_phone = Column(String, nullable=False)
    customer_email = Column(String, nullable=True)
    lead_id = Column(Uuid, nullable=True)

    # Booking Details
    booking_datetime = Column(DateTime, nullable=False)
    end_datetime = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, default=30)
    party_size = Column(Integer, nullable=True)
    service_id = Column(String, nullable=True)
    staff_id = Column(Uuid, ForeignKey("staff.id"), nullable=True)

    confirmation_code = Column(String, nullable=False, unique=True)

    # Status
    status = Column(String, default="confirmed")  # pending, confirmed, cancelled, completed, no_show
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # Origin
    hold_id = Column(Uuid, ForeignKey("booking_holds.id"), nullable=True)
    trust_score_at_booking = Column(Integer, nullable=True)
    deposit_payment_id = Column(String, nullable=True)
    source_call_id = Column(String, nullable=True)

    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Booking(id={self.id}, code={self.confirmation_code}, status={self.status})>"
