from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Uuid
from datetime import datetime
import uuid
from app.core.database import Base

class VerticalBookingPolicy(Base):
    __tablename__ = "vertical_booking_policies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = Column(Uuid, ForeignKey("branches.id"), nullable=True)
    vertical = Column(String, nullable=False)

    # Trust thresholds
    confirmation_threshold = Column(Integer, default=80)
    deposit_threshold = Column(Integer, default=30)
    require_confirmation_below_trust = Column(Boolean, default=True)
    require_deposit_below_trust = Column(Boolean, default=True)
    deposit_amount_cents = Column(Integer, default=10000)

    hold_duration_minutes = Column(Integer, default=15)

    is_active = Column(Boolean, default=True)
    is_default = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<VerticalBookingPolicy(tenant={self.tenant_id}, vertical={self.vertical})>"
