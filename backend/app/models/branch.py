from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, JSON, Uuid
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from app.core.database import Base

class Branch(Base):
    __tablename__ = "branches"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    business_hours = Column(JSON, nullable=True)  # overrides tenant hours when set
    is_default = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    tenant = relationship("Tenant", backref="branches")

    def __repr__(self):
        return f"<Branch(id={self.id}, name={self.name})>"


class Staff(Base):
    __tablename__ = "staff"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False, index=True)
    branch_id = Column(Uuid, ForeignKey("branches.id"), nullable=True)
    name = Column(String, nullable=False)
    role = Column(String, default="doctor")
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Staff(id={self.id}, name={self.name}, role={self.role})>"
