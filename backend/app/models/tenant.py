from sqlalchemy import Column, String, Boolean, DateTime, JSON, Uuid
from datetime import datetime
import uuid
from app.core.database import Base

class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    vertical = Column(String, default="dental")  # dental, restaurant, salon, ...
    assistant_type = Column(String, default="dental_standard")
    phone = Column(String)

    # Locale / time
    timezone = Column(String, default="America/Mexico_City")
    locale = Column(String, default="es")

    # {"monday": {"open": "09:00", "close": "18:00"}, "sunday": {"closed": true}}
    business_hours = Column(JSON, default=dict)

    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Tenant(id={self.id}, name={self.name}, vertical={self.vertical})>"
