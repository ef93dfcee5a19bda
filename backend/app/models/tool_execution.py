from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, JSON, Uuid
from datetime import datetime
import uuid
from app.core.database import Base

class ToolExecutionLog(Base):
    __tablename__ = "tool_execution_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=True, index=True)
    branch_id = Column(Uuid, nullable=True)
    call_id = Column(String, nullable=True, index=True)

    tool_name = Column(String, nullable=False)
    parameters = Column(JSON, default=dict)
    success = Column(Boolean, nullable=False)
    error_code = Column(String, nullable=True)
    error = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<ToolExecutionLog(tool={self.tool_name}, success={self.success})>"
