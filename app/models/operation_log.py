from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from app.database import Base


class OperationLog(Base):
    """Audit trail of admin actions and reconciliation events."""
    __tablename__ = "operation_logs"

    id = Column(Integer, primary_key=True, index=True)
    admin = Column(String, nullable=False)  # admin identity or "system"
    action = Column(String, index=True, nullable=False)
    target = Column(String, nullable=True, doc="Trade or withdrawal id")
    details = Column(Text, nullable=True)
    metadata_json = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), index=True)
