import uuid
from sqlalchemy import Column, String, Numeric, DateTime, Text
from datetime import datetime, timezone
from app.database import Base


class Withdrawal(Base):
    __tablename__ = "withdrawals"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, index=True, nullable=False)
    currency = Column(String, nullable=False)
    amount = Column(Numeric(24, 8), nullable=False)
    wallet_address = Column(String, nullable=False)
    status = Column(String, default="pending", index=True, nullable=False)  # pending, locked, approved, rejected
    operator = Column(String, nullable=True)
    admin_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
