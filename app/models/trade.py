import uuid
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean
from datetime import datetime, timezone
from app.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class Trade(Base):
    __tablename__ = "trades"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, index=True, nullable=False)
    pair = Column(String, nullable=False)  # e.g. BTC/USDT
    side = Column(String, nullable=False)  # LONG or SHORT
    leverage = Column(Integer, nullable=False)
    amount = Column(Numeric(24, 8), nullable=False)  # risk capital
    currency = Column(String, nullable=False, doc="Currency the PnL is booked in")
    entry_price = Column(Numeric(24, 8), nullable=False)
    exit_price = Column(Numeric(24, 8), nullable=True)
    expiry_ts = Column(DateTime(timezone=True), index=True, nullable=False)

    # What the user sees vs. the internal resolution
    status = Column(String, default="OPEN", nullable=False)  # OPEN, WIN, LOSS
    trade_result = Column(String, default="pending", index=True, nullable=False)  # pending, win, loss

    admin_action = Column(String, nullable=True)  # win or loss
    admin_action_at = Column(DateTime(timezone=True), nullable=True)
    admin_user_id = Column(String, nullable=True)

    result_determined_at = Column(DateTime(timezone=True), nullable=True)
    final_pnl = Column(Numeric(24, 8), nullable=True)
    ledger_applied = Column(Boolean, default=False, nullable=False,
                            doc="True once final_pnl has been booked to the balance ledger")

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
