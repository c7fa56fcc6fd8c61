from sqlalchemy import Column, Integer, String, Numeric, DateTime
from sqlalchemy.sql import func
from app.database import Base


class BalanceEntry(Base):
    """Spendable balance per user and currency."""
    __tablename__ = "balances"

    user_id = Column(String, primary_key=True)
    currency = Column(String, primary_key=True)
    balance = Column(Numeric(24, 8), nullable=False, default=0)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class LedgerEntry(Base):
    """Journal row written in the same transaction as every balance change."""
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, index=True, nullable=False)
    currency = Column(String, nullable=False)
    amount = Column(Numeric(24, 8), nullable=False)  # applied delta; positive=income negative=expense
    balance_after = Column(Numeric(24, 8), nullable=False)
    shortfall = Column(Numeric(24, 8), nullable=True, doc="Part of a loss not applied because the balance hit zero")
    reference = Column(String, unique=True, nullable=True, doc="Idempotency key, e.g. trade:<id>")
    created_at = Column(DateTime, server_default=func.now(), index=True)
