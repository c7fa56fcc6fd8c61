"""Plain records handed across the storage ports, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

# Trade.trade_result
RESULT_PENDING = "pending"
RESULT_WIN = "win"
RESULT_LOSS = "loss"

# Trade.status, the user-visible side
STATUS_OPEN = "OPEN"
STATUS_WIN = "WIN"
STATUS_LOSS = "LOSS"

# Withdrawal.status
W_PENDING = "pending"
W_LOCKED = "locked"
W_APPROVED = "approved"
W_REJECTED = "rejected"
W_OPEN_STATES = (W_PENDING, W_LOCKED)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC datetime; naive values (as sqlite returns them) are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class TradeRecord:
    id: str
    user_id: str
    pair: str
    side: str
    leverage: int
    amount: Decimal
    currency: str
    entry_price: Decimal
    expiry_ts: datetime
    exit_price: Optional[Decimal] = None
    status: str = STATUS_OPEN
    trade_result: str = RESULT_PENDING
    admin_action: Optional[str] = None
    admin_action_at: Optional[datetime] = None
    admin_user_id: Optional[str] = None
    result_determined_at: Optional[datetime] = None
    final_pnl: Optional[Decimal] = None
    ledger_applied: bool = False

    @property
    def is_pending(self) -> bool:
        return self.trade_result == RESULT_PENDING


@dataclass
class WithdrawalRecord:
    id: str
    user_id: str
    currency: str
    amount: Decimal
    wallet_address: str
    status: str = W_PENDING
    operator: Optional[str] = None
    admin_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


@dataclass
class OperationRecord:
    admin: str
    action: str
    target: Optional[str] = None
    details: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
