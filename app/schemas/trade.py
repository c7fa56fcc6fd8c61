from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel

class AdminDecision(BaseModel):
    decision: Literal["win", "loss"]
    admin_user_id: Optional[str] = None

class SettlementOut(BaseModel):
    trade_id: str
    trade_result: str
    status: str
    final_pnl: Decimal
    balance: Optional[Decimal] = None

class SweepOut(BaseModel):
    found: int
    settled: int
    skipped: int
    reapplied: int
    errors: list
