from decimal import Decimal
from typing import Literal
from pydantic import BaseModel
from app.schemas.trade import SettlementOut, SweepOut
from app.schemas.withdrawal import WithdrawalOut

class TradeSettledEvent(BaseModel):
    type: Literal["trade_settled"] = "trade_settled"
    trade: SettlementOut

class SettlementSweepEvent(BaseModel):
    type: Literal["settlement_sweep"] = "settlement_sweep"
    summary: SweepOut

class WithdrawalUpdatedEvent(BaseModel):
    type: Literal["withdrawal_updated"] = "withdrawal_updated"
    withdrawal: WithdrawalOut

class BalanceUpdateEvent(BaseModel):
    type: Literal["balance_update"] = "balance_update"
    user_id: str
    currency: str
    balance: Decimal
