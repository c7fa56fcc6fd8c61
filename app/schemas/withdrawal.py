from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel

class WithdrawalAction(BaseModel):
    operator: str
    note: Optional[str] = None

class WithdrawalOut(BaseModel):
    id: str
    user_id: str
    currency: str
    amount: Decimal
    wallet_address: str
    status: str
    operator: Optional[str] = None
    admin_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

class WithdrawalPageOut(BaseModel):
    items: List[WithdrawalOut]
    total: int
    page: int
    page_size: int
