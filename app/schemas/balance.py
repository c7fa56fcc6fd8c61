from decimal import Decimal
from pydantic import BaseModel

class BalanceOut(BaseModel):
    user_id: str
    currency: str
    balance: Decimal
