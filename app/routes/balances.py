from fastapi import APIRouter, Depends
from app.dependencies import get_ledger, run_blocking
from app.schemas.balance import BalanceOut
from app.services.ledger import BalanceLedger

router = APIRouter(prefix="/balances", tags=["Balances"])


@router.get("/{user_id}/{currency}")
async def get_balance(user_id: str, currency: str, ledger: BalanceLedger = Depends(get_ledger)):
    balance = await run_blocking(ledger.get_balance, user_id, currency)
    return BalanceOut(user_id=user_id, currency=currency.upper(), balance=balance).model_dump(mode="json")
