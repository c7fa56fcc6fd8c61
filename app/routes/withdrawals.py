# app/routes/withdrawals.py
from dataclasses import asdict
from fastapi import APIRouter, Depends
from app.dependencies import get_withdrawal_workflow, run_blocking
from app.schemas.events import BalanceUpdateEvent, WithdrawalUpdatedEvent
from app.schemas.withdrawal import WithdrawalAction, WithdrawalOut, WithdrawalPageOut
from app.services.broadcaster import publish
from app.services.errors import LedgerError
from app.services.withdrawals import WithdrawalWorkflow
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/withdrawals", tags=["Withdrawals"])


def _out(w) -> WithdrawalOut:
    return WithdrawalOut(**asdict(w))


async def _publish_balance(workflow: WithdrawalWorkflow, w):
    # the approval has already committed; a failed read only costs the live update
    try:
        balance = await run_blocking(workflow.ledger.get_balance, w.user_id, w.currency)
    except LedgerError as e:
        logger.warning("balance refresh after approving withdrawal %s failed: %s", w.id, e)
        return
    await publish(BalanceUpdateEvent(user_id=w.user_id, currency=w.currency, balance=balance))


@router.get("")
async def list_withdrawals(status: str = "all", page: int = 1, page_size: int = 10,
                           workflow: WithdrawalWorkflow = Depends(get_withdrawal_workflow)):
    result = await run_blocking(workflow.list_withdrawals, status, page, page_size)
    data = WithdrawalPageOut(items=[_out(w) for w in result.items], total=result.total,
                             page=result.page, page_size=result.page_size)
    return {"status": "success", "data": data.model_dump(mode="json")}


@router.post("/{withdrawal_id}/lock")
async def lock_withdrawal(withdrawal_id: str, body: WithdrawalAction,
                          workflow: WithdrawalWorkflow = Depends(get_withdrawal_workflow)):
    w = _out(await run_blocking(workflow.lock, withdrawal_id, body.operator))
    await publish(WithdrawalUpdatedEvent(withdrawal=w))
    return {"status": "success", "data": w.model_dump(mode="json")}


@router.post("/{withdrawal_id}/approve")
async def approve_withdrawal(withdrawal_id: str, body: WithdrawalAction,
                             workflow: WithdrawalWorkflow = Depends(get_withdrawal_workflow)):
    approved = await run_blocking(workflow.approve, withdrawal_id, body.operator, body.note)
    w = _out(approved)
    await publish(WithdrawalUpdatedEvent(withdrawal=w))
    await _publish_balance(workflow, approved)
    return {"status": "success", "data": w.model_dump(mode="json")}


@router.post("/{withdrawal_id}/reject")
async def reject_withdrawal(withdrawal_id: str, body: WithdrawalAction,
                            workflow: WithdrawalWorkflow = Depends(get_withdrawal_workflow)):
    w = _out(await run_blocking(workflow.reject, withdrawal_id, body.operator, body.note))
    await publish(WithdrawalUpdatedEvent(withdrawal=w))
    return {"status": "success", "data": w.model_dump(mode="json")}
