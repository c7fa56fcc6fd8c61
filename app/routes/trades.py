# app/routes/trades.py
from dataclasses import asdict
from fastapi import APIRouter, Depends
from app.dependencies import get_settlement_engine, run_blocking
from app.schemas.events import SettlementSweepEvent, TradeSettledEvent
from app.schemas.trade import AdminDecision, SettlementOut, SweepOut
from app.services.broadcaster import publish
from app.services.settlement import TradeSettlementEngine
import logging

router = APIRouter(prefix="/trades", tags=["Trades"])


@router.post("/settle-expired")
async def settle_expired(engine: TradeSettlementEngine = Depends(get_settlement_engine)):
    """Scheduler hook: settle every expired pending trade and book any unbooked PnL."""
    summary = await run_blocking(engine.settle_expired)
    out = SweepOut(**asdict(summary))
    if summary.settled or summary.reapplied:
        await publish(SettlementSweepEvent(summary=out))
    return {"status": "success", "data": out.model_dump(mode="json")}


@router.post("/{trade_id}/decision")
async def record_decision(trade_id: str, body: AdminDecision,
                          engine: TradeSettlementEngine = Depends(get_settlement_engine)):
    trade = await run_blocking(engine.record_admin_decision, trade_id, body.decision, body.admin_user_id)
    logging.info("Admin decision %s queued for trade %s", body.decision, trade_id)
    return {
        "status": "success",
        "data": {
            "trade_id": trade.id,
            "admin_action": trade.admin_action,
            "trade_status": trade.status,
            "trade_result": trade.trade_result,
        },
        "message": "Admin decision recorded. Trade will continue running until expiry.",
    }


@router.post("/{trade_id}/settle")
async def settle_trade(trade_id: str, engine: TradeSettlementEngine = Depends(get_settlement_engine)):
    result = await run_blocking(engine.settle_trade, trade_id)
    out = SettlementOut(**asdict(result))
    await publish(TradeSettledEvent(trade=out))
    return {"status": "success", "data": out.model_dump(mode="json")}
