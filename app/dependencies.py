import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor

from app.config import settings
from app.database import SessionLocal
from app.services.ledger import BalanceLedger
from app.services.notifications import DbNotifier
from app.services.price_feed import YahooPriceFeed
from app.services.settlement import TradeSettlementEngine
from app.services.withdrawals import WithdrawalWorkflow
from app.stores.sql import SqlBalanceStore, SqlOperationLogStore, SqlTradeStore, SqlWithdrawalStore


def get_ledger() -> BalanceLedger:
    return BalanceLedger(SqlBalanceStore(SessionLocal))


def get_settlement_engine() -> TradeSettlementEngine:
    return TradeSettlementEngine(
        trades=SqlTradeStore(SessionLocal),
        ledger=get_ledger(),
        price_feed=YahooPriceFeed(),
        notifier=DbNotifier(SessionLocal),
        operation_log=SqlOperationLogStore(SessionLocal),
    )


def get_withdrawal_workflow() -> WithdrawalWorkflow:
    return WithdrawalWorkflow(
        withdrawals=SqlWithdrawalStore(SessionLocal),
        ledger=get_ledger(),
        notifier=DbNotifier(SessionLocal),
        operation_log=SqlOperationLogStore(SessionLocal),
    )


executor = ThreadPoolExecutor(max_workers=settings.WORKER_THREADS)


async def run_blocking(fn, *args, **kwargs):
    """Run a blocking core call off the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(executor, functools.partial(fn, *args, **kwargs))
