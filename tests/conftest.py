import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_ledger.db")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from app.database import Base, make_engine
from app.models.balance import BalanceEntry, LedgerEntry  # noqa: F401
from app.models.notification import Notification  # noqa: F401
from app.models.operation_log import OperationLog  # noqa: F401
from app.models.trade import Trade  # noqa: F401
from app.models.withdrawal import Withdrawal  # noqa: F401
from app.services.ledger import BalanceLedger
from app.services.notifications import Notifier
from app.services.price_feed import PriceFeed
from app.services.settlement import TradeSettlementEngine
from app.services.withdrawals import WithdrawalWorkflow
from app.stores.memory import (
    InMemoryBalanceStore,
    InMemoryOperationLogStore,
    InMemoryTradeStore,
    InMemoryWithdrawalStore,
)
from app.stores.records import TradeRecord, WithdrawalRecord

NOW = datetime(2025, 12, 16, 12, 0, tzinfo=timezone.utc)


class StaticPriceFeed(PriceFeed):
    def __init__(self, prices=None):
        self.prices = {k: Decimal(str(v)) for k, v in (prices or {}).items()}
        self.calls = []

    def get_price(self, pair):
        self.calls.append(pair)
        return self.prices[pair]


class RecordingNotifier(Notifier):
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def notify(self, user_id, title, message, category):
        if self.fail:
            raise ConnectionError("notification service down")
        self.sent.append({"user_id": user_id, "title": title, "message": message, "category": category})


def make_trade(**overrides) -> TradeRecord:
    values = dict(
        id=str(uuid.uuid4()),
        user_id="user-1",
        pair="BTC/USDT",
        side="LONG",
        leverage=20,
        amount=Decimal("50"),
        currency="USDT",
        entry_price=Decimal("50000"),
        expiry_ts=NOW - timedelta(minutes=1),
    )
    values.update(overrides)
    return TradeRecord(**values)


def make_withdrawal(**overrides) -> WithdrawalRecord:
    values = dict(
        id=str(uuid.uuid4()),
        user_id="user-1",
        currency="USDT",
        amount=Decimal("200"),
        wallet_address="TXyz123walletaddress",
    )
    values.update(overrides)
    return WithdrawalRecord(**values)


@pytest.fixture
def trade_store():
    return InMemoryTradeStore()


@pytest.fixture
def balance_store():
    return InMemoryBalanceStore()


@pytest.fixture
def withdrawal_store():
    return InMemoryWithdrawalStore()


@pytest.fixture
def op_log():
    return InMemoryOperationLogStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def price_feed():
    return StaticPriceFeed({"BTC/USDT": "52000", "ETH/USDT": "3400"})


@pytest.fixture
def ledger(balance_store):
    return BalanceLedger(balance_store)


@pytest.fixture
def settlement(trade_store, ledger, price_feed, notifier, op_log):
    return TradeSettlementEngine(trade_store, ledger, price_feed, notifier=notifier,
                                 operation_log=op_log, ledger_retries=3, retry_backoff=0)


@pytest.fixture
def workflow(withdrawal_store, ledger, notifier, op_log):
    return WithdrawalWorkflow(withdrawal_store, ledger, notifier=notifier, operation_log=op_log)


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    engine.dispose()
