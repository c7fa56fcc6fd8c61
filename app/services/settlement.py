"""Trade settlement.

A trade is resolved exactly once. The terminal outcome is first committed to
the trade record with a compare-and-set on `trade_result = pending` (the
durable intent), then the signed PnL is booked to the balance ledger under the
reference ``trade:<id>`` (the effect). If booking fails the trade stays
flagged `ledger_applied = False` and any later settle call or sweep books it;
the ledger reference keeps that retry from booking twice.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from app.config import settings
from app.services.audit import record_operation
from app.services.errors import (
    InvalidInput,
    LedgerError,
    SettlementContended,
    StorageUnavailable,
    TradeAlreadyCompleted,
    TradeNotExpired,
    TradeNotFound,
)
from app.services.ledger import BalanceLedger
from app.services.notifications import NullNotifier, Notifier, send_best_effort
from app.services.pnl import admin_override_pnl, calculate_pnl
from app.services.price_feed import PriceFeed
from app.stores.base import OperationLogStore, TradeStore
from app.stores.records import RESULT_LOSS, RESULT_WIN, TradeRecord, as_utc

logger = logging.getLogger(__name__)

# re-reads allowed when the trade changes between our read and the settle write
SETTLE_ATTEMPTS = 3


@dataclass
class SettlementResult:
    trade_id: str
    trade_result: str
    status: str
    final_pnl: Decimal
    balance: Optional[Decimal] = None


@dataclass
class SweepSummary:
    found: int = 0
    settled: int = 0
    skipped: int = 0
    reapplied: int = 0
    errors: List[dict] = field(default_factory=list)


def ledger_reference(trade_id: str) -> str:
    return f"trade:{trade_id}"


class TradeSettlementEngine:
    def __init__(self, trades: TradeStore, ledger: BalanceLedger, price_feed: PriceFeed,
                 notifier: Notifier = None, operation_log: OperationLogStore = None,
                 ledger_retries: int = None, retry_backoff: float = None, sleep=time.sleep):
        self.trades = trades
        self.ledger = ledger
        self.price_feed = price_feed
        self.notifier = notifier or NullNotifier()
        self.operation_log = operation_log
        self.ledger_retries = max(1, ledger_retries if ledger_retries is not None
                                  else settings.SETTLEMENT_LEDGER_RETRIES)
        self.retry_backoff = (retry_backoff if retry_backoff is not None
                              else settings.SETTLEMENT_RETRY_BACKOFF_SECONDS)
        self._sleep = sleep

    @staticmethod
    def _now(now: Optional[datetime]) -> datetime:
        return as_utc(now) if now is not None else datetime.now(timezone.utc)

    def _load(self, trade_id: str) -> TradeRecord:
        if not trade_id:
            raise InvalidInput("trade id is required")
        trade = self.trades.get(trade_id)
        if trade is None:
            logger.error("trade %s not found", trade_id)
            raise TradeNotFound(f"trade {trade_id} not found", trade_id=trade_id)
        return trade

    def record_admin_decision(self, trade_id: str, decision: str, admin_user_id: str = None,
                              now: datetime = None) -> TradeRecord:
        """Queue a win/loss override. The user keeps seeing OPEN until settlement."""
        decision = (decision or "").lower()
        if decision not in (RESULT_WIN, RESULT_LOSS):
            raise InvalidInput(f"decision must be win or loss (got {decision!r})", field="decision")
        trade = self._load(trade_id)
        if not trade.is_pending:
            raise TradeAlreadyCompleted(f"trade {trade_id} already resolved as {trade.trade_result}")

        at = self._now(now)
        if not self.trades.record_admin_action(trade_id, decision, at, admin_user_id):
            # settled between our read and the write
            raise TradeAlreadyCompleted(f"trade {trade_id} was settled concurrently")

        logger.info("admin decision %s recorded for trade %s by %s", decision, trade_id, admin_user_id)
        preview = admin_override_pnl(decision, trade.leverage, trade.amount)
        record_operation(
            self.operation_log, admin_user_id, f"trade_{decision}", target=trade_id,
            details=f"Set trade {trade_id} result to {decision}. P&L: {preview.pnl}",
            metadata={"trade_id": trade_id, "action": decision, "final_pnl": preview.pnl,
                      "trade_amount": trade.amount},
        )
        return replace(trade, admin_action=decision, admin_action_at=at, admin_user_id=admin_user_id)

    def settle_trade(self, trade_id: str, now: datetime = None) -> SettlementResult:
        now = self._now(now)
        for attempt in range(1, SETTLE_ATTEMPTS + 1):
            trade = self._load(trade_id)

            if not trade.is_pending:
                if attempt == 1 and not trade.ledger_applied:
                    return self._rebook(trade)
                logger.info("trade %s already settled as %s; nothing to do", trade_id, trade.trade_result)
                raise TradeAlreadyCompleted(f"trade {trade_id} already settled", trade_id=trade_id)

            if now < trade.expiry_ts:
                raise TradeNotExpired(f"trade {trade_id} expires at {trade.expiry_ts.isoformat()}")

            exit_price = None
            if trade.admin_action:
                outcome = admin_override_pnl(trade.admin_action, trade.leverage, trade.amount)
            else:
                exit_price = self.price_feed.get_price(trade.pair)
                outcome = calculate_pnl(trade.entry_price, exit_price, trade.side, trade.leverage, trade.amount)

            trade_result = outcome.outcome.lower()
            if self.trades.mark_settled(trade_id, trade_result, outcome.outcome, outcome.pnl, exit_price, now,
                                        trade.admin_action):
                break
            # settled elsewhere, or an admin decision landed after our read
            logger.info("trade %s changed while settling (attempt %d); re-reading", trade_id, attempt)
        else:
            raise SettlementContended(f"trade {trade_id} kept changing during settlement", trade_id=trade_id)

        settled = replace(trade, trade_result=trade_result, status=outcome.outcome, final_pnl=outcome.pnl,
                          exit_price=exit_price if exit_price is not None else trade.exit_price,
                          result_determined_at=now)
        logger.info(
            "trade %s settled %s pnl=%s (%s)", trade_id, outcome.outcome, outcome.pnl,
            f"admin {trade.admin_action}" if trade.admin_action else f"exit {exit_price}",
        )
        balance, _ = self._apply_ledger(settled)
        self._notify_settled(settled)
        return SettlementResult(trade.id, trade_result, outcome.outcome, outcome.pnl, balance)

    def _rebook(self, trade: TradeRecord) -> SettlementResult:
        """Book the PnL of a trade that settled but whose ledger credit never landed."""
        logger.warning("trade %s is settled but its PnL is not booked; booking now", trade.id)
        balance, booked_now = self._apply_ledger(trade)
        if booked_now:
            self._notify_settled(trade)
        return SettlementResult(trade.id, trade.trade_result, trade.status, trade.final_pnl, balance)

    def _notify_settled(self, trade: TradeRecord):
        sign = "+" if trade.final_pnl >= 0 else ""
        send_best_effort(
            self.notifier, trade.user_id, f"Trade {trade.status.lower()}",
            f"Your {trade.pair} {trade.side} trade closed with a {trade.status}: "
            f"{sign}{trade.final_pnl} {trade.currency}",
            "trade",
        )

    def _apply_ledger(self, trade: TradeRecord) -> Tuple[Decimal, bool]:
        """Book final_pnl under the trade's reference. Returns (balance, whether this call booked it)."""
        reference = ledger_reference(trade.id)
        last_error = None
        booked_now = None
        for attempt in range(1, self.ledger_retries + 1):
            try:
                if booked_now is None:
                    booked_now = not self.ledger.is_booked(reference)
                balance = self.ledger.credit(trade.user_id, trade.currency, trade.final_pnl, reference=reference)
                self.trades.mark_ledger_applied(trade.id)
                return balance, booked_now
            except StorageUnavailable as e:
                last_error = e
                logger.warning("booking PnL for trade %s failed (attempt %d/%d): %s",
                               trade.id, attempt, self.ledger_retries, e)
                if attempt < self.ledger_retries and self.retry_backoff:
                    self._sleep(self.retry_backoff * attempt)
        logger.error("PnL of trade %s is still unbooked; it will be retried on the next sweep", trade.id)
        raise last_error

    def settle_expired(self, now: datetime = None, limit: int = None) -> SweepSummary:
        """One scheduler pass: settle due trades, then book any PnL left unbooked."""
        now = self._now(now)
        limit = limit or settings.SETTLEMENT_BATCH_LIMIT
        summary = SweepSummary()

        due = self.trades.list_expired_pending(now, limit)
        summary.found = len(due)
        for trade_id in due:
            try:
                self.settle_trade(trade_id, now=now)
                summary.settled += 1
            except TradeAlreadyCompleted:
                summary.skipped += 1
            except LedgerError as e:
                logger.error("settling trade %s failed: %s", trade_id, e)
                summary.errors.append({"trade_id": trade_id, "code": e.code, "error": str(e)})

        for trade_id in self.trades.list_unapplied(limit):
            try:
                self.settle_trade(trade_id, now=now)
                summary.reapplied += 1
            except TradeAlreadyCompleted:
                pass
            except LedgerError as e:
                logger.error("re-booking trade %s failed: %s", trade_id, e)
                summary.errors.append({"trade_id": trade_id, "code": e.code, "error": str(e)})

        if summary.found or summary.reapplied or summary.errors:
            logger.info("settlement sweep: found=%d settled=%d skipped=%d reapplied=%d errors=%d",
                        summary.found, summary.settled, summary.skipped, summary.reapplied,
                        len(summary.errors))
        return summary
