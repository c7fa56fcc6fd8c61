"""In-process stores with the same compare-and-set semantics as the SQL ones.

Used by the tests and by anything that needs the core without a database.
Records are copied on the way in and out so callers never share state with
the store.
"""

import threading
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from app.stores.base import BalanceStore, OperationLogStore, TradeStore, WithdrawalStore
from app.stores.records import (
    RESULT_PENDING,
    OperationRecord,
    TradeRecord,
    WithdrawalRecord,
)


class InMemoryTradeStore(TradeStore):
    def __init__(self):
        self._trades: Dict[str, TradeRecord] = {}
        self._lock = threading.Lock()

    def add(self, trade):
        with self._lock:
            self._trades[trade.id] = replace(trade)
        return replace(trade)

    def get(self, trade_id):
        with self._lock:
            t = self._trades.get(trade_id)
            return replace(t) if t else None

    def record_admin_action(self, trade_id, decision, at, admin_user_id=None):
        with self._lock:
            t = self._trades.get(trade_id)
            if t is None or t.trade_result != RESULT_PENDING:
                return False
            t.admin_action = decision
            t.admin_action_at = at
            t.admin_user_id = admin_user_id
            return True

    def mark_settled(self, trade_id, trade_result, status, final_pnl, exit_price, determined_at, admin_action):
        with self._lock:
            t = self._trades.get(trade_id)
            if t is None or t.trade_result != RESULT_PENDING or t.admin_action != admin_action:
                return False
            t.trade_result = trade_result
            t.status = status
            t.final_pnl = final_pnl
            if exit_price is not None:
                t.exit_price = exit_price
            t.result_determined_at = determined_at
            t.ledger_applied = False
            return True

    def mark_ledger_applied(self, trade_id):
        with self._lock:
            t = self._trades.get(trade_id)
            if t is None or t.trade_result == RESULT_PENDING:
                return False
            t.ledger_applied = True
            return True

    def list_expired_pending(self, now, limit):
        with self._lock:
            due = [t for t in self._trades.values()
                   if t.trade_result == RESULT_PENDING and t.expiry_ts <= now]
        due.sort(key=lambda t: t.expiry_ts)
        return [t.id for t in due[:limit]]

    def list_unapplied(self, limit):
        with self._lock:
            ids = [t.id for t in self._trades.values()
                   if t.trade_result != RESULT_PENDING and not t.ledger_applied]
        return ids[:limit]


class InMemoryBalanceStore(BalanceStore):
    def __init__(self, balances: Dict[Tuple[str, str], Decimal] = None):
        self._balances: Dict[Tuple[str, str], Decimal] = dict(balances or {})
        self._references = set()
        self.journal: List[dict] = []
        self._lock = threading.Lock()

    def get_balance(self, user_id, currency):
        with self._lock:
            return self._balances.get((user_id, currency), Decimal("0"))

    def _book(self, key, amount, new_balance, reference, shortfall=None):
        self._balances[key] = new_balance
        if reference is not None:
            self._references.add(reference)
        self.journal.append({
            "user_id": key[0], "currency": key[1], "amount": amount,
            "balance_after": new_balance, "shortfall": shortfall, "reference": reference,
        })

    def credit(self, user_id, currency, amount, reference=None):
        key = (user_id, currency)
        with self._lock:
            current = self._balances.get(key, Decimal("0"))
            if reference is not None and reference in self._references:
                return current
            new_balance = max(current + amount, Decimal("0"))
            shortfall = -(current + amount) if current + amount < 0 else None
            self._book(key, new_balance - current, new_balance, reference, shortfall)
            return new_balance

    def debit(self, user_id, currency, amount, reference=None):
        key = (user_id, currency)
        with self._lock:
            current = self._balances.get(key, Decimal("0"))
            if reference is not None and reference in self._references:
                return current
            if current < amount:
                return None
            new_balance = current - amount
            self._book(key, -amount, new_balance, reference)
            return new_balance

    def has_reference(self, reference):
        with self._lock:
            return reference in self._references


class InMemoryWithdrawalStore(WithdrawalStore):
    def __init__(self):
        self._items: Dict[str, WithdrawalRecord] = {}
        self._lock = threading.Lock()

    def add(self, withdrawal):
        if withdrawal.created_at is None:
            withdrawal = replace(withdrawal, created_at=datetime.now(timezone.utc))
        with self._lock:
            self._items[withdrawal.id] = replace(withdrawal)
        return replace(withdrawal)

    def get(self, withdrawal_id):
        with self._lock:
            w = self._items.get(withdrawal_id)
            return replace(w) if w else None

    def transition(self, withdrawal_id, from_status, to_status, operator=None, notes=None, processed_at=None):
        with self._lock:
            w = self._items.get(withdrawal_id)
            if w is None or w.status != from_status:
                return False
            w.status = to_status
            if operator is not None:
                w.operator = operator
            if notes is not None:
                w.admin_notes = notes
            if processed_at is not None:
                w.processed_at = processed_at
            return True

    def restore(self, snapshot, from_status):
        with self._lock:
            w = self._items.get(snapshot.id)
            if w is None or w.status != from_status:
                return False
            w.status = snapshot.status
            w.operator = snapshot.operator
            w.admin_notes = snapshot.admin_notes
            w.processed_at = snapshot.processed_at
            return True

    def list(self, status, offset, limit):
        with self._lock:
            items = [replace(w) for w in self._items.values() if status is None or w.status == status]
        items.sort(key=lambda w: w.created_at, reverse=True)
        return items[offset:offset + limit], len(items)


class InMemoryOperationLogStore(OperationLogStore):
    def __init__(self):
        self.entries: List[OperationRecord] = []

    def record(self, entry):
        if entry.created_at is None:
            entry = replace(entry, created_at=datetime.now(timezone.utc))
        self.entries.append(entry)
