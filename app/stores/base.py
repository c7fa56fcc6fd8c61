"""Storage ports used by the settlement engine and the withdrawal workflow.

Implementations must make every conditional method a single atomic
compare-and-set: the boolean they return tells whether the precondition held
and the write happened. Timeouts and lost connections are raised as
`StorageUnavailable`.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from app.stores.records import OperationRecord, TradeRecord, WithdrawalRecord


class TradeStore(ABC):

    @abstractmethod
    def add(self, trade: TradeRecord) -> TradeRecord:
        ...

    @abstractmethod
    def get(self, trade_id: str) -> Optional[TradeRecord]:
        ...

    @abstractmethod
    def record_admin_action(self, trade_id: str, decision: str, at: datetime,
                            admin_user_id: Optional[str] = None) -> bool:
        """Store an override decision, only while trade_result is pending."""

    @abstractmethod
    def mark_settled(self, trade_id: str, trade_result: str, status: str, final_pnl: Decimal,
                     exit_price: Optional[Decimal], determined_at: datetime,
                     admin_action: Optional[str]) -> bool:
        """Move trade_result from pending to a terminal value.

        False if the trade is no longer pending or its admin_action differs
        from the one the outcome was computed from.
        """

    @abstractmethod
    def mark_ledger_applied(self, trade_id: str) -> bool:
        ...

    @abstractmethod
    def list_expired_pending(self, now: datetime, limit: int) -> List[str]:
        """Ids of pending trades with expiry_ts <= now, oldest expiry first."""

    @abstractmethod
    def list_unapplied(self, limit: int) -> List[str]:
        """Ids of settled trades whose PnL has not reached the ledger yet."""


class BalanceStore(ABC):

    @abstractmethod
    def get_balance(self, user_id: str, currency: str) -> Decimal:
        """Current balance, zero when no entry exists."""

    @abstractmethod
    def credit(self, user_id: str, currency: str, amount: Decimal,
               reference: Optional[str] = None) -> Decimal:
        """Add a signed amount, flooring the balance at zero. Returns the new balance.

        A reference that was already booked makes the call a no-op.
        """

    @abstractmethod
    def debit(self, user_id: str, currency: str, amount: Decimal,
              reference: Optional[str] = None) -> Optional[Decimal]:
        """Subtract `amount` only if balance >= amount, in one conditional update.

        Returns the new balance, or None when the balance was insufficient.
        """

    @abstractmethod
    def has_reference(self, reference: str) -> bool:
        ...


class WithdrawalStore(ABC):

    @abstractmethod
    def add(self, withdrawal: WithdrawalRecord) -> WithdrawalRecord:
        ...

    @abstractmethod
    def get(self, withdrawal_id: str) -> Optional[WithdrawalRecord]:
        ...

    @abstractmethod
    def transition(self, withdrawal_id: str, from_status: str, to_status: str,
                   operator: Optional[str] = None, notes: Optional[str] = None,
                   processed_at: Optional[datetime] = None) -> bool:
        """Set status to `to_status` only if it currently equals `from_status`."""

    @abstractmethod
    def restore(self, snapshot: WithdrawalRecord, from_status: str) -> bool:
        """Put status/operator/notes/processed_at back to `snapshot` if status is `from_status`."""

    @abstractmethod
    def list(self, status: Optional[str], offset: int, limit: int) -> Tuple[List[WithdrawalRecord], int]:
        """A page of withdrawals, newest first, and the total matching count."""


class OperationLogStore(ABC):

    @abstractmethod
    def record(self, entry: OperationRecord) -> None:
        ...
