"""Withdrawal review workflow.

    pending --lock--> locked --approve--> approved
    locked  --reject--> rejected
    pending --approve or reject--> approved or rejected

Approval writes the status and then debits the ledger. If the debit fails the
status is put back to what it was before approval; if that also fails the
withdrawal is reported for manual reconciliation.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import List, Optional

from app.services.audit import record_operation, report_reconciliation
from app.services.errors import (
    AlreadyApproved,
    AlreadyLocked,
    AlreadyRejected,
    InsufficientBalance,
    InvalidInput,
    InvalidStatus,
    LedgerError,
    ReconciliationRequired,
    StorageUnavailable,
    WithdrawalNotFound,
)
from app.services.ledger import BalanceLedger
from app.services.notifications import NullNotifier, Notifier, send_best_effort
from app.stores.base import OperationLogStore, WithdrawalStore
from app.stores.records import (
    W_APPROVED,
    W_LOCKED,
    W_OPEN_STATES,
    W_PENDING,
    W_REJECTED,
    WithdrawalRecord,
    as_utc,
)

logger = logging.getLogger(__name__)

PAGE_SIZES = (10, 20, 50)
STATUSES = (W_PENDING, W_LOCKED, W_APPROVED, W_REJECTED)


@dataclass
class WithdrawalPage:
    items: List[WithdrawalRecord]
    total: int
    page: int
    page_size: int


def ledger_reference(withdrawal_id: str) -> str:
    return f"withdrawal:{withdrawal_id}"


class WithdrawalWorkflow:
    def __init__(self, withdrawals: WithdrawalStore, ledger: BalanceLedger, notifier: Notifier = None,
                 operation_log: OperationLogStore = None):
        self.withdrawals = withdrawals
        self.ledger = ledger
        self.notifier = notifier or NullNotifier()
        self.operation_log = operation_log

    def _load(self, withdrawal_id: str) -> WithdrawalRecord:
        if not withdrawal_id:
            raise InvalidInput("withdrawal id is required")
        w = self.withdrawals.get(withdrawal_id)
        if w is None:
            logger.warning("withdrawal %s not found", withdrawal_id)
            raise WithdrawalNotFound(f"withdrawal {withdrawal_id} not found")
        return w

    @staticmethod
    def _now(now):
        return as_utc(now) if now is not None else datetime.now(timezone.utc)

    @staticmethod
    def _refuse_approval(w: WithdrawalRecord):
        if w.status == W_APPROVED:
            raise AlreadyApproved(f"withdrawal {w.id} is already approved")
        raise InvalidStatus(f"withdrawal {w.id} cannot be approved from status {w.status}")

    @staticmethod
    def _refuse_rejection(w: WithdrawalRecord):
        if w.status == W_APPROVED:
            raise AlreadyApproved(f"withdrawal {w.id} is already approved")
        if w.status == W_REJECTED:
            raise AlreadyRejected(f"withdrawal {w.id} is already rejected")
        raise InvalidStatus(f"withdrawal {w.id} cannot be rejected from status {w.status}")

    def lock(self, withdrawal_id: str, operator: str) -> WithdrawalRecord:
        """Claim a pending withdrawal for review."""
        w = self._load(withdrawal_id)
        if w.status != W_PENDING or not self.withdrawals.transition(withdrawal_id, W_PENDING, W_LOCKED,
                                                                   operator=operator):
            current = self.withdrawals.get(withdrawal_id) or w
            raise AlreadyLocked(f"withdrawal {withdrawal_id} is not pending (status {current.status})")
        logger.info("withdrawal %s locked by %s", withdrawal_id, operator)
        record_operation(self.operation_log, operator, "lock_withdrawal", target=withdrawal_id,
                         metadata={"previous_status": w.status})
        return replace(w, status=W_LOCKED, operator=operator)

    def approve(self, withdrawal_id: str, operator: str, note: str = None, now: datetime = None) -> WithdrawalRecord:
        w = self._load(withdrawal_id)
        if w.status not in W_OPEN_STATES:
            self._refuse_approval(w)

        balance = self.ledger.get_balance(w.user_id, w.currency)
        if balance < w.amount:
            raise InsufficientBalance(
                f"balance {balance} {w.currency} is below withdrawal amount {w.amount}",
                user_id=w.user_id, currency=w.currency,
            )

        processed_at = self._now(now)
        if not self.withdrawals.transition(withdrawal_id, w.status, W_APPROVED, operator=operator,
                                           notes=note, processed_at=processed_at):
            self._refuse_approval(self.withdrawals.get(withdrawal_id) or w)

        try:
            new_balance = self.ledger.debit(w.user_id, w.currency, w.amount,
                                            reference=ledger_reference(withdrawal_id))
        except LedgerError as e:
            if not self._recover_failed_debit(w, e):
                raise
            new_balance = None

        approved = replace(w, status=W_APPROVED, operator=operator,
                           admin_notes=note if note is not None else w.admin_notes, processed_at=processed_at)
        logger.info("withdrawal %s approved by %s: %s %s debited, balance=%s",
                    withdrawal_id, operator, w.amount, w.currency, new_balance)
        record_operation(
            self.operation_log, operator, "approve_withdrawal", target=withdrawal_id,
            metadata={"amount": w.amount, "currency": w.currency, "previous_status": w.status,
                      "balance_after": new_balance},
        )
        send_best_effort(
            self.notifier, w.user_id, "Withdrawal approved",
            f"Your withdrawal of {w.amount} {w.currency} to {w.wallet_address} has been approved.",
            "withdrawal",
        )
        return approved

    def _recover_failed_debit(self, snapshot: WithdrawalRecord, cause: LedgerError) -> bool:
        """True if the debit did land and the approval stands; False once the status is reverted."""
        reference = ledger_reference(snapshot.id)
        if isinstance(cause, StorageUnavailable):
            # the debit may have committed even though we saw an error
            try:
                booked = self.ledger.is_booked(reference)
            except LedgerError as e:
                report_reconciliation(self.operation_log, "withdrawal", snapshot.id, W_APPROVED,
                                      "unknown", f"debit outcome unknown: {cause}; check failed: {e}")
                raise ReconciliationRequired(
                    f"withdrawal {snapshot.id} approved but debit outcome unknown",
                    entity_id=snapshot.id, attempted_state=snapshot.status, actual_state=W_APPROVED,
                ) from cause
            if booked:
                logger.warning("debit for withdrawal %s committed despite error %s; keeping approval",
                               snapshot.id, cause)
                return True

        logger.warning("debit for withdrawal %s failed (%s); reverting status to %s",
                       snapshot.id, cause.code, snapshot.status)
        try:
            restored = self.withdrawals.restore(snapshot, W_APPROVED)
            reason = "status changed during rollback"
        except LedgerError as e:
            restored, reason = False, f"rollback write failed: {e}"
        if not restored:
            report_reconciliation(self.operation_log, "withdrawal", snapshot.id, snapshot.status,
                                  W_APPROVED, f"{reason}; debit error: {cause.code}")
            raise ReconciliationRequired(
                f"withdrawal {snapshot.id} left approved without a debit",
                entity_id=snapshot.id, attempted_state=snapshot.status, actual_state=W_APPROVED,
            ) from cause
        return False

    def reject(self, withdrawal_id: str, operator: str, note: str = None, now: datetime = None) -> WithdrawalRecord:
        w = self._load(withdrawal_id)
        if w.status not in W_OPEN_STATES:
            self._refuse_rejection(w)

        processed_at = self._now(now)
        note = note or "Rejected by admin"
        if not self.withdrawals.transition(withdrawal_id, w.status, W_REJECTED, operator=operator,
                                           notes=note, processed_at=processed_at):
            self._refuse_rejection(self.withdrawals.get(withdrawal_id) or w)

        logger.info("withdrawal %s rejected by %s", withdrawal_id, operator)
        record_operation(
            self.operation_log, operator, "reject_withdrawal", target=withdrawal_id, details=note,
            metadata={"amount": w.amount, "currency": w.currency, "previous_status": w.status},
        )
        send_best_effort(
            self.notifier, w.user_id, "Withdrawal rejected",
            f"Your withdrawal of {w.amount} {w.currency} was rejected: {note}",
            "withdrawal",
        )
        return replace(w, status=W_REJECTED, operator=operator, admin_notes=note, processed_at=processed_at)

    def list_withdrawals(self, status: str = "all", page: int = 1, page_size: int = 10) -> WithdrawalPage:
        page_size = page_size if page_size in PAGE_SIZES else PAGE_SIZES[0]
        page = max(1, page or 1)
        if status in (None, "", "all"):
            status = None
        elif status not in STATUSES:
            raise InvalidInput(f"unknown withdrawal status {status!r}", field="status")
        items, total = self.withdrawals.list(status, (page - 1) * page_size, page_size)
        return WithdrawalPage(items=items, total=total, page=page, page_size=page_size)
