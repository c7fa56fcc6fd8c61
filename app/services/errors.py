"""Typed errors raised by the trade settlement and withdrawal core.

Every error carries a stable `code` callers can branch on, a `kind`
(validation, conflict, resource, transient, reconciliation) and whether the
caller may safely retry the same request.
"""

from typing import Any, Dict, Optional

VALIDATION = "validation"
CONFLICT = "conflict"
RESOURCE = "resource"
TRANSIENT = "transient"
RECONCILIATION = "reconciliation"


class LedgerError(Exception):
    code = "internal_error"
    kind = VALIDATION
    retryable = False

    def __init__(self, message: str = None, **context: Any):
        super().__init__(message or self.code)
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": False,
            "code": self.code,
            "message": str(self),
            "retryable": self.retryable,
        }


class InvalidInput(LedgerError):
    code = "invalid_input"


class TradeNotFound(LedgerError):
    code = "trade_not_found"
    kind = RESOURCE


class TradeAlreadyCompleted(LedgerError):
    code = "trade_already_completed"
    kind = CONFLICT


class SettlementContended(LedgerError):
    """The trade changed under every settlement attempt; safe to call again."""
    code = "settlement_contended"
    kind = CONFLICT
    retryable = True


class TradeNotExpired(LedgerError):
    code = "trade_not_expired"


class InsufficientBalance(LedgerError):
    code = "insufficient_balance"
    kind = RESOURCE


class InvalidRequest(LedgerError):
    """Base for withdrawal requests that cannot be processed in their current state."""
    code = "invalid_request"


class WithdrawalNotFound(InvalidRequest):
    code = "withdrawal_not_found"
    kind = RESOURCE


class AlreadyLocked(InvalidRequest):
    code = "already_locked"
    kind = CONFLICT


class AlreadyApproved(InvalidRequest):
    code = "already_approved"
    kind = CONFLICT


class AlreadyRejected(InvalidRequest):
    code = "already_rejected"
    kind = CONFLICT


class InvalidStatus(InvalidRequest):
    code = "invalid_status"
    kind = CONFLICT


class StorageUnavailable(LedgerError):
    code = "storage_unavailable"
    kind = TRANSIENT
    retryable = True


class ReconciliationRequired(LedgerError):
    """A rollback after a partial failure did not succeed; needs manual repair."""
    code = "reconciliation_required"
    kind = RECONCILIATION

    def __init__(self, message: str = None, entity_id: Optional[str] = None,
                 attempted_state: Optional[str] = None, actual_state: Optional[str] = None, **context: Any):
        super().__init__(message, **context)
        self.entity_id = entity_id
        self.attempted_state = attempted_state
        self.actual_state = actual_state


def http_status_for(error: LedgerError) -> int:
    if isinstance(error, (TradeNotFound, WithdrawalNotFound)):
        return 404
    if error.kind == CONFLICT:
        return 409
    if error.kind == TRANSIENT:
        return 503
    if error.kind == RECONCILIATION:
        return 500
    return 400
