import logging
from typing import Any, Dict, Optional

from app.stores.base import OperationLogStore
from app.stores.records import OperationRecord

logger = logging.getLogger(__name__)


def record_operation(store: Optional[OperationLogStore], admin: str, action: str, target: str = None,
                     details: str = None, metadata: Dict[str, Any] = None) -> None:
    """Append to the operation log. Failures are logged and do not affect the caller."""
    if store is None:
        return
    try:
        store.record(OperationRecord(admin=admin or "system", action=action, target=target,
                                     details=details, metadata=metadata or {}))
    except Exception:
        logger.exception("operation log write failed", extra={"action": action, "target": target})


def report_reconciliation(store: Optional[OperationLogStore], entity: str, entity_id: str,
                          attempted_state: str, actual_state: str, reason: str) -> None:
    """Durable record of a partial failure that could not be rolled back."""
    logger.critical(
        "RECONCILIATION REQUIRED %s %s: attempted=%s actual=%s reason=%s",
        entity, entity_id, attempted_state, actual_state, reason,
        extra={"entity": entity, "entity_id": entity_id,
               "attempted_state": attempted_state, "actual_state": actual_state},
    )
    record_operation(
        store, "system", "reconciliation_required", target=entity_id,
        details=f"{entity} {entity_id}: attempted {attempted_state}, actual {actual_state}: {reason}",
        metadata={"entity": entity, "attempted_state": attempted_state,
                  "actual_state": actual_state, "reason": reason},
    )
