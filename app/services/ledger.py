from decimal import Decimal
from typing import Optional
import logging

from app.services.errors import InsufficientBalance, InvalidInput
from app.services.pnl import to_decimal
from app.stores.base import BalanceStore

logger = logging.getLogger(__name__)


class BalanceLedger:
    """Single source of truth for spendable balance per (user, currency)."""

    def __init__(self, store: BalanceStore):
        self.store = store

    @staticmethod
    def _key(user_id: str, currency: str):
        if not user_id or not currency:
            raise InvalidInput("user_id and currency are required")
        return user_id, currency.upper()

    def get_balance(self, user_id: str, currency: str) -> Decimal:
        user_id, currency = self._key(user_id, currency)
        return self.store.get_balance(user_id, currency)

    def credit(self, user_id: str, currency: str, amount, reference: Optional[str] = None) -> Decimal:
        """Apply a signed amount. A loss larger than the balance floors it at zero."""
        user_id, currency = self._key(user_id, currency)
        amount = to_decimal(amount, "amount")
        if amount < 0:
            before = self.store.get_balance(user_id, currency)
            if before + amount < 0:
                logger.warning(
                    "credit of %s exceeds balance %s for %s/%s; flooring at zero",
                    amount, before, user_id, currency,
                    extra={"shortfall": str(-(before + amount)), "reference": reference},
                )
        balance = self.store.credit(user_id, currency, amount, reference=reference)
        logger.info("credited %s %s to %s (ref=%s) balance=%s", amount, currency, user_id, reference, balance)
        return balance

    def is_booked(self, reference: str) -> bool:
        return self.store.has_reference(reference)

    def debit(self, user_id: str, currency: str, amount, reference: Optional[str] = None) -> Decimal:
        user_id, currency = self._key(user_id, currency)
        amount = to_decimal(amount, "amount")
        if amount <= 0:
            raise InvalidInput(f"debit amount must be positive (got {amount})", field="amount")
        balance = self.store.debit(user_id, currency, amount, reference=reference)
        if balance is None:
            raise InsufficientBalance(
                f"balance below {amount} {currency} for {user_id}",
                user_id=user_id, currency=currency, amount=str(amount),
            )
        logger.info("debited %s %s from %s (ref=%s) balance=%s", amount, currency, user_id, reference, balance)
        return balance
