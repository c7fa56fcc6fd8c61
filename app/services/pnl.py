from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from app.config import settings
from app.services.errors import InvalidInput

LONG = "LONG"
SHORT = "SHORT"
WIN = "WIN"
LOSS = "LOSS"

CENT = Decimal("0.01")


@dataclass(frozen=True)
class PnLResult:
    pnl: Decimal
    outcome: str  # WIN or LOSS


def to_decimal(value, field: str) -> Decimal:
    if isinstance(value, Decimal):
        dec = value
    else:
        try:
            # go through str so floats like 0.1 keep their printed value
            dec = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidInput(f"{field} is not a number: {value!r}", field=field)
    if not dec.is_finite():
        raise InvalidInput(f"{field} must be finite", field=field)
    return dec


def _positive(value, field: str) -> Decimal:
    dec = to_decimal(value, field)
    if dec <= 0:
        raise InvalidInput(f"{field} must be positive (got {value})", field=field)
    return dec


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_pnl(entry_price, exit_price, side: str, leverage, amount) -> PnLResult:
    """Signed PnL of a leveraged position closed at `exit_price`.

    raw = (exit - entry) / entry for LONG, (entry - exit) / entry for SHORT
    pnl = raw * leverage * amount, rounded to cents.
    A zero PnL classifies as WIN.
    """
    entry = _positive(entry_price, "entry_price")
    exit_ = _positive(exit_price, "exit_price")
    lev = _positive(leverage, "leverage")
    amt = _positive(amount, "amount")

    side = (side or "").upper()
    if side == LONG:
        raw = (exit_ - entry) / entry
    elif side == SHORT:
        raw = (entry - exit_) / entry
    else:
        raise InvalidInput(f"side must be LONG or SHORT (got {side!r})", field="side")

    pnl = round_money(raw * lev * amt)
    return PnLResult(pnl=pnl, outcome=WIN if pnl >= 0 else LOSS)


def admin_override_pnl(decision: str, leverage, amount) -> PnLResult:
    """PnL for a trade whose outcome was fixed by an admin before expiry.

    The exit price is ignored: a win pays half the leveraged stake, a loss
    costs the full leveraged stake.
    """
    lev = _positive(leverage, "leverage")
    amt = _positive(amount, "amount")
    decision = (decision or "").lower()
    if decision == "win":
        multiplier, outcome = Decimal(settings.ADMIN_WIN_MULTIPLIER), WIN
    elif decision == "loss":
        multiplier, outcome = Decimal(settings.ADMIN_LOSS_MULTIPLIER), LOSS
    else:
        raise InvalidInput(f"decision must be win or loss (got {decision!r})", field="decision")
    return PnLResult(pnl=round_money(amt * lev * multiplier), outcome=outcome)
