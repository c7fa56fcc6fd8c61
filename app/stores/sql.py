"""SQLAlchemy-backed stores.

Each call runs in its own short session. Conditional writes are single
`UPDATE ... WHERE <precondition>` statements and the affected row count
decides whether the compare-and-set won, so concurrent callers are
serialized by the database rather than by the application.
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from app.models.balance import BalanceEntry, LedgerEntry
from app.models.operation_log import OperationLog
from app.models.trade import Trade
from app.models.withdrawal import Withdrawal
from app.services.errors import StorageUnavailable
from app.stores.base import BalanceStore, OperationLogStore, TradeStore, WithdrawalStore
from app.stores.records import RESULT_PENDING, TradeRecord, WithdrawalRecord, as_utc

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
# optimistic retries when a concurrent write moves the balance between read and update
CREDIT_ATTEMPTS = 5


@contextmanager
def session_scope(session_factory):
    db = session_factory()
    try:
        yield db
        db.commit()
    except (OperationalError, InterfaceError, PoolTimeoutError) as e:
        _safe_rollback(db)
        logger.warning("store call failed: %s", e)
        raise StorageUnavailable(f"storage unavailable: {e.__class__.__name__}") from e
    except Exception:
        _safe_rollback(db)
        raise
    finally:
        db.close()


def _safe_rollback(db):
    try:
        db.rollback()
    except Exception:
        logger.exception("rollback failed")


def _trade_record(row: Trade) -> TradeRecord:
    return TradeRecord(
        id=row.id,
        user_id=row.user_id,
        pair=row.pair,
        side=row.side,
        leverage=row.leverage,
        amount=row.amount,
        currency=row.currency,
        entry_price=row.entry_price,
        expiry_ts=as_utc(row.expiry_ts),
        exit_price=row.exit_price,
        status=row.status,
        trade_result=row.trade_result,
        admin_action=row.admin_action,
        admin_action_at=as_utc(row.admin_action_at),
        admin_user_id=row.admin_user_id,
        result_determined_at=as_utc(row.result_determined_at),
        final_pnl=row.final_pnl,
        ledger_applied=bool(row.ledger_applied),
    )


def _withdrawal_record(row: Withdrawal) -> WithdrawalRecord:
    return WithdrawalRecord(
        id=row.id,
        user_id=row.user_id,
        currency=row.currency,
        amount=row.amount,
        wallet_address=row.wallet_address,
        status=row.status,
        operator=row.operator,
        admin_notes=row.admin_notes,
        created_at=as_utc(row.created_at),
        processed_at=as_utc(row.processed_at),
    )


class SqlTradeStore(TradeStore):
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def add(self, trade):
        with session_scope(self._session_factory) as db:
            db.add(Trade(
                id=trade.id,
                user_id=trade.user_id,
                pair=trade.pair,
                side=trade.side,
                leverage=trade.leverage,
                amount=trade.amount,
                currency=trade.currency,
                entry_price=trade.entry_price,
                exit_price=trade.exit_price,
                expiry_ts=as_utc(trade.expiry_ts),
                status=trade.status,
                trade_result=trade.trade_result,
                admin_action=trade.admin_action,
                admin_action_at=as_utc(trade.admin_action_at),
                admin_user_id=trade.admin_user_id,
                result_determined_at=as_utc(trade.result_determined_at),
                final_pnl=trade.final_pnl,
                ledger_applied=trade.ledger_applied,
            ))
        return trade

    def get(self, trade_id):
        with session_scope(self._session_factory) as db:
            row = db.get(Trade, trade_id)
            return _trade_record(row) if row else None

    def _conditional_update(self, trade_id, *conditions, **values):
        stmt = (
            update(Trade)
            .where(Trade.id == trade_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with session_scope(self._session_factory) as db:
            return db.execute(stmt).rowcount == 1

    def record_admin_action(self, trade_id, decision, at, admin_user_id=None):
        return self._conditional_update(
            trade_id,
            Trade.trade_result == RESULT_PENDING,
            admin_action=decision,
            admin_action_at=as_utc(at),
            admin_user_id=admin_user_id,
        )

    def mark_settled(self, trade_id, trade_result, status, final_pnl, exit_price, determined_at, admin_action):
        # the outcome is only valid for the admin decision it was computed from
        if admin_action is None:
            same_decision = Trade.admin_action.is_(None)
        else:
            same_decision = Trade.admin_action == admin_action
        values = dict(
            trade_result=trade_result,
            status=status,
            final_pnl=final_pnl,
            result_determined_at=as_utc(determined_at),
            ledger_applied=False,
        )
        if exit_price is not None:
            values["exit_price"] = exit_price
        return self._conditional_update(trade_id, Trade.trade_result == RESULT_PENDING, same_decision, **values)

    def mark_ledger_applied(self, trade_id):
        return self._conditional_update(trade_id, Trade.trade_result != RESULT_PENDING, ledger_applied=True)

    def list_expired_pending(self, now, limit):
        stmt = (
            select(Trade.id)
            .where(Trade.trade_result == RESULT_PENDING, Trade.expiry_ts <= as_utc(now))
            .order_by(Trade.expiry_ts)
            .limit(limit)
        )
        with session_scope(self._session_factory) as db:
            return list(db.execute(stmt).scalars())

    def list_unapplied(self, limit):
        stmt = (
            select(Trade.id)
            .where(Trade.trade_result != RESULT_PENDING, Trade.ledger_applied.is_(False))
            .order_by(Trade.result_determined_at)
            .limit(limit)
        )
        with session_scope(self._session_factory) as db:
            return list(db.execute(stmt).scalars())


class SqlBalanceStore(BalanceStore):
    def __init__(self, session_factory):
        self._session_factory = session_factory

    @staticmethod
    def _current(db, user_id, currency) -> Decimal:
        value = db.execute(
            select(BalanceEntry.balance).where(
                BalanceEntry.user_id == user_id, BalanceEntry.currency == currency)
        ).scalar_one_or_none()
        return ZERO if value is None else Decimal(value)

    @staticmethod
    def _booked(db, reference) -> bool:
        return db.execute(
            select(LedgerEntry.id).where(LedgerEntry.reference == reference)
        ).first() is not None

    def _ensure_entry(self, user_id, currency):
        try:
            with session_scope(self._session_factory) as db:
                if db.get(BalanceEntry, (user_id, currency)) is None:
                    db.add(BalanceEntry(user_id=user_id, currency=currency, balance=ZERO))
        except IntegrityError:
            # created by a concurrent first credit
            pass

    def get_balance(self, user_id, currency):
        with session_scope(self._session_factory) as db:
            return self._current(db, user_id, currency)

    def has_reference(self, reference):
        with session_scope(self._session_factory) as db:
            return self._booked(db, reference)

    def credit(self, user_id, currency, amount, reference=None):
        self._ensure_entry(user_id, currency)
        for _ in range(CREDIT_ATTEMPTS):
            try:
                with session_scope(self._session_factory) as db:
                    if reference is not None and self._booked(db, reference):
                        return self._current(db, user_id, currency)
                    before = self._current(db, user_id, currency)
                    after = max(before + amount, ZERO)
                    # compare-and-set on the balance we read so the journal holds the delta really applied
                    result = db.execute(
                        update(BalanceEntry)
                        .where(
                            BalanceEntry.user_id == user_id,
                            BalanceEntry.currency == currency,
                            BalanceEntry.balance == before,
                        )
                        .values(balance=after)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        continue
                    shortfall = -(before + amount) if before + amount < 0 else None
                    db.add(LedgerEntry(user_id=user_id, currency=currency, amount=after - before,
                                       balance_after=after, shortfall=shortfall, reference=reference))
                    db.flush()
                    return after
            except IntegrityError:
                # the same reference was booked concurrently; ours rolled back
                logger.info("ledger reference %s already booked", reference)
                return self.get_balance(user_id, currency)
        raise StorageUnavailable(f"balance {user_id}/{currency} kept changing during credit")

    def debit(self, user_id, currency, amount, reference=None):
        try:
            with session_scope(self._session_factory) as db:
                if reference is not None and self._booked(db, reference):
                    return self._current(db, user_id, currency)
                result = db.execute(
                    update(BalanceEntry)
                    .where(
                        BalanceEntry.user_id == user_id,
                        BalanceEntry.currency == currency,
                        BalanceEntry.balance >= amount,
                    )
                    .values(balance=BalanceEntry.balance - amount)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return None
                balance = self._current(db, user_id, currency)
                db.add(LedgerEntry(user_id=user_id, currency=currency, amount=-amount,
                                   balance_after=balance, reference=reference))
                db.flush()
                return balance
        except IntegrityError:
            logger.info("ledger reference %s already booked", reference)
            return self.get_balance(user_id, currency)


class SqlWithdrawalStore(WithdrawalStore):
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def add(self, withdrawal):
        created_at = as_utc(withdrawal.created_at) or datetime.now(timezone.utc)
        with session_scope(self._session_factory) as db:
            db.add(Withdrawal(
                id=withdrawal.id,
                user_id=withdrawal.user_id,
                currency=withdrawal.currency,
                amount=withdrawal.amount,
                wallet_address=withdrawal.wallet_address,
                status=withdrawal.status,
                operator=withdrawal.operator,
                admin_notes=withdrawal.admin_notes,
                created_at=created_at,
                processed_at=as_utc(withdrawal.processed_at),
            ))
        withdrawal.created_at = created_at
        return withdrawal

    def get(self, withdrawal_id):
        with session_scope(self._session_factory) as db:
            row = db.get(Withdrawal, withdrawal_id)
            return _withdrawal_record(row) if row else None

    def transition(self, withdrawal_id, from_status, to_status, operator=None, notes=None, processed_at=None):
        values = {"status": to_status}
        if operator is not None:
            values["operator"] = operator
        if notes is not None:
            values["admin_notes"] = notes
        if processed_at is not None:
            values["processed_at"] = as_utc(processed_at)
        stmt = (
            update(Withdrawal)
            .where(Withdrawal.id == withdrawal_id, Withdrawal.status == from_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with session_scope(self._session_factory) as db:
            return db.execute(stmt).rowcount == 1

    def restore(self, snapshot, from_status):
        stmt = (
            update(Withdrawal)
            .where(Withdrawal.id == snapshot.id, Withdrawal.status == from_status)
            .values(
                status=snapshot.status,
                operator=snapshot.operator,
                admin_notes=snapshot.admin_notes,
                processed_at=as_utc(snapshot.processed_at),
            )
            .execution_options(synchronize_session=False)
        )
        with session_scope(self._session_factory) as db:
            return db.execute(stmt).rowcount == 1

    def list(self, status, offset, limit):
        query = select(Withdrawal)
        count = select(func.count()).select_from(Withdrawal)
        if status is not None:
            query = query.where(Withdrawal.status == status)
            count = count.where(Withdrawal.status == status)
        query = query.order_by(Withdrawal.created_at.desc()).offset(offset).limit(limit)
        with session_scope(self._session_factory) as db:
            rows = db.execute(query).scalars().all()
            total = db.execute(count).scalar_one()
            return [_withdrawal_record(r) for r in rows], total


class SqlOperationLogStore(OperationLogStore):
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def record(self, entry):
        with session_scope(self._session_factory) as db:
            db.add(OperationLog(
                admin=entry.admin,
                action=entry.action,
                target=entry.target,
                details=entry.details,
                metadata_json=json.dumps(entry.metadata, default=str) if entry.metadata else None,
            ))
