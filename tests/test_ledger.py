from decimal import Decimal

import pytest

from app.services.errors import InsufficientBalance, InvalidInput
from app.services.ledger import BalanceLedger
from app.stores.memory import InMemoryBalanceStore
from app.stores.sql import SqlBalanceStore


@pytest.fixture(params=['memory', 'sql'])
def any_ledger(request, session_factory):
    if request.param == 'memory':
        return BalanceLedger(InMemoryBalanceStore())
    return BalanceLedger(SqlBalanceStore(session_factory))


def test_missing_balance_reads_as_zero(any_ledger):
    assert any_ledger.get_balance('nobody', 'USDT') == 0


def test_currency_is_case_insensitive(any_ledger):
    any_ledger.credit('user-1', 'usdt', Decimal('25.5'))
    assert any_ledger.get_balance('user-1', 'USDT') == Decimal('25.5')


def test_credit_then_debit(any_ledger):
    any_ledger.credit('user-1', 'USDT', Decimal('100'))
    assert any_ledger.debit('user-1', 'USDT', Decimal('30')) == Decimal('70')
    assert any_ledger.get_balance('user-1', 'USDT') == Decimal('70')


@pytest.mark.parametrize('amount', [0, -5, 'abc'])
def test_debit_rejects_non_positive_amounts(any_ledger, amount):
    with pytest.raises(InvalidInput):
        any_ledger.debit('user-1', 'USDT', amount)


def test_debit_never_overdraws(any_ledger):
    any_ledger.credit('user-1', 'USDT', Decimal('50'))
    with pytest.raises(InsufficientBalance) as exc:
        any_ledger.debit('user-1', 'USDT', Decimal('50.01'))
    assert exc.value.code == 'insufficient_balance'
    assert any_ledger.get_balance('user-1', 'USDT') == Decimal('50')


def test_debit_without_balance_row(any_ledger):
    with pytest.raises(InsufficientBalance):
        any_ledger.debit('ghost', 'USDT', Decimal('1'))


def test_large_loss_floors_at_zero(any_ledger, caplog):
    any_ledger.credit('user-1', 'USDT', Decimal('100'))
    with caplog.at_level('WARNING'):
        balance = any_ledger.credit('user-1', 'USDT', Decimal('-1000'))
    assert balance == 0
    assert any_ledger.get_balance('user-1', 'USDT') == 0
    assert 'flooring at zero' in caplog.text


def test_reference_books_only_once(any_ledger):
    any_ledger.credit('user-1', 'USDT', Decimal('100'))
    any_ledger.credit('user-1', 'USDT', Decimal('40'), reference='trade:t1')
    again = any_ledger.credit('user-1', 'USDT', Decimal('40'), reference='trade:t1')

    assert again == Decimal('140')
    assert any_ledger.is_booked('trade:t1')
    assert not any_ledger.is_booked('trade:t2')

    any_ledger.debit('user-1', 'USDT', Decimal('60'), reference='withdrawal:w1')
    any_ledger.debit('user-1', 'USDT', Decimal('60'), reference='withdrawal:w1')
    assert any_ledger.get_balance('user-1', 'USDT') == Decimal('80')


def test_requires_user_and_currency(any_ledger):
    with pytest.raises(InvalidInput):
        any_ledger.get_balance('', 'USDT')
    with pytest.raises(InvalidInput):
        any_ledger.credit('user-1', None, 1)


def test_journal_records_the_delta_actually_applied(balance_store):
    ledger = BalanceLedger(balance_store)
    ledger.credit('user-1', 'USDT', Decimal('100'))
    ledger.credit('user-1', 'USDT', Decimal('-1000'), reference='trade:t1')

    entry = balance_store.journal[-1]
    assert entry['amount'] == Decimal('-100')
    assert entry['shortfall'] == Decimal('900')
    assert sum(e['amount'] for e in balance_store.journal) == entry['balance_after']
