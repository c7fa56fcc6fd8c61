from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.dependencies import get_ledger, get_settlement_engine, get_withdrawal_workflow
from app.main import app
from app.services.errors import StorageUnavailable
from app.services.ledger import BalanceLedger
from app.services.settlement import TradeSettlementEngine
from app.services.withdrawals import WithdrawalWorkflow
from conftest import StaticPriceFeed, make_trade, make_withdrawal

client = TestClient(app)


@pytest.fixture(autouse=True)
def overrides(settlement, workflow, ledger):
    app.dependency_overrides[get_settlement_engine] = lambda: settlement
    app.dependency_overrides[get_withdrawal_workflow] = lambda: workflow
    app.dependency_overrides[get_ledger] = lambda: ledger
    yield
    app.dependency_overrides.clear()


def test_root():
    resp = client.get('/')
    assert resp.status_code == 200
    assert 'running' in resp.json()['message']


def test_settle_trade_then_conflict(trade_store, balance_store):
    balance_store.credit('user-1', 'USDT', Decimal('1000'))
    trade = trade_store.add(make_trade())

    resp = client.post(f'/trades/{trade.id}/settle')
    assert resp.status_code == 200
    data = resp.json()['data']
    assert data['trade_result'] == 'win'
    assert data['status'] == 'WIN'
    assert Decimal(data['final_pnl']) == Decimal('40.00')
    assert Decimal(data['balance']) == Decimal('1040.00')

    resp = client.post(f'/trades/{trade.id}/settle')
    assert resp.status_code == 409
    body = resp.json()
    assert body == {
        'ok': False,
        'code': 'trade_already_completed',
        'message': body['message'],
        'retryable': False,
    }


def test_settle_unknown_trade():
    resp = client.post('/trades/nope/settle')
    assert resp.status_code == 404
    assert resp.json()['code'] == 'trade_not_found'


def test_price_feed_outage_is_retryable(trade_store, balance_store):
    failing_feed = StaticPriceFeed()

    def unavailable(pair):
        raise StorageUnavailable(f'price feed unavailable for {pair}')

    failing_feed.get_price = unavailable
    engine = TradeSettlementEngine(trade_store, BalanceLedger(balance_store), failing_feed, retry_backoff=0)
    app.dependency_overrides[get_settlement_engine] = lambda: engine
    trade = trade_store.add(make_trade())

    resp = client.post(f'/trades/{trade.id}/settle')

    assert resp.status_code == 503
    assert resp.json()['retryable'] is True
    assert trade_store.get(trade.id).trade_result == 'pending'


def test_admin_decision_keeps_trade_open(trade_store):
    trade = trade_store.add(make_trade())

    resp = client.post(f'/trades/{trade.id}/decision', json={'decision': 'loss', 'admin_user_id': 'admin-1'})

    assert resp.status_code == 200
    body = resp.json()
    assert body['data']['admin_action'] == 'loss'
    assert body['data']['trade_status'] == 'OPEN'
    assert body['data']['trade_result'] == 'pending'
    assert 'until expiry' in body['message']


def test_admin_decision_validates_body(trade_store):
    trade = trade_store.add(make_trade())
    resp = client.post(f'/trades/{trade.id}/decision', json={'decision': 'draw'})
    assert resp.status_code == 422


def test_settle_expired_sweep(trade_store):
    trade_store.add(make_trade())
    trade_store.add(make_trade())

    resp = client.post('/trades/settle-expired')

    assert resp.status_code == 200
    data = resp.json()['data']
    assert data['found'] == 2
    assert data['settled'] == 2
    assert data['errors'] == []


def test_withdrawal_review_flow(withdrawal_store, balance_store):
    balance_store.credit('user-1', 'USDT', Decimal('1000'))
    w = withdrawal_store.add(make_withdrawal(amount=Decimal('200')))

    resp = client.post(f'/withdrawals/{w.id}/lock', json={'operator': 'admin@example.com'})
    assert resp.status_code == 200
    assert resp.json()['data']['status'] == 'locked'

    resp = client.post(f'/withdrawals/{w.id}/lock', json={'operator': 'other@example.com'})
    assert resp.status_code == 409
    assert resp.json()['code'] == 'already_locked'

    resp = client.post(f'/withdrawals/{w.id}/approve', json={'operator': 'admin@example.com', 'note': 'ok'})
    assert resp.status_code == 200
    data = resp.json()['data']
    assert data['status'] == 'approved'
    assert data['processed_at'] is not None

    resp = client.get('/balances/user-1/usdt')
    assert resp.status_code == 200
    assert resp.json()['currency'] == 'USDT'
    assert Decimal(resp.json()['balance']) == Decimal('800')

    resp = client.post(f'/withdrawals/{w.id}/reject', json={'operator': 'admin@example.com'})
    assert resp.status_code == 409
    assert resp.json()['code'] == 'already_approved'


def test_withdrawal_insufficient_balance(withdrawal_store, balance_store):
    balance_store.credit('user-1', 'USDT', Decimal('10'))
    w = withdrawal_store.add(make_withdrawal(amount=Decimal('200')))

    resp = client.post(f'/withdrawals/{w.id}/approve', json={'operator': 'admin'})

    assert resp.status_code == 400
    assert resp.json()['code'] == 'insufficient_balance'
    assert withdrawal_store.get(w.id).status == 'pending'


def test_reject_and_missing_withdrawal(withdrawal_store):
    w = withdrawal_store.add(make_withdrawal())

    resp = client.post(f'/withdrawals/{w.id}/reject', json={'operator': 'admin'})
    assert resp.status_code == 200
    assert resp.json()['data']['admin_notes'] == 'Rejected by admin'

    resp = client.post('/withdrawals/missing/reject', json={'operator': 'admin'})
    assert resp.status_code == 404
    assert resp.json()['code'] == 'withdrawal_not_found'


def test_list_withdrawals(withdrawal_store):
    for _ in range(3):
        withdrawal_store.add(make_withdrawal())
    withdrawal_store.add(make_withdrawal(status='approved'))

    resp = client.get('/withdrawals', params={'status': 'pending', 'page_size': 20})
    assert resp.status_code == 200
    data = resp.json()['data']
    assert data['total'] == 3
    assert data['page_size'] == 20
    assert {item['status'] for item in data['items']} == {'pending'}

    resp = client.get('/withdrawals', params={'status': 'bogus'})
    assert resp.status_code == 400
    assert resp.json()['code'] == 'invalid_input'


def test_events_are_pushed_to_websocket_clients(withdrawal_store):
    w = withdrawal_store.add(make_withdrawal())

    with TestClient(app) as ws_client:
        with ws_client.websocket_connect('/ws/events') as ws:
            resp = ws_client.post(f'/withdrawals/{w.id}/lock', json={'operator': 'admin'})
            assert resp.status_code == 200
            event = ws.receive_json()

    assert event['type'] == 'withdrawal_updated'
    assert event['withdrawal']['id'] == w.id
    assert event['withdrawal']['status'] == 'locked'


class FailingRefreshLedger(BalanceLedger):
    """Serves the approval's balance check, then times out on every later read."""

    def __init__(self, store):
        super().__init__(store)
        self.reads = 0

    def get_balance(self, user_id, currency):
        self.reads += 1
        if self.reads > 1:
            raise StorageUnavailable('read timeout')
        return super().get_balance(user_id, currency)


def test_approval_succeeds_when_balance_refresh_fails(withdrawal_store, balance_store):
    balance_store.credit('user-1', 'USDT', Decimal('1000'))
    w = withdrawal_store.add(make_withdrawal(amount=Decimal('200')))
    workflow = WithdrawalWorkflow(withdrawal_store, FailingRefreshLedger(balance_store))
    app.dependency_overrides[get_withdrawal_workflow] = lambda: workflow

    resp = client.post(f'/withdrawals/{w.id}/approve', json={'operator': 'admin'})

    assert resp.status_code == 200
    assert resp.json()['data']['status'] == 'approved'
    assert withdrawal_store.get(w.id).status == 'approved'
    assert balance_store.get_balance('user-1', 'USDT') == Decimal('800')


def test_approval_pushes_withdrawal_and_balance_events(withdrawal_store, balance_store):
    balance_store.credit('user-1', 'USDT', Decimal('1000'))
    w = withdrawal_store.add(make_withdrawal(amount=Decimal('200')))

    with TestClient(app) as ws_client:
        with ws_client.websocket_connect('/ws/events') as ws:
            resp = ws_client.post(f'/withdrawals/{w.id}/approve', json={'operator': 'admin'})
            assert resp.status_code == 200
            first = ws.receive_json()
            second = ws.receive_json()

    assert first['type'] == 'withdrawal_updated'
    assert first['withdrawal']['status'] == 'approved'
    assert second['type'] == 'balance_update'
    assert second['user_id'] == 'user-1'
    assert Decimal(second['balance']) == Decimal('800')
