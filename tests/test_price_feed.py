from decimal import Decimal

import pytest

from app.services import price_feed
from app.services.errors import StorageUnavailable
from app.services.price_feed import YahooPriceFeed, to_feed_symbol


class FakeSeries:
    def __init__(self, values):
        self.iloc = values


class FakeHistory:
    def __init__(self, closes):
        self._closes = closes
        self.empty = not closes

    def __getitem__(self, column):
        assert column == 'Close'
        return FakeSeries(self._closes)


class FakeTicker:
    histories = {}

    def __init__(self, symbol):
        self.symbol = symbol

    def history(self, interval, period):
        result = self.histories[self.symbol]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def fake_yf(monkeypatch):
    FakeTicker.histories = {}
    monkeypatch.setattr(price_feed.yf, 'Ticker', FakeTicker)
    return FakeTicker.histories


@pytest.mark.parametrize('pair, symbol', [
    ('BTC/USDT', 'BTC-USD'),
    ('eth/usdt', 'ETH-USD'),
    ('SOLUSDT', 'SOL-USD'),
    ('XRP-USDC', 'XRP-USD'),
])
def test_feed_symbol(pair, symbol):
    assert to_feed_symbol(pair) == symbol


def test_uses_last_close(fake_yf):
    fake_yf['BTC-USD'] = FakeHistory([51000.5, 52000.25])
    assert YahooPriceFeed().get_price('BTC/USDT') == Decimal('52000.25')


def test_empty_history_is_unavailable(fake_yf):
    fake_yf['BTC-USD'] = FakeHistory([])
    with pytest.raises(StorageUnavailable):
        YahooPriceFeed().get_price('BTC/USDT')


def test_fetch_error_is_unavailable(fake_yf):
    fake_yf['ETH-USD'] = ConnectionError('boom')
    with pytest.raises(StorageUnavailable) as exc:
        YahooPriceFeed().get_price('ETH/USDT')
    assert exc.value.retryable is True
