import logging
from abc import ABC, abstractmethod
from decimal import Decimal

import yfinance as yf

from app.services.errors import StorageUnavailable

logger = logging.getLogger(__name__)


class PriceFeed(ABC):
    @abstractmethod
    def get_price(self, pair: str) -> Decimal:
        """Current reference price for a trading pair such as BTC/USDT."""


def to_feed_symbol(pair: str) -> str:
    """BTC/USDT, BTCUSDT or BTC-USDT -> BTC-USD (Yahoo quotes crypto against USD)."""
    pair = pair.upper().replace("-", "/")
    if "/" in pair:
        base = pair.split("/", 1)[0]
    else:
        base = pair
        for quote in ("USDT", "USDC", "USD"):
            if pair.endswith(quote) and len(pair) > len(quote):
                base = pair[: -len(quote)]
                break
    return f"{base}-USD"


class YahooPriceFeed(PriceFeed):
    def __init__(self, interval: str = "1m", period: str = "1d"):
        self.interval = interval
        self.period = period

    def get_price(self, pair):
        symbol = to_feed_symbol(pair)
        try:
            df = yf.Ticker(symbol).history(interval=self.interval, period=self.period)
        except Exception as e:
            logger.error("price fetch failed for %s: %s", symbol, e)
            raise StorageUnavailable(f"price feed unavailable for {pair}") from e
        if df is None or df.empty:
            logger.warning("no price data returned for %s", symbol)
            raise StorageUnavailable(f"no price data for {pair}")
        price = Decimal(str(float(df["Close"].iloc[-1])))
        logger.info("price %s=%s", symbol, price)
        return price
