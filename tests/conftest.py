"""
Pytest configuration and fixtures for the trading bot tests.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from candle_bot.data.models import Balance, CoinDetail, PriceTick, Trade, TradeStatus
from candle_bot.exceptions import MarketDataError
from candle_bot.risk.balance import BalanceLedger
from candle_bot.risk.trade_manager import TradeManager
from candle_bot.utils.config import (
    CandleAnalysisConfig,
    SchedulerConfig,
    Settings,
    TradingConfig,
)

TEST_SYMBOL = "BTC-USDT"
BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryStore:
    """Store double keeping documents in dictionaries."""

    def __init__(self):
        self.coins: Dict[str, CoinDetail] = {}
        self.ticks: List[PriceTick] = []
        self.trades: Dict[str, Trade] = {}
        self.balance: Optional[Balance] = None
        self._next_id = 0
        self.fail_adjust_balance = False

    async def ensure_indexes(self):
        pass

    def close(self):
        pass

    async def get_all_coin_details(self):
        return list(self.coins.values())

    async def upsert_coin_details(self, coins):
        for coin in coins:
            existing = self.coins.get(coin.symbol)
            if existing is not None:
                coin = replace(coin, first_price=existing.first_price)
            self.coins[coin.symbol] = coin
        return len(coins)

    async def insert_price_ticks(self, ticks):
        self.ticks.extend(ticks)
        return len(ticks)

    async def get_price_ticks_since(self, since):
        return sorted((t for t in self.ticks if t.timestamp >= since), key=lambda t: t.timestamp)

    async def cleanup_old_price_ticks(self, older_than):
        before = len(self.ticks)
        self.ticks = [t for t in self.ticks if t.timestamp >= older_than]
        return before - len(self.ticks)

    async def insert_trade(self, trade):
        self._next_id += 1
        trade.id = f"{self._next_id:024x}"
        self.trades[trade.id] = replace(trade)
        return trade

    async def update_trade(self, trade):
        self.trades[trade.id] = replace(trade)

    async def get_open_trades(self):
        return [replace(t) for t in self.trades.values() if t.status == TradeStatus.OPEN]

    async def get_trades(self, status=None, limit=0):
        trades = [replace(t) for t in self.trades.values() if status is None or t.status == status]
        return trades[:limit] if limit else trades

    async def flag_trades_for_forced_close(self, symbol):
        count = 0
        for trade in self.trades.values():
            if trade.symbol == symbol and trade.status == TradeStatus.OPEN:
                trade.close_forcefully = True
                count += 1
        return count

    async def get_balance(self):
        return replace(self.balance) if self.balance else None

    async def set_balance(self, amount):
        self.balance = Balance(amount=amount, last_updated=datetime.now(timezone.utc))
        return replace(self.balance)

    async def adjust_balance(self, delta):
        if self.fail_adjust_balance:
            raise RuntimeError("balance write failed")
        self.balance.amount += delta
        self.balance.last_updated = datetime.now(timezone.utc)
        return self.balance.amount


class FakeMarketData:
    """Market data double returning configured prices."""

    def __init__(self, prices: Optional[Dict[str, Decimal]] = None):
        self.prices: Dict[str, Decimal] = dict(prices or {})
        self.coins: List[CoinDetail] = []
        self.fail = False

    async def connect(self):
        return True

    async def disconnect(self):
        pass

    async def get_all_coins(self):
        if self.fail:
            raise MarketDataError("exchange unavailable")
        return list(self.coins)

    async def get_current_price(self, symbol):
        if self.fail:
            raise MarketDataError("exchange unavailable")
        return self.prices.get(symbol, Decimal("0"))


def make_coin(symbol: str = TEST_SYMBOL, price: str = "100") -> CoinDetail:
    return CoinDetail(
        symbol=symbol,
        name=symbol.split("-")[0],
        current_price=Decimal(price),
        first_price=Decimal(price),
        price_change_percentage=Decimal("0"),
        last_updated=BASE_TIME,
    )


def make_ticks(prices, symbol: str = TEST_SYMBOL, start: datetime = BASE_TIME, step_minutes: float = 1):
    return [
        PriceTick(
            symbol=symbol,
            price=Decimal(str(price)),
            timestamp=start + timedelta(minutes=i * step_minutes),
        )
        for i, price in enumerate(prices)
    ]


@pytest.fixture
def trading_config():
    return TradingConfig(
        initial_balance=Decimal("1000"),
        trade_amount=Decimal("100"),
        take_profit_percentage=Decimal("5"),
        stop_loss_percentage=Decimal("3"),
    )


@pytest.fixture
def candle_config():
    return CandleAnalysisConfig(
        lookback_minutes=30,
        candle_interval_minutes=5,
        number_of_candles=5,
        minimum_green_candles=3,
    )


@pytest.fixture
def settings(trading_config, candle_config):
    return Settings(
        trading=trading_config,
        candles=candle_config,
        scheduler=SchedulerConfig(
            price_update_delay=0.01,
            trading_analysis_delay=0.01,
            close_evaluation_delay=0.01,
            price_log_delay=0.01,
            cleanup_delay=0.01,
        ),
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def market_data():
    return FakeMarketData({TEST_SYMBOL: Decimal("100")})


@pytest.fixture
def ledger(store, trading_config):
    return BalanceLedger(store, trading_config.initial_balance)


@pytest.fixture
def trade_manager(store, market_data, ledger, trading_config):
    return TradeManager(store, market_data, ledger, trading_config)
