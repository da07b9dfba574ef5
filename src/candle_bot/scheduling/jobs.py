"""
Periodic jobs driving price collection, signal evaluation and trade closing.
"""

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List

import structlog

from candle_bot.data.models import PriceTick
from candle_bot.exceptions import InsufficientBalanceError
from candle_bot.monitoring.logger import trading_logger
from candle_bot.utils.config import Settings

logger = structlog.get_logger(__name__)


class PeriodicJob:
    """Runs ``run_once`` forever with a fixed delay after each completion.

    The stop event is checked at the top of every iteration only; an
    iteration that has started always runs to completion.
    """

    name = "periodic_job"

    def __init__(self, delay: float):
        self.delay = delay
        self.iterations = 0

    async def run_once(self):
        raise NotImplementedError

    async def run(self, stop_event: asyncio.Event):
        logger.info("Job started", job=self.name, delay=self.delay)
        while not stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                trading_logger.log_job_error(self.name, e)
            finally:
                self.iterations += 1

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.delay)
            except asyncio.TimeoutError:
                pass
        logger.info("Job stopped", job=self.name, iterations=self.iterations)


class PriceUpdateJob(PeriodicJob):
    """Refresh the stored coin list from the exchange tickers."""

    name = "price_update"

    def __init__(self, store, market_data, settings: Settings):
        super().__init__(settings.scheduler.price_update_delay)
        self.store = store
        self.market_data = market_data

    async def run_once(self):
        coins = await self.market_data.get_all_coins()
        updated = await self.store.upsert_coin_details(coins)
        logger.debug("Coin details updated", coins=len(coins), changed=updated)


class PriceLogJob(PeriodicJob):
    """Record one price tick per coin."""

    name = "price_log"

    def __init__(self, store, market_data, settings: Settings):
        super().__init__(settings.scheduler.price_log_delay)
        self.store = store
        self.market_data = market_data

    async def run_once(self):
        coins = await self.market_data.get_all_coins()
        now = datetime.now(timezone.utc)
        inserted = await self.store.insert_price_ticks([coin.to_tick(now) for coin in coins])
        logger.info("Price logs updated", ticks=inserted, timestamp=now.isoformat())


class TradingAnalysisJob(PeriodicJob):
    """Build candles for every coin and open trades on buy signals."""

    name = "trading_analysis"

    def __init__(self, store, detector, trade_manager, settings: Settings):
        super().__init__(settings.scheduler.trading_analysis_delay)
        self.store = store
        self.detector = detector
        self.trade_manager = trade_manager
        self.settings = settings

    def _lookback_start(self) -> datetime:
        minutes = (
            self.settings.candles.lookback_minutes
            + self.settings.scheduler.lookback_padding_minutes
        )
        return datetime.now(timezone.utc) - timedelta(minutes=minutes)

    @staticmethod
    def group_by_symbol(ticks: List[PriceTick]) -> Dict[str, List[PriceTick]]:
        grouped: Dict[str, List[PriceTick]] = defaultdict(list)
        for tick in ticks:
            grouped[tick.symbol].append(tick)
        for symbol_ticks in grouped.values():
            symbol_ticks.sort(key=lambda t: t.timestamp)
        return grouped

    async def run_once(self):
        coins = await self.store.get_all_coin_details()
        ticks = self.group_by_symbol(await self.store.get_price_ticks_since(self._lookback_start()))

        held_symbols = set()
        if self.settings.trading.one_trade_per_symbol:
            held_symbols = {t.symbol for t in await self.store.get_open_trades()}

        opened = 0
        for coin in coins:
            if coin.symbol in held_symbols:
                continue

            rule = self.detector.evaluate(coin.symbol, ticks.get(coin.symbol, []))
            if rule is None:
                continue

            trading_logger.log_signal(coin.symbol, rule.value, ticks=len(ticks[coin.symbol]))
            try:
                trade = await self.trade_manager.open_trade(coin)
            except InsufficientBalanceError as e:
                logger.warning(
                    "Insufficient balance, no more trades this cycle",
                    symbol=coin.symbol,
                    required=str(e.required),
                    available=str(e.available),
                )
                break
            if trade is not None:
                opened += 1

        logger.debug("Trading analysis finished", coins=len(coins), opened=opened)


class CloseEvaluationJob(PeriodicJob):
    """Close open trades that reached an exit condition."""

    name = "close_evaluation"

    def __init__(self, trade_manager, settings: Settings):
        super().__init__(settings.scheduler.close_evaluation_delay)
        self.trade_manager = trade_manager

    async def run_once(self):
        closed = await self.trade_manager.evaluate_open_trades()
        if closed:
            logger.info("Trades closed this cycle", count=len(closed))


class CleanupJob(PeriodicJob):
    """Delete price history older than the retention window."""

    name = "cleanup"

    def __init__(self, store, settings: Settings):
        super().__init__(settings.scheduler.cleanup_delay)
        self.store = store
        self.retention = timedelta(hours=settings.scheduler.price_log_retention_hours)

    async def run_once(self):
        cutoff = datetime.now(timezone.utc) - self.retention
        deleted = await self.store.cleanup_old_price_ticks(cutoff)
        logger.info("Old price logs removed", deleted=deleted, cutoff=cutoff.isoformat())
