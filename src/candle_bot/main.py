"""
Main trading bot orchestrator.
"""

import asyncio
import signal
import sys
from dataclasses import dataclass, field
from typing import List, Optional

import click
import structlog

from candle_bot.data.kucoin_provider import KucoinDataProvider
from candle_bot.data.mongo_store import MongoStore
from candle_bot.exceptions import TradingBotError
from candle_bot.monitoring.logger import setup_logging, start_metrics_server
from candle_bot.risk.balance import BalanceLedger
from candle_bot.risk.trade_manager import TradeManager
from candle_bot.scheduling.jobs import (
    CleanupJob,
    CloseEvaluationJob,
    PeriodicJob,
    PriceLogJob,
    PriceUpdateJob,
    TradingAnalysisJob,
)
from candle_bot.signals.pattern_detector import PatternDetector
from candle_bot.utils.config import Settings, load_settings

logger = structlog.get_logger(__name__)


@dataclass
class TradingBotState:
    """State of the trading bot."""
    is_running: bool = False
    store: Optional[MongoStore] = None
    market_data: Optional[KucoinDataProvider] = None
    ledger: Optional[BalanceLedger] = None
    detector: Optional[PatternDetector] = None
    trade_manager: Optional[TradeManager] = None
    jobs: List[PeriodicJob] = field(default_factory=list)


class TradingBot:
    """Wires the components together and runs the periodic jobs."""

    def __init__(self, settings: Settings, store=None, market_data=None):
        self.settings = settings
        self.state = TradingBotState()
        self.shutdown_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

        self._initialize_components(store, market_data)

    def _initialize_components(self, store, market_data):
        logger.info("Initializing trading bot components...")

        self.state.store = store or MongoStore(self.settings.mongo)
        self.state.market_data = market_data or KucoinDataProvider(self.settings.kucoin)
        self.state.ledger = BalanceLedger(self.state.store, self.settings.trading.initial_balance)
        self.state.detector = PatternDetector(self.settings.candles)
        self.state.trade_manager = TradeManager(
            self.state.store,
            self.state.market_data,
            self.state.ledger,
            self.settings.trading,
        )

        self.state.jobs = [
            PriceUpdateJob(self.state.store, self.state.market_data, self.settings),
            TradingAnalysisJob(self.state.store, self.state.detector, self.state.trade_manager, self.settings),
            CloseEvaluationJob(self.state.trade_manager, self.settings),
            CleanupJob(self.state.store, self.settings),
            PriceLogJob(self.state.store, self.state.market_data, self.settings),
        ]

        logger.info("All components initialized successfully", jobs=[j.name for j in self.state.jobs])

    async def start(self, duration_minutes: Optional[float] = None):
        """Run every job until stop() is called or the duration elapses."""
        if self.state.is_running:
            logger.warning("Trading bot is already running")
            return

        logger.info("Starting trading bot...")
        self.state.is_running = True
        self._install_signal_handlers()

        try:
            await self.state.market_data.connect()
            await self.state.store.ensure_indexes()
            balance = await self.state.ledger.initialize()
            logger.info("Trading bot is running", balance=str(balance))

            self._tasks = [
                asyncio.create_task(job.run(self.shutdown_event), name=job.name)
                for job in self.state.jobs
            ]

            if duration_minutes:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=duration_minutes * 60)
                except asyncio.TimeoutError:
                    logger.info("Run duration elapsed", minutes=duration_minutes)
            else:
                await self.shutdown_event.wait()
        finally:
            await self.stop()

    async def stop(self):
        """Signal the jobs to stop and wait for their current iteration to finish."""
        if not self.state.is_running:
            return

        logger.info("Stopping trading bot...")
        self.shutdown_event.set()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []

        self._remove_signal_handlers()
        await self.state.market_data.disconnect()
        self.state.is_running = False
        logger.info("Trading bot stopped")

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._signal_handler, signum)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread
                pass

    def _remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(signum)
            except (NotImplementedError, RuntimeError):
                pass

    def _signal_handler(self, signum):
        logger.info("Received signal, shutting down...", signal=signum)
        self.shutdown_event.set()


def _load(config_file: Optional[str], log_to_file: bool, stream=None) -> Settings:
    try:
        settings = load_settings(config_file)
    except TradingBotError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    setup_logging(settings.monitoring, log_to_file=log_to_file, stream=stream)
    return settings


@click.group()
def cli():
    """Green-candle trading bot."""


async def _run(settings: Settings, duration_minutes: Optional[float]):
    bot = TradingBot(settings)
    try:
        await bot.start(duration_minutes=duration_minutes)
    finally:
        bot.state.store.close()


@cli.command()
@click.option('--config-file', type=click.Path(exists=True, dir_okay=False), help='Path to a JSON configuration file')
@click.option('--duration-minutes', type=float, default=None, help='Stop after this many minutes')
def run(config_file, duration_minutes):
    """Start the trading bot."""
    settings = _load(config_file, log_to_file=True)
    start_metrics_server(settings.monitoring)

    try:
        asyncio.run(_run(settings, duration_minutes))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
    except Exception as e:
        logger.error("Error running trading bot", error=str(e))
        sys.exit(1)


async def _status(settings: Settings):
    bot = TradingBot(settings)
    try:
        summary = await bot.state.trade_manager.get_summary()
        open_trades = await bot.state.store.get_open_trades()
    finally:
        bot.state.store.close()

    click.echo(f"Balance:          {summary.balance:.2f}")
    click.echo(f"Open trades:      {summary.open_trades}")
    click.echo(f"Closed trades:    {summary.closed_trades}")
    click.echo(f"Stop-loss trades: {summary.stop_loss_trades}")
    click.echo(f"Realized P&L:     {summary.realized_pnl:.2f}")
    for trade in open_trades:
        flag = " (forced close pending)" if trade.close_forcefully else ""
        click.echo(
            f"  {trade.symbol}: qty {trade.quantity:.8f} @ {trade.entry_price} "
            f"since {trade.entry_time:%Y-%m-%d %H:%M:%S}{flag}"
        )


@cli.command()
@click.option('--config-file', type=click.Path(exists=True, dir_okay=False), help='Path to a JSON configuration file')
def status(config_file):
    """Show balance, open trades and realized profit."""
    settings = _load(config_file, log_to_file=False, stream=sys.stderr)
    try:
        asyncio.run(_status(settings))
    except TradingBotError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


async def _force_close(settings: Settings, symbol: str) -> int:
    bot = TradingBot(settings)
    try:
        return await bot.state.trade_manager.force_close(symbol)
    finally:
        bot.state.store.close()


@cli.command(name="force-close")
@click.argument('symbol')
@click.option('--config-file', type=click.Path(exists=True, dir_okay=False), help='Path to a JSON configuration file')
def force_close(symbol, config_file):
    """Close every open trade of SYMBOL at market price on the next cycle."""
    settings = _load(config_file, log_to_file=False, stream=sys.stderr)
    try:
        count = asyncio.run(_force_close(settings, symbol.upper()))
    except TradingBotError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Flagged {count} open trade(s) of {symbol.upper()} for forced close")


if __name__ == "__main__":
    cli()
