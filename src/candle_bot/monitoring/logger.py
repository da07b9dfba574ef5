"""
Logging and monitoring system for the trading bot.
"""

import logging
import os
import sys
from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog
from prometheus_client import Counter, Gauge, start_http_server

from candle_bot.utils.config import MonitoringConfig

# Prometheus metrics
SIGNALS_GENERATED = Counter('trading_signals_generated_total', 'Total buy signals generated', ['symbol', 'rule'])
TRADES_OPENED = Counter('trading_trades_opened_total', 'Total trades opened', ['symbol'])
TRADES_CLOSED = Counter('trading_trades_closed_total', 'Total trades closed', ['symbol', 'status'])
OPEN_TRADES = Gauge('trading_open_trades', 'Number of open trades')
BALANCE = Gauge('trading_balance', 'Current cash balance')
JOB_FAILURES = Counter('trading_job_failures_total', 'Failed periodic job iterations', ['job'])


def setup_logging(monitoring: MonitoringConfig, log_to_file: bool = True, stream=None) -> Optional[str]:
    """Setup structured logging to a stream (stdout by default) and, optionally, a timestamped file."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(default=str)
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers = [logging.StreamHandler(stream or sys.stdout)]
    log_filename = None
    if log_to_file:
        os.makedirs(monitoring.log_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_filename = os.path.join(monitoring.log_dir, f"trading_bot_{timestamp}.log")
        handlers.append(logging.FileHandler(log_filename))

    logging.basicConfig(
        level=getattr(logging, monitoring.log_level.upper(), logging.INFO),
        format="%(message)s",
        handlers=handlers,
        force=True,
    )

    logger = structlog.get_logger(__name__)
    logger.info("Logging initialized", log_file=log_filename)
    return log_filename


def start_metrics_server(monitoring: MonitoringConfig) -> bool:
    """Start the Prometheus exporter if a port is configured."""
    logger = structlog.get_logger(__name__)
    if monitoring.prometheus_port <= 0:
        return False
    try:
        start_http_server(monitoring.prometheus_port)
        logger.info("Prometheus metrics server started", port=monitoring.prometheus_port)
        return True
    except OSError as e:
        logger.error("Failed to start Prometheus server", port=monitoring.prometheus_port, error=str(e))
        return False


class TradingLogger:
    """Logger for trading-specific events, mirrored into Prometheus metrics."""

    def __init__(self):
        self.logger = structlog.get_logger(__name__)

    def log_signal(self, symbol: str, rule: str, ticks: int):
        self.logger.info("Trading signal detected", symbol=symbol, rule=rule, ticks=ticks)
        SIGNALS_GENERATED.labels(symbol=symbol, rule=rule).inc()

    def log_trade_opened(self, trade, trade_amount: Decimal):
        self.logger.info(
            "Trade opened",
            trade_id=trade.id,
            symbol=trade.symbol,
            entry_price=str(trade.entry_price),
            quantity=str(trade.quantity),
            trade_amount=str(trade_amount),
        )
        TRADES_OPENED.labels(symbol=trade.symbol).inc()

    def log_trade_closed(self, trade, reason: str):
        self.logger.info(
            "Trade closed",
            trade_id=trade.id,
            symbol=trade.symbol,
            status=trade.status.value,
            reason=reason,
            entry_price=str(trade.entry_price),
            exit_price=str(trade.exit_price),
            profit_loss=str(trade.profit_loss),
            profit_loss_percentage=str(trade.profit_loss_percentage),
        )
        TRADES_CLOSED.labels(symbol=trade.symbol, status=trade.status.value).inc()

    def log_open_trades(self, count: int):
        OPEN_TRADES.set(count)

    def log_balance(self, amount: Decimal, change: Decimal):
        self.logger.info("Balance updated", amount=str(amount), change=str(change))
        BALANCE.set(float(amount))

    def log_job_error(self, job: str, error: Exception):
        self.logger.error(
            "Periodic job failed",
            job=job,
            error_type=type(error).__name__,
            error_message=str(error),
        )
        JOB_FAILURES.labels(job=job).inc()


trading_logger = TradingLogger()
