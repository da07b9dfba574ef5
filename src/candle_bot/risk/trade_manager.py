"""
Trade lifecycle: open against the balance, monitor each cycle, close on exit rules.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

import structlog

from candle_bot.data.models import CoinDetail, Trade, TradeStatus
from candle_bot.exceptions import InsufficientBalanceError, PartialFailureError
from candle_bot.monitoring.logger import trading_logger
from candle_bot.risk.balance import BalanceLedger
from candle_bot.utils.config import TradingConfig

logger = structlog.get_logger(__name__)

HUNDRED = Decimal("100")


def percentage_change(entry_price: Decimal, price: Decimal) -> Decimal:
    return (price - entry_price) / entry_price * HUNDRED


@dataclass
class TradingSummary:
    """Snapshot of the balance and trades for status reporting."""
    balance: Decimal
    open_trades: int
    closed_trades: int
    stop_loss_trades: int
    realized_pnl: Decimal


class TradeManager:
    """Opens, evaluates and closes trades against the shared balance."""

    def __init__(self, store, market_data, ledger: BalanceLedger, config: TradingConfig):
        self.store = store
        self.market_data = market_data
        self.ledger = ledger
        self.config = config

    async def open_trade(self, coin: CoinDetail) -> Optional[Trade]:
        """Buy ``trade_amount`` worth of the coin at the live price.

        Raises InsufficientBalanceError without touching any state when the
        balance cannot cover the trade amount. Returns None when the
        exchange reports no usable price.
        """
        trade_amount = self.config.trade_amount
        current_balance = await self.ledger.get_amount()
        if current_balance < trade_amount:
            raise InsufficientBalanceError(trade_amount, current_balance)

        price = await self.market_data.get_current_price(coin.symbol)
        if price <= 0:
            logger.warning("No live price, trade not opened", symbol=coin.symbol, price=str(price))
            return None

        trade = Trade(
            symbol=coin.symbol,
            entry_price=price,
            quantity=trade_amount / price,
            entry_time=datetime.now(timezone.utc),
            status=TradeStatus.OPEN,
            close_forcefully=False,
        )

        await self.store.insert_trade(trade)
        try:
            await self.ledger.debit(trade_amount)
        except Exception as e:
            logger.error("Trade saved but balance debit failed", trade_id=trade.id, symbol=trade.symbol)
            raise PartialFailureError(trade, e) from e

        trading_logger.log_trade_opened(trade, trade_amount)
        return trade

    def _exit_decision(self, trade: Trade, price: Decimal) -> Optional[Tuple[TradeStatus, str]]:
        if trade.close_forcefully:
            return TradeStatus.CLOSED, "forced_close"

        profit_pct = percentage_change(trade.entry_price, price)
        if profit_pct >= self.config.take_profit_percentage:
            return TradeStatus.CLOSED, "take_profit"
        if profit_pct <= -self.config.stop_loss_percentage:
            return TradeStatus.STOP_LOSS, "stop_loss"
        return None

    async def evaluate_open_trades(self) -> List[Trade]:
        """Close every open trade that hit take-profit, stop-loss or was flagged."""
        open_trades = await self.store.get_open_trades()
        trading_logger.log_open_trades(len(open_trades))
        closed = []

        for trade in open_trades:
            if trade.entry_price <= 0:
                logger.warning("Open trade has no entry price, skipping", trade_id=trade.id, symbol=trade.symbol)
                continue

            price = await self.market_data.get_current_price(trade.symbol)
            if price <= 0:
                logger.warning("No live price for open trade", trade_id=trade.id, symbol=trade.symbol)
                continue

            decision = self._exit_decision(trade, price)
            if decision is None:
                continue

            status, reason = decision
            closed.append(await self.close_trade(trade, price, status, reason))

        if closed:
            trading_logger.log_open_trades(len(open_trades) - len(closed))
        return closed

    async def close_trade(
        self,
        trade: Trade,
        exit_price: Decimal,
        status: TradeStatus,
        reason: str = "manual",
    ) -> Trade:
        """Record the exit and return ``trade_amount + profit_loss`` to the balance."""
        if not trade.is_open:
            raise ValueError(f"Trade {trade.id} is already {trade.status.value}")
        if status == TradeStatus.OPEN:
            raise ValueError("A trade cannot be closed into the Open status")

        trade.exit_price = exit_price
        trade.exit_time = datetime.now(timezone.utc)
        trade.status = status
        trade.profit_loss = (exit_price - trade.entry_price) * trade.quantity
        trade.profit_loss_percentage = percentage_change(trade.entry_price, exit_price)

        await self.store.update_trade(trade)
        try:
            await self.ledger.credit(self.config.trade_amount + trade.profit_loss)
        except Exception as e:
            logger.error("Trade closed but balance credit failed", trade_id=trade.id, symbol=trade.symbol)
            raise PartialFailureError(trade, e) from e

        trading_logger.log_trade_closed(trade, reason)
        return trade

    async def force_close(self, symbol: str) -> int:
        """Flag the symbol's open trades to be closed on the next evaluation."""
        count = await self.store.flag_trades_for_forced_close(symbol)
        logger.info("Trades flagged for forced close", symbol=symbol, count=count)
        return count

    async def get_summary(self) -> TradingSummary:
        trades = await self.store.get_trades()
        finished = [t for t in trades if not t.is_open]
        return TradingSummary(
            balance=await self.ledger.peek(),
            open_trades=sum(1 for t in trades if t.is_open),
            closed_trades=sum(1 for t in finished if t.status == TradeStatus.CLOSED),
            stop_loss_trades=sum(1 for t in finished if t.status == TradeStatus.STOP_LOSS),
            realized_pnl=sum((t.profit_loss for t in finished), Decimal("0")),
        )
