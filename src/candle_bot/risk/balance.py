"""
Single shared cash balance consumed and replenished by trades.
"""

import asyncio
from decimal import Decimal

import structlog

from candle_bot.monitoring.logger import trading_logger

logger = structlog.get_logger(__name__)


class BalanceLedger:
    """The one balance record of the system.

    Debits and credits are applied as atomic deltas by the store and are
    serialized in-process by a lock, so concurrent jobs cannot lose an
    update by reading and replacing the amount.
    """

    def __init__(self, store, initial_balance: Decimal):
        self.store = store
        self.initial_balance = initial_balance
        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> Decimal:
        """Create the balance with the initial amount if it does not exist yet."""
        async with self._lock:
            balance = await self.store.get_balance()
            if balance is None:
                balance = await self.store.set_balance(self.initial_balance)
                logger.info("Balance initialized", amount=str(balance.amount))
            self._initialized = True
            return balance.amount

    async def get_amount(self) -> Decimal:
        if not self._initialized:
            return await self.initialize()
        balance = await self.store.get_balance()
        if balance is None:
            return await self.initialize()
        return balance.amount

    async def peek(self) -> Decimal:
        """Read the amount without creating the record; an empty store reports the initial balance."""
        balance = await self.store.get_balance()
        return balance.amount if balance else self.initial_balance

    async def debit(self, amount: Decimal) -> Decimal:
        return await self._apply(-amount)

    async def credit(self, amount: Decimal) -> Decimal:
        return await self._apply(amount)

    async def _apply(self, delta: Decimal) -> Decimal:
        if not self._initialized:
            await self.initialize()
        async with self._lock:
            new_amount = await self.store.adjust_balance(delta)
        trading_logger.log_balance(new_amount, delta)
        return new_amount
