"""
KuCoin market data provider built on the ccxt async exchange client.

Symbols are stored in KuCoin's own ``BASE-QUOTE`` form; ccxt works with the
unified ``BASE/QUOTE`` form, so they are converted at this boundary.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import ccxt.async_support as ccxt
import structlog

from candle_bot.data.models import CoinDetail
from candle_bot.exceptions import MarketDataError
from candle_bot.utils.config import KucoinConfig

logger = structlog.get_logger(__name__)


def _decimal(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def to_unified_symbol(symbol: str) -> str:
    return symbol.replace("-", "/")


def to_exchange_symbol(symbol: str) -> str:
    return symbol.replace("/", "-")


def parse_tickers(tickers: Dict[str, Dict[str, Any]], quote_currency: str = "USDT") -> List[CoinDetail]:
    """Turn a ``fetch_tickers`` result into coin snapshots quoted in ``quote_currency``."""
    now = datetime.now(timezone.utc)
    suffix = f"/{quote_currency}"
    coins = []

    for unified, ticker in (tickers or {}).items():
        if not unified.endswith(suffix) or not isinstance(ticker, dict):
            continue

        price = _decimal(ticker.get("last"))
        coins.append(CoinDetail(
            symbol=to_exchange_symbol(unified),
            name=unified[:-len(suffix)],
            current_price=price,
            first_price=price,
            price_change_percentage=_decimal(ticker.get("percentage")),
            last_updated=now,
            is_active=True,
        ))

    return coins


class KucoinDataProvider:
    """Fetches tickers and last prices from the KuCoin spot market."""

    def __init__(self, config: KucoinConfig):
        self.config = config
        self.exchange: Optional[ccxt.Exchange] = None

    def _init_exchange(self) -> ccxt.Exchange:
        return ccxt.kucoin({
            "enableRateLimit": self.config.enable_rate_limit,
            "timeout": int(self.config.request_timeout * 1000),
            "options": {"defaultType": "spot"},
        })

    async def connect(self) -> bool:
        if self.exchange is None:
            self.exchange = self._init_exchange()
            logger.info("Connected to KuCoin", quote_currency=self.config.quote_currency)
        return True

    async def disconnect(self):
        if self.exchange is not None:
            await self.exchange.close()
            logger.info("Disconnected from KuCoin")
        self.exchange = None

    async def _call(self, method: str, *args) -> Dict[str, Any]:
        if self.exchange is None:
            await self.connect()

        try:
            result = await getattr(self.exchange, method)(*args)
        except (ccxt.BaseError, asyncio.TimeoutError, ValueError) as e:
            raise MarketDataError(f"KuCoin {method} failed: {e}") from e

        if not isinstance(result, dict):
            raise MarketDataError(f"KuCoin {method} returned {type(result).__name__}, expected an object")
        return result

    async def get_all_coins(self) -> List[CoinDetail]:
        """Latest ticker of every symbol quoted in the configured currency."""
        tickers = await self._call("fetch_tickers")
        coins = parse_tickers(tickers, self.config.quote_currency)
        logger.debug("Fetched tickers", coins=len(coins))
        return coins

    async def get_current_price(self, symbol: str) -> Decimal:
        """Last traded price, or zero when the exchange has none."""
        ticker = await self._call("fetch_ticker", to_unified_symbol(symbol))
        return _decimal(ticker.get("last"))
