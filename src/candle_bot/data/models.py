"""
Data types shared by the candle builder, pattern detector and trade lifecycle.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from bson import Decimal128, ObjectId


def _to_bson(value: Optional[Decimal]) -> Optional[Decimal128]:
    return Decimal128(value) if value is not None else None


def _from_bson(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return Decimal(str(value))


class TradeStatus(Enum):
    """Lifecycle states of a trade. Closed and StopLoss are terminal."""
    OPEN = "Open"
    CLOSED = "Closed"
    STOP_LOSS = "StopLoss"


class TradeType(Enum):
    BUY = "Buy"
    SELL = "Sell"


@dataclass(frozen=True)
class PriceTick:
    """A single timestamped price observation for a symbol."""
    symbol: str
    price: Decimal
    timestamp: datetime
    percent_change: Decimal = Decimal("0")

    def to_document(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": _to_bson(self.price),
            "timestamp": self.timestamp,
            "price_change_percentage": _to_bson(self.percent_change),
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "PriceTick":
        return cls(
            symbol=doc["symbol"],
            price=_from_bson(doc.get("price")) or Decimal("0"),
            timestamp=doc["timestamp"],
            percent_change=_from_bson(doc.get("price_change_percentage")) or Decimal("0"),
        )


@dataclass(frozen=True)
class Candle:
    """Open/close summary of the ticks that fell into one interval window.

    ``window_start`` and ``window_end`` are the timestamps of the first and
    last tick of the bucket, so a single-tick candle has zero duration.
    """
    symbol: str
    window_start: datetime
    window_end: datetime
    open_price: Decimal
    close_price: Decimal

    @property
    def is_green(self) -> bool:
        return self.close_price >= self.open_price


@dataclass
class CoinDetail:
    """Latest ticker snapshot for a tradable coin."""
    symbol: str
    name: str
    current_price: Decimal
    first_price: Decimal
    price_change_percentage: Decimal
    last_updated: datetime
    is_active: bool = True
    id: Optional[str] = None

    def to_tick(self, timestamp: datetime) -> PriceTick:
        return PriceTick(
            symbol=self.symbol,
            price=self.current_price,
            timestamp=timestamp,
            percent_change=self.price_change_percentage,
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "current_price": _to_bson(self.current_price),
            "first_price": _to_bson(self.first_price),
            "price_change_percentage": _to_bson(self.price_change_percentage),
            "last_updated": self.last_updated,
            "is_active": self.is_active,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "CoinDetail":
        return cls(
            id=str(doc["_id"]) if doc.get("_id") is not None else None,
            symbol=doc["symbol"],
            name=doc.get("name", doc["symbol"]),
            current_price=_from_bson(doc.get("current_price")) or Decimal("0"),
            first_price=_from_bson(doc.get("first_price")) or Decimal("0"),
            price_change_percentage=_from_bson(doc.get("price_change_percentage")) or Decimal("0"),
            last_updated=doc.get("last_updated"),
            is_active=doc.get("is_active", True),
        )


@dataclass
class Trade:
    """A long position opened with the configured trade amount."""
    symbol: str
    entry_price: Decimal
    quantity: Decimal
    entry_time: datetime
    status: TradeStatus = TradeStatus.OPEN
    type: TradeType = TradeType.BUY
    exit_price: Optional[Decimal] = None
    exit_time: Optional[datetime] = None
    profit_loss: Decimal = Decimal("0")
    profit_loss_percentage: Decimal = Decimal("0")
    close_forcefully: bool = False
    id: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN

    def to_document(self) -> Dict[str, Any]:
        doc = {
            "symbol": self.symbol,
            "entry_price": _to_bson(self.entry_price),
            "exit_price": _to_bson(self.exit_price),
            "quantity": _to_bson(self.quantity),
            "profit_loss": _to_bson(self.profit_loss),
            "profit_loss_percentage": _to_bson(self.profit_loss_percentage),
            "entry_time": self.entry_time,
            "exit_time": self.exit_time,
            "type": self.type.value,
            "status": self.status.value,
            "close_forcefully": self.close_forcefully,
        }
        if self.id is not None:
            doc["_id"] = ObjectId(self.id)
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Trade":
        return cls(
            id=str(doc["_id"]) if doc.get("_id") is not None else None,
            symbol=doc["symbol"],
            entry_price=_from_bson(doc.get("entry_price")) or Decimal("0"),
            exit_price=_from_bson(doc.get("exit_price")),
            quantity=_from_bson(doc.get("quantity")) or Decimal("0"),
            profit_loss=_from_bson(doc.get("profit_loss")) or Decimal("0"),
            profit_loss_percentage=_from_bson(doc.get("profit_loss_percentage")) or Decimal("0"),
            entry_time=doc["entry_time"],
            exit_time=doc.get("exit_time"),
            type=TradeType(doc.get("type", TradeType.BUY.value)),
            status=TradeStatus(doc.get("status", TradeStatus.OPEN.value)),
            close_forcefully=doc.get("close_forcefully", False),
        )


@dataclass
class Balance:
    """The single cash balance shared by every trade."""
    amount: Decimal
    last_updated: datetime
    id: str = field(default="main")

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Balance":
        return cls(
            id=doc["_id"],
            amount=_from_bson(doc.get("amount")) or Decimal("0"),
            last_updated=doc.get("last_updated"),
        )
