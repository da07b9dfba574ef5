"""
MongoDB persistence for coins, price history, trades and the balance.
"""

from datetime import datetime, timezone
from decimal import Decimal
from functools import wraps
from typing import List, Optional

import structlog
from bson import Decimal128, ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, ReturnDocument, UpdateOne
from pymongo.errors import PyMongoError

from candle_bot.data.models import Balance, CoinDetail, PriceTick, Trade, TradeStatus
from candle_bot.exceptions import StorageError
from candle_bot.utils.config import MongoConfig

logger = structlog.get_logger(__name__)

BALANCE_ID = "main"


def _wrap_errors(func):
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except PyMongoError as e:
            raise StorageError(f"{func.__name__} failed: {e}") from e
    return wrapper


class MongoStore:
    """Async document store backed by motor."""

    def __init__(self, config: MongoConfig, client: Optional[AsyncIOMotorClient] = None):
        self.client = client or AsyncIOMotorClient(config.url, tz_aware=True)
        self.db = self.client[config.database]

        self.coin_details = self.db.CoinDetails
        self.price_logs = self.db.PriceLogs
        self.trades = self.db.Trades
        self.balance = self.db.Balance

    @_wrap_errors
    async def ensure_indexes(self):
        await self.coin_details.create_index("symbol", unique=True)
        await self.price_logs.create_index([("symbol", ASCENDING), ("timestamp", ASCENDING)])
        await self.price_logs.create_index("timestamp")
        await self.trades.create_index("status")

    def close(self):
        self.client.close()

    # ---------- COINS ----------
    @_wrap_errors
    async def get_all_coin_details(self) -> List[CoinDetail]:
        docs = await self.coin_details.find({}).to_list(length=None)
        return [CoinDetail.from_document(doc) for doc in docs]

    @_wrap_errors
    async def upsert_coin_details(self, coins: List[CoinDetail]) -> int:
        if not coins:
            return 0

        requests = []
        for coin in coins:
            doc = coin.to_document()
            first_price = doc.pop("first_price")
            requests.append(UpdateOne(
                {"symbol": coin.symbol},
                {"$set": doc, "$setOnInsert": {"first_price": first_price}},
                upsert=True,
            ))

        result = await self.coin_details.bulk_write(requests, ordered=False)
        return result.upserted_count + result.modified_count

    # ---------- PRICE LOGS ----------
    @_wrap_errors
    async def insert_price_ticks(self, ticks: List[PriceTick]) -> int:
        if not ticks:
            return 0
        result = await self.price_logs.insert_many([t.to_document() for t in ticks], ordered=False)
        return len(result.inserted_ids)

    @_wrap_errors
    async def get_price_ticks_since(self, since: datetime) -> List[PriceTick]:
        cursor = self.price_logs.find({"timestamp": {"$gte": since}}).sort("timestamp", ASCENDING)
        docs = await cursor.to_list(length=None)
        return [PriceTick.from_document(doc) for doc in docs]

    @_wrap_errors
    async def cleanup_old_price_ticks(self, older_than: datetime) -> int:
        result = await self.price_logs.delete_many({"timestamp": {"$lt": older_than}})
        return result.deleted_count

    # ---------- TRADES ----------
    @_wrap_errors
    async def insert_trade(self, trade: Trade) -> Trade:
        doc = trade.to_document()
        result = await self.trades.insert_one(doc)
        trade.id = str(result.inserted_id)
        return trade

    @_wrap_errors
    async def update_trade(self, trade: Trade):
        if trade.id is None:
            raise StorageError(f"Cannot update unsaved trade for {trade.symbol}")
        doc = trade.to_document()
        await self.trades.replace_one({"_id": ObjectId(trade.id)}, doc)

    @_wrap_errors
    async def get_open_trades(self) -> List[Trade]:
        docs = await self.trades.find({"status": TradeStatus.OPEN.value}).to_list(length=None)
        return [Trade.from_document(doc) for doc in docs]

    @_wrap_errors
    async def get_trades(self, status: Optional[TradeStatus] = None, limit: int = 0) -> List[Trade]:
        query = {"status": status.value} if status else {}
        cursor = self.trades.find(query).sort("entry_time", ASCENDING)
        if limit:
            cursor = cursor.limit(limit)
        docs = await cursor.to_list(length=None)
        return [Trade.from_document(doc) for doc in docs]

    @_wrap_errors
    async def flag_trades_for_forced_close(self, symbol: str) -> int:
        result = await self.trades.update_many(
            {"symbol": symbol, "status": TradeStatus.OPEN.value},
            {"$set": {"close_forcefully": True}},
        )
        return result.modified_count

    # ---------- BALANCE ----------
    @_wrap_errors
    async def get_balance(self) -> Optional[Balance]:
        doc = await self.balance.find_one({"_id": BALANCE_ID})
        return Balance.from_document(doc) if doc else None

    @_wrap_errors
    async def set_balance(self, amount: Decimal) -> Balance:
        balance = Balance(id=BALANCE_ID, amount=amount, last_updated=datetime.now(timezone.utc))
        await self.balance.replace_one(
            {"_id": BALANCE_ID},
            {"amount": Decimal128(amount), "last_updated": balance.last_updated},
            upsert=True,
        )
        return balance

    @_wrap_errors
    async def adjust_balance(self, delta: Decimal) -> Decimal:
        """Atomically add ``delta`` to the balance and return the new amount."""
        doc = await self.balance.find_one_and_update(
            {"_id": BALANCE_ID},
            {
                "$inc": {"amount": Decimal128(delta)},
                "$set": {"last_updated": datetime.now(timezone.utc)},
            },
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise StorageError("Balance record does not exist")
        return Balance.from_document(doc).amount
