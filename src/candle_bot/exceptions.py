"""
Central exceptions module for the trading bot.
"""

from decimal import Decimal


class TradingBotError(Exception):
    """Base exception for all trading bot errors."""
    pass


class ConfigurationError(TradingBotError):
    """Raised when settings cannot be loaded or are invalid."""
    pass


class InsufficientBalanceError(TradingBotError):
    """Raised when the balance cannot cover the configured trade amount."""

    def __init__(self, required: Decimal, available: Decimal):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance. Required: {required}, Available: {available}"
        )


class ExternalServiceError(TradingBotError):
    """Base exception for failures of market data or persistence."""
    pass


class MarketDataError(ExternalServiceError):
    """Raised when the exchange API fails or answers with an error payload."""
    pass


class StorageError(ExternalServiceError):
    """Raised when a database operation fails."""
    pass


class PartialFailureError(TradingBotError):
    """Raised when a trade was written but the balance update after it failed."""

    def __init__(self, trade, cause: Exception):
        self.trade = trade
        self.cause = cause
        super().__init__(
            f"Trade {trade.id} ({trade.symbol}) was saved but the balance update failed: {cause}"
        )
