"""
Green-candle continuation pattern used to decide when to open a trade.
"""

from enum import Enum
from typing import List, Optional, Sequence

import structlog

from candle_bot.data.models import Candle, PriceTick
from candle_bot.signals.candle_builder import build_candles
from candle_bot.utils.config import CandleAnalysisConfig

logger = structlog.get_logger(__name__)


class PatternRule(Enum):
    """Which rule produced a buy signal."""
    LAST_THREE_GREEN = "last_three_green"
    LAST_FIVE_GREEN = "last_five_green"


class PatternDetector:
    """Evaluates candle sequences against the green-candle heuristic."""

    LONG_WINDOW = 5

    def __init__(self, config: CandleAnalysisConfig):
        self.config = config

    def build_candles(self, ticks: Sequence[PriceTick]) -> List[Candle]:
        return build_candles(
            ticks,
            self.config.candle_interval_minutes,
            self.config.number_of_candles,
        )

    def should_open_trade(self, symbol: str, ticks: Sequence[PriceTick]) -> bool:
        """Return True when the symbol's recent ticks form a buy pattern."""
        return self.evaluate(symbol, ticks) is not None

    def evaluate(self, symbol: str, ticks: Sequence[PriceTick]) -> Optional[PatternRule]:
        if not ticks:
            return None

        candles = self.build_candles(ticks)
        if len(candles) < self.config.number_of_candles:
            logger.debug(
                "Not enough candles for pattern check",
                symbol=symbol,
                candles=len(candles),
                required=self.config.number_of_candles,
            )
            return None

        return self.match_pattern(candles)

    def match_pattern(self, candles: Sequence[Candle]) -> Optional[PatternRule]:
        """Check both rules against one snapshot of candles."""
        snapshot = list(candles)

        last_three = snapshot[-self.config.last_three_candles:]
        if len(last_three) == self.config.last_three_candles:
            green_count = sum(1 for c in last_three if c.is_green)
            if (
                green_count == len(last_three)
                and green_count >= self.config.minimum_green_candles
            ):
                return PatternRule.LAST_THREE_GREEN

        last_five = snapshot[-self.LONG_WINDOW:]
        if len(last_five) == self.LONG_WINDOW and all(c.is_green for c in last_five):
            return PatternRule.LAST_FIVE_GREEN

        return None

    def is_valid_pattern(self, candles: Sequence[Candle]) -> bool:
        return self.match_pattern(candles) is not None
