"""
Aggregation of raw price ticks into fixed-interval candles.
"""

from datetime import timedelta
from typing import Iterable, List

import structlog

from candle_bot.data.models import Candle, PriceTick

logger = structlog.get_logger(__name__)


def _close_bucket(bucket: List[PriceTick]) -> Candle:
    first, last = bucket[0], bucket[-1]
    return Candle(
        symbol=first.symbol,
        window_start=first.timestamp,
        window_end=last.timestamp,
        open_price=first.price,
        close_price=last.price,
    )


def build_candles(
    ticks: Iterable[PriceTick],
    interval_minutes: int,
    number_of_candles: int,
) -> List[Candle]:
    """Group one symbol's ticks into candles and keep the most recent ones.

    The first window starts at the first tick. A tick at or after the current
    window end closes the bucket, and the window advances in whole intervals
    until the tick fits, so gaps in the data produce no candle. The trailing
    bucket is flushed even when its window is not complete.

    Only the last ``number_of_candles + 1`` candles are returned; callers
    check the count before evaluating patterns.
    """
    if interval_minutes < 1:
        raise ValueError("Candle interval must be at least one minute")

    sorted_ticks = sorted(ticks, key=lambda t: t.timestamp)
    if not sorted_ticks:
        return []

    interval = timedelta(minutes=interval_minutes)
    window_end = sorted_ticks[0].timestamp + interval

    candles: List[Candle] = []
    bucket: List[PriceTick] = []

    for tick in sorted_ticks:
        if tick.timestamp < window_end:
            bucket.append(tick)
            continue

        if bucket:
            candles.append(_close_bucket(bucket))

        # Skip empty windows until the tick fits
        while tick.timestamp >= window_end:
            window_end += interval

        bucket = [tick]

    if bucket:
        candles.append(_close_bucket(bucket))

    logger.debug(
        "Built candles",
        symbol=sorted_ticks[0].symbol,
        ticks=len(sorted_ticks),
        candles=len(candles),
    )

    return candles[-(number_of_candles + 1):]
