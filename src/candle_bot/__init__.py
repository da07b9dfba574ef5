"""
Candle Trading Bot

Aggregates exchange price ticks into candles, opens trades on a green-candle
continuation pattern and closes them on take-profit, stop-loss or request.
"""

__version__ = "1.0.0"
