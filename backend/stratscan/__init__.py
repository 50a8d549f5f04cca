"""Strat Scanner — multi-timeframe Strat pattern scanner for perpetual futures."""

__version__ = "1.0.0"
