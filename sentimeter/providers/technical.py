"""Technical indicators computed from a daily price history."""

from typing import List, Optional

import pandas as pd

from sentimeter.models.datatypes import TechnicalSummary

_PIVOT_WINDOW = 5
_MAX_LEVELS = 3


def calculate_technical_summary(
    ticker: str,
    history: pd.DataFrame,
    current_price: float,
) -> TechnicalSummary:
    """Summarise trend, moving averages, range, pivots and volatility.

    Args:
        ticker: Symbol the history belongs to.
        history: Frame with at least High, Low and Close columns, oldest first.
        current_price: Latest quote, used to split pivots into supports and resistances.

    Returns:
        :class:`TechnicalSummary`.
    """
    close = pd.to_numeric(history["Close"], errors="coerce").dropna()
    if close.empty:
        raise ValueError(f"{ticker}: price history has no closes")
    high = pd.to_numeric(history["High"], errors="coerce").dropna()
    low = pd.to_numeric(history["Low"], errors="coerce").dropna()

    sma20 = _sma(close, 20)
    sma50 = _sma(close, 50)

    volatility = close.pct_change().std() * 100.0
    if pd.isna(volatility):
        volatility = 0.0

    supports = sorted(
        {round(p, 2) for p in _pivots(low, lows=True) if p < current_price},
        reverse=True,
    )[:_MAX_LEVELS]
    resistances = sorted(
        {round(p, 2) for p in _pivots(high, lows=False) if p > current_price}
    )[:_MAX_LEVELS]

    return TechnicalSummary(
        ticker=ticker,
        trend=_trend(current_price, sma20, sma50),
        sma20=sma20,
        sma50=sma50,
        high_3m=float(high.max()) if not high.empty else float(close.max()),
        low_3m=float(low.min()) if not low.empty else float(close.min()),
        supports=supports,
        resistances=resistances,
        volatility_pct=round(float(volatility), 4),
    )


def _sma(series: pd.Series, window: int) -> Optional[float]:
    if len(series) < window:
        return None
    return round(float(series.rolling(window).mean().iloc[-1]), 4)


def _pivots(series: pd.Series, lows: bool) -> List[float]:
    """Values that are the min (or max) of their centred window."""
    if len(series) < _PIVOT_WINDOW:
        return []
    rolled = series.rolling(_PIVOT_WINDOW, center=True)
    extreme = rolled.min() if lows else rolled.max()
    return [float(v) for v in series[series == extreme].tolist()]


def _trend(price: float, sma20: Optional[float], sma50: Optional[float]) -> str:
    if sma20 is None:
        return "sideways"
    if sma50 is None:
        if price > sma20:
            return "bullish"
        if price < sma20:
            return "bearish"
        return "sideways"
    if price > sma20 > sma50:
        return "bullish"
    if price < sma20 < sma50:
        return "bearish"
    return "sideways"
