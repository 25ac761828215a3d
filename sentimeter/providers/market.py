"""Market data integration via yfinance."""

from typing import Any, Dict, Optional

import pandas as pd
import yfinance as yf

from sentimeter.core.logger import logger
from sentimeter.core.retry import with_retries
from sentimeter.models.datatypes import FetchResult, Fundamentals, Quote
from sentimeter.providers.base import MarketDataProvider


class YFinanceProvider(MarketDataProvider):
    """Yahoo Finance implementation for quotes, fundamentals and history.

    Args:
        suffix: Exchange suffix appended to every symbol (``".JK"`` for IDX).
    """

    def __init__(self, suffix: str = ".JK") -> None:
        self.suffix = suffix

    def symbol(self, ticker: str) -> str:
        ticker = ticker.upper()
        if self.suffix and not ticker.endswith(self.suffix):
            return f"{ticker}{self.suffix}"
        return ticker

    def fetch_quote(self, ticker: str) -> FetchResult[Quote]:
        """Latest close and its change versus the previous session."""
        symbol = self.symbol(ticker)
        try:
            hist = self._history(symbol, period="5d")
        except Exception as e:
            logger.error(f"Error fetching quote for {symbol}: {e}")
            return FetchResult.fail(str(e))

        closes = pd.to_numeric(hist.get("Close", pd.Series(dtype=float)), errors="coerce").dropna()
        if closes.empty:
            logger.warning(f"No quote data returned for {symbol}")
            return FetchResult.fail(f"no quote data for {symbol}")

        price = float(closes.iloc[-1])
        prev = float(closes.iloc[-2]) if len(closes) > 1 else price
        change = price - prev
        change_pct = (change / prev * 100.0) if prev else 0.0
        return FetchResult.ok(Quote(
            ticker=ticker.upper(),
            price=price,
            change=round(change, 4),
            change_pct=round(change_pct, 4),
        ))

    def fetch_fundamentals(self, ticker: str) -> FetchResult[Fundamentals]:
        symbol = self.symbol(ticker)
        logger.info(f"Fetching fundamentals for {symbol}")
        try:
            info = self._info(symbol)
        except Exception as e:
            logger.error(f"Error fetching fundamentals for {symbol}: {e}")
            return FetchResult.fail(str(e))

        name = (info.get("longName") or info.get("shortName") or "").strip()
        if not name:
            logger.warning(f"No fundamentals returned for {symbol}")
            return FetchResult.fail(f"no fundamentals for {symbol}")

        return FetchResult.ok(Fundamentals(
            ticker=ticker.upper(),
            company_name=name,
            sector=info.get("sector"),
            market_cap=_as_float(info.get("marketCap")),
            pe_ratio=_as_float(info.get("trailingPE")),
            pb_ratio=_as_float(info.get("priceToBook")),
            roe=_as_float(info.get("returnOnEquity")),
            debt_to_equity=_as_float(info.get("debtToEquity")),
            dividend_yield=_as_float(info.get("dividendYield")),
        ))

    def fetch_history(self, ticker: str, period: str = "3mo") -> FetchResult[pd.DataFrame]:
        symbol = self.symbol(ticker)
        logger.info(f"Fetching {period} history for {symbol}")
        try:
            hist = self._history(symbol, period=period)
        except Exception as e:
            logger.error(f"Error fetching history for {symbol}: {e}")
            return FetchResult.fail(str(e))

        if hist.empty:
            logger.warning(f"No price history returned for {symbol}")
            return FetchResult.fail(f"no price history for {symbol}")

        hist = hist.reset_index()
        if 'Date' in hist.columns:
            hist['Date'] = pd.to_datetime(hist['Date']).dt.tz_localize(None).dt.strftime('%Y-%m-%d')
        for col in ('Open', 'High', 'Low', 'Close'):
            hist[col] = pd.to_numeric(hist[col], errors='coerce')
        hist['Volume'] = pd.to_numeric(hist['Volume'], errors='coerce').fillna(0).astype(int)
        return FetchResult.ok(hist[['Date', 'Open', 'High', 'Low', 'Close', 'Volume']])

    # ── network ───────────────────────────────────────────────────────────────

    @with_retries(max_retries=3, initial_delay=2)
    def _history(self, symbol: str, period: str) -> pd.DataFrame:
        return yf.Ticker(symbol).history(period=period)

    @with_retries(max_retries=2, initial_delay=2)
    def _info(self, symbol: str) -> Dict[str, Any]:
        return yf.Ticker(symbol).info or {}


def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None
