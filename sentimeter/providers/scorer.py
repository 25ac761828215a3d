"""Deterministic stock scorer producing BUY/HOLD/AVOID trade proposals.

Scores (0-100 each):
  sentiment    relevance-weighted mean news sentiment, mapped from [-1, 1]
  fundamental  valuation, profitability and leverage adjustments around 50
  technical    trend base, bonus near support, penalty for high volatility
  overall      0.4 sentiment + 0.3 fundamental + 0.3 technical

Prices:
  entry   nearest support when within 3% below the quote (LIMIT), else the quote (MARKET)
  stop    entry minus a risk band of 1.5× daily volatility, clamped to [2%, 8%]
  target  entry plus twice the risk band, pulled in to the first resistance
          when that still leaves more reward than risk
"""

from typing import Optional

from sentimeter.core.logger import logger
from sentimeter.models.datatypes import (
    Action,
    Fundamentals,
    StockAnalysis,
    StockAnalysisInput,
    TechnicalSummary,
)
from sentimeter.providers.base import StockScorer

BUY_SCORE = 65.0
AVOID_SCORE = 40.0
AVOID_VOLATILITY_PCT = 6.0
MAX_HOLD_DAYS = 14
SUPPORT_PROXIMITY = 0.03
MIN_RISK = 0.02
MAX_RISK = 0.08

_TREND_BASE = {"bullish": 75.0, "sideways": 55.0, "bearish": 30.0}


class RuleBasedScorer(StockScorer):
    """Scores a stock from its quote, technicals, fundamentals and news mentions."""

    def __init__(self, max_hold_days: int = MAX_HOLD_DAYS) -> None:
        self.max_hold_days = max_hold_days

    def analyze(self, data: StockAnalysisInput) -> Optional[StockAnalysis]:
        price = data.quote.price
        if price <= 0:
            logger.warning(f"RuleBasedScorer: {data.ticker} has no usable price ({price})")
            return None

        sentiment = self._sentiment_score(data)
        fundamental = self._fundamental_score(data.fundamentals)
        technical = self._technical_score(price, data.technical)
        overall = round(0.4 * sentiment + 0.3 * fundamental + 0.3 * technical, 1)

        entry, order_type = self._entry(price, data.technical)
        risk = min(max(MIN_RISK, 1.5 * data.technical.volatility_pct / 100.0), MAX_RISK)
        stop = entry * (1 - risk)
        target = entry * (1 + 2 * risk)
        for level in data.technical.resistances:
            if entry * (1 + risk) < level < target:
                target = level
                break

        if data.technical.volatility_pct > AVOID_VOLATILITY_PCT or overall < AVOID_SCORE:
            action = Action.AVOID
        elif overall >= BUY_SCORE and data.technical.trend != "bearish":
            action = Action.BUY
        else:
            action = Action.HOLD

        return StockAnalysis(
            action=action,
            entry_price=round(entry, 2),
            stop_loss=round(stop, 2),
            target_price=round(target, 2),
            max_hold_days=self.max_hold_days,
            order_type=order_type,
            sentiment_score=round(sentiment, 1),
            fundamental_score=round(fundamental, 1),
            technical_score=round(technical, 1),
            overall_score=overall,
            news_summary="; ".join(m.reason for m in data.news_mentions if m.reason),
            fundamental_summary=_describe_fundamentals(data.fundamentals),
            technical_summary=(
                f"trend={data.technical.trend} sma20={data.technical.sma20} "
                f"sma50={data.technical.sma50} vol={data.technical.volatility_pct:.2f}%"
            ),
            analysis_summary=(
                f"{data.ticker}: {action.value} at {entry:.2f} ({order_type}), "
                f"stop {stop:.2f}, target {target:.2f}, score {overall:.1f}"
            ),
        )

    # ── components ────────────────────────────────────────────────────────────

    @staticmethod
    def _sentiment_score(data: StockAnalysisInput) -> float:
        weight = sum(m.relevance for m in data.news_mentions)
        if weight <= 0:
            return 50.0
        mean = sum(m.sentiment * m.relevance for m in data.news_mentions) / weight
        return _clamp((mean + 1.0) * 50.0)

    @staticmethod
    def _fundamental_score(f: Optional[Fundamentals]) -> float:
        if f is None:
            return 50.0
        score = 50.0
        if f.pe_ratio is not None:
            if 0 < f.pe_ratio < 15:
                score += 15
            elif f.pe_ratio > 30 or f.pe_ratio <= 0:
                score -= 10
        if f.pb_ratio is not None:
            if 0 < f.pb_ratio < 1.5:
                score += 10
            elif f.pb_ratio > 4:
                score -= 5
        if f.roe is not None:
            if f.roe > 0.15:
                score += 15
            elif f.roe < 0.05:
                score -= 10
        # yfinance reports debt/equity as a percentage
        if f.debt_to_equity is not None:
            if f.debt_to_equity > 200:
                score -= 15
            elif f.debt_to_equity < 100:
                score += 5
        if f.dividend_yield is not None and f.dividend_yield > 0.03:
            score += 5
        return _clamp(score)

    @staticmethod
    def _technical_score(price: float, t: TechnicalSummary) -> float:
        score = _TREND_BASE.get(t.trend, 50.0)
        if t.supports and (price - t.supports[0]) / price <= SUPPORT_PROXIMITY:
            score += 10
        if t.volatility_pct > 4.0:
            score -= 10
        return _clamp(score)

    @staticmethod
    def _entry(price: float, t: TechnicalSummary) -> tuple:
        if t.supports and (price - t.supports[0]) / price <= SUPPORT_PROXIMITY:
            return t.supports[0], "LIMIT"
        return price, "MARKET"


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _describe_fundamentals(f: Optional[Fundamentals]) -> str:
    if f is None:
        return "fundamentals unavailable"
    return (
        f"{f.company_name} ({f.sector or 'n/a'}): PE={f.pe_ratio} PB={f.pb_ratio} "
        f"ROE={f.roe} DER={f.debt_to_equity}"
    )
