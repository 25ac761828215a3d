"""Tracking pass over open recommendations.

Fetches one fresh quote per open ticker, evaluates every open recommendation
through the lifecycle state machine and persists the resulting transitions.
A ticker whose quote cannot be fetched is recorded as an error and its
recommendations are left untouched for the next pass.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple

from sentimeter.core.clock import Clock, SystemClock
from sentimeter.core.database import Database
from sentimeter.core.logger import logger
from sentimeter.models.datatypes import (
    PositionStatus,
    PredictionSummary,
    Recommendation,
    TrackedPrediction,
)
from sentimeter.providers.base import MarketDataProvider
from sentimeter.tracker.lifecycle import (
    DEFAULT_POLICY,
    StatusTransition,
    TransitionPolicy,
    evaluate,
    track,
)


@dataclass
class TrackingResult:
    checked: int = 0
    updated: int = 0
    transitions: List[StatusTransition] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class PredictionTracker:
    """Drives the lifecycle of stored recommendations with live prices.

    Args:
        database: Recommendation store.
        market: Quote source.
        clock: Supplies "today" for day counts and exit dates.
        policy: Priority of simultaneous conditions.
    """

    def __init__(
        self,
        database: Database,
        market: MarketDataProvider,
        clock: Optional[Clock] = None,
        policy: TransitionPolicy = DEFAULT_POLICY,
    ) -> None:
        self.database = database
        self.market = market
        self.clock = clock or SystemClock()
        self.policy = policy

    def update_all(self) -> TrackingResult:
        """Evaluate every open recommendation and persist status changes."""
        result = TrackingResult()
        active = self.database.active_recommendations()
        result.checked = len(active)
        if not active:
            return result

        prices, errors = self._fetch_prices(active)
        result.errors.extend(errors)
        today = self.clock.today()

        for rec in active:
            price = prices.get(rec.ticker.upper())
            if not price:
                continue
            transition = evaluate(rec, price, today, self.policy)
            if transition is None:
                continue

            self.database.apply_transition(transition)
            result.transitions.append(transition)
            result.updated += 1
            fields = transition.log_fields()
            pnl = f" pnl={transition.pnl_pct:+.2f}%" if transition.pnl_pct is not None else ""
            logger.info(
                f"PredictionTracker: ticker={fields['ticker']} "
                f"previous_status={fields['previous_status']} "
                f"new_status={fields['new_status']} price={price}{pnl}"
            )

        return result

    def tracked_predictions(self) -> List[TrackedPrediction]:
        """Open recommendations with live metrics; the entry price stands in
        for tickers without a quote."""
        active = self.database.active_recommendations()
        if not active:
            return []
        prices, _ = self._fetch_prices(active)
        today = self.clock.today()
        return [
            track(rec, prices.get(rec.ticker.upper()) or rec.entry_price, today)
            for rec in active
        ]

    def summary(self, on: Optional[date] = None) -> PredictionSummary:
        """Counts for the open book plus win rate and average return of the
        positions recommended on ``on`` (default today) that have closed."""
        today = self.clock.today()
        on = on or today
        active = self.database.active_recommendations()
        closed_today = [
            r for r in self.database.closed_recommendations() if r.exit_date == today
        ]
        closed_for_date = [
            r for r in self.database.recommendations_by_date(on) if r.status.is_terminal
        ]

        win_rate = None
        avg_return = None
        if closed_for_date:
            wins = sum(1 for r in closed_for_date if r.status is PositionStatus.TARGET_HIT)
            win_rate = wins / len(closed_for_date) * 100.0
            returns = [r.profit_loss_pct for r in closed_for_date if r.profit_loss_pct is not None]
            if returns:
                avg_return = sum(returns) / len(returns)

        return PredictionSummary(
            total_active=len(active),
            pending=sum(1 for r in active if r.status is PositionStatus.PENDING),
            entry_hit=sum(1 for r in active if r.status is PositionStatus.ENTRY_HIT),
            closed_today=len(closed_today),
            win_rate=win_rate,
            avg_return=avg_return,
        )

    def _fetch_prices(self, recs: List[Recommendation]) -> Tuple[Dict[str, float], List[str]]:
        prices: Dict[str, float] = {}
        errors: List[str] = []
        for ticker in sorted({r.ticker.upper() for r in recs}):
            try:
                quote = self.market.fetch_quote(ticker)
            except Exception as exc:
                logger.error(f"PredictionTracker: quote fetch raised for {ticker}: {exc}")
                errors.append(f"Failed to fetch price for {ticker}: {exc}")
                continue
            if quote.success and quote.data and quote.data.price > 0:
                prices[ticker] = quote.data.price
            else:
                logger.warning(f"PredictionTracker: no price for {ticker}: {quote.error}")
                errors.append(f"No price for {ticker}: {quote.error}")
        return prices, errors
