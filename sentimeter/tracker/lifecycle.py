"""Position lifecycle state machine and derived position metrics.

Everything here is a pure function of (recommendation, current price, today).
Callers persist the returned :class:`StatusTransition`.

Transitions, one per evaluation::

    pending    price <= entry            -> entry_hit
    pending    days_active > max_hold    -> expired   (never entered)
    entry_hit  price >= target           -> target_hit
    entry_hit  price <= stop             -> sl_hit
    entry_hit  days_active > max_hold    -> expired

When several conditions hold at once (a gap through both target and stop, or a
fill on the last day) the first matching check in :class:`TransitionPolicy`
wins. The default is target, then stop, then expiry for entered positions, and
entry fill before expiry for pending ones.
"""

from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Optional, Tuple, Union

from sentimeter.models.datatypes import (
    PositionStatus,
    Recommendation,
    TrackedPrediction,
)


class Check(str, Enum):
    ENTRY = "entry"
    TARGET = "target"
    STOP = "stop"
    EXPIRY = "expiry"


@dataclass(frozen=True)
class TransitionPolicy:
    """Order in which simultaneous conditions are checked."""
    pending_order: Tuple[Check, ...] = (Check.ENTRY, Check.EXPIRY)
    entered_order: Tuple[Check, ...] = (Check.TARGET, Check.STOP, Check.EXPIRY)

    def __post_init__(self) -> None:
        if sorted(self.pending_order) != sorted((Check.ENTRY, Check.EXPIRY)):
            raise ValueError(f"pending_order must order entry and expiry: {self.pending_order}")
        if sorted(self.entered_order) != sorted((Check.TARGET, Check.STOP, Check.EXPIRY)):
            raise ValueError(f"entered_order must order target, stop and expiry: {self.entered_order}")


DEFAULT_POLICY = TransitionPolicy()


@dataclass(frozen=True)
class Entered:
    """The position was filled; ``pnl_pct`` is realised at the exit price."""
    pnl_pct: float


@dataclass(frozen=True)
class NeverEntered:
    """The entry never filled, so there is no P&L (undefined, not zero)."""


PnlOutcome = Union[Entered, NeverEntered]


@dataclass(frozen=True)
class StatusTransition:
    """A status change produced by :func:`evaluate`.

    ``outcome`` is None for ``pending -> entry_hit`` and set for every
    transition into a terminal status.
    """
    recommendation_id: Optional[int]
    ticker: str
    previous_status: PositionStatus
    new_status: PositionStatus
    price: float
    on: date
    outcome: Optional[PnlOutcome] = None

    @property
    def pnl_pct(self) -> Optional[float]:
        if isinstance(self.outcome, Entered):
            return self.outcome.pnl_pct
        return None

    def log_fields(self) -> dict:
        return {
            "ticker": self.ticker,
            "previous_status": self.previous_status.value,
            "new_status": self.new_status.value,
        }


# ── metrics ───────────────────────────────────────────────────────────────────

def pnl_pct(entry_price: float, current_price: float) -> float:
    if entry_price <= 0:
        raise ValueError(f"entry price must be positive, got {entry_price}")
    return (current_price - entry_price) / entry_price * 100.0


def distance_pct(current_price: float, reference_price: float) -> float:
    """Percent move from ``current_price`` needed to reach ``reference_price``."""
    if current_price <= 0:
        raise ValueError(f"current price must be positive, got {current_price}")
    return (reference_price - current_price) / current_price * 100.0


def risk_reward(entry_price: float, stop_loss: float, target_price: float) -> Optional[float]:
    """Risk per unit of reward: ``(entry - stop) / (target - entry)``.

    None when the target equals the entry.
    """
    reward = target_price - entry_price
    if reward == 0:
        return None
    return (entry_price - stop_loss) / reward


def days_active(recommendation_date: date, today: date) -> int:
    return (today - recommendation_date).days


# ── state machine ─────────────────────────────────────────────────────────────

def evaluate(
    rec: Recommendation,
    current_price: float,
    today: date,
    policy: TransitionPolicy = DEFAULT_POLICY,
) -> Optional[StatusTransition]:
    """Return the status change ``current_price`` triggers, or None.

    Terminal recommendations never change.
    """
    if rec.status.is_terminal:
        return None
    if current_price <= 0:
        raise ValueError(f"{rec.ticker}: current price must be positive, got {current_price}")

    elapsed = days_active(rec.recommendation_date, today)
    expired = elapsed > rec.max_hold_days

    new_status: Optional[PositionStatus] = None
    if rec.status is PositionStatus.PENDING:
        for check in policy.pending_order:
            if check is Check.ENTRY and current_price <= rec.entry_price:
                new_status = PositionStatus.ENTRY_HIT
            elif check is Check.EXPIRY and expired:
                new_status = PositionStatus.EXPIRED
            if new_status:
                break
    else:
        for check in policy.entered_order:
            if check is Check.TARGET and current_price >= rec.target_price:
                new_status = PositionStatus.TARGET_HIT
            elif check is Check.STOP and current_price <= rec.stop_loss:
                new_status = PositionStatus.SL_HIT
            elif check is Check.EXPIRY and expired:
                new_status = PositionStatus.EXPIRED
            if new_status:
                break

    if new_status is None:
        return None

    outcome: Optional[PnlOutcome] = None
    if new_status.is_terminal:
        if rec.status is PositionStatus.ENTRY_HIT:
            outcome = Entered(pnl_pct(rec.entry_price, current_price))
        else:
            outcome = NeverEntered()

    return StatusTransition(
        recommendation_id=rec.id,
        ticker=rec.ticker,
        previous_status=rec.status,
        new_status=new_status,
        price=current_price,
        on=today,
        outcome=outcome,
    )


def apply_transition(rec: Recommendation, transition: StatusTransition) -> Recommendation:
    """Return a copy of ``rec`` with ``transition`` applied."""
    if transition.new_status.rank <= rec.status.rank:
        raise ValueError(
            f"{rec.ticker}: {rec.status.value} -> {transition.new_status.value} does not advance"
        )
    if transition.new_status is PositionStatus.ENTRY_HIT:
        return replace(rec, status=transition.new_status, entry_hit_date=transition.on)
    return replace(
        rec,
        status=transition.new_status,
        exit_date=transition.on,
        exit_price=transition.price,
        profit_loss_pct=transition.pnl_pct,
    )


def track(rec: Recommendation, current_price: float, today: date) -> TrackedPrediction:
    """Derive the dashboard metrics for ``rec`` at ``current_price``."""
    unrealized = None
    if rec.status is PositionStatus.ENTRY_HIT:
        unrealized = pnl_pct(rec.entry_price, current_price)

    return TrackedPrediction(
        recommendation=rec,
        current_price=current_price,
        days_active=days_active(rec.recommendation_date, today),
        unrealized_pnl_pct=unrealized,
        distance_to_entry_pct=distance_pct(current_price, rec.entry_price),
        distance_to_target_pct=distance_pct(current_price, rec.target_price),
        distance_to_sl_pct=distance_pct(current_price, rec.stop_loss),
        risk_reward_ratio=risk_reward(rec.entry_price, rec.stop_loss, rec.target_price),
    )
