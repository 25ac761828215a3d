"""Data structures shared by the pipeline, the tracker and the providers."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

T = TypeVar("T")


class Schedule(str, Enum):
    """Named run slots. One pipeline execution per slot per day."""
    MORNING = "morning"
    EVENING = "evening"

    @classmethod
    def for_hour(cls, hour: int) -> "Schedule":
        return cls.MORNING if hour < 12 else cls.EVENING


@dataclass(frozen=True)
class RunKey:
    """Identifies one pipeline execution: its cache namespace and idempotency scope."""
    date: date
    schedule: Schedule

    def __str__(self) -> str:
        return f"{self.date.isoformat()}/{self.schedule.value}"


@dataclass
class StepCacheEntry:
    """One cached step output."""
    run_key: RunKey
    step: int
    cached_at: datetime
    payload: Any


# ── news & extraction ─────────────────────────────────────────────────────────

@dataclass
class NewsArticle:
    """
    A crawled news article as stored in the articles table.
    """
    title: str
    portal: str
    url: str
    published_at: Optional[datetime] = None
    content: Optional[str] = None


@dataclass
class CrawlSummary:
    new_articles: int = 0
    successful_sources: int = 0


@dataclass
class SentimentResult:
    """Output of a single sentiment inference call.

    Attributes:
        label: Canonical label, ``"Positive"``, ``"Neutral"`` or ``"Negative"``.
        score: Continuous score in ``[-1.0, 1.0]``.
        raw_label: Original label string returned by the model.
        raw_score: Original softmax confidence returned by the model.
    """
    label: str
    score: float
    raw_label: str = ""
    raw_score: float = 0.0


@dataclass
class ExtractedTicker:
    """A ticker candidate pulled from news text.

    Attributes:
        ticker: Exchange symbol without suffix (e.g. ``"BBCA"``).
        sentiment: Score in ``[-1.0, 1.0]``.
        relevance: How central the ticker is to the article, in ``[0.0, 1.0]``.
        reason: Short text explaining the mention (usually the headline).
    """
    ticker: str
    sentiment: float
    relevance: float
    reason: str = ""


@dataclass
class ExtractionResult:
    tickers: List[ExtractedTicker] = field(default_factory=list)
    articles_analyzed: int = 0
    processing_time_ms: int = 0


# ── market data ───────────────────────────────────────────────────────────────

@dataclass
class FetchResult(Generic[T]):
    """Success-with-payload or failure-with-reason from a market-data call."""
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: T) -> "FetchResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "FetchResult[T]":
        return cls(success=False, error=error)


@dataclass
class Quote:
    ticker: str
    price: float
    change: float = 0.0
    change_pct: float = 0.0


@dataclass
class Fundamentals:
    ticker: str
    company_name: str
    sector: Optional[str] = None
    market_cap: Optional[float] = None
    pe_ratio: Optional[float] = None
    pb_ratio: Optional[float] = None
    roe: Optional[float] = None
    debt_to_equity: Optional[float] = None
    dividend_yield: Optional[float] = None


@dataclass
class TechnicalSummary:
    """Indicators derived from a price history for one ticker."""
    ticker: str
    trend: str  # "bullish" | "bearish" | "sideways"
    sma20: Optional[float]
    sma50: Optional[float]
    high_3m: float
    low_3m: float
    supports: List[float] = field(default_factory=list)
    resistances: List[float] = field(default_factory=list)
    volatility_pct: float = 0.0


# ── scoring ───────────────────────────────────────────────────────────────────

class Action(str, Enum):
    BUY = "BUY"
    HOLD = "HOLD"
    AVOID = "AVOID"


@dataclass
class StockAnalysisInput:
    """Everything the scoring collaborator sees for one ticker."""
    ticker: str
    company_name: str
    quote: Quote
    technical: TechnicalSummary
    fundamentals: Optional[Fundamentals] = None
    news_mentions: List[ExtractedTicker] = field(default_factory=list)


@dataclass
class StockAnalysis:
    action: Action
    entry_price: float
    stop_loss: float
    target_price: float
    max_hold_days: int
    order_type: str
    sentiment_score: float
    fundamental_score: float
    technical_score: float
    overall_score: float
    news_summary: str = ""
    fundamental_summary: str = ""
    technical_summary: str = ""
    analysis_summary: str = ""


# ── positions ─────────────────────────────────────────────────────────────────

class PositionStatus(str, Enum):
    """Lifecycle of a recommendation.

    ``pending → entry_hit → {target_hit, sl_hit, expired}``, plus
    ``pending → expired`` when the entry never fills.
    """
    PENDING = "pending"
    ENTRY_HIT = "entry_hit"
    TARGET_HIT = "target_hit"
    SL_HIT = "sl_hit"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        """Progress ordering: pending < entry_hit < any terminal status."""
        if self is PositionStatus.PENDING:
            return 0
        if self is PositionStatus.ENTRY_HIT:
            return 1
        return 2


TERMINAL_STATUSES = frozenset({
    PositionStatus.TARGET_HIT,
    PositionStatus.SL_HIT,
    PositionStatus.EXPIRED,
})

OPEN_STATUSES = frozenset({PositionStatus.PENDING, PositionStatus.ENTRY_HIT})


@dataclass
class Recommendation:
    """A proposed trade and its lifecycle state. Rows are never deleted."""
    ticker: str
    recommendation_date: date
    entry_price: float
    stop_loss: float
    target_price: float
    max_hold_days: int
    order_type: str = "LIMIT"
    sentiment_score: float = 0.0
    fundamental_score: float = 0.0
    technical_score: float = 0.0
    overall_score: float = 0.0
    status: PositionStatus = PositionStatus.PENDING
    id: Optional[int] = None
    action: str = "BUY"
    entry_hit_date: Optional[date] = None
    exit_date: Optional[date] = None
    exit_price: Optional[float] = None
    profit_loss_pct: Optional[float] = None
    news_summary: str = ""
    fundamental_summary: str = ""
    technical_summary: str = ""
    analysis_summary: str = ""


@dataclass
class TrackedPrediction:
    """A recommendation plus metrics derived from a current price. Never persisted."""
    recommendation: Recommendation
    current_price: float
    days_active: int
    unrealized_pnl_pct: Optional[float]
    distance_to_entry_pct: float
    distance_to_target_pct: float
    distance_to_sl_pct: float
    risk_reward_ratio: Optional[float]

    @property
    def ticker(self) -> str:
        return self.recommendation.ticker

    @property
    def status(self) -> PositionStatus:
        return self.recommendation.status


@dataclass
class PredictionSummary:
    total_active: int
    pending: int
    entry_hit: int
    closed_today: int
    win_rate: Optional[float]
    avg_return: Optional[float]


@dataclass
class HistoryPage:
    """One page of filtered recommendation history, newest first."""
    items: List[Recommendation]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.page_size) if self.page_size else 0


@dataclass
class HistoryStats:
    """Outcome statistics over closed positions that were actually entered.

    Attributes:
        total: Positions with a realised P&L.
        win_rate: Percentage of those that hit their target, None when total is 0.
        avg_return: Mean ``profit_loss_pct``, None when total is 0.
        best_pick: ``(ticker, return %)`` of the highest return.
        worst_pick: ``(ticker, return %)`` of the lowest return.
    """
    total: int
    win_rate: Optional[float]
    avg_return: Optional[float]
    best_pick: Optional[Tuple[str, float]] = None
    worst_pick: Optional[Tuple[str, float]] = None


# ── job reporting ─────────────────────────────────────────────────────────────

class OutcomeStatus(str, Enum):
    OK = "ok"
    SKIP = "skip"
    ERROR = "error"


@dataclass
class TickerOutcome:
    """What happened to one ticker in step 4."""
    ticker: str
    status: OutcomeStatus
    reason: str = ""
    action: Optional[Action] = None
    overall_score: Optional[float] = None
    recommended: bool = False


@dataclass
class JobResult:
    success: bool
    run_key: RunKey
    job_id: int = 0
    resumed_from: int = 1
    articles_processed: int = 0
    tickers_found: int = 0
    recommendations_generated: int = 0
    predictions_updated: int = 0
    skipped: bool = False
    ticker_outcomes: List[TickerOutcome] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {
            "articles_processed": self.articles_processed,
            "tickers_extracted": self.tickers_found,
            "recommendations_generated": self.recommendations_generated,
        }
