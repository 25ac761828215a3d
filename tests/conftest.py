import os
import tempfile
from datetime import date, datetime, timedelta, timezone

os.environ.setdefault(
    "SENTIMETER_LOG_FILE", os.path.join(tempfile.gettempdir(), "sentimeter-tests.log")
)

import pandas as pd
import pytest

from sentimeter.core.cache import MemoryStepCacheBackend, StepCache
from sentimeter.core.clock import Clock
from sentimeter.core.config import Settings
from sentimeter.core.database import Database
from sentimeter.core.snapshots import AvoidStore, JsonSnapshot, OutlookStore
from sentimeter.models.datatypes import (
    Action,
    CrawlSummary,
    ExtractedTicker,
    ExtractionResult,
    FetchResult,
    Fundamentals,
    NewsArticle,
    Quote,
    Recommendation,
    StockAnalysis,
)
from sentimeter.pipeline.engine import PipelineOrchestrator
from sentimeter.providers.base import MarketDataProvider, NewsCrawler, StockScorer, TickerExtractor
from sentimeter.tracker.updater import PredictionTracker


class FakeClock(Clock):
    def __init__(self, now: datetime):
        self.current = now
        self.sleeps = []

    def now(self) -> datetime:
        return self.current

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class FakeMarket(MarketDataProvider):
    """Quotes and histories from dicts; tickers in ``broken`` raise."""

    def __init__(self, prices=None, broken=()):
        self.prices = dict(prices or {})
        self.broken = set(broken)
        self.quote_calls = []

    def fetch_quote(self, ticker):
        self.quote_calls.append(ticker)
        if ticker in self.broken:
            raise RuntimeError(f"connection reset for {ticker}")
        if ticker not in self.prices:
            return FetchResult.fail(f"no quote data for {ticker}")
        return FetchResult.ok(Quote(ticker=ticker, price=self.prices[ticker]))

    def fetch_fundamentals(self, ticker):
        return FetchResult.ok(Fundamentals(ticker=ticker, company_name=f"{ticker} Tbk", sector="Finance"))

    def fetch_history(self, ticker, period="3mo"):
        if ticker not in self.prices:
            return FetchResult.fail(f"no price history for {ticker}")
        return FetchResult.ok(make_history([self.prices[ticker]] * 30))


class FakeCrawler(NewsCrawler):
    def __init__(self, database, articles=(), error=None):
        self.database = database
        self.articles = list(articles)
        self.error = error
        self.calls = 0

    def crawl(self):
        self.calls += 1
        if self.error:
            raise self.error
        new = self.database.insert_articles(self.articles)
        return CrawlSummary(new_articles=new, successful_sources=1)


class FakeExtractor(TickerExtractor):
    def __init__(self, tickers=(), error=None):
        self.tickers = list(tickers)
        self.error = error
        self.calls = 0
        self.seen = []

    def extract(self, articles):
        self.calls += 1
        self.seen = list(articles)
        if self.error:
            raise self.error
        return ExtractionResult(tickers=list(self.tickers), articles_analyzed=len(articles))


class FakeScorer(StockScorer):
    """Returns the action configured per ticker (default BUY at score 80)."""

    def __init__(self, actions=None, scores=None):
        self.actions = dict(actions or {})
        self.scores = dict(scores or {})
        self.analyzed = []

    def analyze(self, data):
        self.analyzed.append(data.ticker)
        action = self.actions.get(data.ticker, Action.BUY)
        if action is None:
            return None
        price = data.quote.price
        return StockAnalysis(
            action=action,
            entry_price=price,
            stop_loss=round(price * 0.95, 2),
            target_price=round(price * 1.1, 2),
            max_hold_days=14,
            order_type="MARKET",
            sentiment_score=70.0,
            fundamental_score=60.0,
            technical_score=60.0,
            overall_score=self.scores.get(data.ticker, 80.0),
            analysis_summary=f"{data.ticker} analysis",
        )


def make_history(closes, start="2024-01-01"):
    dates = pd.date_range(start, periods=len(closes), freq="D")
    return pd.DataFrame({
        "Date": dates.strftime("%Y-%m-%d"),
        "Open": closes,
        "High": [c * 1.01 for c in closes],
        "Low": [c * 0.99 for c in closes],
        "Close": closes,
        "Volume": [1000] * len(closes),
    })


def make_recommendation(ticker="BBCA", **overrides):
    fields = dict(
        ticker=ticker,
        recommendation_date=date(2024, 1, 15),
        entry_price=9500.0,
        stop_loss=9200.0,
        target_price=10200.0,
        max_hold_days=14,
    )
    fields.update(overrides)
    return Recommendation(**fields)


def make_ticker(symbol, sentiment=0.5, relevance=0.8, reason=""):
    return ExtractedTicker(ticker=symbol, sentiment=sentiment, relevance=relevance, reason=reason)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 15, 2, 0, tzinfo=timezone.utc))


@pytest.fixture
def database(tmp_path, clock):
    return Database(str(tmp_path / "sentimeter.db"), clock=clock)


@pytest.fixture
def settings(tmp_path):
    return Settings(db_path=str(tmp_path / "sentimeter.db"), output_dir=str(tmp_path / "output"))


@pytest.fixture
def step_cache(clock):
    return StepCache(MemoryStepCacheBackend(), ttl_seconds=3600, clock=clock)


@pytest.fixture
def articles():
    return [
        NewsArticle(
            title=f"Headline {i}",
            portal="Kontan",
            url=f"https://example.com/news/{i}",
            content="x" * 500,
        )
        for i in range(3)
    ]


@pytest.fixture
def make_orchestrator(settings, database, step_cache, clock, articles, tmp_path):
    """Build an orchestrator over fakes; keyword overrides replace collaborators."""

    def build(**overrides):
        market = overrides.pop("market", FakeMarket({"BBCA": 9500.0, "TLKM": 3800.0}))
        parts = dict(
            settings=settings,
            database=database,
            step_cache=step_cache,
            crawler=FakeCrawler(database, articles),
            extractor=FakeExtractor([make_ticker("BBCA", 0.6, 0.9), make_ticker("TLKM", 0.5, 0.8)]),
            market=market,
            scorer=FakeScorer(),
            tracker=PredictionTracker(database, market, clock=clock),
            outlook_store=OutlookStore(JsonSnapshot(str(tmp_path / "outlook.json"), clock=clock)),
            avoid_store=AvoidStore(JsonSnapshot(str(tmp_path / "avoid.json"), clock=clock)),
            clock=clock,
        )
        parts.update(overrides)
        return PipelineOrchestrator(**parts)

    return build
