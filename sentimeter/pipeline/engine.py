"""Pipeline orchestrator: resumable daily analysis run.

Steps per run (one run per date × schedule):
  1. Crawl        news portals → CrawlSummary                       (cached)
  2. Extract      tickers + sentiment from recent articles            (cached)
  3. Rank         positive tickers without an open position, top 10   (cached)
  4. Recommend    quote → fundamentals → history → technicals → score,
                  BUYs stored as recommendations                      (always fresh)
  5. Track        advance every open recommendation on live prices    (always fresh)
  6. Outlook      best-effort market outlook snapshot                 (always fresh)

At start the step cache reports the first cacheable step without a valid entry;
earlier steps replay their cached output. A successful run clears the cache for
its run key. A failed run leaves it, so the next invocation resumes from the
first incomplete step. Within step 4 a failing ticker is logged and skipped;
the engine always continues to the next ticker.
"""

from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, TypeVar

from sentimeter.core.cache import SQLiteStepCacheBackend, StepCache
from sentimeter.core.clock import Clock, SystemClock
from sentimeter.core.config import Settings
from sentimeter.core.database import Database
from sentimeter.core.errors import PipelineJobError
from sentimeter.core.logger import logger
from sentimeter.core.snapshots import AvoidItem, AvoidStore, JsonSnapshot, OutlookStore
from sentimeter.models.datatypes import (
    Action,
    CrawlSummary,
    ExtractedTicker,
    ExtractionResult,
    JobResult,
    NewsArticle,
    OutcomeStatus,
    Recommendation,
    RunKey,
    Schedule,
    StockAnalysis,
    StockAnalysisInput,
    TickerOutcome,
)
from sentimeter.pipeline.outlook import build_outlook
from sentimeter.pipeline.ranking import TickerRanker
from sentimeter.providers.base import MarketDataProvider, NewsCrawler, StockScorer, TickerExtractor
from sentimeter.providers.extractor import FinBERTTickerExtractor
from sentimeter.providers.market import YFinanceProvider
from sentimeter.providers.news import RSSCrawler
from sentimeter.providers.scorer import RuleBasedScorer
from sentimeter.providers.sentiment import FinBERTProvider
from sentimeter.providers.technical import calculate_technical_summary
from sentimeter.tracker.updater import PredictionTracker

TOTAL_STEPS = 6
CACHEABLE_STEPS = 3

T = TypeVar("T")


class PipelineOrchestrator:
    """Runs the six-step analysis job for one schedule slot.

    Args:
        settings: Thresholds, limits and delays.
        database: Articles, recommendations, fundamentals and job records.
        step_cache: Cache consulted for resume and filled by steps 1-3.
        crawler: Step 1 collaborator.
        extractor: Step 2 collaborator.
        market: Quotes, fundamentals and history for step 4.
        scorer: Step 4 trade-proposal collaborator.
        tracker: Step 5 lifecycle pass.
        ranker: Step 3 ranking rules (defaults from ``settings``).
        outlook_store: Step 6 destination; step 6 is skipped when None.
        avoid_store: Destination for AVOID-scored tickers; ignored when None.
        clock: Run date, timestamps and the inter-ticker pause.
    """

    def __init__(
        self,
        settings: Settings,
        database: Database,
        step_cache: StepCache,
        crawler: NewsCrawler,
        extractor: TickerExtractor,
        market: MarketDataProvider,
        scorer: StockScorer,
        tracker: PredictionTracker,
        ranker: Optional[TickerRanker] = None,
        outlook_store: Optional[OutlookStore] = None,
        avoid_store: Optional[AvoidStore] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.settings = settings
        self.database = database
        self.step_cache = step_cache
        self.crawler = crawler
        self.extractor = extractor
        self.market = market
        self.scorer = scorer
        self.tracker = tracker
        self.ranker = ranker or TickerRanker(
            min_sentiment=settings.min_ticker_sentiment,
            limit=settings.max_ranked_tickers,
        )
        self.outlook_store = outlook_store
        self.avoid_store = avoid_store
        self.clock = clock or SystemClock()

    @classmethod
    def from_settings(cls, settings: Settings, clock: Optional[Clock] = None) -> "PipelineOrchestrator":
        """Wire the production collaborators described by ``settings``."""
        clock = clock or SystemClock()
        database = Database(settings.db_path, clock=clock)
        market = YFinanceProvider(suffix=settings.ticker_suffix)
        snapshot_dir = settings.output_dir
        return cls(
            settings=settings,
            database=database,
            step_cache=StepCache(
                SQLiteStepCacheBackend(settings.db_path),
                ttl_seconds=settings.step_cache_ttl_seconds,
                clock=clock,
            ),
            crawler=RSSCrawler(settings.portals, database),
            extractor=FinBERTTickerExtractor(settings.universe, FinBERTProvider()),
            market=market,
            scorer=RuleBasedScorer(),
            tracker=PredictionTracker(database, market, clock=clock),
            outlook_store=OutlookStore(JsonSnapshot(
                f"{snapshot_dir}/outlook.json", settings.snapshot_ttl_seconds, clock,
            )),
            avoid_store=AvoidStore(JsonSnapshot(
                f"{snapshot_dir}/avoid.json", settings.snapshot_ttl_seconds, clock,
            )),
            clock=clock,
        )

    # ── public ────────────────────────────────────────────────────────────────

    def run(self, schedule: Schedule, force: bool = False) -> JobResult:
        """Run (or resume) today's job for ``schedule``.

        Returns:
            :class:`JobResult`. ``skipped`` is set when the slot already
            completed today and ``force`` is False.

        Raises:
            PipelineJobError: Any uncaught failure. The job record is marked
                failed, the step cache is kept, and ``error.result`` carries
                the counts of whatever completed.
        """
        run_key = RunKey(self.clock.today(), schedule)
        result = JobResult(success=False, run_key=run_key)

        if not force and self.database.has_job_run_today(run_key):
            message = f"{schedule.value} analysis already completed for {run_key.date}"
            logger.warning(f"PipelineOrchestrator: {message}; use force to run anyway")
            result.skipped = True
            result.errors.append(message)
            return result
        if force:
            logger.info(f"PipelineOrchestrator: FORCE MODE for {run_key}")

        result.job_id = self.database.start_job(run_key)
        logger.info(f"PipelineOrchestrator: starting {run_key} (job #{result.job_id})")

        try:
            if self.avoid_store is not None:
                self.avoid_store.clear()
            self._execute(run_key, result)
            self.step_cache.clear(run_key)
            self.database.complete_job(result.job_id, result.counts())
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self.database.fail_job(result.job_id, message)
            result.errors.insert(0, message)
            logger.error(f"PipelineOrchestrator: {run_key} failed: {message}", exc_info=True)
            raise PipelineJobError(message, result) from exc

        result.success = True
        logger.info(
            f"PipelineOrchestrator: {run_key} completed: "
            f"articles={result.articles_processed} tickers={result.tickers_found} "
            f"recommendations={result.recommendations_generated} "
            f"predictions_updated={result.predictions_updated}"
        )
        return result

    # ── steps ─────────────────────────────────────────────────────────────────

    def _execute(self, run_key: RunKey, result: JobResult) -> None:
        resume_from = self.step_cache.resume_point(run_key, CACHEABLE_STEPS)
        result.resumed_from = resume_from
        if resume_from > 1:
            logger.info(
                f"PipelineOrchestrator: resuming from step {resume_from} "
                f"(steps 1-{resume_from - 1} cached)"
            )

        crawl = self._cached_step(
            run_key, 1, resume_from, "crawling news portals",
            compute=self.crawler.crawl,
            encode=asdict,
            decode=lambda p: CrawlSummary(**p),
            default=CrawlSummary,
        )
        result.articles_processed = crawl.new_articles

        articles = self._recent_articles()
        logger.info(
            f"PipelineOrchestrator: {len(articles)} articles from the last "
            f"{self.settings.max_news_age_days} day(s)"
        )

        extraction = self._cached_step(
            run_key, 2, resume_from, "extracting tickers",
            compute=lambda: self.extractor.extract(articles),
            encode=asdict,
            decode=_decode_extraction,
            default=ExtractionResult,
        )
        result.tickers_found = len(extraction.tickers)

        top = self._cached_step(
            run_key, 3, resume_from, "ranking tickers",
            compute=lambda: self._rank(extraction.tickers),
            encode=lambda tickers: [asdict(t) for t in tickers],
            decode=lambda p: [ExtractedTicker(**t) for t in p],
            default=list,
        )
        logger.info(f"PipelineOrchestrator: top tickers: {', '.join(t.ticker for t in top) or 'none'}")

        logger.info(f"PipelineOrchestrator: step 4/{TOTAL_STEPS}: generating recommendations")
        outcomes = self._generate_recommendations(run_key, top)
        result.ticker_outcomes = outcomes
        result.recommendations_generated = sum(1 for o in outcomes if o.recommended)
        result.errors.extend(
            f"{o.ticker}: {o.reason}" for o in outcomes if o.status is OutcomeStatus.ERROR
        )

        logger.info(f"PipelineOrchestrator: step 5/{TOTAL_STEPS}: updating prediction statuses")
        tracking = self.tracker.update_all()
        result.predictions_updated = tracking.updated
        result.errors.extend(tracking.errors)

        self._generate_outlook(articles, extraction.tickers, result.recommendations_generated)

    def _cached_step(
        self,
        run_key: RunKey,
        step: int,
        resume_from: int,
        label: str,
        compute: Callable[[], T],
        encode: Callable[[T], Any],
        decode: Callable[[Any], T],
        default: Callable[[], T],
    ) -> T:
        """Execute ``step`` and cache its output, or replay the cached output
        when the step lies before the resume point."""
        if step >= resume_from:
            logger.info(f"PipelineOrchestrator: step {step}/{TOTAL_STEPS}: {label}")
            value = compute()
            self.step_cache.set(run_key, step, encode(value))
            return value

        logger.info(f"PipelineOrchestrator: step {step}/{TOTAL_STEPS}: using cached result")
        payload = self.step_cache.get(run_key, step)
        if payload is None:
            logger.warning(
                f"PipelineOrchestrator: cached step {step} for {run_key} vanished; "
                f"continuing with an empty result"
            )
            return default()
        try:
            return decode(payload)
        except (TypeError, KeyError, ValueError, AttributeError) as exc:
            logger.warning(
                f"PipelineOrchestrator: cached step {step} for {run_key} has an "
                f"unexpected shape ({exc}); continuing with an empty result"
            )
            return default()

    def _recent_articles(self) -> List[NewsArticle]:
        """Articles inside the news window, content truncated for extraction."""
        cutoff = self.clock.now() - timedelta(days=self.settings.max_news_age_days)
        limit = self.settings.max_content_length
        articles = []
        for article in self.database.recent_articles(cutoff):
            published = article.published_at
            if published is not None:
                if published.tzinfo is None:
                    published = published.replace(tzinfo=timezone.utc)
                if published < cutoff:
                    continue
            if article.content:
                article.content = article.content[:limit]
            articles.append(article)
        return articles

    def _rank(self, tickers: List[ExtractedTicker]) -> List[ExtractedTicker]:
        active = self.database.active_tickers()
        if active:
            logger.info(
                f"PipelineOrchestrator: excluding {len(active)} tickers with active "
                f"positions: {', '.join(active)}"
            )
        return self.ranker.rank(tickers, active)

    def _generate_recommendations(self, run_key: RunKey, top: List[ExtractedTicker]) -> List[TickerOutcome]:
        outcomes: List[TickerOutcome] = []
        recommended = 0
        processed = 0
        # a cached top list may predate positions opened by a failed attempt
        open_now = set(self.database.active_tickers())
        for candidate in top:
            if recommended >= self.settings.max_recommendations_per_run:
                logger.info(
                    f"PipelineOrchestrator: reached {recommended} recommendations; "
                    f"stopping before {candidate.ticker}"
                )
                break
            if candidate.ticker.upper() in open_now:
                outcome = TickerOutcome(
                    candidate.ticker.upper(), OutcomeStatus.SKIP, reason="position already open",
                )
                logger.warning(f"PipelineOrchestrator: skipped {outcome.ticker}: {outcome.reason}")
                outcomes.append(outcome)
                continue
            if processed > 0:
                self.clock.sleep(self.settings.ticker_delay_seconds)
            processed += 1

            try:
                outcome = self._process_ticker(run_key, candidate)
            except Exception as exc:
                logger.error(f"PipelineOrchestrator: {candidate.ticker} failed: {exc}")
                outcome = TickerOutcome(candidate.ticker, OutcomeStatus.ERROR, reason=str(exc))

            if outcome.status is OutcomeStatus.SKIP:
                logger.warning(f"PipelineOrchestrator: skipped {outcome.ticker}: {outcome.reason}")
            outcomes.append(outcome)
            if outcome.recommended:
                recommended += 1

        logger.info(f"PipelineOrchestrator: generated {recommended} recommendations")
        return outcomes

    def _process_ticker(self, run_key: RunKey, candidate: ExtractedTicker) -> TickerOutcome:
        ticker = candidate.ticker.upper()
        logger.info(f"PipelineOrchestrator: processing {ticker}")

        quote_result = self.market.fetch_quote(ticker)
        if not quote_result.success or quote_result.data is None:
            return TickerOutcome(ticker, OutcomeStatus.SKIP, reason=f"no quote: {quote_result.error}")
        quote = quote_result.data

        fundamentals_result = self.market.fetch_fundamentals(ticker)
        fundamentals = fundamentals_result.data if fundamentals_result.success else None
        if fundamentals is not None:
            self.database.upsert_fundamentals(fundamentals)

        history_result = self.market.fetch_history(ticker, self.settings.history_period)
        if not history_result.success or history_result.data is None:
            return TickerOutcome(ticker, OutcomeStatus.SKIP, reason=f"no price history: {history_result.error}")

        technical = calculate_technical_summary(ticker, history_result.data, quote.price)
        analysis = self.scorer.analyze(StockAnalysisInput(
            ticker=ticker,
            company_name=fundamentals.company_name if fundamentals else ticker,
            quote=quote,
            technical=technical,
            fundamentals=fundamentals,
            news_mentions=[candidate],
        ))
        if analysis is None:
            return TickerOutcome(ticker, OutcomeStatus.SKIP, reason="analysis failed")

        outcome = TickerOutcome(
            ticker, OutcomeStatus.OK, action=analysis.action, overall_score=analysis.overall_score,
        )
        if analysis.action is Action.BUY and analysis.overall_score >= self.settings.min_overall_score:
            self.database.insert_recommendation(_to_recommendation(ticker, run_key, analysis))
            outcome.recommended = True
            logger.info(
                f"PipelineOrchestrator: {ticker}: score {analysis.overall_score:.1f} "
                f"RECOMMENDED ({analysis.order_type})"
            )
        elif analysis.action is Action.AVOID:
            if self.avoid_store is not None:
                self.avoid_store.add(_to_avoid_item(ticker, quote.price, fundamentals, analysis, self.clock.now()))
            logger.info(f"PipelineOrchestrator: {ticker}: score {analysis.overall_score:.1f} AVOID (high risk)")
        else:
            logger.info(
                f"PipelineOrchestrator: {ticker}: score {analysis.overall_score:.1f} {analysis.action.value}"
            )
        return outcome

    def _generate_outlook(self, articles: List[NewsArticle], tickers: List[ExtractedTicker], recommendations: int) -> None:
        if self.outlook_store is None:
            return
        logger.info(f"PipelineOrchestrator: step 6/{TOTAL_STEPS}: generating market outlook")
        try:
            outlook = build_outlook(
                articles,
                tickers,
                recommendations,
                generated_at=self.clock.now(),
                global_portals=[p.name for p in self.settings.portals if p.is_global],
            )
            self.outlook_store.set(outlook)
            logger.info(f"PipelineOrchestrator: market outlook is {outlook.sentiment}")
        except Exception as exc:
            logger.warning(f"PipelineOrchestrator: market outlook generation failed: {exc}")


# ── helpers ───────────────────────────────────────────────────────────────────

def _decode_extraction(payload: Any) -> ExtractionResult:
    return ExtractionResult(
        tickers=[ExtractedTicker(**t) for t in payload["tickers"]],
        articles_analyzed=payload.get("articles_analyzed", 0),
        processing_time_ms=payload.get("processing_time_ms", 0),
    )


def _to_recommendation(ticker: str, run_key: RunKey, analysis: StockAnalysis) -> Recommendation:
    return Recommendation(
        ticker=ticker,
        recommendation_date=run_key.date,
        entry_price=analysis.entry_price,
        stop_loss=analysis.stop_loss,
        target_price=analysis.target_price,
        max_hold_days=analysis.max_hold_days,
        order_type=analysis.order_type,
        sentiment_score=analysis.sentiment_score,
        fundamental_score=analysis.fundamental_score,
        technical_score=analysis.technical_score,
        overall_score=analysis.overall_score,
        news_summary=analysis.news_summary,
        fundamental_summary=analysis.fundamental_summary,
        technical_summary=analysis.technical_summary,
        analysis_summary=analysis.analysis_summary,
    )


def _to_avoid_item(ticker, price, fundamentals, analysis: StockAnalysis, now: datetime) -> AvoidItem:
    entry = analysis.entry_price
    risk_pct = (entry - analysis.stop_loss) / entry * 100.0 if entry > 0 else 0.0
    reward_pct = (analysis.target_price - entry) / entry * 100.0 if entry > 0 else 0.0
    return AvoidItem(
        ticker=ticker,
        company_name=fundamentals.company_name if fundamentals else ticker,
        sector=fundamentals.sector if fundamentals else None,
        current_price=price,
        entry_price=entry,
        stop_loss=analysis.stop_loss,
        target_price=analysis.target_price,
        overall_score=analysis.overall_score,
        sentiment_score=analysis.sentiment_score,
        fundamental_score=analysis.fundamental_score,
        technical_score=analysis.technical_score,
        risk_pct=round(risk_pct, 2),
        reward_pct=round(reward_pct, 2),
        reason=analysis.analysis_summary,
        detected_at=now.isoformat(),
    )
