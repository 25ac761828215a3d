from datetime import date

import pytest

from conftest import FakeCrawler, FakeExtractor, FakeMarket, FakeScorer, make_recommendation, make_ticker
from sentimeter.core.errors import PipelineJobError
from sentimeter.core.snapshots import AvoidItem
from sentimeter.models.datatypes import Action, OutcomeStatus, RunKey, Schedule
from sentimeter.tracker.updater import PredictionTracker

RUN_KEY = RunKey(date(2024, 1, 15), Schedule.MORNING)


class FailingTracker:
    def update_all(self):
        raise RuntimeError("price feed down")


class BrokenOutlookStore:
    def set(self, outlook):
        raise OSError("disk full")


def test_full_run(make_orchestrator, database, step_cache, clock):
    orchestrator = make_orchestrator()
    result = orchestrator.run(Schedule.MORNING)

    assert result.success
    assert result.resumed_from == 1
    assert result.articles_processed == 3
    assert result.tickers_found == 2
    assert result.recommendations_generated == 2
    assert [o.ticker for o in result.ticker_outcomes] == ["BBCA", "TLKM"]
    assert all(o.status is OutcomeStatus.OK for o in result.ticker_outcomes)
    assert database.active_tickers() == ["BBCA", "TLKM"]
    assert clock.sleeps == [1.0]

    assert step_cache.resume_point(RUN_KEY, 3) == 1
    assert database.job_status(result.job_id)["status"] == "completed"
    assert database.has_job_run_today(RUN_KEY)
    assert orchestrator.outlook_store.get() is not None


def test_article_content_is_truncated_before_extraction(make_orchestrator, settings):
    extractor = FakeExtractor([make_ticker("BBCA")])
    make_orchestrator(extractor=extractor).run(Schedule.MORNING)
    assert len(extractor.seen) == 3
    assert all(len(a.content) == settings.max_content_length for a in extractor.seen)


def test_failure_keeps_cache_and_next_run_resumes(make_orchestrator, database, step_cache):
    failing = make_orchestrator(extractor=FakeExtractor(error=RuntimeError("model offline")))
    with pytest.raises(PipelineJobError) as excinfo:
        failing.run(Schedule.MORNING)

    error = excinfo.value
    assert error.reason == "model offline"
    assert error.result.articles_processed == 3
    assert database.job_status(error.result.job_id)["status"] == "failed"
    assert database.job_status(error.result.job_id)["error_message"] == "model offline"
    assert step_cache.resume_point(RUN_KEY, 3) == 2
    assert not database.has_job_run_today(RUN_KEY)

    crawler = FakeCrawler(database)
    result = make_orchestrator(crawler=crawler).run(Schedule.MORNING)

    assert result.success
    assert result.resumed_from == 2
    assert crawler.calls == 0
    assert result.articles_processed == 3
    assert result.tickers_found == 2
    assert step_cache.resume_point(RUN_KEY, 3) == 1


def test_failure_after_ranking_resumes_at_step_four(make_orchestrator, step_cache):
    with pytest.raises(PipelineJobError):
        make_orchestrator(tracker=FailingTracker()).run(Schedule.MORNING)
    assert step_cache.resume_point(RUN_KEY, 3) == 4

    crawler = FakeCrawler(None)
    extractor = FakeExtractor()
    scorer = FakeScorer()
    result = make_orchestrator(crawler=crawler, extractor=extractor, scorer=scorer).run(Schedule.MORNING)

    assert result.resumed_from == 4
    assert crawler.calls == 0
    assert extractor.calls == 0
    assert scorer.analyzed == []


def test_resumed_run_does_not_duplicate_recommendations(make_orchestrator, database, clock):
    with pytest.raises(PipelineJobError):
        make_orchestrator(tracker=FailingTracker()).run(Schedule.MORNING)
    assert len(database.recommendations_by_date(RUN_KEY.date)) == 2

    result = make_orchestrator().run(Schedule.MORNING)

    assert result.success
    assert result.recommendations_generated == 0
    assert [(o.ticker, o.status, o.reason) for o in result.ticker_outcomes] == [
        ("BBCA", OutcomeStatus.SKIP, "position already open"),
        ("TLKM", OutcomeStatus.SKIP, "position already open"),
    ]
    assert len(database.recommendations_by_date(RUN_KEY.date)) == 2
    assert clock.sleeps == [1.0]


def test_cache_from_another_schedule_is_ignored(make_orchestrator, step_cache):
    evening = RunKey(RUN_KEY.date, Schedule.EVENING)
    step_cache.set(evening, 1, {"new_articles": 99, "successful_sources": 1})

    result = make_orchestrator().run(Schedule.MORNING)
    assert result.resumed_from == 1
    assert result.articles_processed == 3
    assert step_cache.get(evening, 1) is not None


def test_failing_ticker_does_not_stop_the_run(make_orchestrator, database, clock):
    market = FakeMarket({"BBCA": 9500.0, "TLKM": 3800.0}, broken={"BBCA"})
    extractor = FakeExtractor([
        make_ticker("BBCA", relevance=0.9),
        make_ticker("ADRO", relevance=0.85),
        make_ticker("TLKM", relevance=0.8),
    ])
    orchestrator = make_orchestrator(
        market=market,
        extractor=extractor,
        tracker=PredictionTracker(database, market, clock=clock),
    )
    result = orchestrator.run(Schedule.MORNING)

    assert result.success
    statuses = {o.ticker: o.status for o in result.ticker_outcomes}
    assert statuses == {
        "BBCA": OutcomeStatus.ERROR,
        "ADRO": OutcomeStatus.SKIP,
        "TLKM": OutcomeStatus.OK,
    }
    assert result.recommendations_generated == 1
    assert database.active_tickers() == ["TLKM"]
    assert "BBCA: connection reset for BBCA" in result.errors


def test_stops_after_recommendation_cap(make_orchestrator, settings, clock):
    settings.max_recommendations_per_run = 2
    prices = {"BBCA": 9500.0, "BBRI": 5000.0, "TLKM": 3800.0, "ASII": 5200.0}
    scorer = FakeScorer()
    market = FakeMarket(prices)
    extractor = FakeExtractor([
        make_ticker(symbol, relevance=1.0 - i / 10) for i, symbol in enumerate(prices)
    ])
    result = make_orchestrator(market=market, extractor=extractor, scorer=scorer).run(Schedule.MORNING)

    assert result.recommendations_generated == 2
    assert scorer.analyzed == ["BBCA", "BBRI"]
    assert len(result.ticker_outcomes) == 2
    assert clock.sleeps == [1.0]


def test_only_strong_buys_become_recommendations(make_orchestrator, database):
    market = FakeMarket({"BBCA": 9500.0, "TLKM": 3800.0, "BBRI": 5000.0})
    scorer = FakeScorer(
        actions={"TLKM": Action.AVOID, "BBRI": Action.HOLD},
        scores={"BBCA": 60.0, "TLKM": 30.0},
    )
    extractor = FakeExtractor([make_ticker("BBCA"), make_ticker("TLKM"), make_ticker("BBRI")])
    orchestrator = make_orchestrator(market=market, scorer=scorer, extractor=extractor)
    result = orchestrator.run(Schedule.MORNING)

    assert result.recommendations_generated == 0
    assert database.active_recommendations() == []
    assert [o.action for o in result.ticker_outcomes] == [Action.BUY, Action.AVOID, Action.HOLD]
    avoided = orchestrator.avoid_store.items()
    assert [i.ticker for i in avoided] == ["TLKM"]
    assert avoided[0].overall_score == 30.0


def test_unanalyzable_ticker_is_skipped(make_orchestrator):
    result = make_orchestrator(scorer=FakeScorer(actions={"BBCA": None})).run(Schedule.MORNING)
    outcomes = {o.ticker: o for o in result.ticker_outcomes}
    assert outcomes["BBCA"].status is OutcomeStatus.SKIP
    assert outcomes["BBCA"].reason == "analysis failed"
    assert result.recommendations_generated == 1


def test_open_positions_are_not_analyzed_again(make_orchestrator, database):
    database.insert_recommendation(make_recommendation("BBCA", recommendation_date=date(2024, 1, 12)))
    scorer = FakeScorer()
    make_orchestrator(scorer=scorer).run(Schedule.MORNING)
    assert scorer.analyzed == ["TLKM"]


def test_tracking_runs_after_recommendations(make_orchestrator, database, clock):
    rec_id = database.insert_recommendation(make_recommendation(
        "ADRO", recommendation_date=date(2024, 1, 10), entry_price=2500.0,
        stop_loss=2400.0, target_price=2700.0,
    ))
    market = FakeMarket({"BBCA": 9500.0, "TLKM": 3800.0, "ADRO": 2750.0})
    tracker = PredictionTracker(database, market, clock=clock)
    result = make_orchestrator(market=market, tracker=tracker).run(Schedule.MORNING)

    # ADRO was pending above its entry, so only the two new fills move
    assert database.get_recommendation(rec_id).status.value == "pending"
    assert result.predictions_updated == 2


def test_completed_slot_is_skipped_unless_forced(make_orchestrator, database):
    make_orchestrator().run(Schedule.MORNING)

    crawler = FakeCrawler(database)
    skipped = make_orchestrator(crawler=crawler).run(Schedule.MORNING)
    assert skipped.skipped
    assert not skipped.success
    assert crawler.calls == 0

    forced = make_orchestrator(crawler=crawler).run(Schedule.MORNING, force=True)
    assert forced.success
    assert crawler.calls == 1

    evening = make_orchestrator().run(Schedule.EVENING)
    assert evening.success and not evening.skipped


def test_outlook_failure_does_not_fail_the_run(make_orchestrator):
    result = make_orchestrator(outlook_store=BrokenOutlookStore()).run(Schedule.MORNING)
    assert result.success


def test_outlook_is_optional(make_orchestrator):
    assert make_orchestrator(outlook_store=None).run(Schedule.MORNING).success


def test_cached_step_with_unexpected_shape_uses_empty_result(make_orchestrator, step_cache):
    step_cache.set(RUN_KEY, 1, {"new_articles": 5, "successful_sources": 2})
    step_cache.set(RUN_KEY, 2, {"tickers": [], "articles_analyzed": 5, "processing_time_ms": 10})
    step_cache.set(RUN_KEY, 3, [{"bogus": 1}])

    scorer = FakeScorer()
    result = make_orchestrator(scorer=scorer).run(Schedule.MORNING)

    assert result.success
    assert result.resumed_from == 4
    assert result.articles_processed == 5
    assert result.recommendations_generated == 0
    assert scorer.analyzed == []


def test_avoid_list_is_reset_at_start(make_orchestrator):
    orchestrator = make_orchestrator()
    orchestrator.avoid_store.add(AvoidItem(
        ticker="GOTO", company_name="GoTo", sector=None, current_price=80.0,
        entry_price=80.0, stop_loss=70.0, target_price=90.0, overall_score=20.0,
        sentiment_score=10.0, fundamental_score=20.0, technical_score=30.0,
        risk_pct=12.5, reward_pct=12.5, reason="weak", detected_at="2024-01-14T02:00:00+00:00",
    ))
    orchestrator.run(Schedule.MORNING)
    assert orchestrator.avoid_store.items() == []
