"""Sentimeter daily analysis entry point.

Usage:
    python run_pipeline.py                      # run (or resume) the current slot
    python run_pipeline.py run --force          # run even if the slot already completed
    python run_pipeline.py run --schedule evening
    python run_pipeline.py track                # update prediction statuses only
    python run_pipeline.py status               # open positions with live metrics
    python run_pipeline.py summary --date 2024-01-15
    python run_pipeline.py history --ticker BBCA --status target_hit --page 2

Loads config.yaml, wires the providers and reports success/failure to stdout
and the pipeline log. Exit code 0 on success, 1 on failure.
"""

import argparse
import sys
from datetime import date, datetime
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()  # must precede sentimeter imports so env vars are available at module load

from sentimeter.core.config import Settings, load_config  # noqa: E402
from sentimeter.core.database import Database  # noqa: E402
from sentimeter.core.errors import PipelineJobError  # noqa: E402
from sentimeter.core.logger import logger  # noqa: E402
from sentimeter.models.datatypes import PositionStatus, RunKey, Schedule  # noqa: E402
from sentimeter.pipeline.engine import PipelineOrchestrator  # noqa: E402
from sentimeter.providers.market import YFinanceProvider  # noqa: E402
from sentimeter.tracker.updater import PredictionTracker  # noqa: E402


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sentimeter daily analysis")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Run or resume the analysis pipeline")
    run.add_argument("--schedule", choices=[s.value for s in Schedule], default=None,
                     help="Run slot (default: morning before noon, evening after)")
    run.add_argument("-f", "--force", action="store_true",
                     help="Run even if this slot already completed today")

    sub.add_parser("track", help="Update prediction statuses with live prices")
    sub.add_parser("status", help="Show open positions with live metrics")

    summary = sub.add_parser("summary", help="Show the prediction summary")
    summary.add_argument("--date", type=date.fromisoformat, default=None,
                         help="Recommendation date, YYYY-MM-DD (default: today)")

    history = sub.add_parser("history", help="List past recommendations with outcome stats")
    history.add_argument("--ticker", default=None, help="Only this ticker")
    history.add_argument("--status", choices=[s.value for s in PositionStatus], default=None,
                         help="Only this lifecycle status")
    history.add_argument("--from", dest="start", type=date.fromisoformat, default=None,
                         help="Earliest recommendation date, YYYY-MM-DD")
    history.add_argument("--to", dest="end", type=date.fromisoformat, default=None,
                         help="Latest recommendation date, YYYY-MM-DD")
    history.add_argument("--page", type=int, default=1)
    history.add_argument("--page-size", type=int, default=20)

    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "run"
        args.schedule = None
        args.force = False
    return args


def cmd_run(settings: Settings, schedule: Schedule, force: bool) -> int:
    orchestrator = PipelineOrchestrator.from_settings(settings)
    run_key = RunKey(orchestrator.clock.today(), schedule)
    if not force and orchestrator.database.has_running_job(run_key):
        print(f"ERROR: a {schedule.value} run is already in progress for {run_key.date}", file=sys.stderr)
        return 1

    print("=" * 60)
    print(f"  SENTIMETER DAILY ANALYSIS - {schedule.value.upper()}")
    print(f"  {datetime.now().isoformat()}" + ("  MODE: FORCE" if force else ""))
    print("=" * 60)

    try:
        result = orchestrator.run(schedule, force=force)
    except PipelineJobError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        if exc.result is not None:
            print(f"  Completed before failure: articles={exc.result.articles_processed} "
                  f"tickers={exc.result.tickers_found}", file=sys.stderr)
        print("  Re-run to resume from the last completed step.", file=sys.stderr)
        return 1

    if result.skipped:
        print(f"WARNING: {result.errors[0]}. Use --force to run anyway.")
        return 1

    print(f"SUCCESS: {schedule.value} analysis completed (resumed from step {result.resumed_from})")
    print(f"  Articles: {result.articles_processed}")
    print(f"  Tickers: {result.tickers_found}")
    print(f"  Recommendations: {result.recommendations_generated}")
    print(f"  Predictions updated: {result.predictions_updated}")
    for error in result.errors:
        print(f"  warning: {error}")
    return 0


def _tracker(settings: Settings) -> PredictionTracker:
    return PredictionTracker(Database(settings.db_path), YFinanceProvider(suffix=settings.ticker_suffix))


def cmd_track(settings: Settings) -> int:
    result = _tracker(settings).update_all()
    print(f"Checked {result.checked} open predictions, updated {result.updated}")
    for t in result.transitions:
        pnl = f" ({t.pnl_pct:+.2f}%)" if t.pnl_pct is not None else ""
        print(f"  {t.ticker}: {t.previous_status.value} -> {t.new_status.value}{pnl}")
    for error in result.errors:
        print(f"  warning: {error}")
    return 0


def cmd_status(settings: Settings) -> int:
    predictions = _tracker(settings).tracked_predictions()
    if not predictions:
        print("No open positions.")
        return 0
    print(f"{'TICKER':8} {'STATUS':10} {'PRICE':>10} {'ENTRY':>10} {'TARGET':>10} "
          f"{'STOP':>10} {'DAYS':>5} {'PNL%':>7} {'R/R':>6}")
    for p in predictions:
        rec = p.recommendation
        pnl = f"{p.unrealized_pnl_pct:+.2f}" if p.unrealized_pnl_pct is not None else "-"
        rr = f"{p.risk_reward_ratio:.2f}" if p.risk_reward_ratio is not None else "-"
        print(f"{rec.ticker:8} {rec.status.value:10} {p.current_price:>10.2f} {rec.entry_price:>10.2f} "
              f"{rec.target_price:>10.2f} {rec.stop_loss:>10.2f} {p.days_active:>5} {pnl:>7} {rr:>6}")
    return 0


def cmd_summary(settings: Settings, on: Optional[date]) -> int:
    s = _tracker(settings).summary(on)
    print(f"Active: {s.total_active} (pending {s.pending}, entered {s.entry_hit})")
    print(f"Closed today: {s.closed_today}")
    print(f"Win rate: {'-' if s.win_rate is None else f'{s.win_rate:.1f}%'}")
    print(f"Avg return: {'-' if s.avg_return is None else f'{s.avg_return:+.2f}%'}")
    return 0


def cmd_history(settings: Settings, args: argparse.Namespace) -> int:
    database = Database(settings.db_path)
    page = database.history(
        ticker=args.ticker, status=args.status, start=args.start, end=args.end,
        page=args.page, page_size=args.page_size,
    )
    if not page.items:
        print("No recommendations match.")
    else:
        print(f"{'DATE':10} {'TICKER':8} {'STATUS':10} {'ENTRY':>10} {'EXIT':>10} "
              f"{'PNL%':>7} {'SCORE':>6}")
        for rec in page.items:
            exit_price = f"{rec.exit_price:.2f}" if rec.exit_price is not None else "-"
            pnl = f"{rec.profit_loss_pct:+.2f}" if rec.profit_loss_pct is not None else "-"
            print(f"{rec.recommendation_date.isoformat():10} {rec.ticker:8} {rec.status.value:10} "
                  f"{rec.entry_price:>10.2f} {exit_price:>10} {pnl:>7} {rec.overall_score:>6.1f}")
        print(f"Page {page.page}/{page.total_pages} ({page.total} recommendations)")

    stats = database.history_stats(ticker=args.ticker, start=args.start, end=args.end)
    print(f"Closed with P&L: {stats.total}")
    print(f"Win rate: {'-' if stats.win_rate is None else f'{stats.win_rate:.1f}%'}")
    print(f"Avg return: {'-' if stats.avg_return is None else f'{stats.avg_return:+.2f}%'}")
    if stats.best_pick:
        print(f"Best: {stats.best_pick[0]} ({stats.best_pick[1]:+.2f}%)")
    if stats.worst_pick:
        print(f"Worst: {stats.worst_pick[0]} ({stats.worst_pick[1]:+.2f}%)")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Dispatch the CLI command. Returns 0 on success, 1 on failure."""
    args = parse_args(argv)
    try:
        settings = Settings.from_config(load_config(args.config))
    except (FileNotFoundError, ValueError) as exc:
        logger.error(f"run_pipeline: failed to load config: {exc}")
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    try:
        if args.command == "track":
            return cmd_track(settings)
        if args.command == "status":
            return cmd_status(settings)
        if args.command == "summary":
            return cmd_summary(settings, args.date)
        if args.command == "history":
            return cmd_history(settings, args)
        schedule = Schedule(args.schedule) if args.schedule else Schedule.for_hour(datetime.now().hour)
        return cmd_run(settings, schedule, args.force)
    except Exception as exc:
        logger.error(f"run_pipeline: {args.command} raised: {exc}", exc_info=True)
        print(f"ERROR: {args.command} failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
