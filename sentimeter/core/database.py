"""SQLite persistence for articles, recommendations, fundamentals and job runs."""

import sqlite3
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from sentimeter.core.clock import Clock, SystemClock
from sentimeter.core.logger import logger
from sentimeter.models.datatypes import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    Fundamentals,
    HistoryPage,
    HistoryStats,
    NewsArticle,
    PositionStatus,
    Recommendation,
    RunKey,
)
from sentimeter.tracker.lifecycle import StatusTransition

_SCHEMA = """
CREATE TABLE IF NOT EXISTS news_articles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    portal TEXT NOT NULL,
    content TEXT,
    published_at TEXT,
    crawled_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS recommendations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ticker TEXT NOT NULL,
    recommendation_date TEXT NOT NULL,
    action TEXT NOT NULL DEFAULT 'BUY',
    entry_price REAL NOT NULL,
    stop_loss REAL NOT NULL,
    target_price REAL NOT NULL,
    max_hold_days INTEGER NOT NULL,
    order_type TEXT NOT NULL DEFAULT 'LIMIT',
    sentiment_score REAL,
    fundamental_score REAL,
    technical_score REAL,
    overall_score REAL,
    news_summary TEXT,
    fundamental_summary TEXT,
    technical_summary TEXT,
    analysis_summary TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    entry_hit_date TEXT,
    exit_date TEXT,
    exit_price REAL,
    profit_loss_pct REAL
);

CREATE INDEX IF NOT EXISTS idx_recommendations_status ON recommendations (status);

CREATE TABLE IF NOT EXISTS stock_fundamentals (
    ticker TEXT PRIMARY KEY,
    company_name TEXT,
    sector TEXT,
    market_cap REAL,
    pe_ratio REAL,
    pb_ratio REAL,
    roe REAL,
    debt_to_equity REAL,
    dividend_yield REAL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS job_executions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    execution_date TEXT NOT NULL,
    schedule TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    articles_processed INTEGER,
    tickers_extracted INTEGER,
    recommendations_generated INTEGER,
    error_message TEXT
);
"""

JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class Database:
    """Thin repository over one SQLite file.

    Args:
        db_path: Path to the SQLite database file (created if missing).
        clock: Source of the crawl, fundamentals and job timestamps.
    """

    def __init__(self, db_path: str = "output/sentimeter.db", clock: Optional[Clock] = None) -> None:
        self.db_path = Path(db_path)
        self.clock = clock or SystemClock()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA)

    def _now(self) -> str:
        return self.clock.now().isoformat()

    # ── articles ──────────────────────────────────────────────────────────────

    def insert_articles(self, articles: Iterable[NewsArticle]) -> int:
        """Store articles not seen before (by URL). Returns how many were new."""
        crawled_at = self._now()
        inserted = 0
        with self._get_connection() as conn:
            for article in articles:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO news_articles
                        (url, title, portal, content, published_at, crawled_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        article.url,
                        article.title,
                        article.portal,
                        article.content,
                        article.published_at.isoformat() if article.published_at else None,
                        crawled_at,
                    ),
                )
                inserted += cursor.rowcount
        return inserted

    def recent_articles(self, since: datetime) -> List[NewsArticle]:
        """Articles crawled at or after ``since``, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM news_articles WHERE crawled_at >= ? ORDER BY id DESC",
                (since.isoformat(),),
            ).fetchall()
        return [
            NewsArticle(
                title=row["title"],
                portal=row["portal"],
                url=row["url"],
                published_at=datetime.fromisoformat(row["published_at"]) if row["published_at"] else None,
                content=row["content"],
            )
            for row in rows
        ]

    # ── recommendations ───────────────────────────────────────────────────────

    def insert_recommendation(self, rec: Recommendation) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO recommendations (
                    ticker, recommendation_date, action, entry_price, stop_loss,
                    target_price, max_hold_days, order_type, sentiment_score,
                    fundamental_score, technical_score, overall_score, news_summary,
                    fundamental_summary, technical_summary, analysis_summary, status
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    rec.ticker.upper(), rec.recommendation_date.isoformat(), rec.action,
                    rec.entry_price, rec.stop_loss, rec.target_price, rec.max_hold_days,
                    rec.order_type, rec.sentiment_score, rec.fundamental_score,
                    rec.technical_score, rec.overall_score, rec.news_summary,
                    rec.fundamental_summary, rec.technical_summary, rec.analysis_summary,
                    rec.status.value,
                ),
            )
            rec_id = cursor.lastrowid
        logger.info(f"Database: inserted recommendation #{rec_id} for {rec.ticker}")
        return rec_id

    def get_recommendation(self, rec_id: int) -> Optional[Recommendation]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM recommendations WHERE id = ?", (rec_id,)).fetchone()
        return _row_to_recommendation(row) if row else None

    def active_recommendations(self) -> List[Recommendation]:
        """Recommendations still pending or entered, oldest first."""
        return self._select_recommendations(
            "WHERE status IN (?, ?) ORDER BY id",
            tuple(s.value for s in OPEN_STATUSES),
        )

    def closed_recommendations(self) -> List[Recommendation]:
        return self._select_recommendations(
            "WHERE status NOT IN (?, ?) ORDER BY id",
            tuple(s.value for s in OPEN_STATUSES),
        )

    def recommendations_by_date(self, on: date) -> List[Recommendation]:
        return self._select_recommendations(
            "WHERE recommendation_date = ? ORDER BY id", (on.isoformat(),)
        )

    def active_tickers(self) -> List[str]:
        return sorted({rec.ticker.upper() for rec in self.active_recommendations()})

    def apply_transition(self, transition: StatusTransition) -> None:
        """Persist a status change produced by the lifecycle tracker."""
        if transition.recommendation_id is None:
            raise ValueError(f"{transition.ticker}: transition has no recommendation id")
        with self._get_connection() as conn:
            if transition.new_status is PositionStatus.ENTRY_HIT:
                conn.execute(
                    "UPDATE recommendations SET status = ?, entry_hit_date = ? WHERE id = ?",
                    (transition.new_status.value, transition.on.isoformat(), transition.recommendation_id),
                )
            else:
                conn.execute(
                    """
                    UPDATE recommendations
                    SET status = ?, exit_date = ?, exit_price = ?, profit_loss_pct = ?
                    WHERE id = ?
                    """,
                    (
                        transition.new_status.value,
                        transition.on.isoformat(),
                        transition.price,
                        transition.pnl_pct,
                        transition.recommendation_id,
                    ),
                )

    def _select_recommendations(self, clause: str, params: tuple) -> List[Recommendation]:
        with self._get_connection() as conn:
            rows = conn.execute(f"SELECT * FROM recommendations {clause}", params).fetchall()
        return [_row_to_recommendation(row) for row in rows]

    # ── history ───────────────────────────────────────────────────────────────

    def history(
        self,
        ticker: Optional[str] = None,
        status: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> HistoryPage:
        """
        Return one page of recommendations matching the filters.

        Rows are ordered by recommendation date, then overall score, both
        descending. ``page`` is clamped to at least 1 and ``page_size`` to
        ``1..MAX_PAGE_SIZE``; ``start`` and ``end`` are inclusive.

        Raises:
            ValueError: ``status`` is not a known position status.
        """
        page = max(1, page)
        page_size = min(MAX_PAGE_SIZE, max(1, page_size))
        where, params = _history_filter(ticker, status, start, end)

        with self._get_connection() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM recommendations {where}", params).fetchone()[0]
        items = self._select_recommendations(
            f"{where} ORDER BY recommendation_date DESC, overall_score DESC, id DESC LIMIT ? OFFSET ?",
            params + (page_size, (page - 1) * page_size),
        )
        return HistoryPage(items=items, page=page, page_size=page_size, total=total)

    def history_stats(
        self,
        ticker: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> HistoryStats:
        """Win rate, average return and best/worst pick over closed positions
        with a realised P&L. Positions that expired before entry are excluded."""
        where, params = _history_filter(ticker, None, start, end)
        terminal = tuple(s.value for s in TERMINAL_STATUSES)
        where += f" AND status IN ({', '.join('?' * len(terminal))}) AND profit_loss_pct IS NOT NULL"
        params += terminal

        with self._get_connection() as conn:
            row = conn.execute(
                f"""
                SELECT COUNT(*) AS total,
                       SUM(CASE WHEN status = ? THEN 1 ELSE 0 END) AS wins,
                       AVG(profit_loss_pct) AS avg_return
                FROM recommendations {where}
                """,
                (PositionStatus.TARGET_HIT.value,) + params,
            ).fetchone()
            best = conn.execute(
                f"SELECT ticker, profit_loss_pct FROM recommendations {where} "
                f"ORDER BY profit_loss_pct DESC LIMIT 1",
                params,
            ).fetchone()
            worst = conn.execute(
                f"SELECT ticker, profit_loss_pct FROM recommendations {where} "
                f"ORDER BY profit_loss_pct ASC LIMIT 1",
                params,
            ).fetchone()

        total = row["total"]
        return HistoryStats(
            total=total,
            win_rate=round(row["wins"] / total * 100.0, 2) if total else None,
            avg_return=round(row["avg_return"], 2) if total else None,
            best_pick=(best["ticker"], best["profit_loss_pct"]) if best else None,
            worst_pick=(worst["ticker"], worst["profit_loss_pct"]) if worst else None,
        )

    # ── fundamentals ──────────────────────────────────────────────────────────

    def upsert_fundamentals(self, f: Fundamentals) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO stock_fundamentals (
                    ticker, company_name, sector, market_cap, pe_ratio, pb_ratio,
                    roe, debt_to_equity, dividend_yield, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    f.ticker.upper(), f.company_name, f.sector, f.market_cap, f.pe_ratio,
                    f.pb_ratio, f.roe, f.debt_to_equity, f.dividend_yield, self._now(),
                ),
            )

    def get_fundamentals(self, ticker: str) -> Optional[Fundamentals]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM stock_fundamentals WHERE ticker = ?", (ticker.upper(),)
            ).fetchone()
        if not row:
            return None
        return Fundamentals(
            ticker=row["ticker"],
            company_name=row["company_name"],
            sector=row["sector"],
            market_cap=row["market_cap"],
            pe_ratio=row["pe_ratio"],
            pb_ratio=row["pb_ratio"],
            roe=row["roe"],
            debt_to_equity=row["debt_to_equity"],
            dividend_yield=row["dividend_yield"],
        )

    # ── job executions ────────────────────────────────────────────────────────

    def start_job(self, run_key: RunKey) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO job_executions (execution_date, schedule, status, started_at)
                VALUES (?, ?, ?, ?)
                """,
                (run_key.date.isoformat(), run_key.schedule.value, JOB_RUNNING, self._now()),
            )
            return cursor.lastrowid

    def complete_job(self, job_id: int, counts: Dict[str, int]) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                UPDATE job_executions
                SET status = ?, completed_at = ?, articles_processed = ?,
                    tickers_extracted = ?, recommendations_generated = ?
                WHERE id = ?
                """,
                (
                    JOB_COMPLETED, self._now(),
                    counts.get("articles_processed", 0),
                    counts.get("tickers_extracted", 0),
                    counts.get("recommendations_generated", 0),
                    job_id,
                ),
            )

    def fail_job(self, job_id: int, message: str) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE job_executions SET status = ?, completed_at = ?, error_message = ? WHERE id = ?",
                (JOB_FAILED, self._now(), message, job_id),
            )

    def job_status(self, job_id: int) -> Optional[Dict[str, object]]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM job_executions WHERE id = ?", (job_id,)).fetchone()
        return dict(row) if row else None

    def has_job_run_today(self, run_key: RunKey) -> bool:
        return self._count_jobs(run_key, JOB_COMPLETED) > 0

    def has_running_job(self, run_key: RunKey) -> bool:
        return self._count_jobs(run_key, JOB_RUNNING) > 0

    def _count_jobs(self, run_key: RunKey, status: str) -> int:
        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) FROM job_executions
                WHERE execution_date = ? AND schedule = ? AND status = ?
                """,
                (run_key.date.isoformat(), run_key.schedule.value, status),
            ).fetchone()
        return row[0]


# ── helpers ───────────────────────────────────────────────────────────────────

def _history_filter(
    ticker: Optional[str],
    status: Optional[str],
    start: Optional[date],
    end: Optional[date],
) -> Tuple[str, tuple]:
    clauses = ["1=1"]
    params: list = []
    if ticker:
        clauses.append("ticker = ?")
        params.append(ticker.upper())
    if status:
        clauses.append("status = ?")
        params.append(PositionStatus(status).value)
    if start:
        clauses.append("recommendation_date >= ?")
        params.append(start.isoformat())
    if end:
        clauses.append("recommendation_date <= ?")
        params.append(end.isoformat())
    return "WHERE " + " AND ".join(clauses), tuple(params)


def _parse_date(raw: Optional[str]) -> Optional[date]:
    return date.fromisoformat(raw) if raw else None


def _row_to_recommendation(row: sqlite3.Row) -> Recommendation:
    return Recommendation(
        id=row["id"],
        ticker=row["ticker"],
        recommendation_date=date.fromisoformat(row["recommendation_date"]),
        action=row["action"],
        entry_price=row["entry_price"],
        stop_loss=row["stop_loss"],
        target_price=row["target_price"],
        max_hold_days=row["max_hold_days"],
        order_type=row["order_type"],
        sentiment_score=row["sentiment_score"] or 0.0,
        fundamental_score=row["fundamental_score"] or 0.0,
        technical_score=row["technical_score"] or 0.0,
        overall_score=row["overall_score"] or 0.0,
        news_summary=row["news_summary"] or "",
        fundamental_summary=row["fundamental_summary"] or "",
        technical_summary=row["technical_summary"] or "",
        analysis_summary=row["analysis_summary"] or "",
        status=PositionStatus(row["status"]),
        entry_hit_date=_parse_date(row["entry_hit_date"]),
        exit_date=_parse_date(row["exit_date"]),
        exit_price=row["exit_price"],
        profit_loss_pct=row["profit_loss_pct"],
    )
