"""File-backed JSON snapshots for dashboard data produced by a run.

Used for the market outlook (step 6) and the avoid list (AVOID-scored tickers
from step 4). Each snapshot is a single JSON file ``{"updated_at", "data"}``
that reads as empty once it is older than its TTL.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from sentimeter.core.clock import Clock, SystemClock
from sentimeter.core.logger import logger

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class JsonSnapshot:
    """A single TTL-bounded JSON document on disk.

    Args:
        path: File the snapshot is written to.
        ttl_seconds: Age after which :meth:`get` returns None.
        clock: Time source.
    """

    def __init__(self, path: str, ttl_seconds: int = 24 * 3600, clock: Optional[Clock] = None) -> None:
        self.path = path
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock or SystemClock()

    def get(self) -> Optional[Any]:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                entry = json.load(f)
            updated_at = datetime.fromisoformat(entry["updated_at"])
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning(f"JsonSnapshot: unreadable snapshot {self.path}: {exc}")
            return None
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        if self.clock.now() - updated_at > self.ttl:
            return None
        return entry.get("data")

    def set(self, data: Any) -> None:
        self._write(self.clock.now(), data)

    def clear(self) -> None:
        self._write(_EPOCH, None)

    def _write(self, updated_at: datetime, data: Any) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"updated_at": updated_at.isoformat(), "data": data}, f, indent=2)


# ── outlook ───────────────────────────────────────────────────────────────────

@dataclass
class NewsHighlight:
    title: str
    sentiment: str
    source: str


@dataclass
class MarketOutlook:
    summary: str
    sentiment: str  # "bullish" | "bearish" | "neutral"
    bullish_signals: List[str] = field(default_factory=list)
    bearish_signals: List[str] = field(default_factory=list)
    global_news: List[NewsHighlight] = field(default_factory=list)
    local_news: List[NewsHighlight] = field(default_factory=list)
    generated_at: str = ""


class OutlookStore:
    """Latest market outlook, kept for 24 hours."""

    def __init__(self, snapshot: JsonSnapshot) -> None:
        self.snapshot = snapshot

    def set(self, outlook: MarketOutlook) -> None:
        self.snapshot.set(asdict(outlook))

    def get(self) -> Optional[MarketOutlook]:
        data = self.snapshot.get()
        if not data:
            return None
        data = dict(data)
        data["global_news"] = [NewsHighlight(**n) for n in data.get("global_news", [])]
        data["local_news"] = [NewsHighlight(**n) for n in data.get("local_news", [])]
        return MarketOutlook(**data)

    def clear(self) -> None:
        self.snapshot.clear()


# ── avoid list ────────────────────────────────────────────────────────────────

@dataclass
class AvoidItem:
    """A high-risk ticker shown on the dashboard but never opened as a position."""
    ticker: str
    company_name: str
    sector: Optional[str]
    current_price: float
    entry_price: float
    stop_loss: float
    target_price: float
    overall_score: float
    sentiment_score: float
    fundamental_score: float
    technical_score: float
    risk_pct: float
    reward_pct: float
    reason: str
    detected_at: str


class AvoidStore:
    """AVOID-scored tickers from the latest run, kept for 24 hours."""

    def __init__(self, snapshot: JsonSnapshot) -> None:
        self.snapshot = snapshot

    def items(self) -> List[AvoidItem]:
        data = self.snapshot.get() or []
        return [AvoidItem(**item) for item in data]

    def add(self, item: AvoidItem) -> None:
        """Add ``item``, replacing any earlier entry for the same ticker."""
        kept = [i for i in self.items() if i.ticker != item.ticker]
        kept.append(item)
        self.snapshot.set([asdict(i) for i in kept])

    def clear(self) -> None:
        self.snapshot.clear()
