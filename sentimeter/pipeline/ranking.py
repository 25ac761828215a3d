"""Aggregation and ranking of extracted ticker candidates."""

from dataclasses import dataclass
from typing import Dict, Iterable, List

from sentimeter.models.datatypes import ExtractedTicker

MIN_SENTIMENT = 0.2
MAX_CANDIDATES = 10


def aggregate_mentions(mentions: Iterable[ExtractedTicker]) -> List[ExtractedTicker]:
    """Collapse per-article mentions into one entry per symbol.

    Sentiment is the mean over mentions, relevance the maximum, and the reason
    is taken from the most relevant mention. Symbols keep first-seen order.
    """
    grouped: Dict[str, List[ExtractedTicker]] = {}
    for mention in mentions:
        grouped.setdefault(mention.ticker.upper(), []).append(mention)

    aggregated = []
    for symbol, group in grouped.items():
        best = max(group, key=lambda m: m.relevance)
        aggregated.append(ExtractedTicker(
            ticker=symbol,
            sentiment=round(sum(m.sentiment for m in group) / len(group), 4),
            relevance=best.relevance,
            reason=best.reason,
        ))
    return aggregated


@dataclass
class TickerRanker:
    """Picks the candidates worth a market lookup.

    Attributes:
        min_sentiment: Candidates need sentiment strictly above this.
        limit: Maximum number of candidates returned.
    """
    min_sentiment: float = MIN_SENTIMENT
    limit: int = MAX_CANDIDATES

    def rank(self, tickers: Iterable[ExtractedTicker], open_symbols: Iterable[str]) -> List[ExtractedTicker]:
        """Filter positive candidates without an open position, best first.

        Ordered by relevance, then sentiment, both descending. Ties beyond that
        keep their input order.
        """
        excluded = {s.upper() for s in open_symbols}
        candidates = [
            t for t in tickers
            if t.sentiment > self.min_sentiment and t.ticker.upper() not in excluded
        ]
        candidates.sort(key=lambda t: (-t.relevance, -t.sentiment))
        return candidates[:self.limit]
