"""Ticker extraction from news articles.

Each article is matched against a configured universe of ticker symbols and
company-name aliases. A mention in the title counts as fully relevant, a
mention only in the content as partly relevant. Headline sentiment comes from
the injected :class:`SentimentProvider` (FinBERT in production), and the
per-article mentions are aggregated to one entry per symbol.
"""

import time
from typing import Dict, List, Tuple

from sentimeter.core.logger import logger
from sentimeter.core.news_utils import find_mentions
from sentimeter.models.datatypes import ExtractedTicker, ExtractionResult, NewsArticle
from sentimeter.pipeline.ranking import aggregate_mentions
from sentimeter.providers.base import SentimentProvider, TickerExtractor

TITLE_RELEVANCE = 1.0
CONTENT_RELEVANCE = 0.6


class FinBERTTickerExtractor(TickerExtractor):
    """Alias-matching extractor scored by a sentiment model.

    Args:
        universe: Ticker symbol → company-name aliases.
        sentiment: Sentiment provider used on ``title + content``.
    """

    def __init__(self, universe: Dict[str, List[str]], sentiment: SentimentProvider) -> None:
        self.universe = {symbol.upper(): aliases for symbol, aliases in universe.items()}
        self.sentiment = sentiment

    def extract(self, articles: List[NewsArticle]) -> ExtractionResult:
        started = time.monotonic()
        matched: List[Tuple[NewsArticle, List[Tuple[str, float]]]] = []

        for article in articles:
            title = article.title or ""
            content = article.content or ""
            in_title = find_mentions(title, self.universe)
            hits = [(symbol, TITLE_RELEVANCE) for symbol in in_title]
            hits += [
                (symbol, CONTENT_RELEVANCE)
                for symbol in find_mentions(content, self.universe)
                if symbol not in in_title
            ]
            if hits:
                matched.append((article, hits))

        scores = self.sentiment.analyze_batch([
            f"{a.title or ''}. {a.content or ''}".strip(" .") for a, _ in matched
        ])
        mentions = [
            ExtractedTicker(ticker=symbol, sentiment=result.score, relevance=relevance, reason=article.title)
            for (article, hits), result in zip(matched, scores)
            for symbol, relevance in hits
        ]

        tickers = aggregate_mentions(mentions)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"FinBERTTickerExtractor: {len(mentions)} mentions of {len(tickers)} tickers "
            f"in {len(articles)} articles ({elapsed_ms} ms)"
        )
        return ExtractionResult(
            tickers=tickers,
            articles_analyzed=len(articles),
            processing_time_ms=elapsed_ms,
        )
