"""Abstract base classes for the collaborators the pipeline drives."""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import pandas as pd

from sentimeter.models.datatypes import (
    CrawlSummary,
    ExtractionResult,
    FetchResult,
    Fundamentals,
    NewsArticle,
    Quote,
    SentimentResult,
    StockAnalysis,
    StockAnalysisInput,
)


class NewsCrawler(ABC):
    """Ingests articles from news portals into the article store."""

    @abstractmethod
    def crawl(self) -> CrawlSummary:
        """
        Crawl every configured source and persist new articles.

        Returns:
            CrawlSummary: Number of new articles and of sources that answered.
        """
        pass


class TickerExtractor(ABC):
    """Finds ticker mentions and their sentiment in a batch of articles."""

    @abstractmethod
    def extract(self, articles: List[NewsArticle]) -> ExtractionResult:
        """
        Extract and aggregate ticker mentions.

        Args:
            articles (List[NewsArticle]): Recent articles, content already truncated.

        Returns:
            ExtractionResult: One entry per ticker symbol.
        """
        pass


class StockScorer(ABC):
    """Turns one ticker's market picture into a trade proposal."""

    @abstractmethod
    def analyze(self, data: StockAnalysisInput) -> Optional[StockAnalysis]:
        """
        Score a stock and propose entry, stop and target prices.

        Args:
            data (StockAnalysisInput): Quote, technicals, fundamentals and news.

        Returns:
            Optional[StockAnalysis]: None when the analysis could not be made;
                                     the pipeline skips the ticker.
        """
        pass


class MarketDataProvider(ABC):
    """Abstract interface for quotes, fundamentals and price history.

    Implementations return :class:`FetchResult` failures for ordinary
    "no data" conditions instead of raising.
    """

    @abstractmethod
    def fetch_quote(self, ticker: str) -> FetchResult[Quote]:
        pass

    @abstractmethod
    def fetch_fundamentals(self, ticker: str) -> FetchResult[Fundamentals]:
        pass

    @abstractmethod
    def fetch_history(self, ticker: str, period: str = "3mo") -> FetchResult[pd.DataFrame]:
        """
        Fetch daily OHLCV history.

        Args:
            ticker (str): Symbol without exchange suffix.
            period (str): yfinance period string, e.g. ``"3mo"``.

        Returns:
            FetchResult[pd.DataFrame]: Columns Date, Open, High, Low, Close, Volume.
        """
        pass


class SentimentProvider(ABC):
    """Abstract interface for classifying financial text sentiment."""

    @abstractmethod
    def analyze(self, text: str) -> SentimentResult:
        """
        Analyze the sentiment of a given text.

        Args:
            text (str): The text to analyze.

        Returns:
            SentimentResult: Canonical label and continuous score in [-1.0, 1.0].
        """
        pass

    def analyze_batch(self, texts: Sequence[str]) -> List[SentimentResult]:
        """Score several texts. Implementations may override with batched inference."""
        return [self.analyze(text) for text in texts]
