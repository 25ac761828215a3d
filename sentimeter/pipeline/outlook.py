"""Market outlook summary built from a run's articles and ticker sentiment."""

from datetime import datetime
from typing import Iterable, List

from sentimeter.core.snapshots import MarketOutlook, NewsHighlight
from sentimeter.models.datatypes import ExtractedTicker, NewsArticle

GLOBAL_PORTAL_KEYWORDS = ("reuters", "bloomberg", "cnbc international")
MAX_ARTICLES = 30
MAX_GLOBAL_NEWS = 5
MAX_LOCAL_NEWS = 10
SIGNAL_THRESHOLD = 0.3
MOOD_THRESHOLD = 0.2


def build_outlook(
    articles: List[NewsArticle],
    tickers: List[ExtractedTicker],
    recommendations: int,
    generated_at: datetime,
    global_portals: Iterable[str] = (),
) -> MarketOutlook:
    """Summarise the run: overall mood from mean ticker sentiment, signal
    lines, and headline highlights split into global and local news."""
    global_names = {p.lower() for p in global_portals}
    global_news: List[NewsHighlight] = []
    local_news: List[NewsHighlight] = []
    for article in articles[:MAX_ARTICLES]:
        portal = article.portal.lower()
        highlight = NewsHighlight(title=article.title, sentiment="neutral", source=article.portal)
        if portal in global_names or any(k in portal for k in GLOBAL_PORTAL_KEYWORDS):
            global_news.append(highlight)
        else:
            local_news.append(highlight)

    avg = sum(t.sentiment for t in tickers) / len(tickers) if tickers else 0.0
    positive = [t for t in tickers if t.sentiment > SIGNAL_THRESHOLD]
    negative = [t for t in tickers if t.sentiment < -SIGNAL_THRESHOLD]

    bullish: List[str] = []
    bearish: List[str] = []
    if positive:
        bullish.append(f"{len(positive)} tickers with positive sentiment")
    if negative:
        bearish.append(f"{len(negative)} tickers with negative sentiment")
    if recommendations > 0:
        bullish.append(f"{recommendations} new BUY recommendations generated")

    if avg > MOOD_THRESHOLD:
        mood = "bullish"
    elif avg < -MOOD_THRESHOLD:
        mood = "bearish"
    else:
        mood = "neutral"

    return MarketOutlook(
        summary=(
            f"Market analysis based on {len(articles)} articles. "
            f"Average sentiment: {avg:.2f}. {recommendations} recommendations generated."
        ),
        sentiment=mood,
        bullish_signals=bullish,
        bearish_signals=bearish,
        global_news=global_news[:MAX_GLOBAL_NEWS],
        local_news=local_news[:MAX_LOCAL_NEWS],
        generated_at=generated_at.isoformat(),
    )
