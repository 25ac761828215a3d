"""RSS crawler that ingests news portal feeds into the article store.

Per portal:
  1. GET the feed with requests (timeout, browser-ish User-Agent)
  2. Parse with feedparser; malformed feeds are logged and used as far as they parse
  3. Normalise entries to NewsArticle and insert; duplicates (same URL) are ignored

A failing portal is logged and skipped; the crawl always continues to the next one.
"""

import re
from datetime import datetime, timezone
from typing import List, Optional

import feedparser
import requests

from sentimeter.core.config import NewsPortal
from sentimeter.core.database import Database
from sentimeter.core.logger import logger
from sentimeter.models.datatypes import CrawlSummary, NewsArticle
from sentimeter.providers.base import NewsCrawler

_USER_AGENT = "Mozilla/5.0 (compatible; sentimeter/0.1; +https://example.invalid/bot)"
_TAG_PATTERN = re.compile(r"<[^>]+>")


class RSSCrawler(NewsCrawler):
    """Crawls the configured portals' RSS/Atom feeds.

    Args:
        portals: Feeds to crawl.
        database: Article store.
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, portals: List[NewsPortal], database: Database, timeout: int = 15) -> None:
        self.portals = portals
        self.database = database
        self.timeout = timeout

    def crawl(self) -> CrawlSummary:
        summary = CrawlSummary()
        for portal in self.portals:
            articles = self._fetch_portal(portal)
            if articles is None:
                continue
            summary.successful_sources += 1
            new = self.database.insert_articles(articles)
            summary.new_articles += new
            logger.info(f"RSSCrawler: {portal.name}: {len(articles)} entries, {new} new")

        if self.portals and summary.successful_sources == 0:
            logger.warning("RSSCrawler: no portal answered; extraction will use stored articles only")
        return summary

    def _fetch_portal(self, portal: NewsPortal) -> Optional[List[NewsArticle]]:
        """Fetch and parse one feed. Returns None when the portal is unreachable."""
        try:
            resp = requests.get(portal.url, timeout=self.timeout, headers={"User-Agent": _USER_AGENT})
        except requests.RequestException as exc:
            logger.error(f"RSSCrawler: INFRA_FAILURE for {portal.name}: {exc}")
            return None

        if resp.status_code != 200:
            logger.error(f"RSSCrawler: INFRA_FAILURE for {portal.name} HTTP {resp.status_code}")
            return None

        feed = feedparser.parse(resp.content)
        if feed.bozo and hasattr(feed, "bozo_exception"):
            logger.warning(f"RSSCrawler: RSS parse warning for {portal.name}: {feed.bozo_exception}")

        return parse_entries(feed.entries, portal.name)


def parse_entries(entries: list, portal_name: str) -> List[NewsArticle]:
    """Normalise feedparser entries, dropping ones without a title or link."""
    articles = []
    for entry in entries:
        title = (entry.get("title") or "").strip()
        link = (entry.get("link") or "").strip()
        if not title or not link:
            continue
        pub_parsed = entry.get("published_parsed") or entry.get("updated_parsed")
        published_at = datetime(*pub_parsed[:6], tzinfo=timezone.utc) if pub_parsed else None
        summary = _TAG_PATTERN.sub(" ", entry.get("summary") or "")
        articles.append(NewsArticle(
            title=title,
            portal=portal_name,
            url=link,
            published_at=published_at,
            content=" ".join(summary.split()) or None,
        ))
    return articles
