"""Configuration module for loading project settings and environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from sentimeter.core.errors import ConfigError

load_dotenv()

DEFAULT_CONFIG_PATH = "config.yaml"


def load_config(config_path: Optional[str | Path] = None) -> Dict[str, Any]:
    """
    Load configuration from the specified YAML file.

    Args:
        config_path (str | Path): Path to the configuration file. Defaults to
            ``$SENTIMETER_CONFIG`` or "config.yaml".

    Returns:
        Dict[str, Any]: A dictionary containing the configuration settings.
    """
    if config_path is None:
        config_path = os.getenv("SENTIMETER_CONFIG", DEFAULT_CONFIG_PATH)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found at {config_path}")

    with open(config_file, "r", encoding="utf-8") as file:
        config_data = yaml.safe_load(file)

    if not config_data:
        raise ValueError(f"Configuration file {config_path} is empty or invalid.")

    return config_data


@dataclass
class NewsPortal:
    """One RSS/Atom feed crawled in step 1."""
    name: str
    url: str
    is_global: bool = False


@dataclass
class Settings:
    """Typed view over config.yaml with the pipeline's defaults.

    Attributes:
        db_path: SQLite database holding articles, recommendations, jobs and
            the step cache.
        output_dir: Directory for logs and the outlook/avoid snapshots.
        step_cache_ttl_seconds: Age after which a cached step is ignored.
        min_ticker_sentiment: Ranking positivity threshold.
        max_ranked_tickers: How many ranked tickers step 4 considers.
        min_overall_score: Score a BUY needs before it becomes a recommendation.
        max_recommendations_per_run: Step 4 stops after this many BUYs.
        max_news_age_days: Article window fed to ticker extraction.
        max_content_length: Article content is truncated to this many chars.
        ticker_delay_seconds: Pause between tickers in step 4.
        history_period: yfinance period string for the price history.
        ticker_suffix: Exchange suffix appended for yfinance (".JK" for IDX).
        portals: News feeds crawled in step 1.
        universe: Ticker symbol → list of company-name aliases.
    """
    db_path: str = "output/sentimeter.db"
    output_dir: str = "output"
    step_cache_ttl_seconds: int = 3600
    min_ticker_sentiment: float = 0.2
    max_ranked_tickers: int = 10
    min_overall_score: float = 65.0
    max_recommendations_per_run: int = 5
    max_news_age_days: int = 1
    max_content_length: int = 200
    ticker_delay_seconds: float = 1.0
    history_period: str = "3mo"
    ticker_suffix: str = ".JK"
    snapshot_ttl_seconds: int = 24 * 3600
    portals: List[NewsPortal] = field(default_factory=list)
    universe: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "Settings":
        """Build settings from a parsed config.yaml dict.

        Unknown keys are ignored. ``SENTIMETER_DB_PATH`` overrides ``db_path``.
        """
        pipeline = config.get("pipeline", {}) or {}
        cache = config.get("step_cache", {}) or {}
        market = config.get("market", {}) or {}
        news = config.get("news", {}) or {}

        portals_raw = news.get("portals", []) or []
        if not isinstance(portals_raw, list):
            raise ConfigError("news.portals must be a list")
        portals = []
        for item in portals_raw:
            if not isinstance(item, dict) or "url" not in item:
                raise ConfigError(f"news.portals entry needs a url: {item!r}")
            portals.append(NewsPortal(
                name=item.get("name") or item["url"],
                url=item["url"],
                is_global=bool(item.get("global", False)),
            ))

        universe_raw = config.get("universe", {}) or {}
        if not isinstance(universe_raw, dict):
            raise ConfigError("universe must map ticker symbols to alias lists")
        universe = {
            str(symbol).upper(): [str(a) for a in (aliases or [])]
            for symbol, aliases in universe_raw.items()
        }

        defaults = cls()
        return cls(
            db_path=os.getenv("SENTIMETER_DB_PATH", config.get("db_path", defaults.db_path)),
            output_dir=config.get("output_dir", defaults.output_dir),
            step_cache_ttl_seconds=int(cache.get("ttl_seconds", defaults.step_cache_ttl_seconds)),
            min_ticker_sentiment=float(pipeline.get("min_ticker_sentiment", defaults.min_ticker_sentiment)),
            max_ranked_tickers=int(pipeline.get("max_ranked_tickers", defaults.max_ranked_tickers)),
            min_overall_score=float(pipeline.get("min_overall_score", defaults.min_overall_score)),
            max_recommendations_per_run=int(
                pipeline.get("max_recommendations_per_run", defaults.max_recommendations_per_run)
            ),
            max_news_age_days=int(news.get("max_age_days", defaults.max_news_age_days)),
            max_content_length=int(news.get("max_content_length", defaults.max_content_length)),
            ticker_delay_seconds=float(market.get("ticker_delay_seconds", defaults.ticker_delay_seconds)),
            history_period=market.get("history_period", defaults.history_period),
            ticker_suffix=market.get("ticker_suffix", defaults.ticker_suffix),
            snapshot_ttl_seconds=int(config.get("snapshot_ttl_seconds", defaults.snapshot_ttl_seconds)),
            portals=portals,
            universe=universe,
        )
