import pytest

from conftest import make_ticker
from sentimeter.models.datatypes import (
    Action,
    Fundamentals,
    Quote,
    StockAnalysisInput,
    TechnicalSummary,
)
from sentimeter.providers.scorer import RuleBasedScorer


def _input(price=10000.0, trend="bullish", supports=(), resistances=(), volatility=1.5,
           sentiment=0.8, fundamentals=None):
    return StockAnalysisInput(
        ticker="BBCA",
        company_name="Bank Central Asia",
        quote=Quote(ticker="BBCA", price=price),
        technical=TechnicalSummary(
            ticker="BBCA", trend=trend, sma20=9800.0, sma50=9500.0,
            high_3m=10500.0, low_3m=9000.0,
            supports=list(supports), resistances=list(resistances),
            volatility_pct=volatility,
        ),
        fundamentals=fundamentals,
        news_mentions=[make_ticker("BBCA", sentiment=sentiment, relevance=1.0, reason="BBCA beats estimates")],
    )


STRONG = Fundamentals(ticker="BBCA", company_name="Bank Central Asia", pe_ratio=12.0,
                      pb_ratio=1.2, roe=0.2, debt_to_equity=50.0, dividend_yield=0.04)


def test_strong_setup_is_a_buy():
    analysis = RuleBasedScorer().analyze(_input(fundamentals=STRONG))
    assert analysis.action is Action.BUY
    assert analysis.overall_score >= 65
    assert analysis.stop_loss < analysis.entry_price < analysis.target_price
    assert analysis.max_hold_days == 14
    assert "BBCA beats estimates" in analysis.news_summary


def test_entry_uses_nearby_support_as_limit_order():
    analysis = RuleBasedScorer().analyze(_input(supports=[9800.0]))
    assert analysis.order_type == "LIMIT"
    assert analysis.entry_price == 9800.0


def test_entry_uses_quote_when_support_is_far():
    analysis = RuleBasedScorer().analyze(_input(supports=[9000.0]))
    assert analysis.order_type == "MARKET"
    assert analysis.entry_price == 10000.0


def test_risk_band_is_clamped():
    calm = RuleBasedScorer().analyze(_input(volatility=0.1))
    assert calm.stop_loss == pytest.approx(10000.0 * 0.98)
    assert calm.target_price == pytest.approx(10000.0 * 1.04)

    wild = RuleBasedScorer().analyze(_input(volatility=20.0))
    assert wild.stop_loss == pytest.approx(10000.0 * 0.92)


def test_target_pulled_in_to_resistance():
    analysis = RuleBasedScorer().analyze(_input(volatility=0.1, resistances=[10300.0]))
    assert analysis.target_price == 10300.0


def test_high_volatility_is_avoided():
    assert RuleBasedScorer().analyze(_input(volatility=7.0)).action is Action.AVOID


def test_negative_news_on_bearish_chart_is_avoided():
    analysis = RuleBasedScorer().analyze(_input(trend="bearish", sentiment=-0.9))
    assert analysis.action is Action.AVOID
    assert analysis.overall_score < 40


def test_bearish_trend_is_never_a_buy():
    analysis = RuleBasedScorer().analyze(_input(trend="bearish", fundamentals=STRONG, sentiment=1.0))
    assert analysis.action is not Action.BUY


def test_unusable_price_returns_none():
    assert RuleBasedScorer().analyze(_input(price=0.0)) is None
