import pytest

from sentimeter.core.news_utils import find_mentions, mentions_company, standalone_match, strip_suffix
from sentimeter.models.datatypes import NewsArticle, SentimentResult
from sentimeter.providers.base import SentimentProvider
from sentimeter.providers.extractor import FinBERTTickerExtractor
from sentimeter.providers.sentiment import FinBERTProvider, normalize

UNIVERSE = {
    "BBCA": ["PT Bank Central Asia Tbk", "BCA"],
    "TLKM": ["Telkom Indonesia"],
    "ADRO": ["Adaro Energy"],
}


class KeywordSentiment(SentimentProvider):
    def __init__(self):
        self.calls = []

    def analyze(self, text):
        self.calls.append(text)
        if "surges" in text:
            return SentimentResult(label="Positive", score=0.9)
        if "slumps" in text:
            return SentimentResult(label="Negative", score=-0.7)
        return SentimentResult(label="Neutral", score=0.0)


def _article(title, content="", n=0):
    return NewsArticle(title=title, portal="Kontan", url=f"https://example.com/{n}", content=content)


def test_title_mentions_outrank_content_mentions():
    sentiment = KeywordSentiment()
    extractor = FinBERTTickerExtractor(UNIVERSE, sentiment)
    result = extractor.extract([
        _article("Bank Central Asia surges on loan growth", "Telkom Indonesia also gained", n=1),
        _article("Weather update for Jakarta", "Rain expected", n=2),
    ])

    by_symbol = {t.ticker: t for t in result.tickers}
    assert set(by_symbol) == {"BBCA", "TLKM"}
    assert by_symbol["BBCA"].relevance == 1.0
    assert by_symbol["TLKM"].relevance == 0.6
    assert by_symbol["BBCA"].sentiment == 0.9
    assert by_symbol["BBCA"].reason == "Bank Central Asia surges on loan growth"
    assert result.articles_analyzed == 2
    assert len(sentiment.calls) == 1


def test_mentions_are_aggregated_across_articles():
    extractor = FinBERTTickerExtractor(UNIVERSE, KeywordSentiment())
    result = extractor.extract([
        _article("ADRO surges after coal deal", n=1),
        _article("Adaro Energy slumps on export curbs", n=2),
    ])
    assert len(result.tickers) == 1
    assert result.tickers[0].ticker == "ADRO"
    assert result.tickers[0].sentiment == pytest.approx(0.1)


def test_no_articles():
    result = FinBERTTickerExtractor(UNIVERSE, KeywordSentiment()).extract([])
    assert result.tickers == []
    assert result.articles_analyzed == 0


def test_strip_suffix():
    assert strip_suffix("PT Bank Central Asia Tbk") == "Bank Central Asia"
    assert strip_suffix("Perusahaan Gas Negara (Persero) Tbk") == "Perusahaan Gas Negara"
    assert strip_suffix("Hindustan Zinc Ltd.") == "Hindustan Zinc"


def test_standalone_match_needs_word_boundaries():
    assert standalone_match("Bank of India posts profit", "Bank of India")
    assert standalone_match("Shares of Bank Central Asia rose", "Bank Central Asia")
    assert standalone_match("Laba (BBCA) naik", "bbca")
    assert not standalone_match("BBCAX listing", "BBCA")
    assert not standalone_match("XBBCA listing", "BBCA")


def test_longer_company_name_claims_the_shorter_one():
    universe = {"SBIN": ["State Bank of India"], "BANKINDIA": ["Bank of India"]}
    assert find_mentions("State Bank of India posts profit", universe) == ["SBIN"]
    assert find_mentions("Bank of India posts profit", universe) == ["BANKINDIA"]
    assert find_mentions(
        "Bank of India lags while State Bank of India gains", universe
    ) == ["SBIN", "BANKINDIA"]


def test_mid_sentence_mentions_are_extracted():
    extractor = FinBERTTickerExtractor(UNIVERSE, KeywordSentiment())
    result = extractor.extract([
        _article("Shares of Bank Central Asia surges", n=1),
        _article("Saham BBCA dan TLKM naik", n=2),
    ])
    assert sorted(t.ticker for t in result.tickers) == ["BBCA", "TLKM"]


def test_mentions_company_by_ticker_or_alias():
    assert mentions_company("Saham BBCA naik", "BBCA", [])
    assert mentions_company("Bank Central Asia raises dividend", "BBCA", UNIVERSE["BBCA"])
    assert not mentions_company("", "BBCA", UNIVERSE["BBCA"])
    assert not mentions_company("Telkom Indonesia", "BBCA", UNIVERSE["BBCA"])


def test_finbert_score_normalisation():
    assert normalize("positive", 0.91) == 0.91
    assert normalize("negative", 0.8) == -0.8
    assert normalize("neutral", 0.99) == 0.0


class FakeClassifier:
    """Stands in for the transformers pipeline; fails on any batch containing 'boom'."""

    def __init__(self):
        self.calls = 0

    def __call__(self, inputs, truncation, max_length):
        self.calls += 1
        texts = [inputs] if isinstance(inputs, str) else inputs
        if any("boom" in t for t in texts):
            raise RuntimeError("tokenizer error")
        return [
            {"label": "negative" if "slumps" in t else "positive", "score": 0.8}
            for t in texts
        ]


def test_finbert_batches_and_skips_empty_text():
    provider = FinBERTProvider(batch_size=2)
    classifier = FakeClassifier()
    provider._classifier = classifier

    results = provider.analyze_batch(["ADRO surges", "", "BBCA slumps", "TLKM surges"])

    assert [r.score for r in results] == [0.8, 0.0, -0.8, 0.8]
    assert results[1].raw_label == "neutral"
    assert classifier.calls == 2


def test_finbert_failed_batch_falls_back_to_single_texts():
    provider = FinBERTProvider()
    provider._classifier = FakeClassifier()

    results = provider.analyze_batch(["ADRO surges", "boom"])

    assert results[0].label == "Positive"
    assert results[1].raw_label == "error"
    assert results[1].score == 0.0
