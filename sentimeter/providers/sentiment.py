"""FinBERT sentiment scoring for news text.

``ProsusAI/finbert`` classifies a text as positive, negative or neutral with a
softmax confidence. The confidence becomes a signed score: positive texts map
to ``+confidence``, negative ones to ``-confidence`` and neutral ones to 0.

Articles are scored in batches; a batch that fails inference falls back to
scoring its texts one at a time so a single bad input only neutralises itself.
"""

from typing import Any, Dict, List, Sequence

from sentimeter.core.logger import logger
from sentimeter.models.datatypes import SentimentResult
from sentimeter.providers.base import SentimentProvider

DEFAULT_MODEL = "ProsusAI/finbert"
DEFAULT_BATCH_SIZE = 16
MAX_TOKENS = 512

_LABELS = {"positive": "Positive", "negative": "Negative", "neutral": "Neutral"}

NEUTRAL = SentimentResult(label="Neutral", score=0.0, raw_label="neutral", raw_score=0.0)
FAILED = SentimentResult(label="Neutral", score=0.0, raw_label="error", raw_score=0.0)


class FinBERTProvider(SentimentProvider):
    """CPU FinBERT classifier. The model loads on first use.

    Args:
        model_name: HuggingFace model identifier.
        batch_size: Texts per forward pass in :meth:`analyze_batch`.
    """

    def __init__(self, model_name: str = DEFAULT_MODEL, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.model_name = model_name
        self.batch_size = batch_size
        self._classifier = None

    def analyze(self, text: str) -> SentimentResult:
        return self.analyze_batch([text])[0]

    def analyze_batch(self, texts: Sequence[str]) -> List[SentimentResult]:
        cleaned = [(t or "").strip() for t in texts]
        results = [NEUTRAL] * len(cleaned)
        pending = [i for i, t in enumerate(cleaned) if t]
        if not pending:
            return results

        classifier = self._load()
        for start in range(0, len(pending), self.batch_size):
            chunk = pending[start:start + self.batch_size]
            try:
                outputs = classifier([cleaned[i] for i in chunk], truncation=True, max_length=MAX_TOKENS)
            except Exception as exc:
                logger.warning(f"FinBERTProvider: batch of {len(chunk)} failed ({exc}); scoring one by one")
                outputs = [self._classify_one(classifier, cleaned[i]) for i in chunk]
            for i, output in zip(chunk, outputs):
                results[i] = _to_result(output) if output is not None else FAILED

        logger.info(f"FinBERTProvider: scored {len(pending)} texts")
        return results

    def _classify_one(self, classifier, text: str):
        try:
            return classifier(text, truncation=True, max_length=MAX_TOKENS)[0]
        except Exception as exc:
            logger.error(f"FinBERTProvider: inference failed for {text[:60]!r}: {exc}")
            return None

    def _load(self):
        if self._classifier is None:
            from transformers import pipeline

            logger.info(f"FinBERTProvider: loading '{self.model_name}' on CPU")
            self._classifier = pipeline(task="text-classification", model=self.model_name, device=-1)
        return self._classifier


def _to_result(output: Any) -> SentimentResult:
    # some transformers versions wrap each prediction in a list
    if isinstance(output, list):
        output = output[0]
    prediction: Dict[str, Any] = output
    raw_label = str(prediction["label"]).lower()
    raw_score = float(prediction["score"])
    return SentimentResult(
        label=_LABELS.get(raw_label, "Neutral"),
        score=normalize(raw_label, raw_score),
        raw_label=raw_label,
        raw_score=raw_score,
    )


def normalize(raw_label: str, raw_score: float) -> float:
    """Signed score in [-1.0, 1.0] from a FinBERT label and confidence."""
    if raw_label == "positive":
        return round(raw_score, 4)
    if raw_label == "negative":
        return round(-raw_score, 4)
    return 0.0
