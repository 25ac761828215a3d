"""Text helpers for matching company names and tickers inside news text."""

import re
from typing import Dict, Iterable, List, Tuple

# Legal suffixes stripped from company names before matching.
CORPORATE_SUFFIXES = [
    "tbk", "tbk.", "persero", "(persero)", "limited", "ltd", "ltd.", "corporation", "corp", "corp.",
]

_PREFIX_PATTERN = re.compile(r"^\s*pt\.?\s+", flags=re.IGNORECASE)


def strip_suffix(long_name: str) -> str:
    """Remove the leading ``PT`` and trailing corporate suffixes from a company name.

    Examples:
        ``"PT Bank Central Asia Tbk"`` → ``"Bank Central Asia"``
        ``"Hindustan Zinc Ltd."`` → ``"Hindustan Zinc"``
    """
    name = _PREFIX_PATTERN.sub("", long_name)
    pattern = r"[\s,]+(" + "|".join(re.escape(s) for s in CORPORATE_SUFFIXES) + r")[\s.]*$"
    previous = None
    while previous != name:
        previous = name
        name = re.sub(pattern, "", name, flags=re.IGNORECASE).strip()
    return name


def phrase_spans(text: str, phrase: str) -> List[Tuple[int, int]]:
    """Return the ``(start, end)`` offsets of every standalone ``phrase`` in ``text``.

    A match must not touch a letter or digit on either side, so ``"BBCA"`` is
    found in ``"Saham BBCA naik"`` but not in ``"BBCAX"``. Case is ignored.
    """
    phrase = phrase.strip()
    if not text or not phrase:
        return []
    pattern = r"(?<![^\W_])" + re.escape(phrase) + r"(?![^\W_])"
    return [m.span() for m in re.finditer(pattern, text, flags=re.IGNORECASE)]


def standalone_match(text: str, phrase: str) -> bool:
    """Return True if ``phrase`` appears in ``text`` as a standalone phrase."""
    return bool(phrase_spans(text, phrase))


def company_phrases(ticker: str, aliases: Iterable[str] = ()) -> List[str]:
    """The ticker, each alias, and each alias without its corporate suffixes."""
    phrases = [ticker] if ticker else []
    for alias in aliases:
        phrases.append(alias)
        phrases.append(strip_suffix(alias))
    seen = set()
    unique = []
    for phrase in phrases:
        key = phrase.strip().lower()
        if key and key not in seen:
            seen.add(key)
            unique.append(phrase.strip())
    return unique


def mentions_company(text: str, ticker: str, aliases: Iterable[str] = ()) -> bool:
    """Return True if ``text`` names the company by ticker or by any alias."""
    return any(standalone_match(text, phrase) for phrase in company_phrases(ticker, aliases))


def find_mentions(text: str, universe: Dict[str, Iterable[str]]) -> List[str]:
    """Return the symbols of ``universe`` named in ``text``, in universe order.

    Names are claimed longest first and a shorter name inside an already
    claimed span is ignored: with both ``"State Bank of India"`` and ``"Bank
    of India"`` in the universe, ``"State Bank of India posts profit"`` only
    names the former.
    """
    candidates = [
        (start, end, symbol)
        for symbol, aliases in universe.items()
        for phrase in company_phrases(symbol, aliases)
        for start, end in phrase_spans(text, phrase)
    ]
    candidates.sort(key=lambda c: (c[0] - c[1], c[0]))

    claimed: List[Tuple[int, int]] = []
    found = set()
    for start, end, symbol in candidates:
        if any(start < c_end and c_start < end for c_start, c_end in claimed):
            continue
        claimed.append((start, end))
        found.add(symbol)
    return [symbol for symbol in universe if symbol in found]
