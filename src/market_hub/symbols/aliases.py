"""Company-name normalization and deterministic alias derivation."""

from __future__ import annotations

import re

_NON_WORD_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")

STOPWORDS = frozenset(
    {"the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by", "a", "an"}
)

# Matched against normalized trailing words, longest first
LEGAL_SUFFIXES: tuple[tuple[str, ...], ...] = tuple(
    sorted(
        (
            tuple(s.split())
            for s in (
                "inc", "incorporated", "corp", "corporation", "company", "co", "ltd",
                "limited", "llc", "lp", "l p", "holdings", "holding", "group", "plc",
                "sa", "nv", "ag", "se", "class a", "class b", "class c",
                "common stock", "ordinary shares", "american depositary shares", "ads",
                "adr", "new",
            )
        ),
        key=len,
        reverse=True,
    )
)

# Single words too generic to stand alone as an alias
GENERIC_WORDS = frozenset(
    {
        "american", "bank", "capital", "energy", "financial", "first", "general",
        "global", "great", "health", "industries", "international", "national",
        "new", "pacific", "royal", "southern", "systems", "technologies", "technology",
        "trust", "united", "universal", "western", "eastern", "northern", "world",
        "fund", "etf", "index", "shares", "series",
    }
)


# Indices, venues and macro bodies (normalized). A company name or alias
# that only appears as part of one of these is not evidence for the company.
MARKET_TERMS = frozenset(
    {
        "nasdaq", "nasdaq composite", "nasdaq 100", "nyse", "new york stock exchange",
        "dow", "the dow", "dow jones", "dow jones industrial average", "s p", "s p 500",
        "russell 2000", "cboe", "vix", "wall street", "stock market", "fed",
        "federal reserve", "fomc", "treasury", "treasuries",
    }
)

# Tickers that are also everyday words; single letters are always included
COMMON_WORD_TICKERS = frozenset(
    {
        "AI", "ALL", "ARE", "BE", "BIG", "CAN", "CAR", "DAY", "FOR", "FUN", "GO", "HAS",
        "IT", "KEY", "LOW", "NEW", "NOW", "ON", "ONE", "OUT", "PAY", "REAL", "RUN", "SEE",
        "SO", "TWO", "WELL", "YOU",
    }
)


def is_common_word_ticker(symbol: str) -> bool:
    return len(symbol) == 1 or symbol.upper() in COMMON_WORD_TICKERS


def normalize(text: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    text = _NON_WORD_RE.sub(" ", (text or "").lower())
    return _WS_RE.sub(" ", text).strip()


def strip_legal_suffix(name: str) -> str:
    """Remove trailing legal-entity words and a leading "the" (normalized output)."""
    words = normalize(name).split()
    changed = True
    while changed and words:
        changed = False
        for suffix in LEGAL_SUFFIXES:
            n = len(suffix)
            if len(words) > n and tuple(words[-n:]) == suffix:
                words = words[:-n]
                changed = True
                break
    if len(words) > 1 and words[0] == "the":
        words = words[1:]
    return " ".join(words)


def significant_words(name: str) -> list[str]:
    return [w for w in strip_legal_suffix(name).split() if w not in STOPWORDS]


def company_name_forms(name: str) -> tuple[str, ...]:
    """The raw and suffix-stripped name, normalized and deduplicated."""
    forms = [normalize(name), strip_legal_suffix(name)]
    return tuple(dict.fromkeys(f for f in forms if f))


def derive_aliases(symbol: str, company_name: str) -> tuple[str, ...]:
    """All normalized aliases for a symbol, in a fixed order.

    1. the raw company name
    2. the name without legal suffixes
    3. the first one to three significant words
    4. the initialism of the significant words, if at least 3 letters
    5. the ticker itself
    """
    aliases: list[str] = list(company_name_forms(company_name))

    words = significant_words(company_name)
    for n in (1, 2, 3):
        if len(words) < n:
            break
        prefix = words[:n]
        if n == 1 and (len(prefix[0]) < 4 or prefix[0] in GENERIC_WORDS or prefix[0].isdigit()):
            continue
        aliases.append(" ".join(prefix))

    initialism = "".join(w[0] for w in words if w and w[0].isalpha())
    if len(initialism) >= 3:
        aliases.append(initialism)

    aliases.append(symbol.lower())
    return tuple(dict.fromkeys(a for a in aliases if a))
