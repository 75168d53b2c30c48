"""Scored, multi-stage extraction of the primary ticker of a news article."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Mapping
from urllib.parse import urlsplit

from market_hub.core.models import MatchReason, NewsItem, Resolution
from market_hub.symbols.aliases import (
    GENERIC_WORDS,
    MARKET_TERMS,
    STOPWORDS,
    company_name_forms,
    is_common_word_ticker,
    normalize,
)
from market_hub.symbols.universe import SymbolUniverse, UniverseSnapshot

logger = logging.getLogger(__name__)

PRIMARY_MIN_SCORE = 60.0
PRIMARY_MIN_GAP = 15.0
SECONDARY_MIN_SCORE = 40.0
MAX_SECONDARIES = 2

_SOURCE_POINTS = 100.0
_URL_POINTS = 25.0

# (title, summary) points per stage
_CASHTAG_POINTS = (60.0, 45.0)
_LITERAL_POINTS = (60.0, 45.0)
_NAME_POINTS = (80.0, 60.0)
_ALIAS_POINTS = (20.0, 10.0)
_PARTIAL_POINTS = (30.0, 20.0)

_STOPWORD_PENALTY = 40.0
_RELATED_LIST_PENALTY = 30.0
_INSIDE_WORD_PENALTY = 40.0

_MIN_ALIAS_LENGTH = 3
_MARKET_TERM_WORDS = max(len(term.split()) for term in MARKET_TERMS)

# Evidence a common-word ticker needs before any other stage counts for it
_EXPLICIT_REASONS = frozenset(
    {MatchReason.SOURCE, MatchReason.CASHTAG_TITLE, MatchReason.CASHTAG_SUMMARY}
)
_AMBIGUOUS_REASONS = frozenset(
    {
        MatchReason.LITERAL_TITLE, MatchReason.LITERAL_SUMMARY, MatchReason.URL,
        MatchReason.ALIAS_TITLE, MatchReason.ALIAS_SUMMARY,
    }
)

_SYMBOL = r"[A-Z]{1,5}(?:\.[A-Z])?"
_CASHTAG_RE = re.compile(rf"(?<![\w$])\$({_SYMBOL})\b")
_LITERAL_RES = (
    re.compile(rf"\b({_SYMBOL}):(?!//)"),
    re.compile(rf"\(({_SYMBOL})\)"),
    re.compile(rf"\((?:NASDAQ|NYSE|AMEX|NYSEARCA|NYSE American)\s*:\s*({_SYMBOL})\)"),
)
_URL_SEGMENT_RE = re.compile(rf"^{_SYMBOL}$")
_RELATED_LIST_RE = re.compile(
    r"(?i:\b(?:tickers?|symbols?|stocks?|related))\s*:\s*"
    r"([A-Za-z0-9.\-]+(?:\s*,\s*[A-Za-z0-9.\-]+)*)"
)

MULTI_COMPANY_WORDS = frozenset({"merger", "acquisition", "lawsuit", "partnership", "vs", "versus"})
MULTI_COMPANY_PHRASES = ("joint venture",)

# Evidence order breaks ties when naming the strongest stage
_STAGE_ORDER = {reason: i for i, reason in enumerate(MatchReason)}


@dataclass(frozen=True)
class _Field:
    """One article field, raw and normalized."""

    raw: str
    words: tuple[str, ...]
    title: bool
    market_words: frozenset[int] = frozenset()

    @classmethod
    def of(cls, text: str, title: bool) -> _Field:
        words = tuple(normalize(text or "").split())
        return cls(raw=text or "", words=words, title=title, market_words=_market_positions(words))

    def points(self, pair: tuple[float, float]) -> float:
        return pair[0] if self.title else pair[1]


class _Scoreboard:
    """Best points per (symbol, stage); stages add up per symbol."""

    def __init__(self) -> None:
        self._evidence: dict[str, dict[MatchReason, float]] = {}

    def add(self, symbol: str, reason: MatchReason, points: float) -> None:
        stages = self._evidence.setdefault(symbol, {})
        stages[reason] = max(stages.get(reason, 0.0), max(0.0, points))

    def has(self, symbol: str, reason: MatchReason) -> bool:
        return reason in self._evidence.get(symbol, {})

    def reasons(self, symbol: str) -> set[MatchReason]:
        return set(self._evidence.get(symbol, {}))

    def discard(self, symbol: str, reasons: Iterable[MatchReason]) -> None:
        stages = self._evidence.get(symbol, {})
        for reason in reasons:
            stages.pop(reason, None)

    def symbols(self) -> list[str]:
        return list(self._evidence)

    def totals(self) -> dict[str, float]:
        return {
            symbol: sum(stages.values())
            for symbol, stages in self._evidence.items()
            if sum(stages.values()) > 0
        }

    def strongest(self, symbol: str) -> MatchReason:
        stages = self._evidence.get(symbol, {})
        if not stages:
            return MatchReason.GENERAL
        return min(stages, key=lambda r: (-stages[r], _STAGE_ORDER[r]))


# --- Negative signals ---


def _market_positions(words: tuple[str, ...]) -> frozenset[int]:
    """Indices of ``words`` that belong to an index, venue or macro term."""
    covered: set[int] = set()
    for n in range(1, _MARKET_TERM_WORDS + 1):
        for i in range(len(words) - n + 1):
            if " ".join(words[i : i + n]) in MARKET_TERMS:
                covered.update(range(i, i + n))
    return frozenset(covered)


def _related_spans(text: str) -> list[tuple[int, int]]:
    return [m.span(1) for m in _RELATED_LIST_RE.finditer(text)]


def _only_in_related_list(text: str, phrase: str) -> bool:
    """True when ``phrase`` occurs, but only inside a "related: A, B" list."""
    spans = _related_spans(text)
    if not spans:
        return False
    word = re.compile(rf"(?<!\w){re.escape(phrase)}(?!\w)", re.IGNORECASE)
    inside = any(word.search(text[start:end]) for start, end in spans)
    if not inside:
        return False
    outside = text
    for start, end in reversed(spans):
        outside = outside[:start] + " " + outside[end:]
    return word.search(outside) is None


def _standalone_pattern(phrase: str) -> re.Pattern:
    body = r"[\W_]+".join(re.escape(w) for w in phrase.split())
    return re.compile(rf"(?<![\w&-]){body}(?![\w&]|-\w)", re.IGNORECASE)


def _inside_longer_word(text: str, phrase: str) -> bool:
    """True when a normalized match only exists as part of a longer raw token.

    Normalization turns "meta-analysis" into "meta analysis"; the raw text
    shows "meta" never stands on its own there.
    """
    return _standalone_pattern(phrase).search(text) is None


def _penalty(phrase: str, raw_text: str, normalized_match: bool) -> float:
    penalty = 0.0
    if phrase.lower() in STOPWORDS:
        penalty += _STOPWORD_PENALTY
    if _only_in_related_list(raw_text, phrase):
        penalty += _RELATED_LIST_PENALTY
    if normalized_match and _inside_longer_word(raw_text, phrase):
        penalty += _INSIDE_WORD_PENALTY
    return penalty


# --- Stages ---


def _score_source(board: _Scoreboard, tickers: Iterable[str], snapshot: UniverseSnapshot) -> None:
    for ticker in tickers:
        symbol = ticker.strip().upper()
        if symbol in snapshot:
            board.add(symbol, MatchReason.SOURCE, _SOURCE_POINTS)


def _score_symbol_patterns(
    board: _Scoreboard, field: _Field, full_text: str, snapshot: UniverseSnapshot
) -> None:
    stages = (
        ((_CASHTAG_RE,), _CASHTAG_POINTS,
         MatchReason.CASHTAG_TITLE if field.title else MatchReason.CASHTAG_SUMMARY),
        (_LITERAL_RES, _LITERAL_POINTS,
         MatchReason.LITERAL_TITLE if field.title else MatchReason.LITERAL_SUMMARY),
    )
    for patterns, points, reason in stages:
        for pattern in patterns:
            for match in pattern.finditer(field.raw):
                symbol = match.group(1)
                if symbol not in snapshot:
                    continue
                board.add(
                    symbol, reason,
                    field.points(points) - _penalty(symbol, full_text, normalized_match=False),
                )


def _score_url(board: _Scoreboard, url: str | None, snapshot: UniverseSnapshot) -> None:
    if not url:
        return
    try:
        path = urlsplit(url).path
    except ValueError:
        return
    for segment in path.split("/"):
        if _URL_SEGMENT_RE.match(segment) and segment in snapshot:
            board.add(segment, MatchReason.URL, _URL_POINTS)


def _ngrams(words: tuple[str, ...], max_len: int) -> Iterable[tuple[range, str]]:
    """(word positions, phrase) pairs, longest phrases first."""
    for n in range(max_len, 0, -1):
        for i in range(len(words) - n + 1):
            yield range(i, i + n), " ".join(words[i : i + n])


def _score_names(
    board: _Scoreboard, field: _Field, full_text: str, snapshot: UniverseSnapshot
) -> None:
    name_reason = MatchReason.NAME_TITLE if field.title else MatchReason.NAME_SUMMARY
    alias_reason = MatchReason.ALIAS_TITLE if field.title else MatchReason.ALIAS_SUMMARY
    partial_reason = MatchReason.PARTIAL_TITLE if field.title else MatchReason.PARTIAL_SUMMARY

    for positions, phrase in _ngrams(field.words, snapshot.max_alias_words):
        if all(i in field.market_words for i in positions):
            continue
        for record in snapshot.lookup_alias(phrase):
            penalty = _penalty(phrase, full_text, normalized_match=True)
            if phrase in company_name_forms(record.company_name):
                board.add(record.symbol, name_reason, field.points(_NAME_POINTS) - penalty)
            elif len(phrase) >= _MIN_ALIAS_LENGTH:
                board.add(record.symbol, alias_reason, field.points(_ALIAS_POINTS) - penalty)

    # Partial overlap: two or more significant company-name words, at least
    # one of them not generic.
    text_words = {
        w
        for i, w in enumerate(field.words)
        if len(w) > 2 and w not in STOPWORDS and i not in field.market_words
    }
    overlap: dict[str, set[str]] = {}
    for word in text_words:
        for record in snapshot.records_with_word(word):
            overlap.setdefault(record.symbol, set()).add(word)
    for symbol, common in overlap.items():
        if len(common) < 2 or common <= GENERIC_WORDS:
            continue
        if board.has(symbol, name_reason):
            continue
        board.add(symbol, partial_reason, field.points(_PARTIAL_POINTS))


def _require_explicit_evidence(board: _Scoreboard) -> None:
    """Common-word tickers keep literal, URL and alias points only next to a
    cashtag or a provider-supplied ticker.
    """
    for symbol in board.symbols():
        if not is_common_word_ticker(symbol):
            continue
        if board.reasons(symbol) & _EXPLICIT_REASONS:
            continue
        board.discard(symbol, _AMBIGUOUS_REASONS)


# --- Selection ---


def has_multi_company_keywords(text: str) -> bool:
    normalized = normalize(text)
    words = set(normalized.split())
    if words & MULTI_COMPANY_WORDS:
        return True
    padded = f" {normalized} "
    return any(f" {phrase} " in padded for phrase in MULTI_COMPANY_PHRASES)


def rank(scores: Mapping[str, float]) -> list[tuple[str, float]]:
    """Candidates by score descending, then symbol ascending."""
    return sorted(scores.items(), key=lambda kv: (-kv[1], kv[0]))


def select_primary(scores: Mapping[str, float]) -> str | None:
    """The top symbol if it scores >= 60 and leads the runner-up by >= 15."""
    ranked = rank(scores)
    if not ranked:
        return None
    top_symbol, top = ranked[0]
    second = ranked[1][1] if len(ranked) > 1 else 0.0
    if top >= PRIMARY_MIN_SCORE and top - second >= PRIMARY_MIN_GAP:
        return top_symbol
    return None


def resolve(
    title: str,
    summary: str = "",
    url: str | None = None,
    provider_tickers: Iterable[str] = (),
    *,
    snapshot: UniverseSnapshot,
) -> Resolution:
    """Resolve one article against one universe snapshot.

    Pure: the same inputs always produce the same Resolution. Only
    symbols present in ``snapshot`` can be returned.
    """
    title_field = _Field.of(title, title=True)
    summary_field = _Field.of(summary, title=False)
    full_text = f"{title_field.raw}\n{summary_field.raw}"

    board = _Scoreboard()
    _score_source(board, provider_tickers, snapshot)
    for field in (title_field, summary_field):
        _score_symbol_patterns(board, field, full_text, snapshot)
    _score_url(board, url, snapshot)
    for field in (title_field, summary_field):
        _score_names(board, field, full_text, snapshot)
    _require_explicit_evidence(board)

    scores = board.totals()
    primary = select_primary(scores)
    if primary is None:
        return Resolution(scores=scores)

    secondaries: tuple[str, ...] = ()
    if has_multi_company_keywords(full_text):
        secondaries = tuple(
            symbol
            for symbol, score in rank(scores)
            if symbol != primary and score >= SECONDARY_MIN_SCORE
        )[:MAX_SECONDARIES]

    return Resolution(
        primary=primary,
        secondaries=secondaries,
        confidence=min(1.0, scores[primary] / 100.0),
        reason=board.strongest(primary).value,
        scores=scores,
    )


class TickerResolver:
    """Attaches resolved tickers to news items using the live universe.

    Callers that process a batch take one snapshot and pass it to every
    call so the whole batch sees the same universe.
    """

    def __init__(self, universe: SymbolUniverse) -> None:
        self._universe = universe

    def snapshot(self) -> UniverseSnapshot:
        return self._universe.snapshot()

    def resolve(
        self,
        title: str,
        summary: str = "",
        url: str | None = None,
        provider_tickers: Iterable[str] = (),
        snapshot: UniverseSnapshot | None = None,
    ) -> Resolution:
        return resolve(
            title, summary, url, provider_tickers,
            snapshot=snapshot if snapshot is not None else self.snapshot(),
        )

    def resolve_item(self, item: NewsItem, snapshot: UniverseSnapshot | None = None) -> NewsItem:
        """Copy of ``item`` with primary, secondaries, confidence and reason set."""
        result = self.resolve(
            item.title, item.summary, item.url, item.provider_tickers, snapshot=snapshot
        )
        return item.model_copy(
            update={
                "primary_ticker": result.primary,
                "secondary_tickers": result.secondaries,
                "ticker_confidence": result.confidence,
                "ticker_reason": result.reason,
            }
        )

    def resolve_items(self, items: Iterable[NewsItem]) -> list[NewsItem]:
        snapshot = self.snapshot()
        resolved = [self.resolve_item(item, snapshot) for item in items]
        logger.debug(
            "Resolved %d items against %d symbols (%d with a primary)",
            len(resolved), len(snapshot), sum(1 for i in resolved if i.primary_ticker),
        )
        return resolved
