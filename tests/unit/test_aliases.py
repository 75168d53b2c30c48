"""Tests for market_hub.symbols.aliases."""

import pytest

from market_hub.symbols.aliases import (
    company_name_forms,
    derive_aliases,
    normalize,
    significant_words,
    strip_legal_suffix,
)


class TestNormalize:
    def test_lowercases_and_strips_punctuation(self):
        assert normalize("Meta Platforms, Inc.") == "meta platforms inc"

    def test_collapses_whitespace(self):
        assert normalize("  Apple \t  Inc  ") == "apple inc"

    def test_empty(self):
        assert normalize("") == ""
        assert normalize(None) == ""


class TestStripLegalSuffix:
    @pytest.mark.parametrize(
        "name, expected",
        [
            ("Apple Inc.", "apple"),
            ("Microsoft Corporation", "microsoft"),
            ("The Coca-Cola Company", "coca cola"),
            ("Alphabet Inc. Class A", "alphabet"),
            ("Berkshire Hathaway Holdings Ltd", "berkshire hathaway"),
        ],
    )
    def test_strips(self, name, expected):
        assert strip_legal_suffix(name) == expected

    def test_never_strips_to_nothing(self):
        assert strip_legal_suffix("Corporation") == "corporation"

    def test_significant_words_drop_stopwords(self):
        assert significant_words("Bank of America Corporation") == ["bank", "america"]


class TestDeriveAliases:
    def test_simple_name(self):
        assert derive_aliases("AAPL", "Apple Inc.") == ("apple inc", "apple", "aapl")

    def test_two_word_name(self):
        assert derive_aliases("META", "Meta Platforms, Inc.") == (
            "meta platforms inc",
            "meta platforms",
            "meta",
        )

    def test_generic_first_word_and_initialism(self):
        assert derive_aliases("IBM", "International Business Machines Corporation") == (
            "international business machines corporation",
            "international business machines",
            "international business",
            "ibm",
        )

    def test_deterministic(self):
        first = derive_aliases("JPM", "JPMorgan Chase & Co.")
        assert first == derive_aliases("JPM", "JPMorgan Chase & Co.")
        assert first[-1] == "jpm"

    def test_company_name_forms_deduplicated(self):
        assert company_name_forms("Apple") == ("apple",)
