"""Tests for the CLI module."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

import market_hub.services as services_module
from market_hub.cli import cli


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("MARKET_HUB_CONFIG", "FMP_KEY", "FINNHUB_KEY", "ALPHAVANTAGE_KEY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def use_adapter(monkeypatch):
    """Make every command build its services over the given fake adapter."""
    real_build = services_module.build_services

    def install(adapter):
        monkeypatch.setattr(
            services_module,
            "build_services",
            lambda config=None, **kwargs: real_build(config, adapters=[adapter]),
        )
        return adapter

    return install


@pytest.fixture
def adapter(make_adapter, make_quote, make_news, sample_records):
    return make_adapter(
        "fake",
        quotes=[make_quote("AAPL"), make_quote("MSFT", 410.0, change_percent=1.5)],
        news=[make_news("Tesla Inc announces factory expansion", url="https://example.com/t")],
        symbols=sample_records,
    )


# ---------------------------------------------------------------------------
# Group
# ---------------------------------------------------------------------------


class TestGroup:
    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("serve", "quote", "news", "scan", "symbols", "health"):
            assert command in result.output

    def test_missing_config_file(self, runner):
        result = runner.invoke(cli, ["-c", "/nonexistent/market-hub.yml", "health"])
        assert result.exit_code == 2

    def test_invalid_config_file(self, runner, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("bus: [unclosed\n")
        result = runner.invoke(cli, ["-c", str(path), "health"])
        assert result.exit_code == 1


# ---------------------------------------------------------------------------
# quote
# ---------------------------------------------------------------------------


class TestQuoteCommand:
    def test_table(self, runner, use_adapter, adapter):
        use_adapter(adapter)
        result = runner.invoke(cli, ["quote", "aapl", "MSFT"])
        assert result.exit_code == 0, result.output
        assert "AAPL" in result.output
        assert "MSFT" in result.output

    def test_json(self, runner, use_adapter, adapter):
        use_adapter(adapter)
        result = runner.invoke(cli, ["quote", "AAPL", "MSFT", "--format", "json"])
        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert [q["symbol"] for q in payload] == ["AAPL", "MSFT"]
        assert payload[1]["price"] == 410.0

    def test_missing_symbol_reported(self, runner, use_adapter, adapter):
        use_adapter(adapter)
        result = runner.invoke(cli, ["quote", "ZZZZ"])
        assert result.exit_code == 0
        assert "No quote for: ZZZZ" in result.output

    def test_requires_symbols(self, runner):
        assert runner.invoke(cli, ["quote"]).exit_code == 2

    def test_closes_adapters(self, runner, use_adapter, adapter):
        use_adapter(adapter)
        runner.invoke(cli, ["quote", "AAPL"])
        assert adapter.closed


# ---------------------------------------------------------------------------
# news / scan / symbols / health
# ---------------------------------------------------------------------------


class TestNewsCommand:
    def test_json(self, runner, use_adapter, adapter):
        use_adapter(adapter)
        result = runner.invoke(cli, ["news", "--format", "json"])
        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["news"][0]["primary_ticker"] == "TSLA"
        assert payload["counts"] == {"fake": 1}

    def test_bad_date_range(self, runner):
        assert runner.invoke(cli, ["news", "--date-range", "1y"]).exit_code == 2


class TestScanCommand:
    def test_scan(self, runner, use_adapter, adapter):
        use_adapter(adapter)
        result = runner.invoke(cli, ["scan", "momentum"])
        assert result.exit_code == 0, result.output
        assert "Scan: momentum" in result.output

    def test_unknown_preset(self, runner):
        assert runner.invoke(cli, ["scan", "moonshot"]).exit_code == 2


class TestSymbolsCommand:
    def test_search(self, runner, use_adapter, adapter):
        use_adapter(adapter)
        result = runner.invoke(cli, ["symbols", "apple"])
        assert result.exit_code == 0, result.output
        assert "AAPL" in result.output

    def test_unloaded_universe_fails(self, runner, use_adapter, make_adapter):
        use_adapter(make_adapter("fake"))
        result = runner.invoke(cli, ["symbols", "apple"])
        assert result.exit_code == 1
        assert "could not be loaded" in result.output


class TestHealthCommand:
    def test_health(self, runner, use_adapter, adapter):
        use_adapter(adapter)
        result = runner.invoke(cli, ["health"])
        assert result.exit_code == 0, result.output
        assert "fake" in result.output
        assert "healthy" in result.output
