"""Click-based CLI for market-hub.

Thin wrapper around the service graph: every command builds the same
``Services`` the API uses and delegates to it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from market_hub.core import ConfigError, load_config

        try:
            ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
        except ConfigError as e:
            raise click.ClickException(str(e)) from e
    return ctx.obj["config"]


async def _with_services(ctx: click.Context, body, load_universe: bool = False):
    """Build the service graph, run ``body(services)``, always shut down."""
    from market_hub.services import build_services

    services = build_services(_load_config(ctx))
    try:
        if load_universe:
            await services.start(background=False)
        return await body(services)
    finally:
        await services.close()


def _print_errors(errors) -> None:
    for error in errors:
        stale = " (served stale)" if error.stale else ""
        console.print(
            f"[yellow]{error.provider or 'market-hub'}: {error.kind.value}: "
            f"{error.message}{stale}[/yellow]"
        )


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _fmt(value, spec: str = ",.2f") -> str:
    return "" if value is None else format(value, spec)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="MARKET_HUB_CONFIG",
    default=None,
    help="Path to market-hub.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.version_option(package_name="market-hub")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """market-hub: read-only market data, news and scanner service."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", type=str, default=None, help="Bind address (default from config).")
@click.option("--port", "-p", type=int, default=None, help="Port number (default from config).")
@click.option("--reload", is_flag=True, default=False, help="Auto-reload on code changes.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Start the HTTP API server."""
    import uvicorn

    config = _load_config(ctx)
    host = host or config.api.host
    port = port or config.api.port
    if ctx.obj.get("config_path"):
        # The app factory reads its config path from the environment
        os.environ["MARKET_HUB_CONFIG"] = ctx.obj["config_path"]

    console.print(f"Starting market-hub API on [bold]{host}:{port}[/bold]")
    console.print(f"API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "market_hub.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# quote
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("symbols", nargs=-1, required=True)
@click.option(
    "--format",
    "-f",
    "fmt",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)
@click.pass_context
def quote(ctx: click.Context, symbols: tuple[str, ...], fmt: str) -> None:
    """Fetch quotes for one or more SYMBOLS."""

    async def _body(services):
        return await services.bus.get_quotes(list(symbols))

    result = _run_async(_with_services(ctx, _body))
    _print_errors(result.errors)

    if fmt == "json":
        _echo_json([q.model_dump(mode="json") for q in result.data])
        return

    table = Table(title="Quotes" + (" (stale)" if result.stale else ""))
    table.add_column("Symbol", style="bold")
    table.add_column("Price", justify="right")
    table.add_column("Change", justify="right")
    table.add_column("Change %", justify="right")
    table.add_column("Volume", justify="right")
    table.add_column("RVOL", justify="right")
    table.add_column("Provider")
    for q in result.data:
        style = "green" if q.change_percent > 0 else "red" if q.change_percent < 0 else ""
        table.add_row(
            q.symbol,
            _fmt(q.price),
            f"[{style}]{q.change:+.2f}[/{style}]" if style else f"{q.change:+.2f}",
            f"{q.change_percent:+.2f}%",
            _fmt(q.volume, ","),
            _fmt(q.rvol, ".2f"),
            q.provider_id,
        )
    console.print(table)
    missing = sorted({s.upper() for s in symbols} - {q.symbol for q in result.data})
    if missing:
        console.print(f"[yellow]No quote for: {', '.join(missing)}[/yellow]")


# ---------------------------------------------------------------------------
# news
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--ticker", "-t", type=str, default=None, help="Only news about this ticker.")
@click.option("--limit", "-n", type=click.IntRange(1, 200), default=20, help="Max items.")
@click.option(
    "--date-range",
    "-d",
    type=click.Choice(["all", "today", "7d", "14d", "30d"]),
    default="all",
    help="Publication window.",
)
@click.option("--source", "-s", type=str, default=None, help="Source or provider substring.")
@click.option(
    "--format",
    "-f",
    "fmt",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)
@click.pass_context
def news(
    ctx: click.Context,
    ticker: str | None,
    limit: int,
    date_range: str,
    source: str | None,
    fmt: str,
) -> None:
    """Show aggregated news with resolved tickers."""
    from market_hub.core import DateRange

    async def _body(services):
        return await services.news.aggregate(
            limit=limit,
            source=source,
            ticker=ticker.upper() if ticker else None,
            date_range=DateRange(date_range),
        )

    result = _run_async(_with_services(ctx, _body, load_universe=True))
    _print_errors(result.errors)

    if fmt == "json":
        _echo_json(
            {
                "news": [i.model_dump(mode="json") for i in result.items],
                "counts": dict(result.counts),
            }
        )
        return

    table = Table(title=f"News ({len(result.items)})")
    table.add_column("Published (UTC)")
    table.add_column("Ticker", style="bold")
    table.add_column("Title")
    table.add_column("Source")
    table.add_column("Badges")
    table.add_column("Sentiment")
    for item in result.items:
        table.add_row(
            item.published_at.strftime("%Y-%m-%d %H:%M"),
            item.primary_ticker or "",
            item.title,
            item.source or item.provider,
            " ".join(item.badges),
            item.sentiment.value,
        )
    console.print(table)
    counts = ", ".join(f"{p}={n}" for p, n in sorted(result.counts.items()))
    console.print(f"Per provider: {counts or 'none'}")


# ---------------------------------------------------------------------------
# scan
# ---------------------------------------------------------------------------


@cli.command()
@click.argument(
    "preset",
    type=click.Choice(["momentum", "volume", "oversold", "breakout", "gap", "news"]),
)
@click.option("--limit", "-n", type=click.IntRange(1, 500), default=25, help="Max hits.")
@click.option("--min-price", type=float, default=None, help="Minimum price.")
@click.option("--max-price", type=float, default=None, help="Maximum price.")
@click.option("--min-volume", type=int, default=None, help="Minimum volume.")
@click.pass_context
def scan(
    ctx: click.Context,
    preset: str,
    limit: int,
    min_price: float | None,
    max_price: float | None,
    min_volume: int | None,
) -> None:
    """Run a scanner PRESET."""

    async def _body(services):
        return await services.scanner.scan(
            preset, limit=limit, min_price=min_price, max_price=max_price, min_volume=min_volume
        )

    result = _run_async(_with_services(ctx, _body, load_universe=True))
    _print_errors(result.errors)

    table = Table(title=f"Scan: {result.preset.value}")
    table.add_column("Symbol", style="bold")
    table.add_column("Price", justify="right")
    table.add_column("Change %", justify="right")
    table.add_column("Gap %", justify="right")
    table.add_column("RVOL", justify="right")
    table.add_column("News", justify="right")
    for hit in result.stocks:
        table.add_row(
            hit.symbol,
            _fmt(hit.price),
            f"{hit.change_percent:+.2f}%",
            f"{hit.gap_percent:+.2f}%",
            _fmt(hit.rvol, ".2f"),
            str(hit.news_count),
        )
    console.print(table)
    console.print(f"Processed {result.total_processed} of {result.universe_size} symbols")


# ---------------------------------------------------------------------------
# symbols
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("query", required=False)
@click.option("--limit", "-n", type=click.IntRange(1, 1000), default=20, help="Max results.")
@click.option("--exchange", "-e", type=str, default=None, help="NASDAQ, NYSE or AMEX.")
@click.option("--sector", type=str, default=None, help="Sector name.")
@click.pass_context
def symbols(
    ctx: click.Context,
    query: str | None,
    limit: int,
    exchange: str | None,
    sector: str | None,
) -> None:
    """Search the symbol universe for QUERY."""

    async def _body(services):
        snapshot = services.universe.snapshot()
        return snapshot, snapshot.search(query, limit=limit, exchange=exchange, sector=sector)

    snapshot, (page, total) = _run_async(_with_services(ctx, _body, load_universe=True))
    if snapshot.loaded_at is None:
        console.print("[red]Symbol universe could not be loaded.[/red]")
        raise SystemExit(1)

    table = Table(title=f"Symbols ({len(page)} of {total})")
    table.add_column("Symbol", style="bold")
    table.add_column("Company")
    table.add_column("Exchange")
    table.add_column("Type")
    table.add_column("Sector")
    for record in page:
        table.add_row(
            record.symbol,
            record.company_name,
            record.exchange,
            record.asset_type.value,
            record.sector or "",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# health
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Show configured providers and their state."""

    async def _body(services):
        return services.bus.get_health()

    snapshot = _run_async(_with_services(ctx, _body))

    table = Table(title="Provider Health")
    table.add_column("Provider", style="bold")
    table.add_column("State")
    table.add_column("Failures", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Last error")
    colors = {"healthy": "green", "backoff": "yellow", "open": "red", "disabled": "red"}
    for name, h in snapshot.items():
        color = colors.get(h.state.value, "")
        table.add_row(
            name,
            f"[{color}]{h.state.value}[/{color}]",
            str(h.consecutive_failures),
            f"{h.tokens:.1f}",
            h.last_error or "",
        )
    if not snapshot:
        console.print(
            "[yellow]No providers configured. "
            "Set FMP_KEY, FINNHUB_KEY or ALPHAVANTAGE_KEY.[/yellow]"
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
