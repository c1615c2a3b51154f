"""Click-based CLI for marketfeed.

Thin wrapper around the library. Every command delegates to
MarketDataService or the SQLite cache store.
"""

from __future__ import annotations

import asyncio
import json
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from marketfeed.core.exceptions import MarketFeedError

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
        from marketfeed.core import load_config

        ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
    return ctx.obj["config"]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=verbose)],
        force=True,
    )


def _fail(exc: MarketFeedError) -> None:
    console.print(f"[red]{type(exc).__name__}: {exc}[/red]")
    raise SystemExit(1)


def _fmt_price(value: float | None) -> str:
    return "" if value is None else f"{value:,.4f}".rstrip("0").rstrip(".")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="MARKETFEED_CONFIG",
    default=None,
    help="Path to marketfeed.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.version_option(package_name="marketfeed")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """marketfeed: multi-provider quotes, history, FX and search."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    _configure_logging(verbose)


# ---------------------------------------------------------------------------
# quote
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("ids", nargs=-1, required=True)
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON to stdout.")
@click.pass_context
def quote(ctx: click.Context, ids: tuple[str, ...], as_json: bool) -> None:
    """Latest prices for IDS (e.g. cg:bitcoin yahoo:AAPL tase:1183441)."""
    from marketfeed.service import MarketDataService

    config = _load_config(ctx)

    async def _quote():
        async with MarketDataService(config) as service:
            return await service.get_quotes(list(ids))

    results = _run_async(_quote())

    if as_json:
        click.echo(json.dumps([r.to_wire() for r in results], indent=2))
        return

    table = Table(title="Quotes")
    table.add_column("ID", style="bold")
    table.add_column("Price", justify="right")
    table.add_column("Currency")
    table.add_column("Change %", justify="right")
    table.add_column("Source")
    table.add_column("Error", style="red")
    for r in results:
        change = "" if r.change_pct is None else f"{r.change_pct:+.2f}"
        table.add_row(
            r.id,
            _fmt_price(r.price),
            r.currency or "",
            change,
            r.source.value if r.source else "",
            r.error or "",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# history
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("id")
@click.option(
    "--range",
    "range_",
    type=click.Choice(["1d", "5d", "1mo", "3mo", "6mo", "1y", "5y"]),
    default="1mo",
    help="History range.",
)
@click.option("--interval", default="1d", help="Yahoo candle interval.")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON to stdout.")
@click.pass_context
def history(ctx: click.Context, id: str, range_: str, interval: str, as_json: bool) -> None:
    """Price history for one ID."""
    from marketfeed.core.models import HistoryError
    from marketfeed.service import MarketDataService

    config = _load_config(ctx)

    async def _history():
        async with MarketDataService(config) as service:
            return await service.get_history(id, range_, interval)

    result = _run_async(_history())

    if as_json:
        click.echo(json.dumps(result.to_wire(), indent=2))
        if isinstance(result, HistoryError):
            raise SystemExit(1)
        return

    if isinstance(result, HistoryError):
        console.print(f"[red]{result.id}: {result.error}[/red]")
        raise SystemExit(1)

    points = result.points
    console.print(
        f"[bold]{result.id}[/bold] {len(points)} points "
        f"({result.currency}, source: {result.source.value})"
    )
    if points:
        first, last = points[0], points[-1]
        change = (last.value - first.value) / first.value * 100 if first.value else 0.0
        console.print(
            f"first {_fmt_price(first.value)}  last {_fmt_price(last.value)}  "
            f"change {change:+.2f}%"
        )


# ---------------------------------------------------------------------------
# fx
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--base", default="USD", help="Base currency (USD only).")
@click.option("--quote", "quote_", default="ILS", help="Quote currency.")
@click.pass_context
def fx(ctx: click.Context, base: str, quote_: str) -> None:
    """Exchange rate for a currency pair."""
    from marketfeed.service import MarketDataService

    config = _load_config(ctx)

    async def _fx():
        async with MarketDataService(config) as service:
            return await service.get_fx(base, quote_)

    try:
        result = _run_async(_fx())
    except MarketFeedError as exc:
        _fail(exc)
    click.echo(f"{result.base}/{result.quote} {result.rate}")


# ---------------------------------------------------------------------------
# search
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("query")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON to stdout.")
@click.pass_context
def search(ctx: click.Context, query: str, as_json: bool) -> None:
    """Search instruments (TASE, crypto, equities) by name, symbol or number."""
    from marketfeed.service import MarketDataService

    config = _load_config(ctx)

    async def _search():
        async with MarketDataService(config) as service:
            return await service.search(query)

    try:
        results = _run_async(_search())
    except MarketFeedError as exc:
        _fail(exc)

    if as_json:
        click.echo(json.dumps([r.to_wire() for r in results], indent=2))
        return
    if not results:
        console.print("[yellow]No matches.[/yellow]")
        return

    table = Table(title=f"Search: {query}")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Currency")
    table.add_column("Exchange")
    for r in results:
        table.add_row(r.id, r.name, r.type, r.currency, r.exchange or "")
    console.print(table)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", default=None, help="Bind host (default from config).")
@click.option("--port", type=int, default=None, help="Bind port (default from config).")
@click.option("--reload", is_flag=True, default=False, help="Auto-reload on changes.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Start the REST API server."""
    import uvicorn

    config = _load_config(ctx)
    host = host or config.api.host
    port = port or config.api.port
    console.print(f"Starting marketfeed API on [bold]http://{host}:{port}[/bold]")
    uvicorn.run(
        "marketfeed.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# cache
# ---------------------------------------------------------------------------


@cli.group()
def cache() -> None:
    """Inspect or clear the client-side response cache."""


def _cache_store(ctx: click.Context):
    from marketfeed.cache.store import SqliteCacheStore

    config = _load_config(ctx)
    return SqliteCacheStore(config.cache.sqlite_path)


@cache.command("stats")
@click.pass_context
def cache_stats(ctx: click.Context) -> None:
    """Show entry counts."""
    stats = _run_async(_cache_store(ctx).stats())
    click.echo(
        f"total: {stats['total']}  valid: {stats['valid']}  expired: {stats['expired']}"
    )


@cache.command("clear")
@click.option("--expired-only", is_flag=True, help="Only remove expired entries.")
@click.pass_context
def cache_clear(ctx: click.Context, expired_only: bool) -> None:
    """Delete cached entries."""
    store = _cache_store(ctx)
    removed = _run_async(store.purge_expired() if expired_only else store.clear())
    click.echo(f"Removed {removed} entries")


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
