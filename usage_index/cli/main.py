"""
CLI interface for usage-index.

Prints a daily token usage and cost table built from the cached index.
"""

import logging
import sys
from decimal import Decimal
from typing import Dict, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from usage_index.config.loader import load_pricing_config, load_settings
from usage_index.core.aggregate import DayUsage, TokenTotals, aggregate_usage
from usage_index.core.pricing import DEFAULT_PRICING, PricingTable, calculate_day_cost
from usage_index.core.scanner import ScanResult, scan_usage
from usage_index.storage.repository import CacheRepository

app = typer.Typer()
console = Console()
err_console = Console(stderr=True)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Print timing and cache statistics to stderr"
    ),
    no_cache: bool = typer.Option(
        False,
        "--no-cache",
        help="Skip reading the cache (it is still written)"
    ),
    clear_cache: bool = typer.Option(
        False,
        "--clear-cache",
        help="Delete the cache and rebuild it"
    ),
    pricing_file: Optional[str] = typer.Option(
        None,
        "--pricing",
        "-p",
        help="YAML file with per-million-token model rates"
    ),
    root: Optional[str] = typer.Option(
        None,
        "--root",
        help="Log directory to scan (defaults to <config dir>/projects)"
    )
):
    """Show daily token usage and cost."""
    if ctx.invoked_subcommand is not None:
        return
    _configure_logging(verbose)

    try:
        pricing = load_pricing_config(pricing_file) if pricing_file else DEFAULT_PRICING
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        err_console.print(f"[red]Error loading pricing:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    settings = load_settings()
    result = scan_usage(
        root=root or str(settings.log_root),
        repository=CacheRepository(str(settings.cache_dir)),
        timezone=settings.timezone,
        use_cache=not no_cache,
        clear_cache=clear_cache,
    )

    _display_usage_table(aggregate_usage(result.records.values()), pricing)
    if result.save_error:
        err_console.print(f"[yellow]Warning:[/] could not write cache: {result.save_error}")
    if verbose:
        _display_scan_stats(result)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def status():
    """Show where logs are read from and where the cache lives."""
    settings = load_settings()
    repository = CacheRepository(str(settings.cache_dir))
    console.print(f"Log root:  {settings.log_root}")
    console.print(f"Cache:     {repository.cache_path}")
    console.print(f"Timezone:  {settings.timezone}")
    if repository.cache_path.exists():
        size = repository.cache_path.stat().st_size
        console.print(f"[green]✓[/] Cache present ({size:,} bytes)")
    else:
        console.print("[yellow]No cache written yet[/]")


def _format_currency(amount: Decimal) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${amount:,.2f}"


def _display_usage_table(days: Dict[str, DayUsage], pricing: PricingTable) -> None:
    """Render one row per date plus a total row."""
    table = Table()
    table.add_column("Date")
    for name in ("Input", "Output", "CacheWrite", "CacheRead", "Cost"):
        table.add_column(name, justify="right")

    grand_total = TokenTotals()
    grand_cost = Decimal("0")
    for date in sorted(days):
        day = days[date]
        totals = day.totals()
        cost = calculate_day_cost(day, pricing)
        grand_total.add(totals)
        grand_cost += cost
        table.add_row(date, *_token_cells(totals), _format_currency(cost))

    table.add_section()
    table.add_row("Total", *_token_cells(grand_total), _format_currency(grand_cost))
    console.print(table)


def _token_cells(totals: TokenTotals):
    return (
        f"{totals.input_tokens:,}",
        f"{totals.output_tokens:,}",
        f"{totals.cache_write_tokens:,}",
        f"{totals.cache_read_tokens:,}",
    )


def _display_scan_stats(result: ScanResult) -> None:
    d = result.discovery
    r = result.reconcile
    timings = result.timings
    err_console.print("\n[bold]--- Timing ---[/bold]")
    if d.full_walk:
        err_console.print(
            f"Find files:     {timings.get('discover', 0):.3f}s "
            f"({len(result.files)} files, full walk, {d.dirs_checked} dirs)"
        )
    else:
        err_console.print(
            f"Find files:     {timings.get('discover', 0):.3f}s "
            f"({len(result.files)} files, {d.dirs_checked} dirs checked, "
            f"{d.dirs_changed} changed, {d.subtrees_walked} subtrees walked, "
            f"{d.files_from_cache} from cache)"
        )
    err_console.print(
        f"Process files:  {timings.get('reconcile', 0):.3f}s "
        f"(cache: {r.hits} hits, {r.misses} misses, {r.lines_parsed} lines parsed, "
        f"{r.unique_records} unique, {r.conflicts} conflicts)"
    )
    if "save" in timings:
        err_console.print(f"Save cache:     {timings['save']:.3f}s")


if __name__ == "__main__":
    app()
