"""
Command-line interface for the pie portfolio engine.

Provides commands for:
- refresh: Fetch pies and market data and write a snapshot
- allocation: Re-run allocation, rebalance and dividend analysis on a snapshot
- normalize: Show the market data symbol for broker tickers
- write-config: Write a settings file with default values
"""

import sys
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import click

from pie_pilot.config import (
    ConfigurationError,
    EnvCredentialStore,
    load_refresh_settings,
    write_settings,
)
from pie_pilot.models import DuplicateCategoryPolicy, FailureReason, RefreshSettings
from pie_pilot.analytics import (
    analyze_allocation,
    apply_pie_allocations,
    plan_rebalance,
    rebalance_breakdown,
    update_pie_target_allocation,
)
from pie_pilot.data.providers import FileCache, MemoryResponseCache
from pie_pilot.data.snapshots import (
    SnapshotStoreError,
    load_snapshot,
    save_holdings_csv,
    save_snapshot,
)
from pie_pilot.engine import create_market_data, refresh_for_user
from pie_pilot.logging import get_refresh_logger, setup_logging
from pie_pilot.portfolio import normalize_ticker, summarize_pies


def _parse_budget(budget: Optional[str]) -> Optional[Decimal]:
    if budget is None:
        return None
    try:
        value = Decimal(budget)
    except InvalidOperation:
        click.echo(f"Invalid budget: {budget}", err=True)
        sys.exit(1)
    if not value.is_finite() or value < 0:
        click.echo(f"Budget must be a non-negative number, got {budget}", err=True)
        sys.exit(1)
    return value


def _parse_target(target: str) -> tuple[str, Decimal]:
    name, _, raw_percent = target.rpartition("=")
    try:
        percent = Decimal(raw_percent.strip())
    except InvalidOperation:
        percent = Decimal("NaN")
    if not name.strip() or not percent.is_finite() or not 0 <= percent <= 100:
        click.echo(f"Invalid target: {target}. Expected NAME=PERCENT with PERCENT in 0-100", err=True)
        sys.exit(1)
    return name.strip(), percent


@click.group()
@click.version_option(version="0.1.0", prog_name="pie-pilot")
@click.option(
    "--log-level", "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Diagnostic log level (written to stderr)",
)
def main(log_level: str):
    """
    Pie portfolio aggregation and allocation analysis.

    Read-only: fetches Trading 212 pies, enriches holdings with market data,
    and reports allocation drift, a rebalance plan and a dividend estimate.
    """
    setup_logging(log_level)


@main.command()
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    default=None,
    help="Path to refresh settings YAML file (defaults apply if omitted)",
)
@click.option(
    "--budget", "-b",
    type=str,
    default=None,
    help="New capital for the rebalance plan. Defaults to config monthly_budget.",
)
@click.option(
    "--output-dir", "-o",
    type=click.Path(),
    default=None,
    help="Output directory. Defaults to config output_dir.",
)
@click.option(
    "--user", "-u",
    type=str,
    default="default",
    help="User id for cache partitioning and the refresh log",
)
@click.option(
    "--public/--full",
    default=False,
    help="Write the whitelisted public snapshot instead of the full one",
)
def refresh(
    config: Optional[str],
    budget: Optional[str],
    output_dir: Optional[str],
    user: str,
    public: bool,
):
    """
    Refresh the portfolio and write a snapshot.

    Requires TRADING212_API_KEY in the environment, .env or
    config/api_keys.yaml.
    """
    try:
        settings = load_refresh_settings(config) if config else RefreshSettings()
    except ConfigurationError as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)

    budget_value = _parse_budget(budget)

    out_dir = Path(output_dir or settings.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    refresh_logger = get_refresh_logger(out_dir / "refresh_log.jsonl")
    refresh_logger.log_config_loaded(settings, config or "<defaults>", user)

    click.echo("Refreshing portfolio...")
    now = datetime.now()
    metrics = refresh_for_user(
        user_id=user,
        credentials=EnvCredentialStore(),
        market_data=create_market_data(settings),
        settings=settings,
        cache=MemoryResponseCache(ttl_seconds=settings.cache_ttl_seconds),
        refresh_logger=refresh_logger,
        catalogue_cache=FileCache(out_dir / "cache", settings.metadata_cache_hours),
        budget=budget_value,
        now=now,
    )

    if any(i.reason == FailureReason.MISSING_CREDENTIAL for i in metrics.issues):
        click.echo(
            "Error: Trading 212 API key is not configured. Set TRADING212_API_KEY "
            "in the environment, .env or config/api_keys.yaml.",
            err=True,
        )
        sys.exit(1)

    stamp = now.strftime("%Y%m%d_%H%M%S")
    try:
        snapshot_path = save_snapshot(metrics, out_dir / f"snapshot_{stamp}.json", public=public)
        click.echo(f"  Snapshot saved: {snapshot_path}")
        if metrics.portfolio is not None:
            holdings_path = save_holdings_csv(metrics, out_dir / f"holdings_{stamp}.csv")
            click.echo(f"  Holdings saved: {holdings_path}")
    except SnapshotStoreError as e:
        click.echo(f"Error saving snapshot: {e}", err=True)
        sys.exit(1)

    click.echo()
    _print_summary(metrics)

    for issue in metrics.issues:
        click.echo(f"  Warning: {issue.stage} degraded ({issue.reason.value}) {issue.detail}", err=True)


def _print_summary(metrics) -> None:
    click.echo(f"Snapshot {metrics.fetch_date}:")
    click.echo(f"  Free cash: {metrics.free_cash_available:,.2f}")

    if metrics.overall_summary is not None:
        summary = metrics.overall_summary
        click.echo(f"  Pies: {len(metrics.portfolio or [])}")
        click.echo(f"  Total invested: {summary.total_invested_overall:,.2f}")
        click.echo(f"  Total result: {summary.total_result_overall:,.2f}")
        click.echo(f"  Return: {summary.return_percentage_overall:.2f}%")

    analysis = metrics.allocation_analysis
    if analysis is not None:
        click.echo()
        click.echo("Allocation (target / current / difference):")
        for category, target in analysis.target_allocation.items():
            current = analysis.current_allocation.get(category, Decimal("0"))
            click.echo(
                f"  {category:<20} {target:>6.2f}% {current:>7.2f}% "
                f"{analysis.allocation_differences.get(category, ''):>9}"
            )
        click.echo(f"  Rebalancing recommended: {'yes' if analysis.rebalancing_recommended else 'no'}")
        click.echo(f"  Estimated annual dividend: {analysis.estimated_annual_dividend:,.2f}")

    if metrics.rebalance_investment_for_target:
        click.echo()
        click.echo("Invest next:")
        for category, amount in metrics.rebalance_investment_for_target.items():
            click.echo(f"  {category:<20} {amount:>12,.2f}")

    if metrics.benchmarks:
        click.echo()
        click.echo("Benchmarks (1y):")
        for benchmark in metrics.benchmarks:
            click.echo(f"  {benchmark.name:<20} {benchmark.return_percentage:>7.2f}%")


@main.command()
@click.option(
    "--snapshot", "-s",
    required=True,
    type=click.Path(exists=True),
    help="Path to a full snapshot JSON file",
)
@click.option(
    "--budget", "-b",
    type=str,
    default="1000",
    help="New capital for the rebalance plan",
)
@click.option(
    "--duplicates",
    type=click.Choice([p.value for p in DuplicateCategoryPolicy]),
    default=DuplicateCategoryPolicy.LAST_WINS.value,
    help="How to resolve categories declared by several pies",
)
@click.option(
    "--threshold", "-t",
    type=float,
    default=5.0,
    help="Drift in percent that flags rebalancing",
)
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    default=None,
    help="Settings file whose pie_allocations are applied",
)
@click.option(
    "--target", "targets",
    multiple=True,
    help='Override a pie target, e.g. "Growth (60%)=70" (repeatable)',
)
def allocation(
    snapshot: str,
    budget: str,
    duplicates: str,
    threshold: float,
    config: Optional[str],
    targets: tuple[str, ...],
):
    """
    Analyze allocation of a saved snapshot.

    Recomputes allocation drift, the rebalance plan and the dividend
    estimate without calling any API. Saved pie targets from --config are
    applied first, then each --target override.
    """
    budget_value = _parse_budget(budget)
    overrides = [_parse_target(t) for t in targets]

    try:
        settings = load_refresh_settings(config) if config else RefreshSettings()
    except ConfigurationError as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)

    try:
        metrics = load_snapshot(snapshot)
    except SnapshotStoreError as e:
        click.echo(f"Error loading snapshot: {e}", err=True)
        sys.exit(1)

    if metrics.portfolio is None:
        click.echo("Snapshot has no portfolio data.", err=True)
        sys.exit(1)

    metrics.portfolio = apply_pie_allocations(metrics.portfolio, settings.pie_allocations)
    for pie_name, percent in overrides:
        metrics.portfolio = update_pie_target_allocation(metrics.portfolio, pie_name, percent)

    summary = metrics.overall_summary or summarize_pies(metrics.portfolio, metrics.fetch_date)
    outcome = analyze_allocation(
        metrics.portfolio,
        summary,
        monthly_budget=budget_value,
        duplicate_policy=DuplicateCategoryPolicy(duplicates),
        threshold=Decimal(str(threshold)),
    )
    if not outcome.ok:
        click.echo(f"Error analyzing allocation: {outcome.detail}", err=True)
        sys.exit(1)

    analysis = outcome.value
    metrics.overall_summary = summary
    metrics.allocation_analysis = analysis
    metrics.rebalance_investment_for_target = None
    if analysis.target_allocation:
        plan = plan_rebalance(analysis.current_values, analysis.target_allocation, budget_value)
        if plan.ok:
            metrics.rebalance_investment_for_target = plan.value
        else:
            click.echo(f"Rebalance plan skipped: {plan.detail}", err=True)

    _print_summary(metrics)

    lines = rebalance_breakdown(
        analysis.current_values, analysis.target_allocation, budget_value
    )
    if lines:
        click.echo()
        click.echo(f"After investing {budget_value:,.2f} (current / target / difference):")
        for line in lines:
            click.echo(
                f"  {line.category:<20} {line.current:>12,.2f} "
                f"{line.target:>12,.2f} {line.difference:>12,.2f}"
            )


@main.command()
@click.argument("tickers", nargs=-1, required=True)
def normalize(tickers: tuple[str, ...]):
    """Show the market data symbol for each broker TICKER."""
    for ticker in tickers:
        click.echo(f"{ticker} -> {normalize_ticker(ticker)}")


@main.command("write-config")
@click.argument("path", type=click.Path())
def write_config(path: str):
    """Write a settings file with default values to PATH."""
    write_settings(RefreshSettings(), path)
    click.echo(f"Settings written: {path}")


if __name__ == "__main__":
    main()
