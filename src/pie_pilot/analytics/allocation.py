"""
Allocation analysis across pie categories.

Pies declare their target share of the portfolio in their name, e.g.
"Growth (40%)". A saved PieAllocation overrides the percent in the name.
This module parses those names, buckets invested value by category, and
measures how far each category has drifted from its target.
"""

import logging
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from pie_pilot.models import (
    AllocationAnalysis,
    DuplicateCategoryPolicy,
    FailureReason,
    OverallSummary,
    Outcome,
    PieAllocation,
    PieData,
)
from pie_pilot.analytics.dividends import estimate_annual_dividend

logger = logging.getLogger(__name__)


# Name of a summary row that older snapshots stored alongside the pies
OVERALL_SUMMARY_SENTINEL = "OverallSummary"

DEFAULT_REBALANCE_THRESHOLD = Decimal("5")


class DuplicateCategoryError(ValueError):
    """Raised when two pies declare the same category under the REJECT policy."""
    pass


def parse_pie_name(name: Optional[str]) -> Optional[tuple[str, Decimal]]:
    """
    Parse "<category> (<percent>%)" into (category, percent).

    The name is split on " (" and must yield exactly two parts.

    Returns:
        (category, percent), or None if the name does not follow the pattern
    """
    if not name:
        return None

    parts = name.split(" (")
    if len(parts) != 2:
        return None

    category = parts[0].strip()
    raw_percent = parts[1].replace(")", "").replace("%", "").strip()
    try:
        percent = Decimal(raw_percent)
    except InvalidOperation:
        return None

    if not category or not percent.is_finite():
        return None

    return category, percent


def filter_pies(pies: list[PieData]) -> list[PieData]:
    """Drop the summary sentinel row if present."""
    return [pie for pie in pies if pie.name != OVERALL_SUMMARY_SENTINEL]


def update_pie_target_allocation(
    pies: list[PieData],
    pie_name: str,
    target_allocation: Decimal,
) -> list[PieData]:
    """
    Set the target percent of every pie named ``pie_name``.

    Returns:
        New list; matching pies are copies, the others are passed through
    """
    return [
        replace(pie, target_allocation=target_allocation) if pie.name == pie_name else pie
        for pie in pies
    ]


def apply_pie_allocations(
    pies: list[PieData],
    allocations: Optional[Iterable[PieAllocation]],
) -> list[PieData]:
    """
    Apply saved per-pie targets.

    A pie named in ``allocations`` takes the saved percent instead of the
    one parsed from its name. When a pie name is saved twice the last entry
    wins.

    Returns:
        New list of pies with the saved targets applied
    """
    saved = {a.pie_name: a.target_allocation for a in allocations or []}
    if not saved:
        return list(pies)

    return [
        replace(pie, target_allocation=saved[pie.name]) if pie.name in saved else pie
        for pie in pies
    ]


def calculate_current_allocation(
    pies: list[PieData],
    duplicate_policy: DuplicateCategoryPolicy = DuplicateCategoryPolicy.LAST_WINS,
) -> tuple[dict[str, Decimal], dict[str, Decimal]]:
    """
    Bucket invested value and target percent by category.

    The category comes from the pie name. The target is the pie's
    ``target_allocation`` when set, else the percent in the name. A pie whose
    name does not parse is left out unless it carries a saved target, in
    which case its full name is the category. Invested values of pies
    sharing a category are summed; their target percent is resolved by
    ``duplicate_policy``.

    Args:
        pies: Pies to bucket
        duplicate_policy: Resolution for repeated categories

    Returns:
        Tuple of (category -> invested value, category -> target percent)

    Raises:
        DuplicateCategoryError: If a category repeats under REJECT
    """
    current_values: dict[str, Decimal] = {}
    targets: dict[str, Decimal] = {}

    for pie in filter_pies(pies):
        parsed = parse_pie_name(pie.name)
        if parsed is None and pie.target_allocation is None:
            logger.debug("Pie %r has no target allocation, excluded from buckets", pie.name)
            continue
        category = parsed[0] if parsed is not None else pie.name
        percent = pie.target_allocation if pie.target_allocation is not None else parsed[1]

        if category in targets:
            if duplicate_policy == DuplicateCategoryPolicy.REJECT:
                raise DuplicateCategoryError(
                    f"Category {category!r} is declared by more than one pie"
                )
            if duplicate_policy == DuplicateCategoryPolicy.LAST_WINS:
                targets[category] = percent
        else:
            targets[category] = percent

        current_values[category] = current_values.get(category, Decimal("0")) + pie.total_invested

    return current_values, targets


def calculate_percent_allocation(current_values: dict[str, Decimal]) -> dict[str, Decimal]:
    """Each category's share of the bucketed total in percent (all 0 if the total is 0)."""
    total = sum(current_values.values(), Decimal("0"))
    if total == Decimal("0"):
        return {category: Decimal("0") for category in current_values}
    return {
        category: value / total * Decimal("100")
        for category, value in current_values.items()
    }


def calculate_allocation_drift(
    target_allocation: dict[str, Decimal],
    current_allocation: dict[str, Decimal],
) -> dict[str, Decimal]:
    """Signed drift per category: target percent minus current percent."""
    return {
        category: target - current_allocation.get(category, Decimal("0"))
        for category, target in target_allocation.items()
    }


def format_difference(difference: Decimal) -> str:
    """Format a drift value like "-5.00%"."""
    return f"{difference:.2f}%"


def is_rebalancing_recommended(
    drift: dict[str, Decimal],
    threshold: Decimal = DEFAULT_REBALANCE_THRESHOLD,
) -> bool:
    """
    Whether any category has drifted further than the threshold.

    Args:
        drift: Category -> signed drift in percent
        threshold: Absolute drift in percent that triggers a recommendation
    """
    return any(abs(d) > threshold for d in drift.values())


def analyze_allocation(
    pies: Optional[list[PieData]],
    overall_summary: Optional[OverallSummary],
    monthly_budget: Decimal = Decimal("0"),
    duplicate_policy: DuplicateCategoryPolicy = DuplicateCategoryPolicy.LAST_WINS,
    threshold: Decimal = DEFAULT_REBALANCE_THRESHOLD,
) -> Outcome[AllocationAnalysis]:
    """
    Compare current and target allocation by pie category.

    Args:
        pies: Aggregated pies (None when aggregation failed)
        overall_summary: Portfolio totals (None when aggregation failed)
        monthly_budget: Monthly contribution used for the dividend projection
        duplicate_policy: Resolution for categories declared by several pies
        threshold: Drift that flags rebalancing

    Returns:
        Outcome with the AllocationAnalysis; MISSING_DATA when upstream data
        is absent, VALIDATION when duplicate categories are rejected
    """
    if pies is None or overall_summary is None:
        logger.error("Allocation analysis needs both pies and an overall summary")
        return Outcome.failure(
            FailureReason.MISSING_DATA, "Pies or overall summary missing"
        )

    pies = filter_pies(pies)

    try:
        current_values, targets = calculate_current_allocation(pies, duplicate_policy)
    except DuplicateCategoryError as e:
        logger.error("Allocation analysis rejected: %s", e)
        return Outcome.failure(FailureReason.VALIDATION, str(e))

    current_allocation = calculate_percent_allocation(current_values)
    drift = calculate_allocation_drift(targets, current_allocation)

    analysis = AllocationAnalysis(
        target_allocation=targets,
        current_allocation=current_allocation,
        current_values=current_values,
        allocation_differences={
            category: format_difference(d) for category, d in drift.items()
        },
        estimated_annual_dividend=estimate_annual_dividend(pies, monthly_budget),
        rebalancing_recommended=is_rebalancing_recommended(drift, threshold),
    )
    return Outcome.success(analysis)
