"""
Rebalance planning for new capital.

The planner only ever adds money: categories already above their target
receive nothing rather than a negative amount.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pie_pilot.models import (
    FailureReason,
    Outcome,
    RebalanceLine,
    TargetInvestments,
)

logger = logging.getLogger(__name__)


def _to_decimal(value: Any) -> Optional[Decimal]:
    """Decimal for numeric values, None for anything else (including bools)."""
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return None
    return result if result.is_finite() else None


def _numeric_map(values: Any) -> Optional[dict[str, Decimal]]:
    if not isinstance(values, dict) or not values:
        return None
    converted = {}
    for key, value in values.items():
        number = _to_decimal(value)
        if number is None:
            return None
        converted[key] = number
    return converted


def validate_investment_data(
    current_allocation: Any,
    target_percentages: Any,
    new_capital: Any,
) -> Optional[str]:
    """
    Check planner inputs.

    Returns:
        None when the inputs are usable, otherwise a description of the problem
    """
    if _numeric_map(current_allocation) is None:
        return "Current allocation must be a non-empty map of numbers"
    if _numeric_map(target_percentages) is None:
        return "Target percentages must be a non-empty map of numbers"
    if set(current_allocation) != set(target_percentages):
        return (
            f"Category mismatch: current {sorted(current_allocation)} "
            f"vs target {sorted(target_percentages)}"
        )
    capital = _to_decimal(new_capital)
    if capital is None or capital <= Decimal("0"):
        return f"New capital must be a positive number, got {new_capital!r}"
    return None


def plan_rebalance(
    current_allocation: dict[str, Decimal],
    target_percentages: dict[str, Decimal],
    new_capital: Decimal,
) -> Outcome[TargetInvestments]:
    """
    Split new capital across categories to move toward target percentages.

    new_total = sum(current) + new_capital; each category receives
    max(0, new_total * target% / 100 - current).

    Args:
        current_allocation: Category -> current invested value
        target_percentages: Category -> target percent
        new_capital: Amount to deploy

    Returns:
        Outcome with category -> amount (>= 0); VALIDATION failure on bad input
    """
    problem = validate_investment_data(current_allocation, target_percentages, new_capital)
    if problem is not None:
        logger.warning("Rebalance plan skipped: %s", problem)
        return Outcome.failure(FailureReason.VALIDATION, problem)

    current = _numeric_map(current_allocation)
    targets = _numeric_map(target_percentages)
    new_total = sum(current.values(), Decimal("0")) + _to_decimal(new_capital)

    plan: TargetInvestments = {}
    for category, current_value in current.items():
        target_value = new_total * targets[category] / Decimal("100")
        plan[category] = max(Decimal("0"), target_value - current_value)

    return Outcome.success(plan)


def rebalance_breakdown(
    current_allocation: dict[str, Decimal],
    target_percentages: dict[str, Decimal],
    new_capital: Decimal = Decimal("0"),
) -> list[RebalanceLine]:
    """
    Current, target and difference per category after adding new capital.

    Categories without a target are shown with a target of 0.
    """
    total = sum(current_allocation.values(), Decimal("0")) + Decimal(str(new_capital))

    lines = []
    for category, current in current_allocation.items():
        target = total * target_percentages.get(category, Decimal("0")) / Decimal("100")
        lines.append(RebalanceLine(
            category=category,
            current=current,
            target=target,
            difference=target - current,
        ))
    return lines
