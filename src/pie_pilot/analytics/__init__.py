"""
Analytics module for the pie portfolio engine.

Provides allocation drift analysis, rebalance planning for new capital,
dividend projection and benchmark comparison.
"""

from pie_pilot.analytics.allocation import (
    analyze_allocation,
    apply_pie_allocations,
    calculate_current_allocation,
    is_rebalancing_recommended,
    parse_pie_name,
    update_pie_target_allocation,
)
from pie_pilot.analytics.benchmarks import (
    DEFAULT_BENCHMARK_RETURNS,
    default_benchmarks,
    fetch_benchmarks,
)
from pie_pilot.analytics.dividends import estimate_annual_dividend
from pie_pilot.analytics.rebalance import (
    plan_rebalance,
    rebalance_breakdown,
)

__all__ = [
    "analyze_allocation",
    "apply_pie_allocations",
    "calculate_current_allocation",
    "is_rebalancing_recommended",
    "parse_pie_name",
    "update_pie_target_allocation",
    "DEFAULT_BENCHMARK_RETURNS",
    "default_benchmarks",
    "fetch_benchmarks",
    "estimate_annual_dividend",
    "plan_rebalance",
    "rebalance_breakdown",
]
