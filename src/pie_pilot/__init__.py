"""
Pie portfolio aggregation and allocation analysis engine (pie-pilot)

Aggregates Trading 212 pie holdings with market data into a single
PerformanceMetrics snapshot: per-instrument performance, allocation drift
against targets declared in pie names, a rebalance plan for new capital and
a dividend estimate.

Read-only and advisory. No orders are placed.
"""

__version__ = "0.1.0"
