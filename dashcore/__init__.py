"""
dashcore - multi-granularity metric rollup and KPI evaluation.

Raw business events from the platform's domains (e-commerce, orders,
payments, warehouse) are rolled up into time-bucketed aggregate metrics
and evaluated as KPIs against direction-aware thresholds.
"""

__version__ = "0.1.0"
