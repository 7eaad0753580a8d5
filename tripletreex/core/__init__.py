"""Core data structures: intervals, metrics and the point table / kd-tree."""

from .interval import Range
from .metrics import (
    Metric,
    MetricRegistry,
    available_metrics,
    get_metric,
    register_metric,
)
from .tree import HRectBound, PointTable, TreeNode, build_table

__all__ = [
    "Range",
    "Metric",
    "MetricRegistry",
    "available_metrics",
    "get_metric",
    "register_metric",
    "HRectBound",
    "PointTable",
    "TreeNode",
    "build_table",
]
