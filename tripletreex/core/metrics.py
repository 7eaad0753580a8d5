from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Protocol, Tuple

import numpy as np

from tripletreex import config as cx_config

if TYPE_CHECKING:  # pragma: no cover - typing only
    from tripletreex.core.tree import HRectBound

ArrayLike = Any


class PointwiseKernel(Protocol):
    def __call__(self, lhs: ArrayLike, rhs: ArrayLike) -> ArrayLike:
        ...


class BoxRangeKernel(Protocol):
    def __call__(
        self, lo_a: np.ndarray, hi_a: np.ndarray, lo_b: np.ndarray, hi_b: np.ndarray
    ) -> Tuple[float, float]:
        ...


@dataclass(frozen=True)
class Metric:
    """Container for the distance kernels used by the triple-tree traversal.

    ``pointwise_kernel`` returns distances between matching rows of two
    arrays; ``box_range_kernel`` returns the minimum and maximum distance
    between two axis-aligned boxes.
    """

    name: str
    pointwise_kernel: PointwiseKernel
    box_range_kernel: BoxRangeKernel

    def pointwise(self, lhs: ArrayLike, rhs: ArrayLike) -> ArrayLike:
        return self.pointwise_kernel(lhs, rhs)

    def distance_sq(self, lhs: ArrayLike, rhs: ArrayLike) -> ArrayLike:
        dist = self.pointwise_kernel(lhs, rhs)
        return dist * dist

    def range_distance_sq(self, lhs: "HRectBound", rhs: "HRectBound") -> Tuple[float, float]:
        lo, hi = self.box_range_kernel(lhs.lo, lhs.hi, rhs.lo, rhs.hi)
        return lo * lo, hi * hi


class MetricRegistry:
    """Minimal registry for runtime-selectable metrics."""

    def __init__(self) -> None:
        self._metrics: Dict[str, Metric] = {}

    def register(self, metric: Metric, *, overwrite: bool = False) -> None:
        name = metric.name.lower()
        if not overwrite and name in self._metrics:
            raise ValueError(f"Metric '{metric.name}' already registered.")
        self._metrics[name] = metric

    def get(self, name: str) -> Metric:
        key = name.lower()
        if key not in self._metrics:
            raise KeyError(f"Metric '{name}' not registered.")
        return self._metrics[key]

    def names(self) -> Tuple[str, ...]:
        return tuple(sorted(self._metrics.keys()))


def _pointwise_operands(lhs: ArrayLike, rhs: ArrayLike) -> Tuple[np.ndarray, np.ndarray]:
    lhs_arr = np.asarray(lhs, dtype=np.float64)
    rhs_arr = np.asarray(rhs, dtype=np.float64)
    if lhs_arr.shape != rhs_arr.shape:
        raise ValueError("Pointwise metric operands must have identical shapes.")
    return lhs_arr, rhs_arr


def _box_gaps(
    lo_a: np.ndarray, hi_a: np.ndarray, lo_b: np.ndarray, hi_b: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    near = np.maximum(np.maximum(lo_b - hi_a, lo_a - hi_b), 0.0)
    far = np.maximum(np.abs(hi_b - lo_a), np.abs(hi_a - lo_b))
    return near, far


def _euclidean_pointwise(lhs: ArrayLike, rhs: ArrayLike) -> ArrayLike:
    lhs_arr, rhs_arr = _pointwise_operands(lhs, rhs)
    diff = lhs_arr - rhs_arr
    return np.sqrt(np.sum(diff * diff, axis=-1))


def _euclidean_box_range(
    lo_a: np.ndarray, hi_a: np.ndarray, lo_b: np.ndarray, hi_b: np.ndarray
) -> Tuple[float, float]:
    near, far = _box_gaps(lo_a, hi_a, lo_b, hi_b)
    return float(np.sqrt(np.sum(near * near))), float(np.sqrt(np.sum(far * far)))


def _manhattan_pointwise(lhs: ArrayLike, rhs: ArrayLike) -> ArrayLike:
    lhs_arr, rhs_arr = _pointwise_operands(lhs, rhs)
    return np.sum(np.abs(lhs_arr - rhs_arr), axis=-1)


def _manhattan_box_range(
    lo_a: np.ndarray, hi_a: np.ndarray, lo_b: np.ndarray, hi_b: np.ndarray
) -> Tuple[float, float]:
    near, far = _box_gaps(lo_a, hi_a, lo_b, hi_b)
    return float(np.sum(near)), float(np.sum(far))


def _load_runtime_registry() -> MetricRegistry:
    registry = MetricRegistry()
    registry.register(
        Metric(
            name="euclidean",
            pointwise_kernel=_euclidean_pointwise,
            box_range_kernel=_euclidean_box_range,
        )
    )
    registry.register(
        Metric(
            name="manhattan",
            pointwise_kernel=_manhattan_pointwise,
            box_range_kernel=_manhattan_box_range,
        )
    )
    return registry


_REGISTRY = _load_runtime_registry()


def get_metric(name: str | None = None) -> Metric:
    """Return a registered metric, defaulting to the runtime-selected metric."""

    if name is None:
        name = cx_config.runtime_config().metric
    return _REGISTRY.get(name)


def register_metric(metric: Metric, *, overwrite: bool = False) -> None:
    _REGISTRY.register(metric, overwrite=overwrite)


def available_metrics() -> Tuple[str, ...]:
    return _REGISTRY.names()


__all__ = [
    "Metric",
    "MetricRegistry",
    "available_metrics",
    "get_metric",
    "register_metric",
]
