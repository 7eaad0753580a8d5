from __future__ import annotations

from typing import Any

import numpy as np
from scipy import stats

_QUANTILE_CAP = 3.0
_QUANTILE_MASS_CAP = 0.999


def compute_quantile(tail_mass: float) -> float:
    """Two-sided standard normal quantile for a failure probability ``tail_mass``."""

    mass = 1.0 - 0.5 * tail_mass
    if mass > _QUANTILE_MASS_CAP:
        return _QUANTILE_CAP
    return float(stats.norm.ppf(mass))


class MeanVariancePairs:
    """Per-point running mean/variance accumulators (Welford, batched).

    One accumulator per original point id. The buffer is owned by the caller
    of ``TripletreeDfs.compute`` and is only touched by Monte Carlo
    summarization attempts.
    """

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError("MeanVariancePairs size must be non-negative.")
        self.count = np.zeros(size, dtype=np.int64)
        self._mean = np.zeros(size, dtype=np.float64)
        self._m2 = np.zeros(size, dtype=np.float64)

    def __len__(self) -> int:
        return int(self.count.shape[0])

    def reset(self, indices: Any = None) -> None:
        if indices is None:
            indices = slice(None)
        self.count[indices] = 0
        self._mean[indices] = 0.0
        self._m2[indices] = 0.0

    def push(self, indices: np.ndarray, samples: np.ndarray) -> None:
        """Merge ``samples[k]`` (a row of observations) into accumulator ``indices[k]``."""

        samples = np.atleast_2d(np.asarray(samples, dtype=np.float64))
        indices = np.asarray(indices, dtype=np.int64)
        if samples.shape[0] != indices.shape[0]:
            raise ValueError("Expected one row of samples per accumulator index.")
        batch_count = samples.shape[1]
        if batch_count == 0:
            return
        batch_mean = samples.mean(axis=1)
        batch_m2 = np.sum((samples - batch_mean[:, None]) ** 2, axis=1)

        count = self.count[indices]
        total = count + batch_count
        delta = batch_mean - self._mean[indices]
        # Chan et al. pairwise update of (count, mean, M2).
        self._mean[indices] += delta * batch_count / total
        self._m2[indices] += batch_m2 + delta * delta * count * batch_count / total
        self.count[indices] = total

    def mean(self, indices: Any = None) -> np.ndarray:
        if indices is None:
            indices = slice(None)
        return self._mean[indices]

    def variance(self, indices: Any = None) -> np.ndarray:
        if indices is None:
            indices = slice(None)
        count = self.count[indices]
        denom = np.maximum(count - 1, 1)
        # Unknown until two observations have been merged.
        return np.where(count > 1, self._m2[indices] / denom, np.inf)

    def std(self, indices: Any = None) -> np.ndarray:
        return np.sqrt(self.variance(indices))


def sample_distinct_offsets(
    rng: np.random.Generator,
    population: int,
    k: int,
    size: int,
    exclude: np.ndarray | None = None,
) -> np.ndarray:
    """Draw ``size`` rows of ``k`` distinct offsets in ``[0, population)``.

    ``exclude`` (one offset per row) is never drawn. Only ``k <= 2`` is
    needed for triples, which keeps the rejection-free shift trick exact.
    """

    if k == 0:
        return np.empty((size, 0), dtype=np.int64)
    if k > 2:
        raise ValueError("At most two partners are drawn from one node.")
    taken = 0 if exclude is None else 1
    if population - taken < k:
        raise ValueError("Population too small for the requested draw.")

    out = np.empty((size, k), dtype=np.int64)
    first = rng.integers(0, population - taken, size=size)
    if exclude is not None:
        first += first >= exclude
    out[:, 0] = first
    if k == 2:
        second = rng.integers(0, population - taken - 1, size=size)
        if exclude is None:
            second += second >= first
        else:
            lower = np.minimum(first, exclude)
            upper = np.maximum(first, exclude)
            second += second >= lower
            second += second >= upper
        out[:, 1] = second
    return out


__all__ = ["MeanVariancePairs", "compute_quantile", "sample_distinct_offsets"]
