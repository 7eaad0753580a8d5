from __future__ import annotations

from typing import Tuple

import numpy as np

try:  # pragma: no cover - optional dependency
    import numba as nb

    NUMBA_BASE_CASE_AVAILABLE = True
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    nb = None  # type: ignore
    NUMBA_BASE_CASE_AVAILABLE = False

I64 = np.int64

TriplePositions = Tuple[np.ndarray, np.ndarray, np.ndarray]


def _ordered_pairs(begin: int, end: int) -> Tuple[np.ndarray, np.ndarray]:
    first, second = np.triu_indices(end - begin, k=1)
    return first.astype(I64) + begin, second.astype(I64) + begin


def enumerate_canonical_triples(
    begin0: int,
    end0: int,
    begin1: int,
    end1: int,
    begin2: int,
    end2: int,
    same01: bool,
    same12: bool,
) -> TriplePositions:
    """Return permuted positions of every canonical triple spanned by three leaves.

    When a slot holds the same leaf as the previous slot its cursor starts
    just after the previous slot's current point, so each unordered triple
    is produced once. Rows come out in lexicographic order.
    """

    if same01 and same12:
        first, second = _ordered_pairs(begin0, end0)
        # Each pair (a, b) is followed by every c in (b, end).
        counts = end0 - 1 - second
        starts = np.cumsum(counts) - counts
        first = np.repeat(first, counts)
        second = np.repeat(second, counts)
        third = second + 1 + np.arange(first.shape[0], dtype=I64) - np.repeat(starts, counts)
        return first, second, third
    if same01:
        first, second = _ordered_pairs(begin0, end0)
        third = np.arange(begin2, end2, dtype=I64)
        return (
            np.repeat(first, third.shape[0]),
            np.repeat(second, third.shape[0]),
            np.tile(third, first.shape[0]),
        )
    if same12:
        first = np.arange(begin0, end0, dtype=I64)
        second, third = _ordered_pairs(begin1, end1)
        return (
            np.repeat(first, second.shape[0]),
            np.tile(second, first.shape[0]),
            np.tile(third, first.shape[0]),
        )

    first, second, third = np.meshgrid(
        np.arange(begin0, end0, dtype=I64),
        np.arange(begin1, end1, dtype=I64),
        np.arange(begin2, end2, dtype=I64),
        indexing="ij",
    )
    return first.ravel(), second.ravel(), third.ravel()


def _require_numba() -> None:
    if not NUMBA_BASE_CASE_AVAILABLE:  # pragma: no cover - defensive
        raise RuntimeError(
            "Numba base-case kernel requested but `numba` is not available. "
            "Install the extra '[numba]' extras or disable the feature via "
            "TRIPLETREEX_ENABLE_NUMBA=0."
        )


if NUMBA_BASE_CASE_AVAILABLE:

    @nb.njit(cache=True)
    def _count_triples(b0, e0, b1, e1, b2, e2, same01, same12):
        total = 0
        for a in range(b0, e0):
            start1 = a + 1 if same01 else b1
            for b in range(start1, e1):
                start2 = b + 1 if same12 else b2
                if e2 > start2:
                    total += e2 - start2
        return total

    @nb.njit(cache=True)
    def _fill_triples(b0, e0, b1, e1, b2, e2, same01, same12, out0, out1, out2):
        k = 0
        for a in range(b0, e0):
            start1 = a + 1 if same01 else b1
            for b in range(start1, e1):
                start2 = b + 1 if same12 else b2
                for c in range(start2, e2):
                    out0[k] = a
                    out1[k] = b
                    out2[k] = c
                    k += 1
        return k

    def enumerate_triples_numba(
        begin0: int,
        end0: int,
        begin1: int,
        end1: int,
        begin2: int,
        end2: int,
        same01: bool,
        same12: bool,
    ) -> TriplePositions:
        total = _count_triples(begin0, end0, begin1, end1, begin2, end2, same01, same12)
        out0 = np.empty(total, dtype=I64)
        out1 = np.empty(total, dtype=I64)
        out2 = np.empty(total, dtype=I64)
        _fill_triples(
            begin0, end0, begin1, end1, begin2, end2, same01, same12, out0, out1, out2
        )
        return out0, out1, out2

else:  # pragma: no cover - executed when numba missing

    def enumerate_triples_numba(
        begin0: int,
        end0: int,
        begin1: int,
        end1: int,
        begin2: int,
        end2: int,
        same01: bool,
        same12: bool,
    ) -> TriplePositions:
        _require_numba()
        raise AssertionError("unreachable")


__all__ = [
    "NUMBA_BASE_CASE_AVAILABLE",
    "enumerate_canonical_triples",
    "enumerate_triples_numba",
]
