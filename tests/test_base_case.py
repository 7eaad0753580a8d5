from itertools import combinations, product

import numpy as np
import pytest

from tripletreex.gnp._base_case_numba import (
    NUMBA_BASE_CASE_AVAILABLE,
    enumerate_canonical_triples,
    enumerate_triples_numba,
)


def _as_set(triples):
    return set(zip(*(column.tolist() for column in triples)))


def test_same_leaf_yields_each_combination_once():
    triples = enumerate_canonical_triples(0, 5, 0, 5, 0, 5, True, True)

    assert _as_set(triples) == set(combinations(range(5), 3))
    assert len(triples[0]) == 10


def test_repeated_leaf_rows_follow_combinations_order():
    expected = np.array(list(combinations(range(7, 19), 3)), dtype=np.int64)

    triples = enumerate_canonical_triples(7, 19, 7, 19, 7, 19, True, True)

    assert np.array_equal(np.stack(triples, axis=1), expected)


def test_repeated_leaf_pairs_follow_lexicographic_order():
    leading = enumerate_canonical_triples(0, 5, 0, 5, 5, 8, True, False)
    trailing = enumerate_canonical_triples(0, 3, 3, 8, 3, 8, False, True)

    for triples in (leading, trailing):
        rows = np.stack(triples, axis=1).tolist()
        assert rows == sorted(rows)
        assert len(set(map(tuple, rows))) == len(rows)
    assert len(leading[0]) == 10 * 3
    assert len(trailing[0]) == 3 * 10


def test_repeated_leaf_then_distinct_leaf():
    triples = enumerate_canonical_triples(0, 4, 0, 4, 4, 7, True, False)

    expected = {(a, b, c) for a, b in combinations(range(4), 2) for c in range(4, 7)}
    assert _as_set(triples) == expected


def test_distinct_leaf_then_repeated_leaf():
    triples = enumerate_canonical_triples(0, 3, 3, 6, 3, 6, False, True)

    expected = {(a, b, c) for a in range(3) for b, c in combinations(range(3, 6), 2)}
    assert _as_set(triples) == expected


def test_three_distinct_leaves_take_the_full_product():
    triples = enumerate_canonical_triples(0, 2, 2, 4, 4, 7, False, False)

    assert _as_set(triples) == set(product(range(0, 2), range(2, 4), range(4, 7)))


def test_single_point_leaf_repeated_yields_nothing():
    triples = enumerate_canonical_triples(3, 4, 3, 4, 3, 4, True, True)

    assert all(column.size == 0 for column in triples)
    assert triples[0].dtype == np.int64


@pytest.mark.skipif(not NUMBA_BASE_CASE_AVAILABLE, reason="numba is unavailable")
@pytest.mark.parametrize(
    "bounds, same01, same12",
    [
        ((0, 6, 0, 6, 0, 6), True, True),
        ((0, 4, 0, 4, 4, 9), True, False),
        ((0, 3, 3, 7, 3, 7), False, True),
        ((0, 2, 2, 5, 5, 8), False, False),
    ],
)
def test_numba_kernel_matches_numpy(bounds, same01, same12):
    expected = enumerate_canonical_triples(*bounds, same01, same12)
    actual = enumerate_triples_numba(*bounds, same01, same12)

    for lhs, rhs in zip(expected, actual):
        assert np.array_equal(lhs, rhs)
