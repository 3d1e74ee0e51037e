# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Variance bookkeeping and component-count rules.

Every function here is pure: eigenvalues (sorted descending) in, scalar or
vector out. The two configurable rules dispatch through small tables keyed
by the enums in `protopca.config`.
"""

from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from .config import ExpectedDimensionMethod, SignificanceMethod

# slack so 0.8 accumulated as 0.7999999999999999 still counts
_THRESHOLD_SLACK = 1e-12


def explained_variance(eigenvalues: np.ndarray) -> np.ndarray:
    """Proportion of total variance per component; sums to 1."""
    ev = np.asarray(eigenvalues, dtype=float)
    total = float(ev.sum())
    if total <= 0:
        return np.zeros_like(ev)
    return ev / total


def cumulative_variance(explained: np.ndarray) -> np.ndarray:
    return np.cumsum(np.asarray(explained, dtype=float))


def components_for(cumulative: np.ndarray, fraction: float) -> int:
    """Smallest k with cumulative[k-1] >= fraction (len(cumulative) if none)."""
    cumulative = np.asarray(cumulative, dtype=float)
    m = len(cumulative)
    if m == 0:
        return 0
    k = int(np.searchsorted(cumulative, fraction - _THRESHOLD_SLACK, side="left")) + 1
    return min(k, m)


def broken_stick_expectations(m: int) -> np.ndarray:
    """
    Null-model share of variance for positions 1..m:
        b_k = (1/m) * sum_{i=k}^{m} 1/i
    """
    if m <= 0:
        return np.zeros(0)
    inv = 1.0 / np.arange(1, m + 1, dtype=float)
    # reverse cumulative sum gives sum_{i=k}^{m}
    return np.cumsum(inv[::-1])[::-1] / m


def count_broken_stick(explained: np.ndarray) -> int:
    """Number of leading components that beat their broken-stick share."""
    explained = np.asarray(explained, dtype=float)
    expected = broken_stick_expectations(len(explained))
    count = 0
    for observed, null in zip(explained, expected):
        if observed > null:
            count += 1
        else:
            break
    return count


def count_kaiser(eigenvalues: np.ndarray, threshold: float = 1.0) -> int:
    """Eigenvalues above `threshold` times the average eigenvalue."""
    ev = np.asarray(eigenvalues, dtype=float)
    if ev.size == 0:
        return 0
    cutoff = threshold * float(ev.mean())
    return int(np.sum(ev > cutoff))


def _expected_variance_80(explained, cumulative, axis_count) -> int:
    return components_for(cumulative, 0.8)


def _expected_variance_90(explained, cumulative, axis_count) -> int:
    return components_for(cumulative, 0.9)


def _expected_broken_stick(explained, cumulative, axis_count) -> int:
    # at least one direction is always expected
    return max(1, count_broken_stick(explained))


def _expected_median_active(explained, cumulative, axis_count) -> int:
    return axis_count


EXPECTED_DIMENSION_RULES: Dict[ExpectedDimensionMethod, Callable[..., int]] = {
    ExpectedDimensionMethod.VARIANCE_80: _expected_variance_80,
    ExpectedDimensionMethod.VARIANCE_90: _expected_variance_90,
    ExpectedDimensionMethod.BROKEN_STICK: _expected_broken_stick,
    ExpectedDimensionMethod.MEDIAN_ACTIVE: _expected_median_active,
}


def expected_component_count(
    method, explained: np.ndarray, cumulative: np.ndarray, axis_count: int
) -> int:
    rule = EXPECTED_DIMENSION_RULES[ExpectedDimensionMethod(method)]
    return int(rule(explained, cumulative, axis_count))


SIGNIFICANCE_RULES: Dict[SignificanceMethod, Callable[..., int]] = {
    SignificanceMethod.BROKEN_STICK: lambda ev, explained, k: count_broken_stick(
        explained
    ),
    SignificanceMethod.KAISER: lambda ev, explained, k: count_kaiser(ev, k),
}


def significant_component_count(
    method,
    eigenvalues: np.ndarray,
    explained: np.ndarray,
    kaiser_threshold: float = 1.0,
) -> int:
    rule = SIGNIFICANCE_RULES[SignificanceMethod(method)]
    return int(rule(eigenvalues, explained, kaiser_threshold))


def residual_variance_ratio(cumulative: np.ndarray, k: int) -> float:
    """Share of variance left after the first k components, in [0, 1]."""
    m = len(cumulative)
    if m == 0 or k >= m:
        return 0.0
    if k <= 0:
        return 1.0
    return float(min(1.0, max(0.0, 1.0 - cumulative[k - 1])))


def residual_eigenvector(
    vectors: np.ndarray, axes: Sequence[str], index: int
) -> Optional[Dict[str, float]]:
    """Column `index` of `vectors` keyed by axis name; None if out of range."""
    if index < 0 or index >= vectors.shape[1]:
        return None
    column = vectors[:, index]
    return {axis: float(column[i]) for i, axis in enumerate(axes)}


def as_list(values: np.ndarray) -> List[float]:
    return [float(v) for v in values]
