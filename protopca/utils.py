# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import math
from numbers import Real
from typing import Iterable

import numpy as np

EPS: float = 1e-12


def scale_tol(A: np.ndarray, tol: float = EPS) -> float:
    """Return an absolute tolerance scaled to the matrix magnitude."""
    if A.size == 0:
        return tol
    return tol * max(1.0, float(np.linalg.norm(A, ord=np.inf)))


def is_finite_number(value) -> bool:
    """True for real, finite numbers. Booleans are not weights."""
    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    return math.isfinite(value)


def median(values: Iterable[float]) -> float:
    """Median of a sequence; 0.0 for an empty one."""
    ordered = sorted(values)
    n = len(ordered)
    if n == 0:
        return 0.0
    mid = n // 2
    if n % 2:
        return float(ordered[mid])
    return (ordered[mid - 1] + ordered[mid]) / 2.0


def round_half_up(x: float) -> int:
    # round() would send 2.5 to 2
    return int(math.floor(x + 0.5))
