# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Turn a prototype collection into the numeric matrix the solver works on.

Order of operations:
    1. coerce raw records, drop non-finite weights
    2. discover axes, exclude sparse ones
    3. cap the axis count at the prototype count (highest variance wins)
    4. densify, missing weight -> 0
"""

import logging
import math
from typing import Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from .axes import AxisRegistry, extract_gate_axes
from .config import AnalysisConfig
from .utils import is_finite_number, median, round_half_up

logger = logging.getLogger(__name__)


class Prototype(NamedTuple):
    id: str
    weights: Mapping[str, float]
    gates: Tuple[str, ...] = ()

    @classmethod
    def coerce(cls, raw, index: int) -> "Prototype":
        """
        Accept a Prototype or a mapping with `id`/`prototypeId`, `weights`
        and `gates`. Anything else becomes a weightless placeholder.
        """
        if isinstance(raw, Prototype):
            return raw
        if not isinstance(raw, Mapping):
            return cls(f"prototype-{index}", {}, ())

        proto_id = raw.get("id")
        if proto_id is None:
            proto_id = raw.get("prototypeId", raw.get("prototype_id"))
        if proto_id is None:
            proto_id = f"prototype-{index}"

        weights = raw.get("weights")
        if not isinstance(weights, Mapping):
            weights = {}

        gates = raw.get("gates")
        if isinstance(gates, (list, tuple)):
            gates = tuple(gates)
        else:
            gates = ()

        return cls(str(proto_id), dict(weights), gates)


class PreparedData(NamedTuple):
    matrix: np.ndarray  # (n_prototypes, n_axes)
    axes: List[str]
    prototype_ids: List[str]
    finite_weights: List[Dict[str, float]]
    excluded_sparse_axes: List[str]
    unused_defined_axes: List[str]
    unused_defined_used_in_gates: List[str]
    unused_defined_not_in_gates: List[str]
    unused_in_gates: List[str]
    axis_count: int


def finite_weights(proto: Prototype) -> Dict[str, float]:
    """Weights with NaN / ±inf / non-numeric entries treated as absent."""
    return {
        str(axis): float(value)
        for axis, value in proto.weights.items()
        if is_finite_number(value)
    }


def filter_sparse_axes(
    weights: Sequence[Mapping[str, float]],
    axes: Sequence[str],
    min_usage_ratio: float,
) -> Tuple[List[str], List[str]]:
    """
    Split `axes` into (kept, excluded). An axis is excluded when fewer than
    max(2, ceil(N * ratio)) prototypes carry a finite weight for it.
    A ratio of 0 keeps everything.
    """
    if min_usage_ratio <= 0:
        return list(axes), []

    n = len(weights)
    min_count = max(2, math.ceil(n * min_usage_ratio))
    kept, excluded = [], []
    for axis in axes:
        usage = sum(1 for w in weights if axis in w)
        if usage >= min_count:
            kept.append(axis)
        else:
            excluded.append(axis)

    if excluded:
        logger.debug(
            f"sparse filter (min {min_count} of {n} prototypes) excluded: {excluded}"
        )
    return kept, sorted(excluded)


def select_top_variance_axes(
    weights: Sequence[Mapping[str, float]], axes: Sequence[str], limit: int
) -> List[str]:
    """
    Keep the `limit` axes with the largest population variance, ties broken
    by name. The result is returned in name order.
    """
    scored = []
    for axis in axes:
        values = np.array([w.get(axis, 0.0) for w in weights], dtype=float)
        scored.append((-float(values.var()), axis))
    scored.sort()
    chosen = sorted(axis for _, axis in scored[:limit])
    logger.debug(
        f"axis count {len(axes)} exceeds prototype count {limit}; kept {chosen}"
    )
    return chosen


def median_active_axes(
    weights: Sequence[Mapping[str, float]], epsilon: float
) -> int:
    """Median number of weights per prototype with |w| > epsilon, rounded."""
    counts = [sum(1 for v in w.values() if abs(v) > epsilon) for w in weights]
    return max(0, round_half_up(median(counts)))


def build_matrix(
    weights: Sequence[Mapping[str, float]], axes: Sequence[str]
) -> np.ndarray:
    M = np.zeros((len(weights), len(axes)), dtype=float)
    for i, w in enumerate(weights):
        for j, axis in enumerate(axes):
            M[i, j] = w.get(axis, 0.0)
    return M


def prepare(
    prototypes: Sequence,
    config: AnalysisConfig,
    registry: Optional[AxisRegistry] = None,
) -> PreparedData:
    """
    Build the analysis matrix and the axis bookkeeping for `prototypes`.

    The caller decides whether the result is usable (at least two axes and
    some variance); this function never rejects input.
    """
    registry = registry if registry is not None else AxisRegistry()
    protos = [Prototype.coerce(raw, i) for i, raw in enumerate(prototypes)]
    weights = [finite_weights(p) for p in protos]

    # any key counts as "appearing", finite or not
    seen_keys = {str(axis) for p in protos for axis in p.weights}
    used_axes = sorted({axis for w in weights for axis in w})

    gate_axes = extract_gate_axes(protos)
    unused_defined = registry.unused(seen_keys)
    unused_in_gates = sorted(axis for axis in used_axes if axis not in gate_axes)

    axes, excluded = filter_sparse_axes(weights, used_axes, config.min_axis_usage_ratio)

    # rank guard: never more axes than prototypes
    if len(axes) > len(protos):
        axes = select_top_variance_axes(weights, axes, len(protos))

    return PreparedData(
        matrix=build_matrix(weights, axes),
        axes=axes,
        prototype_ids=[p.id for p in protos],
        finite_weights=weights,
        excluded_sparse_axes=excluded,
        unused_defined_axes=unused_defined,
        unused_defined_used_in_gates=[a for a in unused_defined if a in gate_axes],
        unused_defined_not_in_gates=[a for a in unused_defined if a not in gate_axes],
        unused_in_gates=unused_in_gates,
        axis_count=median_active_axes(weights, config.active_axis_epsilon),
    )
