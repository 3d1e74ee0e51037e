# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Per-prototype diagnostics on top of a fitted basis.
"""

from typing import Collection, List, Mapping, NamedTuple, Sequence

import numpy as np

TOP_LOADING_LIMIT = 10
RECONSTRUCTION_LIMIT = 5
# share of squared weight on excluded axes above which a prototype is flagged
RELIANCE_THRESHOLD = 0.25


class Loading(NamedTuple):
    prototype_id: str
    loading: float


class Reconstruction(NamedTuple):
    prototype_id: str
    error: float
    excluded_axis_reliance: float
    relies_on_excluded_axes: bool


def _retained(vectors: np.ndarray, k: int) -> np.ndarray:
    k = max(0, min(k, vectors.shape[1]))
    return vectors[:, :k]


def top_loading_prototypes(
    X: np.ndarray,
    vectors: np.ndarray,
    k: int,
    prototype_ids: Sequence[str],
    limit: int = TOP_LOADING_LIMIT,
) -> List[Loading]:
    """
    Prototypes ranked by the length of their projection onto the first k
    principal directions. Ties keep input order.
    """
    W = _retained(vectors, k)
    if W.shape[1] == 0 or X.shape[0] == 0:
        return []
    scores = X @ W
    magnitude = np.sqrt(np.sum(scores**2, axis=1))
    order = np.argsort(-magnitude, kind="stable")[:limit]
    return [Loading(prototype_ids[i], float(magnitude[i])) for i in order]


def excluded_axis_reliance(
    weights: Mapping[str, float], excluded: Collection[str]
) -> float:
    """Fraction of sum(w^2) carried by `excluded` axes; 0 when nothing is excluded."""
    if not excluded:
        return 0.0
    total = 0.0
    on_excluded = 0.0
    for axis, w in weights.items():
        sq = w * w
        total += sq
        if axis in excluded:
            on_excluded += sq
    if total <= 0:
        return 0.0
    return min(1.0, max(0.0, on_excluded / total))


def reconstruction_errors(
    X: np.ndarray,
    vectors: np.ndarray,
    k: int,
    prototype_ids: Sequence[str],
    weights: Sequence[Mapping[str, float]],
    excluded: Collection[str] = (),
    limit: int = RECONSTRUCTION_LIMIT,
) -> List[Reconstruction]:
    """
    Worst-fitting prototypes when each row of X is rebuilt from its
    projection onto the first k directions.

    `error` is the per-axis RMS of the residual, sqrt(||x - x_hat||^2 / m).
    `weights` are the original finite weights, used for excluded-axis
    reliance, aligned with the rows of X.
    """
    W = _retained(vectors, k)
    n, m = X.shape
    if W.shape[1] == 0 or n == 0 or m == 0:
        return []

    X_hat = (X @ W) @ W.T
    rmse = np.sqrt(np.sum((X - X_hat) ** 2, axis=1) / m)

    excluded = set(excluded)
    order = np.argsort(-rmse, kind="stable")[:limit]
    out = []
    for i in order:
        reliance = excluded_axis_reliance(weights[i], excluded)
        out.append(
            Reconstruction(
                prototype_ids[i],
                float(rmse[i]),
                reliance,
                reliance > RELIANCE_THRESHOLD,
            )
        )
    return out


def rms_error(entries: Sequence[Reconstruction]) -> float:
    """Root-mean-square of the reported errors; 0 for none."""
    if not entries:
        return 0.0
    errors = np.array([e.error for e in entries], dtype=float)
    return float(np.sqrt(np.mean(errors**2)))
