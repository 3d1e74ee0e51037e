# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Column normalization before the covariance is formed.

center-only keeps each axis on its own scale, so high-magnitude axes
dominate the variance. z-score puts every axis on unit variance, which lets
rarely used axes weigh as much as common ones.
"""

from typing import Callable, Dict

import numpy as np

from .config import NormalizationMethod
from .utils import EPS


def center(X: np.ndarray) -> np.ndarray:
    """Subtract each column's mean."""
    X = np.asarray(X, dtype=float)
    return X - X.mean(axis=0, keepdims=True)


def zscore(X: np.ndarray) -> np.ndarray:
    """
    Center, then divide by the sample (N-1) standard deviation.
    Columns with no spread relative to their magnitude are left at zero.
    """
    X = np.asarray(X, dtype=float)
    Xc = center(X)
    n = Xc.shape[0]
    std = np.sqrt((Xc**2).sum(axis=0) / max(1, n - 1))
    out = np.zeros_like(Xc)
    varying = std > EPS * np.max(np.abs(X), axis=0, initial=0.0)
    out[:, varying] = Xc[:, varying] / std[varying]
    return out


NORMALIZERS: Dict[NormalizationMethod, Callable[[np.ndarray], np.ndarray]] = {
    NormalizationMethod.CENTER_ONLY: center,
    NormalizationMethod.Z_SCORE: zscore,
}


def normalize(X: np.ndarray, method=NormalizationMethod.CENTER_ONLY) -> np.ndarray:
    return NORMALIZERS[NormalizationMethod(method)](X)
