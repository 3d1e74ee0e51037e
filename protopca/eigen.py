# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import logging
from typing import NamedTuple, Optional

import numpy as np

from .utils import scale_tol

logger = logging.getLogger(__name__)

DEFAULT_TOL: float = 1e-10
# default sweep cap; cyclic Jacobi converges quadratically, so a handful of
# sweeps suffice for the matrix sizes seen here
DEFAULT_MAX_SWEEPS: int = 50


class EigenDecomposition(NamedTuple):
    values: np.ndarray  # (n,) descending
    vectors: np.ndarray  # (n, n) unit eigenvectors in columns
    sweeps: int
    converged: bool
    off_norm: float  # squared off-diagonal mass left at exit


def covariance(X: np.ndarray) -> np.ndarray:
    """
    Sample covariance (N-1 denominator) of the columns of an already
    centered matrix X, shape (n_samples, n_features).
    """
    X = np.asarray(X, dtype=float)
    n = X.shape[0]
    if n < 2:
        raise ValueError("covariance needs at least two rows")
    C = X.T @ X / (n - 1)
    return (C + C.T) / 2.0


def off_diagonal_norm(A: np.ndarray) -> float:
    """Sum of squares of the off-diagonal entries of a symmetric matrix."""
    # summed directly; total minus diagonal loses everything below eps * |A|^2
    return 2.0 * float(np.sum(np.triu(A, 1) ** 2))


def _rotate(A: np.ndarray, V: np.ndarray, p: int, q: int) -> None:
    """
    Apply the Jacobi rotation that annihilates A[p, q], in place.

    J = I except J[p,p] = J[q,q] = c, J[p,q] = s, J[q,p] = -s;
    A <- Jᵀ A J, V <- V J. (Golub & Van Loan, symmetric Schur 2x2.)
    """
    apq = A[p, q]
    if apq == 0.0:
        return
    theta = (A[q, q] - A[p, p]) / (2.0 * apq)
    # smaller root of t² + 2θt - 1 = 0 keeps the rotation angle <= π/4
    sign = 1.0 if theta >= 0 else -1.0
    t = sign / (abs(theta) + np.hypot(theta, 1.0))
    c = 1.0 / np.sqrt(t * t + 1.0)
    s = t * c

    # columns: A J
    ap = A[:, p].copy()
    aq = A[:, q].copy()
    A[:, p] = c * ap - s * aq
    A[:, q] = s * ap + c * aq
    # rows: Jᵀ (A J)
    ap = A[p, :].copy()
    aq = A[q, :].copy()
    A[p, :] = c * ap - s * aq
    A[q, :] = s * ap + c * aq
    A[p, q] = A[q, p] = 0.0

    vp = V[:, p].copy()
    vq = V[:, q].copy()
    V[:, p] = c * vp - s * vq
    V[:, q] = s * vp + c * vq


def jacobi_eigh(
    A: np.ndarray,
    tol: float = DEFAULT_TOL,
    max_sweeps: Optional[int] = None,
) -> EigenDecomposition:
    """
    Eigen-decomposition of a real symmetric matrix by cyclic Jacobi rotation.

    Each sweep visits every (p, q) pair above the diagonal once, in row
    order, zeroing A[p, q] with a plane rotation and accumulating the
    rotations into V. Iteration stops once the squared off-diagonal mass
    falls below `tol`, or after `max_sweeps` sweeps.

    Parameters
    ----------
    A : (n,n) ndarray
        Real symmetric matrix.
    tol : float
        Convergence threshold on sum_{i != j} A[i, j]^2.
    max_sweeps : int or None
        Sweep cap. None means DEFAULT_MAX_SWEEPS.

    Returns
    -------
    EigenDecomposition
        values sorted descending; vectors[:, k] is the unit eigenvector of
        values[k], signed so its largest-magnitude entry is positive.
        If the cap is hit first, the partially converged pairs are returned
        with `converged=False`.
    """
    A = np.array(A, dtype=float)
    if A.ndim != 2 or A.shape[0] != A.shape[1]:
        raise ValueError("Jacobi eigen-decomposition requires a square matrix.")
    n = A.shape[0]
    if np.max(np.abs(A - A.T), initial=0.0) > scale_tol(A, 1e-10):
        raise ValueError("Jacobi eigen-decomposition requires a symmetric matrix.")
    A = (A + A.T) / 2.0

    if max_sweeps is None:
        max_sweeps = DEFAULT_MAX_SWEEPS
    V = np.eye(n)

    off = off_diagonal_norm(A)
    sweeps = 0
    while off >= tol and sweeps < max_sweeps:
        for p in range(n - 1):
            for q in range(p + 1, n):
                _rotate(A, V, p, q)
        sweeps += 1
        off = off_diagonal_norm(A)

    converged = off < tol
    if converged:
        logger.debug(f"jacobi: n={n} converged in {sweeps} sweeps (off={off:.3e})")
    else:
        logger.warning(
            f"jacobi: sweep cap {max_sweeps} reached with off-diagonal mass "
            f"{off:.3e} >= {tol:.1e}; returning partially converged result"
        )

    values = np.diag(A).copy()
    order = np.argsort(-values, kind="stable")
    values = values[order]
    V = V[:, order]

    # deterministic orientation
    if n:
        pivots = np.argmax(np.abs(V), axis=0)
        signs = np.sign(V[pivots, np.arange(n)])
        signs[signs == 0] = 1.0
        V = V * signs

    return EigenDecomposition(values, V, sweeps, converged, off)
