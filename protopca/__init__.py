# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
protopca
========

Principal Component Analysis over sparse, axis-named prototype weight
vectors, with diagnostics about dimensional structure, axis usage and
reliance on sparsely used axes.

Public API
~~~~~~~~~~
- Entry points
    - `analyze`, `analyze_with_comparison`, `PCAAnalyzer`
- Inputs
    - `AnalysisConfig` and its strategy enums, `AxisRegistry`, `Prototype`
- Outputs
    - `AnalysisResult`, `ComparisonResult`, `FilteringComparison`
- Solver
    - `jacobi_eigh`, `covariance`

Everything else lives in sub-modules and is **not** considered part of the
stable interface.

Example
-------
>>> import protopca
>>> result = protopca.analyze(
...     [{"id": "a", "weights": {"x": 1.0, "y": 0.2}},
...      {"id": "b", "weights": {"x": -0.5, "y": 0.9}},
...      {"id": "c", "weights": {"x": 0.1, "y": -0.7}}],
...     config={"pcaMinAxisUsageRatio": 0},
... )
>>> round(sum(result.explained_variance), 6)
1.0
"""

from importlib.metadata import version as _pkg_version

# ---------------------------------------------------------------------
# Re-export the high-level names users are expected to touch.
# Each of these is implemented in one of the internal sub-modules.
# ---------------------------------------------------------------------
from .analysis import (
    AnalysisResult,
    ComparisonResult,
    FilteringComparison,
    PCAAnalyzer,
    analyze,
    analyze_with_comparison,
    empty_result,
)
from .axes import AxisRegistry, parse_gate_axis
from .config import (
    AnalysisConfig,
    ExpectedDimensionMethod,
    NormalizationMethod,
    SignificanceMethod,
)
from .diagnostics import Loading, Reconstruction
from .eigen import EigenDecomposition, covariance, jacobi_eigh
from .preparation import Prototype

__all__ = [
    "analyze",
    "analyze_with_comparison",
    "PCAAnalyzer",
    "AnalysisResult",
    "ComparisonResult",
    "FilteringComparison",
    "empty_result",
    "AnalysisConfig",
    "NormalizationMethod",
    "SignificanceMethod",
    "ExpectedDimensionMethod",
    "AxisRegistry",
    "parse_gate_axis",
    "Prototype",
    "Loading",
    "Reconstruction",
    "jacobi_eigh",
    "covariance",
    "EigenDecomposition",
]

# ---------------------------------------------------------------------
# Version string (helps “pip show protopca”, Sphinx, etc.)
# ---------------------------------------------------------------------
try:  # installed via pip / build backend
    __version__ = _pkg_version(__name__)
except Exception:  # running from a checkout
    __version__ = "0.0.0.dev0"

# ---------------------------------------------------------------------
# Library logging stays silent unless the application configures it.
# ---------------------------------------------------------------------
import logging as _logging

_logging.getLogger(__name__).addHandler(_logging.NullHandler())
