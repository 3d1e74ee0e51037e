# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
PCA over prototype weight vectors.

    prepare -> normalize -> covariance -> Jacobi -> metrics -> diagnostics

Degenerate input (None, fewer than two prototypes, fewer than two usable
axes, no variance) never raises; it yields the canonical empty result,
which still carries whatever axis bookkeeping could be computed.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import numpy as np

from . import diagnostics, metrics
from .axes import AxisRegistry
from .config import AnalysisConfig, NormalizationMethod
from .diagnostics import Loading, Reconstruction
from .eigen import covariance, jacobi_eigh
from .normalization import normalize
from .preparation import prepare
from .utils import EPS

logger = logging.getLogger(__name__)

# |delta residual variance| above this, or any change in the significant
# count, means sparse filtering changed the outcome
MATERIAL_RESIDUAL_DELTA = 0.02
MATERIAL_SUMMARY = "Sparse filtering materially changed PCA conclusions."
IMMATERIAL_SUMMARY = "Sparse filtering did not materially change PCA conclusions."


@dataclass(frozen=True)
class AnalysisResult:
    residual_variance_ratio: float = 0.0
    significant_component_count: int = 0
    expected_component_count: int = 0
    significant_beyond_expected: int = 0
    axis_count: int = 0
    top_loading_prototypes: Tuple[Loading, ...] = ()
    dimensions_used: Tuple[str, ...] = ()
    excluded_sparse_axes: Tuple[str, ...] = ()
    unused_defined_axes: Tuple[str, ...] = ()
    unused_defined_used_in_gates: Tuple[str, ...] = ()
    unused_defined_not_in_gates: Tuple[str, ...] = ()
    unused_in_gates: Tuple[str, ...] = ()
    cumulative_variance: Tuple[float, ...] = ()
    explained_variance: Tuple[float, ...] = ()
    components_for_80_pct: int = 0
    components_for_90_pct: int = 0
    reconstruction_errors: Tuple[Reconstruction, ...] = ()
    residual_eigenvector: Optional[Mapping[str, float]] = field(
        default=None, hash=False
    )
    residual_eigenvector_index: int = -1

    @property
    def additional_significant_components(self) -> int:
        """Older name for `significant_beyond_expected`."""
        return self.significant_beyond_expected

    @property
    def is_empty(self) -> bool:
        return not self.dimensions_used

    def to_dict(self) -> Dict[str, Any]:
        """Plain record with the host's camelCase field names."""
        return {
            "residualVarianceRatio": self.residual_variance_ratio,
            "additionalSignificantComponents": self.additional_significant_components,
            "significantComponentCount": self.significant_component_count,
            "expectedComponentCount": self.expected_component_count,
            "significantBeyondExpected": self.significant_beyond_expected,
            "axisCount": self.axis_count,
            "topLoadingPrototypes": [
                {"prototypeId": e.prototype_id, "loading": e.loading}
                for e in self.top_loading_prototypes
            ],
            "dimensionsUsed": list(self.dimensions_used),
            "excludedSparseAxes": list(self.excluded_sparse_axes),
            "unusedDefinedAxes": list(self.unused_defined_axes),
            "unusedDefinedUsedInGates": list(self.unused_defined_used_in_gates),
            "unusedDefinedNotInGates": list(self.unused_defined_not_in_gates),
            "unusedInGates": list(self.unused_in_gates),
            "cumulativeVariance": list(self.cumulative_variance),
            "explainedVariance": list(self.explained_variance),
            "componentsFor80Pct": self.components_for_80_pct,
            "componentsFor90Pct": self.components_for_90_pct,
            "reconstructionErrors": [
                {
                    "prototypeId": e.prototype_id,
                    "error": e.error,
                    "excludedAxisReliance": e.excluded_axis_reliance,
                    "reliesOnExcludedAxes": e.relies_on_excluded_axes,
                }
                for e in self.reconstruction_errors
            ],
            "residualEigenvector": (
                None
                if self.residual_eigenvector is None
                else dict(self.residual_eigenvector)
            ),
            "residualEigenvectorIndex": self.residual_eigenvector_index,
        }


@dataclass(frozen=True)
class FilteringComparison:
    delta_significant: int = 0
    delta_residual_variance: float = 0.0
    delta_rmse: float = 0.0
    filtering_impact_summary: str = IMMATERIAL_SUMMARY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deltaSignificant": self.delta_significant,
            "deltaResidualVariance": self.delta_residual_variance,
            "deltaRMSE": self.delta_rmse,
            "filteringImpactSummary": self.filtering_impact_summary,
        }


@dataclass(frozen=True)
class ComparisonResult:
    dense: AnalysisResult
    full: AnalysisResult
    comparison: FilteringComparison

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dense": self.dense.to_dict(),
            "full": self.full.to_dict(),
            "comparison": self.comparison.to_dict(),
        }


def empty_result(**bookkeeping) -> AnalysisResult:
    """The canonical empty result, optionally carrying axis bookkeeping."""
    return AnalysisResult(**{k: tuple(v) for k, v in bookkeeping.items()})


class PCAAnalyzer:
    """
    Runs the prototype PCA for one configuration.

    The analyzer holds only its (immutable) config and axis registry, so a
    single instance may be shared between threads.

    Example
    -------
    >>> analyzer = PCAAnalyzer(AnalysisConfig(min_axis_usage_ratio=0))
    >>> result = analyzer.analyze([
    ...     {"id": "a", "weights": {"x": 1, "y": 0}},
    ...     {"id": "b", "weights": {"x": 0, "y": 1}},
    ...     {"id": "c", "weights": {"x": 1, "y": 1}},
    ...     {"id": "d", "weights": {"x": -1, "y": 0}},
    ... ])
    >>> result.dimensions_used
    ('x', 'y')
    """

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        axis_registry: Optional[Iterable[str]] = None,
    ):
        if config is None:
            config = AnalysisConfig()
        elif isinstance(config, Mapping):
            config = AnalysisConfig.from_mapping(config)
        self.config: AnalysisConfig = config

        if axis_registry is None:
            axis_registry = AxisRegistry()
        elif not isinstance(axis_registry, AxisRegistry):
            axis_registry = AxisRegistry(axis_registry)
        self.axis_registry: AxisRegistry = axis_registry

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(config={self.config!r}, "
            f"axis_registry={self.axis_registry!r})"
        )

    def analyze(self, prototypes) -> AnalysisResult:
        if prototypes is None:
            return empty_result()
        prototypes = list(prototypes)
        if len(prototypes) < 2:
            return empty_result()

        cfg = self.config
        data = prepare(prototypes, cfg, self.axis_registry)
        bookkeeping = dict(
            excluded_sparse_axes=data.excluded_sparse_axes,
            unused_defined_axes=data.unused_defined_axes,
            unused_defined_used_in_gates=data.unused_defined_used_in_gates,
            unused_defined_not_in_gates=data.unused_defined_not_in_gates,
            unused_in_gates=data.unused_in_gates,
        )

        if len(data.axes) < 2:
            logger.debug(f"only {len(data.axes)} usable axes; nothing to analyze")
            return empty_result(**bookkeeping)

        X = normalize(data.matrix, cfg.normalization_method)
        # noise floor in the units of X
        if cfg.normalization_method is NormalizationMethod.Z_SCORE:
            floor = EPS
        else:
            floor = EPS * float(np.max(np.abs(data.matrix), initial=0.0))
        if not np.any(np.abs(X) > floor):
            logger.debug("prototype weights have no variance")
            return empty_result(**bookkeeping)

        eig = jacobi_eigh(
            covariance(X),
            tol=cfg.jacobi_tolerance,
            max_sweeps=cfg.jacobi_max_iterations,
        )
        # PSD up to rounding
        values = np.clip(eig.values, 0.0, None)
        if float(values.sum()) <= floor * floor:
            return empty_result(**bookkeeping)
        vectors = eig.vectors

        explained = metrics.explained_variance(values)
        cumulative = metrics.cumulative_variance(explained)
        for80 = metrics.components_for(cumulative, 0.8)
        for90 = metrics.components_for(cumulative, 0.9)

        expected = metrics.expected_component_count(
            cfg.expected_dimension_method, explained, cumulative, data.axis_count
        )
        significant = metrics.significant_component_count(
            cfg.significance_method, values, explained, cfg.kaiser_threshold
        )
        beyond = max(0, significant - expected)

        residual_vector = None
        residual_index = -1
        if beyond > 0:
            residual_vector = metrics.residual_eigenvector(vectors, data.axes, expected)
            if residual_vector is not None:
                residual_vector = MappingProxyType(residual_vector)
                residual_index = expected

        top = diagnostics.top_loading_prototypes(
            X, vectors, expected, data.prototype_ids
        )
        errors = diagnostics.reconstruction_errors(
            X,
            vectors,
            expected,
            data.prototype_ids,
            data.finite_weights,
            data.excluded_sparse_axes,
        )

        return AnalysisResult(
            residual_variance_ratio=metrics.residual_variance_ratio(cumulative, expected),
            significant_component_count=significant,
            expected_component_count=expected,
            significant_beyond_expected=beyond,
            axis_count=data.axis_count,
            top_loading_prototypes=tuple(top),
            dimensions_used=tuple(data.axes),
            cumulative_variance=tuple(metrics.as_list(cumulative)),
            explained_variance=tuple(metrics.as_list(explained)),
            components_for_80_pct=for80,
            components_for_90_pct=for90,
            reconstruction_errors=tuple(errors),
            residual_eigenvector=residual_vector,
            residual_eigenvector_index=residual_index,
            **{k: tuple(v) for k, v in bookkeeping.items()},
        )

    def analyze_with_comparison(self, prototypes) -> ComparisonResult:
        """
        Analyze twice: with the configured sparse filter ("dense") and with
        filtering disabled ("full"). Deltas are full minus dense.
        """
        if prototypes is not None:
            prototypes = list(prototypes)
        dense = self.analyze(prototypes)
        unfiltered = PCAAnalyzer(
            dataclasses.replace(self.config, min_axis_usage_ratio=0.0),
            self.axis_registry,
        )
        full = unfiltered.analyze(prototypes)

        delta_significant = (
            full.significant_component_count - dense.significant_component_count
        )
        delta_residual = full.residual_variance_ratio - dense.residual_variance_ratio
        delta_rmse = diagnostics.rms_error(
            full.reconstruction_errors
        ) - diagnostics.rms_error(dense.reconstruction_errors)

        material = abs(delta_residual) > MATERIAL_RESIDUAL_DELTA or delta_significant != 0
        return ComparisonResult(
            dense=dense,
            full=full,
            comparison=FilteringComparison(
                delta_significant=delta_significant,
                delta_residual_variance=float(delta_residual),
                delta_rmse=float(delta_rmse),
                filtering_impact_summary=(
                    MATERIAL_SUMMARY if material else IMMATERIAL_SUMMARY
                ),
            ),
        )


def analyze(prototypes, config=None, axis_registry=None) -> AnalysisResult:
    return PCAAnalyzer(config, axis_registry).analyze(prototypes)


def analyze_with_comparison(
    prototypes, config=None, axis_registry=None
) -> ComparisonResult:
    return PCAAnalyzer(config, axis_registry).analyze_with_comparison(prototypes)
