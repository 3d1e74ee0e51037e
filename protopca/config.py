# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Analysis configuration.

`AnalysisConfig` is immutable and validated on construction. The host
application speaks camelCase option names (`pcaKaiserThreshold`, ...);
`AnalysisConfig.from_mapping` accepts those as well as the field names.
"""

import logging
from dataclasses import dataclass, fields
from enum import Enum
from numbers import Integral, Real
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)


class NormalizationMethod(str, Enum):
    CENTER_ONLY = "center-only"
    Z_SCORE = "z-score"


class SignificanceMethod(str, Enum):
    BROKEN_STICK = "broken-stick"
    KAISER = "kaiser"


class ExpectedDimensionMethod(str, Enum):
    VARIANCE_80 = "variance-80"
    VARIANCE_90 = "variance-90"
    BROKEN_STICK = "broken-stick"
    MEDIAN_ACTIVE = "median-active"


# host option name -> field name
OPTION_NAMES = {
    "pcaKaiserThreshold": "kaiser_threshold",
    "activeAxisEpsilon": "active_axis_epsilon",
    "pcaComponentSignificanceMethod": "significance_method",
    "pcaMinAxisUsageRatio": "min_axis_usage_ratio",
    "pcaNormalizationMethod": "normalization_method",
    "pcaExpectedDimensionMethod": "expected_dimension_method",
    "jacobiConvergenceTolerance": "jacobi_tolerance",
    "jacobiMaxIterationsOverride": "jacobi_max_iterations",
}

_ENUM_FIELDS = {
    "normalization_method": NormalizationMethod,
    "significance_method": SignificanceMethod,
    "expected_dimension_method": ExpectedDimensionMethod,
}

_POSITIVE_FIELDS = ("kaiser_threshold", "active_axis_epsilon", "jacobi_tolerance")


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Options for a single analysis run.

    Parameters
    ----------
    kaiser_threshold : float
        Multiplier on the average eigenvalue for the Kaiser rule.
    active_axis_epsilon : float
        A weight counts as active when its magnitude exceeds this.
    significance_method : SignificanceMethod
        Rule behind `significant_component_count`.
    min_axis_usage_ratio : float
        Fraction of prototypes that must carry an axis for it to survive
        sparse filtering. 0 disables filtering.
    normalization_method : NormalizationMethod
        Column treatment before the covariance is formed.
    expected_dimension_method : ExpectedDimensionMethod
        Rule behind `expected_component_count`.
    jacobi_tolerance : float
        Solver stops once the squared off-diagonal mass drops below this.
    jacobi_max_iterations : int or None
        Cap on Jacobi sweeps; None uses the solver's internal cap.
    """

    kaiser_threshold: float = 1.0
    active_axis_epsilon: float = 1e-6
    significance_method: SignificanceMethod = SignificanceMethod.BROKEN_STICK
    min_axis_usage_ratio: float = 0.1
    normalization_method: NormalizationMethod = NormalizationMethod.CENTER_ONLY
    expected_dimension_method: ExpectedDimensionMethod = (
        ExpectedDimensionMethod.VARIANCE_80
    )
    jacobi_tolerance: float = 1e-10
    jacobi_max_iterations: Optional[int] = None

    def __post_init__(self):
        for name, enum_cls in _ENUM_FIELDS.items():
            raw = getattr(self, name)
            try:
                value = enum_cls(raw)
            except ValueError:
                allowed = ", ".join(m.value for m in enum_cls)
                raise ValueError(f"{name} must be one of: {allowed}; got {raw!r}")
            object.__setattr__(self, name, value)

        for name in _POSITIVE_FIELDS + ("min_axis_usage_ratio",):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, Real):
                raise TypeError(f"{name} must be a number, got {type(value).__name__}")
            object.__setattr__(self, name, float(value))

        for name in _POSITIVE_FIELDS:
            if not getattr(self, name) > 0:
                raise ValueError(f"{name} must be > 0")

        if not 0.0 <= self.min_axis_usage_ratio <= 1.0:
            raise ValueError("min_axis_usage_ratio must be within [0, 1]")

        cap = self.jacobi_max_iterations
        if cap is not None:
            if isinstance(cap, bool) or not isinstance(cap, Integral):
                raise TypeError("jacobi_max_iterations must be an int or None")
            if cap < 1:
                raise ValueError("jacobi_max_iterations must be >= 1")
            object.__setattr__(self, "jacobi_max_iterations", int(cap))

        self._warn_on_inconsistency()

    def _warn_on_inconsistency(self):
        if (
            self.significance_method is SignificanceMethod.KAISER
            and self.normalization_method is NormalizationMethod.Z_SCORE
        ):
            logger.warning(
                "Kaiser criterion with z-score normalization may cause false "
                "positives (all eigenvalues approach 1 for uncorrelated data)"
            )
        if self.jacobi_tolerance > 1e-6:
            logger.warning(
                f"jacobi_tolerance ({self.jacobi_tolerance}) is relatively large, "
                "eigenvalue precision may be reduced"
            )
        if self.min_axis_usage_ratio > 0.5:
            logger.warning(
                f"min_axis_usage_ratio ({self.min_axis_usage_ratio}) > 0.5 may "
                "exclude too many axes from PCA"
            )

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "AnalysisConfig":
        """
        Build a config from host option names or field names.

        Keys mapped to None fall back to the defaults. Unknown keys raise
        ValueError so a misspelt option is never silently ignored.
        """
        if mapping is None:
            return cls()
        field_names = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in mapping.items():
            name = OPTION_NAMES.get(key, key)
            if name not in field_names:
                raise ValueError(f"unknown analysis option: {key!r}")
            if value is not None:
                kwargs[name] = value
        return cls(**kwargs)

    def to_mapping(self) -> dict:
        """Host-facing option names with plain (non-enum) values."""
        out = {}
        for option, name in OPTION_NAMES.items():
            value = getattr(self, name)
            out[option] = value.value if isinstance(value, Enum) else value
        return out
