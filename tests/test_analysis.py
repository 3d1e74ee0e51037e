# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import itertools
import json
import logging
import math

import numpy as np
import pytest

from protopca import (
    AnalysisConfig,
    AnalysisResult,
    PCAAnalyzer,
    analyze,
    analyze_with_comparison,
    empty_result,
)
from protopca.analysis import IMMATERIAL_SUMMARY, MATERIAL_SUMMARY

logger = logging.getLogger(__name__)

SIMPLE = [
    {"id": "p0", "weights": {"x": 1, "y": 0}},
    {"id": "p1", "weights": {"x": 0, "y": 1}},
    {"id": "p2", "weights": {"x": 1, "y": 1}},
    {"id": "p3", "weights": {"x": -1, "y": 0}},
]

# x and y uncorrelated by construction: covariance diag(2, 0.004)
DOMINANT_X = [
    {"id": "a", "weights": {"x": 2.0, "y": 0.0}},
    {"id": "b", "weights": {"x": -2.0, "y": 0.0}},
    {"id": "c", "weights": {"x": 1.0, "y": 0.0}},
    {"id": "d", "weights": {"x": -1.0, "y": 0.0}},
    {"id": "e", "weights": {"x": 0.0, "y": 0.1}},
    {"id": "f", "weights": {"x": 0.0, "y": -0.1}},
]


def random_prototypes(n=20, axes="abcdef", seed=0, sparsity=0.3):
    rng = np.random.default_rng(seed)
    protos = []
    for i in range(n):
        weights = {
            axis: float(rng.uniform(-1, 1))
            for axis in axes
            if rng.random() > sparsity
        }
        protos.append({"id": f"p{i}", "weights": weights, "gates": [f"{axes[0]} >= 0.1"]})
    return protos


METHOD_GRID = list(
    itertools.product(
        ["center-only", "z-score"],
        ["broken-stick", "kaiser"],
        ["variance-80", "variance-90", "broken-stick", "median-active"],
    )
)


# ----- degenerate input -----


@pytest.mark.parametrize(
    "prototypes",
    [None, [], [{"id": "only", "weights": {"x": 1.0, "y": 2.0}}]],
)
def test_empty_result_for_too_few_prototypes(prototypes):
    result = analyze(prototypes)
    assert result == AnalysisResult()
    assert result.is_empty
    assert result.residual_eigenvector is None
    assert result.residual_eigenvector_index == -1


def test_empty_result_shape_is_identical_across_calls():
    dumps = {
        json.dumps(analyze(p).to_dict(), sort_keys=True)
        for p in (None, [], [{"id": "a", "weights": {"x": 1}}], iter([]))
    }
    assert len(dumps) == 1
    record = json.loads(dumps.pop())
    assert record["dimensionsUsed"] == []
    assert record["componentsFor80Pct"] == 0
    assert record["residualEigenvector"] is None
    assert record["residualEigenvectorIndex"] == -1


@pytest.mark.parametrize(
    "prototypes",
    [
        [{"id": "a"}, {"id": "b"}, {"id": "c"}],
        [{"id": "a", "weights": {"x": 0, "y": 0}}, {"id": "b", "weights": {"x": 0, "y": 0}}],
        [{"id": "a", "weights": {"x": 1, "y": 2}}, {"id": "b", "weights": {"x": 1, "y": 2}}],
        [{"id": "a", "weights": {"x": 1}}, {"id": "b", "weights": {"x": 2}}],
        [{"id": "a", "weights": {"x": math.nan, "y": math.inf}}, {"id": "b", "weights": {}}],
    ],
    ids=["no-weights", "all-zero", "identical", "single-axis", "non-finite"],
)
def test_empty_result_for_degenerate_weights(prototypes):
    result = analyze(prototypes)
    assert result.is_empty
    assert result.explained_variance == ()
    assert result.significant_component_count == 0


def test_empty_result_keeps_axis_bookkeeping():
    prototypes = [
        {"id": "a", "weights": {"x": 1.0, "y": 1.0}},
        {"id": "b", "weights": {"x": 1.0}},
        {"id": "c", "weights": {"x": 1.0}},
    ]
    result = analyze(prototypes, axis_registry=["x", "y", "z"])
    assert result.is_empty
    assert result.excluded_sparse_axes == ("y",)
    assert result.unused_defined_axes == ("z",)
    assert result.unused_in_gates == ("x", "y")
    assert result == empty_result(
        excluded_sparse_axes=["y"],
        unused_defined_axes=["z"],
        unused_defined_not_in_gates=["z"],
        unused_in_gates=["x", "y"],
    )


# ----- worked examples -----


def test_two_independent_axes():
    result = analyze(SIMPLE)
    assert result.dimensions_used == ("x", "y")
    assert len(result.cumulative_variance) == 2
    assert len(result.explained_variance) == 2
    assert sum(result.explained_variance) == pytest.approx(1.0, abs=1e-5)


def test_dominant_axis_metrics():
    result = analyze(DOMINANT_X)
    np.testing.assert_allclose(result.explained_variance, [2.0 / 2.004, 0.004 / 2.004])
    assert result.components_for_80_pct == 1
    assert result.components_for_90_pct == 1
    assert result.expected_component_count == 1
    assert result.significant_component_count == 1
    assert result.significant_beyond_expected == 0
    assert result.residual_variance_ratio == pytest.approx(0.004 / 2.004)
    assert result.residual_eigenvector is None
    assert result.residual_eigenvector_index == -1
    assert result.axis_count == 1
    assert result.top_loading_prototypes[0].prototype_id in ("a", "b")
    assert result.top_loading_prototypes[0].loading == pytest.approx(2.0)


def test_kaiser_counts_above_scaled_average():
    # eigenvalues 2 and 0.004, average 1.002
    assert analyze(DOMINANT_X, {"pcaComponentSignificanceMethod": "kaiser"}).significant_component_count == 1
    cfg = {"pcaComponentSignificanceMethod": "kaiser", "pcaKaiserThreshold": 0.001}
    assert analyze(DOMINANT_X, cfg).significant_component_count == 2


def test_residual_eigenvector_when_significant_beyond_expected():
    # no weight clears epsilon, so median-active expects 0 components
    cfg = AnalysisConfig(
        expected_dimension_method="median-active", active_axis_epsilon=5.0
    )
    result = analyze(DOMINANT_X, cfg)
    assert result.axis_count == 0
    assert result.expected_component_count == 0
    assert result.significant_beyond_expected == 1
    assert result.residual_eigenvector_index == 0
    assert dict(result.residual_eigenvector) == pytest.approx({"x": 1.0, "y": 0.0})
    assert result.residual_variance_ratio == 1.0
    assert result.top_loading_prototypes == ()
    assert result.reconstruction_errors == ()


def test_normalization_changes_dominant_axis_share():
    prototypes = [
        {"id": str(i), "weights": {"x": x, "y": y}}
        for i, (x, y) in enumerate(
            [(10, 0.1), (-10, 0.2), (5, -0.1), (-5, 0.0), (0, -0.2)]
        )
    ]
    centered = analyze(prototypes, {"pcaNormalizationMethod": "center-only"})
    scaled = analyze(prototypes, {"pcaNormalizationMethod": "z-score"})
    assert centered.explained_variance[0] > 0.99
    # correlation is -0.3, so the z-scored split is (1 + 0.3) / 2
    assert scaled.explained_variance[0] == pytest.approx(0.65)


def test_prototype_id_fallbacks():
    prototypes = [
        {"prototypeId": "named", "weights": {"x": 3.0, "y": 0.0}},
        {"weights": {"x": -3.0, "y": 0.5}},
        {"id": "plain", "weights": {"x": 0.0, "y": -0.5}},
    ]
    ids = {e.prototype_id for e in analyze(prototypes).top_loading_prototypes}
    assert ids == {"named", "prototype-1", "plain"}


def test_non_finite_weights_are_absent():
    prototypes = [dict(p) for p in SIMPLE]
    prototypes.append({"id": "bad", "weights": {"x": math.nan, "y": math.inf, "z": 1}})
    result = analyze(prototypes, {"pcaMinAxisUsageRatio": 0})
    assert "z" in result.dimensions_used
    assert all(math.isfinite(v) for v in result.explained_variance)


def test_axis_count_capped_by_prototype_count():
    prototypes = [
        {"id": "a", "weights": {"a": 1, "b": 2, "c": 3, "d": 4, "e": 5}},
        {"id": "b", "weights": {"a": 2, "b": 1, "c": 4, "d": 3, "e": 2}},
        {"id": "c", "weights": {"a": 3, "b": 3, "c": 2, "d": 1, "e": 1}},
    ]
    result = analyze(prototypes)
    assert len(result.dimensions_used) == 3
    assert "e" in result.dimensions_used


def test_jacobi_iteration_cap_still_yields_result():
    result = analyze(random_prototypes(seed=4), {"jacobiMaxIterationsOverride": 1})
    assert not result.is_empty
    assert sum(result.explained_variance) == pytest.approx(1.0, abs=1e-5)


def test_sparse_axis_excluded_then_retained():
    prototypes = [
        {"id": f"p{i}", "weights": {"x": i * 0.1, "y": math.sin(i)}} for i in range(10)
    ]
    prototypes[0]["weights"]["unique"] = 0.8

    dense = analyze(prototypes, {"pcaMinAxisUsageRatio": 0.15})
    assert "unique" in dense.excluded_sparse_axes
    assert "unique" not in dense.dimensions_used

    full = analyze(prototypes, {"pcaMinAxisUsageRatio": 0})
    assert "unique" in full.dimensions_used
    assert full.excluded_sparse_axes == ()


def test_excluded_axis_reliance_reported():
    # x spreads along a line; only p3 and p6 step off it along y, and p3
    # alone carries the rare axis
    prototypes = [{"id": f"p{i}", "weights": {"x": i - 4.5}} for i in range(10)]
    prototypes[3]["weights"].update(y=1.0, unique=5.0)
    prototypes[6]["weights"]["y"] = -1.0

    result = analyze(prototypes, {"pcaMinAxisUsageRatio": 0.15})
    assert result.dimensions_used == ("x", "y")
    assert result.excluded_sparse_axes == ("unique",)
    assert result.expected_component_count == 1

    errors = {e.prototype_id: e for e in result.reconstruction_errors}
    assert {e.prototype_id for e in result.reconstruction_errors[:2]} == {"p3", "p6"}

    p3 = errors["p3"]
    assert p3.excluded_axis_reliance == pytest.approx(25.0 / 28.25)
    assert p3.relies_on_excluded_axes is True
    assert errors["p6"].excluded_axis_reliance == 0.0
    assert errors["p6"].relies_on_excluded_axes is False
    for entry in result.reconstruction_errors:
        assert 0.0 <= entry.excluded_axis_reliance <= 1.0

    record = result.to_dict()["reconstructionErrors"]
    assert any(r["prototypeId"] == "p3" and r["reliesOnExcludedAxes"] for r in record)


def test_tiny_weights_still_analyzed():
    tiny = [
        {"id": p["id"], "weights": {k: v * 1e-6 for k, v in p["weights"].items()}}
        for p in DOMINANT_X
    ]
    result = analyze(tiny)
    assert not result.is_empty
    np.testing.assert_allclose(
        result.explained_variance, analyze(DOMINANT_X).explained_variance
    )
    assert analyze(tiny, {"pcaNormalizationMethod": "z-score"}).dimensions_used == ("x", "y")


def test_gate_and_registry_partitions():
    prototypes = random_prototypes(seed=2)
    prototypes[0]["gates"] = ["calm >= 0.2", "nonsense", None]
    registry = ["a", "b", "c", "d", "e", "f", "calm", "dread"]
    result = analyze(prototypes, axis_registry=registry)
    assert result.unused_defined_axes == ("calm", "dread")
    assert result.unused_defined_used_in_gates == ("calm",)
    assert result.unused_defined_not_in_gates == ("dread",)
    assert "a" not in result.unused_in_gates
    assert list(result.unused_in_gates) == sorted(result.unused_in_gates)


# ----- invariants over a grid of strategies -----


@pytest.mark.parametrize("norm,significance,expected", METHOD_GRID)
@pytest.mark.parametrize("seed", [0, 1, 2])
def test_result_invariants(norm, significance, expected, seed):
    cfg = AnalysisConfig(
        normalization_method=norm,
        significance_method=significance,
        expected_dimension_method=expected,
    )
    result = analyze(random_prototypes(seed=seed), cfg)
    assert not result.is_empty
    logger.debug(f"{norm}/{significance}/{expected}: {result.explained_variance}")

    ev = np.array(result.explained_variance)
    assert ev.sum() == pytest.approx(1.0, abs=1e-5)
    assert np.all(np.diff(ev) <= 1e-12)

    cum = np.array(result.cumulative_variance)
    assert np.all(np.diff(cum) >= -1e-12)
    assert cum[-1] == pytest.approx(1.0, abs=1e-5)

    assert result.components_for_90_pct >= result.components_for_80_pct
    assert result.additional_significant_components == result.significant_beyond_expected
    assert result.significant_beyond_expected == max(
        0, result.significant_component_count - result.expected_component_count
    )
    assert 0.0 <= result.residual_variance_ratio <= 1.0
    if expected == "median-active":
        assert result.expected_component_count == result.axis_count

    assert (result.residual_eigenvector is None) == (result.residual_eigenvector_index == -1)
    if result.residual_eigenvector is not None:
        assert set(result.residual_eigenvector) == set(result.dimensions_used)
        norm_sq = sum(v * v for v in result.residual_eigenvector.values())
        assert norm_sq == pytest.approx(1.0, abs=1e-8)

    assert len(result.top_loading_prototypes) <= 10
    assert len(result.reconstruction_errors) <= 5
    for entry in result.reconstruction_errors:
        assert math.isfinite(entry.error)
        assert entry.excluded_axis_reliance == 0.0 or result.excluded_sparse_axes

    json.dumps(result.to_dict())


def test_reliance_zero_without_excluded_axes():
    result = analyze(random_prototypes(seed=5), {"pcaMinAxisUsageRatio": 0})
    assert result.excluded_sparse_axes == ()
    for entry in result.reconstruction_errors:
        assert entry.excluded_axis_reliance == 0.0
        assert entry.relies_on_excluded_axes is False


def test_to_dict_uses_host_field_names():
    record = analyze(SIMPLE).to_dict()
    assert set(record) == {
        "residualVarianceRatio",
        "additionalSignificantComponents",
        "significantComponentCount",
        "expectedComponentCount",
        "significantBeyondExpected",
        "axisCount",
        "topLoadingPrototypes",
        "dimensionsUsed",
        "excludedSparseAxes",
        "unusedDefinedAxes",
        "unusedDefinedUsedInGates",
        "unusedDefinedNotInGates",
        "unusedInGates",
        "cumulativeVariance",
        "explainedVariance",
        "componentsFor80Pct",
        "componentsFor90Pct",
        "reconstructionErrors",
        "residualEigenvector",
        "residualEigenvectorIndex",
    }


def test_analyze_is_repeatable():
    analyzer = PCAAnalyzer({"pcaNormalizationMethod": "z-score"})
    prototypes = random_prototypes(seed=9)
    assert analyzer.analyze(prototypes) == analyzer.analyze(prototypes)


# ----- two-pass comparison -----


def test_comparison_without_sparse_axes():
    result = analyze_with_comparison(random_prototypes(seed=3), {"pcaMinAxisUsageRatio": 0})
    assert result.dense.dimensions_used == result.full.dimensions_used
    assert result.comparison.delta_significant == 0
    assert result.comparison.delta_residual_variance == 0.0
    assert result.comparison.delta_rmse == 0.0
    assert result.comparison.filtering_impact_summary == IMMATERIAL_SUMMARY


def test_comparison_too_few_prototypes():
    result = analyze_with_comparison([{"id": "a", "weights": {"x": 1}}])
    assert result.dense == AnalysisResult()
    assert result.full == AnalysisResult()
    c = result.comparison
    assert (c.delta_significant, c.delta_residual_variance, c.delta_rmse) == (0, 0.0, 0.0)
    assert c.filtering_impact_summary == IMMATERIAL_SUMMARY


def test_comparison_deltas_are_full_minus_dense():
    prototypes = [
        {"id": f"p{i}", "weights": {"x": i * 0.1, "y": math.sin(i)}} for i in range(10)
    ]
    prototypes[0]["weights"]["unique"] = 3.0
    result = analyze_with_comparison(prototypes, {"pcaMinAxisUsageRatio": 0.15})
    assert "unique" in result.dense.excluded_sparse_axes
    assert "unique" in result.full.dimensions_used
    c = result.comparison
    assert c.delta_significant == (
        result.full.significant_component_count - result.dense.significant_component_count
    )
    assert c.delta_residual_variance == pytest.approx(
        result.full.residual_variance_ratio - result.dense.residual_variance_ratio
    )
    material = abs(c.delta_residual_variance) > 0.02 or c.delta_significant != 0
    assert c.filtering_impact_summary == (MATERIAL_SUMMARY if material else IMMATERIAL_SUMMARY)
    assert set(result.to_dict()) == {"dense", "full", "comparison"}
    assert set(result.to_dict()["comparison"]) == {
        "deltaSignificant",
        "deltaResidualVariance",
        "deltaRMSE",
        "filteringImpactSummary",
    }


def test_comparison_accepts_generators():
    gen = (p for p in SIMPLE)
    result = analyze_with_comparison(gen)
    assert result.dense.dimensions_used == ("x", "y")
    assert result.full.dimensions_used == ("x", "y")
