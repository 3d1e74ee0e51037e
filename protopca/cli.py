# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Command line report for a prototype file.

    protopca prototypes.json [--config cfg.json] [--axes axes.txt]
             [--compare] [--json] [-v]
"""

import argparse
import json
import logging
import pathlib
import sys
from typing import List, Optional

import pandas as pd

from .analysis import AnalysisResult, ComparisonResult, PCAAnalyzer
from .config import AnalysisConfig

logger = logging.getLogger(__name__)


def load_prototypes(path) -> list:
    """
    Read prototypes from JSON: a list, {"prototypes": [...]}, or a mapping
    of id -> prototype (the id fills in when the entry has none).
    """
    data = json.loads(pathlib.Path(path).read_text())
    if isinstance(data, dict) and "prototypes" in data:
        data = data["prototypes"]
    if isinstance(data, dict):
        entries = []
        for proto_id, entry in data.items():
            if isinstance(entry, dict):
                entry = {"id": proto_id, **entry}
            entries.append(entry)
        data = entries
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list or mapping of prototypes")
    return data


def load_axes(path) -> List[str]:
    """Axis registry from a JSON list or a text file with one name per line."""
    text = pathlib.Path(path).read_text()
    try:
        names = json.loads(text)
    except json.JSONDecodeError:
        names = [line.strip() for line in text.splitlines()]
        return [n for n in names if n and not n.startswith("#")]
    if not isinstance(names, list):
        raise ValueError(f"{path}: expected a JSON list of axis names")
    return [str(n) for n in names]


def variance_table(result: AnalysisResult) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "component": range(1, len(result.explained_variance) + 1),
            "explained": result.explained_variance,
            "cumulative": result.cumulative_variance,
        }
    )


def render(result: AnalysisResult, title: str = "PCA") -> str:
    lines = [f"## {title}", ""]
    if result.is_empty:
        lines.append("Not enough data for PCA (empty result).")
    else:
        lines += [
            f"axes used: {', '.join(result.dimensions_used)}",
            f"expected components: {result.expected_component_count}"
            f" (median active axes: {result.axis_count})",
            f"significant components: {result.significant_component_count}"
            f" (+{result.significant_beyond_expected} beyond expected)",
            f"residual variance ratio: {result.residual_variance_ratio:.4f}",
            f"components for 80% / 90%: {result.components_for_80_pct}"
            f" / {result.components_for_90_pct}",
            "",
            variance_table(result).to_markdown(index=False, floatfmt=".4f"),
        ]
        if result.reconstruction_errors:
            errors = pd.DataFrame(
                [e._asdict() for e in result.reconstruction_errors]
            )
            lines += ["", "### Worst reconstructions", ""]
            lines.append(errors.to_markdown(index=False, floatfmt=".4f"))
        if result.residual_eigenvector is not None:
            vec = pd.Series(dict(result.residual_eigenvector), name="component")
            lines += [
                "",
                f"### Residual eigenvector (index {result.residual_eigenvector_index})",
                "",
                vec.to_frame().to_markdown(floatfmt=".4f"),
            ]
    for label, axes in (
        ("excluded sparse axes", result.excluded_sparse_axes),
        ("unused defined axes (gated)", result.unused_defined_used_in_gates),
        ("unused defined axes (ungated)", result.unused_defined_not_in_gates),
        ("weighted but never gated", result.unused_in_gates),
    ):
        if axes:
            lines.append(f"{label}: {', '.join(axes)}")
    return "\n".join(lines)


def render_comparison(result: ComparisonResult) -> str:
    c = result.comparison
    return "\n\n".join(
        [
            render(result.dense, "Dense (sparse axes excluded)"),
            render(result.full, "Full (no exclusion)"),
            "## Comparison\n\n"
            f"delta significant: {c.delta_significant}\n"
            f"delta residual variance: {c.delta_residual_variance:+.4f}\n"
            f"delta RMSE: {c.delta_rmse:+.4f}\n"
            f"{c.filtering_impact_summary}",
        ]
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="protopca",
        description="PCA diagnostics over prototype weight vectors.",
    )
    ap.add_argument("prototypes", type=pathlib.Path, help="JSON prototype file")
    ap.add_argument("--config", type=pathlib.Path, help="JSON analysis options")
    ap.add_argument(
        "--axes", type=pathlib.Path, help="axis registry (JSON list or one per line)"
    )
    ap.add_argument(
        "--compare",
        action="store_true",
        help="also run without sparse filtering and report the difference",
    )
    ap.add_argument("--json", action="store_true", help="print the raw result record")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        prototypes = load_prototypes(args.prototypes)
        options = json.loads(args.config.read_text()) if args.config else None
        axes = load_axes(args.axes) if args.axes else None
        analyzer = PCAAnalyzer(AnalysisConfig.from_mapping(options), axes)
    except (OSError, ValueError, TypeError) as e:
        print(f"protopca: {e}", file=sys.stderr)
        return 2

    logger.debug(f"loaded {len(prototypes)} prototypes from {args.prototypes}")
    if args.compare:
        result = analyzer.analyze_with_comparison(prototypes)
        text = render_comparison(result)
    else:
        result = analyzer.analyze(prototypes)
        text = render(result)

    print(json.dumps(result.to_dict(), indent=2) if args.json else text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
