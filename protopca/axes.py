# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Axis registry and gate parsing.

The registry is the host application's catalog of every axis name the
domain defines. Nothing here invents axis names: the registry holds what it
was given, and gates contribute only the axis token they literally name.
"""

import re
from typing import Iterable, Iterator, List, Optional, Set, Tuple

# "<axis> <op> <number>", e.g. "valence >= 0.35"
_GATE_RE = re.compile(
    r"^\s*([A-Za-z_][A-Za-z0-9_.\-]*)\s*(>=|<=|==|!=|>|<|=)\s*"
    r"([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)\s*$"
)


class AxisRegistry:
    """Ordered, de-duplicated, read-only catalog of axis names."""

    __slots__ = ("_names",)

    def __init__(self, names: Iterable[str] = ()):
        seen = set()
        ordered = []
        for name in names:
            if not isinstance(name, str):
                raise TypeError(f"axis names must be str, got {type(name)}")
            if name not in seen:
                seen.add(name)
                ordered.append(name)
        self._names: Tuple[str, ...] = tuple(ordered)

    @property
    def names(self) -> Tuple[str, ...]:
        return self._names

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({list(self._names)!r})"

    def unused(self, seen: Iterable[str]) -> List[str]:
        """Registry axes (in registry order) absent from `seen`."""
        seen = set(seen)
        return [name for name in self._names if name not in seen]


def parse_gate_axis(expr) -> Optional[str]:
    """
    Return the axis token of a gate expression, or None when the entry is
    not a string or does not read as "<axis> <op> <number>".
    """
    if not isinstance(expr, str):
        return None
    match = _GATE_RE.match(expr)
    if match is None:
        return None
    return match.group(1)


def extract_gate_axes(prototypes) -> Set[str]:
    """Union of the axis tokens named by every parseable gate."""
    axes: Set[str] = set()
    for proto in prototypes:
        for gate in proto.gates:
            axis = parse_gate_axis(gate)
            if axis is not None:
                axes.add(axis)
    return axes
