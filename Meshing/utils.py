"""Utilities for Meles Meshing."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

import numpy as np


class Height(IntEnum):
    """Topological co-dimension of mesh points."""

    CELL = 0
    """Hexahedral cells."""
    FACE = 1
    """Quadrilateral boundary faces."""

    @classmethod
    def from_int(cls, height: int) -> Height:
        """Create from an integer co-dimension."""
        try:
            return cls(height)
        except ValueError:
            raise ValueError(
                f"Unsupported height: {height}. Choose from {[h.value for h in cls]}."
            )


@dataclass
class MeshLabel:
    """Integer label attached to the mesh points of one height.

    Points without a value are simply not part of any stratum.
    """

    name: str
    """Label name."""
    height: Height
    """Co-dimension of the labelled points."""
    values: dict[int, int] = field(default_factory=dict)
    """Point -> value mapping."""

    def set_value(self, point: int, value: int) -> None:
        """Assign a value to a point."""
        self.values[int(point)] = int(value)

    def get_value(self, point: int) -> int | None:
        """Return the value of a point, if any."""
        return self.values.get(int(point))

    def stratum(self, value: int) -> np.ndarray:
        """Return the sorted points carrying a given value."""
        points = [p for p, v in self.values.items() if v == value]
        return np.array(sorted(points), dtype=np.int64)

    @property
    def stratum_values(self) -> set[int]:
        """Values in use."""
        return set(self.values.values())
