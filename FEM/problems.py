"""Meles benchmark-problem catalog.

The CEED benchmark problems share the same structure: a setup kernel that turns mesh coordinates into quadrature
data, and an apply kernel that evaluates the operator action. They only differ in the field shape, the kernels and
the quadrature rule, which is all this table records.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum, auto

import libceed

from .errors import UnknownProblem


class ProblemId(StrEnum):
    """CEED benchmark problems."""

    BP1 = auto()
    """Scalar mass operator, Gauss quadrature."""
    BP2 = auto()
    """Vector (3 components) mass operator, Gauss quadrature."""
    BP3 = auto()
    """Scalar Poisson operator, Gauss quadrature."""
    BP4 = auto()
    """Vector (3 components) Poisson operator, Gauss quadrature."""
    BP5 = auto()
    """Scalar Poisson operator, Gauss-Lobatto quadrature."""
    BP6 = auto()
    """Vector (3 components) Poisson operator, Gauss-Lobatto quadrature."""

    @classmethod
    def from_string(cls, name: str) -> ProblemId:
        """Create from string (case-insensitive)."""
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise UnknownProblem(name, [p.value for p in cls])


class QuadratureMode(StrEnum):
    """Quadrature point families."""

    GAUSS = auto()
    """Gauss-Legendre points."""
    GAUSS_LOBATTO = auto()
    """Gauss-Lobatto-Legendre points (collocated with the nodes when Q == P)."""

    def to_ceed(self) -> int:
        """Convert to the libCEED quadrature mode constant."""
        return libceed.GAUSS if self is QuadratureMode.GAUSS else libceed.GAUSS_LOBATTO


@dataclass(frozen=True)
class ProblemSpec:
    """Shape of one benchmark problem."""

    num_components: int
    """Number of field components (1 or 3)."""
    quadrature_data_size: int
    """Number of geometric factors stored per quadrature point."""
    setup_kernel: str
    """Name of the gallery QFunction computing the quadrature data."""
    apply_kernel: str
    """Name of the gallery QFunction applying the operator."""
    input_field: str
    """Name of the active input field of the apply kernel."""
    output_field: str
    """Name of the active output field of the apply kernel."""
    quadrature_mode: QuadratureMode
    """Quadrature rule for both bases."""
    enforce_boundary: bool
    """Whether essential boundary conditions are applied on the marked boundary."""


_MASS = dict(
    quadrature_data_size=1,
    setup_kernel="Mass3DBuild",
    input_field="u",
    output_field="v",
    enforce_boundary=False,
)
_DIFF = dict(
    quadrature_data_size=6,
    setup_kernel="Poisson3DBuild",
    input_field="du",
    output_field="dv",
    enforce_boundary=True,
)

_CATALOG: dict[ProblemId, ProblemSpec] = {
    ProblemId.BP1: ProblemSpec(
        num_components=1, apply_kernel="MassApply", quadrature_mode=QuadratureMode.GAUSS, **_MASS
    ),
    ProblemId.BP2: ProblemSpec(
        num_components=3, apply_kernel="Vector3MassApply", quadrature_mode=QuadratureMode.GAUSS, **_MASS
    ),
    ProblemId.BP3: ProblemSpec(
        num_components=1, apply_kernel="Poisson3DApply", quadrature_mode=QuadratureMode.GAUSS, **_DIFF
    ),
    ProblemId.BP4: ProblemSpec(
        num_components=3,
        apply_kernel="Vector3Poisson3DApply",
        quadrature_mode=QuadratureMode.GAUSS,
        **_DIFF,
    ),
    ProblemId.BP5: ProblemSpec(
        num_components=1,
        apply_kernel="Poisson3DApply",
        quadrature_mode=QuadratureMode.GAUSS_LOBATTO,
        **_DIFF,
    ),
    ProblemId.BP6: ProblemSpec(
        num_components=3,
        apply_kernel="Vector3Poisson3DApply",
        quadrature_mode=QuadratureMode.GAUSS_LOBATTO,
        **_DIFF,
    ),
}


def lookup(problem: ProblemId | str) -> ProblemSpec:
    """Return the shape of a benchmark problem."""
    problem_id = problem if isinstance(problem, ProblemId) else ProblemId.from_string(str(problem))
    return _CATALOG[problem_id]
