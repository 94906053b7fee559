"""Meles FEM error taxonomy.

All failures raised while building or applying a benchmark operator derive from `MelesError`, so callers can
catch the whole family at once. Configuration and field errors also derive from `ValueError`, and in-solve
failures from `RuntimeError`, to play along with code that expects the builtin types.
"""

from __future__ import annotations


class MelesError(Exception):
    """Base class for every error raised by Meles."""


class ConfigError(MelesError, ValueError):
    """Invalid run configuration (problem id, order, quadrature). Rejected before any solver interaction."""


class UnknownProblem(ConfigError):
    """Requested benchmark problem is not in the catalog."""

    def __init__(self, problem: object, valid: list[str]) -> None:
        super().__init__(f"Unknown benchmark problem: '{problem}'. Choose from {valid}.")
        self.problem = problem


class InvalidBasis(ConfigError):
    """Basis parameters do not describe a valid tensor-product Lagrange basis."""


class TopologyError(MelesError):
    """Mesh topology does not match the requested discretization."""


class InconsistentClosure(TopologyError):
    """A point closure does not hold the expected number of nodes."""

    def __init__(self, point: int, found: int, expected: int) -> None:
        super().__init__(
            f"Closure of point {point} has {found} nodes, but the field expects {expected}."
        )
        self.point = point
        self.found = found
        self.expected = expected


class MissingLabel(TopologyError):
    """A required mesh label is not defined."""

    def __init__(self, label: str) -> None:
        super().__init__(f"Mesh label '{label}' is not defined.")
        self.label = label


class FieldError(MelesError, ValueError):
    """Composed operator fields are inconsistent."""


class FieldSizeMismatch(FieldError):
    """Two operator fields disagree on element or quadrature-point counts."""


class OperatorRuntimeError(MelesError, RuntimeError):
    """Failure inside an apply or diagonal call.

    The `stage` attribute names the step that failed (scatter, view, apply, diagonal, gather, ...).
    """

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
