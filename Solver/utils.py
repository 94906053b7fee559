"""Meles Solver utilities."""

from __future__ import annotations

import logging
from enum import StrEnum, auto
from typing import Callable

from petsc4py import PETSc

from FEM.utils import iPETScMatrix, iPETScVector

logger = logging.getLogger(__name__)


class PreconditionerType(StrEnum):
    """Preconditioners usable with a matrix-free operator (only the diagonal is available)."""

    NONE = auto()
    """No preconditioning."""
    JACOBI = auto()
    """Jacobi (diagonal scaling), fed by the operator's getDiagonal."""

    def to_petsc(self) -> str:
        """Convert internal type to a type accepted by PETSc."""
        return self.value

    @classmethod
    def from_string(cls, name: str) -> PreconditionerType:
        """Create from string (case-insensitive)."""
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(
                f"Invalid preconditioner type: {name}. Choose from {list(cls.__members__.keys())}."
            )


class KSPType(StrEnum):
    """KSP solver types."""

    CG = auto()
    """Conjugate gradient method (symmetric positive-definite)."""
    GMRES = auto()
    """Generalized minimal residual method (nonsymmetric)."""
    RICHARDSON = auto()
    """Richardson (stationary) iteration."""
    CHEBYSHEV = auto()
    """Chebyshev semi-iterative method."""

    def to_petsc(self) -> str:
        """Convert internal type to a type accepted by PETSc."""
        return self.name.lower()

    @classmethod
    def from_string(cls, name: str) -> KSPType:
        """Create from string (case-insensitive)."""
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(
                f"Invalid KSP type: {name}. Choose from {list(cls.__members__.keys())}."
            )


class iKSP:
    """Wrapper around PETSc KSP (Krylov Space) linear solver, with a cleaner, type-safe API.

    Provides methods to configure solver type, tolerances, preconditioner,
    and to execute the solve and retrieve diagnostics.
    """

    def __init__(
        self,
        A: iPETScMatrix | None = None,
        comm: PETSc.Comm = PETSc.COMM_WORLD,
    ) -> None:
        """Initialize a KSP solver."""
        self._ksp = PETSc.KSP().create(comm=comm)
        if A is not None:
            self.set_operators(A)

    @property
    def raw(self) -> PETSc.KSP:
        """Access the underlying PETSc KSP object."""
        return self._ksp

    def set_operators(self, A: iPETScMatrix, P: iPETScMatrix | None = None) -> None:
        """Set the system matrix A and optional preconditioning matrix P (A by default)."""
        self._ksp.setOperators(A.raw, (P or A).raw)

    def set_type(self, ksp_type: KSPType) -> None:
        """Choose the iterative solver algorithm."""
        self._ksp.setType(ksp_type.to_petsc())

    def get_type(self) -> str:
        """Get the current PETSc KSP type string."""
        return self._ksp.getType()

    def set_tolerances(
        self,
        tol: float = 1e-50,
        max_it: int = 1000,
        rtol: float = 1e-10,
    ) -> None:
        """Set convergence criteria for the solver."""
        self._ksp.setTolerances(rtol=rtol, atol=tol, max_it=max_it)

    def set_preconditioner(self, pc_type: PreconditionerType) -> None:
        """Configure the preconditioner type."""
        self._ksp.getPC().setType(pc_type.to_petsc())

    def set_monitor(self, monitor: Callable[[PETSc.KSP, int, float], None]) -> None:
        """Register a residual monitor, called once per iteration."""
        self._ksp.setMonitor(monitor)

    def set_from_options(self, prefix: str | None = None) -> None:
        """Apply command-line options to this solver."""
        if prefix is not None:
            self._ksp.setOptionsPrefix(prefix)
        self._ksp.setFromOptions()

    def solve(self, b: iPETScVector, x: iPETScVector) -> None:
        """Solve the linear system Ax = b."""
        self._ksp.solve(b.raw, x.raw)

    def get_converged_reason(self) -> int:
        """Return the PETSc converged reason (positive on convergence)."""
        return int(self._ksp.getConvergedReason())

    def get_residual_norm(self) -> float:
        """Get the norm of the residual after solve."""
        return float(self._ksp.getResidualNorm())

    def get_iteration_number(self) -> int:
        """Return the number of iterations performed."""
        return self._ksp.getIterationNumber()

    def destroy(self) -> None:
        """Free the PETSc KSP."""
        self._ksp.destroy()
