"""Meles operator shell.

Bridge between PETSc and a libCEED operator: a PETSc `python` matrix whose context implements `mult` and
`getDiagonal` by scattering to the rank-local layout, running the composed operator there and gathering back.

The context owns its local scratch vectors and libCEED views. Calls are strictly sequential; a re-entrant call is
rejected rather than allowed to corrupt the scratch state.
"""

from __future__ import annotations

import contextlib
import logging
from enum import StrEnum, auto
from typing import Any, Callable, Generator

import libceed
from petsc4py import PETSc

from FEM.errors import ConfigError, MelesError, OperatorRuntimeError
from FEM.operators import BenchmarkOperator, ComposedOperator
from FEM.spaces import FunctionSpace
from FEM.utils import iPETScMatrix, wrap_local
from lib.loggingutils import log_global, log_rank

logger = logging.getLogger(__name__)


class ShellState(StrEnum):
    """Life cycle of an operator shell."""

    UNCONFIGURED = auto()
    """Context created, operator not bound yet."""
    CONFIGURED = auto()
    """Operator, restrictions and quadrature data in place."""
    ATTACHED = auto()
    """Handed over to a PETSc matrix (and thus to a solver)."""
    DESTROYED = auto()
    """Released; every further call fails."""


class OperatorShellContext:
    """Python context of the PETSc shell matrix (see `petsc4py` MatPython)."""

    def __init__(self, ceed: libceed.Ceed, space: FunctionSpace) -> None:
        """Initialize context and its scratch vectors."""
        self._ceed = ceed
        self._space = space
        self._state = ShellState.UNCONFIGURED
        self._busy = False
        self._operator: ComposedOperator | None = None

        self._x_loc = space.create_local_vector()
        self._y_loc = space.create_local_vector()
        self._x_loc_ceed = ceed.Vector(space.local_size)
        self._y_loc_ceed = ceed.Vector(space.local_size)

        self.num_mult = 0
        """Number of operator applications performed."""
        self.num_diagonal = 0
        """Number of diagonal assemblies performed."""

    @property
    def state(self) -> ShellState:
        """Current life-cycle state."""
        return self._state

    @property
    def space(self) -> FunctionSpace:
        """Function space the operator acts on."""
        return self._space

    @property
    def operator(self) -> ComposedOperator:
        """Composed operator applied by this shell."""
        if self._operator is None:
            raise OperatorRuntimeError("configure", "Operator shell is not configured.")
        return self._operator

    def configure(self, bp_operator: BenchmarkOperator) -> None:
        """Bind the operator. A context is configured once; rebuild it to change the discretization."""
        if self._state is not ShellState.UNCONFIGURED:
            raise OperatorRuntimeError("configure", f"Cannot configure a shell in state '{self._state}'.")
        restriction = bp_operator.field_restriction
        if restriction.local_vector_size != self._space.local_size:
            raise ConfigError(
                f"Restriction addresses a local vector of size {restriction.local_vector_size}, "
                f"but the scratch vectors have size {self._space.local_size}."
            )
        self._operator = bp_operator.operator
        self._state = ShellState.CONFIGURED

    def attach(self) -> None:
        """Mark the context as owned by a PETSc matrix."""
        if self._state is not ShellState.CONFIGURED:
            raise OperatorRuntimeError("attach", f"Cannot attach a shell in state '{self._state}'.")
        self._state = ShellState.ATTACHED

    def destroy(self, mat: PETSc.Mat | None = None) -> None:
        """Release the scratch vectors (also called by PETSc when the matrix is destroyed)."""
        if self._state is ShellState.DESTROYED:
            return
        self._x_loc.destroy()
        self._y_loc.destroy()
        self._operator = None
        self._state = ShellState.DESTROYED
        log_rank(logger, logging.DEBUG, "Operator shell destroyed")

    def _run(self, stage: str, body: Callable[[], None]) -> None:
        if self._state is not ShellState.ATTACHED and self._state is not ShellState.CONFIGURED:
            raise OperatorRuntimeError(stage, f"Operator shell is '{self._state}'.")
        if self._busy:
            raise OperatorRuntimeError(stage, "Re-entrant call on an operator shell.")
        self._busy = True
        try:
            body()
        finally:
            self._busy = False

    def _scatter(self, x: PETSc.Vec) -> None:
        try:
            # Constrained entries are never written by the scatter; clear what a previous call left there
            self._x_loc.zeroEntries()
            self._space.global_to_local(x, self._x_loc, PETSc.InsertMode.INSERT_VALUES)
        except PETSc.Error as e:
            raise OperatorRuntimeError("scatter", str(e)) from e

    def _gather(self, local: PETSc.Vec, y: PETSc.Vec) -> None:
        try:
            y.zeroEntries()
            self._space.local_to_global(local, y, PETSc.InsertMode.ADD_VALUES)
        except PETSc.Error as e:
            raise OperatorRuntimeError("gather", str(e)) from e

    @contextlib.contextmanager
    def _view(self, local: PETSc.Vec, ceed_vec: Any) -> Generator[Any, None, None]:
        try:
            with wrap_local(local, ceed_vec) as v:
                yield v
        except MelesError:
            raise
        except Exception as e:
            raise OperatorRuntimeError("view", f"libCEED view of the local vector: {e}") from e

    def mult(self, mat: PETSc.Mat | None, x: PETSc.Vec, y: PETSc.Vec) -> None:
        """Compute y = A x."""

        def _body() -> None:
            self._scatter(x)
            with (
                self._view(self._x_loc, self._x_loc_ceed) as x_ceed,
                self._view(self._y_loc, self._y_loc_ceed) as y_ceed,
            ):
                self.operator.apply(x_ceed, y_ceed)
            self._gather(self._y_loc, y)
            self.num_mult += 1

        self._run("apply", _body)

    def getDiagonal(self, mat: PETSc.Mat | None, d: PETSc.Vec) -> None:
        """Compute the diagonal of A into d, without assembling A.

        The input scratch vector carries the local diagonal.
        """

        def _body() -> None:
            with self._view(self._x_loc, self._x_loc_ceed) as x_ceed:
                self.operator.assemble_diagonal(x_ceed)
            self._gather(self._x_loc, d)
            self.num_diagonal += 1

        self._run("diagonal", _body)


def create_operator_shell(
    ceed: libceed.Ceed, space: FunctionSpace, bp_operator: BenchmarkOperator
) -> iPETScMatrix:
    """Create the PETSc shell matrix applying a benchmark operator on a function space."""
    context = OperatorShellContext(ceed, space)
    context.configure(bp_operator)
    sizes = ((space.owned_size, space.global_size), (space.owned_size, space.global_size))
    mat = iPETScMatrix.create_python(sizes, context, comm=space.mesh.comm)
    context.attach()
    log_global(
        logger, logging.INFO, "Operator shell attached: %d x %d", space.global_size, space.global_size
    )
    return mat
