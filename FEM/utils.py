"""Meles FEM utilities."""

from __future__ import annotations

import contextlib
import logging
from typing import Any, Generator, TypeAlias

import libceed
import numpy as np
from petsc4py import PETSc

from lib.loggingutils import log_global

logger = logging.getLogger(__name__)

Scalar: TypeAlias = PETSc.ScalarType
"""Alias for the PETSc scalar type. libCEED works in double precision, so Meles requires a real float64 build."""


@contextlib.contextmanager
def wrap_local(petsc_vec: PETSc.Vec, ceed_vec: Any) -> Generator[Any, None, None]:
    """Expose the storage of a local PETSc vector through a libCEED vector, for the duration of the context.

    libCEED borrows the buffer (no copy); it is handed back before leaving the context, even on error, so no alias
    survives the call.
    """
    ceed_vec.set_array(petsc_vec.array, cmode=libceed.USE_POINTER)
    try:
        yield ceed_vec
    finally:
        ceed_vec.take_array()


class iPETScMatrix:
    """Minimal wrapper around a PETSc matrix, oriented to matrix-free (python-type) operators.

    Note that this is not a complete wrapper and does not implement all methods or properties of a PETSc matrix.
    Refer to the official PETSc documentation for more details: https://petsc.org/release/docs/manualpages/Mat/.
    """

    def __init__(self, mat: PETSc.Mat) -> None:
        """Initialize PETSc matrix wrapper."""
        self._mat: PETSc.Mat = mat

    @classmethod
    def create_python(
        cls,
        sizes: tuple[tuple[int, int], tuple[int, int]],
        context: object,
        comm: PETSc.Comm = PETSc.COMM_WORLD,
    ) -> iPETScMatrix:
        """Create a shell matrix whose action is implemented by a Python context.

        The context provides `mult(mat, x, y)` and, optionally, `getDiagonal(mat, d)`.
        """
        mat = PETSc.Mat().createPython(sizes, context=context, comm=comm)
        mat.setUp()
        return cls(mat)

    def __str__(self) -> str:
        return f"iPETScMatrix(type={self.type}, shape={self.shape})"

    def __matmul__(self, other: iPETScVector) -> iPETScVector:
        """Matrix-vector product."""
        if not isinstance(other, iPETScVector):
            return NotImplemented
        result = self.create_vector_left()
        self.mult(other, result)
        return result

    @property
    def raw(self) -> PETSc.Mat:
        """Return the underlying PETSc matrix."""
        return self._mat

    @property
    def comm(self) -> PETSc.Comm:
        """Return the PETSc communicator associated with the matrix."""
        return self._mat.comm

    @property
    def shape(self) -> tuple[int, int]:
        """Global shape."""
        return self._mat.getSize()

    @property
    def type(self) -> str:
        """Return the PETSc matrix type (e.g., 'python', 'aij')."""
        return self._mat.getType()

    @property
    def context(self) -> object:
        """Return the Python context of a python-type matrix."""
        return self._mat.getPythonContext()

    def mult(self, x: iPETScVector, y: iPETScVector) -> None:
        """Compute y = A x."""
        self._mat.mult(x.raw, y.raw)

    def get_diagonal(self) -> iPETScVector:
        """Return the diagonal of the matrix as a new vector."""
        d = self.create_vector_left()
        self._mat.getDiagonal(d.raw)
        return d

    def create_vector_right(self) -> iPETScVector:
        """Create a vector conforming to the columns (x in y = A x)."""
        return iPETScVector(self._mat.createVecRight())

    def create_vector_left(self) -> iPETScVector:
        """Create a vector conforming to the rows (y in y = A x)."""
        return iPETScVector(self._mat.createVecLeft())

    def as_array(self) -> np.ndarray:
        """Return the matrix as a dense NumPy array, probing one column per unit vector.

        Only meant for small serial problems (tests, debugging): it costs one operator application per column.
        """
        if self.comm.size > 1:
            raise NotImplementedError("Dense probing is only available in serial runs.")
        n_rows, n_cols = self.shape
        dense = np.zeros((n_rows, n_cols), dtype=Scalar)
        e = self.create_vector_right()
        col = self.create_vector_left()
        for j in range(n_cols):
            e.zero_all_entries()
            e.raw.setValue(j, 1.0)
            e.assemble()
            self.mult(e, col)
            dense[:, j] = col.as_array()
        return dense

    def is_numerically_symmetric(self, tol: float = 1e-10, samples: int = 3) -> bool:
        """Check x' A y == y' A x on random vector pairs (relative tolerance)."""
        x, y = self.create_vector_right(), self.create_vector_right()
        ax, ay = self.create_vector_left(), self.create_vector_left()
        rng = PETSc.Random().create(comm=self.comm)
        rng.setFromOptions()
        for _ in range(samples):
            x.set_random(rng)
            y.set_random(rng)
            self.mult(x, ax)
            self.mult(y, ay)
            lhs, rhs = y.dot(ax), x.dot(ay)
            if abs(lhs - rhs) > tol * max(abs(lhs), abs(rhs), 1.0):
                log_global(logger, logging.WARNING, "Symmetry check failed: %g vs %g", lhs, rhs)
                return False
        return True

    def destroy(self) -> None:
        """Free the PETSc matrix."""
        self._mat.destroy()


class iPETScVector:
    """Minimal wrapper around a PETSc vector to provide a consistent interface.

    Note that this is not a complete wrapper and does not implement all methods or properties of a PETSc vector.
    Refer to the official PETSc documentation for more details: https://petsc.org/release/docs/manualpages/Vec/.
    """

    def __init__(self, vec: PETSc.Vec) -> None:
        """Initialize PETSc vector wrapper."""
        self._vec = vec

    @classmethod
    def from_array(
        cls, array: np.ndarray, comm: PETSc.Comm = PETSc.COMM_WORLD
    ) -> iPETScVector:
        """Create a vector from the locally owned values of a NumPy array."""
        vec = PETSc.Vec().createWithArray(np.array(array, dtype=Scalar), comm=comm)
        return cls(vec)

    def __add__(self, other: object) -> iPETScVector:
        """Perform vector addition."""
        if not isinstance(other, iPETScVector):
            return NotImplemented
        if self.size != other.size:
            raise ValueError(f"Incompatible vector sizes: {self.size} vs {other.size}")
        result = self.copy()
        result.axpy(1.0, other)
        return result

    def __sub__(self, other: object) -> iPETScVector:
        """Perform vector subtraction."""
        if not isinstance(other, iPETScVector):
            return NotImplemented
        if self.size != other.size:
            raise ValueError(f"Incompatible vector sizes: {self.size} vs {other.size}")
        result = self.copy()
        result.axpy(-1.0, other)
        return result

    def __mul__(self, alpha: int | float) -> iPETScVector:
        """Scale a copy of the vector."""
        result = self.copy()
        result.scale(alpha)
        return result

    def __rmul__(self, alpha: int | float) -> iPETScVector:
        """Perform scalar-vector multiplication."""
        return self.__mul__(alpha)

    @property
    def raw(self) -> PETSc.Vec:
        """Return the underlying PETSc vector."""
        return self._vec

    @property
    def comm(self) -> PETSc.Comm:
        """Return the PETSc communicator associated with the vector."""
        return self._vec.getComm()

    @property
    def size(self) -> int:
        """Return the global size of the vector."""
        return self._vec.getSize()

    @property
    def local_size(self) -> int:
        """Return the number of entries owned by this rank."""
        return self._vec.getLocalSize()

    @property
    def norm(self) -> float:
        """Return the 2-norm of the vector."""
        return float(self._vec.norm())

    def sum(self) -> float:
        """Return the sum of all entries."""
        return float(self._vec.sum())

    def copy(self) -> iPETScVector:
        """Create a copy of the vector."""
        return iPETScVector(self._vec.copy())

    def duplicate(self) -> iPETScVector:
        """Return a new vector with the same layout (values not copied)."""
        return iPETScVector(self._vec.duplicate())

    def assemble(self) -> None:
        """(Re)assemble vector after any change."""
        self._vec.assemble()

    def scale(self, alpha: int | float) -> None:
        """Scale the vector by a constant factor."""
        self._vec.scale(alpha)

    def zero_all_entries(self) -> None:
        """Zero all entries in the vector."""
        self._vec.zeroEntries()

    def as_array(self) -> np.ndarray:
        """Return a copy of the locally owned entries."""
        return self._vec.getArray(readonly=True).copy()

    def axpy(self, alpha: int | float, other: iPETScVector) -> None:
        """Perform an AXPY operation: this = alpha * other + this."""
        self._vec.axpy(alpha, other.raw)

    def set_random(self, rng: PETSc.Random | None = None) -> None:
        """Set the vector to random values."""
        if rng is None:
            rng = PETSc.Random().create(comm=self._vec.comm)
            rng.setFromOptions()
        self._vec.setRandom(rng)

    def dot(self, other: iPETScVector) -> float:
        """Vector inner product."""
        return float(self._vec.dot(other.raw))
