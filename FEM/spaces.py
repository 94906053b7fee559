"""Meles FEM function spaces.

A `FunctionSpace` is a continuous tensor-product Lagrange space of order `p` over a `BoxMesh`. Its nodes form a
lattice of (p * n + 1) points per direction, placed at the Gauss-Lobatto points of each cell (matching the nodes of
libCEED's H1 Lagrange bases).

Three numberings coexist:

- lattice: global, over all nodes of the box (x fastest);
- local: the nodes touched by the cells of this rank, constrained ones included;
- global: the unconstrained nodes only, ordered by owner rank; these are the rows the solver sees.

Components are interlaced in both vectors (node-major), so a node's value for component c is at `node * ncomp + c`.
"""

from __future__ import annotations

import logging
from functools import cached_property
from typing import Callable

import numpy as np
from mpi4py import MPI
from petsc4py import PETSc

from lib.loggingutils import log_global, log_rank
from Meshing import BoxMesh, Height

from .bcs import EssentialBoundary
from .errors import MissingLabel

logger = logging.getLogger(__name__)


def gauss_lobatto_nodes(num_points: int) -> np.ndarray:
    """Return the Gauss-Lobatto-Legendre points on [-1, 1]."""
    if num_points < 2:
        raise ValueError("Gauss-Lobatto rules need at least two points.")
    if num_points == 2:
        return np.array([-1.0, 1.0])
    interior = np.polynomial.legendre.Legendre.basis(num_points - 1).deriv().roots()
    return np.concatenate(([-1.0], np.sort(interior.real), [1.0]))


class FunctionSpace:
    """Lagrange function space with `num_components` components over a box mesh."""

    def __init__(
        self,
        mesh: BoxMesh,
        order: int,
        num_components: int = 1,
        *,
        boundary: EssentialBoundary | None = None,
    ) -> None:
        """Initialize space.

        If a boundary is given, every node in the closure of the faces it selects is constrained.
        """
        if order < 1:
            raise ValueError(f"Polynomial order must be at least 1, got {order}.")
        if num_components < 1:
            raise ValueError(f"Number of components must be at least 1, got {num_components}.")

        self._mesh = mesh
        self._order = int(order)
        self._ncomp = int(num_components)
        self._boundary = boundary

        nx, ny, nz = mesh.faces
        p = self._order
        self._shape = (p * nx + 1, p * ny + 1, p * nz + 1)
        self._strides = (1, self._shape[0], self._shape[0] * self._shape[1])

        z0, z1 = mesh.z_range
        self._has_cells = z1 > z0
        self._plane_range = (p * z0, p * z1 + 1) if self._has_cells else (0, 0)

        self._constrained = self._collect_constraints()
        self._build_numbering()

        log_global(
            logger,
            logging.DEBUG,
            "Function space (p=%d, ncomp=%d): %d global DOFs, %d constrained nodes",
            p,
            self._ncomp,
            self.global_size,
            int(self._constrained.sum()),
        )

    @property
    def mesh(self) -> BoxMesh:
        """Underlying mesh."""
        return self._mesh

    @property
    def order(self) -> int:
        """Polynomial order."""
        return self._order

    @property
    def num_components(self) -> int:
        """Number of field components."""
        return self._ncomp

    @property
    def boundary(self) -> EssentialBoundary | None:
        """Essential boundary, if any."""
        return self._boundary

    @property
    def dim(self) -> int:
        """Topological dimension."""
        return self._mesh.dim

    @property
    def local_size(self) -> int:
        """Size of the local vector (constrained DOFs included)."""
        return self._num_local_nodes * self._ncomp

    @property
    def owned_size(self) -> int:
        """Number of global DOFs owned by this rank."""
        return self._num_owned_nodes * self._ncomp

    @property
    def global_size(self) -> int:
        """Number of global DOFs (constrained DOFs excluded)."""
        return self._num_free_nodes * self._ncomp

    def closure_size(self, height: int = 0) -> int:
        """Number of nodes in the closure of a point of a given height."""
        return (self._order + 1) ** (self.dim - Height.from_int(height))

    # -- Numbering

    def _lattice_index(self, i: np.ndarray, j: np.ndarray, k: np.ndarray) -> np.ndarray:
        sx, sy, sz = self._strides
        return i * sx + j * sy + k * sz

    def _collect_constraints(self) -> np.ndarray:
        """Flag constrained lattice nodes. The flags are reduced over all ranks, so shared nodes agree."""
        constrained = np.zeros(int(np.prod(self._shape)), dtype=np.uint8)
        if self._boundary is not None:
            if not self._mesh.has_label(self._boundary.label):
                raise MissingLabel(self._boundary.label)
            faces = self._mesh.points(Height.FACE, self._boundary.label, self._boundary.value)
            for face in faces:
                constrained[self._face_lattice_nodes(int(face))] = 1
            self._mesh.comm.Allreduce(MPI.IN_PLACE, constrained, op=MPI.MAX)
        return constrained.astype(bool)

    def _build_numbering(self) -> None:
        p = self._order
        nx, ny, _ = self._shape
        k0, k1 = self._plane_range

        # Global numbering: free lattice nodes in lattice order; since ranks own z-planes in rank order, this keeps
        # each rank's owned rows contiguous
        free = ~self._constrained
        global_of_lattice = np.cumsum(free) - 1
        self._num_free_nodes = int(free.sum())

        local_lattice = np.arange(k0 * nx * ny, k1 * nx * ny, dtype=np.int64)
        self._num_local_nodes = len(local_lattice)
        self._local_lattice = local_lattice
        self._local_constrained = self._constrained[local_lattice]

        # A plane is owned by the rank whose cells start on it; the last plane goes to the last rank with cells
        owner_planes = self._owned_planes()
        plane_size = nx * ny
        owned = np.zeros(int(np.prod(self._shape)), dtype=bool)
        owned[owner_planes[0] * plane_size : owner_planes[1] * plane_size] = True
        self._num_owned_nodes = int((owned & free).sum())

        local_free = ~self._local_constrained
        self._local_owned = owned[local_lattice] & local_free
        free_local_nodes = np.flatnonzero(local_free)
        free_global_nodes = global_of_lattice[local_lattice[local_free]]
        self._local_global = np.full(self._num_local_nodes, -1, dtype=np.int64)
        self._local_global[free_local_nodes] = free_global_nodes

        comps = np.arange(self._ncomp)
        self._scatter_local = (free_local_nodes[:, None] * self._ncomp + comps).ravel().astype(PETSc.IntType)
        self._scatter_global = (free_global_nodes[:, None] * self._ncomp + comps).ravel().astype(PETSc.IntType)
        log_rank(
            logger,
            logging.DEBUG,
            "Local nodes: %d (owned free: %d), planes [%d, %d) of order %d",
            self._num_local_nodes,
            self._num_owned_nodes,
            k0,
            k1,
            p,
        )

    def _owned_planes(self) -> tuple[int, int]:
        if not self._has_cells:
            return (0, 0)
        p = self._order
        z0, z1 = self._mesh.z_range
        last_with_cells = max(r for r, (a, b) in enumerate(self._mesh.z_ranges) if b > a)
        stop = p * z1 + 1 if self._mesh.comm.rank == last_with_cells else p * z1
        return (p * z0, stop)

    def _cell_lattice_nodes(self, cell: int) -> np.ndarray:
        p = self._order
        ex, ey, ez = self._mesh.cell_lattice(cell)
        a = np.arange(p + 1)
        # Tensor order (a fastest): flatten a (c, b, a) grid in C order
        i = (p * ex + a)[None, None, :]
        j = (p * ey + a)[None, :, None]
        k = (p * ez + a)[:, None, None]
        return self._lattice_index(i, j, k).ravel()

    def _face_lattice_nodes(self, face: int) -> np.ndarray:
        p = self._order
        cell, axis, side = self._mesh.face_lattice(face)
        a = np.arange(p + 1)
        fast, slow = [d for d in range(3) if d != axis]
        offset = [p * e for e in cell]
        offset[axis] += p * side
        base = sum(offset[d] * self._strides[d] for d in range(3))
        nodes = base + a[None, :] * self._strides[fast] + a[:, None] * self._strides[slow]
        return nodes.ravel()

    def _to_local(self, lattice_nodes: np.ndarray) -> np.ndarray:
        return lattice_nodes - self._plane_range[0] * self._shape[0] * self._shape[1]

    def closure_indices(self, point: int, height: int = 0) -> np.ndarray:
        """Return the signed local offsets of the nodes in the closure of a point, in tensor order.

        The offset of a free node is `local_node * num_components`; a constrained node is encoded as `-(offset + 1)`.
        """
        if Height.from_int(height) is Height.CELL:
            lattice_nodes = self._cell_lattice_nodes(point)
        else:
            lattice_nodes = self._face_lattice_nodes(point)
        local = self._to_local(lattice_nodes)
        offsets = local * self._ncomp
        return np.where(self._local_constrained[local], -(offsets + 1), offsets)

    # -- Geometry

    @cached_property
    def node_coordinates_local(self) -> np.ndarray:
        """Coordinates of the local nodes, shape (num_local_nodes, 3)."""
        p = self._order
        ref = 0.5 * (1.0 + gauss_lobatto_nodes(p + 1))
        lower, h = self._mesh.lower, self._mesh.cell_size
        lattice = self._local_lattice
        idx = (
            lattice % self._shape[0],
            (lattice // self._shape[0]) % self._shape[1],
            lattice // (self._shape[0] * self._shape[1]),
        )
        coords = np.empty((len(lattice), 3))
        for d in range(3):
            cell = np.minimum(idx[d] // p, self._mesh.faces[d] - 1)
            coords[:, d] = lower[d] + h[d] * (cell + ref[idx[d] - p * cell])
        return coords

    def coordinates_local(self) -> PETSc.Vec:
        """Return a local vector holding the interlaced node coordinates (one component per direction)."""
        if self._ncomp != self.dim:
            raise ValueError("Coordinates need a space with one component per spatial dimension.")
        vec = self.create_local_vector()
        vec.array[:] = self.node_coordinates_local.ravel()
        return vec

    @property
    def constrained_local(self) -> np.ndarray:
        """Per local node, whether it is constrained."""
        return self._local_constrained.copy()

    def interpolate(self, func: Callable[[np.ndarray], np.ndarray]) -> PETSc.Vec:
        """Interpolate `func` (points (n, 3) -> values (n, ncomp)) into a new global vector."""
        values = np.asarray(func(self.node_coordinates_local), dtype=PETSc.ScalarType)
        values = values.reshape(self._num_local_nodes, self._ncomp)
        vec = self.create_global_vector()
        rows = (self._local_global[self._local_owned][:, None] * self._ncomp + np.arange(self._ncomp)).ravel()
        vec.setValues(rows.astype(PETSc.IntType), values[self._local_owned].ravel())
        vec.assemble()
        return vec

    # -- Distributed vector runtime

    def create_global_vector(self) -> PETSc.Vec:
        """Create a zero distributed vector over the unconstrained DOFs."""
        vec = PETSc.Vec().createMPI((self.owned_size, self.global_size), comm=self._mesh.comm)
        vec.set(0.0)
        return vec

    def create_local_vector(self) -> PETSc.Vec:
        """Create a zero rank-local vector over all touched DOFs."""
        vec = PETSc.Vec().createSeq(self.local_size, comm=PETSc.COMM_SELF)
        vec.set(0.0)
        return vec

    @cached_property
    def _scatter(self) -> PETSc.Scatter:
        iset_global = PETSc.IS().createGeneral(self._scatter_global, comm=PETSc.COMM_SELF)
        iset_local = PETSc.IS().createGeneral(self._scatter_local, comm=PETSc.COMM_SELF)
        return PETSc.Scatter().create(
            self.create_global_vector(), iset_global, self.create_local_vector(), iset_local
        )

    def global_to_local(
        self,
        global_vec: PETSc.Vec,
        local_vec: PETSc.Vec,
        mode: PETSc.InsertMode = PETSc.InsertMode.INSERT_VALUES,
    ) -> None:
        """Scatter a global vector to the local layout. Constrained local entries are left untouched."""
        self._scatter.scatter(global_vec, local_vec, addv=mode, mode=PETSc.ScatterMode.FORWARD)

    def local_to_global(
        self,
        local_vec: PETSc.Vec,
        global_vec: PETSc.Vec,
        mode: PETSc.InsertMode = PETSc.InsertMode.ADD_VALUES,
    ) -> None:
        """Gather a local vector into a global one. Constrained local entries are dropped."""
        self._scatter.scatter(local_vec, global_vec, addv=mode, mode=PETSc.ScatterMode.REVERSE)
