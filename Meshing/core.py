"""Meles Meshing core.

Structured hexahedral box meshes, distributed over the MPI ranks in slabs along the z-axis.

All lattice-based numbering in Meles follows the tensor-product convention of libCEED: the x-index runs fastest,
then y, then z. Cells and faces are only described through their lattice position, so any field of polynomial order
`p` can derive its node numbering from them (see `FEM.spaces`).
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
from mpi4py import MPI

from lib.loggingutils import log_global, log_rank

from .utils import Height, MeshLabel

logger = logging.getLogger(__name__)

_COMM: MPI.Intracomm = MPI.COMM_WORLD

BOUNDARY_LABEL: str = "marker"
"""Name of the label marking the boundary faces."""


def _split(n: int, size: int) -> list[tuple[int, int]]:
    """Balanced split of n layers over `size` ranks, as [start, stop) ranges."""
    base, rem = divmod(n, size)
    ranges = []
    for r in range(size):
        start = r * base + min(r, rem)
        ranges.append((start, start + base + (1 if r < rem else 0)))
    return ranges


class BoxMesh:
    """Hexahedral mesh of the box [lower, upper], with `faces` cells per direction."""

    def __init__(
        self,
        faces: tuple[int, int, int] = (3, 3, 3),
        lower: tuple[float, float, float] = (0.0, 0.0, 0.0),
        upper: tuple[float, float, float] = (1.0, 1.0, 1.0),
        *,
        comm: MPI.Intracomm = _COMM,
        cell_order: Sequence[int] | None = None,
    ) -> None:
        """Initialize mesh.

        The optional `cell_order` is a permutation of the local cells and sets the order in which they are traversed.
        """
        if len(faces) != 3 or len(lower) != 3 or len(upper) != 3:
            raise ValueError("Box meshes are three-dimensional: faces, lower and upper need 3 entries.")
        if any(n <= 0 for n in faces):
            raise ValueError("All values in 'faces' must be greater than zero.")
        if any(hi <= lo for lo, hi in zip(lower, upper)):
            raise ValueError(f"Empty box: lower={lower}, upper={upper}.")

        self._faces = tuple(int(n) for n in faces)
        self._lower = np.asarray(lower, dtype=float)
        self._upper = np.asarray(upper, dtype=float)
        self._comm = comm

        self._z_ranges = _split(self._faces[2], comm.size)
        self._z_range = self._z_ranges[comm.rank]

        nx, ny, _ = self._faces
        n_local = nx * ny * (self._z_range[1] - self._z_range[0])
        if cell_order is None:
            self._cell_order = np.arange(n_local, dtype=np.int64)
        else:
            order = np.asarray(cell_order, dtype=np.int64)
            if order.shape != (n_local,) or not np.array_equal(np.sort(order), np.arange(n_local)):
                raise ValueError(f"'cell_order' must be a permutation of the {n_local} local cells.")
            self._cell_order = order

        self._boundary_faces = self._collect_boundary_faces()
        self._labels: dict[str, MeshLabel] = {}

        log_rank(
            logger,
            logging.DEBUG,
            "Box mesh slab z=[%d, %d): %d cells, %d boundary faces",
            *self._z_range,
            n_local,
            len(self._boundary_faces),
        )

    def __repr__(self) -> str:
        return (
            f"BoxMesh(faces={self._faces}, lower={tuple(self._lower)}, upper={tuple(self._upper)}, "
            f"ranks={self._comm.size})"
        )

    @property
    def dim(self) -> int:
        """Topological (and geometrical) dimension."""
        return 3

    @property
    def comm(self) -> MPI.Intracomm:
        """MPI communicator the mesh is distributed over."""
        return self._comm

    @property
    def faces(self) -> tuple[int, int, int]:
        """Number of cells per direction."""
        return self._faces

    @property
    def lower(self) -> np.ndarray:
        """Lower corner of the box."""
        return self._lower.copy()

    @property
    def upper(self) -> np.ndarray:
        """Upper corner of the box."""
        return self._upper.copy()

    @property
    def cell_size(self) -> np.ndarray:
        """Cell edge lengths per direction."""
        return (self._upper - self._lower) / np.asarray(self._faces, dtype=float)

    @property
    def volume(self) -> float:
        """Exact volume of the box."""
        return float(np.prod(self._upper - self._lower))

    @property
    def z_range(self) -> tuple[int, int]:
        """Layers of cells [start, stop) along z owned by this rank."""
        return self._z_range

    @property
    def z_ranges(self) -> list[tuple[int, int]]:
        """Layer ranges of all ranks."""
        return list(self._z_ranges)

    @property
    def num_cells(self) -> int:
        """Number of cells on this rank."""
        return len(self._cell_order)

    @property
    def num_cells_global(self) -> int:
        """Total number of cells."""
        return int(np.prod(self._faces))

    @property
    def num_boundary_faces(self) -> int:
        """Number of boundary faces on this rank."""
        return len(self._boundary_faces)

    def _collect_boundary_faces(self) -> list[tuple[int, int, int]]:
        """List (cell, axis, side) for every cell face on the box boundary."""
        boundary = []
        for cell in range(self.num_cells):
            position = self.cell_lattice(cell)
            for axis in range(3):
                if position[axis] == 0:
                    boundary.append((cell, axis, 0))
                if position[axis] == self._faces[axis] - 1:
                    boundary.append((cell, axis, 1))
        return boundary

    def cell_lattice(self, cell: int) -> tuple[int, int, int]:
        """Return the global lattice position (ex, ey, ez) of a local cell."""
        nx, ny, _ = self._faces
        ex = cell % nx
        ey = (cell // nx) % ny
        ez = self._z_range[0] + cell // (nx * ny)
        return int(ex), int(ey), int(ez)

    def face_lattice(self, face: int) -> tuple[tuple[int, int, int], int, int]:
        """Return (cell lattice position, normal axis, side) of a local boundary face."""
        cell, axis, side = self._boundary_faces[face]
        return self.cell_lattice(cell), axis, side

    def vertex_coordinates_local(self) -> np.ndarray:
        """Return the coordinates of the vertices of this rank's slab, shape (n, 3), x running fastest."""
        z0, z1 = self._z_range
        if z1 == z0:
            return np.empty((0, 3))
        axes = [
            np.linspace(self._lower[0], self._upper[0], self._faces[0] + 1),
            np.linspace(self._lower[1], self._upper[1], self._faces[1] + 1),
            self._lower[2] + self.cell_size[2] * np.arange(z0, z1 + 1),
        ]
        z, y, x = np.meshgrid(axes[2], axes[1], axes[0], indexing="ij")
        return np.column_stack([x.ravel(), y.ravel(), z.ravel()])

    def points(
        self, height: int = 0, label: str | None = None, value: int | None = None
    ) -> np.ndarray:
        """Return the local points of a given height, in traversal order.

        If a label is given, only the points in the stratum `value` are returned. Without a value, every point
        carrying the label is kept.
        """
        h = Height.from_int(height)
        if h is Height.CELL:
            points = self._cell_order
        else:
            points = np.arange(len(self._boundary_faces), dtype=np.int64)

        if label is None:
            return points.copy()

        mesh_label = self.get_label(label)
        if mesh_label.height is not h:
            return np.empty(0, dtype=np.int64)
        values = [mesh_label.get_value(p) for p in points]
        keep = np.array([v is not None and (value is None or v == value) for v in values], dtype=bool)
        return points[keep]

    def has_label(self, name: str) -> bool:
        """Check whether a label exists."""
        return name in self._labels

    def create_label(self, name: str, height: int = 0) -> MeshLabel:
        """Create (or return the existing) label with a given name."""
        if name not in self._labels:
            self._labels[name] = MeshLabel(name=name, height=Height.from_int(height))
        return self._labels[name]

    def get_label(self, name: str) -> MeshLabel:
        """Return a label by name."""
        try:
            return self._labels[name]
        except KeyError:
            raise KeyError(f"Mesh label '{name}' is not defined.")

    def mark_boundary_faces(self, value: int = 1, name: str = BOUNDARY_LABEL) -> MeshLabel:
        """Mark all boundary faces with a value, creating the label if it does not exist yet."""
        label = self.create_label(name, height=Height.FACE)
        if label.height is not Height.FACE:
            raise ValueError(f"Label '{name}' is not a face label.")
        for face in range(len(self._boundary_faces)):
            label.set_value(face, value)
        log_global(logger, logging.DEBUG, "Boundary faces marked as %s=%d", name, value)
        return label
