"""Meles FEM element restrictions.

A restriction maps a flat local vector to the element-wise dense buffers a libCEED kernel works on. Offsets are
signed: a negative entry `-(i + 1)` marks a node fixed by an essential boundary condition, whose value still lives at
local index `i`. Use `involute` to recover the raw index; no other code should decode the sign.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, overload

import libceed
import numpy as np

from lib.loggingutils import log_rank
from Meshing import Height

from .errors import InconsistentClosure, MissingLabel, TopologyError

logger = logging.getLogger(__name__)


@overload
def involute(i: int) -> int: ...


@overload
def involute(i: np.ndarray) -> np.ndarray: ...


def involute(i: int | np.ndarray) -> int | np.ndarray:
    """Resolve a signed offset to a raw local index: i if i >= 0 else -(i + 1)."""
    if isinstance(i, np.ndarray):
        return np.where(i >= 0, i, -(i + 1))
    return i if i >= 0 else -(i + 1)


class ClosureProvider(Protocol):
    """Anything that can list the nodes of a mesh point, like `FEM.spaces.FunctionSpace`."""

    @property
    def mesh(self): ...

    @property
    def num_components(self) -> int: ...

    @property
    def local_size(self) -> int: ...

    def closure_size(self, height: int = 0) -> int: ...

    def closure_indices(self, point: int, height: int = 0) -> np.ndarray: ...


@dataclass(frozen=True, eq=False)
class Restriction:
    """Index map between a local vector and element buffers."""

    num_elements: int
    """Number of elements (mesh points) covered."""
    nodes_per_element: int
    """Nodes (or quadrature points, if strided) per element."""
    num_components: int
    """Components per node."""
    local_vector_size: int
    """Size of the local vector the offsets point into."""
    offsets: np.ndarray | None = None
    """Signed offsets, one per (element, node), element-major. None for strided restrictions."""
    strides: tuple[int, int, int] | None = None
    """(node, component, element) strides of a strided restriction."""

    @property
    def is_strided(self) -> bool:
        """Whether this restriction is described by strides instead of offsets."""
        return self.strides is not None

    @property
    def constrained(self) -> np.ndarray:
        """Per offset, whether it points to a constrained node."""
        if self.offsets is None:
            return np.zeros(0, dtype=bool)
        return self.offsets < 0

    def element_offsets(self, element: int) -> np.ndarray:
        """Signed offsets of one element."""
        if self.offsets is None:
            raise ValueError("Strided restrictions have no offsets.")
        start = element * self.nodes_per_element
        return self.offsets[start : start + self.nodes_per_element]

    def to_ceed(self, ceed: libceed.Ceed):
        """Create the matching libCEED element restriction."""
        if self.strides is not None:
            return ceed.StridedElemRestriction(
                self.num_elements,
                self.nodes_per_element,
                self.num_components,
                self.local_vector_size,
                np.asarray(self.strides, dtype=np.int32),
            )
        return ceed.ElemRestriction(
            self.num_elements,
            self.nodes_per_element,
            self.num_components,
            1,
            self.local_vector_size,
            involute(self.offsets).astype(np.int32),
            cmode=libceed.COPY_VALUES,
        )


def build_restriction(
    space: ClosureProvider,
    label: str | None = None,
    value: int | None = None,
    height: int = 0,
) -> Restriction:
    """Build the restriction of a function space over the mesh points of a given height.

    The optional label/value pair restricts the walk to a subset of points. The closure of each point must list its
    nodes in the tensor-product order of the libCEED bases (x fastest).
    """
    try:
        h = Height.from_int(height)
    except ValueError as e:
        raise TopologyError(str(e)) from e

    mesh = space.mesh
    if label is not None and not mesh.has_label(label):
        raise MissingLabel(label)

    points = mesh.points(h, label, value)
    expected = space.closure_size(h)
    offsets = np.empty(len(points) * expected, dtype=np.int64)
    for e, point in enumerate(points):
        closure = np.asarray(space.closure_indices(int(point), h))
        if len(closure) != expected:
            raise InconsistentClosure(int(point), len(closure), expected)
        offsets[e * expected : (e + 1) * expected] = closure

    # Raw indices address component 0; the last component must still fit in the local vector
    if len(offsets) and involute(offsets).max() + space.num_components > space.local_size:
        raise TopologyError(
            f"Closure offsets exceed the local vector size ({space.local_size})."
        )

    log_rank(
        logger,
        logging.DEBUG,
        "Restriction at height %d: %d elements x %d nodes (%d constrained offsets)",
        h,
        len(points),
        expected,
        int((offsets < 0).sum()),
    )
    return Restriction(
        num_elements=len(points),
        nodes_per_element=expected,
        num_components=space.num_components,
        local_vector_size=space.local_size,
        offsets=offsets,
    )


def build_strided_restriction(num_elements: int, num_points: int, size: int) -> Restriction:
    """Build the restriction of per-quadrature-point data of `size` components, stored element by element."""
    return Restriction(
        num_elements=num_elements,
        nodes_per_element=num_points,
        num_components=size,
        local_vector_size=num_elements * num_points * size,
        strides=(1, num_points, num_points * size),
    )
