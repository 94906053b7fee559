"""Meles FEM matrix-free operators.

Both the one-shot geometric setup and the benchmark operator itself are `ComposedOperator`s: a named libCEED gallery
kernel plus a list of fields, each declaring how its data reaches the kernel:

- ACTIVE: the vector the operator is applied to (input) or accumulates into (output), supplied per call;
- PASSIVE: precomputed data (the quadrature data), bound at construction and reused on every call;
- NONE: no vector at all (quadrature weights).

Field shapes are validated at construction, so a mismatch never surfaces inside a solve.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum, auto
from typing import Any, Sequence

import libceed
import numpy as np
from petsc4py import PETSc

from lib.loggingutils import log_global, log_stage

from .basis import Basis, build_basis
from .errors import ConfigError, FieldSizeMismatch, OperatorRuntimeError
from .problems import ProblemSpec
from .restriction import Restriction, build_restriction, build_strided_restriction
from .spaces import FunctionSpace
from .utils import wrap_local

logger = logging.getLogger(__name__)


class FieldRole(StrEnum):
    """How a field's data is provided to the kernel."""

    ACTIVE = auto()
    """Supplied at call time (operator input or output)."""
    PASSIVE = auto()
    """Precomputed, bound at construction."""
    NONE = auto()
    """No backing vector (e.g., quadrature weights)."""


@dataclass(frozen=True)
class QuadratureData:
    """Geometric factors at every quadrature point, produced by the setup pass."""

    vector: Any
    """libCEED vector of size num_elements x num_quadrature_points x size."""
    restriction: Restriction
    """Strided layout of the vector."""

    @property
    def size(self) -> int:
        """Number of factors per quadrature point."""
        return self.restriction.num_components

    @property
    def num_quadrature_points(self) -> int:
        """Quadrature points per element."""
        return self.restriction.nodes_per_element

    def as_array(self) -> np.ndarray:
        """Return a copy of the data, shape (num_elements, size, num_quadrature_points)."""
        r = self.restriction
        with self.vector.array_read() as data:
            return np.array(data).reshape(r.num_elements, r.num_components, r.nodes_per_element)


@dataclass(frozen=True)
class OperatorField:
    """One field of a composed operator."""

    name: str
    """Field name, as declared by the kernel."""
    restriction: Restriction | None
    """Element restriction; None for fields without a vector (weights)."""
    basis: Basis | None
    """Basis; None for data already living at the quadrature points (collocated)."""
    role: FieldRole = FieldRole.ACTIVE
    """How the data is provided."""
    data: QuadratureData | None = None
    """Backing data of PASSIVE fields."""


def _validate_fields(fields: Sequence[OperatorField]) -> None:
    """Check that all fields describe the same elements and quadrature points."""
    names = [f.name for f in fields]
    if len(set(names)) != len(names):
        raise FieldSizeMismatch(f"Duplicated field names: {names}")

    num_elements: dict[str, int] = {}
    num_qpts: dict[str, int] = {}
    for f in fields:
        if (f.role is FieldRole.PASSIVE) != (f.data is not None):
            raise FieldSizeMismatch(f"Field '{f.name}': only passive fields carry precomputed data.")
        if f.restriction is None:
            if f.role is not FieldRole.NONE or f.basis is None:
                raise FieldSizeMismatch(f"Field '{f.name}' needs a restriction.")
        else:
            num_elements[f.name] = f.restriction.num_elements

        if f.basis is not None:
            num_qpts[f.name] = f.basis.num_quadrature_points
            if f.restriction is not None and (
                f.restriction.num_components != f.basis.num_components
                or f.restriction.nodes_per_element != f.basis.num_nodes
            ):
                raise FieldSizeMismatch(
                    f"Field '{f.name}': restriction ({f.restriction.nodes_per_element} nodes x "
                    f"{f.restriction.num_components} comps) does not match basis ({f.basis.num_nodes} nodes x "
                    f"{f.basis.num_components} comps)."
                )
        elif f.restriction is not None:
            num_qpts[f.name] = f.restriction.nodes_per_element

        if f.data is not None and f.restriction is not None:
            if f.data.restriction.local_vector_size != f.restriction.local_vector_size:
                raise FieldSizeMismatch(f"Field '{f.name}': data size does not match its restriction.")

    if len(set(num_elements.values())) > 1:
        raise FieldSizeMismatch(f"Fields disagree on the number of elements: {num_elements}")
    if len(set(num_qpts.values())) > 1:
        raise FieldSizeMismatch(f"Fields disagree on the number of quadrature points: {num_qpts}")


class ComposedOperator:
    """Matrix-free operator: a libCEED gallery kernel composed with its fields."""

    def __init__(self, ceed: libceed.Ceed, kernel: str, fields: Sequence[OperatorField]) -> None:
        """Initialize operator. Raises FieldSizeMismatch on inconsistent fields or fields the kernel rejects."""
        _validate_fields(fields)
        self._kernel = kernel
        self._fields = tuple(fields)

        try:
            qfunction = ceed.QFunctionByName(kernel)
        except Exception as e:
            raise ConfigError(f"Kernel '{kernel}' is not available in the libCEED gallery.") from e

        self._op = ceed.Operator(qfunction)
        # Fields sharing a Restriction also share the libCEED object
        ceed_restrictions: dict[int, Any] = {}
        for f in self._fields:
            if f.restriction is None:
                restriction = libceed.ELEMRESTRICTION_NONE
            else:
                key = id(f.restriction)
                if key not in ceed_restrictions:
                    ceed_restrictions[key] = f.restriction.to_ceed(ceed)
                restriction = ceed_restrictions[key]
            basis = libceed.BASIS_NONE if f.basis is None else f.basis.ceed_basis
            match f.role:
                case FieldRole.ACTIVE:
                    vector = libceed.VECTOR_ACTIVE
                case FieldRole.NONE:
                    vector = libceed.VECTOR_NONE
                case FieldRole.PASSIVE:
                    vector = f.data.vector
            try:
                self._op.set_field(f.name, restriction, basis, vector)
            except Exception as e:
                raise FieldSizeMismatch(f"Field '{f.name}' does not fit kernel '{kernel}': {e}") from e

    def __repr__(self) -> str:
        return f"ComposedOperator(kernel={self._kernel}, fields={[f.name for f in self._fields]})"

    @property
    def kernel(self) -> str:
        """Name of the kernel."""
        return self._kernel

    @property
    def fields(self) -> tuple[OperatorField, ...]:
        """Declared fields."""
        return self._fields

    def field(self, name: str) -> OperatorField:
        """Return a field by name."""
        for f in self._fields:
            if f.name == name:
                return f
        raise KeyError(f"Operator has no field '{name}'.")

    def apply(self, input_local: Any, output_local: Any) -> None:
        """Apply the operator to a libCEED vector, overwriting the output."""
        try:
            self._op.apply(input_local, output_local)
        except Exception as e:
            raise OperatorRuntimeError("apply", f"{self._kernel}: {e}") from e

    def assemble_diagonal(self, output_local: Any) -> None:
        """Assemble the operator diagonal into a libCEED vector, overwriting it."""
        try:
            self._op.linear_assemble_diagonal(output_local)
        except Exception as e:
            raise OperatorRuntimeError("diagonal", f"{self._kernel}: {e}") from e


def run_setup_pass(
    ceed: libceed.Ceed,
    coordinates_local: PETSc.Vec,
    geometry_basis: Basis,
    coordinate_restriction: Restriction,
    quadrature_restriction: Restriction,
    setup_kernel: str,
) -> QuadratureData:
    """Compute the quadrature data from the local mesh coordinates."""
    setup = ComposedOperator(
        ceed,
        setup_kernel,
        [
            OperatorField("dx", coordinate_restriction, geometry_basis, FieldRole.ACTIVE),
            OperatorField("weights", None, geometry_basis, FieldRole.NONE),
            OperatorField("qdata", quadrature_restriction, None, FieldRole.ACTIVE),
        ],
    )
    qdata = ceed.Vector(quadrature_restriction.local_vector_size)
    qdata.set_value(0.0)
    coordinates_ceed = ceed.Vector(coordinates_local.getSize())
    with wrap_local(coordinates_local, coordinates_ceed) as x:
        setup.apply(x, qdata)
    return QuadratureData(vector=qdata, restriction=quadrature_restriction)


@dataclass(frozen=True)
class BenchmarkOperator:
    """Everything built for one benchmark operator. Discard and rebuild to change problem or order."""

    operator: ComposedOperator
    """Apply operator."""
    field_restriction: Restriction
    """Restriction of the solution field."""
    coordinate_restriction: Restriction
    """Restriction of the coordinate field."""
    field_basis: Basis
    """Basis of the solution field."""
    coordinate_basis: Basis
    """Basis of the coordinate field."""
    quadrature_data: QuadratureData
    """Cached geometric factors."""


def build_bp_operator(
    ceed: libceed.Ceed,
    space: FunctionSpace,
    coordinate_space: FunctionSpace,
    spec: ProblemSpec,
    q_extra: int = 1,
) -> BenchmarkOperator:
    """Build the apply operator of a benchmark problem over a function space.

    Both spaces must live on the same mesh, so that they walk the cells in the same order.
    """
    if coordinate_space.mesh is not space.mesh:
        raise ConfigError("Field and coordinate spaces must share the mesh.")
    if q_extra < 0:
        raise ConfigError(f"Number of extra quadrature points must be non-negative, got {q_extra}.")

    p = space.order + 1
    q = p + q_extra
    dim = space.dim

    with log_stage(logger, "basis build"):
        basis_x = build_basis(ceed, dim, dim, 2, q, spec.quadrature_mode)
        basis_u = build_basis(ceed, dim, spec.num_components, p, q, spec.quadrature_mode)

    with log_stage(logger, "restriction build"):
        restr_u = build_restriction(space)
        restr_x = build_restriction(coordinate_space)
        restr_qdata = build_strided_restriction(
            restr_u.num_elements, basis_u.num_quadrature_points, spec.quadrature_data_size
        )

    with log_stage(logger, "setup pass"):
        qdata = run_setup_pass(
            ceed,
            coordinate_space.coordinates_local(),
            basis_x,
            restr_x,
            restr_qdata,
            spec.setup_kernel,
        )

    with log_stage(logger, "operator composition"):
        operator = ComposedOperator(
            ceed,
            spec.apply_kernel,
            [
                OperatorField(spec.input_field, restr_u, basis_u, FieldRole.ACTIVE),
                OperatorField("qdata", restr_qdata, None, FieldRole.PASSIVE, data=qdata),
                OperatorField(spec.output_field, restr_u, basis_u, FieldRole.ACTIVE),
            ],
        )

    log_global(
        logger,
        logging.INFO,
        "%s operator ready: P=%d, Q=%d, %d elements on rank 0",
        spec.apply_kernel,
        p,
        q,
        restr_u.num_elements,
    )
    return BenchmarkOperator(
        operator=operator,
        field_restriction=restr_u,
        coordinate_restriction=restr_x,
        field_basis=basis_u,
        coordinate_basis=basis_x,
        quadrature_data=qdata,
    )
