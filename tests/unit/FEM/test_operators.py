"""Unit tests for FEM.operators module."""

import numpy as np
import pytest
from mpi4py import MPI

from FEM.basis import build_basis
from FEM.errors import ConfigError, FieldError, FieldSizeMismatch
from FEM.operators import (
    ComposedOperator,
    FieldRole,
    OperatorField,
    build_bp_operator,
    run_setup_pass,
)
from FEM.problems import ProblemId, QuadratureMode, lookup
from FEM.restriction import build_restriction, build_strided_restriction
from FEM.spaces import FunctionSpace
from Meshing import BoxMesh


@pytest.fixture(scope="module")
def test_mesh() -> BoxMesh:
    """Stretched box, so that the geometric factors are not trivial."""
    return BoxMesh((2, 2, 2), (0.0, 0.0, 0.0), (1.0, 2.0, 3.0))


@pytest.fixture(scope="module")
def coordinate_space(test_mesh: BoxMesh) -> FunctionSpace:
    """Trilinear coordinate space."""
    return FunctionSpace(test_mesh, 1, 3)


def _setup(ceed, coordinate_space, kernel, size, q=3):
    basis_x = build_basis(ceed, 3, 3, 2, q, QuadratureMode.GAUSS)
    restr_x = build_restriction(coordinate_space)
    restr_q = build_strided_restriction(restr_x.num_elements, q**3, size)
    return run_setup_pass(
        ceed, coordinate_space.coordinates_local(), basis_x, restr_x, restr_q, kernel
    )


class TestSetupPass:
    """Tests for the geometric setup pass."""

    def test_mass_weights_sum_to_volume(self, ceed, test_mesh, coordinate_space):
        """Test that the mass quadrature data integrates the constant one."""
        qdata = _setup(ceed, coordinate_space, "Mass3DBuild", 1)
        local = float(qdata.as_array().sum())

        assert qdata.size == 1
        assert qdata.num_quadrature_points == 27
        assert test_mesh.comm.allreduce(local, op=MPI.SUM) == pytest.approx(test_mesh.volume)

    def test_poisson_layout(self, ceed, test_mesh, coordinate_space):
        """Test the layout of the diffusion quadrature data."""
        qdata = _setup(ceed, coordinate_space, "Poisson3DBuild", 6, q=4)
        data = qdata.as_array()

        assert data.shape == (test_mesh.num_cells, 6, 64)
        # Diagonal entries of the symmetric geometric tensor are positive
        assert np.all(data[:, :3, :] > 0.0)


class TestComposedOperator:
    """Tests for field validation and composition."""

    def test_basis_restriction_mismatch(self, ceed, test_mesh):
        """Test that a basis must match its restriction."""
        restriction = build_restriction(FunctionSpace(test_mesh, 1))
        basis = build_basis(ceed, 3, 1, 3, 4)

        with pytest.raises(FieldSizeMismatch):
            ComposedOperator(ceed, "MassApply", [OperatorField("u", restriction, basis)])

    def test_quadrature_mismatch(self, ceed, test_mesh):
        """Test that fields must agree on the number of quadrature points."""
        restriction = build_restriction(FunctionSpace(test_mesh, 1))
        qdata = build_strided_restriction(restriction.num_elements, 8, 1)
        basis = build_basis(ceed, 3, 1, 2, 3)

        with pytest.raises(FieldSizeMismatch):
            ComposedOperator(
                ceed,
                "MassApply",
                [
                    OperatorField("u", restriction, basis),
                    OperatorField("qdata", qdata, None),
                    OperatorField("v", restriction, basis),
                ],
            )

    def test_passive_without_data(self, ceed, test_mesh):
        """Test that passive fields need their data."""
        qdata = build_strided_restriction(test_mesh.num_cells, 8, 1)

        with pytest.raises(FieldSizeMismatch):
            ComposedOperator(
                ceed, "MassApply", [OperatorField("qdata", qdata, None, FieldRole.PASSIVE)]
            )

    def test_duplicated_names(self, ceed, test_mesh):
        """Test that field names are unique."""
        restriction = build_restriction(FunctionSpace(test_mesh, 1))
        basis = build_basis(ceed, 3, 1, 2, 2)

        with pytest.raises(FieldSizeMismatch):
            ComposedOperator(
                ceed,
                "MassApply",
                [OperatorField("u", restriction, basis), OperatorField("u", restriction, basis)],
            )

    def test_components_rejected_by_kernel(self, ceed, test_mesh):
        """Test that a vector field given to a scalar kernel is reported as a field error."""
        restriction = build_restriction(FunctionSpace(test_mesh, 1, 3))
        basis = build_basis(ceed, 3, 3, 2, 2)

        with pytest.raises(FieldError) as exc:
            ComposedOperator(ceed, "MassApply", [OperatorField("u", restriction, basis)])

        assert "'u'" in str(exc.value)
        assert exc.value.__cause__ is not None

    def test_unknown_kernel(self, ceed, test_mesh):
        """Test that unknown gallery kernels are reported as configuration errors."""
        restriction = build_restriction(FunctionSpace(test_mesh, 1))
        basis = build_basis(ceed, 3, 1, 2, 2)

        with pytest.raises(ConfigError):
            ComposedOperator(ceed, "NoSuchKernel", [OperatorField("u", restriction, basis)])


class TestBenchmarkOperator:
    """Tests for build_bp_operator."""

    @pytest.mark.parametrize("problem", list(ProblemId))
    def test_build(self, ceed, test_mesh, coordinate_space, problem):
        """Test the pieces of every benchmark operator."""
        spec = lookup(problem)
        space = FunctionSpace(test_mesh, 2, spec.num_components)
        bp = build_bp_operator(ceed, space, coordinate_space, spec, q_extra=1)

        assert bp.operator.kernel == spec.apply_kernel
        assert bp.field_basis.node_order == 3
        assert bp.field_basis.quadrature_order == 4
        assert bp.field_basis.quadrature_mode is spec.quadrature_mode
        assert bp.coordinate_basis.node_order == 2
        assert bp.quadrature_data.size == spec.quadrature_data_size
        assert bp.operator.field("qdata").role is FieldRole.PASSIVE
        with pytest.raises(KeyError):
            bp.operator.field("weights")

    def test_mass_action_on_constant(self, ceed, test_mesh, coordinate_space):
        """Test that the mass operator applied to one integrates to the volume."""
        spec = lookup(ProblemId.BP1)
        space = FunctionSpace(test_mesh, 3)
        bp = build_bp_operator(ceed, space, coordinate_space, spec)

        u, v = ceed.Vector(space.local_size), ceed.Vector(space.local_size)
        u.set_value(1.0)
        v.set_value(0.0)
        bp.operator.apply(u, v)
        with v.array_read() as data:
            local = float(np.sum(data))

        assert test_mesh.comm.allreduce(local, op=MPI.SUM) == pytest.approx(test_mesh.volume)

    def test_diffusion_kills_constants(self, ceed, test_mesh, coordinate_space):
        """Test that the diffusion operator maps constants to zero."""
        spec = lookup(ProblemId.BP3)
        space = FunctionSpace(test_mesh, 2)
        bp = build_bp_operator(ceed, space, coordinate_space, spec)

        u, v = ceed.Vector(space.local_size), ceed.Vector(space.local_size)
        u.set_value(2.5)
        bp.operator.apply(u, v)
        with v.array_read() as data:
            np.testing.assert_allclose(data, 0.0, atol=1e-12)

    def test_spaces_must_share_mesh(self, ceed, coordinate_space):
        """Test that the field and the coordinates must live on the same mesh."""
        other = FunctionSpace(BoxMesh((2, 2, 2)), 2)

        with pytest.raises(ConfigError):
            build_bp_operator(ceed, other, coordinate_space, lookup(ProblemId.BP1))

    def test_negative_q_extra(self, ceed, test_mesh, coordinate_space):
        """Test that fewer quadrature points than nodes are rejected."""
        space = FunctionSpace(test_mesh, 2)

        with pytest.raises(ConfigError):
            build_bp_operator(ceed, space, coordinate_space, lookup(ProblemId.BP1), q_extra=-1)
