"""Unit tests for FEM.basis module."""

import pytest

from FEM.basis import build_basis
from FEM.errors import ConfigError, InvalidBasis
from FEM.problems import QuadratureMode


@pytest.mark.parametrize("mode", list(QuadratureMode))
def test_build_basis(ceed, mode):
    """Test the sizes of a valid tensor-product basis."""
    basis = build_basis(ceed, 3, 3, 4, 5, mode)

    assert basis.num_nodes == 64
    assert basis.num_quadrature_points == 125
    assert basis.num_components == 3
    assert basis.quadrature_mode is mode
    assert basis.ceed_basis is not None


def test_build_basis_collocated(ceed):
    """Test that Q == P is accepted (BP5/BP6 setting)."""
    basis = build_basis(ceed, 3, 1, 3, 3, QuadratureMode.GAUSS_LOBATTO)

    assert basis.num_nodes == basis.num_quadrature_points == 27


@pytest.mark.parametrize(
    "dim, ncomp, p, q",
    [
        (4, 1, 2, 2),
        (0, 1, 2, 2),
        (3, 0, 2, 2),
        (3, 1, 1, 2),
        (3, 1, 4, 3),
    ],
)
def test_build_basis_invalid(ceed, dim, ncomp, p, q):
    """Test that invalid basis parameters are rejected before reaching libCEED."""
    with pytest.raises(InvalidBasis) as exc:
        build_basis(ceed, dim, ncomp, p, q)

    assert isinstance(exc.value, ConfigError)
