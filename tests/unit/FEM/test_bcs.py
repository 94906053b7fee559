"""Unit tests for FEM.bcs module."""

import numpy as np
import pytest

from FEM.bcs import EssentialBoundary, boundary_function_diff, define_essential_boundary
from FEM.errors import MissingLabel
from Meshing import BOUNDARY_LABEL, BoxMesh, Height


def test_boundary_function_values():
    """Test the boundary function at a few points."""
    x = np.array([[0.5, 0.25, 1.0 / 6.0], [0.0, 0.3, 0.7]])
    u = boundary_function_diff(x)

    assert u.shape == (2, 1)
    np.testing.assert_allclose(u[:, 0], [-1.0, 0.0], atol=1e-14)


def test_boundary_function_components():
    """Test that every component carries the same value."""
    x = np.random.default_rng(0).random((10, 3))
    u = boundary_function_diff(x, num_components=3)

    assert u.shape == (10, 3)
    np.testing.assert_allclose(u[:, 1], u[:, 0])
    np.testing.assert_allclose(u[:, 2], u[:, 0])


def test_boundary_function_single_point():
    """Test that a single point is promoted to a batch of one."""
    assert boundary_function_diff(np.array([0.5, 0.25, 1.0 / 6.0])).shape == (1, 1)


class TestEssentialBoundary:
    """Tests for define_essential_boundary."""

    def test_not_enforced(self):
        """Test that mass problems do not get a boundary (nor a label)."""
        mesh = BoxMesh((2, 2, 2))

        assert define_essential_boundary(mesh, False) is None
        assert not mesh.has_label(BOUNDARY_LABEL)

    def test_default_label(self):
        """Test that the default label is created on demand."""
        mesh = BoxMesh((2, 2, 2))
        boundary = define_essential_boundary(mesh, True)

        assert boundary == EssentialBoundary(label=BOUNDARY_LABEL, value=1)
        assert mesh.has_label(BOUNDARY_LABEL)
        assert len(mesh.points(Height.FACE, BOUNDARY_LABEL, 1)) == mesh.num_boundary_faces

    def test_custom_label(self):
        """Test that an existing custom label is used as is."""
        mesh = BoxMesh((2, 2, 2))
        mesh.mark_boundary_faces(4, name="walls")

        boundary = define_essential_boundary(mesh, True, label="walls", value=4)

        assert boundary == EssentialBoundary(label="walls", value=4)
        assert not mesh.has_label(BOUNDARY_LABEL)

    def test_missing_custom_label(self):
        """Test that a custom label must already exist."""
        mesh = BoxMesh((2, 2, 2))

        with pytest.raises(MissingLabel) as exc:
            define_essential_boundary(mesh, True, label="walls")

        assert exc.value.label == "walls"
