"""Unit tests for Meshing.core module."""

import numpy as np
import pytest
from mpi4py import MPI

from Meshing import BOUNDARY_LABEL, BoxMesh, Height
from Meshing.core import _split

serial_only = pytest.mark.skipif(MPI.COMM_WORLD.size > 1, reason="Checks serial counts")


class TestSplit:
    """Tests for the slab partition."""

    def test_balanced(self):
        """Test that layers are split in contiguous, balanced ranges."""
        assert _split(7, 3) == [(0, 3), (3, 5), (5, 7)]

    def test_more_ranks_than_layers(self):
        """Test that surplus ranks get empty ranges."""
        assert _split(2, 4) == [(0, 1), (1, 2), (2, 2), (2, 2)]


class TestBoxMesh:
    """Tests for BoxMesh."""

    def test_geometry(self):
        """Test the basic geometric quantities of the box."""
        mesh = BoxMesh((2, 4, 5), (0.0, -1.0, 0.0), (1.0, 1.0, 2.5))

        assert mesh.dim == 3
        assert mesh.num_cells_global == 40
        assert mesh.volume == pytest.approx(5.0)
        np.testing.assert_allclose(mesh.cell_size, [0.5, 0.5, 0.5])

    def test_partition_covers_all_cells(self):
        """Test that the slabs of all ranks cover the mesh exactly once."""
        mesh = BoxMesh((3, 3, 5))
        total = mesh.comm.allreduce(mesh.num_cells, op=MPI.SUM)

        assert total == mesh.num_cells_global
        assert mesh.z_ranges[mesh.comm.rank] == mesh.z_range

    @serial_only
    def test_cell_lattice(self):
        """Test that cells are numbered with x running fastest."""
        mesh = BoxMesh((3, 2, 2))

        assert mesh.cell_lattice(0) == (0, 0, 0)
        assert mesh.cell_lattice(1) == (1, 0, 0)
        assert mesh.cell_lattice(3) == (0, 1, 0)
        assert mesh.cell_lattice(6) == (0, 0, 1)
        assert mesh.cell_lattice(11) == (2, 1, 1)

    @serial_only
    def test_boundary_faces(self):
        """Test the number of boundary faces of a 3x3x3 box."""
        mesh = BoxMesh((3, 3, 3))

        assert mesh.num_boundary_faces == 54
        # The corner cell touches three boundary faces, one per axis
        corner = [mesh.face_lattice(f) for f in range(mesh.num_boundary_faces)]
        assert sorted(axis for cell, axis, _ in corner if cell == (0, 0, 0)) == [0, 1, 2]

    @serial_only
    def test_vertex_coordinates(self):
        """Test the vertex coordinates of the slab (x fastest)."""
        mesh = BoxMesh((2, 1, 1), (0.0, 0.0, 0.0), (2.0, 1.0, 3.0))
        coords = mesh.vertex_coordinates_local()

        assert coords.shape == (12, 3)
        np.testing.assert_allclose(coords[:4], [[0, 0, 0], [1, 0, 0], [2, 0, 0], [0, 1, 0]])
        np.testing.assert_allclose(coords[-1], [2.0, 1.0, 3.0])

    @pytest.mark.parametrize(
        "faces, lower, upper",
        [
            ((3, 3), (0, 0, 0), (1, 1, 1)),
            ((3, 0, 3), (0, 0, 0), (1, 1, 1)),
            ((3, 3, 3), (0, 0, 0), (1, 0, 1)),
        ],
    )
    def test_invalid(self, faces, lower, upper):
        """Test that invalid boxes are rejected."""
        with pytest.raises(ValueError):
            BoxMesh(faces, lower, upper)

    @serial_only
    def test_cell_order(self):
        """Test that a custom cell order sets the traversal order."""
        order = np.arange(8)[::-1]
        mesh = BoxMesh((2, 2, 2), cell_order=order)

        np.testing.assert_array_equal(mesh.points(Height.CELL), order)

    @serial_only
    @pytest.mark.parametrize("order", [[0, 1, 2], [0, 0, 1, 2, 3, 4, 5, 6]])
    def test_invalid_cell_order(self, order):
        """Test that a cell order must be a permutation of the local cells."""
        with pytest.raises(ValueError):
            BoxMesh((2, 2, 2), cell_order=order)


class TestLabels:
    """Tests for mesh labels and point strata."""

    def test_mark_boundary_faces(self):
        """Test that marking the boundary labels every boundary face."""
        mesh = BoxMesh((2, 2, 2))
        label = mesh.mark_boundary_faces(1)

        assert mesh.has_label(BOUNDARY_LABEL)
        assert label.height is Height.FACE
        assert len(mesh.points(Height.FACE, BOUNDARY_LABEL, 1)) == mesh.num_boundary_faces
        assert len(mesh.points(Height.FACE, BOUNDARY_LABEL, 2)) == 0

    @serial_only
    def test_cell_label_filter(self):
        """Test that a cell label restricts the traversal to its stratum."""
        mesh = BoxMesh((2, 2, 2))
        label = mesh.create_label("region", Height.CELL)
        for cell in (1, 4, 6):
            label.set_value(cell, 7)
        label.set_value(2, 3)

        np.testing.assert_array_equal(mesh.points(Height.CELL, "region", 7), [1, 4, 6])
        np.testing.assert_array_equal(mesh.points(Height.CELL, "region"), [1, 2, 4, 6])
        np.testing.assert_array_equal(label.stratum(7), [1, 4, 6])
        assert label.stratum_values == {3, 7}

    def test_label_of_other_height(self):
        """Test that a label of another height selects no points."""
        mesh = BoxMesh((2, 2, 2))
        mesh.mark_boundary_faces(1)

        assert len(mesh.points(Height.CELL, BOUNDARY_LABEL, 1)) == 0

    def test_missing_label(self):
        """Test that querying an unknown label fails."""
        mesh = BoxMesh((2, 2, 2))

        assert not mesh.has_label("inlet")
        with pytest.raises(KeyError):
            mesh.get_label("inlet")

    def test_invalid_height(self):
        """Test that only cells and faces are supported."""
        mesh = BoxMesh((2, 2, 2))

        with pytest.raises(ValueError):
            mesh.points(2)
