import numpy as np
import pytest
from Mesh import ClothMesh

@pytest.mark.parametrize("xSize,ySize", [(1, 1), (1, 4), (3, 2), (8, 8), (17, 5)])
def test_grid_counts(xSize, ySize):
    mesh = ClothMesh.grid(xSize, ySize, 5.0, 3.0)
    assert mesh.numVertices == (xSize + 1) * (ySize + 1)
    assert mesh.numTriangles == 2 * xSize * ySize
    # Horizontal, vertical and one diagonal per cell
    assert len(mesh.edges) == xSize * (ySize + 1) + ySize * (xSize + 1) + xSize * ySize

def test_grid_positions():
    xSize, ySize, width, height = 4, 3, 5.0, 2.0
    mesh = ClothMesh.grid(xSize, ySize, width, height)
    for j in range(ySize + 1):
        for i in range(xSize + 1):
            expected = [i * width / (xSize + 1) - width / 2.0, 0.0,
                        j * height / (ySize + 1) - height / 2.0]
            np.testing.assert_allclose(mesh.positions[j * (xSize + 1) + i], expected)

def test_grid_single_cell_triangulation():
    mesh = ClothMesh.grid(1, 1, 2.0, 2.0)
    np.testing.assert_array_equal(mesh.triangles, [[0, 2, 3], [0, 3, 1]])

def test_grid_alternates_diagonals():
    mesh = ClothMesh.grid(2, 1, 2.0, 2.0)
    # Cell (0, 0) is split along (i0, i3), cell (0, 1) along (i1, i2)
    np.testing.assert_array_equal(mesh.triangles[:2], [[0, 3, 4], [0, 4, 1]])
    np.testing.assert_array_equal(mesh.triangles[2:], [[1, 4, 2], [2, 4, 5]])

def test_from_arrays_keeps_input():
    positions = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [1.0, 1.0, 0.5]])
    triangles = np.array([[0, 1, 2], [2, 1, 3]])
    mesh = ClothMesh.from_arrays(positions, triangles)
    np.testing.assert_array_equal(mesh.positions, positions)
    np.testing.assert_array_equal(mesh.triangles, triangles)
    np.testing.assert_array_equal(mesh.restPositions, positions)

def test_rest_pose_is_independent_copy():
    mesh = ClothMesh.grid(2, 2, 1.0, 1.0)
    mesh.positions[0] += 1.0
    assert not np.allclose(mesh.positions[0], mesh.restPositions[0])
    with pytest.raises(ValueError):
        mesh.restPositions[0, 0] = 3.0

def test_particles_without_triangles():
    mesh = ClothMesh.from_arrays([[0.0, 1.0, 0.0]], np.empty((0, 3), dtype=np.int32))
    assert mesh.numVertices == 1
    assert mesh.numTriangles == 0
    assert mesh.edges.shape == (0, 2)

@pytest.mark.parametrize("xSize,ySize,width,height", [
    (0, 1, 1.0, 1.0),
    (1, -2, 1.0, 1.0),
    (2.5, 1, 1.0, 1.0),
    (1, 1, 0.0, 1.0),
    (1, 1, 1.0, -1.0),
])
def test_grid_rejects_bad_parameters(xSize, ySize, width, height):
    with pytest.raises(ValueError):
        ClothMesh.grid(xSize, ySize, width, height)

def test_rejects_out_of_range_index():
    with pytest.raises(ValueError, match="outside"):
        ClothMesh.from_arrays(np.zeros((3, 3)), [[0, 1, 3]])
    with pytest.raises(ValueError, match="outside"):
        ClothMesh.from_arrays(np.zeros((3, 3)), [[0, -1, 2]])

def test_rejects_repeated_vertex():
    with pytest.raises(ValueError, match="repeats"):
        ClothMesh.from_arrays(np.eye(3), [[0, 1, 1]])

def test_rejects_bad_shapes():
    with pytest.raises(ValueError):
        ClothMesh.from_arrays(np.zeros((4, 2)), [[0, 1, 2]])
    with pytest.raises(ValueError):
        ClothMesh.from_arrays(np.zeros((4, 3)), [[0, 1, 2, 3]])
    with pytest.raises(ValueError):
        ClothMesh.from_arrays(np.zeros((0, 3)), np.empty((0, 3)))

def test_rejects_non_finite_positions():
    positions = np.eye(3)
    positions[1, 1] = np.nan
    with pytest.raises(ValueError, match="NaN"):
        ClothMesh.from_arrays(positions, [[0, 1, 2]])

def test_summary():
    assert ClothMesh.grid(1, 1, 2.0, 2.0).summary() == {"particles": 4, "triangles": 2, "edges": 5}
