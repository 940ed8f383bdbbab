from dataclasses import dataclass
import numpy as np
from meshGraph import find_wing_edges

# Triangles with a smaller doubled area than this are treated as degenerate
DEGENERATE_AREA = 1e-12

@dataclass(frozen=True)
class DistanceConstraints:
    edges: np.ndarray                   # (E, 2) particle ids, (min, max)
    restLengths: np.ndarray             # (E,)
    compressionStiffness: np.ndarray    # (E,)
    stretchStiffness: np.ndarray        # (E,)

    def __len__(self):
        return len(self.edges)

@dataclass(frozen=True)
class BendingConstraints:
    ids: np.ndarray                     # (B, 4) stencil p0, p1 (wings), p2, p3 (shared edge)
    restAngles: np.ndarray              # (B,) dihedral angle in [0, pi]
    compressionStiffness: np.ndarray    # (B,)
    stretchStiffness: np.ndarray        # (B,)

    def __len__(self):
        return len(self.ids)

def check_stiffness(name, value):
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be in [0, 1], got {value}")
    return float(value)

def _freeze(*arrays):
    for array in arrays:
        array.setflags(write=False)

def build_distance_constraints(mesh, compressionStiffness=1.0, stretchStiffness=1.0):
    compressionStiffness = check_stiffness("distance compression stiffness", compressionStiffness)
    stretchStiffness = check_stiffness("distance stretch stiffness", stretchStiffness)

    edges = np.array(mesh.edges, dtype=np.int32).reshape(-1, 2)
    positions = mesh.restPositions
    restLengths = np.linalg.norm(positions[edges[:, 1]] - positions[edges[:, 0]], axis=1)

    constraints = DistanceConstraints(
        edges=edges,
        restLengths=restLengths,
        compressionStiffness=np.full(len(edges), compressionStiffness),
        stretchStiffness=np.full(len(edges), stretchStiffness),
    )
    _freeze(constraints.edges, constraints.restLengths,
            constraints.compressionStiffness, constraints.stretchStiffness)
    return constraints

def dihedral_angles(positions, ids):
    """Angle between the normals of the two triangles of each stencil.

    n1 = normalize((p2 - p0) x (p3 - p0)), n2 = normalize((p3 - p1) x (p2 - p1)).
    A flat, consistently wound pair gives 0.
    """
    x0 = positions[ids[:, 0]]
    x1 = positions[ids[:, 1]]
    x2 = positions[ids[:, 2]]
    x3 = positions[ids[:, 3]]
    n1 = np.cross(x2 - x0, x3 - x0)
    n2 = np.cross(x3 - x1, x2 - x1)
    l1 = np.linalg.norm(n1, axis=1)
    l2 = np.linalg.norm(n2, axis=1)

    degenerate = (l1 < DEGENERATE_AREA) | (l2 < DEGENERATE_AREA)
    if np.any(degenerate):
        nr = int(np.flatnonzero(degenerate)[0])
        raise ValueError(f"bending stencil {ids[nr].tolist()} has a degenerate triangle at rest")

    d = np.einsum('ij,ij->i', n1 / l1[:, None], n2 / l2[:, None])
    return np.arccos(np.clip(d, -1.0, 1.0))

def build_bending_constraints(mesh, compressionStiffness=1.0, stretchStiffness=1.0):
    compressionStiffness = check_stiffness("bending compression stiffness", compressionStiffness)
    stretchStiffness = check_stiffness("bending stretch stiffness", stretchStiffness)

    ids = find_wing_edges(mesh.triangles, mesh.numVertices)
    if len(ids) > 0:
        restAngles = dihedral_angles(mesh.restPositions, ids)
    else:
        restAngles = np.empty(0)

    constraints = BendingConstraints(
        ids=ids,
        restAngles=restAngles,
        compressionStiffness=np.full(len(ids), compressionStiffness),
        stretchStiffness=np.full(len(ids), stretchStiffness),
    )
    _freeze(constraints.ids, constraints.restAngles,
            constraints.compressionStiffness, constraints.stretchStiffness)
    return constraints
