import numpy as np
from meshGraph import generate_edges

class ClothMesh:
    """Particle positions and triangle list of a cloth sheet.

    Build a procedural sheet with ClothMesh.grid() or wrap an external
    mesh with ClothMesh.from_arrays(). Both paths validate once here so the
    solver never sees out-of-range indices.
    """
    def __init__(self, positions, triangles):
        self.positions = np.array(positions, dtype=np.float64)
        self.triangles = np.array(triangles, dtype=np.int32)
        self.validate()
        self.restPositions = self.positions.copy()
        self.restPositions.setflags(write=False)
        self.triangles.setflags(write=False)
        self._edges = None

    @classmethod
    def grid(cls, xSize, ySize, width, height):
        if int(xSize) != xSize or int(ySize) != ySize or xSize < 1 or ySize < 1:
            raise ValueError(f"grid resolution must be integers >= 1, got ({xSize}, {ySize})")
        if width <= 0.0 or height <= 0.0:
            raise ValueError(f"grid extent must be positive, got ({width}, {height})")
        xSize = int(xSize)
        ySize = int(ySize)

        # Particle (i, j) sits at index j * (xSize + 1) + i on the y = 0 plane
        cols, rows = np.meshgrid(np.arange(xSize + 1), np.arange(ySize + 1))
        positions = np.zeros(((xSize + 1) * (ySize + 1), 3))
        positions[:, 0] = cols.flatten() * width / (xSize + 1) - width / 2.0
        positions[:, 2] = rows.flatten() * height / (ySize + 1) - height / 2.0

        triangles = np.empty((2 * xSize * ySize, 3), dtype=np.int32)
        index = 0
        for i in range(ySize):
            for j in range(xSize):
                i0 = i * (xSize + 1) + j
                i1 = i0 + 1
                i2 = i0 + (xSize + 1)
                i3 = i2 + 1
                # Alternate the diagonal so the sheet has no preferred fold
                if (i + j) % 2 != 0:
                    triangles[index] = (i0, i2, i1)
                    triangles[index + 1] = (i1, i2, i3)
                else:
                    triangles[index] = (i0, i2, i3)
                    triangles[index + 1] = (i0, i3, i1)
                index += 2

        return cls(positions, triangles)

    @classmethod
    def from_arrays(cls, positions, triangles):
        return cls(positions, triangles)

    @property
    def numVertices(self):
        return len(self.positions)

    @property
    def numTriangles(self):
        return len(self.triangles)

    @property
    def edges(self):
        # Unique undirected edges, extracted once on first use
        if self._edges is None:
            self._edges = generate_edges(self.triangles, self.numVertices)
            self._edges.setflags(write=False)
        return self._edges

    def validate(self):
        if self.positions.ndim != 2 or self.positions.shape[1] != 3:
            raise ValueError(f"positions must have shape (N, 3), got {self.positions.shape}")
        if len(self.positions) == 0:
            raise ValueError("mesh has no particles")
        if not np.all(np.isfinite(self.positions)):
            raise ValueError("positions contain NaN or infinite values")

        if self.triangles.size == 0:
            self.triangles = self.triangles.reshape(0, 3)
        if self.triangles.ndim != 2 or self.triangles.shape[1] != 3:
            raise ValueError(f"triangles must have shape (T, 3), got {self.triangles.shape}")

        bad = (self.triangles < 0) | (self.triangles >= len(self.positions))
        if np.any(bad):
            triNr = int(np.argwhere(bad)[0, 0])
            raise ValueError(
                f"triangle {triNr} {self.triangles[triNr].tolist()} references a vertex "
                f"outside [0, {len(self.positions)})")

        t = self.triangles
        repeated = (t[:, 0] == t[:, 1]) | (t[:, 1] == t[:, 2]) | (t[:, 2] == t[:, 0])
        if np.any(repeated):
            triNr = int(np.flatnonzero(repeated)[0])
            raise ValueError(f"triangle {triNr} {t[triNr].tolist()} repeats a vertex")

    def summary(self):
        return {
            "particles": self.numVertices,
            "triangles": self.numTriangles,
            "edges": len(self.edges),
        }
