import numpy as np

def edge_key(a, b, numVertices):
    """Canonical integer key of the undirected edge (a, b).

    Works on scalars and arrays; (a, b) and (b, a) give the same key.
    """
    a = np.asarray(a, dtype=np.int64)
    b = np.asarray(b, dtype=np.int64)
    return np.minimum(a, b) * np.int64(numVertices) + np.maximum(a, b)

def triangle_edges(triangles):
    # Per triangle (v0, v1), (v1, v2), (v2, v0), flattened in triangle order
    triangles = np.asarray(triangles, dtype=np.int32).reshape(-1, 3)
    edges = np.stack((triangles[:, [0, 1]], triangles[:, [1, 2]], triangles[:, [2, 0]]), axis=1)
    return edges.reshape(-1, 2)

def generate_edges(triangles, numVertices):
    """Unique undirected edges of a triangle list, in order of first discovery.

    Shared edges are referenced with opposite orientation by the two
    triangles on either side, so each edge is identified by its canonical
    key and kept once. Edges come back as (min, max) pairs.
    """
    directed = triangle_edges(triangles)
    if len(directed) == 0:
        return np.empty((0, 2), dtype=np.int32)

    canonical = np.sort(directed, axis=1)
    keys = edge_key(canonical[:, 0], canonical[:, 1], numVertices)
    _, first = np.unique(keys, return_index=True)
    return canonical[np.sort(first)].astype(np.int32)

def create_edge_adjacency(triangles, numVertices):
    """Map every undirected edge to the triangles that use it.

    Returns (edges, edgeTriangles, counts): edges is (E, 2) canonical,
    edgeTriangles is (E, 2) holding the first two triangles in triangle-list
    order (-1 where the edge has a single triangle) and counts is the
    number of triangles on each edge.
    """
    directed = triangle_edges(triangles)
    if len(directed) == 0:
        return (np.empty((0, 2), dtype=np.int32),
                np.empty((0, 2), dtype=np.int32),
                np.empty(0, dtype=np.int64))

    canonical = np.sort(directed, axis=1)
    keys = edge_key(canonical[:, 0], canonical[:, 1], numVertices)
    triIds = np.repeat(np.arange(len(directed) // 3, dtype=np.int32), 3)

    # Stable sort keeps triangles of one edge in triangle-list order
    order = np.argsort(keys, kind="stable")
    sortedKeys = keys[order]
    sortedTris = triIds[order]
    _, start, counts = np.unique(sortedKeys, return_index=True, return_counts=True)

    edgeTriangles = np.full((len(start), 2), -1, dtype=np.int32)
    edgeTriangles[:, 0] = sortedTris[start]
    shared = counts >= 2
    edgeTriangles[shared, 1] = sortedTris[start[shared] + 1]

    edges = canonical[order][start].astype(np.int32)
    return edges, edgeTriangles, counts

def find_wing_edges(triangles, numVertices):
    """Bending stencils (p0, p1, p2, p3) for edges shared by exactly two triangles.

    T0 is the lower-indexed triangle of the pair. (p2, p3) is the shared
    edge in the order T0's winding walks it, p0 is T0's third vertex and p1
    is T1's. Boundary and non-manifold edges yield no stencil.
    """
    triangles = np.asarray(triangles, dtype=np.int32).reshape(-1, 3)
    edges, edgeTriangles, counts = create_edge_adjacency(triangles, numVertices)
    interior = counts == 2
    if not np.any(interior):
        return np.empty((0, 4), dtype=np.int32)

    a = edges[interior, 0].astype(np.int64)
    b = edges[interior, 1].astype(np.int64)
    tri0 = triangles[edgeTriangles[interior, 0]].astype(np.int64)
    tri1 = triangles[edgeTriangles[interior, 1]].astype(np.int64)

    nxt = np.roll(tri0, -1, axis=1)
    forward = np.any((tri0 == a[:, None]) & (nxt == b[:, None]), axis=1)
    p2 = np.where(forward, a, b)
    p3 = np.where(forward, b, a)

    # Vertices of a triangle are distinct, so the wing is what is left over
    p0 = tri0.sum(axis=1) - a - b
    p1 = tri1.sum(axis=1) - a - b

    return np.stack((p0, p1, p2, p3), axis=1).astype(np.int32)

def boundary_edges(triangles, numVertices):
    edges, _, counts = create_edge_adjacency(triangles, numVertices)
    return edges[counts == 1]
