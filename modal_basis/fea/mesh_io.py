"""Mesh reading and writing through meshio.

Surface meshes (``.stl``, ``.obj``) give ``(SV, SF)``; volume meshes
(``.msh``) give ``(V, T, F)`` and must come with a companion surface mesh of
the same stem whose vertices are the leading prefix of ``V``.
"""
from __future__ import annotations

import logging
import os
from typing import Optional

import meshio
import numpy as np
from numpy.typing import NDArray

from modal_basis.fea.errors import MissingCompanionMeshError

logger = logging.getLogger(__name__)

SURFACE_EXTENSIONS = (".stl", ".obj")
VOLUME_EXTENSIONS = (".msh",)

# Companion lookup order for a volume mesh
_COMPANION_EXTENSIONS = (".obj", ".stl")


def _cells(mesh: meshio.Mesh, cell_type: str) -> Optional[NDArray[np.int64]]:
    blocks = [block.data for block in mesh.cells if block.type == cell_type]
    if not blocks:
        return None
    return np.concatenate(blocks).astype(np.int64)


def join_corners(
    points: NDArray[np.float64],
    faces: NDArray[np.int64],
) -> tuple[NDArray[np.float64], NDArray[np.int64]]:
    """Merge exactly coincident vertices, keeping first-appearance order.

    STL stores three private corners per facet; merging them restores the
    shared-vertex connectivity needed for volume meshing.
    """
    _, first, inverse = np.unique(
        points, axis=0, return_index=True, return_inverse=True
    )
    inverse = inverse.reshape(-1)
    order = np.argsort(first)
    rank = np.empty_like(order)
    rank[order] = np.arange(order.size)

    merged = points[first[order]]
    new_faces = rank[inverse][faces]
    if merged.shape[0] < points.shape[0]:
        logger.debug(
            "Joined %d duplicate corners (%d -> %d vertices)",
            points.shape[0] - merged.shape[0],
            points.shape[0],
            merged.shape[0],
        )
    return merged, new_faces


def boundary_faces(elements: NDArray[np.int64]) -> NDArray[np.int64]:
    """Triangles that belong to exactly one tetrahedron, outward oriented
    for positively oriented tetrahedra."""
    local = np.array([[1, 2, 3], [0, 3, 2], [0, 1, 3], [0, 2, 1]])
    faces = elements[:, local].reshape(-1, 3)
    key = np.sort(faces, axis=1)
    _, inverse, counts = np.unique(key, axis=0, return_inverse=True, return_counts=True)
    return faces[counts[inverse.reshape(-1)] == 1]


def load_surface_mesh(path: str) -> tuple[NDArray[np.float64], NDArray[np.int64]]:
    """Read an ``.stl`` or ``.obj`` triangle mesh as ``(SV, SF)``."""
    ext = os.path.splitext(path)[1].lower()
    if ext not in SURFACE_EXTENSIONS:
        raise ValueError(
            f"Expected a surface mesh ({', '.join(SURFACE_EXTENSIONS)}), got {ext!r}"
        )
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Surface mesh not found: {path!r}")

    mesh = meshio.read(path)
    faces = _cells(mesh, "triangle")
    if faces is None:
        raise ValueError(f"No triangles found in {path!r}")
    points = np.asarray(mesh.points, dtype=np.float64)[:, :3]

    if ext == ".stl":
        points, faces = join_corners(points, faces)

    logger.info(
        "Loaded surface mesh %s: %d vertices, %d triangles",
        path,
        points.shape[0],
        faces.shape[0],
    )
    return points, faces


def load_volume_mesh(
    path: str,
) -> tuple[NDArray[np.float64], NDArray[np.int64], NDArray[np.int64]]:
    """Read a ``.msh`` tetrahedral mesh as ``(V, T, F)``.

    ``F`` are the mesh's triangles, or the boundary faces of ``T`` when the
    file stores none.
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Volume mesh not found: {path!r}")

    mesh = meshio.read(path)
    tets = _cells(mesh, "tetra")
    if tets is None:
        raise ValueError(f"No linear tetrahedra found in {path!r}")
    tris = _cells(mesh, "triangle")
    if tris is None:
        tris = boundary_faces(tets)
    points = np.asarray(mesh.points, dtype=np.float64)[:, :3]

    logger.info(
        "Loaded volume mesh %s: %d vertices, %d tetrahedra, %d triangles",
        path,
        points.shape[0],
        tets.shape[0],
        tris.shape[0],
    )
    return points, tets, tris


def find_companion_surface(msh_path: str) -> str:
    """Return the ``.obj`` (preferred) or ``.stl`` mesh next to ``msh_path``."""
    stem = os.path.splitext(msh_path)[0]
    for ext in _COMPANION_EXTENSIONS:
        candidate = stem + ext
        if os.path.isfile(candidate):
            return candidate
    raise MissingCompanionMeshError(
        f"Surface mesh {os.path.basename(stem)!r} (.obj or .stl) not found in "
        f"{os.path.dirname(os.path.abspath(msh_path))!r}"
    )


def check_surface_prefix(
    nodes: NDArray[np.float64],
    surface_nodes: NDArray[np.float64],
    atol: float = 1e-9,
) -> bool:
    """Check that the surface vertices are the leading rows of the volume nodes."""
    n_s = surface_nodes.shape[0]
    if n_s > nodes.shape[0]:
        raise ValueError(
            f"Surface mesh has {n_s} vertices but the volume mesh only {nodes.shape[0]}."
        )
    scale = max(float(np.max(np.abs(nodes))) if nodes.size else 0.0, 1.0)
    ok = bool(np.allclose(nodes[:n_s], surface_nodes, rtol=0.0, atol=atol * scale))
    if not ok:
        logger.warning(
            "Surface vertices are not the leading prefix of the volume mesh nodes; "
            "surface mode shapes will be misaligned."
        )
    return ok


def check_referenced_vertices(
    surface_nodes: NDArray[np.float64],
    surface_tris: NDArray[np.int64],
) -> None:
    """Reject surface vertices that no triangle uses.

    Such a vertex ends up in no tetrahedron and carries no mass. It cannot
    be dropped either, since surface indices must stay aligned with the
    volume node prefix.
    """
    used = np.zeros(surface_nodes.shape[0], dtype=bool)
    used[np.asarray(surface_tris, dtype=np.int64).ravel()] = True
    if not used.all():
        unused = np.flatnonzero(~used)
        raise ValueError(
            f"{unused.size} surface vertex(es) are not referenced by any triangle "
            f"(first: {unused[:5].tolist()}). Remove them from the surface mesh."
        )


def write_volume_mesh(
    path: str,
    nodes: NDArray[np.float64],
    elements: NDArray[np.int64],
    surface_tris: NDArray[np.int64],
) -> str:
    """Write a Gmsh 2.2 ASCII ``.msh`` file with tetrahedra and boundary triangles."""
    mesh = meshio.Mesh(
        points=np.asarray(nodes, dtype=np.float64),
        cells=[("tetra", np.asarray(elements)), ("triangle", np.asarray(surface_tris))],
    )
    meshio.write(path, mesh, file_format="gmsh22", binary=False)
    logger.info("Wrote volume mesh to %s", path)
    return path


def write_mode_shapes_vtu(
    path: str,
    nodes: NDArray[np.float64],
    elements: NDArray[np.int64],
    mode_shapes: NDArray[np.float64],
) -> str:
    """Export every mode as a vector point field ``mode_<j>`` for inspection."""
    n_nodes = nodes.shape[0]
    point_data = {
        f"mode_{j}": mode_shapes[:, j].reshape(n_nodes, 3)
        for j in range(mode_shapes.shape[1])
    }
    mesh = meshio.Mesh(
        points=np.asarray(nodes, dtype=np.float64),
        cells=[("tetra", np.asarray(elements))],
        point_data=point_data,
    )
    meshio.write(path, mesh)
    logger.info("Wrote %d mode shapes to %s", mode_shapes.shape[1], path)
    return path
