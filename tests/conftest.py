"""Shared mesh fixtures.

Meshes are structured boxes split into six tetrahedra per cell (all cells
share the same diagonal, so the split is conforming). Nodes are renumbered
so the boundary vertices come first, as in a volume mesh generated from a
surface.
"""
from __future__ import annotations

import itertools

import numpy as np
import pytest

from modal_basis.fea.config import TetMesh
from modal_basis.fea.elements import TET4Element
from modal_basis.fea.mesh_io import boundary_faces


def make_box_mesh(divisions=(1, 1, 1), lengths=(1.0, 1.0, 1.0)) -> TetMesh:
    nx, ny, nz = divisions
    axes = [np.linspace(0.0, L, n + 1) for L, n in zip(lengths, divisions)]
    grid = np.stack(np.meshgrid(*axes, indexing="ij"), axis=-1).reshape(-1, 3)

    def node(i, j, k):
        return (i * (ny + 1) + j) * (nz + 1) + k

    tets = []
    for i, j, k in itertools.product(range(nx), range(ny), range(nz)):
        for perm in itertools.permutations(range(3)):
            corner = [0, 0, 0]
            path = [node(i, j, k)]
            for axis in perm:
                corner[axis] += 1
                path.append(node(i + corner[0], j + corner[1], k + corner[2]))
            tets.append(path)
    elements = np.asarray(tets, dtype=np.int64)

    vol = TET4Element.signed_volumes(grid[elements])
    flipped = vol < 0.0
    elements[flipped, 2], elements[flipped, 3] = (
        elements[flipped, 3].copy(),
        elements[flipped, 2].copy(),
    )

    tris = boundary_faces(elements)
    surface = np.unique(tris)
    interior = np.setdiff1d(np.arange(grid.shape[0]), surface)
    perm = np.concatenate([surface, interior])
    new_index = np.empty_like(perm)
    new_index[perm] = np.arange(perm.size)

    return TetMesh(
        nodes=grid[perm],
        elements=new_index[elements],
        surface_tris=new_index[tris],
        n_surface_nodes=surface.size,
    )


@pytest.fixture
def mesh_factory():
    return make_box_mesh


@pytest.fixture
def unit_cube_mesh() -> TetMesh:
    """Unit cube, one cell: 8 nodes, all on the surface."""
    return make_box_mesh()


@pytest.fixture
def box_mesh() -> TetMesh:
    """2x2x2 unit cube: 27 nodes, one of them interior."""
    return make_box_mesh((2, 2, 2))


@pytest.fixture
def plate_mesh() -> TetMesh:
    """Non-symmetric 3x2x2 box, free of repeated eigenvalues."""
    return make_box_mesh((3, 2, 2), (1.0, 0.7, 0.4))
