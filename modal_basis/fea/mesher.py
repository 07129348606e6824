"""Gmsh-based tetrahedralization of closed triangle surfaces.

The surface triangulation is handed to Gmsh as a discrete surface closed by
a surface loop; the 3D Delaunay mesher then fills the bounded volume without
touching the boundary. Surface vertices are registered with node tags
``1..n_S`` so that, after sorting by tag, they form the leading prefix of
the volume node array in their original order.
"""
from __future__ import annotations

import logging
from typing import Optional

import gmsh
import numpy as np
from numpy.typing import NDArray

from modal_basis.fea import mesh_io
from modal_basis.fea.config import TetMesh
from modal_basis.fea.elements import TET4Element

logger = logging.getLogger(__name__)

# Gmsh element type codes
_GMSH_TRI3 = 2
_GMSH_TET4 = 4


class GmshMesher:
    """Generate linear tetrahedral meshes from watertight surface meshes."""

    def tetrahedralize(
        self,
        surface_nodes: NDArray[np.float64],
        surface_tris: NDArray[np.int64],
        mesh_size: Optional[float] = None,
    ) -> TetMesh:
        """Fill the volume bounded by ``(surface_nodes, surface_tris)``.

        Parameters
        ----------
        surface_nodes : NDArray[np.float64]
            (n_S, 3) vertex positions in meters.
        surface_tris : NDArray[np.int64]
            (n_F, 3) 0-based triangles, consistently oriented, closed.
        mesh_size : float or None
            Maximum element size in meters. ``None`` grades the interior
            from the boundary triangle sizes.

        Returns
        -------
        TetMesh
            Volume mesh whose first ``n_S`` nodes are ``surface_nodes``.

        Raises
        ------
        ValueError
            If the surface arrays are malformed.
        RuntimeError
            If Gmsh fails or modifies the boundary.
        """
        surface_nodes = np.asarray(surface_nodes, dtype=np.float64)
        surface_tris = np.asarray(surface_tris, dtype=np.int64)
        self._validate_inputs(surface_nodes, surface_tris, mesh_size)
        n_s = surface_nodes.shape[0]

        gmsh.initialize(interruptible=False)
        try:
            # Run headless -- no terminal output, no GUI
            gmsh.option.setNumber("General.Terminal", 0)
            gmsh.model.add("surface")

            surf = gmsh.model.addDiscreteEntity(2)
            gmsh.model.mesh.addNodes(
                2, surf, list(range(1, n_s + 1)), surface_nodes.ravel().tolist()
            )
            gmsh.model.mesh.addElementsByType(
                surf, _GMSH_TRI3, [], (surface_tris + 1).ravel().tolist()
            )
            # Bound a volume by the discrete surface; its triangles are kept as is
            loop = gmsh.model.geo.addSurfaceLoop([surf])
            gmsh.model.geo.addVolume([loop])
            gmsh.model.geo.synchronize()

            if mesh_size is not None:
                gmsh.option.setNumber("Mesh.MeshSizeMax", mesh_size)

            gmsh.model.mesh.generate(3)

            node_tags, coord_flat, _ = gmsh.model.mesh.getNodes()
            node_tags = np.asarray(node_tags, dtype=np.int64)
            coords = np.asarray(coord_flat, dtype=np.float64).reshape(-1, 3)
            _, tet_nodes = gmsh.model.mesh.getElementsByType(_GMSH_TET4)
            tets = np.asarray(tet_nodes, dtype=np.int64).reshape(-1, 4)
        except Exception:
            logger.exception("Tetrahedralization failed")
            raise
        finally:
            gmsh.finalize()

        if tets.size == 0:
            raise RuntimeError("Gmsh produced no tetrahedra; is the surface closed?")

        nodes, elements = self._remap_indices(node_tags, coords, tets)

        if not np.allclose(nodes[:n_s], surface_nodes, rtol=1e-12, atol=0.0):
            raise RuntimeError("Gmsh moved or reordered boundary vertices.")

        elements = self._orient(nodes, elements)

        logger.info(
            "Generated TET4 mesh: %d nodes (%d on surface), %d elements",
            nodes.shape[0],
            n_s,
            elements.shape[0],
        )

        return TetMesh(
            nodes=nodes,
            elements=elements,
            surface_tris=surface_tris,
            n_surface_nodes=n_s,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _remap_indices(
        node_tags: NDArray[np.int64],
        coords: NDArray[np.float64],
        tets: NDArray[np.int64],
    ) -> tuple[NDArray[np.float64], NDArray[np.int64]]:
        """Sort nodes by Gmsh tag and renumber the connectivity 0-based."""
        order = np.argsort(node_tags, kind="stable")
        sorted_tags = node_tags[order]

        tag_to_idx = np.full(int(sorted_tags.max()) + 1, -1, dtype=np.int64)
        tag_to_idx[sorted_tags] = np.arange(sorted_tags.size)

        elements = tag_to_idx[tets]
        if np.any(elements < 0):
            raise RuntimeError("Volume element references unmapped node tag")
        return coords[order], elements

    @staticmethod
    def _orient(
        nodes: NDArray[np.float64],
        elements: NDArray[np.int64],
    ) -> NDArray[np.int64]:
        """Swap two vertices of negatively oriented tetrahedra."""
        vol = TET4Element.signed_volumes(nodes[elements])
        flipped = vol < 0.0
        if np.any(flipped):
            elements = elements.copy()
            elements[flipped, 2], elements[flipped, 3] = (
                elements[flipped, 3].copy(),
                elements[flipped, 2].copy(),
            )
        return elements

    @staticmethod
    def _validate_inputs(
        surface_nodes: NDArray[np.float64],
        surface_tris: NDArray[np.int64],
        mesh_size: Optional[float],
    ) -> None:
        if surface_nodes.ndim != 2 or surface_nodes.shape[1] != 3:
            raise ValueError(f"Surface nodes must be (N, 3), got {surface_nodes.shape}.")
        if surface_tris.ndim != 2 or surface_tris.shape[1] != 3 or surface_tris.shape[0] < 4:
            raise ValueError(
                f"A closed surface needs at least 4 triangles of 3 indices, got "
                f"{surface_tris.shape}."
            )
        if surface_tris.min() < 0 or surface_tris.max() >= surface_nodes.shape[0]:
            raise ValueError("Surface triangles reference missing vertices.")
        mesh_io.check_referenced_vertices(surface_nodes, surface_tris)
        if mesh_size is not None and mesh_size <= 0.0:
            raise ValueError(f"mesh_size must be positive, got {mesh_size!r}.")
