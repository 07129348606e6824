"""Global sparse stiffness and lumped mass assembly for TET4 meshes.

Algorithm
---------
1. Gather the (E, 4, 3) element coordinates from ``mesh.nodes``.
2. Drop degenerate (zero-volume) tetrahedra with a warning.
3. Compute all element stiffness matrices K_e (12x12) at once via
   ``TET4Element`` and the lumped node mass ``rho * V / 4``.
4. Build the DOF map: node ``idx`` maps to DOFs
   ``[3*idx, 3*idx+1, 3*idx+2]``.
5. Scatter K_e into COO arrays, convert to CSR (duplicates are summed).
6. Accumulate node masses with ``np.bincount``; the mass stays a vector,
   one scalar per vertex.
"""
from __future__ import annotations

import logging
import time

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray

from modal_basis.fea.config import Material, TetMesh
from modal_basis.fea.elements import TET4Element

logger = logging.getLogger(__name__)

_NODES_PER_ELEM = 4
_DOFS_PER_ELEM = 12


class GlobalAssembler:
    """Assemble the global stiffness matrix and lumped mass vector.

    Parameters
    ----------
    mesh : TetMesh
        Linear tetrahedral mesh with nodes in meters.
    material : Material
        Elastic constants and density.

    Raises
    ------
    ValueError
        If the connectivity is not (E, 4) or references missing nodes.
    """

    def __init__(self, mesh: TetMesh, material: Material) -> None:
        elements = np.asarray(mesh.elements)
        if elements.ndim != 2 or elements.shape[1] != _NODES_PER_ELEM:
            raise ValueError(
                f"GlobalAssembler requires (E, 4) TET4 connectivity, got shape "
                f"{elements.shape}."
            )
        if elements.size and (elements.min() < 0 or elements.max() >= mesh.n_nodes):
            raise ValueError("Element connectivity references nodes outside the mesh.")

        self._mesh = mesh
        self._material = material
        self._element = TET4Element()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def assemble(self) -> tuple[sp.csr_matrix, NDArray[np.float64]]:
        """Assemble global K and the per-vertex lumped mass.

        Returns
        -------
        K : scipy.sparse.csr_matrix, shape (n_dof, n_dof)
            Global stiffness matrix.
        mass : NDArray[np.float64], shape (n_nodes,)
            Lumped mass of every vertex [kg].
        """
        t0 = time.perf_counter()

        mesh = self._mesh
        mat = self._material
        n_nodes = mesh.n_nodes
        n_dof = mesh.n_dof

        elements = np.asarray(mesh.elements, dtype=np.int64)
        coords = np.asarray(mesh.nodes, dtype=np.float64)[elements]  # (E, 4, 3)

        degenerate = self._element.degenerate_mask(coords)
        n_skipped = int(np.sum(degenerate))
        if n_skipped > 0:
            logger.warning(
                "Skipped %d degenerate elements out of %d total",
                n_skipped,
                elements.shape[0],
            )
            elements = elements[~degenerate]
            coords = coords[~degenerate]

        D = TET4Element.isotropic_elasticity_matrix(mat.young_pa, mat.poisson)
        Ke = self._element.stiffness_matrices(coords, D)  # (E, 12, 12)
        node_mass = self._element.lumped_masses(coords, mat.density_kg_m3)  # (E,)

        # Node idx -> DOFs [3*idx, 3*idx+1, 3*idx+2]
        dof_map = (3 * elements[:, :, None] + np.arange(3)[None, None, :]).reshape(
            -1, _DOFS_PER_ELEM
        )
        rows = np.repeat(dof_map, _DOFS_PER_ELEM, axis=1).ravel()
        cols = np.tile(dof_map, (1, _DOFS_PER_ELEM)).ravel()

        K_csr = sp.coo_matrix(
            (Ke.ravel(), (rows, cols)), shape=(n_dof, n_dof)
        ).tocsr()
        K_csr.eliminate_zeros()

        mass = np.bincount(
            elements.ravel(),
            weights=np.repeat(node_mass, _NODES_PER_ELEM),
            minlength=n_nodes,
        )

        n_massless = int(np.sum(mass <= 0.0))
        if n_massless:
            logger.warning(
                "%d vertices belong to no (non-degenerate) element and carry no mass",
                n_massless,
            )

        elapsed = time.perf_counter() - t0
        logger.info(
            "Assembled global matrices: %d DOFs, %d elements, K nnz=%d, "
            "total mass=%.6g kg, time=%.3fs",
            n_dof,
            elements.shape[0],
            K_csr.nnz,
            float(mass.sum()),
            elapsed,
        )

        return K_csr, mass

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def mesh(self) -> TetMesh:
        return self._mesh

    @property
    def material(self) -> Material:
        return self._material

    def __repr__(self) -> str:
        return (
            f"GlobalAssembler(n_nodes={self._mesh.n_nodes}, "
            f"n_elements={np.asarray(self._mesh.elements).shape[0]}, "
            f"n_dof={self._mesh.n_dof})"
        )
