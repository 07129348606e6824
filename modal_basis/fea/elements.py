"""TET4 linear tetrahedral element formulation.

Implements the 4-node constant-strain tetrahedron with:
- Linear shape functions (barycentric coordinates)
- Constant shape-function gradients from the inverse of the
  ``[1 x y z]`` coordinate matrix
- Strain-displacement (B) matrix (6x12)
- Element stiffness matrix ``K_e = V * B^T D B`` (12x12)
- Lumped element mass: a quarter of ``rho * V`` on each node

Voigt ordering: [eps_xx, eps_yy, eps_zz, gamma_xy, gamma_yz, gamma_xz].
DOF ordering per element: [u0x, u0y, u0z, u1x, ..., u3z].

All methods are vectorized over a leading element axis so a whole mesh can
be processed in one call.
"""
from __future__ import annotations

import numpy as np
from numpy.typing import NDArray


class TET4Element:
    """4-node linear tetrahedral finite element (TET4).

    Each node has 3 translational DOFs, giving 12 DOFs per element.
    """

    N_NODES: int = 4
    N_DOF: int = 12

    # Elements with |V| below this fraction of the cubed longest edge are
    # considered degenerate.
    DEGENERATE_RTOL: float = 1e-12

    # -------------------------------------------------------------------------
    # Geometry
    # -------------------------------------------------------------------------
    @staticmethod
    def signed_volumes(coords: NDArray[np.float64]) -> NDArray[np.float64]:
        """Signed volumes of tetrahedra.

        Parameters
        ----------
        coords : NDArray[np.float64]
            (E, 4, 3) nodal coordinates.

        Returns
        -------
        NDArray[np.float64]
            (E,) signed volumes, positive for right-handed node order.
        """
        e1 = coords[:, 1] - coords[:, 0]
        e2 = coords[:, 2] - coords[:, 0]
        e3 = coords[:, 3] - coords[:, 0]
        return np.einsum("ij,ij->i", np.cross(e1, e2), e3) / 6.0

    def degenerate_mask(self, coords: NDArray[np.float64]) -> NDArray[np.bool_]:
        """Flag tetrahedra whose volume is negligible against their size."""
        vol = np.abs(self.signed_volumes(coords))
        edges = coords[:, 1:] - coords[:, :1]
        scale = np.max(np.linalg.norm(edges, axis=2), axis=1) ** 3
        return vol <= self.DEGENERATE_RTOL * np.maximum(scale, np.finfo(float).tiny)

    @staticmethod
    def gradients(coords: NDArray[np.float64]) -> NDArray[np.float64]:
        """Shape-function gradients.

        The linear shape functions satisfy ``[1 x y z] @ C = I`` with
        ``C = inv([1 x y z])``; rows 1..3 of ``C`` hold ``dN/dx, dN/dy, dN/dz``.

        Returns
        -------
        NDArray[np.float64]
            (E, 4, 3) array, ``[e, a, :]`` = gradient of N_a.
        """
        n_elem = coords.shape[0]
        A = np.ones((n_elem, 4, 4), dtype=np.float64)
        A[:, :, 1:] = coords
        C = np.linalg.inv(A)  # (E, 4, 4)
        return np.transpose(C[:, 1:, :], (0, 2, 1))

    # -------------------------------------------------------------------------
    # Strain-displacement matrix
    # -------------------------------------------------------------------------
    @staticmethod
    def strain_displacement(grads: NDArray[np.float64]) -> NDArray[np.float64]:
        """Build the (E, 6, 12) B matrices from shape-function gradients."""
        n_elem = grads.shape[0]
        B = np.zeros((n_elem, 6, 12), dtype=np.float64)
        for a in range(4):
            dNx = grads[:, a, 0]
            dNy = grads[:, a, 1]
            dNz = grads[:, a, 2]
            col = 3 * a
            B[:, 0, col] = dNx
            B[:, 1, col + 1] = dNy
            B[:, 2, col + 2] = dNz
            B[:, 3, col] = dNy
            B[:, 3, col + 1] = dNx
            B[:, 4, col + 1] = dNz
            B[:, 4, col + 2] = dNy
            B[:, 5, col] = dNz
            B[:, 5, col + 2] = dNx
        return B

    # -------------------------------------------------------------------------
    # Element matrices
    # -------------------------------------------------------------------------
    def stiffness_matrices(
        self,
        coords: NDArray[np.float64],
        D: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """(E, 12, 12) element stiffness matrices ``|V| * B^T D B``."""
        vol = np.abs(self.signed_volumes(coords))
        B = self.strain_displacement(self.gradients(coords))
        return np.einsum("eki,kl,elj,e->eij", B, D, B, vol)

    def lumped_masses(
        self,
        coords: NDArray[np.float64],
        rho: float,
    ) -> NDArray[np.float64]:
        """(E,) mass carried by each of an element's four nodes."""
        return rho * np.abs(self.signed_volumes(coords)) / 4.0

    @staticmethod
    def isotropic_elasticity_matrix(E: float, nu: float) -> NDArray[np.float64]:
        """Build the 6x6 isotropic linear-elastic constitutive matrix.

        Parameters
        ----------
        E : float
            Young's modulus [Pa].
        nu : float
            Poisson's ratio [-].
        """
        lam = E * nu / ((1.0 + nu) * (1.0 - 2.0 * nu))
        mu = E / (2.0 * (1.0 + nu))

        D = np.array([
            [lam + 2 * mu, lam,          lam,          0.0, 0.0, 0.0],
            [lam,          lam + 2 * mu, lam,          0.0, 0.0, 0.0],
            [lam,          lam,          lam + 2 * mu, 0.0, 0.0, 0.0],
            [0.0,          0.0,          0.0,          mu,  0.0, 0.0],
            [0.0,          0.0,          0.0,          0.0, mu,  0.0],
            [0.0,          0.0,          0.0,          0.0, 0.0, mu ],
        ], dtype=np.float64)

        return D

    def __repr__(self) -> str:
        return f"TET4Element(nodes={self.N_NODES}, dofs={self.N_DOF})"
