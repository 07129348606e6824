"""Rigid-body mass properties from the lumped mass field."""
from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from modal_basis.fea.errors import IllConditionedSystemError
from modal_basis.fea.results import RigidBodyProperties


class RigidBodyPropertyComputer:
    """Total mass, center of mass and inertia tensor of a point-mass cloud.

    Every vertex carries its lumped mass; the inertia tensor is taken about
    the center of mass::

        J = sum_i m_i * ((r_i . r_i) I - r_i r_i^T),   r_i = V_i - com
    """

    def compute(
        self,
        nodes: NDArray[np.float64],
        mass: NDArray[np.float64],
    ) -> RigidBodyProperties:
        """
        Parameters
        ----------
        nodes : NDArray[np.float64]
            (N, 3) vertex positions.
        mass : NDArray[np.float64]
            Per-vertex masses (N,) or the per-DOF vector (3N,), in which case
            the z entry of each triplet is used.
        """
        nodes = np.asarray(nodes, dtype=np.float64)
        m = self.vertex_masses(mass, nodes.shape[0])

        total_mass = float(np.sum(m))
        if not total_mass > 0.0:
            raise IllConditionedSystemError(
                f"Total mass must be positive, got {total_mass!r}."
            )

        com = (m @ nodes) / total_mass
        r = nodes - com
        r_sq = np.einsum("ij,ij->i", r, r)
        inertia = np.eye(3) * float(m @ r_sq) - np.einsum("i,ij,ik->jk", m, r, r)

        return RigidBodyProperties(
            total_mass=total_mass,
            center_of_mass=com,
            inertia=inertia,
        )

    @staticmethod
    def vertex_masses(mass: NDArray[np.float64], n_nodes: int) -> NDArray[np.float64]:
        mass = np.asarray(mass, dtype=np.float64).reshape(-1)
        if mass.size == n_nodes:
            return mass
        if mass.size == 3 * n_nodes:
            return mass[2::3]
        raise ValueError(
            f"Mass vector of length {mass.size} does not match {n_nodes} vertices."
        )
