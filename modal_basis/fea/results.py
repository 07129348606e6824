"""Modal basis result container dataclasses."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np


@dataclass
class ConstraintSet:
    """Fixed vertices and the resulting fixed/free DOF partition."""
    n_nodes: int
    fixed_nodes: np.ndarray        # (n_fixed,) sorted unique vertex indices
    fixed_dofs: np.ndarray         # (3 * n_fixed,) ascending
    free_dofs: np.ndarray          # complement of fixed_dofs, ascending

    @property
    def n_dof(self) -> int:
        return 3 * self.n_nodes

    @property
    def is_constrained(self) -> bool:
        return self.fixed_dofs.size > 0


@dataclass
class EigenResult:
    """Retained eigenpairs scattered back to the full DOF space."""
    eigenvalues: np.ndarray        # (k,) ascending by magnitude
    mode_shapes: np.ndarray        # (n_dof, k), zero rows on fixed DOFs
    free_dofs: np.ndarray
    discarded_eigenvalues: np.ndarray = field(
        default_factory=lambda: np.zeros(0)
    )
    rigid_body_check_passed: bool = True
    backend: str = ""
    solve_time_s: float = 0.0

    @property
    def n_modes(self) -> int:
        return self.mode_shapes.shape[1]

    @property
    def frequencies_hz(self) -> np.ndarray:
        """Eigenfrequencies, with tiny negative eigenvalues clamped to zero."""
        return np.sqrt(np.maximum(self.eigenvalues, 0.0)) / (2.0 * np.pi)


@dataclass
class NormalizedModes:
    """Rescaled mode shapes and their generalized mass/stiffness."""
    mode_shapes: np.ndarray        # (n_dof, k)
    generalized_mass: np.ndarray   # Mi, (k,)
    generalized_stiffness: np.ndarray  # Ki, (k,)


@dataclass
class RigidBodyProperties:
    total_mass: float
    center_of_mass: np.ndarray     # (3,)
    inertia: np.ndarray            # (3, 3) symmetric

    @property
    def inertia_flat(self) -> np.ndarray:
        """Row-major flattened inertia tensor."""
        return np.ascontiguousarray(self.inertia).reshape(9)


@dataclass
class ModalData:
    """The nine fields of the serialized modal record, in file order."""
    surface_nodes: np.ndarray          # SV, (n_S, 3) float64
    surface_tris: np.ndarray           # SF, (n_F, 3) int32
    generalized_mass: np.ndarray       # Mi, (k,)
    total_mass: float
    inertia_flat: np.ndarray           # (9,)
    center_of_mass: np.ndarray         # (3,)
    gravity_projection: np.ndarray     # UTMg, (k,)
    generalized_stiffness: np.ndarray  # Ki, (k,)
    surface_mode_shapes: np.ndarray    # SU, (3 * n_S, k)

    @property
    def n_modes(self) -> int:
        return self.generalized_mass.shape[0]


@dataclass
class ModalBasisResult:
    """End-to-end pipeline result."""
    data: ModalData
    eigen: EigenResult
    modes: NormalizedModes
    rigid_body: RigidBodyProperties
    constraints: ConstraintSet
    output_path: Optional[str] = None
    volume_mesh_path: Optional[str] = None
    vtu_path: Optional[str] = None
    solve_time_s: float = 0.0
    metadata: dict = field(default_factory=dict)
