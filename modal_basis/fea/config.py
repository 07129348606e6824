"""Modal basis configuration dataclasses."""
from __future__ import annotations

import numbers
from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Optional

import numpy as np

# Poisson ratio used for every solid; nearly incompressible rubber-like material.
DEFAULT_POISSON = 0.48

_EIGENSOLVERS = ("auto", "dense", "sparse")


def _require_real(name: str, value: Any) -> float:
    """Reject values that are not finite real numbers (None, strings, NaN)."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real) or not np.isfinite(value):
        raise ValueError(f"{name} must be a finite number, got {value!r}.")
    return float(value)


@dataclass
class TetMesh:
    """Container for a linear tetrahedral mesh.

    The first ``n_surface_nodes`` rows of ``nodes`` are the surface vertices,
    addressed by the same indices as ``surface_tris``.
    """
    nodes: np.ndarray              # (N, 3) coordinates in meters
    elements: np.ndarray           # (E, 4) connectivity
    surface_tris: np.ndarray       # (F, 3) boundary triangles
    n_surface_nodes: int

    @property
    def n_nodes(self) -> int:
        return self.nodes.shape[0]

    @property
    def n_dof(self) -> int:
        """Total degrees of freedom (3 per node)."""
        return self.nodes.shape[0] * 3

    @property
    def surface_nodes(self) -> np.ndarray:
        return self.nodes[: self.n_surface_nodes]


@dataclass
class Material:
    """Isotropic linear-elastic material."""
    young_pa: float = 1e4
    poisson: float = DEFAULT_POISSON
    density_kg_m3: float = 5000.0

    def __post_init__(self) -> None:
        self.young_pa = _require_real("young_pa", self.young_pa)
        self.poisson = _require_real("poisson", self.poisson)
        self.density_kg_m3 = _require_real("density_kg_m3", self.density_kg_m3)
        if not self.young_pa > 0.0:
            raise ValueError(f"Young's modulus must be positive, got {self.young_pa!r}.")
        if not self.density_kg_m3 > 0.0:
            raise ValueError(f"Density must be positive, got {self.density_kg_m3!r}.")
        if not -1.0 < self.poisson < 0.5:
            raise ValueError(
                f"Poisson ratio must lie in (-1, 0.5), got {self.poisson!r}."
            )


@dataclass
class SolverOptions:
    """Options for the generalized eigen-solve.

    Parameters
    ----------
    eigensolver : str
        ``"dense"``, ``"sparse"`` (shift-invert Lanczos) or ``"auto"``.
    dense_threshold : int
        ``"auto"`` picks the dense back end up to this many DOFs.
    shift_scale : float
        Relative magnitude of the negative shift used by the sparse back end.
    tolerance : float
        ARPACK relative accuracy (0 means machine precision).
    max_iterations : int or None
        ARPACK iteration cap (None uses the ARPACK default).
    negative_tolerance : float
        Eigenvalues below ``-negative_tolerance * max|lambda|`` mark the
        system as not positive semi-definite.
    rigid_body_tolerance : float
        Discarded rigid-body eigenvalues must stay below this fraction of
        the smallest retained one.
    strict_rigid_body_check : bool
        Raise instead of warning when the rigid-body check fails.
    """
    eigensolver: str = "auto"
    dense_threshold: int = 600
    shift_scale: float = 1e-8
    tolerance: float = 0.0
    max_iterations: Optional[int] = None
    negative_tolerance: float = 1e-6
    rigid_body_tolerance: float = 1e-6
    strict_rigid_body_check: bool = False

    def __post_init__(self) -> None:
        if self.eigensolver not in _EIGENSOLVERS:
            raise ValueError(
                f"Unsupported eigensolver {self.eigensolver!r}. "
                f"Must be one of {_EIGENSOLVERS}."
            )
        for name in ("dense_threshold", "shift_scale", "tolerance",
                     "negative_tolerance", "rigid_body_tolerance"):
            _require_real(name, getattr(self, name))
        if self.max_iterations is not None:
            _require_real("max_iterations", self.max_iterations)
        if self.dense_threshold < 0:
            raise ValueError("dense_threshold must be non-negative.")
        if self.shift_scale < 0.0:
            raise ValueError("shift_scale must be non-negative.")


@dataclass
class ModalBasisConfig:
    """Recognised options of a modal basis computation and their defaults.

    ``fixed_indices`` and ``fixed_boxes`` are mutually exclusive. Boxes are
    ``(xmin, ymin, zmin, xmax, ymax, zmax)`` sequences in meters.
    """
    n_modes: int = 10
    fixed_indices: tuple = ()
    fixed_boxes: tuple = ()
    young_pa: float = 1e4
    poisson: float = DEFAULT_POISSON
    density_kg_m3: float = 5000.0
    solver: SolverOptions = field(default_factory=SolverOptions)

    def __post_init__(self) -> None:
        if (
            isinstance(self.n_modes, bool)
            or not isinstance(self.n_modes, numbers.Real)
            or not np.isfinite(self.n_modes)
            or int(self.n_modes) != self.n_modes
        ):
            raise ValueError(f"n_modes must be an integer, got {self.n_modes!r}.")
        self.n_modes = int(self.n_modes)
        if self.n_modes < 1:
            raise ValueError(f"n_modes must be at least 1, got {self.n_modes}.")
        self.fixed_indices = tuple(self.fixed_indices)
        self.fixed_boxes = tuple(self.fixed_boxes)
        if isinstance(self.solver, Mapping):
            self.solver = SolverOptions(**self.solver)
        elif not isinstance(self.solver, SolverOptions):
            raise ValueError(f"solver must be a mapping of options, got {self.solver!r}.")
        # Material errors surface here rather than after meshing
        self.material

    @property
    def material(self) -> Material:
        return Material(
            young_pa=self.young_pa,
            poisson=self.poisson,
            density_kg_m3=self.density_kg_m3,
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ModalBasisConfig":
        """Build a config from a plain mapping, rejecting unknown names."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(
                f"Unsupported parameter(s): {', '.join(unknown)}. "
                f"Recognised: {', '.join(sorted(known))}."
            )
        values = dict(data)
        solver = values.get("solver")
        if isinstance(solver, Mapping):
            solver_known = {f.name for f in fields(SolverOptions)}
            solver_unknown = sorted(set(solver) - solver_known)
            if solver_unknown:
                raise ValueError(
                    f"Unsupported solver parameter(s): {', '.join(solver_unknown)}."
                )
            values["solver"] = SolverOptions(**solver)
        return cls(**values)
