"""Finite element modal analysis of linear-elastic tetrahedral solids."""
from __future__ import annotations

from modal_basis.fea.config import Material, ModalBasisConfig, SolverOptions, TetMesh
from modal_basis.fea.errors import (
    IllConditionedSystemError,
    InsufficientDOFError,
    MissingCompanionMeshError,
    ModalBasisError,
    UnsupportedConstraintSpecError,
)
from modal_basis.fea.workflow import ModalBasisWorkflow

__all__ = [
    "Material",
    "ModalBasisConfig",
    "SolverOptions",
    "TetMesh",
    "ModalBasisError",
    "InsufficientDOFError",
    "IllConditionedSystemError",
    "MissingCompanionMeshError",
    "UnsupportedConstraintSpecError",
    "ModalBasisWorkflow",
]
