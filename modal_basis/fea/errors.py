"""Exception hierarchy for the modal basis pipeline.

Every failure aborts the whole computation before anything is serialized.
Numerical failures are deterministic for a given input, so none of these
are retried.
"""
from __future__ import annotations


class ModalBasisError(RuntimeError):
    """Base class for all modal basis pipeline failures."""


class InsufficientDOFError(ModalBasisError):
    """Raised when fewer free DOFs remain than eigenpairs requested."""

    def __init__(self, n_free: int, n_requested: int) -> None:
        self.n_free = n_free
        self.n_requested = n_requested
        super().__init__(
            f"Only {n_free} free DOFs available but {n_requested} eigenpairs "
            "were requested. Reduce the mode count or the fixed region."
        )


class IllConditionedSystemError(ModalBasisError):
    """Raised when the (restricted) system cannot be handed to the eigensolver
    or the eigensolver fails to converge."""


class MissingCompanionMeshError(ModalBasisError, FileNotFoundError):
    """Raised when a volume mesh has no surface mesh next to it."""


class UnsupportedConstraintSpecError(ModalBasisError, ValueError):
    """Raised for conflicting or malformed fixed-node definitions."""
