"""Constrained generalized eigen-solve for the modal basis.

Algorithm overview
------------------
1. Symmetrize the stiffness matrix: ``K <- (K + K^T) / 2``.
2. Expand the lumped mass to one entry per DOF (x, y, z share a mass).
3. **Constrained**: gather the principal submatrix ``K[free][:, free]`` and
   ``m[free]``, request ``k`` smallest-magnitude eigenpairs, and scatter the
   eigenvectors into a zero ``(n_dof, k)`` matrix at the free rows.
4. **Unconstrained**: request ``k + 6`` pairs on the whole system, sort by
   magnitude and drop the first six (3 translations + 3 infinitesimal
   rotations).
5. Reject solves whose eigenvalues are clearly negative (K not positive
   semi-definite on the free DOFs).

The discarded rigid-body eigenvalues are only *checked*, never corrected:
when one of them is not negligible against the smallest retained eigenvalue
the body was probably not truly free, and a warning is logged.
"""
from __future__ import annotations

import logging
import time
from typing import Optional, Sequence, Union

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray

from modal_basis.fea.config import SolverOptions
from modal_basis.fea.eigensolver import make_eigensolver, sort_by_magnitude
from modal_basis.fea.errors import IllConditionedSystemError, InsufficientDOFError
from modal_basis.fea.results import EigenResult

logger = logging.getLogger(__name__)

N_RIGID_BODY_MODES = 6  # 3 translations + 3 rotations

MatrixLike = Union[NDArray[np.float64], sp.spmatrix]


def symmetrize(K: MatrixLike) -> sp.csr_matrix:
    """Return ``(K + K^T) / 2`` as CSR."""
    K = sp.csr_matrix(K, dtype=np.float64)
    return ((K + K.T) * 0.5).tocsr()


def expand_lumped_mass(mass: NDArray[np.float64], n_dof: int) -> NDArray[np.float64]:
    """Return the per-DOF mass vector.

    ``mass`` may already be per-DOF (length ``n_dof``) or per-vertex
    (length ``n_dof // 3``), in which case each entry is repeated for x, y, z.
    """
    mass = np.asarray(mass, dtype=np.float64).reshape(-1)
    if mass.size == n_dof:
        return mass.copy()
    if 3 * mass.size == n_dof:
        return np.repeat(mass, 3)
    raise ValueError(
        f"Mass vector of length {mass.size} does not match {n_dof} DOFs "
        f"(expected {n_dof} or {n_dof // 3})."
    )


def restrict(
    K: sp.csr_matrix,
    m_dof: NDArray[np.float64],
    free_dofs: NDArray[np.int64],
) -> tuple[sp.csr_matrix, NDArray[np.float64]]:
    """Principal-submatrix extraction; the inputs are left untouched."""
    K_ff = K[free_dofs][:, free_dofs].tocsr()
    return K_ff, m_dof[free_dofs]


class ModalSolver:
    """Solve for the lowest flexible modes of a (possibly constrained) solid.

    Parameters
    ----------
    options : SolverOptions, optional
        Back end selection and numerical tolerances.
    """

    def __init__(self, options: Optional[SolverOptions] = None) -> None:
        self.options = options or SolverOptions()

    def solve(
        self,
        K: MatrixLike,
        mass: NDArray[np.float64],
        n_modes: int,
        free_dofs: Optional[Sequence[int]] = None,
    ) -> EigenResult:
        """Compute ``n_modes`` eigenpairs.

        Parameters
        ----------
        K : sparse or dense matrix, shape (n_dof, n_dof)
            Assembled stiffness matrix (symmetrized here).
        mass : NDArray[np.float64]
            Lumped mass, per vertex or per DOF.
        n_modes : int
            Number of flexible modes to keep (k >= 1).
        free_dofs : sequence of int, optional
            Free DOF indices. ``None`` or the full range means unconstrained.

        Returns
        -------
        EigenResult

        Raises
        ------
        InsufficientDOFError
            If fewer free DOFs remain than eigenpairs are needed.
        IllConditionedSystemError
            If the system is unusable or the eigensolver fails.
        """
        t_start = time.perf_counter()

        if n_modes < 1:
            raise ValueError(f"n_modes must be at least 1, got {n_modes}.")
        if K.shape[0] != K.shape[1]:
            raise ValueError(f"Stiffness matrix must be square, got {K.shape}.")

        n_dof = K.shape[0]
        K = symmetrize(K)
        m_dof = expand_lumped_mass(mass, n_dof)

        if not np.all(np.isfinite(K.data)) or not np.all(np.isfinite(m_dof)):
            raise IllConditionedSystemError("Stiffness or mass contains non-finite entries.")

        if free_dofs is None:
            free = np.arange(n_dof, dtype=np.int64)
        else:
            free = np.unique(np.asarray(free_dofs, dtype=np.int64))
            if free.size and (free[0] < 0 or free[-1] >= n_dof):
                raise ValueError(f"Free DOF indices out of range [0, {n_dof}).")
        constrained = free.size < n_dof

        n_extra = 0 if constrained else N_RIGID_BODY_MODES
        n_request = n_modes + n_extra
        if free.size < n_request:
            raise InsufficientDOFError(free.size, n_request)

        if constrained:
            K_ff, m_ff = restrict(K, m_dof, free)
        else:
            K_ff, m_ff = K, m_dof

        if np.any(m_ff <= 0.0):
            raise IllConditionedSystemError(
                f"Lumped mass has {int(np.sum(m_ff <= 0.0))} non-positive entries "
                "on free DOFs; the mass matrix is not positive definite."
            )

        eigensolver = make_eigensolver(self.options, free.size, n_request)
        logger.info(
            "Solving %s eigenproblem: %d free DOFs, %d pairs requested, backend=%s",
            "constrained" if constrained else "unconstrained",
            free.size,
            n_request,
            eigensolver.name,
        )

        eigenvalues, vectors = eigensolver.solve(K_ff, m_ff, n_request)
        eigenvalues, vectors = sort_by_magnitude(eigenvalues, vectors)
        self._check_semidefinite(eigenvalues)

        discarded = np.zeros(0, dtype=np.float64)
        check_passed = True
        if not constrained:
            discarded = eigenvalues[:N_RIGID_BODY_MODES]
            eigenvalues = eigenvalues[N_RIGID_BODY_MODES:n_request]
            vectors = vectors[:, N_RIGID_BODY_MODES:n_request]
            check_passed = self._check_rigid_body_modes(discarded, eigenvalues)

        mode_shapes = np.zeros((n_dof, n_modes), dtype=np.float64)
        mode_shapes[free, :] = vectors

        t_elapsed = time.perf_counter() - t_start
        logger.info(
            "Eigen-solve complete in %.2f s: lambda range %.6e - %.6e",
            t_elapsed,
            eigenvalues[0],
            eigenvalues[-1],
        )

        return EigenResult(
            eigenvalues=eigenvalues,
            mode_shapes=mode_shapes,
            free_dofs=free,
            discarded_eigenvalues=discarded,
            rigid_body_check_passed=check_passed,
            backend=eigensolver.name,
            solve_time_s=t_elapsed,
        )

    def _check_semidefinite(self, eigenvalues: NDArray[np.float64]) -> None:
        scale = float(np.max(np.abs(eigenvalues))) if eigenvalues.size else 0.0
        floor = -self.options.negative_tolerance * scale
        if eigenvalues.size and eigenvalues.min() < floor:
            raise IllConditionedSystemError(
                f"Eigenvalue {eigenvalues.min():.6e} is negative beyond tolerance "
                f"({floor:.6e}); the stiffness matrix is not positive semi-definite "
                "on the free DOFs."
            )

    def _check_rigid_body_modes(
        self,
        discarded: NDArray[np.float64],
        retained: NDArray[np.float64],
    ) -> bool:
        """Flag discarded eigenvalues that do not look like rigid-body modes."""
        limit = self.options.rigid_body_tolerance * float(np.min(np.abs(retained)))
        worst = float(np.max(np.abs(discarded)))
        if worst <= limit:
            return True

        message = (
            f"Discarded rigid-body eigenvalue {worst:.6e} exceeds "
            f"{self.options.rigid_body_tolerance:g} x smallest retained eigenvalue "
            f"({limit:.6e}); the body may not be free or a flexible mode was dropped."
        )
        if self.options.strict_rigid_body_check:
            raise IllConditionedSystemError(message)
        logger.warning(message)
        return False
