"""Generalized symmetric eigensolver back ends.

Contract shared by every back end: given a symmetric stiffness ``K``, a
strictly positive lumped mass vector ``m`` (one entry per DOF) and ``k``,
return the ``k`` eigenpairs of ``K phi = lambda diag(m) phi`` with the
smallest ``|lambda|``, ordered by ascending ``|lambda|``.

Two implementations are provided:

* :class:`DenseEigensolver` -- ``scipy.linalg.eigh`` on the mass-scaled
  standard problem ``D^-1/2 K D^-1/2``; exact and robust for small meshes.
* :class:`ShiftInvertEigensolver` -- shift-invert Lanczos
  (``scipy.sparse.linalg.eigsh``) around a small negative shift so that a
  singular free-free ``K`` can still be factorized.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional, Union

import numpy as np
import scipy.linalg as sla
import scipy.sparse as sp
import scipy.sparse.linalg as spla
from numpy.typing import NDArray

from modal_basis.fea.config import SolverOptions
from modal_basis.fea.errors import IllConditionedSystemError

logger = logging.getLogger(__name__)

MatrixLike = Union[NDArray[np.float64], sp.spmatrix]

# Seed of the Lanczos start vector; fixed so repeated runs return identical modes.
_START_VECTOR_SEED = 0


def sort_by_magnitude(
    eigenvalues: NDArray[np.float64],
    eigenvectors: NDArray[np.float64],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Order eigenpairs by ascending ``|lambda|`` (stable for ties)."""
    order = np.argsort(np.abs(eigenvalues), kind="stable")
    return eigenvalues[order], eigenvectors[:, order]


class GeneralizedEigensolver(ABC):
    """Abstract base for smallest-magnitude generalized eigensolvers."""

    name: str = "abstract"

    @abstractmethod
    def solve(
        self,
        K: MatrixLike,
        m: NDArray[np.float64],
        k: int,
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Return ``(eigenvalues (k,), eigenvectors (n, k))``."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class DenseEigensolver(GeneralizedEigensolver):
    """Full symmetric-definite solve; O(n^3), meant for small systems."""

    name = "dense"

    def solve(
        self,
        K: MatrixLike,
        m: NDArray[np.float64],
        k: int,
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        n = m.shape[0]
        if k > n:
            raise ValueError(f"Cannot extract {k} eigenpairs from a {n}-DOF system.")

        K_dense = K.toarray() if sp.issparse(K) else np.asarray(K, dtype=np.float64)

        # K phi = lambda M phi  <=>  (D K D) psi = lambda psi, phi = D psi, D = M^-1/2
        d = 1.0 / np.sqrt(m)
        A = d[:, None] * K_dense * d[None, :]
        A = 0.5 * (A + A.T)

        try:
            eigenvalues, psi = sla.eigh(A)
        except sla.LinAlgError as exc:
            raise IllConditionedSystemError(
                f"Dense eigensolver failed on a {n}-DOF system: {exc}"
            ) from exc

        eigenvalues, psi = sort_by_magnitude(eigenvalues, psi)
        return eigenvalues[:k], d[:, None] * psi[:, :k]


class ShiftInvertEigensolver(GeneralizedEigensolver):
    """Shift-invert Lanczos via ARPACK for large sparse systems.

    Parameters
    ----------
    shift_scale : float
        The shift is ``-shift_scale * max|diag(K)| / max(m)``.
    tolerance : float
        ARPACK relative accuracy.
    max_iterations : int or None
        ARPACK iteration cap.
    """

    name = "sparse"

    def __init__(
        self,
        shift_scale: float = 1e-8,
        tolerance: float = 0.0,
        max_iterations: Optional[int] = None,
    ) -> None:
        self.shift_scale = shift_scale
        self.tolerance = tolerance
        self.max_iterations = max_iterations

    def shift(self, K: MatrixLike, m: NDArray[np.float64]) -> float:
        diag = K.diagonal() if sp.issparse(K) else np.diag(K)
        scale = float(np.max(np.abs(diag))) / float(np.max(m))
        return -self.shift_scale * scale

    def solve(
        self,
        K: MatrixLike,
        m: NDArray[np.float64],
        k: int,
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        n = m.shape[0]
        if k >= n - 1:
            raise ValueError(
                f"Lanczos needs k < n - 1; got k={k} for a {n}-DOF system. "
                "Use the dense back end."
            )

        K_csc = sp.csc_matrix(K)
        M_csc = sp.diags(m, format="csc")
        sigma = self.shift(K_csc, m)
        v0 = np.random.default_rng(_START_VECTOR_SEED).standard_normal(n)

        logger.debug("eigsh: n=%d, k=%d, sigma=%.6e", n, k, sigma)

        try:
            eigenvalues, eigenvectors = spla.eigsh(
                K_csc,
                k=k,
                M=M_csc,
                sigma=sigma,
                which="LM",
                v0=v0,
                tol=self.tolerance,
                maxiter=self.max_iterations,
            )
        except spla.ArpackNoConvergence as exc:
            raise IllConditionedSystemError(
                f"Eigenvalue solver failed to converge: {len(exc.eigenvalues)} of "
                f"{k} eigenpairs converged (sigma={sigma:.6e})."
            ) from exc
        except (spla.ArpackError, RuntimeError) as exc:
            # splu raises RuntimeError when K - sigma*M is exactly singular
            raise IllConditionedSystemError(
                f"Eigenvalue solver failed (sigma={sigma:.6e}): {exc}"
            ) from exc

        return sort_by_magnitude(np.real(eigenvalues), np.real(eigenvectors))

    def __repr__(self) -> str:
        return (
            f"ShiftInvertEigensolver(shift_scale={self.shift_scale}, "
            f"tolerance={self.tolerance}, max_iterations={self.max_iterations})"
        )


def make_eigensolver(options: SolverOptions, n: int, k: int) -> GeneralizedEigensolver:
    """Pick the back end requested by ``options`` for an ``n``-DOF, ``k``-pair solve."""
    choice = options.eigensolver
    if choice == "auto":
        choice = "dense" if (n <= options.dense_threshold or k >= n - 1) else "sparse"
    elif choice == "sparse" and k >= n - 1:
        logger.warning(
            "Sparse eigensolver cannot extract %d pairs from %d DOFs; using dense.",
            k,
            n,
        )
        choice = "dense"

    if choice == "dense":
        return DenseEigensolver()
    return ShiftInvertEigensolver(
        shift_scale=options.shift_scale,
        tolerance=options.tolerance,
        max_iterations=options.max_iterations,
    )
