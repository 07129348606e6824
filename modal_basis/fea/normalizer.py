"""Mode shape normalization and physical rescaling.

The downstream real-time integrator expects each mode shape pre-scaled by
``Ki / (2 Mi)``, i.e. half the mode's squared angular frequency, computed
from the unit-norm shape. Scaling is per column, so the M-orthogonality of
the eigenvectors is preserved.
"""
from __future__ import annotations

import logging
from typing import Union

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray

from modal_basis.fea.errors import IllConditionedSystemError
from modal_basis.fea.results import NormalizedModes

logger = logging.getLogger(__name__)


def normalize_columns(U: NDArray[np.float64]) -> NDArray[np.float64]:
    """Return ``U`` with every column scaled to unit Euclidean norm."""
    norms = np.linalg.norm(U, axis=0)
    if np.any(norms == 0.0):
        raise IllConditionedSystemError(
            f"Mode shape column(s) {np.flatnonzero(norms == 0.0).tolist()} are zero."
        )
    return U / norms[None, :]


def generalized_diagonals(
    U: NDArray[np.float64],
    K: Union[NDArray[np.float64], sp.spmatrix],
    m_dof: NDArray[np.float64],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Return ``diag(U^T M U)`` and ``diag(U^T K U)`` without forming either product."""
    Mi = np.einsum("ij,i,ij->j", U, m_dof, U)
    Ki = np.einsum("ij,ij->j", U, np.asarray(K @ U))
    return Mi, Ki


class ModeNormalizer:
    """Unit-normalize mode shapes, then apply the ``Ki / (2 Mi)`` convention."""

    def normalize(
        self,
        U: NDArray[np.float64],
        K: Union[NDArray[np.float64], sp.spmatrix],
        m_dof: NDArray[np.float64],
    ) -> NormalizedModes:
        U = normalize_columns(np.asarray(U, dtype=np.float64))

        Mi, Ki = generalized_diagonals(U, K, m_dof)
        if np.any(Mi <= 0.0):
            raise IllConditionedSystemError(
                f"Non-positive generalized mass for mode(s) "
                f"{np.flatnonzero(Mi <= 0.0).tolist()}."
            )

        scale = Ki / (2.0 * Mi)
        logger.debug("Mode rescaling factors: %s", scale)
        U = U * scale[None, :]

        # U changed, so both diagonals change as well
        Mi, Ki = generalized_diagonals(U, K, m_dof)

        return NormalizedModes(
            mode_shapes=U,
            generalized_mass=Mi,
            generalized_stiffness=Ki,
        )
