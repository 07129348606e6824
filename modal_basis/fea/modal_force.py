"""Projection of a unit gravity load onto the modal basis."""
from __future__ import annotations

from typing import Optional

import numpy as np
from numpy.typing import NDArray

# y is the vertical axis; gravity points towards -y
_GRAVITY_AXIS = 1


def gravity_field(n_dof: int) -> NDArray[np.float64]:
    """Unit downward acceleration: -1 on every y DOF, 0 elsewhere.

    Scaling by the actual gravitational acceleration is left to the consumer.
    """
    if n_dof % 3:
        raise ValueError(f"DOF count {n_dof} is not a multiple of 3.")
    g = np.zeros(n_dof, dtype=np.float64)
    g[_GRAVITY_AXIS::3] = -1.0
    return g


class ModalForceProjector:
    """Generalized modal forces ``U^T M g`` for a gravity load."""

    def project(
        self,
        U: NDArray[np.float64],
        m_dof: NDArray[np.float64],
        g: Optional[NDArray[np.float64]] = None,
    ) -> NDArray[np.float64]:
        if g is None:
            g = gravity_field(U.shape[0])
        return U.T @ (m_dof * g)
