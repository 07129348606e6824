"""Fixed-node selection and free-DOF partitioning.

Vertices are fixed either by explicit (0-based) index or by axis-aligned
boxes. A fixed vertex ``i`` removes its whole DOF triplet
``[3*i, 3*i+1, 3*i+2]`` from the eigenproblem; the remaining free DOFs are
returned in ascending order so that restriction and scatter agree.
"""
from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from modal_basis.fea.errors import UnsupportedConstraintSpecError
from modal_basis.fea.results import ConstraintSet

logger = logging.getLogger(__name__)

_DOF_PER_NODE = 3


def dof_triplets(vertex_indices: Sequence[int]) -> NDArray[np.int64]:
    """Expand vertex indices to their (x, y, z) DOF indices.

    >>> dof_triplets([0, 2]).tolist()
    [0, 1, 2, 6, 7, 8]
    """
    idx = np.asarray(vertex_indices, dtype=np.int64).reshape(-1)
    offsets = np.arange(_DOF_PER_NODE, dtype=np.int64)
    return (_DOF_PER_NODE * idx[:, None] + offsets[None, :]).reshape(-1)


def parse_box(box) -> NDArray[np.float64]:
    """Validate a box and return it as a (2, 3) ``[min, max]`` array.

    Accepts either six numbers ``(xmin, ymin, zmin, xmax, ymax, zmax)`` or a
    pair of 3-vectors.
    """
    try:
        arr = np.asarray(box, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise UnsupportedConstraintSpecError(
            f"Box {box!r} is not numeric."
        ) from exc

    if arr.size != 6:
        raise UnsupportedConstraintSpecError(
            f"Box must have 6 values (xmin ymin zmin xmax ymax zmax), got {arr.size}."
        )
    arr = arr.reshape(2, 3)
    if not np.all(np.isfinite(arr)):
        raise UnsupportedConstraintSpecError(f"Box {arr.tolist()} has non-finite bounds.")
    if np.any(arr[0] > arr[1]):
        raise UnsupportedConstraintSpecError(
            f"Box {arr.tolist()} has a minimum corner above its maximum corner."
        )
    return arr


def box_roi(
    nodes: NDArray[np.float64],
    boxes: Sequence,
    surface_tris: Optional[NDArray[np.int64]] = None,
) -> NDArray[np.int64]:
    """Return indices of the vertices inside any of ``boxes``.

    Containment is inclusive. Results are concatenated box by box, so a
    vertex inside two overlapping boxes is reported twice. When
    ``surface_tris`` is given only vertices referenced by a triangle are
    candidates.
    """
    nodes = np.asarray(nodes, dtype=np.float64)
    if surface_tris is not None:
        candidates = np.unique(np.asarray(surface_tris, dtype=np.int64))
    else:
        candidates = np.arange(nodes.shape[0], dtype=np.int64)

    points = nodes[candidates]
    hits = []
    for box in boxes:
        lo, hi = parse_box(box)
        inside = np.all((points >= lo) & (points <= hi), axis=1)
        hits.append(candidates[inside])

    if not hits:
        return np.zeros(0, dtype=np.int64)
    return np.concatenate(hits)


class ConstraintSelector:
    """Resolve the fixed vertex set and the complementary free DOFs."""

    def select(
        self,
        n_nodes: int,
        indices: Sequence[int] = (),
        boxes: Sequence = (),
        nodes: Optional[NDArray[np.float64]] = None,
        surface_tris: Optional[NDArray[np.int64]] = None,
    ) -> ConstraintSet:
        """Build the :class:`ConstraintSet` for a mesh of ``n_nodes`` vertices.

        Raises
        ------
        UnsupportedConstraintSpecError
            If both indices and boxes are given, boxes are given without
            node positions, or any index/box is malformed.
        """
        indices = list(indices) if indices is not None else []
        boxes = list(boxes) if boxes is not None else []

        if indices and boxes:
            raise UnsupportedConstraintSpecError(
                "Fixed vertices may be given by indices or by boxes, not both."
            )

        if boxes:
            if nodes is None:
                raise UnsupportedConstraintSpecError(
                    "Box constraints require node positions."
                )
            if np.asarray(nodes).shape[0] != n_nodes:
                raise UnsupportedConstraintSpecError(
                    f"Node array has {np.asarray(nodes).shape[0]} rows, expected {n_nodes}."
                )
            raw = box_roi(nodes, boxes, surface_tris)
            logger.debug("Box selection returned %d vertex hits", raw.size)
        else:
            raw = self._validate_indices(indices, n_nodes)

        fixed_nodes = np.unique(raw)
        if raw.size != fixed_nodes.size:
            logger.debug(
                "Collapsed %d duplicate fixed vertex indices",
                raw.size - fixed_nodes.size,
            )
        if boxes and fixed_nodes.size == 0:
            logger.warning(
                "Fixed-region boxes %s contain no vertices; solving unconstrained.",
                boxes,
            )

        fixed_dofs = dof_triplets(fixed_nodes)
        free_mask = np.ones(_DOF_PER_NODE * n_nodes, dtype=bool)
        free_mask[fixed_dofs] = False
        free_dofs = np.flatnonzero(free_mask).astype(np.int64)

        logger.info(
            "Constraints: %d fixed vertices, %d free of %d DOFs",
            fixed_nodes.size,
            free_dofs.size,
            free_mask.size,
        )

        return ConstraintSet(
            n_nodes=n_nodes,
            fixed_nodes=fixed_nodes,
            fixed_dofs=fixed_dofs,
            free_dofs=free_dofs,
        )

    @staticmethod
    def _validate_indices(indices: list, n_nodes: int) -> NDArray[np.int64]:
        if not indices:
            return np.zeros(0, dtype=np.int64)

        arr = np.asarray(indices)
        if arr.dtype == bool or not (
            np.issubdtype(arr.dtype, np.integer)
            or (np.issubdtype(arr.dtype, np.floating) and np.all(np.mod(arr, 1) == 0))
        ):
            raise UnsupportedConstraintSpecError(
                f"Fixed vertex indices must be integers, got {indices!r}."
            )
        arr = arr.astype(np.int64).reshape(-1)
        bad = arr[(arr < 0) | (arr >= n_nodes)]
        if bad.size:
            raise UnsupportedConstraintSpecError(
                f"Fixed vertex indices out of range [0, {n_nodes}): {bad.tolist()}."
            )
        return arr
