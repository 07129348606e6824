"""Binary modal record writer and reader.

Record layout (big-endian, no headers, matrices row-major)::

    #  field                       shape          type
    1  surface vertex positions    (n_S, 3)       float64
    2  surface triangles           (n_F, 3)       int32
    3  generalized mass Mi         (k,)           float64
    4  total mass                  scalar         float64
    5  inertia tensor, row-major   (9,)           float64
    6  center of mass              (3,)           float64
    7  gravity projection UTMg     (k,)           float64
    8  generalized stiffness Ki    (k,)           float64
    9  surface mode shapes SU      (3 * n_S, k)   float64

The consumer knows ``n_S``, ``n_F`` and ``k`` from the mesh and the mode
count; field order is the only framing.
"""
from __future__ import annotations

import logging
import os
import stat
import tempfile

import numpy as np

from modal_basis.fea.results import ModalData

logger = logging.getLogger(__name__)


def _target_mode(path: str) -> int:
    """Permission bits for a record at ``path``.

    An existing record keeps its mode. A new one gets the mode a plain
    ``open(path, "wb")`` would give it.
    """
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


_FLOAT = np.dtype(">f8")
_INT = np.dtype(">i4")


def record_size(n_surface_nodes: int, n_faces: int, n_modes: int) -> int:
    """Size in bytes of a record with the given extents."""
    n_floats = (
        3 * n_surface_nodes      # SV
        + n_modes                # Mi
        + 1 + 9 + 3              # total mass, inertia, com
        + 2 * n_modes            # UTMg, Ki
        + 3 * n_surface_nodes * n_modes  # SU
    )
    return n_floats * _FLOAT.itemsize + 3 * n_faces * _INT.itemsize


class ModalDataSerializer:
    """Write and read the fixed-order modal record."""

    @staticmethod
    def encode(data: ModalData) -> bytes:
        n_s = data.surface_nodes.shape[0]
        k = data.n_modes
        tris = np.asarray(data.surface_tris)
        if tris.size and (tris.min() < np.iinfo(np.int32).min or tris.max() > np.iinfo(np.int32).max):
            raise ValueError("Surface triangle indices do not fit in int32.")

        fields = [
            (np.asarray(data.surface_nodes).reshape(n_s, 3), _FLOAT),
            (tris.reshape(-1, 3), _INT),
            (np.asarray(data.generalized_mass).reshape(k), _FLOAT),
            (np.asarray([data.total_mass]), _FLOAT),
            (np.asarray(data.inertia_flat).reshape(9), _FLOAT),
            (np.asarray(data.center_of_mass).reshape(3), _FLOAT),
            (np.asarray(data.gravity_projection).reshape(k), _FLOAT),
            (np.asarray(data.generalized_stiffness).reshape(k), _FLOAT),
            (np.asarray(data.surface_mode_shapes).reshape(3 * n_s, k), _FLOAT),
        ]
        return b"".join(
            np.ascontiguousarray(arr, dtype=dtype).tobytes(order="C")
            for arr, dtype in fields
        )

    def write(self, data: ModalData, path: str) -> str:
        """Write ``data`` to ``path`` atomically and return the path.

        The bytes are encoded completely before anything touches the disk,
        then written to a temporary file that replaces ``path`` in one step.
        """
        payload = self.encode(data)
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            dir=directory, prefix=".modal-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.chmod(tmp_path, _target_mode(path))
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

        logger.info("Wrote modal record (%d bytes, %d modes) to %s", len(payload), data.n_modes, path)
        return path

    @staticmethod
    def decode(
        payload: bytes,
        n_surface_nodes: int,
        n_faces: int,
        n_modes: int,
    ) -> ModalData:
        expected = record_size(n_surface_nodes, n_faces, n_modes)
        if len(payload) != expected:
            raise ValueError(
                f"Record is {len(payload)} bytes, expected {expected} for "
                f"n_S={n_surface_nodes}, n_F={n_faces}, k={n_modes}."
            )

        offset = 0

        def take(count: int, dtype: np.dtype) -> np.ndarray:
            nonlocal offset
            arr = np.frombuffer(payload, dtype=dtype, count=count, offset=offset)
            offset += count * dtype.itemsize
            return arr.astype(dtype.newbyteorder("="))

        n_s, k = n_surface_nodes, n_modes
        return ModalData(
            surface_nodes=take(3 * n_s, _FLOAT).reshape(n_s, 3),
            surface_tris=take(3 * n_faces, _INT).reshape(n_faces, 3),
            generalized_mass=take(k, _FLOAT),
            total_mass=float(take(1, _FLOAT)[0]),
            inertia_flat=take(9, _FLOAT),
            center_of_mass=take(3, _FLOAT),
            gravity_projection=take(k, _FLOAT),
            generalized_stiffness=take(k, _FLOAT),
            surface_mode_shapes=take(3 * n_s * k, _FLOAT).reshape(3 * n_s, k),
        )

    def read(
        self,
        path: str,
        n_surface_nodes: int,
        n_faces: int,
        n_modes: int,
    ) -> ModalData:
        with open(path, "rb") as f:
            payload = f.read()
        return self.decode(payload, n_surface_nodes, n_faces, n_modes)
