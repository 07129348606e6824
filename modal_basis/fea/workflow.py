"""End-to-end modal basis workflow.

Orchestrates the complete precomputation:

1. **Mesh** -- load a volume mesh (with its companion surface) or
   tetrahedralize a surface mesh and store the result as ``.msh``.
2. **Assembly** -- linear-elastic stiffness and lumped mass.
3. **Constraints** -- fixed vertices from indices or boxes.
4. **Eigen-solve** -- lowest flexible modes, rigid-body modes removed.
5. **Normalization** -- unit norm, then ``Ki / (2 Mi)`` scaling.
6. **Rigid body / gravity** -- mass properties and modal gravity forces.
7. **Serialization** -- one atomic write of the binary record.

Every step runs before anything is written, so a failure leaves no record
behind. Each step delegates to its dedicated module; this module only
passes data between them.
"""
from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Optional

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray

from modal_basis.core.logger import StructuredLogger
from modal_basis.fea import mesh_io
from modal_basis.fea.assembler import GlobalAssembler
from modal_basis.fea.config import ModalBasisConfig, TetMesh
from modal_basis.fea.constraints import ConstraintSelector
from modal_basis.fea.modal_force import ModalForceProjector
from modal_basis.fea.normalizer import ModeNormalizer
from modal_basis.fea.results import ModalBasisResult, ModalData
from modal_basis.fea.rigid_body import RigidBodyPropertyComputer
from modal_basis.fea.serializer import ModalDataSerializer
from modal_basis.fea.solver import ModalSolver, expand_lumped_mass, symmetrize

logger = logging.getLogger(__name__)

DEFAULT_SUFFIX = ".modal.bin"


def default_output_path(mesh_path: str, suffix: str = DEFAULT_SUFFIX) -> str:
    """``<dir>/<stem><suffix>`` next to the input mesh."""
    return os.path.splitext(mesh_path)[0] + suffix


class ModalBasisWorkflow:
    """Run the modal basis pipeline for one mesh.

    Parameters
    ----------
    config : ModalBasisConfig, optional
        Mode count, constraints, material and solver options.
    structured_logger : StructuredLogger, optional
        When given, each run is recorded in ``operations.jsonl`` and
        ``calculations.jsonl``.
    """

    def __init__(
        self,
        config: Optional[ModalBasisConfig] = None,
        structured_logger: Optional[StructuredLogger] = None,
    ) -> None:
        self.config = config or ModalBasisConfig()
        self.structured_logger = structured_logger
        self.selector = ConstraintSelector()
        self.solver = ModalSolver(self.config.solver)
        self.normalizer = ModeNormalizer()
        self.rigid_body = RigidBodyPropertyComputer()
        self.projector = ModalForceProjector()
        self.serializer = ModalDataSerializer()

    # ------------------------------------------------------------------
    # Mesh loading
    # ------------------------------------------------------------------
    def load_mesh(
        self,
        mesh_path: str,
        mesh_size: Optional[float] = None,
    ) -> tuple[TetMesh, Optional[str]]:
        """Return the volume mesh for ``mesh_path`` and, if one was
        generated, the path of the written ``.msh``."""
        ext = os.path.splitext(mesh_path)[1].lower()

        if ext in mesh_io.VOLUME_EXTENSIONS:
            nodes, elements, _ = mesh_io.load_volume_mesh(mesh_path)
            companion = mesh_io.find_companion_surface(mesh_path)
            surface_nodes, surface_tris = mesh_io.load_surface_mesh(companion)
            mesh_io.check_surface_prefix(nodes, surface_nodes)
            mesh = TetMesh(
                nodes=nodes,
                elements=elements,
                surface_tris=surface_tris,
                n_surface_nodes=surface_nodes.shape[0],
            )
            return mesh, None

        if ext in mesh_io.SURFACE_EXTENSIONS:
            # Imported lazily: gmsh is only needed when a volume must be generated
            from modal_basis.fea.mesher import GmshMesher

            surface_nodes, surface_tris = mesh_io.load_surface_mesh(mesh_path)
            mesh = GmshMesher().tetrahedralize(surface_nodes, surface_tris, mesh_size)
            msh_path = os.path.splitext(mesh_path)[0] + ".msh"
            mesh_io.write_volume_mesh(msh_path, mesh.nodes, mesh.elements, mesh.surface_tris)
            return mesh, msh_path

        raise ValueError(
            f"Unsupported mesh format {ext!r}. Expected one of "
            f"{mesh_io.SURFACE_EXTENSIONS + mesh_io.VOLUME_EXTENSIONS}."
        )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    def run_file(
        self,
        mesh_path: str,
        output_path: Optional[str] = None,
        export_vtu: bool = False,
        mesh_size: Optional[float] = None,
    ) -> ModalBasisResult:
        """Load ``mesh_path``, compute the modal basis and write the record."""
        mesh, msh_path = self.load_mesh(mesh_path, mesh_size)
        output_path = output_path or default_output_path(mesh_path)
        result = self.run(mesh, output_path=output_path, source=mesh_path)
        result.volume_mesh_path = msh_path

        if export_vtu:
            vtu_path = os.path.splitext(mesh_path)[0] + ".modes.vtu"
            result.vtu_path = mesh_io.write_mode_shapes_vtu(
                vtu_path, mesh.nodes, mesh.elements, result.modes.mode_shapes
            )
        return result

    def run(
        self,
        mesh: TetMesh,
        output_path: Optional[str] = None,
        source: Optional[str] = None,
    ) -> ModalBasisResult:
        """Assemble, solve and (if ``output_path`` is set) serialize."""
        run_id = uuid.uuid4().hex
        if self.structured_logger is not None:
            self.structured_logger.log_operation(
                run_id, "modal_basis.started", data={"source": source}
            )

        K, mass = GlobalAssembler(mesh, self.config.material).assemble()
        result = self.compute(mesh, K, mass)

        if output_path is not None:
            result.output_path = self.serializer.write(result.data, output_path)

        if self.structured_logger is not None:
            self.structured_logger.log_calculation(
                run_id,
                inputs=self._summarize_inputs(mesh, source),
                outputs=self._summarize_outputs(result),
                validation={
                    "rigid_body_check_passed": result.eigen.rigid_body_check_passed,
                },
            )
        return result

    def compute(
        self,
        mesh: TetMesh,
        K: sp.spmatrix,
        mass: NDArray[np.float64],
    ) -> ModalBasisResult:
        """Run the numerical core on pre-assembled ``K`` and lumped ``mass``."""
        t_start = time.perf_counter()
        cfg = self.config

        constraints = self.selector.select(
            mesh.n_nodes,
            indices=cfg.fixed_indices,
            boxes=cfg.fixed_boxes,
            nodes=mesh.nodes,
            surface_tris=mesh.surface_tris,
        )

        K = symmetrize(K)
        m_dof = expand_lumped_mass(mass, mesh.n_dof)

        eigen = self.solver.solve(
            K,
            m_dof,
            cfg.n_modes,
            free_dofs=constraints.free_dofs if constraints.is_constrained else None,
        )
        modes = self.normalizer.normalize(eigen.mode_shapes, K, m_dof)
        rigid = self.rigid_body.compute(mesh.nodes, m_dof)
        utmg = self.projector.project(modes.mode_shapes, m_dof)

        n_s = mesh.n_surface_nodes
        data = ModalData(
            surface_nodes=np.asarray(mesh.surface_nodes, dtype=np.float64),
            surface_tris=np.asarray(mesh.surface_tris, dtype=np.int32),
            generalized_mass=modes.generalized_mass,
            total_mass=rigid.total_mass,
            inertia_flat=rigid.inertia_flat,
            center_of_mass=rigid.center_of_mass,
            gravity_projection=utmg,
            generalized_stiffness=modes.generalized_stiffness,
            surface_mode_shapes=modes.mode_shapes[: 3 * n_s, :],
        )

        t_elapsed = time.perf_counter() - t_start
        logger.info(
            "Modal basis complete: %d modes in %.2f s, frequencies %.3f - %.3f Hz",
            eigen.n_modes,
            t_elapsed,
            eigen.frequencies_hz[0],
            eigen.frequencies_hz[-1],
        )

        return ModalBasisResult(
            data=data,
            eigen=eigen,
            modes=modes,
            rigid_body=rigid,
            constraints=constraints,
            solve_time_s=t_elapsed,
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def _summarize_inputs(self, mesh: TetMesh, source: Optional[str]) -> dict:
        cfg = self.config
        return {
            "source": source,
            "n_nodes": mesh.n_nodes,
            "n_elements": int(np.asarray(mesh.elements).shape[0]),
            "n_surface_nodes": mesh.n_surface_nodes,
            "n_modes": cfg.n_modes,
            "young_pa": cfg.young_pa,
            "poisson": cfg.poisson,
            "density_kg_m3": cfg.density_kg_m3,
            "fixed_indices": list(cfg.fixed_indices),
            "fixed_boxes": [list(box) for box in cfg.fixed_boxes],
        }

    @staticmethod
    def _summarize_outputs(result: ModalBasisResult) -> dict:
        return {
            "eigenvalues": result.eigen.eigenvalues.tolist(),
            "frequencies_hz": result.eigen.frequencies_hz.tolist(),
            "total_mass": result.rigid_body.total_mass,
            "center_of_mass": result.rigid_body.center_of_mass.tolist(),
            "n_fixed_nodes": int(result.constraints.fixed_nodes.size),
            "backend": result.eigen.backend,
            "output_path": result.output_path,
        }
