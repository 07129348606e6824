"""ModalBasis command-line interface."""
from __future__ import annotations

import argparse
import logging
import sys

_VERSION = "0.1.0"


def _build_parser():
    parser = argparse.ArgumentParser(
        prog="modal-basis",
        description="Precompute a vibration modal basis for real-time modal sound synthesis",
    )
    parser.add_argument("--version", action="version", version="ModalBasis v%s" % _VERSION)

    sub = parser.add_subparsers(dest="command")

    comp = sub.add_parser("compute", help="Compute and serialize a modal basis")
    comp.add_argument("mesh", help="Surface (.stl, .obj) or volume (.msh) mesh in meters")
    comp.add_argument("--config", help="YAML file with 'modal', 'logging' and 'output' sections")
    comp.add_argument("--modes", type=int, help="Number of modes (default 10)")
    comp.add_argument("--young", type=float, help="Young's modulus in Pa (default 1e4)")
    comp.add_argument("--density", type=float, help="Density in kg/m^3 (default 5000)")
    comp.add_argument("--indices", type=int, nargs="+", metavar="I",
                      help="0-based indices of fixed vertices")
    comp.add_argument("--box", type=float, nargs=6, action="append",
                      metavar=("XMIN", "YMIN", "ZMIN", "XMAX", "YMAX", "ZMAX"),
                      help="Axis-aligned box of fixed vertices (repeatable)")
    comp.add_argument("--eigensolver", choices=["auto", "dense", "sparse"])
    comp.add_argument("--mesh-size", type=float,
                      help="Maximum tetrahedron size in meters for surface input")
    comp.add_argument("--output", help="Output record path (default <mesh>.modal.bin)")
    comp.add_argument("--export-vtu", action="store_true",
                      help="Also write the mode shapes to <mesh>.modes.vtu")
    comp.add_argument("--log-dir",
                      help="Directory for run logs (JSONL records), overrides logging.dir")
    comp.add_argument("--verbose", action="store_true", help="Log at DEBUG level")

    insp = sub.add_parser("inspect", help="Decode a modal record")
    insp.add_argument("record")
    insp.add_argument("--surface-nodes", type=int, required=True)
    insp.add_argument("--faces", type=int, required=True)
    insp.add_argument("--modes", type=int, required=True)

    return parser


def _modal_config(args):
    from modal_basis.core.config import AppConfig

    app_config = AppConfig(args.config)
    if args.modes is not None:
        app_config.set("modal.n_modes", args.modes)
    if args.young is not None:
        app_config.set("modal.young_pa", args.young)
    if args.density is not None:
        app_config.set("modal.density_kg_m3", args.density)
    if args.indices is not None or args.box is not None:
        # Command-line constraints replace the file's constraints
        app_config.set("modal.fixed_indices", args.indices or [])
        app_config.set("modal.fixed_boxes", args.box or [])
    if args.eigensolver is not None:
        app_config.set("modal.solver.eigensolver", args.eigensolver)
    return app_config


def _log_level(args, app_config):
    if getattr(args, "verbose", False):
        return logging.DEBUG
    level = app_config.get("logging.level", "WARNING") if app_config else "WARNING"
    if isinstance(level, bool) or not isinstance(level, (str, int)):
        raise ValueError("logging.level must be a level name or number, got %r" % (level,))
    return level.upper() if isinstance(level, str) else level


def _do_compute(args, app_config):
    from modal_basis.core.logger import StructuredLogger
    from modal_basis.fea.workflow import ModalBasisWorkflow, default_output_path

    config = app_config.modal_config()
    output_path = args.output or default_output_path(
        args.mesh, app_config.get("output.suffix", ".modal.bin")
    )

    structured_logger = None
    log_dir = args.log_dir or app_config.get("logging.dir")
    if log_dir:
        structured_logger = StructuredLogger(log_dir=str(log_dir))

    workflow = ModalBasisWorkflow(config, structured_logger=structured_logger)
    result = workflow.run_file(
        args.mesh,
        output_path=output_path,
        export_vtu=args.export_vtu or bool(app_config.get("output.export_vtu")),
        mesh_size=args.mesh_size,
    )

    eigen = result.eigen
    rigid = result.rigid_body
    print("=" * 60)
    print("  Modal Basis")
    print("=" * 60)
    print("  Mesh:           %s" % args.mesh)
    if result.volume_mesh_path:
        print("  Volume mesh:    %s" % result.volume_mesh_path)
    print("  Fixed vertices: %d" % result.constraints.fixed_nodes.size)
    print("  Eigensolver:    %s" % eigen.backend)
    print()
    print("  --- Modes ---")
    print("  %4s %16s %14s" % ("#", "eigenvalue", "frequency Hz"))
    for j, (lam, freq) in enumerate(zip(eigen.eigenvalues, eigen.frequencies_hz)):
        print("  %4d %16.6e %14.4f" % (j + 1, lam, freq))
    if not eigen.rigid_body_check_passed:
        print()
        print("  WARNING: discarded rigid-body eigenvalues are not negligible: %s"
              % ", ".join("%.3e" % v for v in eigen.discarded_eigenvalues))
    print()
    print("  --- Rigid Body ---")
    print("  Total mass:     %.6g kg" % rigid.total_mass)
    print("  Center of mass: %s" % " ".join("%.6g" % v for v in rigid.center_of_mass))
    print()
    print("  Record:         %s" % result.output_path)
    if result.vtu_path:
        print("  Mode shapes:    %s" % result.vtu_path)
    print("=" * 60)
    return 0


def _do_inspect(args):
    from modal_basis.fea.serializer import ModalDataSerializer

    data = ModalDataSerializer().read(args.record, args.surface_nodes, args.faces, args.modes)
    print("Surface vertices:      %s" % (data.surface_nodes.shape,))
    print("Surface faces:         %s" % (data.surface_tris.shape,))
    print("Generalized mass:      %s" % " ".join("%.6g" % v for v in data.generalized_mass))
    print("Total mass:            %.6g" % data.total_mass)
    print("Inertia (row-major):   %s" % " ".join("%.6g" % v for v in data.inertia_flat))
    print("Center of mass:        %s" % " ".join("%.6g" % v for v in data.center_of_mass))
    print("Gravity projection:    %s" % " ".join("%.6g" % v for v in data.gravity_projection))
    print("Generalized stiffness: %s" % " ".join("%.6g" % v for v in data.generalized_stiffness))
    print("Surface mode shapes:   %s" % (data.surface_mode_shapes.shape,))
    return 0


def main(argv=None):
    parser = _build_parser()
    args = parser.parse_args(argv)

    from modal_basis.fea.errors import ModalBasisError

    try:
        app_config = _modal_config(args) if args.command == "compute" else None
        logging.basicConfig(
            level=_log_level(args, app_config),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
        if args.command == "compute":
            return _do_compute(args, app_config)
        if args.command == "inspect":
            return _do_inspect(args)
    except (ModalBasisError, ValueError, FileNotFoundError) as exc:
        print("error: %s" % exc, file=sys.stderr)
        return 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
