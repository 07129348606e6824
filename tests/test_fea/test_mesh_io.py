"""Tests for mesh reading/writing and the companion-mesh lookup."""
from __future__ import annotations

import meshio
import numpy as np
import pytest

from modal_basis.fea import mesh_io
from modal_basis.fea.errors import MissingCompanionMeshError, ModalBasisError


def _write_surface(path, nodes, tris):
    meshio.write(str(path), meshio.Mesh(points=nodes, cells=[("triangle", tris)]))


class TestJoinCorners:
    def test_stl_style_corners_are_merged(self):
        points = np.array(
            [
                [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0],
                [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0],
            ]
        )
        faces = np.array([[0, 1, 2], [3, 4, 5]])
        merged, new_faces = mesh_io.join_corners(points, faces)
        np.testing.assert_array_equal(
            merged, [[0, 0, 0], [1, 0, 0], [0, 1, 0], [1, 1, 0]]
        )
        np.testing.assert_array_equal(new_faces, [[0, 1, 2], [1, 3, 2]])

    def test_no_duplicates_is_identity(self):
        points = np.array([[2.0, 0.0, 0.0], [0.0, 0.0, 0.0], [0.0, 3.0, 0.0]])
        faces = np.array([[0, 1, 2]])
        merged, new_faces = mesh_io.join_corners(points, faces)
        np.testing.assert_array_equal(merged, points)
        np.testing.assert_array_equal(new_faces, faces)


class TestBoundaryFaces:
    def test_single_tet(self):
        faces = mesh_io.boundary_faces(np.array([[0, 1, 2, 3]]))
        assert faces.shape == (4, 3)

    def test_shared_face_removed(self):
        faces = mesh_io.boundary_faces(np.array([[0, 1, 2, 3], [1, 2, 3, 4]]))
        assert faces.shape == (6, 3)
        keys = {tuple(sorted(f)) for f in faces.tolist()}
        assert (1, 2, 3) not in keys

    def test_outward_orientation(self, unit_cube_mesh):
        nodes = unit_cube_mesh.nodes
        faces = mesh_io.boundary_faces(unit_cube_mesh.elements)
        tri = nodes[faces]
        normals = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
        outward = tri.mean(axis=1) - 0.5
        assert np.all(np.einsum("ij,ij->i", normals, outward) > 0.0)


class TestSurfaceMesh:
    def test_obj_keeps_vertex_order(self, unit_cube_mesh, tmp_path):
        nodes = unit_cube_mesh.surface_nodes
        path = tmp_path / "cube.obj"
        _write_surface(path, nodes, unit_cube_mesh.surface_tris)

        sv, sf = mesh_io.load_surface_mesh(str(path))
        np.testing.assert_allclose(sv, nodes)
        np.testing.assert_array_equal(sf, unit_cube_mesh.surface_tris)

    def test_stl_shares_vertices(self, unit_cube_mesh, tmp_path):
        path = tmp_path / "cube.stl"
        _write_surface(path, unit_cube_mesh.surface_nodes, unit_cube_mesh.surface_tris)

        sv, sf = mesh_io.load_surface_mesh(str(path))
        assert sv.shape == (8, 3)
        assert sf.shape == (12, 3)
        expected = np.sort(unit_cube_mesh.surface_nodes[unit_cube_mesh.surface_tris], axis=None)
        np.testing.assert_allclose(np.sort(sv[sf], axis=None), expected)

    def test_wrong_extension(self, tmp_path):
        with pytest.raises(ValueError, match="surface mesh"):
            mesh_io.load_surface_mesh(str(tmp_path / "cube.ply"))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            mesh_io.load_surface_mesh(str(tmp_path / "nothing.obj"))


class TestVolumeMesh:
    def test_write_read(self, box_mesh, tmp_path):
        path = str(tmp_path / "box.msh")
        mesh_io.write_volume_mesh(path, box_mesh.nodes, box_mesh.elements, box_mesh.surface_tris)

        nodes, tets, tris = mesh_io.load_volume_mesh(path)
        np.testing.assert_allclose(nodes, box_mesh.nodes)
        np.testing.assert_array_equal(tets, box_mesh.elements)
        np.testing.assert_array_equal(tris, box_mesh.surface_tris)

    def test_boundary_faces_when_no_triangles(self, unit_cube_mesh, tmp_path):
        path = str(tmp_path / "tets_only.msh")
        meshio.write(
            path,
            meshio.Mesh(points=unit_cube_mesh.nodes, cells=[("tetra", unit_cube_mesh.elements)]),
            file_format="gmsh22",
            binary=False,
        )
        _, _, tris = mesh_io.load_volume_mesh(path)
        assert tris.shape == (12, 3)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            mesh_io.load_volume_mesh(str(tmp_path / "none.msh"))


class TestCompanionSurface:
    def test_obj_preferred(self, tmp_path):
        (tmp_path / "part.obj").write_text("")
        (tmp_path / "part.stl").write_text("")
        found = mesh_io.find_companion_surface(str(tmp_path / "part.msh"))
        assert found.endswith("part.obj")

    def test_stl_fallback(self, tmp_path):
        (tmp_path / "part.stl").write_text("")
        found = mesh_io.find_companion_surface(str(tmp_path / "part.msh"))
        assert found.endswith("part.stl")

    def test_missing(self, tmp_path):
        with pytest.raises(MissingCompanionMeshError, match="part"):
            mesh_io.find_companion_surface(str(tmp_path / "part.msh"))

    def test_missing_is_file_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            mesh_io.find_companion_surface(str(tmp_path / "part.msh"))
        assert issubclass(MissingCompanionMeshError, ModalBasisError)


class TestSurfacePrefix:
    def test_prefix_ok(self, box_mesh):
        assert mesh_io.check_surface_prefix(box_mesh.nodes, box_mesh.surface_nodes)

    def test_prefix_mismatch_warns(self, box_mesh, caplog):
        with caplog.at_level("WARNING"):
            ok = mesh_io.check_surface_prefix(box_mesh.nodes, box_mesh.surface_nodes[::-1])
        assert not ok
        assert "prefix" in caplog.text

    def test_surface_larger_than_volume(self, unit_cube_mesh):
        with pytest.raises(ValueError):
            mesh_io.check_surface_prefix(
                unit_cube_mesh.nodes[:4], unit_cube_mesh.surface_nodes
            )


class TestReferencedVertices:
    def test_all_used(self, box_mesh):
        mesh_io.check_referenced_vertices(box_mesh.surface_nodes, box_mesh.surface_tris)

    def test_stray_vertex(self, unit_cube_mesh):
        nodes = np.vstack([unit_cube_mesh.surface_nodes, [[5.0, 5.0, 5.0]]])
        with pytest.raises(ValueError, match=r"not referenced.*\[8\]"):
            mesh_io.check_referenced_vertices(nodes, unit_cube_mesh.surface_tris)


class TestModeShapeExport:
    def test_vtu(self, unit_cube_mesh, tmp_path):
        U = np.arange(unit_cube_mesh.n_dof * 2, dtype=float).reshape(-1, 2)
        path = mesh_io.write_mode_shapes_vtu(
            str(tmp_path / "cube.modes.vtu"), unit_cube_mesh.nodes, unit_cube_mesh.elements, U
        )
        back = meshio.read(path)
        assert set(back.point_data) == {"mode_0", "mode_1"}
        np.testing.assert_allclose(back.point_data["mode_1"], U[:, 1].reshape(-1, 3))
