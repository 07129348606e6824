"""Tests for mode normalization and the Ki / (2 Mi) rescaling."""
from __future__ import annotations

import numpy as np
import pytest

from modal_basis.fea.assembler import GlobalAssembler
from modal_basis.fea.config import Material
from modal_basis.fea.errors import IllConditionedSystemError
from modal_basis.fea.normalizer import (
    ModeNormalizer,
    generalized_diagonals,
    normalize_columns,
)
from modal_basis.fea.solver import ModalSolver, expand_lumped_mass


class TestNormalizeColumns:
    def test_unit_norm(self):
        U = np.array([[3.0, 0.0], [4.0, 2.0]])
        out = normalize_columns(U)
        np.testing.assert_allclose(np.linalg.norm(out, axis=0), [1.0, 1.0])
        np.testing.assert_allclose(out[:, 0], [0.6, 0.8])

    def test_idempotent_on_unit_columns(self):
        rng = np.random.default_rng(11)
        once = normalize_columns(rng.standard_normal((9, 4)))
        np.testing.assert_allclose(normalize_columns(once), once, rtol=1e-15, atol=0.0)

    def test_zero_column(self):
        with pytest.raises(IllConditionedSystemError, match="zero"):
            normalize_columns(np.array([[1.0, 0.0], [0.0, 0.0]]))


class TestGeneralizedDiagonals:
    def test_matches_explicit_products(self):
        rng = np.random.default_rng(7)
        U = rng.standard_normal((6, 3))
        A = rng.standard_normal((6, 6))
        K = A @ A.T
        m = rng.uniform(1.0, 2.0, 6)
        Mi, Ki = generalized_diagonals(U, K, m)
        np.testing.assert_allclose(Mi, np.diag(U.T @ np.diag(m) @ U))
        np.testing.assert_allclose(Ki, np.diag(U.T @ K @ U))


class TestModeNormalizer:
    def test_diagonal_system(self):
        # Unit columns give Mi = (1, 2), Ki = (2, 8) and scale factors (1, 2)
        K = np.diag([2.0, 8.0])
        m = np.array([1.0, 2.0])
        out = ModeNormalizer().normalize(np.eye(2), K, m)
        np.testing.assert_allclose(out.mode_shapes, np.diag([1.0, 2.0]))
        np.testing.assert_allclose(out.generalized_mass, [1.0, 8.0])
        np.testing.assert_allclose(out.generalized_stiffness, [2.0, 32.0])

    def test_input_scale_does_not_matter(self):
        K = np.diag([2.0, 8.0])
        m = np.array([1.0, 2.0])
        a = ModeNormalizer().normalize(np.eye(2), K, m)
        b = ModeNormalizer().normalize(-5.0 * np.eye(2), K, m)
        np.testing.assert_allclose(np.abs(a.mode_shapes), np.abs(b.mode_shapes))
        np.testing.assert_allclose(a.generalized_mass, b.generalized_mass)

    def test_non_positive_mass(self):
        with pytest.raises(IllConditionedSystemError, match="generalized mass"):
            ModeNormalizer().normalize(np.eye(2), np.eye(2), np.array([1.0, -1.0]))

    def test_finite_element_modes(self, box_mesh):
        material = Material()
        K, mass = GlobalAssembler(box_mesh, material).assemble()
        eigen = ModalSolver().solve(K, mass, 4)
        m_dof = expand_lumped_mass(mass, box_mesh.n_dof)

        out = ModeNormalizer().normalize(eigen.mode_shapes, K, m_dof)

        # Ki / Mi is the eigenvalue whatever the column scale
        np.testing.assert_allclose(
            out.generalized_stiffness / out.generalized_mass, eigen.eigenvalues, rtol=1e-8
        )
        # Unit-norm columns were scaled by lambda / 2
        np.testing.assert_allclose(
            np.linalg.norm(out.mode_shapes, axis=0), eigen.eigenvalues / 2.0, rtol=1e-8
        )
        # Scaling per column keeps M-orthogonality
        UtMU = out.mode_shapes.T @ (m_dof[:, None] * out.mode_shapes)
        off_diag = UtMU - np.diag(np.diag(UtMU))
        assert np.abs(off_diag).max() < 1e-8 * np.abs(np.diag(UtMU)).max()
