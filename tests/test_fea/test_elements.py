"""Tests for the TET4 element formulation."""
from __future__ import annotations

import numpy as np
import pytest

from modal_basis.fea.elements import TET4Element

_REF_TET = np.array(
    [[[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]]
)


@pytest.fixture
def element() -> TET4Element:
    return TET4Element()


@pytest.fixture
def D() -> np.ndarray:
    return TET4Element.isotropic_elasticity_matrix(1e4, 0.48)


class TestGeometry:
    def test_reference_volume(self):
        assert TET4Element.signed_volumes(_REF_TET)[0] == pytest.approx(1.0 / 6.0)

    def test_inverted_volume_is_negative(self):
        flipped = _REF_TET[:, [0, 1, 3, 2]]
        assert TET4Element.signed_volumes(flipped)[0] == pytest.approx(-1.0 / 6.0)

    def test_gradients_of_reference_tet(self):
        grads = TET4Element.gradients(_REF_TET)[0]
        expected = np.array(
            [[-1.0, -1.0, -1.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]
        )
        np.testing.assert_allclose(grads, expected, atol=1e-12)

    def test_gradients_partition_of_unity(self):
        rng = np.random.default_rng(3)
        coords = _REF_TET + 0.1 * rng.standard_normal((1, 4, 3))
        grads = TET4Element.gradients(coords)
        np.testing.assert_allclose(grads.sum(axis=1), 0.0, atol=1e-10)

    def test_degenerate_mask(self, element):
        flat = np.array(
            [[[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [1.0, 1.0, 0.0]]]
        )
        mask = element.degenerate_mask(np.concatenate([_REF_TET, flat]))
        assert mask.tolist() == [False, True]


class TestElementMatrices:
    def test_strain_displacement_shape(self):
        B = TET4Element.strain_displacement(TET4Element.gradients(_REF_TET))
        assert B.shape == (1, 6, 12)

    def test_stiffness_symmetric(self, element, D):
        Ke = element.stiffness_matrices(_REF_TET, D)[0]
        assert Ke.shape == (12, 12)
        np.testing.assert_allclose(Ke, Ke.T, atol=1e-10)

    def test_six_rigid_body_modes(self, element, D):
        Ke = element.stiffness_matrices(_REF_TET, D)[0]
        eigvals = np.linalg.eigvalsh(Ke)
        scale = eigvals.max()
        assert np.sum(np.abs(eigvals) < 1e-10 * scale) == 6
        assert np.all(eigvals > -1e-10 * scale)

    def test_translation_is_stress_free(self, element, D):
        Ke = element.stiffness_matrices(_REF_TET, D)[0]
        u = np.tile([1.0, -2.0, 0.5], 4)
        np.testing.assert_allclose(Ke @ u, 0.0, atol=1e-9)

    def test_orientation_independent(self, element, D):
        a = element.stiffness_matrices(_REF_TET, D)[0]
        b = element.stiffness_matrices(_REF_TET[:, [0, 1, 3, 2]], D)[0]
        perm = np.r_[0:6, 9:12, 6:9]
        np.testing.assert_allclose(b, a[np.ix_(perm, perm)], atol=1e-10)

    def test_lumped_mass(self, element):
        np.testing.assert_allclose(element.lumped_masses(_REF_TET, 24.0), [1.0])


class TestElasticityMatrix:
    def test_lame_constants(self):
        E, nu = 200e9, 0.3
        D = TET4Element.isotropic_elasticity_matrix(E, nu)
        mu = E / (2 * (1 + nu))
        lam = E * nu / ((1 + nu) * (1 - 2 * nu))
        assert D[0, 0] == pytest.approx(lam + 2 * mu)
        assert D[0, 1] == pytest.approx(lam)
        assert D[3, 3] == pytest.approx(mu)
        np.testing.assert_allclose(D, D.T)

    def test_repr(self, element):
        assert "TET4Element" in repr(element)
