"""Unit tests for smart_factors.slam.factors module.

Tests the three linearized representations (Hessian, implicit Schur,
Jacobian projector) against each other, the builder dispatch, and the
degenerate configurations.
"""

import numpy as np
import pytest

from smart_factors.exceptions import DegenerateConfiguration, InvalidArgument, ProjectionFailure
from smart_factors.slam import (
    FactorKind,
    ImplicitSchurFactor,
    JacobianProjectorFactor,
    PinholeCamera,
    Pose3,
    RegularHessianFactor,
    SmartFactor,
    SmartFactorParams,
    create_hessian_factor,
    create_implicit_schur_factor,
    create_projector_factor,
    linearize,
)

ALL_KINDS = [FactorKind.HESSIAN, FactorKind.IMPLICIT_SCHUR, FactorKind.JACOBIAN_PROJECTOR]


def build_all(factor, cameras, point, params=None):
    return [linearize(factor, cameras, point, kind, params) for kind in ALL_KINDS]


def random_perturbation(factor, scale=1e-3, seed=0):
    rng = np.random.default_rng(seed)
    return scale * rng.standard_normal(factor.dim * len(factor))


class TestBuilders:
    """Builder entry points and dispatch."""

    def test_linearize_dispatch(self, scene):
        factor, cameras, point = scene(num_views=3)
        hessian, implicit, projector = build_all(factor, cameras, point)
        assert isinstance(hessian, RegularHessianFactor)
        assert isinstance(implicit, ImplicitSchurFactor)
        assert isinstance(projector, JacobianProjectorFactor)

    def test_linearize_accepts_kind_value(self, scene):
        factor, cameras, point = scene(num_views=3)
        assert isinstance(linearize(factor, cameras, point, "implicit_schur"), ImplicitSchurFactor)

    def test_unknown_kind(self, scene):
        factor, cameras, point = scene(num_views=3)
        with pytest.raises(InvalidArgument, match="Unknown factor kind"):
            linearize(factor, cameras, point, "cholesky")

    def test_keys_and_dims(self, scene):
        factor, cameras, point = scene(num_views=4, dim=10)
        for linear in build_all(factor, cameras, point):
            assert linear.keys == ["x0", "x1", "x2", "x3"]
            assert linear.dim == 10
            assert linear.num_views == 4

    def test_hessian_block_count(self, scene):
        factor, cameras, point = scene(num_views=5)
        hessian = create_hessian_factor(factor, cameras, point)
        assert len(hessian.Gs) == 15
        assert len(hessian.gs) == 5

    def test_hessian_f_is_sum_of_squares(self, scene):
        factor, cameras, point = scene(num_views=3, sigma=0.5, pixel_noise=1.0)
        hessian = create_hessian_factor(factor, cameras, point)
        assert 0.5 * hessian.f == pytest.approx(factor.total_reprojection_error(cameras, point))

    def test_dense_and_sparse_methods_agree(self, scene):
        factor, cameras, point = scene(num_views=4, pixel_noise=0.5)
        dense = create_hessian_factor(
            factor, cameras, point, SmartFactorParams(schur_method="dense")
        )
        sparse = create_hessian_factor(factor, cameras, point)
        scale = np.abs(dense.information()).max()
        np.testing.assert_allclose(sparse.information(), dense.information(), atol=1e-9 * scale)

    def test_projection_failure_propagates(self, scene, intrinsics):
        factor, cameras, point = scene(num_views=3)
        cameras[2] = PinholeCamera(Pose3.from_euler(0.0, np.pi, 0.0, [0.0, 0.0, 0.0]), intrinsics)
        for kind in ALL_KINDS:
            with pytest.raises(ProjectionFailure) as info:
                linearize(factor, cameras, point, kind)
            assert info.value.view_index == 2


class TestRepresentationEquivalence:
    """The three forms describe the same quadratic over the view states."""

    @pytest.mark.parametrize("num_views", [3, 4, 6])
    @pytest.mark.parametrize("dim", [6, 10])
    def test_quadratic_forms_agree_up_to_constant(self, scene, num_views, dim):
        factor, cameras, point = scene(num_views=num_views, dim=dim, pixel_noise=1.0)
        forms = build_all(factor, cameras, point)
        x = random_perturbation(factor, seed=num_views)

        deltas = [linear.quadratic_form(x) - linear.quadratic_form(np.zeros_like(x))
                  for linear in forms]
        scale = max(abs(d) for d in deltas)
        np.testing.assert_allclose(deltas[1], deltas[0], atol=1e-7 * scale)
        np.testing.assert_allclose(deltas[2], deltas[0], atol=1e-7 * scale)

    def test_full_values_agree_when_noiseless(self, scene):
        """With Eᵀb = 0 the constants coincide as well."""
        factor, cameras, point = scene(num_views=4)
        forms = build_all(factor, cameras, point)
        x = random_perturbation(factor)
        values = [linear.quadratic_form(x) for linear in forms]
        np.testing.assert_allclose(values[1], values[0], rtol=1e-7)
        np.testing.assert_allclose(values[2], values[0], rtol=1e-7)

    def test_implicit_and_projector_constants_agree(self, scene):
        """Without damping both carry bᵀ (I - E (EᵀE)⁻¹ Eᵀ) b."""
        factor, cameras, point = scene(num_views=4, pixel_noise=1.0)
        _, implicit, projector = build_all(factor, cameras, point)
        assert implicit.constant_term() == pytest.approx(projector.constant_term(), rel=1e-8)

    def test_information_and_linear_term_agree(self, scene):
        factor, cameras, point = scene(num_views=4, pixel_noise=1.0)
        hessian, implicit, projector = build_all(factor, cameras, point)
        G = hessian.information()
        g = hessian.linear_term()
        for other in (implicit, projector):
            np.testing.assert_allclose(other.information(), G, atol=1e-8 * np.abs(G).max())
            np.testing.assert_allclose(other.linear_term(), g, atol=1e-8 * np.abs(g).max())

    def test_hessian_diagonal_agrees(self, scene):
        factor, cameras, point = scene(num_views=4, pixel_noise=1.0)
        hessian, implicit, projector = build_all(factor, cameras, point)
        reference = hessian.hessian_diagonal()
        assert list(reference) == factor.keys
        for other in (implicit, projector):
            diagonal = other.hessian_diagonal()
            for key, block in reference.items():
                scale = np.abs(block).max()
                np.testing.assert_allclose(diagonal[key], block, atol=1e-8 * scale)

    def test_multiply_hessian_matches_information(self, scene):
        factor, cameras, point = scene(num_views=5, pixel_noise=1.0)
        x = random_perturbation(factor, scale=1.0, seed=3)
        for linear in build_all(factor, cameras, point):
            expected = linear.information() @ x
            np.testing.assert_allclose(
                linear.multiply_hessian(x), expected, atol=1e-9 * np.abs(expected).max()
            )

    def test_quadratic_form_expansion(self, scene):
        """h(x) = xᵀGx - 2gᵀx + c for every form."""
        factor, cameras, point = scene(num_views=3, pixel_noise=1.0)
        x = random_perturbation(factor, seed=5)
        for linear in build_all(factor, cameras, point):
            G = linear.information()
            g = linear.linear_term()
            c = linear.quadratic_form(np.zeros_like(x))
            expected = x @ G @ x - 2.0 * g @ x + c
            assert linear.quadratic_form(x) == pytest.approx(expected, rel=1e-8)

    def test_error_is_half_quadratic_form(self, scene):
        factor, cameras, point = scene(num_views=3, pixel_noise=1.0)
        x = random_perturbation(factor, seed=8)
        delta = {key: x[6 * i:6 * i + 6] for i, key in enumerate(factor.keys)}
        for linear in build_all(factor, cameras, point):
            assert linear.error(delta) == pytest.approx(0.5 * linear.quadratic_form(x))

    def test_gradient_at_zero(self, scene):
        """-g is the gradient of error() at zero."""
        factor, cameras, point = scene(num_views=3, pixel_noise=1.0)
        hessian = create_hessian_factor(factor, cameras, point)
        x = np.zeros(18)
        eps = 1e-6
        numerical = np.zeros(18)
        for i in range(18):
            x_plus, x_minus = x.copy(), x.copy()
            x_plus[i] += eps
            x_minus[i] -= eps
            numerical[i] = 0.25 * (hessian.quadratic_form(x_plus) - hessian.quadratic_form(x_minus)) / eps
        np.testing.assert_allclose(hessian.gradient_at_zero(), numerical, rtol=1e-5, atol=1e-6)


class TestPermutationInvariance:
    """Reordering the measurements permutes the blocks and nothing else."""

    def test_shuffled_order(self, scene):
        factor, cameras, point = scene(num_views=4, pixel_noise=1.0)
        order = [2, 0, 3, 1]
        permuted = SmartFactor()
        for i in order:
            meas = factor.measurements[i]
            permuted.add(meas.observation, meas.key, meas.noise)
        permuted_cameras = [cameras[i] for i in order]

        for kind in ALL_KINDS:
            original = linearize(factor, cameras, point, kind)
            shuffled = linearize(permuted, permuted_cameras, point, kind)
            assert shuffled.keys == [factor.keys[i] for i in order]

            G = original.information()
            G_shuffled = shuffled.information()
            scale = np.abs(G).max()
            for a, i in enumerate(order):
                for c, j in enumerate(order):
                    np.testing.assert_allclose(
                        G_shuffled[6 * a:6 * a + 6, 6 * c:6 * c + 6],
                        G[6 * i:6 * i + 6, 6 * j:6 * j + 6],
                        atol=1e-9 * scale,
                    )
            assert shuffled.quadratic_form(np.zeros(24)) == pytest.approx(
                original.quadratic_form(np.zeros(24)), rel=1e-9
            )

    def test_error_by_key_is_order_free(self, scene):
        factor, cameras, point = scene(num_views=3, pixel_noise=1.0)
        order = [1, 2, 0]
        permuted = SmartFactor()
        for i in order:
            meas = factor.measurements[i]
            permuted.add(meas.observation, meas.key, meas.noise)

        delta = {"x0": 1e-3 * np.ones(6), "x2": -2e-3 * np.arange(6.0)}
        original = create_hessian_factor(factor, cameras, point)
        shuffled = create_hessian_factor(permuted, [cameras[i] for i in order], point)
        assert shuffled.error(delta) == pytest.approx(original.error(delta), rel=1e-9)


class TestDegenerateConfigurations:
    """Single-view and damping scenarios."""

    @pytest.mark.parametrize("kind", ALL_KINDS)
    def test_single_view_raises(self, scene, kind):
        factor, cameras, point = scene(num_views=1)
        with pytest.raises(DegenerateConfiguration):
            linearize(factor, cameras, point, kind)

    def test_single_view_raises_with_damping(self, scene):
        factor, cameras, point = scene(num_views=1)
        with pytest.raises(DegenerateConfiguration):
            create_hessian_factor(factor, cameras, point, SmartFactorParams(lambda_=1.0))

    def test_two_view_projector_warns(self, scene):
        factor, cameras, point = scene(num_views=2)
        with pytest.warns(RuntimeWarning, match="2 views"):
            projector = create_projector_factor(factor, cameras, point)
        assert projector.E_null.shape == (4, 1)

    def test_two_view_hessian(self, scene):
        """Two well-separated cameras give a finite, well-defined factor."""
        factor, cameras, point = scene(num_views=2)
        hessian = create_hessian_factor(factor, cameras, point)
        assert np.all(np.isfinite(hessian.information()))
        assert hessian.f == pytest.approx(0.0, abs=1e-18)

    def test_damping_changes_hessian(self, scene):
        """λ > 0 with diagonal vs uniform damping gives different symmetric PSD factors."""
        factor, cameras, point = scene(num_views=3, pixel_noise=1.0)
        uniform = create_hessian_factor(factor, cameras, point, SmartFactorParams(lambda_=10.0))
        diagonal = create_hessian_factor(
            factor, cameras, point, SmartFactorParams(lambda_=10.0, diagonal_damping=True)
        )
        G_u = uniform.information()
        G_d = diagonal.information()
        assert not np.allclose(G_u, G_d)
        for G in (G_u, G_d):
            scale = np.abs(G).max()
            np.testing.assert_allclose(G, G.T, atol=1e-9 * scale)
            assert np.linalg.eigvalsh(G).min() > -1e-9 * scale

    def test_damped_implicit_matches_damped_hessian(self, scene):
        factor, cameras, point = scene(num_views=4, pixel_noise=1.0)
        params = SmartFactorParams(lambda_=5.0, diagonal_damping=True)
        hessian = create_hessian_factor(factor, cameras, point, params)
        implicit = create_implicit_schur_factor(factor, cameras, point, params)
        G = hessian.information()
        np.testing.assert_allclose(implicit.information(), G, atol=1e-8 * np.abs(G).max())


class TestConsumerInterface:
    """Shape and argument checks shared by all forms."""

    def test_wrong_x_length(self, scene):
        factor, cameras, point = scene(num_views=3)
        for linear in build_all(factor, cameras, point):
            with pytest.raises(InvalidArgument, match="x must be"):
                linear.quadratic_form(np.zeros(5))

    def test_stack_ignores_foreign_keys(self, scene):
        factor, cameras, point = scene(num_views=3)
        hessian = create_hessian_factor(factor, cameras, point)
        x = hessian.stack({"x1": np.ones(6), "other": np.ones(6)})
        np.testing.assert_allclose(x, np.concatenate([np.zeros(6), np.ones(6), np.zeros(6)]))

    def test_stack_wrong_dim(self, scene):
        factor, cameras, point = scene(num_views=3)
        hessian = create_hessian_factor(factor, cameras, point)
        with pytest.raises(InvalidArgument, match="Perturbation"):
            hessian.stack({"x0": np.ones(4)})

    def test_hessian_block_transpose(self, scene):
        factor, cameras, point = scene(num_views=3, pixel_noise=1.0)
        hessian = create_hessian_factor(factor, cameras, point)
        np.testing.assert_allclose(hessian.hessian_block(2, 0), hessian.hessian_block(0, 2).T)
        np.testing.assert_allclose(hessian.hessian_block(0, 1), hessian.Gs[1])

    def test_reduced_system(self, scene):
        factor, cameras, point = scene(num_views=4, pixel_noise=1.0)
        projector = create_projector_factor(factor, cameras, point)
        A, c = projector.reduced_system()
        assert A.shape == (5, 24)
        x = random_perturbation(factor, seed=4)
        assert float(np.sum((A @ x - c) ** 2)) == pytest.approx(projector.quadratic_form(x), rel=1e-9)

    def test_empty_forms_rejected(self):
        with pytest.raises(InvalidArgument, match="No views"):
            RegularHessianFactor([], [], [], 0.0)
        with pytest.raises(InvalidArgument, match="No views"):
            ImplicitSchurFactor([], [], np.zeros((0, 3)), np.eye(3), np.zeros(0))
        with pytest.raises(InvalidArgument, match="No views"):
            JacobianProjectorFactor([], [], np.zeros((0, 0)), np.zeros(0))

    def test_repr(self, scene):
        factor, cameras, point = scene(num_views=3)
        names = [repr(linear) for linear in build_all(factor, cameras, point)]
        assert names[0].startswith("RegularHessianFactor")
        assert names[1].startswith("ImplicitSchurFactor")
        assert names[2].startswith("JacobianProjectorFactor")
