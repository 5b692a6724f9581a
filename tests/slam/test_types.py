"""Unit tests for smart_factors.slam.types module."""

import numpy as np
import pytest

from smart_factors.exceptions import InvalidArgument
from smart_factors.slam.noise import NoiseModel
from smart_factors.slam.types import (
    CameraIntrinsics,
    JacobianBlocks,
    Measurement,
    Pose3,
    SmartFactorParams,
    block_diagonal_jacobian,
)


class TestPose3:
    """Tests for Pose3."""

    def test_transform_roundtrip(self):
        pose = Pose3.from_euler(0.1, -0.2, 0.3, [1.0, 2.0, 3.0])
        p = np.array([0.5, -0.5, 2.0])
        np.testing.assert_allclose(pose.transform_to(pose.transform_from(p)), p)

    def test_compose_with_inverse(self):
        pose = Pose3.from_euler(0.1, -0.2, 0.3, [1.0, 2.0, 3.0])
        assert pose.compose(pose.inverse()).equals(Pose3.identity())

    def test_matrix(self):
        pose = Pose3.from_euler(0.0, 0.0, np.pi / 2, [1.0, 0.0, 0.0])
        T = pose.matrix()
        np.testing.assert_allclose(T @ np.array([1.0, 0.0, 0.0, 1.0]), [1.0, 1.0, 0.0, 1.0], atol=1e-12)

    def test_retract_is_right_perturbation(self):
        """R' = R exp(ω), t' = t + R v."""
        pose = Pose3.from_euler(0.2, 0.1, -0.3, [1.0, 0.0, 2.0])
        delta = np.array([0.0, 0.0, 0.1, 0.5, 0.0, 0.0])
        moved = pose.retract(delta)
        np.testing.assert_allclose(moved.translation, pose.translation + 0.5 * pose.rotation[:, 0])
        np.testing.assert_allclose(
            pose.rotation.T @ moved.rotation,
            Pose3.from_euler(0.0, 0.0, 0.1, np.zeros(3)).rotation,
            atol=1e-12,
        )

    def test_adjoint_of_identity(self):
        np.testing.assert_allclose(Pose3.identity().adjoint_matrix(), np.eye(6))

    def test_adjoint_of_inverse(self):
        pose = Pose3.from_euler(0.3, -0.2, 0.4, [0.5, -0.3, 0.2])
        np.testing.assert_allclose(
            pose.inverse().adjoint_matrix() @ pose.adjoint_matrix(), np.eye(6), atol=1e-12
        )

    def test_adjoint_moves_perturbation_across_compose(self):
        """T.retract(δ) ∘ X matches (T ∘ X).retract(Ad(X⁻¹) δ) to first order."""
        T = Pose3.from_euler(0.1, 0.2, -0.1, [1.0, -2.0, 0.5])
        X = Pose3.from_euler(0.3, -0.2, 0.4, [0.5, -0.3, 0.2])
        delta = 1e-7 * np.array([1.0, -2.0, 0.5, 3.0, 1.0, -1.0])
        lhs = T.retract(delta).compose(X)
        rhs = T.compose(X).retract(X.inverse().adjoint_matrix() @ delta)
        np.testing.assert_allclose(lhs.rotation, rhs.rotation, atol=1e-11)
        np.testing.assert_allclose(lhs.translation, rhs.translation, atol=1e-11)

    def test_arrays_are_read_only(self):
        pose = Pose3.identity()
        with pytest.raises(ValueError):
            pose.translation[0] = 1.0

    def test_rejects_non_rotation(self):
        with pytest.raises(InvalidArgument, match="orthonormal"):
            Pose3(2.0 * np.eye(3), np.zeros(3))
        with pytest.raises(InvalidArgument, match="determinant"):
            Pose3(np.diag([1.0, 1.0, -1.0]), np.zeros(3))

    def test_rejects_bad_translation(self):
        with pytest.raises(InvalidArgument, match="translation"):
            Pose3(np.eye(3), np.zeros(2))

    def test_retract_bad_delta(self):
        with pytest.raises(InvalidArgument):
            Pose3.identity().retract(np.zeros(3))


class TestCameraIntrinsics:
    """Tests for CameraIntrinsics."""

    def test_matrix_and_vector(self):
        K = CameraIntrinsics(fx=500.0, fy=480.0, cx=320.0, cy=240.0)
        np.testing.assert_allclose(K.to_matrix(), [[500, 0, 320], [0, 480, 240], [0, 0, 1]])
        np.testing.assert_allclose(K.to_vector(), [500, 480, 320, 240])
        assert not K.has_distortion()

    def test_retract_keeps_distortion(self):
        K = CameraIntrinsics(fx=500.0, fy=480.0, cx=320.0, cy=240.0, k1=-0.1)
        moved = K.retract(np.array([1.0, 2.0, 3.0, 4.0]))
        assert moved.fx == 501.0 and moved.cy == 244.0
        assert moved.k1 == -0.1

    def test_rejects_non_positive_focal_length(self):
        with pytest.raises(InvalidArgument, match="fx"):
            CameraIntrinsics(fx=0.0, fy=480.0, cx=320.0, cy=240.0)
        with pytest.raises(InvalidArgument, match="fy"):
            CameraIntrinsics(fx=500.0, fy=-1.0, cx=320.0, cy=240.0)


class TestJacobianBlocks:
    """Tests for JacobianBlocks."""

    def test_dense_F_is_block_diagonal(self):
        F_blocks = [np.full((2, 6), 1.0), np.full((2, 6), 2.0)]
        blocks = JacobianBlocks(["a", "b"], F_blocks, np.zeros((4, 3)), np.zeros(4), 0.0)
        F = blocks.dense_F()
        assert F.shape == (4, 12)
        np.testing.assert_allclose(F[:2, :6], 1.0)
        np.testing.assert_allclose(F[2:, 6:], 2.0)
        np.testing.assert_allclose(F[:2, 6:], 0.0)
        assert blocks.num_views == 2
        assert blocks.dim == 6

    def test_block_diagonal_jacobian_needs_views(self):
        with pytest.raises(InvalidArgument, match="No views"):
            block_diagonal_jacobian([])


class TestMeasurement:
    """Tests for Measurement validation."""

    def test_rejects_non_noise_model(self):
        with pytest.raises(InvalidArgument, match="NoiseModel"):
            Measurement("x0", np.zeros(2), None)

    def test_valid(self):
        meas = Measurement("x0", [1.0, 2.0], NoiseModel.unit())
        np.testing.assert_allclose(meas.observation, [1.0, 2.0])


class TestSmartFactorParams:
    """Tests for parameter validation."""

    def test_defaults(self):
        params = SmartFactorParams()
        assert params.lambda_ == 0.0
        assert not params.diagonal_damping
        assert params.schur_method == "sparse"
        assert params.min_views == 2

    @pytest.mark.parametrize(
        "kwargs, match",
        [
            ({"lambda_": -1.0}, "lambda_"),
            ({"lambda_": np.nan}, "lambda_"),
            ({"schur_method": "qr"}, "schur_method"),
            ({"rank_tolerance": 0.0}, "rank_tolerance"),
            ({"condition_warning": 1.0}, "condition_warning"),
            ({"min_views": 0}, "min_views"),
        ],
    )
    def test_invalid(self, kwargs, match):
        with pytest.raises(InvalidArgument, match=match):
            SmartFactorParams(**kwargs)

    def test_frozen(self):
        params = SmartFactorParams()
        with pytest.raises(AttributeError):
            params.lambda_ = 1.0
