"""Fixtures for smart factor tests."""

import numpy as np
import pytest

from smart_factors.slam import CameraIntrinsics, NoiseModel, PinholeCamera, SmartFactor

from .scenes import TRUE_POINT, make_poses


@pytest.fixture
def intrinsics():
    return CameraIntrinsics(fx=500.0, fy=480.0, cx=320.0, cy=240.0)


@pytest.fixture
def distorted_intrinsics():
    return CameraIntrinsics(
        fx=500.0, fy=480.0, cx=320.0, cy=240.0, k1=-0.12, k2=0.03, p1=0.001, p2=-0.002
    )


@pytest.fixture
def scene(intrinsics):
    """
    Factory for (factor, cameras, point) triples.

    Args of the returned callable:
        num_views: Number of views m.
        sigma: Isotropic pixel noise used by the noise model.
        pixel_noise: Std. dev. of noise added to the observations.
        dim: View state dimension (6 or 10).
        seed: Seed for the observation noise.
        calibration: Intrinsics override.
    """

    def build(num_views=3, sigma=1.0, pixel_noise=0.0, dim=6, seed=0, calibration=None):
        K = calibration or intrinsics
        cameras = [PinholeCamera(pose, K) for pose in make_poses(num_views)]
        rng = np.random.default_rng(seed)

        factor = SmartFactor(dim=dim)
        noise = NoiseModel.isotropic(2, sigma)
        for i, camera in enumerate(cameras):
            z = camera.project(TRUE_POINT) + pixel_noise * rng.standard_normal(2)
            factor.add(z, f"x{i}", noise)
        return factor, cameras, TRUE_POINT.copy()

    return build
