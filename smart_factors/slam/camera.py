"""Calibrated pinhole camera with analytic projection derivatives.

This module provides the camera capability consumed by smart factors:
    - Brown-Conrady lens distortion and its 2x2 Jacobian
    - Pinhole projection of a world point through a posed camera
    - Analytic Jacobians w.r.t. the camera pose, the point, and the
      calibration [fx, fy, cx, cy]
    - Linear (DLT) triangulation of a point from several views

The projection follows:
    1. Transform: p_c = Rᵀ (P_w - t)
    2. Normalize: (x_n, y_n) = (X/Z, Y/Z)
    3. Distort:   (x_d, y_d) = distort(x_n, y_n)
    4. Scale:     (u, v) = (fx*x_d + cx, fy*y_d + cy)

Points whose camera-frame depth does not exceed the cheirality threshold
raise ProjectionFailure; the failure is local to the call.
"""

from typing import Sequence, Tuple

import numpy as np
from scipy import linalg

from smart_factors.exceptions import DegenerateConfiguration, InvalidArgument, ProjectionFailure
from smart_factors.utils.geometry import skew
from .types import CALIBRATION_DIM, POSE_DIM, CameraIntrinsics, Pose3


def distort_normalized(
    xy_normalized: np.ndarray,
    k1: float,
    k2: float,
    p1: float,
    p2: float,
) -> np.ndarray:
    """
    Apply radial and tangential distortion to normalized image coordinates.

    The distortion model:
        x_distorted = x * (1 + k1*r² + k2*r⁴) + 2*p1*x*y + p2*(r² + 2*x²)
        y_distorted = y * (1 + k1*r² + k2*r⁴) + p1*(r² + 2*y²) + 2*p2*x*y

    where r² = x² + y² and (x, y) are normalized image coordinates.

    Args:
        xy_normalized: Normalized image coordinates, shape (N, 2) or (2,).
        k1: First radial distortion coefficient.
        k2: Second radial distortion coefficient.
        p1: First tangential distortion coefficient.
        p2: Second tangential distortion coefficient.

    Returns:
        Distorted normalized coordinates, same shape as input.

    Example:
        >>> xy = np.array([[0.1, 0.2], [0.3, 0.4]])
        >>> distorted = distort_normalized(xy, k1=-0.1, k2=0.01, p1=0.001, p2=0.001)
    """
    xy = np.asarray(xy_normalized, dtype=float)
    single_point = xy.ndim == 1
    xy = np.atleast_2d(xy)

    if xy.shape[1] != 2:
        raise InvalidArgument(f"Input must be (N, 2) or (2,), got {xy.shape}")

    x = xy[:, 0]
    y = xy[:, 1]
    r_squared = x**2 + y**2
    radial = 1.0 + k1 * r_squared + k2 * r_squared**2

    x_distorted = x * radial + 2.0 * p1 * x * y + p2 * (r_squared + 2.0 * x**2)
    y_distorted = y * radial + p1 * (r_squared + 2.0 * y**2) + 2.0 * p2 * x * y

    result = np.column_stack([x_distorted, y_distorted])
    return result.reshape(-1) if single_point else result


def distortion_jacobian(
    xy_normalized: np.ndarray,
    k1: float,
    k2: float,
    p1: float,
    p2: float,
) -> np.ndarray:
    """
    Jacobian of distort_normalized() at a single normalized point.

    Args:
        xy_normalized: Normalized coordinates (x, y), shape (2,).
        k1, k2, p1, p2: Distortion coefficients.

    Returns:
        Matrix ∂(x_d, y_d)/∂(x, y), shape (2, 2).
    """
    x, y = np.asarray(xy_normalized, dtype=float)
    r_squared = x * x + y * y
    radial = 1.0 + k1 * r_squared + k2 * r_squared**2
    # ∂radial/∂r² = k1 + 2 k2 r², and ∂r²/∂x = 2x
    d_radial = k1 + 2.0 * k2 * r_squared
    d_radial_dx = 2.0 * x * d_radial
    d_radial_dy = 2.0 * y * d_radial

    return np.array([
        [radial + x * d_radial_dx + 2.0 * p1 * y + 6.0 * p2 * x,
         x * d_radial_dy + 2.0 * p1 * x + 2.0 * p2 * y],
        [y * d_radial_dx + 2.0 * p1 * x + 2.0 * p2 * y,
         radial + y * d_radial_dy + 6.0 * p1 * y + 2.0 * p2 * x],
    ])


def undistort_normalized(
    xy_distorted: np.ndarray,
    k1: float,
    k2: float,
    p1: float,
    p2: float,
    max_iterations: int = 20,
    tolerance: float = 1e-12,
) -> np.ndarray:
    """
    Remove distortion from normalized image coordinates.

    Inverts the distortion model with Newton iterations using
    distortion_jacobian().

    Args:
        xy_distorted: Distorted normalized coordinates, shape (N, 2) or (2,).
        k1, k2, p1, p2: Distortion coefficients.
        max_iterations: Maximum number of Newton iterations per point.
        tolerance: Convergence tolerance on the residual.

    Returns:
        Undistorted normalized coordinates, same shape as input.
    """
    xy_d = np.asarray(xy_distorted, dtype=float)
    single_point = xy_d.ndim == 1
    xy_d = np.atleast_2d(xy_d)

    xy_u = xy_d.copy()
    for n in range(xy_u.shape[0]):
        for _ in range(max_iterations):
            residual = distort_normalized(xy_u[n], k1, k2, p1, p2) - xy_d[n]
            if np.max(np.abs(residual)) < tolerance:
                break
            J = distortion_jacobian(xy_u[n], k1, k2, p1, p2)
            xy_u[n] -= np.linalg.solve(J, residual)

    return xy_u.reshape(-1) if single_point else xy_u


class PinholeCamera:
    """
    Posed pinhole camera.

    Attributes:
        pose: Camera-to-world pose (camera frame X-right, Y-down, Z-forward).
        intrinsics: Calibration and distortion parameters.
        cheirality_threshold: Minimum camera-frame depth for a valid projection.

    Example:
        >>> K = CameraIntrinsics(fx=500, fy=500, cx=320, cy=240)
        >>> cam = PinholeCamera(Pose3.identity(), K)
        >>> cam.project(np.array([0.0, 0.0, 5.0]))
        array([320., 240.])
    """

    def __init__(
        self,
        pose: Pose3,
        intrinsics: CameraIntrinsics,
        cheirality_threshold: float = 0.0,
    ):
        self.pose = pose
        self.intrinsics = intrinsics
        self.cheirality_threshold = cheirality_threshold

    def _camera_point(self, point: np.ndarray) -> np.ndarray:
        point = np.asarray(point, dtype=float)
        if point.shape != (3,):
            raise InvalidArgument(f"Point must be (3,), got {point.shape}")
        p_c = self.pose.transform_to(point)
        if p_c[2] <= self.cheirality_threshold:
            raise ProjectionFailure(
                f"Point is behind camera (depth {p_c[2]:.4g} <= "
                f"{self.cheirality_threshold})",
                depth=float(p_c[2]),
            )
        return p_c

    def project(self, point: np.ndarray) -> np.ndarray:
        """
        Project a world point to pixel coordinates.

        Args:
            point: 3D point in world frame, shape (3,).

        Returns:
            Pixel coordinates (u, v), shape (2,).

        Raises:
            ProjectionFailure: If the point is not in front of the camera.
        """
        p_c = self._camera_point(point)
        K = self.intrinsics
        xy_d = distort_normalized(p_c[:2] / p_c[2], K.k1, K.k2, K.p1, K.p2)
        return np.array([K.fx * xy_d[0] + K.cx, K.fy * xy_d[1] + K.cy])

    def project_with_jacobians(
        self, point: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Project a world point and compute analytic derivatives.

        Args:
            point: 3D point in world frame, shape (3,).

        Returns:
            Tuple (uv, H_pose, H_point, H_calibration):
                - uv: Pixel coordinates, shape (2,).
                - H_pose: ∂uv/∂[ω, v] for a right pose perturbation, (2, 6).
                - H_point: ∂uv/∂P_w, (2, 3).
                - H_calibration: ∂uv/∂[fx, fy, cx, cy], (2, 4).

        Raises:
            ProjectionFailure: If the point is not in front of the camera.
        """
        p_c = self._camera_point(point)
        K = self.intrinsics
        X, Y, Z = p_c
        xy_n = np.array([X / Z, Y / Z])
        xy_d = distort_normalized(xy_n, K.k1, K.k2, K.p1, K.p2)
        uv = np.array([K.fx * xy_d[0] + K.cx, K.fy * xy_d[1] + K.cy])

        # ∂(x_n, y_n)/∂p_c
        D_normalize = np.array([
            [1.0 / Z, 0.0, -X / Z**2],
            [0.0, 1.0 / Z, -Y / Z**2],
        ])
        D_distort = distortion_jacobian(xy_n, K.k1, K.k2, K.p1, K.p2)
        H_pc = np.diag([K.fx, K.fy]) @ D_distort @ D_normalize

        # ∂p_c/∂ω = [p_c]ₓ, ∂p_c/∂v = -I
        H_pose = H_pc @ np.hstack([skew(p_c), -np.eye(3)])
        H_point = H_pc @ self.pose.rotation.T
        H_calibration = np.array([
            [xy_d[0], 0.0, 1.0, 0.0],
            [0.0, xy_d[1], 0.0, 1.0],
        ])
        return uv, H_pose, H_point, H_calibration

    def retract(self, delta: np.ndarray) -> "PinholeCamera":
        """
        Perturb the camera state.

        Args:
            delta: Pose perturbation (6,) or pose + calibration (10,).

        Returns:
            New PinholeCamera.
        """
        delta = np.asarray(delta, dtype=float)
        if delta.shape == (POSE_DIM,):
            return PinholeCamera(
                self.pose.retract(delta), self.intrinsics, self.cheirality_threshold
            )
        if delta.shape == (POSE_DIM + CALIBRATION_DIM,):
            return PinholeCamera(
                self.pose.retract(delta[:POSE_DIM]),
                self.intrinsics.retract(delta[POSE_DIM:]),
                self.cheirality_threshold,
            )
        raise InvalidArgument(f"delta must be (6,) or (10,), got {delta.shape}")

    def normalized_ray(self, pixel: np.ndarray) -> np.ndarray:
        """Undistorted normalized coordinates [x_n, y_n, 1] of a pixel."""
        K = self.intrinsics
        pixel = np.asarray(pixel, dtype=float)
        xy_d = np.array([(pixel[0] - K.cx) / K.fx, (pixel[1] - K.cy) / K.fy])
        xy_n = undistort_normalized(xy_d, K.k1, K.k2, K.p1, K.p2)
        return np.array([xy_n[0], xy_n[1], 1.0])

    def __repr__(self) -> str:
        return f"PinholeCamera({self.pose!r}, {self.intrinsics!r})"


def triangulate_dlt(
    cameras: Sequence[PinholeCamera],
    observations: Sequence[np.ndarray],
    rank_tolerance: float = 1e-9,
) -> np.ndarray:
    """
    Triangulate a 3D point from two or more views (linear DLT).

    Each view contributes two rows x·P₃ - P₁ and y·P₃ - P₂, where P is the
    3x4 projection [Rᵀ | -Rᵀt] in undistorted normalized coordinates. The
    homogeneous solution is the right singular vector of the smallest
    singular value.

    Args:
        cameras: Posed cameras, length m ≥ 2.
        observations: Pixel observations, one (2,) array per camera.
        rank_tolerance: Relative threshold on the second-smallest singular
            value; below it the geometry is considered degenerate.

    Returns:
        Point in world frame, shape (3,).

    Raises:
        InvalidArgument: If camera and observation counts differ.
        DegenerateConfiguration: If fewer than two views are given, the
            views do not constrain the point, or the solution lies at
            infinity.
        ProjectionFailure: If the solution is behind any camera.
    """
    if len(cameras) != len(observations):
        raise InvalidArgument(
            f"Got {len(cameras)} cameras but {len(observations)} observations"
        )
    if len(cameras) < 2:
        raise DegenerateConfiguration(
            f"Triangulation needs at least 2 views, got {len(cameras)}"
        )

    A = np.zeros((2 * len(cameras), 4))
    for i, (camera, z) in enumerate(zip(cameras, observations)):
        x_n, y_n, _ = camera.normalized_ray(z)
        R_t = camera.pose.rotation.T
        P = np.hstack([R_t, (-R_t @ camera.pose.translation).reshape(3, 1)])
        A[2 * i] = x_n * P[2] - P[0]
        A[2 * i + 1] = y_n * P[2] - P[1]

    _, s, Vt = linalg.svd(A)
    if s[2] <= rank_tolerance * s[0]:
        raise DegenerateConfiguration(
            "Views do not constrain the point (baseline too small)",
            rank=int(np.sum(s > rank_tolerance * s[0])),
        )

    X = Vt[-1]
    if abs(X[3]) < 1e-12 * np.linalg.norm(X[:3]):
        raise DegenerateConfiguration("Triangulated point is at infinity")
    point = X[:3] / X[3]

    for i, camera in enumerate(cameras):
        try:
            camera.project(point)
        except ProjectionFailure as e:
            raise ProjectionFailure(
                f"Triangulated point fails cheirality in view {i}: {e}",
                view_index=i,
                depth=e.depth,
            ) from e

    return point
