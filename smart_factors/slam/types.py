"""Type definitions and data structures for smart landmark factors.

This module defines the core data structures shared by the reprojection,
elimination, and factor-building stages.

Key types:
    - Pose3: SE(3) camera/body pose (rotation matrix + translation)
    - CameraIntrinsics: Pinhole calibration with Brown-Conrady distortion
    - Measurement: One (view key, 2D observation, noise model) triple
    - JacobianBlocks: Whitened per-view Jacobians and residuals of one
      linearization, plus optional point covariance / null-space basis
    - SmartFactorParams: Damping, elimination, and rank policy settings

Conventions:
    - Pose3 maps local (camera/body) coordinates to world coordinates:
      p_world = R @ p_local + t.
    - Pose perturbations are 6-vectors [ω, v] applied on the right:
      R' = R exp([ω]ₓ), t' = t + R v.
    - Camera frame: X-right, Y-down, Z-forward.
"""

from dataclasses import dataclass
from typing import Hashable, List, Optional

import numpy as np

from smart_factors.exceptions import InvalidArgument
from smart_factors.utils.geometry import (
    DEFAULT_CONDITION_WARNING,
    DEFAULT_RANK_TOLERANCE,
    euler_to_rotation_matrix,
    skew,
    so3_exp,
)
from .noise import NoiseModel


POSE_DIM = 6  # [ω, v]
CALIBRATION_DIM = 4  # [fx, fy, cx, cy]
POINT_DIM = 3
MEASUREMENT_DIM = 2

SCHUR_METHODS = ("sparse", "dense")


def _frozen_array(values, shape, name: str) -> np.ndarray:
    arr = np.array(values, dtype=np.float64)
    if arr.shape != shape:
        raise InvalidArgument(f"{name} must have shape {shape}, got {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise InvalidArgument(f"{name} must be finite")
    arr.setflags(write=False)
    return arr


def block_diagonal_jacobian(F_blocks) -> np.ndarray:
    """Stack per-view (2, D) Jacobians into the block-diagonal F, shape (2m, D·m)."""
    m = len(F_blocks)
    if m == 0:
        raise InvalidArgument("No views")
    D = F_blocks[0].shape[1]
    F = np.zeros((MEASUREMENT_DIM * m, D * m))
    for i, Fi in enumerate(F_blocks):
        F[2 * i:2 * i + 2, D * i:D * (i + 1)] = Fi
    return F


@dataclass(frozen=True, eq=False)
class Pose3:
    """
    SE(3) pose: rotation matrix and translation.

    Attributes:
        rotation: Rotation matrix of shape (3, 3), local-to-world.
        translation: Position of the local origin in world, shape (3,).

    Examples:
        >>> T = Pose3.from_euler(0.0, 0.0, np.pi / 2, [1.0, 0.0, 0.0])
        >>> T.transform_from(np.array([1.0, 0.0, 0.0]))
        array([1., 1., 0.])
    """

    rotation: np.ndarray
    translation: np.ndarray

    def __post_init__(self) -> None:
        """Validate and freeze the rotation and translation arrays."""
        R = _frozen_array(self.rotation, (3, 3), "rotation")
        t = _frozen_array(self.translation, (3,), "translation")
        if not np.allclose(R.T @ R, np.eye(3), atol=1e-6):
            raise InvalidArgument("rotation must be orthonormal")
        if np.linalg.det(R) < 0:
            raise InvalidArgument("rotation must have determinant +1")
        object.__setattr__(self, "rotation", R)
        object.__setattr__(self, "translation", t)

    @classmethod
    def identity(cls) -> "Pose3":
        """Pose at the origin with no rotation."""
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def from_euler(
        cls, roll: float, pitch: float, yaw: float, translation
    ) -> "Pose3":
        """
        Create a pose from ZYX Euler angles and a translation.

        Args:
            roll: Rotation about x-axis (radians).
            pitch: Rotation about y-axis (radians).
            yaw: Rotation about z-axis (radians).
            translation: Position, shape (3,).

        Returns:
            Pose3 instance.
        """
        return cls(euler_to_rotation_matrix(roll, pitch, yaw), np.asarray(translation))

    def compose(self, other: "Pose3") -> "Pose3":
        """Return self ∘ other (apply other first, then self)."""
        return Pose3(
            self.rotation @ other.rotation,
            self.rotation @ other.translation + self.translation,
        )

    def inverse(self) -> "Pose3":
        """Return the inverse transform."""
        R_t = self.rotation.T
        return Pose3(R_t, -R_t @ self.translation)

    def transform_from(self, point_local: np.ndarray) -> np.ndarray:
        """Map a point from local coordinates to world coordinates."""
        return self.rotation @ point_local + self.translation

    def transform_to(self, point_world: np.ndarray) -> np.ndarray:
        """Map a point from world coordinates to local coordinates."""
        return self.rotation.T @ (point_world - self.translation)

    def retract(self, delta: np.ndarray) -> "Pose3":
        """
        Apply a right perturbation [ω, v].

        Args:
            delta: Perturbation of shape (6,).

        Returns:
            Pose3 with R' = R exp([ω]ₓ) and t' = t + R v.
        """
        delta = np.asarray(delta, dtype=float)
        if delta.shape != (POSE_DIM,):
            raise InvalidArgument(f"delta must be (6,), got {delta.shape}")
        return Pose3(
            self.rotation @ so3_exp(delta[:3]),
            self.translation + self.rotation @ delta[3:],
        )

    def adjoint_matrix(self) -> np.ndarray:
        """
        6x6 adjoint in [ω, v] ordering.

        Moves a right perturbation across a composition:
        T exp(δ) X = (T X) exp(Ad(X⁻¹) δ).

        Returns:
            [[R, 0], [[t]ₓ R, R]].
        """
        R = self.rotation
        Ad = np.zeros((POSE_DIM, POSE_DIM))
        Ad[:3, :3] = R
        Ad[3:, :3] = skew(self.translation) @ R
        Ad[3:, 3:] = R
        return Ad

    def matrix(self) -> np.ndarray:
        """Homogeneous 4x4 transform."""
        T = np.eye(4)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def equals(self, other: "Pose3", tol: float = 1e-9) -> bool:
        """Check equality within tolerance."""
        return bool(
            np.allclose(self.rotation, other.rotation, atol=tol)
            and np.allclose(self.translation, other.translation, atol=tol)
        )

    def __repr__(self) -> str:
        """Readable string representation."""
        t = self.translation
        return f"Pose3(t=[{t[0]:.4f}, {t[1]:.4f}, {t[2]:.4f}])"


@dataclass(frozen=True)
class CameraIntrinsics:
    """
    Camera intrinsic parameters.

    Represents the pinhole camera model with radial and tangential
    distortion. When calibration is optimized jointly with the pose, the
    calibration state is [fx, fy, cx, cy]; distortion stays fixed.

    Attributes:
        fx: Focal length in x (pixels).
        fy: Focal length in y (pixels).
        cx: Principal point x-coordinate (pixels).
        cy: Principal point y-coordinate (pixels).
        k1: 1st radial distortion coefficient.
        k2: 2nd radial distortion coefficient.
        p1: 1st tangential distortion coefficient.
        p2: 2nd tangential distortion coefficient.

    Notes:
        - Distortion model follows Brown-Conrady / OpenCV convention.
        - For an ideal pinhole camera, set k1=k2=p1=p2=0.

    Examples:
        >>> K = CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0)
        >>> K.to_vector()
        array([500., 500., 320., 240.])
    """

    fx: float
    fy: float
    cx: float
    cy: float
    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0

    def __post_init__(self) -> None:
        """Validate camera parameters after initialization."""
        if self.fx <= 0:
            raise InvalidArgument(f"fx must be positive, got {self.fx}")
        if self.fy <= 0:
            raise InvalidArgument(f"fy must be positive, got {self.fy}")

    def to_matrix(self) -> np.ndarray:
        """
        Convert to 3x3 intrinsic matrix K.

        Returns:
            Intrinsic matrix of shape (3, 3):
                [[fx,  0, cx],
                 [ 0, fy, cy],
                 [ 0,  0,  1]]
        """
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def to_vector(self) -> np.ndarray:
        """Calibration state [fx, fy, cx, cy]."""
        return np.array([self.fx, self.fy, self.cx, self.cy], dtype=np.float64)

    def retract(self, delta: np.ndarray) -> "CameraIntrinsics":
        """Return intrinsics with the calibration state shifted by delta."""
        fx, fy, cx, cy = self.to_vector() + np.asarray(delta, dtype=float)
        return CameraIntrinsics(
            fx=fx, fy=fy, cx=cx, cy=cy, k1=self.k1, k2=self.k2, p1=self.p1, p2=self.p2
        )

    def has_distortion(self) -> bool:
        """Check if camera has non-zero distortion parameters."""
        return any(
            abs(k) > 1e-10 for k in (self.k1, self.k2, self.p1, self.p2)
        )

    def __repr__(self) -> str:
        """Readable string representation."""
        return (
            f"CameraIntrinsics(fx={self.fx:.2f}, fy={self.fy:.2f}, "
            f"cx={self.cx:.2f}, cy={self.cy:.2f}, "
            f"distortion=[{self.k1:.4f}, {self.k2:.4f}, {self.p1:.4f}, {self.p2:.4f}])"
        )


@dataclass(frozen=True, eq=False)
class Measurement:
    """
    One observation of the landmark.

    Attributes:
        key: Opaque, orderable identifier of the observing view's variable.
        observation: Observed pixel [u, v], shape (2,). Stored read-only.
        noise: Noise model of the observation (dimension 2).
    """

    key: Hashable
    observation: np.ndarray
    noise: NoiseModel

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "observation",
            _frozen_array(self.observation, (MEASUREMENT_DIM,), "observation"),
        )
        if not isinstance(self.noise, NoiseModel):
            raise InvalidArgument(
                f"noise must be a NoiseModel, got {type(self.noise).__name__}"
            )
        if self.noise.dim != MEASUREMENT_DIM:
            raise InvalidArgument(
                f"noise model must have dimension 2, got {self.noise.dim}"
            )


@dataclass
class JacobianBlocks:
    """
    Whitened linearization of a smart factor at one (cameras, point) pair.

    Attributes:
        keys: View keys in factor order.
        F_blocks: Per-view Jacobians w.r.t. view state, each (2, D).
        E: Stacked Jacobian w.r.t. the point, shape (2m, 3).
        b: Stacked whitened residual -(h(x) - z), shape (2m,).
        f: Sum of squared whitened residuals.
        point_covariance: inv(EᵀE + λ·Damp), shape (3, 3), when computed.
        E_null: Null-space basis of E, shape (2m, 2m-3), when computed.
    """

    keys: List[Hashable]
    F_blocks: List[np.ndarray]
    E: np.ndarray
    b: np.ndarray
    f: float
    point_covariance: Optional[np.ndarray] = None
    E_null: Optional[np.ndarray] = None

    @property
    def num_views(self) -> int:
        return len(self.F_blocks)

    @property
    def dim(self) -> int:
        return self.F_blocks[0].shape[1]

    def dense_F(self) -> np.ndarray:
        """Block-diagonal view Jacobian, shape (2m, D·m)."""
        return block_diagonal_jacobian(self.F_blocks)


@dataclass(frozen=True)
class SmartFactorParams:
    """
    Settings for point damping, elimination algorithm, and rank policy.

    Attributes:
        lambda_: Damping λ ≥ 0 added to the point-normal matrix.
        diagonal_damping: If True, damp with λ·diag(EᵀE) instead of λ·I.
        schur_method: "sparse" (blockwise, default) or "dense".
        rank_tolerance: Relative singular value threshold below which the
            point-normal matrix (or E in the SVD path) is rank-deficient.
        condition_warning: Condition number above which a RuntimeWarning is
            issued while still returning a result.
        min_views: Minimum number of views required to eliminate the point.

    Examples:
        >>> params = SmartFactorParams(lambda_=1e-3, diagonal_damping=True)
        >>> params.schur_method
        'sparse'
    """

    lambda_: float = 0.0
    diagonal_damping: bool = False
    schur_method: str = "sparse"
    rank_tolerance: float = DEFAULT_RANK_TOLERANCE
    condition_warning: float = DEFAULT_CONDITION_WARNING
    min_views: int = 2

    def __post_init__(self) -> None:
        """Validate parameters."""
        if not np.isfinite(self.lambda_) or self.lambda_ < 0:
            raise InvalidArgument(f"lambda_ must be finite and >= 0, got {self.lambda_}")
        if self.schur_method not in SCHUR_METHODS:
            raise InvalidArgument(
                f"schur_method must be one of {SCHUR_METHODS}, got {self.schur_method!r}"
            )
        if not 0 < self.rank_tolerance < 1:
            raise InvalidArgument(
                f"rank_tolerance must be in (0, 1), got {self.rank_tolerance}"
            )
        if self.condition_warning <= 1:
            raise InvalidArgument(
                f"condition_warning must be > 1, got {self.condition_warning}"
            )
        if self.min_views < 1:
            raise InvalidArgument(f"min_views must be >= 1, got {self.min_views}")
