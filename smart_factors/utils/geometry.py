"""
Geometric and numerical utilities for landmark elimination.

Provides functions for:
- Skew-symmetric matrices and the SO(3) exponential map
- Euler-angle rotation construction
- Rank/condition checks and guarded inversion of small normal matrices
"""

import warnings
from typing import Tuple

import numpy as np
from scipy import linalg

from smart_factors.exceptions import DegenerateConfiguration


# Singularity threshold constants
EPSILON_ANGLE = 1e-10  # Below this rotation angle the first-order exp is used
DEFAULT_RANK_TOLERANCE = 1e-10  # Relative singular value threshold
DEFAULT_CONDITION_WARNING = 1e8  # Condition number that triggers a warning


def skew(v: np.ndarray) -> np.ndarray:
    """
    Skew-symmetric (cross-product) matrix of a 3-vector.

    Args:
        v: Vector of shape (3,).

    Returns:
        Matrix [v]ₓ of shape (3, 3) such that [v]ₓ @ w = v × w.

    Example:
        >>> skew(np.array([1.0, 2.0, 3.0])) @ np.array([0.0, 0.0, 1.0])
        array([ 2., -1.,  0.])
    """
    v = np.asarray(v, dtype=float)
    if v.shape != (3,):
        raise ValueError(f"v must be (3,), got {v.shape}")
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0],
    ])


def so3_exp(omega: np.ndarray) -> np.ndarray:
    """
    Exponential map from an axis-angle vector to a rotation matrix.

    Uses the Rodrigues formula:
        R = I + sin(θ)/θ [ω]ₓ + (1 - cos(θ))/θ² [ω]ₓ²

    Args:
        omega: Rotation vector (axis * angle), shape (3,).

    Returns:
        Rotation matrix of shape (3, 3).
    """
    omega = np.asarray(omega, dtype=float)
    theta = np.linalg.norm(omega)
    W = skew(omega)
    if theta < EPSILON_ANGLE:
        return np.eye(3) + W
    return (
        np.eye(3)
        + (np.sin(theta) / theta) * W
        + ((1.0 - np.cos(theta)) / theta**2) * (W @ W)
    )


def euler_to_rotation_matrix(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """
    Convert roll-pitch-yaw Euler angles (ZYX convention) to a rotation matrix.

    Args:
        roll: Rotation about x-axis (radians).
        pitch: Rotation about y-axis (radians).
        yaw: Rotation about z-axis (radians).

    Returns:
        3x3 rotation matrix R = Rz(yaw) @ Ry(pitch) @ Rx(roll).
    """
    cr, sr = np.cos(roll), np.sin(roll)
    cp, sp = np.cos(pitch), np.sin(pitch)
    cy, sy = np.cos(yaw), np.sin(yaw)

    return np.array(
        [
            [cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr],
            [sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr],
            [-sp, cp * sr, cp * cr],
        ],
        dtype=np.float64,
    )


def numerical_rank(
    A: np.ndarray,
    tolerance: float = DEFAULT_RANK_TOLERANCE,
) -> Tuple[int, float, np.ndarray]:
    """
    Numerical rank and condition number of a matrix via SVD.

    A singular value counts toward the rank when it exceeds
    tolerance * largest singular value.

    Args:
        A: Matrix of shape (m, n).
        tolerance: Relative singular value threshold.

    Returns:
        Tuple of (rank, condition_number, singular_values). The condition
        number is np.inf when the smallest singular value is zero.

    Example:
        >>> rank, cond, _ = numerical_rank(np.diag([1.0, 1.0, 0.0]))
        >>> rank
        2
    """
    singular_values = linalg.svd(A, compute_uv=False)
    if singular_values.size == 0 or singular_values[0] == 0.0:
        return 0, np.inf, singular_values

    rank = int(np.sum(singular_values > tolerance * singular_values[0]))
    s_min = singular_values[min(A.shape) - 1]
    condition = np.inf if s_min == 0.0 else float(singular_values[0] / s_min)
    return rank, condition, singular_values


def inverse_spd(
    A: np.ndarray,
    tolerance: float = DEFAULT_RANK_TOLERANCE,
    condition_warning: float = DEFAULT_CONDITION_WARNING,
    name: str = "matrix",
) -> np.ndarray:
    """
    Invert a small symmetric positive semi-definite matrix with a rank check.

    The inverse is only returned when the matrix is numerically full rank
    under the relative tolerance. A finite-looking inverse of a singular
    matrix is never produced.

    Args:
        A: Symmetric matrix of shape (n, n).
        tolerance: Relative singular value threshold for full rank.
        condition_warning: Condition number above which a RuntimeWarning is
            issued (the inverse is still returned).
        name: Name used in diagnostics.

    Returns:
        Symmetric inverse of A, shape (n, n).

    Raises:
        DegenerateConfiguration: If A is rank-deficient or not finite.
    """
    A = np.asarray(A, dtype=float)
    if not np.all(np.isfinite(A)):
        raise DegenerateConfiguration(f"{name} contains non-finite entries")

    n = A.shape[0]
    rank, condition, _ = numerical_rank(A, tolerance)
    if rank < n:
        raise DegenerateConfiguration(
            f"{name} is rank-deficient (rank {rank} < {n}, "
            f"condition {condition:.3e})",
            rank=rank,
            condition=condition,
        )

    if condition > condition_warning:
        warnings.warn(
            f"{name} is poorly conditioned (condition {condition:.3e}). "
            "Eliminated factor may be inaccurate.",
            RuntimeWarning,
        )

    # Cholesky-based inverse keeps the result symmetric
    try:
        c, lower = linalg.cho_factor(A)
        A_inv = linalg.cho_solve((c, lower), np.eye(n))
    except linalg.LinAlgError as e:
        raise DegenerateConfiguration(
            f"{name} is not positive definite: {e}", rank=rank, condition=condition
        ) from e

    return 0.5 * (A_inv + A_inv.T)
