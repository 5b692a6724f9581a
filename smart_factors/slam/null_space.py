"""Point elimination by projection onto the left null space of E.

For the stacked point Jacobian E (2m x 3) with full column rank, the full
SVD E = U S Vᵀ splits U into the first three columns, spanning range(E),
and the trailing 2m - 3 columns E_null, orthogonal to it. Then

    E_nullᵀ E = 0
    E_null E_nullᵀ = I - E (EᵀE)⁻¹ Eᵀ

so multiplying the linearized system [F | E] δ = b on the left by E_nullᵀ
removes the point without inverting EᵀE.
"""

import warnings
from typing import Tuple

import numpy as np
from scipy import linalg

from smart_factors.exceptions import DegenerateConfiguration, InvalidArgument
from smart_factors.utils.geometry import DEFAULT_RANK_TOLERANCE
from .types import MEASUREMENT_DIM, POINT_DIM


def null_space_basis(
    E: np.ndarray,
    rank_tolerance: float = DEFAULT_RANK_TOLERANCE,
) -> np.ndarray:
    """
    Orthonormal basis of the left null space of the point Jacobian.

    Args:
        E: Whitened point Jacobian, shape (2m, 3).
        rank_tolerance: Relative singular value threshold for full rank.

    Returns:
        E_null of shape (2m, 2m - 3) with orthonormal columns and
        E_nullᵀ E ≈ 0.

    Raises:
        InvalidArgument: If E is not (2m, 3).
        DegenerateConfiguration: If 2m - 3 ≤ 0 or E is rank-deficient.

    Example:
        >>> E = np.random.default_rng(0).normal(size=(6, 3))
        >>> E_null = null_space_basis(E)
        >>> E_null.shape
        (6, 3)
    """
    E = np.asarray(E, dtype=float)
    if E.ndim != 2 or E.shape[1] != POINT_DIM or E.shape[0] % MEASUREMENT_DIM:
        raise InvalidArgument(f"E must have shape (2m, 3), got {E.shape}")

    rows = E.shape[0]
    num_views = rows // MEASUREMENT_DIM
    if rows <= POINT_DIM:
        raise DegenerateConfiguration(
            f"Null-space projection needs 2m - 3 > 0, got m = {num_views}"
        )

    U, s, _ = linalg.svd(E, full_matrices=True)
    rank = int(np.sum(s > rank_tolerance * s[0])) if s[0] > 0 else 0
    if rank < POINT_DIM:
        raise DegenerateConfiguration(
            f"Point Jacobian E is rank-deficient (rank {rank} < 3)",
            rank=rank,
            condition=np.inf if s[-1] == 0 else float(s[0] / s[-1]),
        )

    if num_views == 2:
        warnings.warn(
            "Null-space projection with 2 views keeps a single constraint; "
            "use 3 or more views for an informative factor.",
            RuntimeWarning,
        )

    return U[:, POINT_DIM:].copy()


def project_out_point(
    F: np.ndarray,
    b: np.ndarray,
    E_null: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Reduced Jacobian system with the point removed.

    Args:
        F: Dense view Jacobian, shape (2m, D·m).
        b: Whitened residual, shape (2m,).
        E_null: Null-space basis from null_space_basis(), shape (2m, 2m - 3).

    Returns:
        Tuple (E_nullᵀ F, E_nullᵀ b) of shapes (2m - 3, D·m) and (2m - 3,).
    """
    if F.shape[0] != E_null.shape[0] or b.shape[0] != E_null.shape[0]:
        raise InvalidArgument(
            f"Row mismatch: F {F.shape}, b {b.shape}, E_null {E_null.shape}"
        )
    return E_null.T @ F, E_null.T @ b
