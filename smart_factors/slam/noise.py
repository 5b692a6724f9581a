"""Gaussian measurement noise models with whitening.

A noise model is stored as the square-root information matrix R (upper
triangular, RᵀR = Λ where Λ is the information matrix). Whitening a
residual r gives R r, whose squared norm is the Mahalanobis distance
rᵀ Λ r. Whitening Jacobian blocks together with the residual keeps the
linearized least-squares problem statistically consistent:

    ‖R (J δ - r)‖² = (J δ - r)ᵀ Λ (J δ - r)

All operations return new arrays; inputs are never modified.
"""

from typing import Tuple

import numpy as np
from scipy import linalg

from smart_factors.exceptions import InvalidArgument


class NoiseModel:
    """
    Gaussian noise model parameterized by its square-root information.

    Attributes:
        sqrt_information: Upper-triangular matrix R with RᵀR = Λ, shape (d, d).
        dim: Dimension d of the measurement.

    Examples:
        >>> noise = NoiseModel.isotropic(2, sigma=2.0)
        >>> noise.distance(np.array([2.0, 0.0]))
        1.0
    """

    def __init__(self, sqrt_information: np.ndarray):
        """
        Initialize NoiseModel.

        Args:
            sqrt_information: Square-root information matrix R, shape (d, d).

        Raises:
            InvalidArgument: If R is not square, not finite, or singular.
        """
        R = np.array(sqrt_information, dtype=np.float64)
        if R.ndim != 2 or R.shape[0] != R.shape[1]:
            raise InvalidArgument(f"sqrt_information must be square, got {R.shape}")
        if not np.all(np.isfinite(R)):
            raise InvalidArgument("sqrt_information must be finite")
        if np.any(np.abs(np.diag(R)) <= 0.0):
            raise InvalidArgument("sqrt_information must be non-singular")
        R.setflags(write=False)
        self._R = R

    @classmethod
    def from_information(cls, information: np.ndarray) -> "NoiseModel":
        """
        Create a noise model from an information matrix Λ.

        Args:
            information: Symmetric positive definite matrix, shape (d, d).
        """
        information = np.asarray(information, dtype=float)
        try:
            R = linalg.cholesky(information, lower=False)
        except linalg.LinAlgError as e:
            raise InvalidArgument(f"information must be positive definite: {e}") from e
        return cls(R)

    @classmethod
    def from_covariance(cls, covariance: np.ndarray) -> "NoiseModel":
        """Create a noise model from a covariance matrix Σ = Λ⁻¹."""
        covariance = np.asarray(covariance, dtype=float)
        try:
            L = linalg.cholesky(covariance, lower=True)
        except linalg.LinAlgError as e:
            raise InvalidArgument(f"covariance must be positive definite: {e}") from e
        # Σ = L Lᵀ  =>  Λ = L⁻ᵀ L⁻¹, and R = L⁻¹ is lower triangular
        L_inv = linalg.solve_triangular(L, np.eye(L.shape[0]), lower=True)
        return cls.from_information(L_inv.T @ L_inv)

    @classmethod
    def from_sigmas(cls, sigmas) -> "NoiseModel":
        """Create a diagonal noise model from per-axis standard deviations."""
        sigmas = np.asarray(sigmas, dtype=float).reshape(-1)
        if np.any(sigmas <= 0):
            raise InvalidArgument(f"sigmas must be positive, got {sigmas}")
        return cls(np.diag(1.0 / sigmas))

    @classmethod
    def isotropic(cls, dim: int, sigma: float) -> "NoiseModel":
        """Create an isotropic noise model σ·I."""
        return cls.from_sigmas(np.full(dim, float(sigma)))

    @classmethod
    def unit(cls, dim: int = 2) -> "NoiseModel":
        """Create a unit (identity-whitening) noise model."""
        return cls(np.eye(dim))

    @property
    def dim(self) -> int:
        return self._R.shape[0]

    @property
    def sqrt_information(self) -> np.ndarray:
        return self._R

    @property
    def information(self) -> np.ndarray:
        return self._R.T @ self._R

    @property
    def covariance(self) -> np.ndarray:
        R_inv = linalg.solve_triangular(self._R, np.eye(self.dim), lower=False)
        return R_inv @ R_inv.T

    def whiten(self, v: np.ndarray) -> np.ndarray:
        """Whiten a vector or a matrix with d rows: R @ v."""
        v = np.asarray(v, dtype=float)
        if v.shape[0] != self.dim:
            raise InvalidArgument(
                f"cannot whiten array with {v.shape[0]} rows using {self.dim}-D noise"
            )
        return self._R @ v

    def unwhiten(self, v: np.ndarray) -> np.ndarray:
        """Undo whitening: R⁻¹ @ v."""
        return linalg.solve_triangular(self._R, np.asarray(v, dtype=float), lower=False)

    def distance(self, v: np.ndarray) -> float:
        """
        Squared Mahalanobis distance of a residual.

        Args:
            v: Residual, shape (d,).

        Returns:
            ‖R v‖² = vᵀ Λ v.
        """
        w = self.whiten(v)
        return float(w @ w)

    def whiten_system(self, *blocks: np.ndarray) -> Tuple[np.ndarray, ...]:
        """
        Jointly whiten Jacobian blocks and a residual.

        The last positional argument is the residual; all others are
        Jacobian blocks with d rows. The same R is applied to every block so
        that cross terms stay consistent.

        Args:
            *blocks: Jacobian blocks followed by the residual.

        Returns:
            Tuple of whitened copies in the same order.

        Example:
            >>> noise = NoiseModel.isotropic(2, 0.5)
            >>> F, E, b = noise.whiten_system(np.eye(2), np.ones((2, 3)), np.ones(2))
        """
        if not blocks:
            raise InvalidArgument("whiten_system needs at least a residual")
        return tuple(self.whiten(block) for block in blocks)

    def equals(self, other: "NoiseModel", tol: float = 1e-9) -> bool:
        """Check equality of information within tolerance."""
        return self.dim == other.dim and bool(
            np.allclose(self.information, other.information, atol=tol)
        )

    def __repr__(self) -> str:
        """Readable string representation."""
        sigmas = np.sqrt(np.diag(self.covariance))
        return f"NoiseModel(dim={self.dim}, sigmas={np.array2string(sigmas, precision=4)})"
