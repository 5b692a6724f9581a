"""Linearized factors produced by eliminating the landmark.

This module turns a SmartFactor evaluated at (cameras, point) into one of
three algebraically equivalent representations of the quadratic cost over
the view states x (stacked in factor key order):

    h(x) = xᵀ G x - 2 gᵀ x + c,        error(x) = 0.5 · h(x)

Representations (selected explicitly with FactorKind):
    - HESSIAN: RegularHessianFactor stores the D x D blocks Gs, the
      D-vectors gs and f. Best for direct (dense/sparse Cholesky) solves.
    - IMPLICIT_SCHUR: ImplicitSchurFactor keeps F blocks, E, the point
      covariance P and b; products with G are applied on demand as
      Fᵀ (I - E P Eᵀ) F x. Best for iterative solvers and long tracks.
    - JACOBIAN_PROJECTOR: JacobianProjectorFactor keeps F blocks, the
      null-space basis E_null and b; G = Fᵀ E_null E_nullᵀ F is never formed.

Constants: the Hessian form carries f = Σ‖b_i‖², while the implicit and
projector forms carry bᵀ Q b with Q = I - E P Eᵀ (resp. E_null E_nullᵀ).
The x-dependent parts are identical; the constants coincide when Eᵀ b = 0,
i.e. when the point sits at its least-squares optimum.

References:
    - Schur complement: schur.py
    - Null-space projection: null_space.py
"""

from enum import Enum
from typing import Dict, Hashable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from smart_factors.exceptions import InvalidArgument
from .camera import PinholeCamera
from .null_space import project_out_point
from .schur import assemble_block_matrix, num_hessian_blocks, schur_complement
from .smart_factor import SmartFactor
from .types import MEASUREMENT_DIM, SmartFactorParams, block_diagonal_jacobian


class FactorKind(Enum):
    """Closed set of linearized factor representations."""

    HESSIAN = "hessian"
    IMPLICIT_SCHUR = "implicit_schur"
    JACOBIAN_PROJECTOR = "jacobian_projector"


class LinearizedFactor:
    """
    Shared consumer interface of the three representations.

    Subclasses implement quadratic_form(), multiply_hessian(), information(),
    linear_term() and hessian_diagonal().

    Attributes:
        keys: View keys, fixing the block order of x.
        dim: Per-view state dimension D.
    """

    def __init__(self, keys: Sequence[Hashable], dim: int):
        self.keys: List[Hashable] = list(keys)
        self.dim = dim

    @property
    def num_views(self) -> int:
        return len(self.keys)

    def stack(self, delta: Mapping[Hashable, np.ndarray]) -> np.ndarray:
        """
        Stack per-key perturbations into x in key order.

        Keys absent from delta contribute zero; keys not in the factor are
        ignored.
        """
        x = np.zeros(self.dim * self.num_views)
        for i, key in enumerate(self.keys):
            if key in delta:
                xi = np.asarray(delta[key], dtype=float)
                if xi.shape != (self.dim,):
                    raise InvalidArgument(
                        f"Perturbation for {key!r} must be ({self.dim},), got {xi.shape}"
                    )
                x[self.dim * i:self.dim * (i + 1)] = xi
        return x

    def _check_x(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        if x.shape != (self.dim * self.num_views,):
            raise InvalidArgument(
                f"x must be ({self.dim * self.num_views},), got {x.shape}"
            )
        return x

    def error(self, delta: Mapping[Hashable, np.ndarray]) -> float:
        """0.5 · h(x) for per-key perturbations."""
        return 0.5 * self.quadratic_form(self.stack(delta))

    def gradient_at_zero(self) -> np.ndarray:
        """Gradient of h/2 at x = 0, i.e. -g."""
        return -self.linear_term()

    def quadratic_form(self, x: np.ndarray) -> float:
        raise NotImplementedError

    def multiply_hessian(self, x: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def information(self) -> np.ndarray:
        raise NotImplementedError

    def linear_term(self) -> np.ndarray:
        raise NotImplementedError

    def hessian_diagonal(self) -> Dict[Hashable, np.ndarray]:
        raise NotImplementedError


class RegularHessianFactor(LinearizedFactor):
    """
    Dense block Hessian over the view states.

    Attributes:
        Gs: Upper-triangular blocks (D, D), row-major over pairs i1 ≤ i2.
        gs: Per-view linear terms (D,).
        f: Constant term Σ‖b_i‖².
    """

    def __init__(
        self,
        keys: Sequence[Hashable],
        Gs: Sequence[np.ndarray],
        gs: Sequence[np.ndarray],
        f: float,
    ):
        if len(keys) == 0:
            raise InvalidArgument("No views")
        if len(gs) != len(keys):
            raise InvalidArgument(f"Got {len(gs)} linear terms for {len(keys)} keys")
        if len(Gs) != num_hessian_blocks(len(keys)):
            raise InvalidArgument(
                f"Expected {num_hessian_blocks(len(keys))} Hessian blocks, got {len(Gs)}"
            )
        super().__init__(keys, gs[0].shape[0])
        self.Gs = [np.array(G, dtype=float) for G in Gs]
        self.gs = [np.array(g, dtype=float) for g in gs]
        self.f = float(f)
        self._G, self._g = assemble_block_matrix(self.Gs, self.gs)

    def hessian_block(self, i: int, j: int) -> np.ndarray:
        """Block G_ij for any i, j (transposed upper block when i > j)."""
        D = self.dim
        return self._G[D * i:D * (i + 1), D * j:D * (j + 1)].copy()

    def information(self) -> np.ndarray:
        return self._G.copy()

    def linear_term(self) -> np.ndarray:
        return self._g.copy()

    def hessian_diagonal(self) -> Dict[Hashable, np.ndarray]:
        return {key: self.hessian_block(i, i) for i, key in enumerate(self.keys)}

    def multiply_hessian(self, x: np.ndarray) -> np.ndarray:
        return self._G @ self._check_x(x)

    def quadratic_form(self, x: np.ndarray) -> float:
        x = self._check_x(x)
        return float(x @ self._G @ x - 2.0 * self._g @ x + self.f)

    def __repr__(self) -> str:
        return f"RegularHessianFactor(keys={self.keys}, dim={self.dim}, f={self.f:.6g})"


class _ProjectedJacobianFactor(LinearizedFactor):
    """F blocks and b with a symmetric operator Q applied between them."""

    def __init__(self, keys: Sequence[Hashable], F_blocks: Sequence[np.ndarray], b: np.ndarray):
        if len(keys) == 0:
            raise InvalidArgument("No views")
        if len(F_blocks) != len(keys):
            raise InvalidArgument(f"Got {len(F_blocks)} F blocks for {len(keys)} keys")
        super().__init__(keys, F_blocks[0].shape[1])
        self.F_blocks = [np.array(Fi, dtype=float) for Fi in F_blocks]
        self.b = np.array(b, dtype=float)
        if self.b.shape != (MEASUREMENT_DIM * self.num_views,):
            raise InvalidArgument(
                f"b must be ({MEASUREMENT_DIM * self.num_views},), got {self.b.shape}"
            )

    def _project(self, e: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def _apply_F(self, x: np.ndarray) -> np.ndarray:
        D = self.dim
        return np.concatenate([
            Fi @ x[D * i:D * (i + 1)] for i, Fi in enumerate(self.F_blocks)
        ])

    def _apply_Ft(self, e: np.ndarray) -> np.ndarray:
        return np.concatenate([
            Fi.T @ e[2 * i:2 * i + 2] for i, Fi in enumerate(self.F_blocks)
        ])

    def dense_F(self) -> np.ndarray:
        """Block-diagonal view Jacobian, shape (2m, D·m)."""
        return block_diagonal_jacobian(self.F_blocks)

    def multiply_hessian(self, x: np.ndarray) -> np.ndarray:
        """G x = Fᵀ Q F x without forming G."""
        return self._apply_Ft(self._project(self._apply_F(self._check_x(x))))

    def linear_term(self) -> np.ndarray:
        """g = Fᵀ Q b."""
        return self._apply_Ft(self._project(self.b))

    def constant_term(self) -> float:
        """c = bᵀ Q b."""
        return float(self.b @ self._project(self.b))

    def quadratic_form(self, x: np.ndarray) -> float:
        """(F x - b)ᵀ Q (F x - b)."""
        e = self._apply_F(self._check_x(x)) - self.b
        return float(e @ self._project(e))

    def information(self) -> np.ndarray:
        F = self.dense_F()
        QF = np.column_stack([self._project(F[:, j]) for j in range(F.shape[1])])
        G = F.T @ QF
        return 0.5 * (G + G.T)


class ImplicitSchurFactor(_ProjectedJacobianFactor):
    """
    Matrix-free Schur complement: Q = I - E P Eᵀ.

    Attributes:
        F_blocks: Per-view Jacobians (2, D).
        E: Stacked point Jacobian (2m, 3).
        point_covariance: P (3, 3).
        b: Stacked residual (2m,).
    """

    def __init__(
        self,
        keys: Sequence[Hashable],
        F_blocks: Sequence[np.ndarray],
        E: np.ndarray,
        point_covariance: np.ndarray,
        b: np.ndarray,
    ):
        super().__init__(keys, F_blocks, b)
        self.E = np.array(E, dtype=float)
        self.point_covariance = np.array(point_covariance, dtype=float)
        if self.E.shape != (len(self.b), 3):
            raise InvalidArgument(f"E must be ({len(self.b)}, 3), got {self.E.shape}")

    def _project(self, e: np.ndarray) -> np.ndarray:
        return e - self.E @ (self.point_covariance @ (self.E.T @ e))

    def hessian_diagonal(self) -> Dict[Hashable, np.ndarray]:
        """Diagonal blocks F_iᵀ (I - E_i P E_iᵀ) F_i."""
        diagonal = {}
        for i, (key, Fi) in enumerate(zip(self.keys, self.F_blocks)):
            Ei = self.E[2 * i:2 * i + 2]
            S = Ei @ self.point_covariance @ Ei.T
            diagonal[key] = Fi.T @ (Fi - S @ Fi)
        return diagonal

    def __repr__(self) -> str:
        return f"ImplicitSchurFactor(keys={self.keys}, dim={self.dim})"


class JacobianProjectorFactor(_ProjectedJacobianFactor):
    """
    Reduced Jacobian factor: Q = E_null E_nullᵀ.

    Attributes:
        F_blocks: Per-view Jacobians (2, D).
        E_null: Orthonormal basis of the left null space of E (2m, 2m - 3).
        b: Stacked residual (2m,).
    """

    def __init__(
        self,
        keys: Sequence[Hashable],
        F_blocks: Sequence[np.ndarray],
        E_null: np.ndarray,
        b: np.ndarray,
    ):
        super().__init__(keys, F_blocks, b)
        self.E_null = np.array(E_null, dtype=float)
        if self.E_null.shape[0] != len(self.b):
            raise InvalidArgument(
                f"E_null must have {len(self.b)} rows, got {self.E_null.shape[0]}"
            )

    def _project(self, e: np.ndarray) -> np.ndarray:
        return self.E_null @ (self.E_null.T @ e)

    def reduced_system(self) -> Tuple[np.ndarray, np.ndarray]:
        """Whitened Jacobian system (E_nullᵀ F, E_nullᵀ b) without the point."""
        return project_out_point(self.dense_F(), self.b, self.E_null)

    def hessian_diagonal(self) -> Dict[Hashable, np.ndarray]:
        """Diagonal blocks F_iᵀ N_i N_iᵀ F_i, with N_i the rows of E_null for view i."""
        diagonal = {}
        for i, (key, Fi) in enumerate(zip(self.keys, self.F_blocks)):
            A = self.E_null[2 * i:2 * i + 2].T @ Fi
            diagonal[key] = A.T @ A
        return diagonal

    def __repr__(self) -> str:
        return f"JacobianProjectorFactor(keys={self.keys}, dim={self.dim})"


def create_hessian_factor(
    factor: SmartFactor,
    cameras: Sequence[PinholeCamera],
    point: np.ndarray,
    params: Optional[SmartFactorParams] = None,
) -> RegularHessianFactor:
    """
    Eliminate the point by Schur complement into a block Hessian.

    Args:
        factor: Smart factor holding the measurements.
        cameras: One camera per view, in key order.
        point: Linearization point of the landmark, shape (3,).
        params: Damping, Schur algorithm, and rank policy.

    Returns:
        RegularHessianFactor with (Gs, gs, f) in key order.

    Raises:
        InvalidArgument: On inconsistent inputs.
        ProjectionFailure: If any view fails cheirality.
        DegenerateConfiguration: If the point cannot be eliminated.

    Example:
        >>> hessian = create_hessian_factor(factor, cameras, point)
        >>> hessian.information().shape
        (12, 12)
    """
    params = params or SmartFactorParams()
    blocks = factor.compute_jacobians_with_covariance(cameras, point, params)
    Gs, gs = schur_complement(
        blocks.F_blocks, blocks.E, blocks.point_covariance, blocks.b,
        method=params.schur_method,
    )
    return RegularHessianFactor(blocks.keys, Gs, gs, blocks.f)


def create_implicit_schur_factor(
    factor: SmartFactor,
    cameras: Sequence[PinholeCamera],
    point: np.ndarray,
    params: Optional[SmartFactorParams] = None,
) -> ImplicitSchurFactor:
    """
    Keep the Schur complement implicit (F blocks, E, P, b).

    Args and raises as create_hessian_factor(); params.schur_method is unused.
    """
    blocks = factor.compute_jacobians_with_covariance(cameras, point, params)
    return ImplicitSchurFactor(
        blocks.keys, blocks.F_blocks, blocks.E, blocks.point_covariance, blocks.b
    )


def create_projector_factor(
    factor: SmartFactor,
    cameras: Sequence[PinholeCamera],
    point: np.ndarray,
    params: Optional[SmartFactorParams] = None,
) -> JacobianProjectorFactor:
    """
    Eliminate the point by null-space projection (F blocks, E_null, b).

    Args and raises as create_hessian_factor(); damping is ignored on this path.
    """
    blocks = factor.compute_jacobians_svd(cameras, point, params)
    return JacobianProjectorFactor(blocks.keys, blocks.F_blocks, blocks.E_null, blocks.b)


def linearize(
    factor: SmartFactor,
    cameras: Sequence[PinholeCamera],
    point: np.ndarray,
    kind: FactorKind = FactorKind.HESSIAN,
    params: Optional[SmartFactorParams] = None,
) -> LinearizedFactor:
    """
    Build the requested representation of the eliminated factor.

    Args:
        factor: Smart factor holding the measurements.
        cameras: One camera per view, in key order.
        point: Linearization point of the landmark, shape (3,).
        kind: Representation to build (FactorKind or its string value).
        params: Damping, Schur algorithm, and rank policy.

    Returns:
        RegularHessianFactor, ImplicitSchurFactor or JacobianProjectorFactor.

    Raises:
        InvalidArgument: If kind is unknown, or on inconsistent inputs.
    """
    try:
        kind = FactorKind(kind)
    except ValueError as e:
        raise InvalidArgument(f"Unknown factor kind: {kind!r}") from e

    if kind is FactorKind.HESSIAN:
        return create_hessian_factor(factor, cameras, point, params)
    elif kind is FactorKind.IMPLICIT_SCHUR:
        return create_implicit_schur_factor(factor, cameras, point, params)
    else:
        return create_projector_factor(factor, cameras, point, params)
