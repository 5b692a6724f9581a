"""Schur complement elimination of the landmark.

Given the whitened linear system [F | E] [δx; δp] ≈ b for m views and one
point, eliminating δp yields a quadratic over the view states with

    G = Fᵀ F - Fᵀ E P Eᵀ F
    g = Fᵀ b - Fᵀ E P Eᵀ b

where P = inv(EᵀE + λ·Damp) is the point covariance. G is returned as its
upper-triangular D x D blocks Gs, ordered row-major over pairs (i1, i2)
with i2 ≥ i1, and g as per-view D-vectors gs. Two algorithms produce the
same blocks:

    - dense: forms the 2m x D·m matrix F and slices the products.
    - sparse: works on the 2 x D blocks directly; each pair needs only the
      2 x 2 matrix S = E_i1 P E_i2ᵀ, so no dense F is ever built.
"""

from typing import List, Sequence, Tuple

import numpy as np

from smart_factors.exceptions import InvalidArgument
from .types import MEASUREMENT_DIM, POINT_DIM, block_diagonal_jacobian

SchurBlocks = Tuple[List[np.ndarray], List[np.ndarray]]


def _check_inputs(
    F_blocks: Sequence[np.ndarray],
    E: np.ndarray,
    point_covariance: np.ndarray,
    b: np.ndarray,
) -> Tuple[int, int]:
    m = len(F_blocks)
    if m == 0:
        raise InvalidArgument("No F blocks given")
    D = F_blocks[0].shape[1]
    for i, Fi in enumerate(F_blocks):
        if Fi.shape != (MEASUREMENT_DIM, D):
            raise InvalidArgument(f"F block {i} must be (2, {D}), got {Fi.shape}")
    if E.shape != (MEASUREMENT_DIM * m, POINT_DIM):
        raise InvalidArgument(f"E must be ({2 * m}, 3), got {E.shape}")
    if point_covariance.shape != (POINT_DIM, POINT_DIM):
        raise InvalidArgument(
            f"point_covariance must be (3, 3), got {point_covariance.shape}"
        )
    if b.shape != (MEASUREMENT_DIM * m,):
        raise InvalidArgument(f"b must be ({2 * m},), got {b.shape}")
    return m, D


def num_hessian_blocks(num_views: int) -> int:
    """Number of upper-triangular blocks m(m+1)/2."""
    return num_views * (num_views + 1) // 2


def schur_complement_dense(
    F_blocks: Sequence[np.ndarray],
    E: np.ndarray,
    point_covariance: np.ndarray,
    b: np.ndarray,
) -> SchurBlocks:
    """
    Schur complement using the full block-diagonal F.

    Implements:
        H = Fᵀ (F - E (P (Eᵀ F)))
        g = Fᵀ (b - E (P (Eᵀ b)))

    Args:
        F_blocks: Per-view Jacobians, each (2, D).
        E: Stacked point Jacobian, shape (2m, 3).
        point_covariance: P, shape (3, 3).
        b: Stacked residual, shape (2m,).

    Returns:
        Tuple (Gs, gs): m(m+1)/2 blocks of shape (D, D) and m vectors (D,).
    """
    m, D = _check_inputs(F_blocks, E, point_covariance, b)

    F = block_diagonal_jacobian(F_blocks)

    H = F.T @ (F - E @ (point_covariance @ (E.T @ F)))
    g = F.T @ (b - E @ (point_covariance @ (E.T @ b)))

    Gs = []
    gs = []
    for i1 in range(m):
        gs.append(g[D * i1:D * (i1 + 1)].copy())
        for i2 in range(i1, m):
            Gs.append(H[D * i1:D * (i1 + 1), D * i2:D * (i2 + 1)].copy())
    return Gs, gs


def schur_complement_sparse(
    F_blocks: Sequence[np.ndarray],
    E: np.ndarray,
    point_covariance: np.ndarray,
    b: np.ndarray,
) -> SchurBlocks:
    """
    Blockwise Schur complement without forming the dense F.

    For each pair (i1, i2):
        S = E_i1 P E_i2ᵀ                   (2 x 2)
        G_i1i1 = F_i1ᵀ (F_i1 - S F_i1)      (i2 == i1)
        G_i1i2 = -F_i1ᵀ S F_i2             (i2 > i1)
        g_i1 = F_i1ᵀ b_i1 - Σ_i2 F_i1ᵀ S b_i2

    Args:
        F_blocks: Per-view Jacobians, each (2, D).
        E: Stacked point Jacobian, shape (2m, 3).
        point_covariance: P, shape (3, 3).
        b: Stacked residual, shape (2m,).

    Returns:
        Tuple (Gs, gs) in the same order as schur_complement_dense().
    """
    m, _ = _check_inputs(F_blocks, E, point_covariance, b)
    E_blocks = [E[2 * i:2 * i + 2] for i in range(m)]
    b_blocks = [b[2 * i:2 * i + 2] for i in range(m)]
    # E_i P is shared by every pair with the same i1
    EP_blocks = [Ei @ point_covariance for Ei in E_blocks]

    Gs = []
    gs = []
    for i1 in range(m):
        F1t = F_blocks[i1].T
        g1 = F1t @ b_blocks[i1]
        for i2 in range(m):
            S = EP_blocks[i1] @ E_blocks[i2].T
            g1 -= F1t @ (S @ b_blocks[i2])
            if i2 == i1:
                Gs.append(F1t @ (F_blocks[i1] - S @ F_blocks[i1]))
            elif i2 > i1:
                Gs.append(-F1t @ (S @ F_blocks[i2]))
        gs.append(g1)
    return Gs, gs


def schur_complement(
    F_blocks: Sequence[np.ndarray],
    E: np.ndarray,
    point_covariance: np.ndarray,
    b: np.ndarray,
    method: str = "sparse",
) -> SchurBlocks:
    """
    Eliminate the point with the selected algorithm.

    Args:
        F_blocks: Per-view Jacobians, each (2, D).
        E: Stacked point Jacobian, shape (2m, 3).
        point_covariance: P, shape (3, 3).
        b: Stacked residual, shape (2m,).
        method: "sparse" (default) or "dense".

    Returns:
        Tuple (Gs, gs).

    Raises:
        InvalidArgument: If method is unknown or shapes are inconsistent.
    """
    if method == "sparse":
        return schur_complement_sparse(F_blocks, E, point_covariance, b)
    elif method == "dense":
        return schur_complement_dense(F_blocks, E, point_covariance, b)
    else:
        raise InvalidArgument(f"Unknown Schur complement method: {method!r}")


def assemble_block_matrix(
    Gs: Sequence[np.ndarray],
    gs: Sequence[np.ndarray],
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Dense symmetric G and stacked g from upper-triangular blocks.

    Args:
        Gs: m(m+1)/2 blocks (D, D), row-major over pairs i1 ≤ i2.
        gs: m vectors (D,).

    Returns:
        Tuple (G, g) of shapes (D·m, D·m) and (D·m,).
    """
    m = len(gs)
    if len(Gs) != num_hessian_blocks(m):
        raise InvalidArgument(
            f"Expected {num_hessian_blocks(m)} Hessian blocks for {m} views, "
            f"got {len(Gs)}"
        )
    D = gs[0].shape[0]
    G = np.zeros((D * m, D * m))
    k = 0
    for i1 in range(m):
        for i2 in range(i1, m):
            G[D * i1:D * (i1 + 1), D * i2:D * (i2 + 1)] = Gs[k]
            if i2 != i1:
                G[D * i2:D * (i2 + 1), D * i1:D * (i1 + 1)] = Gs[k].T
            k += 1
    return G, np.concatenate(gs)
