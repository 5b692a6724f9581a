"""Synthetic scene helpers for smart factor tests.

A small rig of m cameras looks down +Z at a landmark about 6 m away. The
cameras are spread along X with slight rotations so that the point Jacobian
E has full column rank for m ≥ 2.
"""

from typing import Callable, List

import numpy as np

from smart_factors.slam import Pose3

TRUE_POINT = np.array([0.3, -0.2, 6.0])


def make_poses(num_views: int) -> List[Pose3]:
    """Camera poses of the synthetic rig, all seeing TRUE_POINT in front."""
    return [
        Pose3.from_euler(
            0.02 * i, -0.03 * i, 0.05 * i - 0.05,
            [0.6 * i - 0.5, 0.1 * (i % 2), 0.2 * i],
        )
        for i in range(num_views)
    ]


def numerical_jacobian(
    f: Callable,
    x: np.ndarray,
    epsilon: float = 1e-6
) -> np.ndarray:
    """
    Compute Jacobian numerically using central differences.

    Args:
        f: Function that takes x and returns y
        x: Point at which to compute Jacobian
        epsilon: Step size for finite differences

    Returns:
        Numerical Jacobian, shape (len(y), len(x))
    """
    x = np.asarray(x, dtype=float)
    n_out = len(f(x))
    J = np.zeros((n_out, len(x)))

    for i in range(len(x)):
        x_plus = x.copy()
        x_minus = x.copy()
        x_plus[i] += epsilon
        x_minus[i] -= epsilon

        # Central difference
        J[:, i] = (f(x_plus) - f(x_minus)) / (2 * epsilon)

    return J
