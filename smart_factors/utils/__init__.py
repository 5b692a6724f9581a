"""
Utility functions for landmark elimination.

This module provides common numerical helpers used across the codebase,
including SO(3) operations and rank-checked inversion.
"""

from .geometry import (
    euler_to_rotation_matrix,
    inverse_spd,
    numerical_rank,
    skew,
    so3_exp,
)

__all__ = [
    'skew',
    'so3_exp',
    'euler_to_rotation_matrix',
    'numerical_rank',
    'inverse_spd',
]
