"""Structureless landmark factors for bundle adjustment.

This package contains the computational core of a "smart" landmark factor:
- slam: measurements, camera/noise models, Schur and null-space
  elimination of the landmark, and the three linearized factor forms
- utils: SO(3) helpers and rank-checked inversion
"""

__version__ = "0.1.0"
