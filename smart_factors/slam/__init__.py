"""Smart landmark factors for visual bundle adjustment.

This module implements the computational core of a structureless
("smart") landmark factor: all observations of one 3D point are grouped,
the point is linearized together with the observing views, and then
eliminated so that only a quadratic over the view states remains.

This is NOT a full SLAM framework. Instead, it provides:
    - Measurement bookkeeping and reprojection (SmartFactor)
    - Camera projection with analytic Jacobians (PinholeCamera)
    - Point elimination by Schur complement (dense and block-sparse)
      or by null-space projection (SVD)
    - Three interchangeable linearized factor forms

The nonlinear optimizer that consumes these factors lives outside this
package.

Main components:
    - Pose3, CameraIntrinsics, NoiseModel: Core data structures
    - SmartFactor: Measurement set and reprojection engine
    - schur_complement: Landmark elimination (G, g blocks)
    - null_space_basis: Left null space of the point Jacobian
    - linearize, FactorKind: Factor construction

Example usage:
    >>> from smart_factors.slam import (
    ...     CameraIntrinsics, FactorKind, NoiseModel, PinholeCamera, Pose3,
    ...     SmartFactor, linearize,
    ... )
    >>> import numpy as np
    >>>
    >>> K = CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0)
    >>> poses = [Pose3.identity(), Pose3.from_euler(0, 0, 0, [1.0, 0.0, 0.0])]
    >>> cameras = [PinholeCamera(pose, K) for pose in poses]
    >>> point = np.array([0.5, 0.2, 5.0])
    >>>
    >>> factor = SmartFactor()
    >>> factor.add_many([c.project(point) for c in cameras], ["x0", "x1"],
    ...                 NoiseModel.isotropic(2, 1.0))
    >>> hessian = linearize(factor, cameras, point, FactorKind.HESSIAN)
    >>> hessian.information().shape
    (12, 12)
"""

from . import camera
from .camera import (
    PinholeCamera,
    distort_normalized,
    distortion_jacobian,
    triangulate_dlt,
    undistort_normalized,
)
from .factors import (
    FactorKind,
    ImplicitSchurFactor,
    JacobianProjectorFactor,
    LinearizedFactor,
    RegularHessianFactor,
    create_hessian_factor,
    create_implicit_schur_factor,
    create_projector_factor,
    linearize,
)
from .noise import NoiseModel
from .null_space import null_space_basis, project_out_point
from .schur import (
    assemble_block_matrix,
    num_hessian_blocks,
    schur_complement,
    schur_complement_dense,
    schur_complement_sparse,
)
from .smart_factor import SmartFactor, compute_point_covariance
from .types import (
    CALIBRATION_DIM,
    MEASUREMENT_DIM,
    POINT_DIM,
    POSE_DIM,
    CameraIntrinsics,
    JacobianBlocks,
    Measurement,
    Pose3,
    SmartFactorParams,
)

__all__ = [
    # Core types
    "Pose3",
    "CameraIntrinsics",
    "Measurement",
    "JacobianBlocks",
    "SmartFactorParams",
    "NoiseModel",
    "POSE_DIM",
    "CALIBRATION_DIM",
    "POINT_DIM",
    "MEASUREMENT_DIM",
    # Camera model and projection
    "camera",
    "PinholeCamera",
    "distort_normalized",
    "distortion_jacobian",
    "undistort_normalized",
    "triangulate_dlt",
    # Measurement set and reprojection
    "SmartFactor",
    "compute_point_covariance",
    # Landmark elimination
    "schur_complement",
    "schur_complement_dense",
    "schur_complement_sparse",
    "assemble_block_matrix",
    "num_hessian_blocks",
    "null_space_basis",
    "project_out_point",
    # Linearized factors
    "FactorKind",
    "LinearizedFactor",
    "RegularHessianFactor",
    "ImplicitSchurFactor",
    "JacobianProjectorFactor",
    "create_hessian_factor",
    "create_implicit_schur_factor",
    "create_projector_factor",
    "linearize",
]
