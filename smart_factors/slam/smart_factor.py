"""Smart (structureless) landmark factor: measurements and reprojection.

A SmartFactor holds every observation of one landmark: per view a 2D pixel
measurement, a view key, and a noise model, plus an optional sensor pose in
the body frame shared by all views. The landmark itself is never stored; the
caller supplies cameras and a point for each evaluation and the factor
returns residuals and whitened Jacobians from which the point is eliminated
(see schur.py and null_space.py).

Evaluation never writes to the factor. After the measurements are added, a
single instance may be evaluated concurrently for different linearization
points; every returned array is freshly allocated.

Notation (m views, D-dimensional view state):
    F_i: 2 x D Jacobian of view i's residual w.r.t. the view state
    E:   2m x 3 stacked Jacobian w.r.t. the point
    b:   2m stacked whitened residual, b_i = -(h_i(x) - z_i)
    f:   Σ‖b_i‖²
"""

from typing import Hashable, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from smart_factors.exceptions import DegenerateConfiguration, InvalidArgument, ProjectionFailure
from smart_factors.utils.geometry import inverse_spd
from .camera import PinholeCamera
from .noise import NoiseModel
from .null_space import null_space_basis
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

SUPPORTED_DIMS = (POSE_DIM, POSE_DIM + CALIBRATION_DIM)


def compute_point_covariance(
    E: np.ndarray,
    lambda_: float = 0.0,
    diagonal_damping: bool = False,
    params: Optional[SmartFactorParams] = None,
) -> np.ndarray:
    """
    Damped inverse of the point-normal matrix.

    Computes P = inv(EᵀE + λ·Damp) where Damp = I (uniform damping) or
    Damp = diag(EᵀE) (per-coordinate damping).

    Args:
        E: Whitened point Jacobian, shape (2m, 3).
        lambda_: Damping λ ≥ 0.
        diagonal_damping: If True, use diag(EᵀE) as damping matrix.
        params: Rank policy (min_views, rank_tolerance, condition_warning).
            Its lambda_ and diagonal_damping fields are ignored here.

    Returns:
        Symmetric positive definite point covariance, shape (3, 3).

    Raises:
        InvalidArgument: If E is malformed or λ < 0.
        DegenerateConfiguration: If fewer than params.min_views views are
            present, or the damped matrix is rank-deficient.

    Example:
        >>> E = np.vstack([np.eye(3)[:2], np.eye(3)[1:]])
        >>> P = compute_point_covariance(E)
    """
    params = params or SmartFactorParams()
    E = np.asarray(E, dtype=float)
    if E.ndim != 2 or E.shape[1] != POINT_DIM or E.shape[0] % MEASUREMENT_DIM:
        raise InvalidArgument(f"E must have shape (2m, 3), got {E.shape}")
    if not np.isfinite(lambda_) or lambda_ < 0:
        raise InvalidArgument(f"lambda_ must be finite and >= 0, got {lambda_}")

    num_views = E.shape[0] // MEASUREMENT_DIM
    if num_views < params.min_views:
        raise DegenerateConfiguration(
            f"Point elimination needs at least {params.min_views} views, "
            f"got {num_views}"
        )

    EtE = E.T @ E
    damping = np.diag(np.diag(EtE)) if diagonal_damping else np.eye(POINT_DIM)

    return inverse_spd(
        EtE + lambda_ * damping,
        tolerance=params.rank_tolerance,
        condition_warning=params.condition_warning,
        name="point-normal matrix EᵀE",
    )


class SmartFactor:
    """
    Observations of one landmark from several views.

    Attributes:
        dim: Per-view state dimension D (6 for pose, 10 for pose + [fx, fy, cx, cy]).
        body_P_sensor: Optional sensor pose in the body frame, shared by all views.

    Example:
        >>> factor = SmartFactor()
        >>> noise = NoiseModel.isotropic(2, 1.0)
        >>> factor.add(np.array([320.0, 240.0]), "x0", noise)
        >>> factor.add(np.array([300.0, 241.0]), "x1", noise)
        >>> len(factor)
        2
    """

    def __init__(self, dim: int = POSE_DIM, body_P_sensor: Optional[Pose3] = None):
        if dim not in SUPPORTED_DIMS:
            raise InvalidArgument(f"dim must be one of {SUPPORTED_DIMS}, got {dim}")
        self._dim = dim
        self._body_P_sensor = body_P_sensor
        self._measurements: List[Measurement] = []

    # ------------------------------------------------------------------
    # Measurement set
    # ------------------------------------------------------------------

    def add(self, observation: np.ndarray, key: Hashable, noise: NoiseModel) -> None:
        """
        Append one measurement.

        Args:
            observation: Observed pixel [u, v], shape (2,).
            key: Identifier of the observing view's variable.
            noise: 2D noise model of the observation.

        Raises:
            InvalidArgument: If the key is already present or the
                observation/noise is malformed.
        """
        if key in self.keys:
            raise InvalidArgument(f"View key {key!r} already has a measurement")
        self._measurements.append(Measurement(key, observation, noise))

    def add_many(
        self,
        observations: Sequence[np.ndarray],
        keys: Sequence[Hashable],
        noises: Union[NoiseModel, Sequence[NoiseModel]],
    ) -> None:
        """
        Append several measurements at once.

        Args:
            observations: Observed pixels, one (2,) array per view.
            keys: View keys, same length as observations.
            noises: One shared noise model, or one per observation.

        Raises:
            InvalidArgument: If the sequence lengths differ. Nothing is
                appended in that case.
        """
        if isinstance(noises, NoiseModel):
            noises = [noises] * len(observations)
        if not len(observations) == len(keys) == len(noises):
            raise InvalidArgument(
                f"Got {len(observations)} observations, {len(keys)} keys and "
                f"{len(noises)} noise models"
            )
        if len(set(keys)) != len(keys) or set(keys) & set(self.keys):
            raise InvalidArgument("View keys must be unique within a factor")

        new = [Measurement(k, z, n) for z, k, n in zip(observations, keys, noises)]
        self._measurements.extend(new)

    def add_track(
        self, track: Iterable[Tuple[Hashable, np.ndarray]], noise: NoiseModel
    ) -> None:
        """
        Append a feature track of (key, observation) pairs with a shared noise.

        Args:
            track: Iterable of (view key, observed pixel) pairs.
            noise: Noise model used for every observation of the track.
        """
        pairs = list(track)
        self.add_many([z for _, z in pairs], [k for k, _ in pairs], noise)

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def body_P_sensor(self) -> Optional[Pose3]:
        return self._body_P_sensor

    @property
    def keys(self) -> List[Hashable]:
        return [meas.key for meas in self._measurements]

    @property
    def measured(self) -> np.ndarray:
        """Observations stacked as an (m, 2) array (a copy)."""
        if not self._measurements:
            return np.zeros((0, MEASUREMENT_DIM))
        return np.array([meas.observation for meas in self._measurements])

    @property
    def noise_models(self) -> List[NoiseModel]:
        return [meas.noise for meas in self._measurements]

    @property
    def measurements(self) -> Tuple[Measurement, ...]:
        return tuple(self._measurements)

    def __len__(self) -> int:
        return len(self._measurements)

    def equals(self, other: "SmartFactor", tol: float = 1e-9) -> bool:
        """
        Check equality of keys, measurements, noise models, and extrinsic.

        Args:
            other: Factor to compare with.
            tol: Absolute tolerance on measurements and poses.
        """
        if not isinstance(other, SmartFactor):
            return False
        if self.dim != other.dim or self.keys != other.keys:
            return False
        if not np.allclose(self.measured, other.measured, atol=tol):
            return False
        if not all(a.equals(b, tol) for a, b in zip(self.noise_models, other.noise_models)):
            return False
        if self.body_P_sensor is None or other.body_P_sensor is None:
            return self.body_P_sensor is None and other.body_P_sensor is None
        return self.body_P_sensor.equals(other.body_P_sensor, tol)

    def __repr__(self) -> str:
        """Readable summary of the measurements."""
        lines = [f"SmartFactor(dim={self.dim}, views={len(self)})"]
        for meas in self._measurements:
            u, v = meas.observation
            lines.append(f"  {meas.key!r}: z=[{u:.3f}, {v:.3f}] {meas.noise!r}")
        if self.body_P_sensor is not None:
            lines.append(f"  body_P_sensor: {self.body_P_sensor!r}")
        return "\n".join(lines)

    def cameras_from_poses(
        self,
        poses: Sequence[Pose3],
        intrinsics: Union[CameraIntrinsics, Sequence[CameraIntrinsics]],
    ) -> List[PinholeCamera]:
        """
        Build per-view cameras from body poses.

        When body_P_sensor is set, each camera pose is
        world_P_sensor = world_P_body ∘ body_P_sensor.

        Args:
            poses: Body poses in factor key order, one per view.
            intrinsics: Shared calibration, or one per view.

        Returns:
            List of PinholeCamera, one per view.
        """
        if isinstance(intrinsics, CameraIntrinsics):
            intrinsics = [intrinsics] * len(poses)
        if not len(poses) == len(intrinsics) == len(self):
            raise InvalidArgument(
                f"Factor has {len(self)} views but got {len(poses)} poses and "
                f"{len(intrinsics)} calibrations"
            )

        cameras = []
        for pose, K in zip(poses, intrinsics):
            if self.body_P_sensor is not None:
                pose = pose.compose(self.body_P_sensor)
            cameras.append(PinholeCamera(pose, K))
        return cameras

    # ------------------------------------------------------------------
    # Reprojection
    # ------------------------------------------------------------------

    def _validate(self, cameras: Sequence[PinholeCamera], point: np.ndarray) -> np.ndarray:
        if len(self) == 0:
            raise InvalidArgument("Factor has no measurements")
        if len(cameras) != len(self):
            raise InvalidArgument(
                f"Factor has {len(self)} views but got {len(cameras)} cameras"
            )
        point = np.asarray(point, dtype=float)
        if point.shape != (POINT_DIM,) or not np.all(np.isfinite(point)):
            raise InvalidArgument(f"Point must be a finite (3,) array, got {point}")
        return point

    def _projection_failure(self, i: int, error: ProjectionFailure) -> ProjectionFailure:
        key = self._measurements[i].key
        return ProjectionFailure(
            f"View {i} ({key!r}) cannot project the point: {error}",
            view_index=i,
            key=key,
            depth=error.depth,
        )

    def reprojection_error(
        self, cameras: Sequence[PinholeCamera], point: np.ndarray
    ) -> np.ndarray:
        """
        Raw (unwhitened) reprojection errors.

        Args:
            cameras: One camera per view, in key order.
            point: Landmark in world frame, shape (3,).

        Returns:
            Stacked errors h_i(x) - z_i, shape (2m,).

        Raises:
            InvalidArgument: On camera count mismatch or malformed point.
            ProjectionFailure: If any view fails cheirality.
        """
        point = self._validate(cameras, point)
        errors = np.zeros(MEASUREMENT_DIM * len(self))
        for i, (camera, meas) in enumerate(zip(cameras, self._measurements)):
            try:
                errors[2 * i:2 * i + 2] = camera.project(point) - meas.observation
            except ProjectionFailure as e:
                raise self._projection_failure(i, e) from e
        return errors

    def total_reprojection_error(
        self, cameras: Sequence[PinholeCamera], point: np.ndarray
    ) -> float:
        """
        Negative log-likelihood of the observations (up to a constant).

        Returns Σ 0.5 · noise_i.distance(h_i(x) - z_i).
        """
        errors = self.reprojection_error(cameras, point).reshape(-1, MEASUREMENT_DIM)
        return float(sum(
            0.5 * meas.noise.distance(e) for meas, e in zip(self._measurements, errors)
        ))

    def compute_jacobians(
        self, cameras: Sequence[PinholeCamera], point: np.ndarray
    ) -> JacobianBlocks:
        """
        Whitened per-view Jacobians and residuals.

        For each view the projection derivatives (F_i, E_i) and residual
        b_i = -(h_i(x) - z_i) are whitened together by the view's noise
        model. When body_P_sensor is set, the pose columns of F_i are taken
        with respect to a right perturbation of the body pose, so the cameras
        must come from cameras_from_poses.

        Args:
            cameras: One camera per view, in key order.
            point: Landmark in world frame, shape (3,).

        Returns:
            JacobianBlocks with F_blocks, E, b and f filled.

        Raises:
            InvalidArgument: On camera count mismatch or malformed point.
            ProjectionFailure: If any view fails cheirality.
        """
        point = self._validate(cameras, point)
        m = len(self)
        E = np.zeros((MEASUREMENT_DIM * m, POINT_DIM))
        b = np.zeros(MEASUREMENT_DIM * m)
        F_blocks = []
        f = 0.0
        # Keys name body poses: move sensor-frame perturbations to the body
        sensor_Ad = None
        if self.body_P_sensor is not None:
            sensor_Ad = self.body_P_sensor.inverse().adjoint_matrix()

        for i, (camera, meas) in enumerate(zip(cameras, self._measurements)):
            try:
                uv, H_pose, H_point, H_cal = camera.project_with_jacobians(point)
            except ProjectionFailure as e:
                raise self._projection_failure(i, e) from e

            if sensor_Ad is not None:
                H_pose = H_pose @ sensor_Ad
            Fi = H_pose if self.dim == POSE_DIM else np.hstack([H_pose, H_cal])
            bi = -(uv - meas.observation)
            Fi, Ei, bi = meas.noise.whiten_system(Fi, H_point, bi)

            f += float(bi @ bi)
            F_blocks.append(Fi)
            E[2 * i:2 * i + 2] = Ei
            b[2 * i:2 * i + 2] = bi

        return JacobianBlocks(keys=self.keys, F_blocks=F_blocks, E=E, b=b, f=f)

    def compute_ep(
        self,
        cameras: Sequence[PinholeCamera],
        point: np.ndarray,
        params: Optional[SmartFactorParams] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Whitened point Jacobian and undamped point covariance only.

        Returns:
            Tuple (E, inv(EᵀE)).
        """
        blocks = self.compute_jacobians(cameras, point)
        return blocks.E, compute_point_covariance(blocks.E, params=params)

    def compute_jacobians_with_covariance(
        self,
        cameras: Sequence[PinholeCamera],
        point: np.ndarray,
        params: Optional[SmartFactorParams] = None,
    ) -> JacobianBlocks:
        """
        Whitened Jacobians plus the damped point covariance.

        Args:
            cameras: One camera per view, in key order.
            point: Landmark in world frame, shape (3,).
            params: Damping (lambda_, diagonal_damping) and rank policy.

        Returns:
            JacobianBlocks with point_covariance filled.

        Raises:
            DegenerateConfiguration: If the damped point-normal matrix is
                rank-deficient or too few views are present.
        """
        params = params or SmartFactorParams()
        blocks = self.compute_jacobians(cameras, point)
        blocks.point_covariance = compute_point_covariance(
            blocks.E, params.lambda_, params.diagonal_damping, params
        )
        return blocks

    def compute_jacobians_svd(
        self,
        cameras: Sequence[PinholeCamera],
        point: np.ndarray,
        params: Optional[SmartFactorParams] = None,
    ) -> JacobianBlocks:
        """
        Whitened Jacobians plus the null-space basis of E.

        Damping has no effect on this path: the projector removes the
        point's column space exactly.

        Returns:
            JacobianBlocks with E_null filled, shape (2m, 2m - 3).
        """
        params = params or SmartFactorParams()
        blocks = self.compute_jacobians(cameras, point)
        if blocks.num_views < params.min_views:
            raise DegenerateConfiguration(
                f"Point elimination needs at least {params.min_views} views, "
                f"got {blocks.num_views}"
            )
        blocks.E_null = null_space_basis(blocks.E, params.rank_tolerance)
        return blocks
