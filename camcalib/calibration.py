"""Joint intrinsic calibration over a batch of correspondence frames."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

import logging
import math

import cv2
import numpy as np

from .correspondence import CorrespondenceFrame
from .errors import (
    DegenerateGeometry,
    InconsistentGeometry,
    InsufficientData,
    Outcome,
    SolverNonConvergence,
)
from .model import DISTORTION_ORDER, IntrinsicModel, Pose, PoseSet

logger = logging.getLogger(__name__)

# Fewest views that constrain the intrinsics; a lower min_frames is ignored.
MIN_CALIBRATION_FRAMES = 5

_FIX_FLAGS = {
    "k1": cv2.CALIB_FIX_K1,
    "k2": cv2.CALIB_FIX_K2,
    "k3": cv2.CALIB_FIX_K3,
    "k4": cv2.CALIB_FIX_K4,
    "k5": cv2.CALIB_FIX_K5,
    "k6": cv2.CALIB_FIX_K6,
}


@dataclass(frozen=True)
class CalibrationConfig:
    """Solver options for one calibration session.

    ``fix_aspect_ratio`` holds fx/fy constant at the given ratio; ``None``
    lets both focal lengths vary. ``fixed_terms`` pins distortion terms to
    zero by name; ``p1`` and ``p2`` can only be pinned together.
    ``min_view_spread`` is the smallest accepted angle, in degrees, between
    the board normals of any two views.
    """

    distortion_terms: int = 5
    fix_aspect_ratio: Optional[float] = 1.0
    fixed_terms: tuple[str, ...] = ()
    fix_principal_point: bool = False
    max_iterations: int = 100
    epsilon: float = 1e-9
    min_frames: int = 5
    require_convergence: bool = False
    convergence_tolerance: float = 1e-6
    degeneracy_tolerance: float = 1e-10
    min_view_spread: float = 2.0

    def __post_init__(self) -> None:
        if self.distortion_terms not in (5, 8):
            raise ValueError("distortion_terms must be 5 or 8")
        unknown = set(self.fixed_terms) - set(DISTORTION_ORDER)
        if unknown:
            raise ValueError(f"Unknown distortion terms: {sorted(unknown)}")
        if self.distortion_terms == 5 and set(self.fixed_terms) & {"k4", "k5", "k6"}:
            raise ValueError("k4..k6 only exist in the 8-term model")
        if len(set(self.fixed_terms) & {"p1", "p2"}) == 1:
            raise ValueError("p1 and p2 can only be pinned together")
        if self.fix_aspect_ratio is not None and not self.fix_aspect_ratio > 0:
            raise ValueError("fix_aspect_ratio must be positive")
        if self.max_iterations < 1 or not self.epsilon >= 0:
            raise ValueError("Invalid termination criteria")
        if not self.min_view_spread >= 0:
            raise ValueError("min_view_spread must be non-negative")

    @property
    def flags(self) -> int:
        flags = 0
        if self.distortion_terms == 8:
            flags |= cv2.CALIB_RATIONAL_MODEL
        if self.fix_aspect_ratio is not None:
            flags |= cv2.CALIB_FIX_ASPECT_RATIO
        if self.fix_principal_point:
            flags |= cv2.CALIB_FIX_PRINCIPAL_POINT
        if "p1" in self.fixed_terms:
            flags |= cv2.CALIB_ZERO_TANGENT_DIST
        for name in self.fixed_terms:
            flags |= _FIX_FLAGS.get(name, 0)
        return flags

    @property
    def criteria(self) -> tuple[int, int, float]:
        return (
            cv2.TERM_CRITERIA_COUNT + cv2.TERM_CRITERIA_EPS,
            int(self.max_iterations),
            float(self.epsilon),
        )

    def free_distortion_mask(self) -> np.ndarray:
        names = DISTORTION_ORDER[: self.distortion_terms]
        return np.array([n not in self.fixed_terms for n in names], dtype=bool)


@dataclass(frozen=True, eq=False)
class CalibrationResult:
    model: IntrinsicModel
    poses: PoseSet
    rms: float
    image_size: tuple[int, int]
    frames: tuple[CorrespondenceFrame, ...]
    converged: bool
    relative_step: float
    intrinsic_std: np.ndarray = field(repr=False)

    @property
    def frame_ids(self) -> list[str]:
        return [f.frame_id for f in self.frames]


def initial_camera_matrix(image_size: tuple[int, int], aspect_ratio: Optional[float] = None) -> np.ndarray:
    """Principal point at the image centre, unit focal length.

    With a fixed aspect ratio, fx/fy of this matrix is the ratio the solver
    keeps.
    """
    w, h = image_size
    K = np.eye(3, dtype=np.float64)
    K[0, 0] = float(aspect_ratio) if aspect_ratio is not None else 1.0
    K[1, 1] = 1.0
    K[0, 2] = w / 2.0
    K[1, 2] = h / 2.0
    return K


def _validate_frames(
    frames: Sequence[CorrespondenceFrame],
    image_size: Optional[tuple[int, int]],
    config: CalibrationConfig,
) -> tuple[int, int]:
    required = max(MIN_CALIBRATION_FRAMES, config.min_frames)
    if len(frames) < required:
        raise InsufficientData(f"At least {required} frames are required for calibration, got {len(frames)}")

    counts = {f.num_points for f in frames}
    if len(counts) != 1:
        raise InconsistentGeometry(f"Frames disagree on the point count: {sorted(counts)}")

    ids = [f.frame_id for f in frames]
    if len(set(ids)) != len(ids):
        raise InconsistentGeometry("Frame ids must be unique")

    sizes = {f.image_size for f in frames if f.image_size is not None}
    if image_size is not None:
        sizes.add((int(image_size[0]), int(image_size[1])))
    if len(sizes) > 1:
        raise InconsistentGeometry(f"Frames were captured at different resolutions: {sorted(sizes)}")
    if not sizes:
        raise InconsistentGeometry("Image size is unknown; pass image_size explicitly")

    if next(iter(counts)) < 4:
        raise InsufficientData("Each frame needs at least 4 points")
    return next(iter(sizes))


@dataclass(frozen=True, eq=False)
class _RawSolution:
    rms: float
    camera_matrix: np.ndarray
    distortion: np.ndarray
    rvecs: list[np.ndarray]
    tvecs: list[np.ndarray]
    intrinsic_std: np.ndarray


def _optimize(
    frames: Sequence[CorrespondenceFrame],
    image_size: tuple[int, int],
    config: CalibrationConfig,
) -> Outcome[_RawSolution]:
    obj_points = []
    img_points = []
    for frame in frames:
        obj, img = frame.as_opencv()
        obj_points.append(obj)
        img_points.append(img)

    K0 = initial_camera_matrix(image_size, config.fix_aspect_ratio)
    dist0 = np.zeros((config.distortion_terms, 1), dtype=np.float64)

    try:
        rms, K, dist, rvecs, tvecs, std_intr, _std_extr, _per_view = cv2.calibrateCameraExtended(
            obj_points,
            img_points,
            image_size,
            K0,
            dist0,
            flags=config.flags,
            criteria=config.criteria,
        )
    except cv2.error as exc:
        return Outcome.failure(DegenerateGeometry(f"Calibration failed: {exc}"))

    dist = np.asarray(dist, dtype=np.float64).reshape(-1)[: config.distortion_terms]
    solution = _RawSolution(
        rms=float(rms),
        camera_matrix=np.asarray(K, dtype=np.float64),
        distortion=dist,
        rvecs=[np.asarray(r, dtype=np.float64).reshape(3) for r in rvecs],
        tvecs=[np.asarray(t, dtype=np.float64).reshape(3) for t in tvecs],
        intrinsic_std=np.asarray(std_intr, dtype=np.float64).reshape(-1),
    )

    finite = (
        math.isfinite(solution.rms)
        and np.all(np.isfinite(solution.camera_matrix))
        and np.all(np.isfinite(solution.distortion))
        and all(np.all(np.isfinite(r)) for r in solution.rvecs)
        and all(np.all(np.isfinite(t)) for t in solution.tvecs)
    )
    if not finite:
        return Outcome.failure(DegenerateGeometry("Solver produced non-finite parameters"))
    if solution.camera_matrix[0, 0] <= 0 or solution.camera_matrix[1, 1] <= 0:
        return Outcome.failure(DegenerateGeometry("Solver produced a non-positive focal length"))
    return Outcome.success(solution)


def _view_spread(poses: Sequence[Pose]) -> float:
    """Largest angle in degrees between the board normals of any two poses."""
    normals = np.array([p.rotation_matrix[:, 2] for p in poses])
    cosines = np.clip(np.abs(normals @ normals.T), 0.0, 1.0)
    return math.degrees(math.acos(float(cosines.min())))


def _joint_jacobian(
    frames: Sequence[CorrespondenceFrame],
    model: IntrinsicModel,
    poses: Sequence[Pose],
    config: CalibrationConfig,
) -> tuple[np.ndarray, np.ndarray, np.ndarray, int]:
    """Stack the Jacobian of all residuals with respect to the free parameters.

    Column layout: focal (1 or 2), principal point (0 or 2), free distortion
    terms, then 6 pose parameters per frame. Returns ``(J, residuals,
    params, n_camera_columns)`` where the camera columns exclude distortion.
    """

    dist_mask = config.free_distortion_mask()
    n_focal = 1 if config.fix_aspect_ratio is not None else 2
    n_pp = 0 if config.fix_principal_point else 2
    n_dist = int(dist_mask.sum())
    n_shared = n_focal + n_pp + n_dist
    n_rows = 2 * sum(f.num_points for f in frames)

    J = np.zeros((n_rows, n_shared + 6 * len(frames)), dtype=np.float64)
    residuals = np.zeros(n_rows, dtype=np.float64)

    if n_focal == 1:
        shared = [model.fy]
    else:
        shared = [model.fx, model.fy]
    if n_pp:
        shared += [model.cx, model.cy]
    shared += list(model.distortion[dist_mask])
    extrinsic = []

    row = 0
    for index, (frame, pose) in enumerate(zip(frames, poses)):
        proj, jac = cv2.projectPoints(
            frame.object_points.reshape(-1, 1, 3).astype(np.float64),
            pose.rvec.reshape(3, 1),
            pose.tvec.reshape(3, 1),
            model.camera_matrix,
            model.distortion.reshape(-1, 1),
        )
        n = 2 * frame.num_points
        block = slice(row, row + n)
        residuals[block] = (frame.image_points.astype(np.float64) - proj.reshape(-1, 2)).reshape(-1)

        # cv2 column order: rvec(3), tvec(3), fx, fy, cx, cy, distortion...
        if n_focal == 1:
            J[block, 0] = jac[:, 6] * config.fix_aspect_ratio + jac[:, 7]
        else:
            J[block, 0:2] = jac[:, 6:8]
        if n_pp:
            J[block, n_focal : n_focal + 2] = jac[:, 8:10]
        dist_cols = jac[:, 10 : 10 + config.distortion_terms]
        J[block, n_focal + n_pp : n_shared] = dist_cols[:, dist_mask]

        col = n_shared + 6 * index
        J[block, col : col + 6] = jac[:, 0:6]
        extrinsic += list(pose.rvec) + list(pose.tvec)
        row += n

    params = np.asarray(shared + extrinsic, dtype=np.float64)
    return J, residuals, params, n_focal + n_pp


def _diagnose(
    frames: Sequence[CorrespondenceFrame],
    model: IntrinsicModel,
    poses: Sequence[Pose],
    config: CalibrationConfig,
) -> tuple[float, float]:
    """Return ``(conditioning, relative_step)`` at the solution.

    ``conditioning`` is the smallest-to-largest singular value ratio of the
    column-normalised Jacobian restricted to the camera matrix and pose
    parameters. ``relative_step`` is the norm of one Gauss-Newton update
    relative to the parameter norm.
    """

    J, residuals, params, n_camera = _joint_jacobian(frames, model, poses, config)
    norms = np.linalg.norm(J, axis=0)
    norms[norms == 0] = 1.0
    Jn = J / norms

    n_dist = int(config.free_distortion_mask().sum())
    camera_cols = np.r_[0:n_camera, n_camera + n_dist : Jn.shape[1]]
    s = np.linalg.svd(Jn[:, camera_cols], compute_uv=False)
    conditioning = float(s[-1] / s[0]) if s[0] > 0 else 0.0

    step_scaled, *_ = np.linalg.lstsq(Jn, residuals, rcond=config.degeneracy_tolerance)
    step = step_scaled / norms
    relative_step = float(np.linalg.norm(step) / max(np.linalg.norm(params), 1e-12))
    return conditioning, relative_step


def try_calibrate_intrinsics(
    frames: Sequence[CorrespondenceFrame],
    image_size: Optional[tuple[int, int]] = None,
    config: Optional[CalibrationConfig] = None,
) -> Outcome[CalibrationResult]:
    """Like :func:`calibrate_intrinsics`, but returns failures as an :class:`Outcome`."""
    return Outcome.capture(calibrate_intrinsics, frames, image_size, config)


def calibrate_intrinsics(
    frames: Sequence[CorrespondenceFrame],
    image_size: Optional[tuple[int, int]] = None,
    config: Optional[CalibrationConfig] = None,
) -> CalibrationResult:
    """Solve the shared intrinsics, distortion and one pose per frame.

    All frames are optimised jointly (OpenCV's Levenberg-Marquardt) until the
    iteration budget or the relative parameter change ``epsilon`` is reached.
    Raises :class:`InsufficientData`, :class:`InconsistentGeometry` or
    :class:`DegenerateGeometry`; nothing is returned on failure.
    """

    config = config or CalibrationConfig()
    frames = tuple(frames)
    size = _validate_frames(frames, image_size, config)

    logger.info(
        "Calibrating %d frames at %dx%d (%d distortion terms, flags=0x%x)",
        len(frames),
        size[0],
        size[1],
        config.distortion_terms,
        config.flags,
    )
    solution = _optimize(frames, size, config).unwrap()

    model = IntrinsicModel(solution.camera_matrix, solution.distortion)
    pose_list = [Pose(r, t) for r, t in zip(solution.rvecs, solution.tvecs)]

    # parallel board planes leave the focal length and principal point underdetermined
    spread = _view_spread(pose_list)
    logger.debug("Board normals span %.2f deg", spread)
    if spread < config.min_view_spread:
        raise DegenerateGeometry(
            f"All views show the board at nearly the same orientation ({spread:.2f} deg spread)"
        )

    conditioning, relative_step = _diagnose(frames, model, pose_list, config)
    if conditioning < config.degeneracy_tolerance:
        raise DegenerateGeometry(
            f"Views are not varied enough to constrain the intrinsics (conditioning {conditioning:.3g})"
        )

    converged = relative_step <= config.convergence_tolerance
    if not converged:
        message = (
            f"Solver stopped after at most {config.max_iterations} iterations without converging "
            f"(remaining relative step {relative_step:.3g})"
        )
        if config.require_convergence:
            raise SolverNonConvergence(message)
        logger.warning(message)

    poses = PoseSet.from_items([(f.frame_id, p) for f, p in zip(frames, pose_list)])
    logger.info(
        "Calibration RMS %.4f px: fx=%.2f fy=%.2f cx=%.2f cy=%.2f",
        solution.rms,
        model.fx,
        model.fy,
        model.cx,
        model.cy,
    )
    return CalibrationResult(
        model=model,
        poses=poses,
        rms=solution.rms,
        image_size=size,
        frames=frames,
        converged=converged,
        relative_step=relative_step,
        intrinsic_std=solution.intrinsic_std,
    )
