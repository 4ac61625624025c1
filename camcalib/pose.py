"""Single-frame pose recovery against a fixed intrinsic model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import logging

import cv2
import numpy as np

from .correspondence import CorrespondenceFrame
from .errors import DegenerateGeometry, InconsistentGeometry, InsufficientData, Outcome
from .model import IntrinsicModel, Pose

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoseConfig:
    """Options for :func:`solve_pose`.

    ``collinearity_tolerance`` is the smallest allowed ratio between the
    second and first singular value of the centred point cloud, for both the
    3-D layout and the 2-D detections.
    Non-planar layouts with fewer than six points are seeded with
    ``nonplanar_fallback`` because the iterative solver needs six of them.
    """

    method: int = cv2.SOLVEPNP_ITERATIVE
    refine: bool = True
    min_points: int = 4
    collinearity_tolerance: float = 1e-3
    planarity_tolerance: float = 1e-3
    nonplanar_fallback: int = cv2.SOLVEPNP_SQPNP


def _spread_ratio(points: np.ndarray) -> float:
    centred = points - points.mean(axis=0)
    s = np.linalg.svd(centred, compute_uv=False)
    if s[0] <= 0:
        return 0.0
    return float(s[1] / s[0])


def _is_planar(points: np.ndarray, tolerance: float) -> bool:
    centred = points - points.mean(axis=0)
    s = np.linalg.svd(centred, compute_uv=False)
    # same test as the iterative solver: smallest vs middle eigenvalue of the covariance
    if s[1] <= 0:
        return True
    return bool((s[2] / s[1]) ** 2 < tolerance)


def solve_pose(
    object_points: np.ndarray,
    image_points: np.ndarray,
    model: IntrinsicModel,
    config: Optional[PoseConfig] = None,
) -> Pose:
    """Recover the pattern pose from one set of 3-D/2-D correspondences.

    The intrinsic model is held fixed; only rotation and translation are
    estimated. Raises :class:`InsufficientData` below ``config.min_points``
    and :class:`DegenerateGeometry` for collinear layouts or when the solver
    does not produce a usable pose in front of the camera.
    """

    config = config or PoseConfig()
    obj = np.asarray(object_points, dtype=np.float64).reshape(-1, 3)
    img = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)

    if obj.shape[0] != img.shape[0]:
        raise InconsistentGeometry(f"{obj.shape[0]} object points vs {img.shape[0]} image points")
    if obj.shape[0] < max(4, config.min_points):
        raise InsufficientData(f"At least {max(4, config.min_points)} points are required, got {obj.shape[0]}")

    if _spread_ratio(obj) < config.collinearity_tolerance:
        raise DegenerateGeometry("Pattern points are collinear; the pose is ambiguous")
    if _spread_ratio(img) < config.collinearity_tolerance:
        raise DegenerateGeometry("Image points are collinear; the pose is ambiguous")

    dist = model.distortion.reshape(-1, 1)
    method = config.method
    if method == cv2.SOLVEPNP_ITERATIVE and obj.shape[0] < 6 and not _is_planar(obj, config.planarity_tolerance):
        method = config.nonplanar_fallback
    try:
        ok, rvec, tvec = cv2.solvePnP(obj, img, model.camera_matrix, dist, flags=method)
        if ok and config.refine:
            rvec, tvec = cv2.solvePnPRefineLM(obj, img, model.camera_matrix, dist, rvec, tvec)
    except cv2.error as exc:
        raise DegenerateGeometry(f"Pose solver failed: {exc}") from exc

    if not ok:
        raise DegenerateGeometry("Pose solver did not find a solution")

    pose = Pose(rvec, tvec)
    if not pose.is_finite():
        raise DegenerateGeometry("Pose solver produced non-finite values")

    depths = (pose.rotation_matrix @ obj.T + pose.tvec.reshape(3, 1))[2]
    if np.any(depths <= 0):
        raise DegenerateGeometry("Recovered pose places the pattern behind the camera")
    return pose


def solve_frame_pose(
    frame: CorrespondenceFrame,
    model: IntrinsicModel,
    config: Optional[PoseConfig] = None,
) -> Pose:
    return solve_pose(frame.object_points, frame.image_points, model, config)


def try_solve_pose(
    object_points: np.ndarray,
    image_points: np.ndarray,
    model: IntrinsicModel,
    config: Optional[PoseConfig] = None,
) -> Outcome[Pose]:
    """Like :func:`solve_pose`, but returns failures as an :class:`Outcome`."""
    return Outcome.capture(solve_pose, object_points, image_points, model, config)
