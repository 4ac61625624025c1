"""Forward projection of 3-D points into pixel coordinates."""

from __future__ import annotations

import cv2
import numpy as np

from .model import IntrinsicModel, Pose


def project_points(points3d: np.ndarray, pose: Pose, model: IntrinsicModel) -> np.ndarray:
    """Project ``(N, 3)`` pattern-frame points into the image.

    Points are transformed by ``pose``, normalised, passed through the
    forward distortion model and scaled by the camera matrix. Returns an
    ``(N, 2)`` float64 array.
    """

    pts = np.asarray(points3d, dtype=np.float64).reshape(-1, 3)
    if len(pts) == 0:
        return np.empty((0, 2), dtype=np.float64)

    proj, _ = cv2.projectPoints(
        pts.reshape(-1, 1, 3),
        pose.rvec.reshape(3, 1),
        pose.tvec.reshape(3, 1),
        model.camera_matrix,
        model.distortion.reshape(-1, 1),
    )
    return proj.reshape(-1, 2).astype(np.float64)


def reprojection_residuals(
    object_points: np.ndarray,
    image_points: np.ndarray,
    pose: Pose,
    model: IntrinsicModel,
) -> np.ndarray:
    """Return ``detected - projected`` for every point as an ``(N, 2)`` array."""

    detected = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)
    projected = project_points(object_points, pose, model)
    if projected.shape != detected.shape:
        raise ValueError("Object and image point counts differ")
    return detected - projected
