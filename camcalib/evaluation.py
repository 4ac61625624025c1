"""Reprojection error statistics for a solved calibration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import logging
import math

import numpy as np

from .correspondence import CorrespondenceFrame
from .errors import InconsistentGeometry
from .model import IntrinsicModel, PoseSet
from .projection import reprojection_residuals

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReprojectionReport:
    frame_ids: list[str]
    per_image_rmse: list[float]
    point_counts: list[int]
    squared_error_sums: list[float]
    residuals: list[np.ndarray]
    overall_rmse: float

    @property
    def mean_of_per_image_rmse(self) -> float:
        """Unweighted mean of the per-image values, for comparison only."""
        if not self.per_image_rmse:
            return 0.0
        return float(np.mean(self.per_image_rmse))

    @property
    def max_rmse(self) -> float:
        return max(self.per_image_rmse, default=0.0)

    def worst_frames(self, count: int = 3) -> list[tuple[str, float]]:
        order = np.argsort(self.per_image_rmse)[::-1][:count]
        return [(self.frame_ids[i], self.per_image_rmse[i]) for i in order]


def weighted_rmse(squared_error_sums: Sequence[float], point_counts: Sequence[int]) -> float:
    """sqrt(total squared residual / total point count) across frames."""
    total_points = int(sum(point_counts))
    if total_points == 0:
        return 0.0
    return math.sqrt(float(sum(squared_error_sums)) / total_points)


def evaluate_reprojection(
    frames: Sequence[CorrespondenceFrame],
    poses: PoseSet,
    model: IntrinsicModel,
) -> ReprojectionReport:
    """Project every frame through its own pose and score it against the detections."""

    ids: list[str] = []
    per_image: list[float] = []
    counts: list[int] = []
    sq_sums: list[float] = []
    residuals: list[np.ndarray] = []

    for frame in frames:
        if frame.frame_id not in poses:
            raise InconsistentGeometry(f"No pose for frame {frame.frame_id}")
        res = reprojection_residuals(frame.object_points, frame.image_points, poses[frame.frame_id], model)
        sq = float(np.sum(res * res))
        n = res.shape[0]
        ids.append(frame.frame_id)
        counts.append(n)
        sq_sums.append(sq)
        per_image.append(math.sqrt(sq / n) if n else 0.0)
        residuals.append(res)
        logger.debug("Frame %s: RMSE %.4f px over %d points", frame.frame_id, per_image[-1], n)

    return ReprojectionReport(
        frame_ids=ids,
        per_image_rmse=per_image,
        point_counts=counts,
        squared_error_sums=sq_sums,
        residuals=residuals,
        overall_rmse=weighted_rmse(sq_sums, counts),
    )
