"""Per-frame pose tracking against a loaded calibration artifact."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import csv
import logging

import numpy as np

from .artifact import CalibrationArtifact
from .chessboard import ChessboardPattern
from .errors import InsufficientData, IOFailure, Outcome
from .model import IntrinsicModel, Pose
from .overlay import axis_segments, board_outline, house_wireframe, project_segments
from .pose import PoseConfig, solve_pose
from .projection import project_points
from .rotation import EulerAngles, rotation_to_euler

logger = logging.getLogger(__name__)


class OverlayMode(Enum):
    NONE = "none"
    AXES = "axes"
    CORNERS = "corners"
    VIRTUAL_OBJECT = "virtual_object"


_MODE_CYCLE = (OverlayMode.AXES, OverlayMode.CORNERS, OverlayMode.VIRTUAL_OBJECT, OverlayMode.NONE)


def next_mode(mode: OverlayMode) -> OverlayMode:
    return _MODE_CYCLE[(_MODE_CYCLE.index(mode) + 1) % len(_MODE_CYCLE)]


@dataclass(frozen=True, eq=False)
class FrameObservation:
    frame_index: int
    pose: Pose
    euler: EulerAngles
    mode: OverlayMode
    overlay: np.ndarray

    @property
    def translation(self) -> np.ndarray:
        return np.array(self.pose.tvec)


class PoseTracker:
    """Solves each incoming detection independently with the artifact's intrinsics.

    The intrinsic model is read once; nothing is carried between frames.
    ``process`` never raises for a bad frame, it returns a failed outcome so
    the caller can skip rendering and move on.
    """

    def __init__(
        self,
        artifact: CalibrationArtifact,
        pattern: ChessboardPattern,
        config: Optional[PoseConfig] = None,
        image_size: Optional[tuple[int, int]] = None,
        axis_length: Optional[float] = None,
    ):
        self.pattern = pattern
        self.config = config or PoseConfig()
        self.model: IntrinsicModel = artifact.model_for(image_size) if image_size else artifact.model
        if image_size and tuple(image_size) != artifact.image_size:
            logger.info(
                "Rescaling intrinsics from %dx%d to %dx%d",
                artifact.image_width,
                artifact.image_height,
                image_size[0],
                image_size[1],
            )
        self.axis_length = axis_length if axis_length is not None else 3.0 * pattern.square_size
        self._object_points = pattern.object_points()
        self._geometry = {
            OverlayMode.AXES: axis_segments(self.axis_length),
            OverlayMode.CORNERS: board_outline(pattern),
            OverlayMode.VIRTUAL_OBJECT: house_wireframe(pattern),
        }

    def overlay_for(self, mode: OverlayMode, pose: Pose) -> np.ndarray:
        if mode is OverlayMode.NONE:
            return np.empty((0, 2), dtype=np.float64)
        if mode is OverlayMode.CORNERS:
            return project_points(self._geometry[mode], pose, self.model)
        return project_segments(self._geometry[mode], pose, self.model)

    def _solve(self, image_points: Optional[np.ndarray], frame_index: int, mode: OverlayMode) -> FrameObservation:
        if image_points is None:
            raise InsufficientData("Pattern not detected")
        pose = solve_pose(self._object_points, image_points, self.model, self.config)
        return FrameObservation(
            frame_index=frame_index,
            pose=pose,
            euler=rotation_to_euler(pose.rvec),
            mode=mode,
            overlay=self.overlay_for(mode, pose),
        )

    def process(
        self,
        image_points: Optional[np.ndarray],
        frame_index: int,
        mode: OverlayMode = OverlayMode.AXES,
    ) -> Outcome[FrameObservation]:
        outcome = Outcome.capture(self._solve, image_points, frame_index, mode)
        if not outcome.ok:
            logger.warning("Frame %d skipped: %s", frame_index, outcome.error)
        return outcome


class PoseLog:
    """CSV log of recovered poses, one row per successful frame."""

    HEADER = ("Frame", "Pitch", "Yaw", "Roll", "Tx", "Ty", "Tz")

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._file = None
        self._writer = None

    def __enter__(self) -> "PoseLog":
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self.path.open("w", newline="", encoding="utf-8")
        except OSError as exc:
            raise IOFailure(f"Cannot open pose log {self.path}: {exc}") from exc
        self._writer = csv.writer(self._file)
        self._writer.writerow(self.HEADER)
        return self

    def __exit__(self, *exc_info) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            self._writer = None

    def write(self, observation: FrameObservation) -> None:
        if self._writer is None:
            raise RuntimeError("PoseLog is not open")
        t = observation.translation
        self._writer.writerow(
            [observation.frame_index, *observation.euler.as_tuple(), float(t[0]), float(t[1]), float(t[2])]
        )
