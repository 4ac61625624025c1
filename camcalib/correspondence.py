"""Pairing detected image corners with the pattern's canonical 3-D points."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Sequence

import logging
import zipfile

import numpy as np

from .chessboard import ChessboardPattern
from .errors import InconsistentGeometry, IOFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class CorrespondenceFrame:
    """One observation: N pattern points paired positionally with N image points.

    Points are stored as float32, the type OpenCV's calibration expects. That
    limits how exactly noise-free data can be fitted: image coordinates of a
    few hundred pixels carry rounding of about 1e-5 px.
    """

    frame_id: str
    object_points: np.ndarray
    image_points: np.ndarray
    image_size: Optional[tuple[int, int]] = None

    def __post_init__(self) -> None:
        obj = np.asarray(self.object_points, dtype=np.float32).reshape(-1, 3).copy()
        img = np.asarray(self.image_points, dtype=np.float32).reshape(-1, 2).copy()
        if obj.shape[0] != img.shape[0]:
            raise InconsistentGeometry(
                f"Frame {self.frame_id}: {obj.shape[0]} object points vs {img.shape[0]} image points"
            )
        obj.setflags(write=False)
        img.setflags(write=False)
        object.__setattr__(self, "object_points", obj)
        object.__setattr__(self, "image_points", img)
        if self.image_size is not None:
            object.__setattr__(self, "image_size", (int(self.image_size[0]), int(self.image_size[1])))

    @property
    def num_points(self) -> int:
        return int(self.object_points.shape[0])

    def as_opencv(self) -> tuple[np.ndarray, np.ndarray]:
        """Return ``(N,1,3)`` and ``(N,1,2)`` float32 arrays as OpenCV expects them."""
        return self.object_points.reshape(-1, 1, 3).copy(), self.image_points.reshape(-1, 1, 2).copy()


def collect_frame(
    image_points: Optional[np.ndarray],
    pattern: ChessboardPattern,
    *,
    frame_id: str,
    image_size: Optional[tuple[int, int]] = None,
) -> Optional[CorrespondenceFrame]:
    """Build a frame from one detection, or ``None`` if the detection is unusable.

    ``image_points`` is ``None`` when the detector did not find the pattern.
    A detection whose point count differs from the pattern's corner count is
    rejected as well. Batch-size checks are left to the solver.
    """
    if image_points is None:
        logger.debug("Frame %s: pattern not found", frame_id)
        return None

    pts = np.asarray(image_points, dtype=np.float32).reshape(-1, 2)
    if pts.shape[0] != pattern.num_corners:
        logger.warning(
            "Frame %s: expected %d corners, detected %d; rejected",
            frame_id,
            pattern.num_corners,
            pts.shape[0],
        )
        return None
    if not np.all(np.isfinite(pts)):
        logger.warning("Frame %s: non-finite corner coordinates; rejected", frame_id)
        return None

    return CorrespondenceFrame(
        frame_id=str(frame_id),
        object_points=pattern.object_points(),
        image_points=pts,
        image_size=image_size,
    )


def collect_frames(
    detections: Iterable[tuple[str, Optional[np.ndarray], Optional[tuple[int, int]]]],
    pattern: ChessboardPattern,
) -> list[CorrespondenceFrame]:
    """Collect ``(frame_id, image_points, image_size)`` detections into frames."""
    frames: list[CorrespondenceFrame] = []
    rejected = 0
    for frame_id, points, size in detections:
        frame = collect_frame(points, pattern, frame_id=frame_id, image_size=size)
        if frame is None:
            rejected += 1
            continue
        frames.append(frame)
    logger.info("Collected %d frames (%d rejected)", len(frames), rejected)
    return frames


# ---------------------------------------------------------------------------
# Correspondence cache
# ---------------------------------------------------------------------------

def save_correspondences(path: str | Path, frames: Sequence[CorrespondenceFrame]) -> None:
    if not frames:
        raise ValueError("No frames to save")
    counts = {f.num_points for f in frames}
    if len(counts) != 1:
        raise InconsistentGeometry("All cached frames must share the same point count")

    sizes = {f.image_size for f in frames}
    image_size = next(iter(sizes)) if len(sizes) == 1 else None
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as f:
            np.savez_compressed(
                f,
                corner_list=np.stack([fr.image_points for fr in frames]).astype(np.float32),
                point_list=np.stack([fr.object_points for fr in frames]).astype(np.float32),
                frame_ids=np.array([fr.frame_id for fr in frames]),
                image_size=np.array(image_size if image_size is not None else (-1, -1), dtype=np.int64),
            )
    except OSError as exc:
        raise IOFailure(f"Cannot write correspondence cache {path}: {exc}") from exc
    logger.info("Saved %d frames to %s", len(frames), path)


def load_correspondences(path: str | Path) -> list[CorrespondenceFrame]:
    path = Path(path)
    try:
        with np.load(path, allow_pickle=False) as data:
            corners = np.asarray(data["corner_list"], dtype=np.float32)
            points = np.asarray(data["point_list"], dtype=np.float32)
            ids = [str(i) for i in data["frame_ids"]] if "frame_ids" in data else None
            size = tuple(int(v) for v in data["image_size"]) if "image_size" in data else (-1, -1)
    except (OSError, KeyError, ValueError, zipfile.BadZipFile) as exc:
        raise IOFailure(f"Cannot read correspondence cache {path}: {exc}") from exc

    if corners.ndim != 3 or points.ndim != 3 or corners.shape[:2] != points.shape[:2]:
        raise IOFailure(f"Malformed correspondence cache {path}")

    if ids is None:
        ids = [str(i) for i in range(len(corners))]
    image_size = None if size[0] < 0 else (size[0], size[1])
    frames = [
        CorrespondenceFrame(frame_id=fid, object_points=obj, image_points=img, image_size=image_size)
        for fid, obj, img in zip(ids, points, corners)
    ]
    logger.info("Loaded %d cached frames from %s", len(frames), path)
    return frames
