"""Persisted calibration artifact: JSON or OpenCV YAML/XML."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence

import json
import logging
import os

import cv2
import numpy as np

from .calibration import CalibrationResult
from .errors import IOFailure
from .evaluation import ReprojectionReport
from .model import IntrinsicModel, Pose, PoseSet

logger = logging.getLogger(__name__)

OPENCV_SUFFIXES = {".yml", ".yaml", ".xml"}


@dataclass(frozen=True, eq=False)
class CalibrationArtifact:
    image_width: int
    image_height: int
    model: IntrinsicModel
    rvecs: tuple[np.ndarray, ...]
    tvecs: tuple[np.ndarray, ...]
    per_image_rmse: tuple[float, ...]
    overall_rmse: float
    frame_ids: Optional[tuple[str, ...]] = None

    def __post_init__(self) -> None:
        rvecs = tuple(np.asarray(r, dtype=np.float64).reshape(3) for r in self.rvecs)
        tvecs = tuple(np.asarray(t, dtype=np.float64).reshape(3) for t in self.tvecs)
        rmse = tuple(float(e) for e in self.per_image_rmse)
        if not (len(rvecs) == len(tvecs) == len(rmse)):
            raise ValueError("rvecs, tvecs and per_image_rmse must have the same length")
        if self.frame_ids is not None and len(self.frame_ids) != len(rvecs):
            raise ValueError("frame_ids must match the number of poses")
        object.__setattr__(self, "rvecs", rvecs)
        object.__setattr__(self, "tvecs", tvecs)
        object.__setattr__(self, "per_image_rmse", rmse)
        object.__setattr__(self, "image_width", int(self.image_width))
        object.__setattr__(self, "image_height", int(self.image_height))
        object.__setattr__(self, "overall_rmse", float(self.overall_rmse))
        if self.frame_ids is not None:
            object.__setattr__(self, "frame_ids", tuple(str(i) for i in self.frame_ids))

    @classmethod
    def from_calibration(cls, result: CalibrationResult, report: ReprojectionReport) -> "CalibrationArtifact":
        if report.frame_ids != result.poses.ids:
            raise ValueError("Report and calibration cover different frames")
        return cls(
            image_width=result.image_size[0],
            image_height=result.image_size[1],
            model=result.model,
            rvecs=tuple(result.poses.rvecs()),
            tvecs=tuple(result.poses.tvecs()),
            per_image_rmse=tuple(report.per_image_rmse),
            overall_rmse=report.overall_rmse,
            frame_ids=tuple(report.frame_ids),
        )

    @property
    def image_size(self) -> tuple[int, int]:
        return self.image_width, self.image_height

    def poses(self) -> PoseSet:
        ids = self.frame_ids or tuple(str(i) for i in range(len(self.rvecs)))
        return PoseSet.from_items([(fid, Pose(r, t)) for fid, r, t in zip(ids, self.rvecs, self.tvecs)])

    def model_for(self, image_size: tuple[int, int]) -> IntrinsicModel:
        """Intrinsics for a stream of ``image_size``, rescaled when it differs."""
        if tuple(image_size) == self.image_size:
            return self.model
        return self.model.rescaled(self.image_size, image_size)

    def rescaled_to(self, image_size: tuple[int, int]) -> "CalibrationArtifact":
        return CalibrationArtifact(
            image_width=image_size[0],
            image_height=image_size[1],
            model=self.model_for(image_size),
            rvecs=self.rvecs,
            tvecs=self.tvecs,
            per_image_rmse=self.per_image_rmse,
            overall_rmse=self.overall_rmse,
            frame_ids=self.frame_ids,
        )

    def to_dict(self) -> dict:
        data = {
            "image_width": self.image_width,
            "image_height": self.image_height,
            "camera_matrix": self.model.camera_matrix.tolist(),
            "distortion_coefficients": self.model.distortion.reshape(-1, 1).tolist(),
            "rvecs": [r.tolist() for r in self.rvecs],
            "tvecs": [t.tolist() for t in self.tvecs],
            "per_image_rmse": list(self.per_image_rmse),
            "overall_rmse": self.overall_rmse,
        }
        if self.frame_ids is not None:
            data["frame_ids"] = list(self.frame_ids)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CalibrationArtifact":
        camera_matrix = np.asarray(data["camera_matrix"], dtype=np.float64)
        dist = np.asarray(data.get("distortion_coefficients", data.get("dist_coeffs")), dtype=np.float64)
        frame_ids = data.get("frame_ids")
        return cls(
            image_width=int(data["image_width"]),
            image_height=int(data["image_height"]),
            model=IntrinsicModel(camera_matrix, dist.reshape(-1)),
            rvecs=tuple(np.asarray(data.get("rvecs", []), dtype=np.float64).reshape(-1, 3)),
            tvecs=tuple(np.asarray(data.get("tvecs", []), dtype=np.float64).reshape(-1, 3)),
            per_image_rmse=tuple(float(e) for e in data.get("per_image_rmse", [])),
            overall_rmse=float(data["overall_rmse"]),
            frame_ids=tuple(frame_ids) if frame_ids is not None else None,
        )


# ---------------------------------------------------------------------------
# OpenCV FileStorage
# ---------------------------------------------------------------------------

def _write_opencv(path: Path, artifact: CalibrationArtifact) -> None:
    fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_WRITE)
    if not fs.isOpened():
        raise OSError(f"cannot open {path} for writing")
    try:
        fs.write("image_width", artifact.image_width)
        fs.write("image_height", artifact.image_height)
        fs.write("camera_matrix", artifact.model.camera_matrix)
        fs.write("distortion_coefficients", artifact.model.distortion.reshape(-1, 1))
        if artifact.rvecs:
            fs.write("rvecs", np.vstack(artifact.rvecs))
            fs.write("tvecs", np.vstack(artifact.tvecs))
            fs.write("per_image_rmse", np.asarray(artifact.per_image_rmse, dtype=np.float64).reshape(-1, 1))
        fs.write("overall_rmse", artifact.overall_rmse)
        if artifact.frame_ids:
            fs.write("frame_ids", list(artifact.frame_ids))
    finally:
        fs.release()


def _node_values(node: Any) -> list[np.ndarray]:
    """Read a node written either as a matrix or as a sequence of scalars/matrices."""
    if node.empty():
        return []
    if node.isSeq():
        values = []
        for i in range(node.size()):
            item = node.at(i)
            if item.isReal() or item.isInt():
                values.append(np.array([item.real()], dtype=np.float64))
            elif item.isString():
                values.append(np.array([item.string()]))
            else:
                values.append(np.asarray(item.mat(), dtype=np.float64).reshape(-1))
        return values
    mat = node.mat()
    if mat is None:
        return [np.array([node.real()], dtype=np.float64)]
    return list(np.asarray(mat, dtype=np.float64))


def _read_opencv(path: Path) -> dict:
    fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
    if not fs.isOpened():
        raise OSError(f"cannot open {path}")
    try:
        camera_matrix = fs.getNode("camera_matrix").mat()
        dist = fs.getNode("distortion_coefficients").mat()
        if camera_matrix is None or dist is None:
            raise KeyError("camera_matrix")
        width = fs.getNode("image_width")
        height = fs.getNode("image_height")
        overall = fs.getNode("overall_rmse")
        if width.empty() or height.empty() or overall.empty():
            raise KeyError("image_width/image_height/overall_rmse")
        frame_ids = [str(v[0]) for v in _node_values(fs.getNode("frame_ids"))]
        return {
            "image_width": int(width.real()),
            "image_height": int(height.real()),
            "camera_matrix": camera_matrix,
            "distortion_coefficients": dist,
            "rvecs": [v.reshape(3) for v in _node_values(fs.getNode("rvecs"))],
            "tvecs": [v.reshape(3) for v in _node_values(fs.getNode("tvecs"))],
            "per_image_rmse": [float(v[0]) for v in _node_values(fs.getNode("per_image_rmse"))],
            "overall_rmse": overall.real(),
            "frame_ids": frame_ids or None,
        }
    finally:
        fs.release()


# ---------------------------------------------------------------------------
# Public store API
# ---------------------------------------------------------------------------

def save_artifact(path: str | Path, artifact: CalibrationArtifact) -> Path:
    """Write ``artifact``; the format follows the file suffix (JSON by default).

    The file is written to a temporary sibling and moved into place, so a
    failed save never leaves a partial artifact behind.
    """

    path = Path(path)
    tmp = path.with_name(f".{path.stem}.tmp{path.suffix}")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.suffix.lower() in OPENCV_SUFFIXES:
            _write_opencv(tmp, artifact)
        else:
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(artifact.to_dict(), f, indent=2)
        os.replace(tmp, path)
    except (OSError, cv2.error) as exc:
        if tmp.is_file():
            tmp.unlink()
        raise IOFailure(f"Cannot write calibration artifact {path}: {exc}") from exc

    logger.info("Saved calibration artifact to %s", path)
    return path


def load_artifact(path: str | Path) -> CalibrationArtifact:
    path = Path(path)
    try:
        if path.suffix.lower() in OPENCV_SUFFIXES:
            data = _read_opencv(path)
        else:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        artifact = CalibrationArtifact.from_dict(data)
    except (OSError, cv2.error, KeyError, TypeError, ValueError) as exc:
        raise IOFailure(f"Cannot read calibration artifact {path}: {exc}") from exc

    logger.debug("Loaded calibration artifact %s (%dx%d)", path, artifact.image_width, artifact.image_height)
    return artifact


def artifacts_close(a: CalibrationArtifact, b: CalibrationArtifact, rtol: float = 1e-9, atol: float = 1e-12) -> bool:
    """Field-wise comparison within floating-point round-trip tolerance."""

    def _close(x: Sequence, y: Sequence) -> bool:
        return len(x) == len(y) and all(np.allclose(u, v, rtol=rtol, atol=atol) for u, v in zip(x, y))

    return (
        a.image_size == b.image_size
        and a.model.allclose(b.model, rtol=rtol, atol=atol)
        and _close(a.rvecs, b.rvecs)
        and _close(a.tvecs, b.tvecs)
        and _close(a.per_image_rmse, b.per_image_rmse)
        and np.isclose(a.overall_rmse, b.overall_rmse, rtol=rtol, atol=atol)
        and a.frame_ids == b.frame_ids
    )
