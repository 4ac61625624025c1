"""Value types for the intrinsic model and per-frame poses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Mapping, Sequence

import cv2
import numpy as np

DISTORTION_ORDER = ("k1", "k2", "p1", "p2", "k3", "k4", "k5", "k6")
SUPPORTED_DISTORTION_TERMS = (5, 8)


@dataclass(frozen=True, eq=False)
class IntrinsicModel:
    """Pinhole camera matrix with zero skew plus a 5- or 8-term distortion vector."""

    camera_matrix: np.ndarray
    distortion: np.ndarray

    def __post_init__(self) -> None:
        K = np.asarray(self.camera_matrix, dtype=np.float64).reshape(3, 3).copy()
        dist = np.asarray(self.distortion, dtype=np.float64).reshape(-1).copy()
        if dist.size not in SUPPORTED_DISTORTION_TERMS:
            raise ValueError(f"Distortion vector must have 5 or 8 terms, got {dist.size}")
        if abs(K[0, 1]) > 1e-9 or np.any(np.abs(K[2, :2]) > 1e-9) or abs(K[2, 2] - 1.0) > 1e-9:
            raise ValueError("Camera matrix must be of the form [[fx,0,cx],[0,fy,cy],[0,0,1]]")
        K.setflags(write=False)
        dist.setflags(write=False)
        object.__setattr__(self, "camera_matrix", K)
        object.__setattr__(self, "distortion", dist)

    @classmethod
    def from_parameters(
        cls,
        fx: float,
        fy: float,
        cx: float,
        cy: float,
        distortion: Sequence[float] | np.ndarray = (0.0, 0.0, 0.0, 0.0, 0.0),
    ) -> "IntrinsicModel":
        K = np.array([[fx, 0.0, cx], [0.0, fy, cy], [0.0, 0.0, 1.0]], dtype=np.float64)
        return cls(K, np.asarray(distortion, dtype=np.float64))

    @property
    def fx(self) -> float:
        return float(self.camera_matrix[0, 0])

    @property
    def fy(self) -> float:
        return float(self.camera_matrix[1, 1])

    @property
    def cx(self) -> float:
        return float(self.camera_matrix[0, 2])

    @property
    def cy(self) -> float:
        return float(self.camera_matrix[1, 2])

    @property
    def distortion_terms(self) -> int:
        return int(self.distortion.size)

    def distortion_dict(self) -> dict[str, float]:
        return {name: float(v) for name, v in zip(DISTORTION_ORDER, self.distortion)}

    def rescaled(self, from_size: tuple[int, int], to_size: tuple[int, int]) -> "IntrinsicModel":
        """Scale fx, cx by the width ratio and fy, cy by the height ratio.

        Distortion coefficients act on normalised coordinates and are kept.
        Reusing a model at a different resolution is only valid when the
        image was resized, not cropped.
        """
        sx = float(to_size[0]) / float(from_size[0])
        sy = float(to_size[1]) / float(from_size[1])
        K = np.array(self.camera_matrix, dtype=np.float64)
        K[0, 0] *= sx
        K[0, 2] *= sx
        K[1, 1] *= sy
        K[1, 2] *= sy
        return IntrinsicModel(K, self.distortion)

    def allclose(self, other: "IntrinsicModel", rtol: float = 1e-9, atol: float = 1e-12) -> bool:
        return (
            self.distortion.size == other.distortion.size
            and np.allclose(self.camera_matrix, other.camera_matrix, rtol=rtol, atol=atol)
            and np.allclose(self.distortion, other.distortion, rtol=rtol, atol=atol)
        )


@dataclass(frozen=True, eq=False)
class Pose:
    """Rotation (Rodrigues vector) and translation of the pattern in camera coordinates."""

    rvec: np.ndarray
    tvec: np.ndarray

    def __post_init__(self) -> None:
        rvec = np.asarray(self.rvec, dtype=np.float64).reshape(3).copy()
        tvec = np.asarray(self.tvec, dtype=np.float64).reshape(3).copy()
        rvec.setflags(write=False)
        tvec.setflags(write=False)
        object.__setattr__(self, "rvec", rvec)
        object.__setattr__(self, "tvec", tvec)

    @classmethod
    def from_matrix(cls, rotation: np.ndarray, translation: np.ndarray) -> "Pose":
        rvec, _ = cv2.Rodrigues(np.asarray(rotation, dtype=np.float64).reshape(3, 3))
        return cls(rvec, translation)

    @property
    def rotation_matrix(self) -> np.ndarray:
        R, _ = cv2.Rodrigues(self.rvec.reshape(3, 1))
        return R

    def is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self.rvec)) and np.all(np.isfinite(self.tvec)))

    def allclose(self, other: "Pose", rtol: float = 1e-9, atol: float = 1e-12) -> bool:
        return np.allclose(self.rvec, other.rvec, rtol=rtol, atol=atol) and np.allclose(
            self.tvec, other.tvec, rtol=rtol, atol=atol
        )


@dataclass
class PoseSet:
    """Poses indexed by correspondence frame id, in batch order."""

    _poses: dict[str, Pose] = field(default_factory=dict)

    @classmethod
    def from_items(cls, items: Mapping[str, Pose] | Sequence[tuple[str, Pose]]) -> "PoseSet":
        pairs = items.items() if isinstance(items, Mapping) else items
        poses = cls()
        for frame_id, pose in pairs:
            poses.add(frame_id, pose)
        return poses

    def add(self, frame_id: str, pose: Pose) -> None:
        if frame_id in self._poses:
            raise KeyError(f"Duplicate frame id: {frame_id}")
        self._poses[frame_id] = Pose(pose.rvec, pose.tvec)

    def __getitem__(self, frame_id: str) -> Pose:
        return self._poses[frame_id]

    def __contains__(self, frame_id: object) -> bool:
        return frame_id in self._poses

    def __len__(self) -> int:
        return len(self._poses)

    def __iter__(self) -> Iterator[str]:
        return iter(self._poses)

    @property
    def ids(self) -> list[str]:
        return list(self._poses)

    def items(self) -> list[tuple[str, Pose]]:
        return list(self._poses.items())

    def rvecs(self) -> list[np.ndarray]:
        return [np.array(p.rvec) for p in self._poses.values()]

    def tvecs(self) -> list[np.ndarray]:
        return [np.array(p.tvec) for p in self._poses.values()]
