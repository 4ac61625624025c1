"""Rotation to Euler angle conversion for pose read-out."""

from __future__ import annotations

import math
from dataclasses import dataclass

import cv2
import numpy as np

# Gimbal-lock detection threshold on sy = sqrt(R00^2 + R10^2). Below it the
# yaw is within ~1e-6 rad of +/-90 degrees and pitch and roll are no longer
# separable, so roll is pinned to zero.
GIMBAL_LOCK_THRESHOLD = 1e-6


@dataclass(frozen=True)
class EulerAngles:
    """Pitch (about X), yaw (about Y) and roll (about Z) in degrees."""

    pitch: float
    yaw: float
    roll: float

    def as_tuple(self) -> tuple[float, float, float]:
        return self.pitch, self.yaw, self.roll


def _as_matrix(rotation: np.ndarray) -> np.ndarray:
    arr = np.asarray(rotation, dtype=np.float64)
    if arr.size == 3:
        R, _ = cv2.Rodrigues(arr.reshape(3, 1))
        return R
    if arr.size == 9:
        return arr.reshape(3, 3)
    raise ValueError("Rotation must be a Rodrigues 3-vector or a 3x3 matrix")


def rotation_to_euler(rotation: np.ndarray) -> EulerAngles:
    """Decompose ``R = Rz(roll) @ Ry(yaw) @ Rx(pitch)`` into degrees."""

    R = _as_matrix(rotation)
    sy = math.sqrt(R[0, 0] * R[0, 0] + R[1, 0] * R[1, 0])

    if sy >= GIMBAL_LOCK_THRESHOLD:
        pitch = math.atan2(R[2, 1], R[2, 2])
        yaw = math.atan2(-R[2, 0], sy)
        roll = math.atan2(R[1, 0], R[0, 0])
    else:
        pitch = math.atan2(-R[1, 2], R[1, 1])
        yaw = math.atan2(-R[2, 0], sy)
        roll = 0.0

    return EulerAngles(math.degrees(pitch), math.degrees(yaw), math.degrees(roll))


def euler_to_rotation(pitch: float, yaw: float, roll: float) -> np.ndarray:
    """Inverse of :func:`rotation_to_euler` (angles in degrees)."""

    a, b, c = (math.radians(v) for v in (pitch, yaw, roll))
    Rx = np.array([[1, 0, 0], [0, math.cos(a), -math.sin(a)], [0, math.sin(a), math.cos(a)]])
    Ry = np.array([[math.cos(b), 0, math.sin(b)], [0, 1, 0], [-math.sin(b), 0, math.cos(b)]])
    Rz = np.array([[math.cos(c), -math.sin(c), 0], [math.sin(c), math.cos(c), 0], [0, 0, 1]])
    return Rz @ Ry @ Rx
