from __future__ import annotations

import matplotlib

matplotlib.use("Agg")

import cv2
import numpy as np
import pytest

from camcalib import ChessboardPattern, CorrespondenceFrame, IntrinsicModel, Pose
from camcalib.rotation import euler_to_rotation

IMAGE_SIZE = (640, 480)
GT_DISTORTION = np.array([-0.12, 0.03, 0.001, -0.0005, 0.0])

# (pitch, yaw, roll) in degrees and the board-centre position in camera coordinates
VIEWS = [
    ((20, 0, 0), (0.0, 0.0, 20.0)),
    ((-20, 5, 10), (0.5, 0.0, 21.0)),
    ((0, 25, -5), (-0.5, 0.3, 20.0)),
    ((5, -25, 15), (0.0, -0.3, 22.0)),
    ((15, 15, -20), (0.3, 0.2, 21.0)),
    ((-15, -15, 30), (-0.3, 0.2, 20.0)),
    ((25, -10, 5), (0.0, 0.0, 22.0)),
    ((-10, 20, -30), (0.0, 0.0, 21.0)),
]


@pytest.fixture
def pattern() -> ChessboardPattern:
    return ChessboardPattern(9, 6, 1.0)


@pytest.fixture
def gt_model() -> IntrinsicModel:
    return IntrinsicModel.from_parameters(800.0, 800.0, 320.0, 240.0, GT_DISTORTION)


def view_pose(pattern: ChessboardPattern, euler, centre) -> Pose:
    R = euler_to_rotation(*euler)
    board_centre = np.array(
        [(pattern.columns - 1) * pattern.square_size / 2.0, (pattern.rows - 1) * pattern.square_size / 2.0, 0.0]
    )
    t = np.asarray(centre, dtype=np.float64) - R @ board_centre
    return Pose.from_matrix(R, t)


def render_points(pattern: ChessboardPattern, pose: Pose, model: IntrinsicModel) -> np.ndarray:
    proj, _ = cv2.projectPoints(
        pattern.object_points().astype(np.float64),
        pose.rvec.reshape(3, 1),
        pose.tvec.reshape(3, 1),
        model.camera_matrix,
        model.distortion.reshape(-1, 1),
    )
    return proj.reshape(-1, 2)


def make_frames(pattern, model, views=VIEWS, noise: float = 0.0, seed: int = 0):
    rng = np.random.default_rng(seed)
    frames, poses = [], []
    for i, (euler, centre) in enumerate(views):
        pose = view_pose(pattern, euler, centre)
        pts = render_points(pattern, pose, model)
        if noise:
            pts = pts + rng.normal(scale=noise, size=pts.shape)
        assert np.all(pts[:, 0] > 0) and np.all(pts[:, 0] < IMAGE_SIZE[0])
        assert np.all(pts[:, 1] > 0) and np.all(pts[:, 1] < IMAGE_SIZE[1])
        frames.append(
            CorrespondenceFrame(
                frame_id=f"view{i:02d}",
                object_points=pattern.object_points(),
                image_points=pts,
                image_size=IMAGE_SIZE,
            )
        )
        poses.append(pose)
    return frames, poses


@pytest.fixture
def synthetic_frames(pattern, gt_model):
    frames, _ = make_frames(pattern, gt_model)
    return frames


@pytest.fixture
def noisy_frames(pattern, gt_model):
    frames, _ = make_frames(pattern, gt_model, noise=0.2, seed=7)
    return frames
