import numpy as np
import pytest

from camcalib import IntrinsicModel, Pose, PoseSet


def test_from_parameters():
    model = IntrinsicModel.from_parameters(500.0, 510.0, 320.0, 240.0)
    assert (model.fx, model.fy, model.cx, model.cy) == (500.0, 510.0, 320.0, 240.0)
    assert model.distortion_terms == 5
    assert model.distortion_dict()["k1"] == 0.0


def test_rejects_unsupported_distortion_length():
    with pytest.raises(ValueError):
        IntrinsicModel(np.eye(3), np.zeros(4))
    IntrinsicModel(np.eye(3), np.zeros(8))


def test_rejects_skew():
    K = np.array([[500.0, 1.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])
    with pytest.raises(ValueError):
        IntrinsicModel(K, np.zeros(5))


def test_model_is_read_only():
    model = IntrinsicModel.from_parameters(500.0, 500.0, 320.0, 240.0)
    with pytest.raises(ValueError):
        model.camera_matrix[0, 0] = 1.0


def test_rescaled():
    model = IntrinsicModel.from_parameters(800.0, 800.0, 320.0, 240.0, [-0.1, 0.01, 0, 0, 0])
    half = model.rescaled((640, 480), (320, 240))
    assert (half.fx, half.fy, half.cx, half.cy) == (400.0, 400.0, 160.0, 120.0)
    np.testing.assert_array_equal(half.distortion, model.distortion)

    wide = model.rescaled((640, 480), (1280, 720))
    assert wide.fx == pytest.approx(1600.0)
    assert wide.fy == pytest.approx(1200.0)


def test_pose_from_matrix():
    R = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    pose = Pose.from_matrix(R, [1.0, 2.0, 3.0])
    np.testing.assert_allclose(pose.rvec, [0.0, 0.0, np.pi / 2], atol=1e-12)
    np.testing.assert_allclose(pose.rotation_matrix, R, atol=1e-12)
    assert pose.is_finite()


def test_pose_set_keeps_order_and_rejects_duplicates():
    poses = PoseSet.from_items([("b", Pose(np.zeros(3), np.ones(3))), ("a", Pose(np.zeros(3), np.zeros(3)))])
    assert poses.ids == ["b", "a"]
    assert "a" in poses and len(poses) == 2
    with pytest.raises(KeyError):
        poses.add("a", Pose(np.zeros(3), np.zeros(3)))

    tvecs = poses.tvecs()
    tvecs[0][0] = 42.0
    assert poses["b"].tvec[0] == 1.0
