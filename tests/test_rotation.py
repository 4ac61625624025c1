import math

import numpy as np
import pytest

from camcalib import GIMBAL_LOCK_THRESHOLD, Pose, rotation_to_euler
from camcalib.rotation import euler_to_rotation


def test_identity():
    assert rotation_to_euler(np.eye(3)).as_tuple() == (0.0, 0.0, 0.0)


@pytest.mark.parametrize("angles", [(10.0, 20.0, 30.0), (-45.0, 5.0, 170.0), (80.0, -60.0, -15.0)])
def test_round_trip(angles):
    euler = rotation_to_euler(euler_to_rotation(*angles))
    np.testing.assert_allclose(euler.as_tuple(), angles, atol=1e-9)


def test_accepts_rodrigues_vector():
    R = euler_to_rotation(10.0, 20.0, 30.0)
    rvec = Pose.from_matrix(R, np.zeros(3)).rvec
    np.testing.assert_allclose(rotation_to_euler(rvec).as_tuple(), (10.0, 20.0, 30.0), atol=1e-9)


def test_rejects_bad_shape():
    with pytest.raises(ValueError):
        rotation_to_euler(np.zeros(4))


def yaw_near_ninety(pitch_deg: float, delta: float) -> np.ndarray:
    """Ry(90deg - delta) @ Rx(pitch), so that sy == sin(delta)."""
    b = math.pi / 2 - delta
    a = math.radians(pitch_deg)
    Rx = np.array([[1, 0, 0], [0, math.cos(a), -math.sin(a)], [0, math.sin(a), math.cos(a)]])
    Ry = np.array([[math.cos(b), 0, math.sin(b)], [0, 1, 0], [-math.sin(b), 0, math.cos(b)]])
    return Ry @ Rx


def test_gimbal_lock_branch():
    euler = rotation_to_euler(yaw_near_ninety(30.0, 0.0))
    assert euler.pitch == pytest.approx(30.0)
    assert euler.yaw == pytest.approx(90.0)
    assert euler.roll == 0.0


def test_continuous_across_threshold():
    above = rotation_to_euler(yaw_near_ninety(30.0, 4 * GIMBAL_LOCK_THRESHOLD))
    below = rotation_to_euler(yaw_near_ninety(30.0, GIMBAL_LOCK_THRESHOLD / 4))

    np.testing.assert_allclose(above.as_tuple(), below.as_tuple(), atol=1e-3)
    assert above.pitch == pytest.approx(30.0, abs=1e-6)
    assert below.roll == 0.0


def test_negative_ninety_yaw():
    R = euler_to_rotation(0.0, -90.0, 0.0)
    euler = rotation_to_euler(R)
    assert euler.yaw == pytest.approx(-90.0)
    assert euler.roll == 0.0
