import numpy as np
import pytest

from camcalib import (
    CalibrationConfig,
    CorrespondenceFrame,
    DegenerateGeometry,
    ErrorKind,
    InconsistentGeometry,
    InsufficientData,
    SolverNonConvergence,
    calibrate_intrinsics,
    evaluate_reprojection,
    try_calibrate_intrinsics,
)
from camcalib.calibration import MIN_CALIBRATION_FRAMES, _view_spread, initial_camera_matrix

from conftest import GT_DISTORTION, IMAGE_SIZE, VIEWS, make_frames, view_pose


def test_recovers_ground_truth_from_noise_free_views(synthetic_frames):
    result = calibrate_intrinsics(synthetic_frames)

    assert result.model.fx == pytest.approx(800.0, abs=0.05)
    assert result.model.fy == pytest.approx(800.0, abs=0.05)
    assert result.model.cx == pytest.approx(320.0, abs=0.05)
    assert result.model.cy == pytest.approx(240.0, abs=0.05)
    np.testing.assert_allclose(result.model.distortion, GT_DISTORTION, atol=1e-4)
    assert result.rms < 1e-3
    assert result.converged
    assert result.image_size == IMAGE_SIZE
    assert result.poses.ids == [f.frame_id for f in synthetic_frames]


def test_solver_rms_matches_weighted_overall_rmse(noisy_frames):
    result = calibrate_intrinsics(noisy_frames)
    report = evaluate_reprojection(result.frames, result.poses, result.model)

    assert report.overall_rmse == pytest.approx(result.rms, rel=1e-4)
    assert 0.1 < report.overall_rmse < 0.3


def test_recovers_poses(pattern, gt_model):
    frames, poses = make_frames(pattern, gt_model)
    result = calibrate_intrinsics(frames)
    for frame, expected in zip(frames, poses):
        solved = result.poses[frame.frame_id]
        np.testing.assert_allclose(solved.rvec, expected.rvec, atol=1e-4)
        np.testing.assert_allclose(solved.tvec, expected.tvec, atol=1e-3)


def test_four_frames_is_insufficient(synthetic_frames):
    with pytest.raises(InsufficientData):
        calibrate_intrinsics(synthetic_frames[:4])


def test_five_frames_is_enough(synthetic_frames):
    result = calibrate_intrinsics(synthetic_frames[:5])
    assert len(result.poses) == 5
    assert result.model.fx == pytest.approx(800.0, abs=0.5)


def test_try_calibrate_returns_failure_outcome(synthetic_frames):
    outcome = try_calibrate_intrinsics(synthetic_frames[:3])
    assert not outcome.ok
    assert outcome.kind is ErrorKind.INSUFFICIENT_DATA
    with pytest.raises(InsufficientData):
        outcome.unwrap()


def test_mismatched_point_counts(synthetic_frames):
    short = CorrespondenceFrame(
        frame_id="short",
        object_points=synthetic_frames[0].object_points[:20],
        image_points=synthetic_frames[0].image_points[:20],
        image_size=IMAGE_SIZE,
    )
    with pytest.raises(InconsistentGeometry):
        calibrate_intrinsics(list(synthetic_frames[:5]) + [short])


def test_mismatched_image_sizes(synthetic_frames):
    other = CorrespondenceFrame(
        frame_id="other",
        object_points=synthetic_frames[0].object_points,
        image_points=synthetic_frames[0].image_points,
        image_size=(1280, 720),
    )
    with pytest.raises(InconsistentGeometry):
        calibrate_intrinsics(list(synthetic_frames[:5]) + [other])


def test_duplicate_frame_ids(synthetic_frames):
    frames = list(synthetic_frames[:5]) + [synthetic_frames[0]]
    with pytest.raises(InconsistentGeometry):
        calibrate_intrinsics(frames)


def test_repeated_viewpoint_is_degenerate(pattern, gt_model):
    frames, _ = make_frames(pattern, gt_model, views=[VIEWS[0]] * 5)
    config = CalibrationConfig(fixed_terms=("k1", "k2", "k3", "p1", "p2"))
    outcome = try_calibrate_intrinsics(frames, config=config)
    assert outcome.kind is ErrorKind.DEGENERATE_GEOMETRY
    with pytest.raises(DegenerateGeometry):
        outcome.unwrap()


def test_iteration_budget_exhaustion_is_reported(synthetic_frames):
    result = calibrate_intrinsics(synthetic_frames, config=CalibrationConfig(max_iterations=1))
    assert not result.converged
    assert result.relative_step > 1e-6


def test_iteration_budget_exhaustion_can_be_fatal(synthetic_frames):
    config = CalibrationConfig(max_iterations=1, require_convergence=True)
    with pytest.raises(SolverNonConvergence):
        calibrate_intrinsics(synthetic_frames, config=config)


def test_eight_term_model(synthetic_frames):
    config = CalibrationConfig(distortion_terms=8, fixed_terms=("k3", "k4", "k5", "k6"))
    result = calibrate_intrinsics(synthetic_frames, config=config)
    assert result.model.distortion_terms == 8
    np.testing.assert_allclose(result.model.distortion[:5], GT_DISTORTION, atol=1e-4)
    np.testing.assert_allclose(result.model.distortion[5:], 0.0, atol=1e-12)


def test_pinned_terms_stay_zero(synthetic_frames):
    config = CalibrationConfig(fixed_terms=("k3", "p1", "p2"))
    result = calibrate_intrinsics(synthetic_frames, config=config)
    assert result.model.distortion[2] == 0.0
    assert result.model.distortion[3] == 0.0
    assert result.model.distortion[4] == 0.0


def test_free_aspect_ratio(synthetic_frames):
    result = calibrate_intrinsics(synthetic_frames, config=CalibrationConfig(fix_aspect_ratio=None))
    assert result.model.fx == pytest.approx(800.0, abs=0.05)
    assert result.model.fy == pytest.approx(800.0, abs=0.05)


def test_initial_camera_matrix():
    K = initial_camera_matrix((640, 480), 1.0)
    np.testing.assert_array_equal(K, [[1.0, 0.0, 320.0], [0.0, 1.0, 240.0], [0.0, 0.0, 1.0]])


@pytest.mark.parametrize(
    "kwargs",
    [
        {"distortion_terms": 6},
        {"fixed_terms": ("k9",)},
        {"fixed_terms": ("p1",)},
        {"fixed_terms": ("k4",)},
        {"fix_aspect_ratio": 0.0},
        {"max_iterations": 0},
        {"min_view_spread": -1.0},
    ],
)
def test_invalid_config(kwargs):
    with pytest.raises(ValueError):
        CalibrationConfig(**kwargs)


def test_repeated_viewpoint_with_free_distortion_is_degenerate(pattern, gt_model):
    frames, _ = make_frames(pattern, gt_model, views=[VIEWS[0]] * 5)
    outcome = try_calibrate_intrinsics(frames)
    assert outcome.kind is ErrorKind.DEGENERATE_GEOMETRY


def test_view_spread_of_parallel_boards(pattern):
    shifted = [view_pose(pattern, (20, 0, 0), centre) for centre in [(0, 0, 20), (1, 0, 21), (-1, 0.5, 22)]]
    assert _view_spread(shifted) == pytest.approx(0.0, abs=1e-4)

    varied = [view_pose(pattern, *view) for view in VIEWS]
    assert _view_spread(varied) > 20.0


def test_min_frames_cannot_go_below_five(synthetic_frames):
    outcome = try_calibrate_intrinsics(synthetic_frames[:3], config=CalibrationConfig(min_frames=3))
    assert outcome.kind is ErrorKind.INSUFFICIENT_DATA
    assert MIN_CALIBRATION_FRAMES == 5


def test_min_frames_can_be_raised(synthetic_frames):
    outcome = try_calibrate_intrinsics(synthetic_frames[:6], config=CalibrationConfig(min_frames=7))
    assert outcome.kind is ErrorKind.INSUFFICIENT_DATA
