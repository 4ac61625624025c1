import json

import numpy as np
import pytest

from camcalib import (
    CalibrationArtifact,
    IntrinsicModel,
    IOFailure,
    calibrate_intrinsics,
    evaluate_reprojection,
    load_artifact,
    save_artifact,
)
from camcalib.artifact import artifacts_close


@pytest.fixture
def artifact():
    model = IntrinsicModel.from_parameters(812.5, 812.5, 321.25, 239.5, [-0.11, 0.025, 0.0012, -0.0004, 0.0])
    return CalibrationArtifact(
        image_width=640,
        image_height=480,
        model=model,
        rvecs=[np.array([0.1, -0.2, 0.03]), np.array([-0.3, 0.1, 0.2])],
        tvecs=[np.array([-4.0, -2.5, 20.0]), np.array([-3.5, -2.0, 21.0])],
        per_image_rmse=[0.21, 0.18],
        overall_rmse=0.1957,
        frame_ids=["img_000", "img_001"],
    )


@pytest.mark.parametrize("name", ["calib.json", "calib.yml", "calib.xml"])
def test_round_trip(tmp_path, artifact, name):
    path = save_artifact(tmp_path / name, artifact)
    loaded = load_artifact(path)
    assert artifacts_close(loaded, artifact)
    assert loaded.frame_ids == ("img_000", "img_001")


def test_json_layout(tmp_path, artifact):
    save_artifact(tmp_path / "calib.json", artifact)
    data = json.loads((tmp_path / "calib.json").read_text())
    assert data["image_width"] == 640
    assert len(data["distortion_coefficients"]) == 5
    assert len(data["rvecs"]) == 2
    assert not list(tmp_path.glob(".*tmp*"))


def test_reads_sequence_style_opencv_file(tmp_path):
    path = tmp_path / "legacy.yml"
    path.write_text(
        "%YAML:1.0\n"
        "---\n"
        "image_width: 640\n"
        "image_height: 480\n"
        "camera_matrix: !!opencv-matrix\n"
        "   rows: 3\n"
        "   cols: 3\n"
        "   dt: d\n"
        "   data: [ 800., 0., 320., 0., 800., 240., 0., 0., 1. ]\n"
        "distortion_coefficients: !!opencv-matrix\n"
        "   rows: 5\n"
        "   cols: 1\n"
        "   dt: d\n"
        "   data: [ -0.1, 0.01, 0., 0., 0. ]\n"
        "rvecs:\n"
        "   - !!opencv-matrix\n"
        "      rows: 3\n"
        "      cols: 1\n"
        "      dt: d\n"
        "      data: [ 0.1, 0.2, 0.3 ]\n"
        "tvecs:\n"
        "   - !!opencv-matrix\n"
        "      rows: 3\n"
        "      cols: 1\n"
        "      dt: d\n"
        "      data: [ 1., 2., 20. ]\n"
        "per_image_rmse: [ 2.5e-01 ]\n"
        "overall_rmse: 2.5e-01\n"
    )
    loaded = load_artifact(path)
    assert loaded.image_size == (640, 480)
    assert loaded.model.fx == 800.0
    np.testing.assert_allclose(loaded.rvecs[0], [0.1, 0.2, 0.3])
    np.testing.assert_allclose(loaded.tvecs[0], [1.0, 2.0, 20.0])
    assert loaded.per_image_rmse == (0.25,)
    assert loaded.frame_ids is None
    assert loaded.poses().ids == ["0"]


def test_missing_file(tmp_path):
    with pytest.raises(IOFailure):
        load_artifact(tmp_path / "missing.json")
    with pytest.raises(IOFailure):
        load_artifact(tmp_path / "missing.yml")


def test_corrupt_and_incomplete_files(tmp_path, artifact):
    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{ not json")
    with pytest.raises(IOFailure):
        load_artifact(corrupt)

    data = artifact.to_dict()
    del data["camera_matrix"]
    incomplete = tmp_path / "incomplete.json"
    incomplete.write_text(json.dumps(data))
    with pytest.raises(IOFailure):
        load_artifact(incomplete)


def test_failed_write_leaves_nothing_behind(tmp_path, artifact):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory")
    target = blocker / "calib.json"
    with pytest.raises(IOFailure):
        save_artifact(target, artifact)
    assert not target.exists()


def test_failed_write_keeps_previous_artifact(tmp_path, artifact):
    path = tmp_path / "calib.json"
    save_artifact(path, artifact)
    before = path.read_text()
    # a directory with the temporary file's name makes the write fail
    (tmp_path / ".calib.tmp.json").mkdir()
    with pytest.raises(IOFailure):
        save_artifact(path, artifact.rescaled_to((320, 240)))
    assert path.read_text() == before


def test_rescaled_to(artifact):
    half = artifact.rescaled_to((320, 240))
    assert half.image_size == (320, 240)
    assert half.model.fx == pytest.approx(406.25)
    assert half.model.cy == pytest.approx(119.75)
    assert artifact.model_for((640, 480)) is artifact.model


def test_from_calibration(tmp_path, noisy_frames):
    result = calibrate_intrinsics(noisy_frames)
    report = evaluate_reprojection(result.frames, result.poses, result.model)
    artifact = CalibrationArtifact.from_calibration(result, report)

    assert artifact.image_size == (640, 480)
    assert artifact.frame_ids == tuple(f.frame_id for f in noisy_frames)
    assert len(artifact.rvecs) == len(noisy_frames)
    assert artifact.overall_rmse == pytest.approx(report.overall_rmse)

    loaded = load_artifact(save_artifact(tmp_path / "calib.yml", artifact))
    assert artifacts_close(loaded, artifact)
