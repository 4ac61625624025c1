"""Pinhole camera calibration, pose recovery and projection from chessboard views."""

from .chessboard import (
    ChessboardPattern,
    CornerDetectionConfig,
    detect_corners,
    draw_corners,
)
from .correspondence import (
    CorrespondenceFrame,
    collect_frame,
    collect_frames,
    load_correspondences,
    save_correspondences,
)
from .errors import (
    CalibrationError,
    DegenerateGeometry,
    ErrorKind,
    InconsistentGeometry,
    InsufficientData,
    IOFailure,
    Outcome,
    SolverNonConvergence,
)
from .model import IntrinsicModel, Pose, PoseSet
from .calibration import (
    CalibrationConfig,
    CalibrationResult,
    calibrate_intrinsics,
    try_calibrate_intrinsics,
)
from .evaluation import ReprojectionReport, evaluate_reprojection, weighted_rmse
from .artifact import CalibrationArtifact, load_artifact, save_artifact
from .pose import PoseConfig, solve_pose, try_solve_pose
from .rotation import GIMBAL_LOCK_THRESHOLD, EulerAngles, rotation_to_euler
from .projection import project_points
from .session import OverlayMode, PoseLog, PoseTracker

__all__ = [
    "ChessboardPattern",
    "CornerDetectionConfig",
    "CorrespondenceFrame",
    "IntrinsicModel",
    "Pose",
    "PoseSet",
    "CalibrationConfig",
    "CalibrationResult",
    "CalibrationArtifact",
    "ReprojectionReport",
    "PoseConfig",
    "EulerAngles",
    "OverlayMode",
    "PoseTracker",
    "PoseLog",
    "ErrorKind",
    "Outcome",
    "CalibrationError",
    "InsufficientData",
    "InconsistentGeometry",
    "DegenerateGeometry",
    "SolverNonConvergence",
    "IOFailure",
    "GIMBAL_LOCK_THRESHOLD",
    "detect_corners",
    "draw_corners",
    "collect_frame",
    "collect_frames",
    "save_correspondences",
    "load_correspondences",
    "calibrate_intrinsics",
    "try_calibrate_intrinsics",
    "evaluate_reprojection",
    "weighted_rmse",
    "save_artifact",
    "load_artifact",
    "solve_pose",
    "try_solve_pose",
    "rotation_to_euler",
    "project_points",
]
