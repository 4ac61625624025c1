#!/usr/bin/env python3
"""Live pose read-out and overlay from a camera stream.

Keys: m cycles the overlay mode, a/c/v/n select axes, corners, virtual object
or none, s saves a screenshot, ESC or q quits.
"""

from __future__ import annotations

import argparse
from pathlib import Path

import cv2

from camcalib import OverlayMode, PoseLog, PoseTracker, detect_corners, draw_corners, load_artifact
from camcalib.chessboard import image_size_of
from camcalib.log import setup_logger
from camcalib.session import next_mode

from _common import (
    add_detection_args,
    add_logging_args,
    add_pattern_args,
    detection_config_from_args,
    pattern_from_args,
)
from project_overlay import render

MODE_KEYS = {
    ord("a"): OverlayMode.AXES,
    ord("c"): OverlayMode.CORNERS,
    ord("v"): OverlayMode.VIRTUAL_OBJECT,
    ord("n"): OverlayMode.NONE,
}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("calibration", type=Path, help="Calibration artifact (.json, .yml or .xml)")
    parser.add_argument("--camera", type=int, default=0, help="Capture device index")
    parser.add_argument("--pose-log", type=Path, default=Path("camera_pose_log.csv"), help="CSV pose log")
    parser.add_argument("--screenshot-dir", type=Path, default=Path("."), help="Where screenshots are written")
    add_pattern_args(parser)
    add_detection_args(parser)
    add_logging_args(parser)
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logger = setup_logger("camcalib", args.log_level, args.log_file)
    artifact = load_artifact(args.calibration)
    pattern = pattern_from_args(args)
    detection = detection_config_from_args(args)

    cap = cv2.VideoCapture(args.camera)
    if not cap.isOpened():
        raise SystemExit(f"Cannot open camera {args.camera}")

    tracker = None
    mode = OverlayMode.AXES
    frame_index = 0
    shots = 0
    try:
        with PoseLog(args.pose_log) as pose_log:
            while True:
                ok, frame = cap.read()
                if not ok or frame is None:
                    break
                if tracker is None:
                    tracker = PoseTracker(artifact, pattern, image_size=image_size_of(frame))

                vis = frame
                corners = detect_corners(frame, pattern, detection)
                if corners is not None:
                    vis = draw_corners(frame, corners, pattern)
                    outcome = tracker.process(corners, frame_index, mode)
                    if outcome.ok:
                        observation = outcome.unwrap()
                        pose_log.write(observation)
                        vis = render(vis, observation, tracker)
                        pitch, yaw, roll = observation.euler.as_tuple()
                        logger.debug("Frame %d: pitch %.1f yaw %.1f roll %.1f", frame_index, pitch, yaw, roll)

                cv2.imshow("Pose", vis)
                key = cv2.waitKey(30) & 0xFF
                if key in (27, ord("q")):
                    break
                if key == ord("m"):
                    mode = next_mode(mode)
                elif key in MODE_KEYS:
                    mode = MODE_KEYS[key]
                elif key == ord("s"):
                    shots += 1
                    args.screenshot_dir.mkdir(parents=True, exist_ok=True)
                    cv2.imwrite(str(args.screenshot_dir / f"pose_{shots:03d}.png"), vis)
                frame_index += 1
    finally:
        cap.release()
        cv2.destroyAllWindows()
    print(f"Processed {frame_index} frames, pose log written to {args.pose_log}")


if __name__ == "__main__":
    main()
