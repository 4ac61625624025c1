#!/usr/bin/env python3
"""Overlay axes, board corners or a virtual object on a still image."""

from __future__ import annotations

import argparse
from pathlib import Path

import cv2

from camcalib import OverlayMode, PoseTracker, detect_corners, draw_corners, load_artifact
from camcalib.chessboard import image_size_of, read_image
from camcalib.log import setup_logger
from camcalib.overlay import AXIS_COLORS, draw_points, draw_segments

from _common import (
    add_detection_args,
    add_logging_args,
    add_pattern_args,
    detection_config_from_args,
    pattern_from_args,
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("image", type=Path, help="Image showing the chessboard")
    parser.add_argument("calibration", type=Path, help="Calibration artifact (.json, .yml or .xml)")
    parser.add_argument("--mode", choices=[m.value for m in OverlayMode], default=OverlayMode.VIRTUAL_OBJECT.value)
    parser.add_argument("--output", type=Path, default=None, help="Output path (default: <image>_with_ar.<ext>)")
    add_pattern_args(parser)
    add_detection_args(parser)
    add_logging_args(parser)
    return parser.parse_args()


def render(frame, observation, tracker: PoseTracker):
    vis = frame
    if observation.mode is OverlayMode.CORNERS:
        vis = draw_points(vis, observation.overlay)
    elif observation.mode is OverlayMode.VIRTUAL_OBJECT:
        vis = draw_segments(vis, observation.overlay, (255, 255, 0), 3)
    if observation.mode is not OverlayMode.NONE:
        axes = tracker.overlay_for(OverlayMode.AXES, observation.pose)
        vis = draw_segments(vis, axes, AXIS_COLORS, 2)
    return vis


def main() -> None:
    args = parse_args()
    setup_logger("camcalib", args.log_level, args.log_file)
    artifact = load_artifact(args.calibration)
    pattern = pattern_from_args(args)

    frame = read_image(args.image)
    corners = detect_corners(frame, pattern, detection_config_from_args(args))
    if corners is None:
        raise SystemExit("No checkerboard detected")

    tracker = PoseTracker(artifact, pattern, image_size=image_size_of(frame))
    outcome = tracker.process(corners, 0, OverlayMode(args.mode))
    if not outcome.ok:
        raise SystemExit(f"Pose estimation failed: {outcome.error}")
    observation = outcome.unwrap()

    vis = render(draw_corners(frame, corners, pattern), observation, tracker)
    output = args.output or args.image.with_name(f"{args.image.stem}_with_ar{args.image.suffix}")
    cv2.imwrite(str(output), vis)
    pitch, yaw, roll = observation.euler.as_tuple()
    print(f"Pitch {pitch:.2f}, yaw {yaw:.2f}, roll {roll:.2f} deg\nSaved overlay to {output}")


if __name__ == "__main__":
    main()
