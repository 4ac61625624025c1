#!/usr/bin/env python3
"""Batch chessboard corner detection into a correspondence cache."""

from __future__ import annotations

import argparse
from pathlib import Path

import cv2

from camcalib import collect_frames, detect_corners, draw_corners, save_correspondences
from camcalib.chessboard import image_size_of, read_image
from camcalib.log import setup_logger

from _common import (
    add_detection_args,
    add_logging_args,
    add_pattern_args,
    detection_config_from_args,
    list_images,
    pattern_from_args,
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("images", type=Path, help="Directory containing calibration images")
    parser.add_argument("output", type=Path, help="Path of the correspondence cache (.npz)")
    parser.add_argument("--vis", type=Path, default=None, help="Optional directory for visualising detections")
    add_pattern_args(parser)
    add_detection_args(parser)
    add_logging_args(parser)
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logger = setup_logger("camcalib", args.log_level, args.log_file)
    images = list_images(args.images)
    if not images:
        raise SystemExit(f"No images found in {args.images}")

    pattern = pattern_from_args(args)
    config = detection_config_from_args(args)

    detections = []
    for path in images:
        image = read_image(path)
        corners = detect_corners(image, pattern, config)
        if corners is None:
            logger.warning("Checkerboard not found in %s", path.name)
        elif args.vis:
            args.vis.mkdir(parents=True, exist_ok=True)
            cv2.imwrite(str(args.vis / f"{path.stem}.png"), draw_corners(image, corners, pattern))
        detections.append((path.stem, corners, image_size_of(image)))

    frames = collect_frames(detections, pattern)
    if not frames:
        raise SystemExit("No usable detections")
    save_correspondences(args.output, frames)
    print(f"Saved {len(frames)} of {len(images)} frames to {args.output}")


if __name__ == "__main__":
    main()
