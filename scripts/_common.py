"""Argument helpers shared by the command-line tools."""

from __future__ import annotations

import argparse
from pathlib import Path

from camcalib import ChessboardPattern, CornerDetectionConfig

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff"}


def list_images(directory: Path) -> list[Path]:
    return sorted(p for p in directory.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)


def add_pattern_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--columns", type=int, default=9, help="Number of inner corners along the chessboard width")
    parser.add_argument("--rows", type=int, default=6, help="Number of inner corners along the chessboard height")
    parser.add_argument("--square-size", type=float, default=1.0, help="Chessboard square size (pose units)")


def add_detection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--equalize", action="store_true", help="Apply CLAHE before detection")
    parser.add_argument("--blur", type=int, default=0, help="Gaussian blur kernel size (0 to disable)")
    parser.add_argument("--scale", type=float, default=1.0, help="Upscale factor before corner detection")
    parser.add_argument("--no-fast-check", dest="fast_check", action="store_false", help="Disable OpenCV fast-check")
    parser.add_argument("--sb", action="store_true", help="Try findChessboardCornersSB first")
    parser.add_argument("--no-subpix", dest="subpix", action="store_false", help="Disable sub-pixel refinement")


def add_logging_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    parser.add_argument("--log-file", type=Path, default=None, help="Optional log file")


def pattern_from_args(args: argparse.Namespace) -> ChessboardPattern:
    return ChessboardPattern(args.columns, args.rows, args.square_size)


def detection_config_from_args(args: argparse.Namespace) -> CornerDetectionConfig:
    return CornerDetectionConfig(
        equalize_hist=args.equalize,
        blur_kernel=args.blur,
        scale=args.scale,
        use_fast_check=args.fast_check,
        prefer_sb=args.sb,
        refine_subpixel=args.subpix,
    )
