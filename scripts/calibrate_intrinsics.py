#!/usr/bin/env python3
"""Intrinsic calibration from chessboard images or a correspondence cache."""

from __future__ import annotations

import argparse
from pathlib import Path

from camcalib import (
    CalibrationArtifact,
    CalibrationConfig,
    CalibrationError,
    collect_frames,
    detect_corners,
    evaluate_reprojection,
    load_correspondences,
    save_artifact,
    save_correspondences,
    try_calibrate_intrinsics,
)
from camcalib.calibration import MIN_CALIBRATION_FRAMES
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
    parser.add_argument("output", type=Path, help="Calibration artifact path (.json, .yml or .xml)")
    parser.add_argument("--images", type=Path, default=None, help="Directory containing calibration images")
    parser.add_argument("--cache", type=Path, default=None, help="Correspondence cache to load, or to create from --images")
    parser.add_argument("--distortion-terms", type=int, choices=(5, 8), default=5, help="Distortion model arity")
    parser.add_argument("--free-aspect", action="store_true", help="Let fx and fy vary independently")
    parser.add_argument("--aspect-ratio", type=float, default=1.0, help="Fixed fx/fy ratio")
    parser.add_argument("--fix-terms", nargs="*", default=[], help="Distortion terms pinned to zero (k1..k6, p1 p2)")
    parser.add_argument("--fix-principal-point", action="store_true", help="Keep the principal point at the image centre")
    parser.add_argument("--max-iter", type=int, default=100, help="Maximum solver iterations")
    parser.add_argument("--eps", type=float, default=1e-9, help="Relative parameter change tolerance")
    parser.add_argument("--min-frames", type=int, default=5, help="Minimum number of usable frames (never below 5)")
    parser.add_argument("--require-convergence", action="store_true", help="Fail if the solver does not converge")
    parser.add_argument("--plot", type=Path, default=None, help="Optional path for a per-image error chart")
    add_pattern_args(parser)
    add_detection_args(parser)
    add_logging_args(parser)
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logger = setup_logger("camcalib", args.log_level, args.log_file)
    pattern = pattern_from_args(args)

    frames = []
    if args.cache and args.cache.exists():
        frames = load_correspondences(args.cache)

    if len(frames) < max(MIN_CALIBRATION_FRAMES, args.min_frames):
        if args.images is None:
            raise SystemExit(f"Only {len(frames)} cached frames and no --images directory to detect from")
        config = detection_config_from_args(args)
        detections = []
        for path in list_images(args.images):
            image = read_image(path)
            corners = detect_corners(image, pattern, config)
            if corners is None:
                logger.warning("Checkerboard not found in %s", path.name)
            detections.append((path.stem, corners, image_size_of(image)))
        frames = collect_frames(detections, pattern)
        if args.cache and frames:
            save_correspondences(args.cache, frames)

    solver_config = CalibrationConfig(
        distortion_terms=args.distortion_terms,
        fix_aspect_ratio=None if args.free_aspect else args.aspect_ratio,
        fixed_terms=tuple(args.fix_terms),
        fix_principal_point=args.fix_principal_point,
        max_iterations=args.max_iter,
        epsilon=args.eps,
        min_frames=args.min_frames,
        require_convergence=args.require_convergence,
    )
    outcome = try_calibrate_intrinsics(frames, config=solver_config)
    if not outcome.ok:
        raise SystemExit(f"Calibration failed ({outcome.kind.value}): {outcome.error}")
    result = outcome.unwrap()

    report = evaluate_reprojection(result.frames, result.poses, result.model)
    artifact = CalibrationArtifact.from_calibration(result, report)
    try:
        save_artifact(args.output, artifact)
    except CalibrationError as exc:
        raise SystemExit(str(exc))

    if args.plot:
        from camcalib.diagnostics import plot_reprojection_errors

        plot_reprojection_errors(artifact, args.plot)

    for frame_id, rmse in zip(report.frame_ids, report.per_image_rmse):
        logger.info("  %s: %.4f px", frame_id, rmse)
    print(
        f"Saved calibration to {args.output}\n"
        f"Solver RMS: {result.rms:.4f} px, overall RMSE: {report.overall_rmse:.4f} px"
        + ("" if result.converged else " (not converged)")
    )


if __name__ == "__main__":
    main()
