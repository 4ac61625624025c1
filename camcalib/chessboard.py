"""Chessboard pattern geometry and the corner detector used by the tools."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import logging

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChessboardPattern:
    """Definition of a planar chessboard calibration target.

    ``columns`` and ``rows`` count internal corners. ``square_size`` is the
    edge length in whatever unit the poses should be reported in; it only has
    to stay the same across one calibration run.
    """

    columns: int
    rows: int
    square_size: float = 1.0

    def __post_init__(self) -> None:
        if self.columns < 2 or self.rows < 2:
            raise ValueError("A chessboard needs at least 2x2 internal corners")
        if not self.square_size > 0:
            raise ValueError("square_size must be positive")

    @property
    def size(self) -> tuple[int, int]:
        return self.columns, self.rows

    @property
    def num_corners(self) -> int:
        return self.columns * self.rows

    def object_points(self) -> np.ndarray:
        grid = np.mgrid[0 : self.columns, 0 : self.rows].T.reshape(-1, 2)
        obj = np.zeros((self.num_corners, 3), dtype=np.float32)
        obj[:, :2] = grid * float(self.square_size)
        return obj


@dataclass(frozen=True)
class CornerDetectionConfig:
    """Parameters controlling chessboard corner detection."""

    equalize_hist: bool = False
    blur_kernel: int = 0
    scale: float = 1.0
    use_fast_check: bool = True
    prefer_sb: bool = False
    refine_subpixel: bool = True
    subpixel_window: int = 11
    subpixel_iterations: int = 30
    subpixel_epsilon: float = 0.001


# ---------------------------------------------------------------------------
# Corner detection helpers
# ---------------------------------------------------------------------------

def _to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


def _to_uint8(gray: np.ndarray) -> np.ndarray:
    if gray.dtype == np.uint8:
        return gray
    lo, hi = np.percentile(gray.astype(np.float32), (1.0, 99.0))
    if hi <= lo:
        lo, hi = float(np.min(gray)), float(np.max(gray))
        if hi <= lo:
            return np.zeros_like(gray, dtype=np.uint8)
    scaled = (gray.astype(np.float32) - lo) * (255.0 / max(hi - lo, 1e-6))
    return np.clip(scaled, 0, 255).astype(np.uint8)


def _preprocess(gray: np.ndarray, config: CornerDetectionConfig) -> np.ndarray:
    image = _to_uint8(gray)
    if config.equalize_hist:
        clahe = cv2.createCLAHE(clipLimit=2.0, tileGridSize=(8, 8))
        image = clahe.apply(image)
    if config.blur_kernel > 0:
        k = max(1, int(config.blur_kernel) | 1)
        image = cv2.GaussianBlur(image, (k, k), 0)
    return image


def _resize_if_needed(image: np.ndarray, scale: float) -> tuple[np.ndarray, float]:
    if abs(scale - 1.0) < 1e-3:
        return image, 1.0
    scale = float(scale)
    new_w = max(1, int(round(image.shape[1] * scale)))
    new_h = max(1, int(round(image.shape[0] * scale)))
    resized = cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_CUBIC)
    return resized, scale


def read_image(path: str | Path) -> np.ndarray:
    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image is None:
        raise FileNotFoundError(f"Failed to read image: {path}")
    return image


def image_size_of(image: np.ndarray) -> tuple[int, int]:
    return int(image.shape[1]), int(image.shape[0])


def detect_corners(
    image: np.ndarray,
    pattern: ChessboardPattern,
    config: CornerDetectionConfig | None = None,
) -> Optional[np.ndarray]:
    """Detect and sub-pixel refine chessboard corners in ``image``.

    Returns an ``(N, 1, 2)`` float32 array in full-image pixel coordinates, or
    ``None`` when the full pattern was not found.
    """

    config = config or CornerDetectionConfig()
    gray = _to_gray(image)
    preprocessed = _preprocess(gray, config)
    resized, scale_used = _resize_if_needed(preprocessed, config.scale)

    flags = cv2.CALIB_CB_ADAPTIVE_THRESH | cv2.CALIB_CB_NORMALIZE_IMAGE
    if config.use_fast_check:
        flags |= cv2.CALIB_CB_FAST_CHECK

    found = False
    corners = None

    if config.prefer_sb and hasattr(cv2, "findChessboardCornersSB"):
        try:
            found, corners = cv2.findChessboardCornersSB(resized, pattern.size)
        except cv2.error:
            found, corners = False, None

    if not found:
        found, corners = cv2.findChessboardCorners(resized, pattern.size, flags)

    if not found or corners is None:
        logger.debug("Chessboard %dx%d not found", pattern.columns, pattern.rows)
        return None

    corners = np.asarray(corners, dtype=np.float32).reshape(-1, 1, 2)

    if config.refine_subpixel:
        win = max(1, int(config.subpixel_window))
        criteria = (
            cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER,
            int(config.subpixel_iterations),
            float(config.subpixel_epsilon),
        )
        corners = cv2.cornerSubPix(resized, corners, (win, win), (-1, -1), criteria)

    if scale_used != 1.0:
        corners /= scale_used

    return corners.astype(np.float32)


def draw_corners(image: np.ndarray, corners: np.ndarray, pattern: ChessboardPattern) -> np.ndarray:
    vis = image.copy()
    if image.ndim == 2:
        vis = cv2.cvtColor(vis, cv2.COLOR_GRAY2BGR)
    cv2.drawChessboardCorners(vis, pattern.size, np.asarray(corners, dtype=np.float32).reshape(-1, 1, 2), True)
    return vis
