"""Virtual geometry placed on the pattern and its projection into the image."""

from __future__ import annotations

from typing import Sequence

import cv2
import numpy as np

from .chessboard import ChessboardPattern
from .model import IntrinsicModel, Pose
from .projection import project_points

AXIS_COLORS = ((0, 0, 255), (0, 255, 0), (255, 0, 0))


def axis_points(length: float) -> np.ndarray:
    """Origin and the tips of the X, Y and Z axes; Z points towards the camera."""
    return np.array(
        [[0, 0, 0], [length, 0, 0], [0, length, 0], [0, 0, -length]],
        dtype=np.float64,
    )


def board_outline(pattern: ChessboardPattern) -> np.ndarray:
    """The four outer corners: top-left, top-right, bottom-left, bottom-right."""
    w = (pattern.columns - 1) * pattern.square_size
    h = (pattern.rows - 1) * pattern.square_size
    return np.array([[0, 0, 0], [w, 0, 0], [0, h, 0], [w, h, 0]], dtype=np.float64)


def house_wireframe(pattern: ChessboardPattern) -> np.ndarray:
    """Edges of a small house floating above the board centre, shape ``(M, 2, 3)``."""
    s = pattern.square_size
    cx = (pattern.columns - 1) / 2.0 * s
    cy = (pattern.rows - 1) / 2.0 * s
    half = 1.5 * s
    base_z = -3.0 * s
    wall_top = base_z - 3.0 * s
    apex_z = wall_top - 3.0 * s

    def corners(z: float) -> list[np.ndarray]:
        return [
            np.array([cx - half, cy - half, z]),
            np.array([cx + half, cy - half, z]),
            np.array([cx + half, cy + half, z]),
            np.array([cx - half, cy + half, z]),
        ]

    base = corners(base_z)
    top = corners(wall_top)
    apex = np.array([cx + 0.5 * s, cy - 0.3 * s, apex_z])

    edges: list[tuple[np.ndarray, np.ndarray]] = []
    for ring in (base, top):
        edges += [(ring[i], ring[(i + 1) % 4]) for i in range(4)]
    edges += [(b, t) for b, t in zip(base, top)]
    edges += [(t, apex) for t in top]

    # chimney on the back roof edge
    chim_x = cx + half - 1.0 * s
    chim_w = 0.6 * s
    chim_top = wall_top - 1.5 * s
    c1 = np.array([chim_x, cy - half, wall_top])
    c2 = np.array([chim_x + chim_w, cy - half, wall_top])
    edges += [
        (c1, np.array([chim_x, cy - half, chim_top])),
        (c2, np.array([chim_x + chim_w, cy - half, chim_top])),
        (np.array([chim_x, cy - half, chim_top]), np.array([chim_x + chim_w, cy - half, chim_top])),
    ]

    # door on the front wall
    door_half = 0.5 * s
    door_top = base_z - 1.8 * s
    d_bl = np.array([cx - door_half, cy + half, base_z])
    d_br = np.array([cx + door_half, cy + half, base_z])
    d_tl = np.array([cx - door_half, cy + half, door_top])
    d_tr = np.array([cx + door_half, cy + half, door_top])
    edges += [(d_bl, d_tl), (d_br, d_tr), (d_tl, d_tr), (d_bl, d_br)]

    return np.array([[a, b] for a, b in edges], dtype=np.float64)


def project_segments(segments: np.ndarray, pose: Pose, model: IntrinsicModel) -> np.ndarray:
    """Project ``(M, 2, 3)`` segments to ``(M, 2, 2)`` pixel segments."""
    segs = np.asarray(segments, dtype=np.float64).reshape(-1, 2, 3)
    return project_points(segs.reshape(-1, 3), pose, model).reshape(-1, 2, 2)


def axis_segments(length: float) -> np.ndarray:
    pts = axis_points(length)
    return np.array([[pts[0], pts[i]] for i in (1, 2, 3)])


def _pt(p: np.ndarray) -> tuple[int, int]:
    return int(round(float(p[0]))), int(round(float(p[1])))


def draw_segments(
    image: np.ndarray,
    segments2d: np.ndarray,
    color: tuple[int, int, int] | Sequence[tuple[int, int, int]] = (255, 255, 0),
    thickness: int = 2,
) -> np.ndarray:
    """Draw projected segments; ``color`` may be one colour or one per segment."""
    vis = image.copy()
    segs = np.asarray(segments2d, dtype=np.float64).reshape(-1, 2, 2)
    colors = list(color) if color and isinstance(color[0], (tuple, list)) else [color] * len(segs)
    for (a, b), c in zip(segs, colors):
        if not (np.all(np.isfinite(a)) and np.all(np.isfinite(b))):
            continue
        cv2.line(vis, _pt(a), _pt(b), tuple(int(v) for v in c), thickness, cv2.LINE_AA)
    return vis


def draw_points(
    image: np.ndarray,
    points2d: np.ndarray,
    color: tuple[int, int, int] = (0, 255, 255),
    radius: int = 8,
) -> np.ndarray:
    vis = image.copy()
    for p in np.asarray(points2d, dtype=np.float64).reshape(-1, 2):
        if np.all(np.isfinite(p)):
            cv2.circle(vis, _pt(p), radius, color, -1)
    return vis
