"""Diagnostic figures for a finished calibration."""

from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from .artifact import CalibrationArtifact
from .evaluation import ReprojectionReport


def plot_reprojection_errors(artifact: CalibrationArtifact, output_path: str | Path) -> Path:
    """Bar chart of per-image RMSE with the overall RMSE as a reference line."""

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    labels = list(artifact.frame_ids or [str(i + 1) for i in range(len(artifact.per_image_rmse))])
    values = np.asarray(artifact.per_image_rmse, dtype=np.float64)

    fig, ax = plt.subplots(figsize=(max(6.0, 0.4 * len(values) + 2.0), 4.5))
    ax.bar(np.arange(len(values)), values, color="steelblue")
    ax.axhline(artifact.overall_rmse, color="crimson", linestyle="--", label=f"overall {artifact.overall_rmse:.3f} px")
    ax.set_xticks(np.arange(len(values)))
    ax.set_xticklabels(labels, rotation=60, ha="right", fontsize=8)
    ax.set_ylabel("RMSE (px)")
    ax.set_title(f"Reprojection error ({artifact.image_width}x{artifact.image_height})")
    ax.legend()
    fig.tight_layout()
    fig.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    return output_path


def plot_residuals(report: ReprojectionReport, output_path: str | Path) -> Path:
    """Scatter of every residual vector, coloured by frame."""

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    fig, ax = plt.subplots(figsize=(6, 6))
    cmap = plt.get_cmap("tab20")
    for i, (frame_id, res) in enumerate(zip(report.frame_ids, report.residuals)):
        ax.scatter(res[:, 0], res[:, 1], s=6, color=cmap(i % 20), label=frame_id)
    limit = max((float(np.abs(r).max()) for r in report.residuals if r.size), default=1.0)
    limit = limit * 1.1 if limit > 0 else 1.0
    ax.set_xlim(-limit, limit)
    ax.set_ylim(-limit, limit)
    ax.set_aspect("equal")
    ax.axhline(0, color="gray", linewidth=0.5)
    ax.axvline(0, color="gray", linewidth=0.5)
    ax.set_xlabel("dx (px)")
    ax.set_ylabel("dy (px)")
    ax.set_title(f"Residuals, overall RMSE {report.overall_rmse:.3f} px")
    if len(report.frame_ids) <= 20:
        ax.legend(fontsize=6, markerscale=2)
    fig.tight_layout()
    fig.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    return output_path
