# -*- coding: utf-8 -*-
"""Robust per-patch colour sampling inside grid cells."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

from .config import DEFAULT_CONFIG, DetectionConfig
from .errors import DegenerateCell
from .normalize import NormalizedImage
from .types import CandidateGrid, PatchSample, Quadrilateral

logger = logging.getLogger(__name__)

LUMA = np.array([0.299, 0.587, 0.114], np.float32)


def shrink_corners(quad: Quadrilateral, margin: float) -> np.ndarray:
    """Pull every corner towards the centre so ``margin`` of the cell is dropped per side."""
    q = np.asarray(quad.corners, np.float64)
    c = q.mean(axis=0, keepdims=True)
    return c + (q - c) * (1.0 - 2.0 * float(margin))


def cell_pixels(rgb: np.ndarray, corners: np.ndarray) -> np.ndarray:
    """RGB values (N, 3) of the pixels whose centres fall inside the polygon, clipped to the image."""
    h, w = rgb.shape[:2]
    x0 = int(max(0, np.floor(corners[:, 0].min())))
    y0 = int(max(0, np.floor(corners[:, 1].min())))
    x1 = int(min(w, np.ceil(corners[:, 0].max()) + 1))
    y1 = int(min(h, np.ceil(corners[:, 1].max()) + 1))
    if x1 <= x0 or y1 <= y0:
        return np.empty((0, 3), np.float32)
    mask = np.zeros((y1 - y0, x1 - x0), np.uint8)
    local = np.rint(corners - np.array([x0, y0], np.float64)).astype(np.int32)
    cv2.fillConvexPoly(mask, local, 1)
    return rgb[y0:y1, x0:x1][mask > 0]


def robust_stats(pixels: np.ndarray, trim_percent: float) -> Tuple[np.ndarray, np.ndarray, int]:
    """Luminance-trimmed mean and sample variance; bright/dark outliers are dropped together."""
    px = np.asarray(pixels, np.float32).reshape(-1, 3)
    if trim_percent > 0.0 and len(px) >= 4:
        lum = px @ LUMA
        lo, hi = np.percentile(lum, [trim_percent, 100.0 - trim_percent])
        keep = (lum >= lo) & (lum <= hi)
        if np.any(keep):
            px = px[keep]
    mean = px.mean(axis=0, dtype=np.float64)
    var = px.var(axis=0, ddof=1, dtype=np.float64) if len(px) > 1 else np.zeros(3)
    return mean, var, int(len(px))


def sample_cell(rgb: np.ndarray, quad: Quadrilateral, index: int,
                cfg: DetectionConfig = DEFAULT_CONFIG) -> Tuple[np.ndarray, np.ndarray, int]:
    pixels = cell_pixels(rgb, shrink_corners(quad, cfg.sample_margin))
    if len(pixels) < cfg.min_cell_pixels:
        raise DegenerateCell(index, len(pixels))
    return robust_stats(pixels, cfg.color_outlier_trim_percent)


def _neighbour_fill(stats: Dict[int, Tuple[np.ndarray, np.ndarray]], index: int,
                    n_rows: int, n_cols: int) -> Tuple[np.ndarray, np.ndarray]:
    r, c = divmod(index, n_cols)
    rings = (
        [(-1, 0), (1, 0), (0, -1), (0, 1)],
        [(-1, -1), (-1, 1), (1, -1), (1, 1)],
    )
    for ring in rings:
        found = []
        for dr, dc in ring:
            rr, cc = r + dr, c + dc
            if 0 <= rr < n_rows and 0 <= cc < n_cols and rr * n_cols + cc in stats:
                found.append(stats[rr * n_cols + cc])
        if found:
            return (np.mean([m for m, _ in found], axis=0), np.mean([v for _, v in found], axis=0))
    means = [m for m, _ in stats.values()]
    variances = [v for _, v in stats.values()]
    return np.mean(means, axis=0), np.mean(variances, axis=0)


def sample_grid(grid: CandidateGrid, image: NormalizedImage,
                cfg: DetectionConfig = DEFAULT_CONFIG) -> List[PatchSample]:
    """One PatchSample per cell, row-major in image order.

    Degenerate cells are synthesised from their neighbours; DegenerateCell
    is raised only if no cell of the grid can be sampled at all.
    """
    stats: Dict[int, Tuple[np.ndarray, np.ndarray]] = {}
    counts: Dict[int, int] = {}
    degenerate: List[int] = []
    for idx, cell in enumerate(grid.cells):
        try:
            mean, var, n = sample_cell(image.rgb, cell.quad, idx, cfg)
        except DegenerateCell as exc:
            logger.debug("grid %s: %s", grid.topology.topology_id, exc)
            degenerate.append(idx)
            continue
        stats[idx] = (mean, var)
        counts[idx] = n
    if not stats:
        raise DegenerateCell(-1, 0, "no cell of the grid could be sampled")

    filled: Dict[int, Tuple[np.ndarray, np.ndarray]] = {}
    for idx in degenerate:
        filled[idx] = _neighbour_fill(stats, idx, grid.n_rows, grid.n_cols)

    samples: List[PatchSample] = []
    for idx, cell in enumerate(grid.cells):
        synthesized = idx in filled
        mean, var = filled[idx] if synthesized else stats[idx]
        samples.append(PatchSample(
            index=idx,
            row=cell.row,
            col=cell.col,
            mean=tuple(float(v) for v in mean),
            variance=tuple(float(v) for v in var),
            pixel_count=0 if synthesized else counts[idx],
            quad=cell.quad,
            synthesized=synthesized,
        ))
    return samples


__all__ = ["shrink_corners", "cell_pixels", "robust_stats", "sample_cell", "sample_grid"]
