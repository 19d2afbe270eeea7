# -*- coding: utf-8 -*-
"""Reference matching under the 8 rotation/mirror symmetries of the chart."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import colour
import cv2
import numpy as np

from .config import DEFAULT_CONFIG, DetectionConfig
from .types import CandidateGrid, Orientation, PatchSample

logger = logging.getLogger(__name__)

LUMA = np.array([0.299, 0.587, 0.114], np.float32)


@dataclass(frozen=True)
class MatchResult:
    orientation: Orientation
    mapping: Tuple[int, ...]          # observed cell index -> reference index
    delta_e: Tuple[float, ...]        # per observed cell
    total_delta_e: float
    mean_delta_e: float
    score: float
    exposure_gain: float = 1.0


def rgb_to_lab(rgb: np.ndarray, linear: bool = False) -> np.ndarray:
    """float RGB in [0, 1], shape (N, 3) -> CIE Lab (N, 3) via OpenCV."""
    arr = np.clip(np.asarray(rgb, np.float32).reshape(1, -1, 3), 0.0, 1.0)
    code = cv2.COLOR_LRGB2Lab if linear else cv2.COLOR_RGB2Lab
    return cv2.cvtColor(arr, code).reshape(-1, 3).astype(np.float64)


def candidate_orientations(n_rows: int, n_cols: int, rows: int, cols: int) -> List[Tuple[Orientation, np.ndarray]]:
    """Orientations that lay a rows x cols chart out as the observed n_rows x n_cols grid.

    Each entry carries the reference index for every observed cell, row-major.
    """
    idx = np.arange(rows * cols).reshape(rows, cols)
    out = []
    for o in Orientation.all():
        laid = o.apply(idx)
        if laid.shape == (n_rows, n_cols):
            out.append((o, laid.reshape(-1).copy()))
    return out


def orientation_score(mean_delta_e: float, confidence: float, cfg: DetectionConfig = DEFAULT_CONFIG) -> float:
    return float(confidence / (1.0 + mean_delta_e / cfg.delta_e_scale))


def _exposure_gain(samples: np.ndarray, refs: np.ndarray, observed: np.ndarray,
                   cfg: DetectionConfig) -> float:
    s_lum = samples @ LUMA
    r_lum = refs @ LUMA
    ok = observed & (s_lum > 1e-3)
    if not np.any(ok):
        return 1.0
    g_lo, g_hi = cfg.exposure_gain_range
    return float(np.clip(np.median(r_lum[ok] / s_lum[ok]), g_lo, g_hi))


def match_reference(samples: Sequence[PatchSample], grid: CandidateGrid, linear: bool = False,
                    cfg: DetectionConfig = DEFAULT_CONFIG) -> Optional[MatchResult]:
    """Try every admissible orientation; keep the one with the smallest total delta E."""
    topo = grid.topology
    if len(samples) != topo.n_cells:
        raise ValueError(f"expected {topo.n_cells} samples, got {len(samples)}")
    means = np.array([s.mean for s in samples], np.float32)
    observed = np.array([not s.synthesized for s in samples], bool)
    refs_rgb = topo.reference_array()
    refs_gain = np.asarray(colour.cctf_decoding(refs_rgb, function="sRGB"), np.float32) if linear else refs_rgb
    refs_lab = rgb_to_lab(refs_rgb, linear=False)
    samples_lab = rgb_to_lab(means, linear=linear)

    best: Optional[MatchResult] = None
    for orientation, mapping in candidate_orientations(grid.n_rows, grid.n_cols, topo.rows, topo.cols):
        gain = 1.0
        lab = samples_lab
        if cfg.exposure_normalize:
            gain = _exposure_gain(means, refs_gain[mapping], observed, cfg)
            lab = rgb_to_lab(means * gain, linear=linear)
        de = np.asarray(colour.delta_E(lab, refs_lab[mapping], method=cfg.delta_e_method), np.float64)
        total = float(np.sum(de))
        if best is None or total < best.total_delta_e:
            mean_de = total / len(de)
            best = MatchResult(
                orientation=orientation,
                mapping=tuple(int(i) for i in mapping),
                delta_e=tuple(float(x) for x in de),
                total_delta_e=total,
                mean_delta_e=mean_de,
                score=orientation_score(mean_de, grid.confidence, cfg),
                exposure_gain=gain,
            )
    if best is not None:
        logger.debug("%s %dx%d: %s mean dE %.2f score %.3f", topo.topology_id, grid.n_rows, grid.n_cols,
                     best.orientation.label, best.mean_delta_e, best.score)
    return best


__all__ = ["MatchResult", "rgb_to_lab", "candidate_orientations", "orientation_score", "match_reference"]
