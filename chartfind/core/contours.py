# -*- coding: utf-8 -*-
"""
Contour Extractor：灰度图 → 边缘/自适应阈值 → 轮廓 → 多边形近似 → 凸四边形候选。
输出为惰性、可重复迭代的序列；不做分组，不做评分。
"""
from __future__ import annotations

import logging
from typing import Iterator, List, Optional, Tuple

import cv2
import numpy as np

from .config import DEFAULT_CONFIG, DetectionConfig, SearchBudget
from .errors import InvalidQuadrilateral
from .types import Quadrilateral

logger = logging.getLogger(__name__)


# --------------------- binary maps ---------------------
def edge_thresholds_for(gray: np.ndarray, cfg: DetectionConfig = DEFAULT_CONFIG) -> Tuple[int, int]:
    if cfg.edge_adaptive:
        med = float(np.median(gray))
        lo = int(max(cfg.edge_adaptive_low_min, cfg.edge_adaptive_low_ratio * med))
        hi = int(max(lo + 1, cfg.edge_adaptive_high_ratio * lo))
        return lo, hi
    lo, hi = cfg.edge_thresholds
    return int(round(lo)), int(round(max(lo, hi)))


def detect_edges(gray: np.ndarray, cfg: DetectionConfig = DEFAULT_CONFIG) -> np.ndarray:
    g = cv2.GaussianBlur(gray, (0, 0), cfg.edge_gaussian_sigma) if cfg.edge_gaussian_sigma > 0 else gray
    lo, hi = edge_thresholds_for(g, cfg)
    edges = cv2.Canny(g, lo, hi)
    if cfg.edge_dilate_kernel > 0 and cfg.edge_dilate_iterations > 0:
        kernel = np.ones((cfg.edge_dilate_kernel, cfg.edge_dilate_kernel), np.uint8)
        edges = cv2.dilate(edges, kernel, iterations=cfg.edge_dilate_iterations)
    return edges


def threshold_block_size(shape: Tuple[int, int], cfg: DetectionConfig = DEFAULT_CONFIG) -> int:
    if cfg.threshold_block_size:
        return int(cfg.threshold_block_size)
    block = max(11, min(shape[:2]) // 8)
    return block if block % 2 == 1 else block + 1


def threshold_regions(gray: np.ndarray, cfg: DetectionConfig = DEFAULT_CONFIG) -> np.ndarray:
    """Foreground = pixels brighter than their neighbourhood mean by ``threshold_offset``."""
    block = threshold_block_size(gray.shape, cfg)
    th = cv2.adaptiveThreshold(gray, 255, cv2.ADAPTIVE_THRESH_MEAN_C, cv2.THRESH_BINARY,
                               block, -float(cfg.threshold_offset))
    return cv2.morphologyEx(th, cv2.MORPH_OPEN, np.ones((3, 3), np.uint8))


# --------------------- polygon approximation ---------------------
def max_corner_cosine(quad: np.ndarray) -> float:
    q = np.asarray(quad, np.float64).reshape(4, 2)
    worst = 0.0
    for i in range(4):
        a = q[i - 1] - q[i]
        b = q[(i + 1) % 4] - q[i]
        den = np.linalg.norm(a) * np.linalg.norm(b)
        if den < 1e-9:
            return 1.0
        worst = max(worst, abs(float(np.dot(a, b) / den)))
    return worst


def approximate_quad(contour: np.ndarray, image_area: float,
                     cfg: DetectionConfig = DEFAULT_CONFIG) -> Optional[Quadrilateral]:
    """Reduce a closed contour to a convex quadrilateral, or None."""
    area = abs(cv2.contourArea(contour))
    if area < cfg.min_quad_area or area > cfg.max_quad_area_ratio * image_area:
        return None
    peri = cv2.arcLength(contour, True)
    if peri < 1e-3:
        return None
    eps = cfg.approx_eps_ratio * peri
    quad = None
    for _ in range(cfg.approx_iterations):
        approx = cv2.approxPolyDP(contour, eps, True)
        if len(approx) == 4:
            quad = approx
            break
        if len(approx) > 4:
            eps *= cfg.approx_expand
        else:
            eps *= cfg.approx_shrink
    if quad is None or not cv2.isContourConvex(quad):
        return None
    pts = quad.reshape(-1, 2).astype(np.float64)
    q_area = abs(cv2.contourArea(pts.astype(np.float32)))
    if q_area < cfg.min_quad_area or q_area > cfg.max_quad_area_ratio * image_area:
        return None
    if max_corner_cosine(pts) > cfg.max_corner_cosine:
        return None
    try:
        return Quadrilateral.from_array(pts)
    except InvalidQuadrilateral:
        return None


def _contains(outer: Quadrilateral, pt) -> bool:
    return cv2.pointPolygonTest(outer.as_array().reshape(-1, 1, 2), (float(pt[0]), float(pt[1])), False) >= 0


def _is_duplicate(quad: Quadrilateral, kept: List[Quadrilateral], ratio: float) -> bool:
    """Near-concentric with a kept quad of similar area, or centred inside a larger kept one.

    ``kept`` must be filled in order of decreasing area.
    """
    cx, cy = quad.center
    size = quad.size
    for other in kept:
        ox, oy = other.center
        if np.hypot(cx - ox, cy - oy) > ratio * max(size, other.size):
            continue
        if 0.5 <= quad.area / max(other.area, 1e-9) <= 2.0:
            return True
        # 同一色块内部被切出的细长碎片
        if quad.area <= other.area and _contains(other, (cx, cy)):
            return True
    return False


# --------------------- extractor ---------------------
class ContourExtractor:
    """Restartable, lazy sequence of quadrilateral candidates.

    Every ``iter()`` re-runs the extraction. Candidates from all binary maps
    are pooled and yielded largest first, so a patch outline always wins
    over fragments found inside it. An exhausted ``budget`` keeps whatever
    was collected up to that point.
    """

    def __init__(self, gray: np.ndarray, cfg: DetectionConfig = DEFAULT_CONFIG,
                 budget: Optional[SearchBudget] = None):
        if gray.ndim != 2 or gray.dtype != np.uint8:
            raise ValueError("expect uint8 gray")
        self.gray = gray
        self.config = cfg
        self.budget = budget
        self._edges: Optional[np.ndarray] = None

    @property
    def edges(self) -> np.ndarray:
        if self._edges is None:
            self._edges = detect_edges(self.gray, self.config)
        return self._edges

    def binary_maps(self) -> Iterator[Tuple[str, np.ndarray]]:
        yield "edges", self.edges
        if self.config.threshold_pass:
            yield "threshold", threshold_regions(self.gray, self.config)

    def __iter__(self) -> Iterator[Quadrilateral]:
        return self._generate()

    def _candidates(self) -> List[Quadrilateral]:
        cfg = self.config
        h, w = self.gray.shape
        image_area = float(h * w)
        found: List[Quadrilateral] = []
        for name, binary in self.binary_maps():
            cnts, _ = cv2.findContours(binary, cv2.RETR_LIST, cv2.CHAIN_APPROX_SIMPLE)
            n_before = len(found)
            for cnt in cnts:
                if self.budget is not None and not self.budget.tick("contour extraction"):
                    return found
                quad = approximate_quad(cnt, image_area, cfg)
                if quad is not None:
                    found.append(quad)
            logger.debug("%s pass: %d contours, %d quads", name, len(cnts), len(found) - n_before)
        return found

    def _generate(self) -> Iterator[Quadrilateral]:
        kept: List[Quadrilateral] = []
        for quad in sorted(self._candidates(), key=lambda q: -q.area):
            if _is_duplicate(quad, kept, self.config.duplicate_center_ratio):
                continue
            kept.append(quad)
            yield quad


def extract_quads(gray: np.ndarray, cfg: DetectionConfig = DEFAULT_CONFIG,
                  budget: Optional[SearchBudget] = None) -> List[Quadrilateral]:
    return list(ContourExtractor(gray, cfg, budget))


__all__ = [
    "ContourExtractor",
    "extract_quads",
    "detect_edges",
    "threshold_regions",
    "approximate_quad",
    "max_corner_cosine",
]
