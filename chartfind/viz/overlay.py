# chartfind/viz/overlay.py
# -*- coding: utf-8 -*-

from __future__ import annotations

import os
from typing import Any, Dict, Optional, Sequence, Tuple

import cv2
import numpy as np

from ..core.types import DetectionResult, Quadrilateral
from ..utils.images import write_image_rgb

__all__ = ["to_rgb8", "draw_quad", "draw_detection", "Visualizer"]


# ---------- small helpers ----------
def ensure_dir(p: str) -> None:
    os.makedirs(p, exist_ok=True)


def to_rgb8(image: np.ndarray) -> np.ndarray:
    """Any uint8/uint16 gray or colour buffer -> contiguous RGB uint8 canvas."""
    img = np.array(image)
    if img.dtype == np.uint16:
        img = (img >> 8).astype(np.uint8)
    elif img.dtype != np.uint8:
        img = np.clip(np.rint(img * 255.0), 0, 255).astype(np.uint8)
    if img.ndim == 3 and img.shape[2] < 3:
        img = img[:, :, 0]
    if img.ndim == 2:
        img = cv2.cvtColor(img, cv2.COLOR_GRAY2RGB)
    elif img.shape[2] == 4:
        img = img[:, :, :3]
    return np.ascontiguousarray(img)


def annotate_text(img, text, xy, color=(255, 0, 0), font_scale=0.5, thick=1):
    x, y = int(round(xy[0])), int(round(xy[1]))
    cv2.putText(img, str(text), (x + 1, y + 1),
                cv2.FONT_HERSHEY_SIMPLEX, font_scale, (0, 0, 0), thick + 2, cv2.LINE_AA)
    cv2.putText(img, str(text), (x, y),
                cv2.FONT_HERSHEY_SIMPLEX, font_scale, color, thick, cv2.LINE_AA)


def draw_quad(img: np.ndarray, quad: Quadrilateral, color=(255, 200, 0), thickness=2) -> np.ndarray:
    q = np.rint(quad.as_array()).astype(np.int32).reshape(-1, 1, 2)
    cv2.polylines(img, [q], True, color, thickness, cv2.LINE_AA)
    return img


def draw_detection(image: np.ndarray, result: DetectionResult) -> np.ndarray:
    """Chart outline, per-patch index and measured colour swatch; a banner when not found."""
    canvas = to_rgb8(image).copy()
    if not result.found:
        annotate_text(canvas, f"not found: {result.reason}", (10, 24), (255, 64, 64), 0.6, 1)
        return canvas

    draw_quad(canvas, result.bounding_quad, (0, 255, 0), 2)
    for pc in result.patch_colors:
        color = (255, 160, 0) if pc.observed else (255, 0, 255)
        draw_quad(canvas, pc.quad, color, 1)
        cx, cy = pc.quad.center
        s = max(3, int(pc.quad.size * 0.15))
        cv2.rectangle(canvas, (int(cx) - s, int(cy) - s), (int(cx) + s, int(cy) + s),
                      tuple(int(v) for v in pc.mean_rgb8), -1)
        annotate_text(canvas, pc.index, (cx - s, cy - s - 3), (255, 255, 255), 0.4, 1)
    x0, y0 = result.bounding_quad.corners[0]
    annotate_text(canvas, f"{result.topology_id} {result.orientation.label} {result.match_score:.3f}",
                  (x0, max(14.0, y0 - 8)), (0, 255, 0), 0.5, 1)
    return canvas


class Visualizer:
    """
    Only draws and writes files; never part of the timed detection path.
    Everything is rebuilt from the result and the debug dict.
    """

    def __init__(self, out_root: str):
        self.out_root = out_root
        ensure_dir(out_root)
        # cluster palette
        self.palette: Sequence[Tuple[int, int, int]] = [
            (255, 64, 64),
            (255, 180, 72),
            (240, 240, 64),
            (64, 220, 64),
            (64, 220, 220),
            (64, 96, 255),
            (255, 64, 255),
        ]

    def _write(self, name: str, rgb: np.ndarray) -> str:
        path = os.path.join(self.out_root, name)
        write_image_rgb(path, rgb)
        return path

    def save_all(self, image: np.ndarray, base: str, result: DetectionResult,
                 debug: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
        """
        Writes under out_root:
          {base}_1_edges.png   edge map (when debug has it)
          {base}_2_quads.png   all quadrilateral candidates
          {base}_3_grids.png   candidate grids, one colour per cluster
          {base}_4_result.png  final detection overlay
        """
        written: Dict[str, str] = {}
        debug = debug or {}
        raw = to_rgb8(image)

        edges = debug.get("edges")
        if edges is not None:
            written["edges"] = self._write(f"{base}_1_edges.png", to_rgb8(edges))

        quads = debug.get("quads")
        if quads:
            vis = raw.copy()
            for q in quads:
                draw_quad(vis, q, (0, 200, 255), 1)
            written["quads"] = self._write(f"{base}_2_quads.png", vis)

        grids = debug.get("grids")
        if grids:
            vis = raw.copy()
            for g in grids:
                color = self.palette[g.cluster_id % len(self.palette)]
                for cell in g.cells:
                    draw_quad(vis, cell.quad, color if cell.observed else (255, 255, 255), 1)
                draw_quad(vis, g.bounding_quad, color, 2)
            written["grids"] = self._write(f"{base}_3_grids.png", vis)

        written["result"] = self._write(f"{base}_4_result.png", draw_detection(raw, result))
        return written
