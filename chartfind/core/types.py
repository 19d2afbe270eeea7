# chartfind/core/types.py
# -*- coding: utf-8 -*-

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from .chart_spec import ChartTopology
from .errors import InvalidQuadrilateral

Pt = Tuple[float, float]
RGB = Tuple[float, float, float]

# Smallest area (px^2) a Quadrilateral may enclose.
MIN_QUAD_AREA = 1.0


def order_quad(pts) -> np.ndarray:
    """Order 4 points clockwise (image y axis points down), starting at min(x+y)."""
    p = np.asarray(pts, np.float64).reshape(4, 2)
    c = p.mean(axis=0)
    ang = np.arctan2(p[:, 1] - c[1], p[:, 0] - c[0])
    p = p[np.argsort(ang, kind="stable")]
    start = int(np.lexsort((p[:, 1], p.sum(axis=1)))[0])
    return np.roll(p, -start, axis=0)


def polygon_area(pts) -> float:
    p = np.asarray(pts, np.float64).reshape(-1, 2)
    x = p[:, 0]; y = p[:, 1]
    return float(0.5 * abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))))


def _cross(o, a, b) -> float:
    return float((a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0]))


def _segments_cross(p1, p2, p3, p4) -> bool:
    d1 = _cross(p3, p4, p1); d2 = _cross(p3, p4, p2)
    d3 = _cross(p1, p2, p3); d4 = _cross(p1, p2, p4)
    return d1 * d2 < 0 and d3 * d4 < 0


@dataclass(frozen=True)
class Quadrilateral:
    """Four sub-pixel corners, clockwise from the top-left-most corner."""

    corners: Tuple[Pt, Pt, Pt, Pt]

    def __post_init__(self) -> None:
        pts = np.asarray(self.corners, np.float64)
        if pts.shape != (4, 2) or not np.all(np.isfinite(pts)):
            raise InvalidQuadrilateral(f"expected 4 finite corners, got shape {pts.shape}")
        q = order_quad(pts)
        if _segments_cross(q[0], q[1], q[2], q[3]) or _segments_cross(q[1], q[2], q[3], q[0]):
            raise InvalidQuadrilateral("self-intersecting quadrilateral")
        area = polygon_area(q)
        if area < MIN_QUAD_AREA:
            raise InvalidQuadrilateral(f"quadrilateral area {area:.3f} below {MIN_QUAD_AREA}")
        object.__setattr__(self, "corners", tuple((float(x), float(y)) for x, y in q))

    @classmethod
    def from_array(cls, pts) -> "Quadrilateral":
        arr = np.asarray(pts, np.float64).reshape(4, 2)
        return cls(tuple((float(x), float(y)) for x, y in arr))

    def as_array(self) -> np.ndarray:
        return np.array(self.corners, np.float32)

    @property
    def center(self) -> Pt:
        c = np.asarray(self.corners, np.float64).mean(axis=0)
        return (float(c[0]), float(c[1]))

    @property
    def area(self) -> float:
        return polygon_area(self.corners)

    @property
    def size(self) -> float:
        """Side length of the square with the same area."""
        return float(np.sqrt(self.area))

    def to_list(self) -> List[List[float]]:
        return [[x, y] for x, y in self.corners]


_ROTATIONS = (0, 90, 180, 270)


@dataclass(frozen=True)
class Orientation:
    """How the chart appears in the image.

    ``mirrored`` is a left-right flip of the chart, applied before
    ``rotation`` (degrees, counter-clockwise as seen in the image).
    """

    rotation: int = 0
    mirrored: bool = False

    def __post_init__(self) -> None:
        if self.rotation not in _ROTATIONS:
            raise ValueError(f"rotation must be one of {_ROTATIONS}, got {self.rotation}")

    @classmethod
    def all(cls) -> Tuple["Orientation", ...]:
        return tuple(cls(rot, mir) for mir in (False, True) for rot in _ROTATIONS)

    @property
    def index(self) -> int:
        return self.rotation // 90 + (4 if self.mirrored else 0)

    @property
    def label(self) -> str:
        return ("mirror+" if self.mirrored else "") + f"rot{self.rotation}"

    def apply(self, grid: np.ndarray) -> np.ndarray:
        """Lay out a chart-indexed grid the way it appears in the image."""
        g = np.fliplr(grid) if self.mirrored else grid
        return np.rot90(g, self.rotation // 90)


@dataclass(frozen=True)
class GridCell:
    row: int
    col: int
    quad: Quadrilateral
    observed: bool
    lattice: Tuple[int, int] = (0, 0)


@dataclass(frozen=True)
class CandidateGrid:
    """Grid Assembler output; cells are row-major in image order."""

    topology: ChartTopology
    n_rows: int
    n_cols: int
    cells: Tuple[GridCell, ...]
    bounding_quad: Quadrilateral
    homography: Tuple[Tuple[float, float, float], ...]
    confidence: float
    residual: float
    residual_total: float
    matched_count: int
    pitch: float
    cluster_id: int = 0


@dataclass(frozen=True)
class PatchSample:
    index: int
    row: int
    col: int
    mean: RGB
    variance: RGB
    pixel_count: int
    quad: Quadrilateral
    synthesized: bool = False


@dataclass(frozen=True)
class PatchColor:
    """Measured colour of one reference patch, indexed in chart order."""

    index: int
    row: int
    col: int
    mean: RGB
    variance: RGB
    reference: RGB
    delta_e: float
    observed: bool
    synthesized: bool
    quad: Quadrilateral

    @property
    def mean_rgb8(self) -> Tuple[int, int, int]:
        return tuple(int(round(min(1.0, max(0.0, v)) * 255.0)) for v in self.mean)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "row": self.row,
            "col": self.col,
            "mean": list(self.mean),
            "mean_rgb8": list(self.mean_rgb8),
            "variance": list(self.variance),
            "reference": list(self.reference),
            "delta_e": self.delta_e,
            "observed": self.observed,
            "synthesized": self.synthesized,
            "quad": self.quad.to_list(),
        }


@dataclass(frozen=True)
class Found:
    bounding_quad: Quadrilateral
    orientation: Orientation
    patch_colors: Tuple[PatchColor, ...]
    match_score: float
    topology_id: str
    geometric_confidence: float
    mean_delta_e: float

    # 计时与附加信息不参与比较
    timings_ms: Dict[str, float] = field(default_factory=dict, compare=False)
    meta: Dict[str, Any] = field(default_factory=dict, compare=False)

    found = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "found": True,
            "topology_id": self.topology_id,
            "bounding_quad": self.bounding_quad.to_list(),
            "orientation": {
                "rotation": self.orientation.rotation,
                "mirrored": self.orientation.mirrored,
                "label": self.orientation.label,
            },
            "match_score": self.match_score,
            "geometric_confidence": self.geometric_confidence,
            "mean_delta_e": self.mean_delta_e,
            "patch_colors": [pc.to_dict() for pc in self.patch_colors],
            "timings_ms": dict(self.timings_ms),
        }


@dataclass(frozen=True)
class NotFound:
    reason: str
    best_score: Optional[float] = None
    timings_ms: Dict[str, float] = field(default_factory=dict, compare=False)

    found = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "found": False,
            "reason": self.reason,
            "best_score": self.best_score,
            "timings_ms": dict(self.timings_ms),
        }


DetectionResult = Union[Found, NotFound]

NO_CANDIDATES = "no quadrilateral candidates"
BELOW_THRESHOLD = "no chart above confidence threshold"

__all__ = [
    "Pt",
    "RGB",
    "MIN_QUAD_AREA",
    "order_quad",
    "polygon_area",
    "Quadrilateral",
    "Orientation",
    "GridCell",
    "CandidateGrid",
    "PatchSample",
    "PatchColor",
    "Found",
    "NotFound",
    "DetectionResult",
    "NO_CANDIDATES",
    "BELOW_THRESHOLD",
]
