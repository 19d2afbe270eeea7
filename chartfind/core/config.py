# -*- coding: utf-8 -*-
"""Detector tuning parameters and the per-call search budget."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DELTA_E_METHODS = ("CIE 1976", "CIE 1994", "CIE 2000", "CMC")


@dataclass
class DetectionConfig:
    # Normalizer
    linearize: bool = False

    # Edge / contour extraction
    edge_thresholds: Tuple[float, float] = (25.0, 75.0)
    edge_adaptive: bool = False
    edge_adaptive_low_ratio: float = 0.66
    edge_adaptive_low_min: int = 10
    edge_adaptive_high_ratio: float = 2.0
    edge_gaussian_sigma: float = 1.0
    edge_dilate_kernel: int = 3
    edge_dilate_iterations: int = 1
    threshold_pass: bool = True
    threshold_block_size: int = 0          # 0: derived from image size
    threshold_offset: float = 6.0
    approx_eps_ratio: float = 0.03
    approx_expand: float = 1.3
    approx_shrink: float = 0.7
    approx_iterations: int = 6
    min_quad_area: float = 100.0
    max_quad_area_ratio: float = 0.2
    max_corner_cosine: float = 0.5
    duplicate_center_ratio: float = 0.25

    # Grid assembly
    cluster_link_ratio: float = 2.0
    cluster_size_tolerance: float = 1.6
    lattice_step_tolerance: float = 0.35
    min_observed_fraction: float = 0.6
    grid_residual_tolerance: float = 0.2
    spacing_ratio_tolerance: float = 0.35
    aspect_ratio_tolerance: float = 0.35
    min_geometric_confidence: float = 0.5

    # Patch sampling
    sample_margin: float = 0.2
    color_outlier_trim_percent: float = 5.0
    min_cell_pixels: int = 16

    # Matching / selection
    delta_e_method: str = "CIE 2000"
    delta_e_scale: float = 10.0
    exposure_normalize: bool = False
    exposure_gain_range: Tuple[float, float] = (0.25, 4.0)
    min_match_score: float = 0.3

    # Search budget / execution
    time_budget: Optional[float] = None    # seconds
    max_search_iterations: Optional[int] = None
    workers: int = 1

    def __post_init__(self) -> None:
        self.edge_thresholds = tuple(float(v) for v in self.edge_thresholds)
        self.exposure_gain_range = tuple(float(v) for v in self.exposure_gain_range)
        self.validate()

    def validate(self) -> None:
        low, high = self.edge_thresholds if len(self.edge_thresholds) == 2 else (None, None)
        if low is None or not 0.0 <= low <= high:
            raise ValueError(f"edge_thresholds must be (low, high) with 0 <= low <= high, got {self.edge_thresholds}")
        if self.edge_gaussian_sigma < 0.0:
            raise ValueError("edge_gaussian_sigma must be >= 0")
        if self.threshold_block_size and (self.threshold_block_size < 3 or self.threshold_block_size % 2 == 0):
            raise ValueError("threshold_block_size must be 0 or an odd value >= 3")
        if not 0.0 < self.approx_eps_ratio < 0.5:
            raise ValueError("approx_eps_ratio must be in (0, 0.5)")
        if self.approx_iterations < 1:
            raise ValueError("approx_iterations must be >= 1")
        if self.min_quad_area < 1.0:
            raise ValueError("min_quad_area must be >= 1 px^2")
        if not 0.0 < self.max_quad_area_ratio <= 1.0:
            raise ValueError("max_quad_area_ratio must be in (0, 1]")
        if not 0.0 <= self.max_corner_cosine < 1.0:
            raise ValueError("max_corner_cosine must be in [0, 1)")
        if self.cluster_link_ratio <= 1.0 or self.cluster_size_tolerance < 1.0:
            raise ValueError("cluster_link_ratio must be > 1 and cluster_size_tolerance >= 1")
        if not 0.0 < self.lattice_step_tolerance < 0.5:
            raise ValueError("lattice_step_tolerance must be in (0, 0.5)")
        for name in ("min_observed_fraction", "min_geometric_confidence", "min_match_score"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if self.min_observed_fraction == 0.0:
            raise ValueError("min_observed_fraction must be > 0")
        for name in ("grid_residual_tolerance", "spacing_ratio_tolerance", "aspect_ratio_tolerance",
                     "delta_e_scale"):
            if not getattr(self, name) > 0.0:
                raise ValueError(f"{name} must be > 0")
        if not 0.0 <= self.sample_margin < 0.5:
            raise ValueError("sample_margin must be in [0, 0.5)")
        if not 0.0 <= self.color_outlier_trim_percent < 50.0:
            raise ValueError("color_outlier_trim_percent must be in [0, 50)")
        if self.min_cell_pixels < 1:
            raise ValueError("min_cell_pixels must be >= 1")
        if self.delta_e_method not in DELTA_E_METHODS:
            raise ValueError(f"delta_e_method must be one of {DELTA_E_METHODS}")
        g_lo, g_hi = self.exposure_gain_range
        if not 0.0 < g_lo <= 1.0 <= g_hi:
            raise ValueError("exposure_gain_range must satisfy 0 < low <= 1 <= high")
        if self.time_budget is not None and self.time_budget <= 0.0:
            raise ValueError("time_budget must be positive seconds or None")
        if self.max_search_iterations is not None and self.max_search_iterations < 1:
            raise ValueError("max_search_iterations must be >= 1 or None")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["edge_thresholds"] = list(self.edge_thresholds)
        data["exposure_gain_range"] = list(self.exposure_gain_range)
        return data


def create_detection_config(base: Optional[DetectionConfig] = None, **overrides) -> DetectionConfig:
    """Create a DetectionConfig with selective overrides for convenient tuning."""
    data = asdict(base) if base is not None else {}
    names = {f.name for f in fields(DetectionConfig)}
    for key, value in overrides.items():
        if key not in names:
            raise AttributeError(f"Unknown detection config field: {key}")
        data[key] = value
    return DetectionConfig(**data)


def load_detection_config(path: PathLike, base: Optional[DetectionConfig] = None) -> DetectionConfig:
    """Read overrides from a YAML mapping (optionally under a ``detection`` key)."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping of config overrides")
    if "detection" in data and isinstance(data["detection"], dict):
        data = data["detection"]
    return create_detection_config(base, **data)


DEFAULT_CONFIG = DetectionConfig()

HIGH_RECALL_CONFIG = create_detection_config(
    edge_thresholds=(15.0, 45.0),
    edge_adaptive=True,
    max_corner_cosine=0.6,
    cluster_size_tolerance=1.9,
    lattice_step_tolerance=0.4,
    min_observed_fraction=0.5,
    grid_residual_tolerance=0.3,
    spacing_ratio_tolerance=0.5,
    aspect_ratio_tolerance=0.5,
    min_geometric_confidence=0.4,
    exposure_normalize=True,
    min_match_score=0.2,
)


class SearchBudget:
    """Deadline and iteration cap shared by the contour and grid stages of one call."""

    def __init__(self, time_budget: Optional[float] = None, max_iterations: Optional[int] = None):
        self.time_budget = time_budget
        self.max_iterations = max_iterations
        self._deadline = None if time_budget is None else time.monotonic() + float(time_budget)
        self.iterations = 0
        self.truncated = False

    @classmethod
    def from_config(cls, cfg: DetectionConfig) -> "SearchBudget":
        return cls(cfg.time_budget, cfg.max_search_iterations)

    def tick(self, stage: str = "") -> bool:
        """Count one unit of work; False once the budget is spent."""
        self.iterations += 1
        if self.exhausted():
            if not self.truncated:
                logger.warning("Search budget exhausted during %s after %d iterations; truncating",
                               stage or "search", self.iterations)
            self.truncated = True
            return False
        return True

    def exhausted(self) -> bool:
        if self.max_iterations is not None and self.iterations > self.max_iterations:
            return True
        if self._deadline is not None and time.monotonic() > self._deadline:
            return True
        return False


__all__ = [
    "DetectionConfig",
    "DEFAULT_CONFIG",
    "HIGH_RECALL_CONFIG",
    "DELTA_E_METHODS",
    "create_detection_config",
    "load_detection_config",
    "SearchBudget",
]
