# -*- coding: utf-8 -*-
"""
ChartDetector：输入 Raster（或 numpy 图像），输出 DetectionResult（Found / NotFound）。
不负责读图/画图；仅算法与数据。
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from .chart_spec import ChartTopology
from .config import DEFAULT_CONFIG, DetectionConfig, SearchBudget
from .contours import ContourExtractor
from .errors import DegenerateCell
from .grid import assemble_grids
from .matcher import match_reference
from .normalize import NormalizedImage, Raster, normalize_raster
from .sampler import sample_grid
from .selector import ScoredCandidate, select_detection
from .types import CandidateGrid, DetectionResult, NotFound, NO_CANDIDATES

logger = logging.getLogger(__name__)


def _ms(t0: float) -> float:
    return (time.perf_counter() - t0) * 1000.0


def evaluate_candidate(grid: CandidateGrid, image: NormalizedImage,
                       cfg: DetectionConfig = DEFAULT_CONFIG) -> Optional[ScoredCandidate]:
    """Sample and score one grid; None when the grid yields nothing usable."""
    try:
        samples = sample_grid(grid, image, cfg)
    except DegenerateCell as exc:
        logger.debug("dropping %s grid from cluster %d: %s", grid.topology.topology_id, grid.cluster_id, exc)
        return None
    match = match_reference(samples, grid, linear=image.linear, cfg=cfg)
    if match is None:
        return None
    return ScoredCandidate(grid=grid, samples=tuple(samples), match=match)


class ChartDetector:
    def __init__(self, topologies: Sequence[ChartTopology], config: DetectionConfig = DEFAULT_CONFIG):
        self.topologies = list(topologies)
        if not self.topologies:
            raise ValueError("at least one ChartTopology is required")
        ids = [t.topology_id for t in self.topologies]
        if len(set(ids)) != len(ids):
            raise ValueError(f"duplicate topology ids: {ids}")
        self.config = config

    def _score_all(self, grids: List[CandidateGrid], image: NormalizedImage) -> List[ScoredCandidate]:
        cfg = self.config
        if cfg.workers > 1 and len(grids) > 1:
            with ThreadPoolExecutor(max_workers=cfg.workers) as pool:
                scored = list(pool.map(lambda g: evaluate_candidate(g, image, cfg), grids))
        else:
            scored = [evaluate_candidate(g, image, cfg) for g in grids]
        return [s for s in scored if s is not None]

    def detect(self, image: Union[Raster, np.ndarray], debug: Optional[Dict[str, Any]] = None) -> DetectionResult:
        cfg = self.config
        timings: Dict[str, float] = {}

        if debug is not None:
            debug.clear()
            debug["stage"] = "init"
            debug["fail_reason"] = None

        t0 = time.perf_counter()
        normalized = normalize_raster(image, cfg)
        timings["normalize"] = _ms(t0)

        budget = SearchBudget.from_config(cfg)
        t0 = time.perf_counter()
        extractor = ContourExtractor(normalized.gray, cfg, budget)
        quads = list(extractor)
        timings["contours"] = _ms(t0)
        if debug is not None:
            debug["stage"] = "contours"
            debug["edges"] = extractor.edges.copy()
            debug["quads"] = list(quads)
        if not quads:
            if debug is not None:
                debug["fail_reason"] = NO_CANDIDATES
                debug["budget_truncated"] = budget.truncated
            return NotFound(reason=NO_CANDIDATES, timings_ms=timings)

        t0 = time.perf_counter()
        grids = assemble_grids(quads, self.topologies, cfg, budget)
        timings["grid"] = _ms(t0)
        if debug is not None:
            debug["stage"] = "grid"
            debug["grids"] = list(grids)

        t0 = time.perf_counter()
        scored = self._score_all(grids, normalized)
        timings["match"] = _ms(t0)

        result = select_detection(scored, cfg.min_match_score, timings)
        if debug is not None:
            debug["stage"] = "done"
            debug["scored"] = scored
            debug["budget_truncated"] = budget.truncated
            if not result.found:
                debug["fail_reason"] = result.reason
        logger.debug("%d quads, %d grids, %d scored -> %s", len(quads), len(grids), len(scored),
                     "found" if result.found else result.reason)
        return result


def detect(raster: Union[Raster, np.ndarray], topologies: Sequence[ChartTopology],
           config: DetectionConfig = DEFAULT_CONFIG, debug: Optional[Dict[str, Any]] = None) -> DetectionResult:
    """Locate the best-matching chart among ``topologies`` in ``raster``."""
    return ChartDetector(topologies, config).detect(raster, debug=debug)


__all__ = ["ChartDetector", "detect", "evaluate_candidate"]
