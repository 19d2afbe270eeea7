# -*- coding: utf-8 -*-
"""Deterministic reduction of scored candidates to a single DetectionResult."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from .matcher import MatchResult
from .types import (
    BELOW_THRESHOLD,
    NO_CANDIDATES,
    CandidateGrid,
    DetectionResult,
    Found,
    NotFound,
    PatchColor,
    PatchSample,
)


@dataclass(frozen=True)
class ScoredCandidate:
    grid: CandidateGrid
    samples: Sequence[PatchSample]
    match: MatchResult

    @property
    def score(self) -> float:
        return self.match.score

    def rank_key(self):
        g = self.grid
        return (
            -self.match.score,
            -g.topology.n_cells,
            g.residual,
            -g.matched_count,
            g.topology.topology_id,
            self.match.orientation.index,
            g.bounding_quad.corners,
        )


def build_found(best: ScoredCandidate, timings_ms: Optional[Dict[str, float]] = None) -> Found:
    grid, match = best.grid, best.match
    topo = grid.topology
    colors: List[PatchColor] = []
    for obs_idx, ref_idx in enumerate(match.mapping):
        s = best.samples[obs_idx]
        colors.append(PatchColor(
            index=ref_idx,
            row=ref_idx // topo.cols,
            col=ref_idx % topo.cols,
            mean=s.mean,
            variance=s.variance,
            reference=topo.reference_colors[ref_idx],
            delta_e=match.delta_e[obs_idx],
            observed=grid.cells[obs_idx].observed,
            synthesized=s.synthesized,
            quad=s.quad,
        ))
    colors.sort(key=lambda pc: pc.index)
    return Found(
        bounding_quad=grid.bounding_quad,
        orientation=match.orientation,
        patch_colors=tuple(colors),
        match_score=match.score,
        topology_id=topo.topology_id,
        geometric_confidence=grid.confidence,
        mean_delta_e=match.mean_delta_e,
        timings_ms=dict(timings_ms or {}),
        meta={
            "observed_shape": [grid.n_rows, grid.n_cols],
            "matched_cells": grid.matched_count,
            "residual": grid.residual,
            "exposure_gain": match.exposure_gain,
            "cluster_id": grid.cluster_id,
        },
    )


def select_detection(candidates: Iterable[ScoredCandidate], min_match_score: float,
                     timings_ms: Optional[Dict[str, float]] = None) -> DetectionResult:
    """Highest score wins; ties fall through the geometric and id keys of ``rank_key``."""
    ranked = sorted(candidates, key=ScoredCandidate.rank_key)
    if not ranked:
        return NotFound(reason=NO_CANDIDATES, timings_ms=dict(timings_ms or {}))
    best = ranked[0]
    if best.score < min_match_score:
        return NotFound(reason=BELOW_THRESHOLD, best_score=best.score, timings_ms=dict(timings_ms or {}))
    return build_found(best, timings_ms)


__all__ = ["ScoredCandidate", "select_detection", "build_found"]
