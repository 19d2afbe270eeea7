# -*- coding: utf-8 -*-
"""
Grid Assembler：四边形候选 → 聚类 → 格点坐标 → 按拓扑滑窗拟合 → CandidateGrid。
缺失的格子由单应性插值补齐。
"""
from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .chart_spec import ChartTopology
from .config import DEFAULT_CONFIG, DetectionConfig, SearchBudget
from .errors import InvalidQuadrilateral
from .types import CandidateGrid, GridCell, Quadrilateral

logger = logging.getLogger(__name__)

Lattice = Tuple[int, int]   # (col, row) along (u, v)


@dataclass
class QuadCluster:
    cluster_id: int
    quads: List[Quadrilateral]
    centers: np.ndarray
    sizes: np.ndarray
    links: List[List[int]]


@dataclass
class LatticeFit:
    coords: Dict[int, Lattice]
    u: np.ndarray
    v: np.ndarray
    pitch_u: float
    pitch_v: float

    @property
    def pitch(self) -> float:
        return 0.5 * (self.pitch_u + self.pitch_v)


@dataclass
class _Window:
    n_rows: int
    n_cols: int
    origin: Lattice
    members: List[Tuple[int, Lattice]]     # quad index -> (col, row) inside the window
    H: np.ndarray
    residual: float
    residual_total: float

    def sort_key(self):
        # coverage before residual: a residual sum over fewer cells is always smaller
        missing = self.n_rows * self.n_cols - len(self.members)
        return (missing, self.residual_total, -len(self.members), self.origin[1], self.origin[0])


# --------------------- clustering ---------------------
def _link_matrix(centers: np.ndarray, sizes: np.ndarray, cfg: DetectionConfig) -> np.ndarray:
    d = np.linalg.norm(centers[:, None, :] - centers[None, :, :], axis=2)
    s_max = np.maximum(sizes[:, None], sizes[None, :])
    s_min = np.maximum(np.minimum(sizes[:, None], sizes[None, :]), 1e-6)
    s_mean = 0.5 * (sizes[:, None] + sizes[None, :])
    linked = (s_max / s_min <= cfg.cluster_size_tolerance) & (d <= cfg.cluster_link_ratio * s_mean)
    np.fill_diagonal(linked, False)
    return linked


def _components(linked: np.ndarray) -> List[List[int]]:
    n = linked.shape[0]
    seen = np.zeros(n, bool)
    groups = []
    for start in range(n):
        if seen[start]:
            continue
        seen[start] = True
        comp = [start]; queue = deque([start])
        while queue:
            i = queue.popleft()
            for j in np.flatnonzero(linked[i]):
                if not seen[j]:
                    seen[j] = True
                    comp.append(int(j)); queue.append(int(j))
        groups.append(sorted(comp))
    return groups


def cluster_quads(quads: Sequence[Quadrilateral], cfg: DetectionConfig = DEFAULT_CONFIG,
                  min_size: int = 4) -> List[QuadCluster]:
    """Group quads of similar size whose centres lie within a few pitches of each other."""
    if len(quads) < min_size:
        return []
    centers = np.array([q.center for q in quads], np.float64)
    sizes = np.array([q.size for q in quads], np.float64)
    linked = _link_matrix(centers, sizes, cfg)

    clusters: List[QuadCluster] = []
    for comp in _components(linked):
        if len(comp) < min_size:
            continue
        med = float(np.median(sizes[comp]))
        comp = [i for i in comp if max(sizes[i] / med, med / sizes[i]) <= cfg.cluster_size_tolerance]
        if len(comp) < min_size:
            continue
        sub = linked[np.ix_(comp, comp)]
        clusters.append(QuadCluster(
            cluster_id=len(clusters),
            quads=[quads[i] for i in comp],
            centers=centers[comp],
            sizes=sizes[comp],
            links=[[int(j) for j in np.flatnonzero(row)] for row in sub],
        ))
    return clusters


# --------------------- lattice ---------------------
def lattice_axes(quads: Iterable[Quadrilateral]) -> Tuple[np.ndarray, np.ndarray]:
    """Dominant side direction (circular mean of 4θ); u points to +x, v to +y."""
    s = 0.0; c = 0.0
    for q in quads:
        p = q.as_array().astype(np.float64)
        d = np.roll(p, -1, axis=0) - p
        phi = np.arctan2(d[:, 1], d[:, 0])
        w = np.linalg.norm(d, axis=1)
        s += float(np.sum(w * np.sin(4 * phi))); c += float(np.sum(w * np.cos(4 * phi)))
    t = math.atan2(s, c) / 4.0
    u = np.array([math.cos(t), math.sin(t)])
    v = np.array([-math.sin(t), math.cos(t)])
    return u, v


def lattice_pitch(cluster: QuadCluster, u: np.ndarray, v: np.ndarray) -> Tuple[Optional[float], Optional[float]]:
    pu: List[float] = []; pv: List[float] = []
    for i, nbrs in enumerate(cluster.links):
        bu = math.inf; bv = math.inf
        for j in nbrs:
            d = cluster.centers[j] - cluster.centers[i]
            a = float(np.dot(d, u)); b = float(np.dot(d, v)); L = float(np.hypot(a, b))
            if abs(b) <= 0.3 * L:
                bu = min(bu, abs(a))
            elif abs(a) <= 0.3 * L:
                bv = min(bv, abs(b))
        if math.isfinite(bu):
            pu.append(bu)
        if math.isfinite(bv):
            pv.append(bv)
    p_u = float(np.median(pu)) if pu else None
    p_v = float(np.median(pv)) if pv else None
    return p_u, p_v


def assign_lattice(cluster: QuadCluster, cfg: DetectionConfig = DEFAULT_CONFIG) -> Optional[LatticeFit]:
    """Integer (col, row) per quad by unit steps along the links; largest consistent component wins."""
    u, v = lattice_axes(cluster.quads)
    p_u, p_v = lattice_pitch(cluster, u, v)
    if p_u is None and p_v is None:
        return None
    p_u = p_u or p_v; p_v = p_v or p_u
    tol = cfg.lattice_step_tolerance
    centers = cluster.centers
    order = sorted(range(len(centers)), key=lambda i: (centers[i, 1], centers[i, 0]))

    assigned: Dict[int, Lattice] = {}
    best: Dict[int, Lattice] = {}
    for seed in order:
        if seed in assigned:
            continue
        coords: Dict[int, Lattice] = {seed: (0, 0)}
        occupied = {(0, 0): seed}
        queue = deque([seed])
        while queue:
            i = queue.popleft()
            for j in cluster.links[i]:
                if j in coords or j in assigned:
                    continue
                d = centers[j] - centers[i]
                su = float(np.dot(d, u)) / p_u; sv = float(np.dot(d, v)) / p_v
                ru, rv = int(round(su)), int(round(sv))
                if (ru, rv) == (0, 0) or abs(ru) > 1 or abs(rv) > 1:
                    continue
                if abs(su - ru) > tol or abs(sv - rv) > tol:
                    continue
                c = (coords[i][0] + ru, coords[i][1] + rv)
                if c in occupied:
                    continue
                coords[j] = c; occupied[c] = j
                queue.append(j)
        assigned.update(coords)
        if len(coords) > len(best):
            best = coords
    return LatticeFit(coords=best, u=u, v=v, pitch_u=float(p_u), pitch_v=float(p_v))


# --------------------- window fitting ---------------------
def _project(H: np.ndarray, pts) -> np.ndarray:
    arr = np.asarray(pts, np.float64).reshape(-1, 1, 2)
    return cv2.perspectiveTransform(arr, H).reshape(-1, 2)


def _fit_window(cluster: QuadCluster, fit: LatticeFit, n_rows: int, n_cols: int,
                origin: Lattice, min_matched: int) -> Optional[_Window]:
    oa, ob = origin
    members = [(i, (a - oa, b - ob)) for i, (a, b) in sorted(fit.coords.items())
               if oa <= a < oa + n_cols and ob <= b < ob + n_rows]
    if len(members) < min_matched:
        return None
    if len({c for _, (c, _) in members}) < 2 or len({r for _, (_, r) in members}) < 2:
        return None
    src = np.array([[c, r] for _, (c, r) in members], np.float64)
    dst = cluster.centers[[i for i, _ in members]]
    H, _ = cv2.findHomography(src, dst, 0)
    if H is None or not np.all(np.isfinite(H)) or abs(np.linalg.det(H)) < 1e-12:
        return None
    err = np.linalg.norm(_project(H, src) - dst, axis=1)
    residual = float(np.sqrt(np.mean(err ** 2))) / fit.pitch
    return _Window(n_rows=n_rows, n_cols=n_cols, origin=origin, members=members, H=H,
                   residual=residual, residual_total=float(np.sum(err)))


def _cell_half_extent(cluster: QuadCluster, window: _Window) -> Tuple[float, float]:
    H_inv = np.linalg.inv(window.H)
    hu: List[float] = []; hv: List[float] = []
    for i, _ in window.members:
        lc = _project(H_inv, cluster.quads[i].as_array())
        hu.append(0.5 * float(lc[:, 0].max() - lc[:, 0].min()))
        hv.append(0.5 * float(lc[:, 1].max() - lc[:, 1].min()))
    return (float(np.clip(np.median(hu), 0.05, 0.49)), float(np.clip(np.median(hv), 0.05, 0.49)))


def _cell_quad(H: np.ndarray, col: float, row: float, hu: float, hv: float) -> Quadrilateral:
    corners = [(col - hu, row - hv), (col + hu, row - hv), (col + hu, row + hv), (col - hu, row + hv)]
    return Quadrilateral.from_array(_project(H, corners))


def _aspect_ok(outline: np.ndarray, topology: ChartTopology, transposed: bool,
               cfg: DetectionConfig) -> bool:
    tl, tr, br, bl = outline
    width = 0.5 * (np.linalg.norm(tr - tl) + np.linalg.norm(br - bl))
    height = 0.5 * (np.linalg.norm(bl - tl) + np.linalg.norm(br - tr))
    if width < 1e-6 or height < 1e-6:
        return False
    observed = height / width if transposed else width / height
    return abs(observed / topology.aspect_ratio - 1.0) <= cfg.aspect_ratio_tolerance


def _build_grid(cluster: QuadCluster, fit: LatticeFit, window: _Window, topology: ChartTopology,
                cfg: DetectionConfig) -> Optional[CandidateGrid]:
    hu, hv = _cell_half_extent(cluster, window)
    n_rows, n_cols = window.n_rows, window.n_cols
    outline = _project(window.H, [(-hu, -hv), (n_cols - 1 + hu, -hv),
                                  (n_cols - 1 + hu, n_rows - 1 + hv), (-hu, n_rows - 1 + hv)])
    transposed = (n_rows, n_cols) != (topology.rows, topology.cols)
    if not _aspect_ok(outline, topology, transposed, cfg):
        logger.debug("cluster %d / %s: aspect ratio rejected", cluster.cluster_id, topology.topology_id)
        return None

    by_cell = {cell: i for i, cell in window.members}
    oa, ob = window.origin
    cells: List[GridCell] = []
    try:
        for r in range(n_rows):
            for c in range(n_cols):
                i = by_cell.get((c, r))
                if i is not None:
                    cells.append(GridCell(r, c, cluster.quads[i], True, (oa + c, ob + r)))
                else:
                    cells.append(GridCell(r, c, _cell_quad(window.H, c, r, hu, hv), False, (oa + c, ob + r)))
        bounding = Quadrilateral.from_array(outline)
    except InvalidQuadrilateral as exc:
        logger.debug("cluster %d / %s: degenerate interpolation (%s)", cluster.cluster_id,
                     topology.topology_id, exc)
        return None

    confidence = float(np.clip(1.0 - window.residual, 0.0, 1.0))
    return CandidateGrid(
        topology=topology,
        n_rows=n_rows,
        n_cols=n_cols,
        cells=tuple(cells),
        bounding_quad=bounding,
        homography=tuple(tuple(float(x) for x in row) for row in window.H),
        confidence=confidence,
        residual=window.residual,
        residual_total=window.residual_total,
        matched_count=len(window.members),
        pitch=fit.pitch,
        cluster_id=cluster.cluster_id,
    )


def fit_topology(cluster: QuadCluster, fit: LatticeFit, topology: ChartTopology,
                 cfg: DetectionConfig = DEFAULT_CONFIG,
                 budget: Optional[SearchBudget] = None) -> List[CandidateGrid]:
    """Best window per footprint: (rows, cols), and (cols, rows) for quarter-turned charts."""
    spacing = fit.pitch / float(np.median(cluster.sizes))
    if abs(spacing / topology.spacing_ratio - 1.0) > cfg.spacing_ratio_tolerance:
        logger.debug("cluster %d / %s: spacing ratio %.3f rejected", cluster.cluster_id,
                     topology.topology_id, spacing)
        return []
    cols_seen = [a for a, _ in fit.coords.values()]
    rows_seen = [b for _, b in fit.coords.values()]
    min_matched = max(4, int(math.ceil(cfg.min_observed_fraction * topology.n_cells - 1e-9)))

    footprints = [(topology.rows, topology.cols)]
    if topology.rows != topology.cols:
        footprints.append((topology.cols, topology.rows))

    grids: List[CandidateGrid] = []
    for n_rows, n_cols in footprints:
        origins = [(oa, ob)
                   for ob in range(min(rows_seen) - n_rows + 1, max(rows_seen) + 1)
                   for oa in range(min(cols_seen) - n_cols + 1, max(cols_seen) + 1)]
        windows: List[_Window] = []
        for origin in origins:
            if budget is not None and not budget.tick("grid assembly"):
                break
            w = _fit_window(cluster, fit, n_rows, n_cols, origin, min_matched)
            if w is not None and w.residual <= cfg.grid_residual_tolerance:
                windows.append(w)
        for w in sorted(windows, key=_Window.sort_key):
            grid = _build_grid(cluster, fit, w, topology, cfg)
            if grid is None:
                continue
            if grid.confidence < cfg.min_geometric_confidence:
                logger.debug("cluster %d / %s: confidence %.3f below threshold", cluster.cluster_id,
                             topology.topology_id, grid.confidence)
                continue
            grids.append(grid)
            break
    return grids


def assemble_grids(quads: Iterable[Quadrilateral], topologies: Sequence[ChartTopology],
                   cfg: DetectionConfig = DEFAULT_CONFIG,
                   budget: Optional[SearchBudget] = None) -> List[CandidateGrid]:
    """All candidate grids for every quad cluster and topology, in deterministic order."""
    quads = list(quads)
    if not topologies:
        return []
    min_cells = min(t.n_cells for t in topologies)
    min_size = max(4, int(math.ceil(cfg.min_observed_fraction * min_cells - 1e-9)))
    clusters = cluster_quads(quads, cfg, min_size=min_size)
    logger.debug("%d quads -> %d clusters", len(quads), len(clusters))

    grids: List[CandidateGrid] = []
    for cluster in clusters:
        if budget is not None and budget.exhausted():
            break
        fit = assign_lattice(cluster, cfg)
        if fit is None or len(fit.coords) < min_size:
            continue
        for topology in topologies:
            grids.extend(fit_topology(cluster, fit, topology, cfg, budget))
    logger.debug("assembled %d candidate grids", len(grids))
    return grids


__all__ = [
    "QuadCluster",
    "LatticeFit",
    "cluster_quads",
    "lattice_axes",
    "lattice_pitch",
    "assign_lattice",
    "fit_topology",
    "assemble_grids",
]
