from __future__ import annotations

import math

import numpy as np
import pytest

from chartfind.core.config import DEFAULT_CONFIG
from chartfind.core.contours import extract_quads
from chartfind.core.grid import _Window, assemble_grids, assign_lattice, cluster_quads, lattice_axes
from chartfind.core.normalize import normalize_raster
from chartfind.core.types import Quadrilateral
from synthetic import PITCH, corners_close, render_chart


def _square(cx: float, cy: float, side: float, angle: float = 0.0) -> Quadrilateral:
    t = math.radians(angle)
    u = np.array([math.cos(t), math.sin(t)]) * side / 2
    v = np.array([-math.sin(t), math.cos(t)]) * side / 2
    c = np.array([cx, cy])
    return Quadrilateral.from_array([c - u - v, c + u - v, c + u + v, c - u + v])


def _lattice(rows: int, cols: int, pitch: float = 46.0, side: float = 36.0, skip=()) -> list:
    return [_square(100 + c * pitch, 100 + r * pitch, side)
            for r in range(rows) for c in range(cols) if (r, c) not in skip]


def test_lattice_axes_follow_rotation() -> None:
    u, v = lattice_axes([_square(0, 0, 20, 10.0), _square(50, 0, 20, 10.0)])
    assert math.degrees(math.atan2(u[1], u[0])) == pytest.approx(10.0, abs=1e-6)
    assert np.dot(u, v) == pytest.approx(0.0)


def test_clusters_separate_by_size_and_distance() -> None:
    chart = _lattice(3, 3)
    far = [_square(600 + c * 46, 600, 36) for c in range(4)]
    tiny = [_square(100 + c * 46, 300, 8) for c in range(3)]
    clusters = cluster_quads(chart + far + tiny, DEFAULT_CONFIG, min_size=4)

    sizes = sorted(len(c.quads) for c in clusters)
    assert sizes == [4, 9]


def test_assign_lattice_integer_coordinates() -> None:
    quads = _lattice(4, 6, skip={(1, 2)})
    cluster = cluster_quads(quads, DEFAULT_CONFIG)[0]
    fit = assign_lattice(cluster, DEFAULT_CONFIG)

    assert len(fit.coords) == 23
    assert fit.pitch == pytest.approx(46.0, abs=0.5)
    cols = sorted({a for a, _ in fit.coords.values()})
    rows = sorted({b for _, b in fit.coords.values()})
    assert cols == list(range(cols[0], cols[0] + 6))
    assert rows == list(range(rows[0], rows[0] + 4))


def test_missing_cell_is_interpolated(topology) -> None:
    quads = _lattice(4, 6, skip={(2, 3)})
    grids = assemble_grids(quads, [topology])

    full = [g for g in grids if (g.n_rows, g.n_cols) == (4, 6)]
    assert len(full) == 1
    g = full[0]
    assert g.matched_count == 23
    assert g.residual < 0.05
    assert g.confidence == pytest.approx(1.0 - g.residual)
    cell = g.cells[2 * g.n_cols + 3]
    assert not cell.observed
    assert np.allclose(cell.quad.center, (100 + 3 * 46, 100 + 2 * 46), atol=0.5)
    assert cell.quad.size == pytest.approx(36.0, abs=1.0)


def test_too_few_cells_give_no_grid(topology) -> None:
    quads = _lattice(2, 6)
    assert assemble_grids(quads, [topology]) == []


def test_wrong_spacing_rejected(topology) -> None:
    # small patches far apart: pitch / side far from the chart's ratio
    quads = _lattice(4, 6, pitch=58.0, side=30.0)
    assert [g for g in assemble_grids(quads, [topology]) if (g.n_rows, g.n_cols) == (4, 6)] == []


def test_grid_from_rendered_chart(topology) -> None:
    scene = render_chart(angle_deg=12.0)
    gray = normalize_raster(scene.image).gray
    grids = assemble_grids(extract_quads(gray), [topology])

    full = [g for g in grids if (g.n_rows, g.n_cols) == (4, 6)]
    assert full, "expected the 4x6 footprint"
    g = full[0]
    assert g.matched_count == 24
    assert g.pitch == pytest.approx(PITCH, rel=0.05)
    assert corners_close(g.bounding_quad.corners, scene.outline, 6.0)


def test_full_window_outranks_lower_residual_partial_one() -> None:
    H = np.eye(3)
    full = _Window(2, 3, (0, 0), [(i, (i % 3, i // 3)) for i in range(6)], H, residual=0.04, residual_total=0.24)
    partial = _Window(2, 3, (1, 0), [(i, (i % 3, i // 3)) for i in range(4)], H, residual=0.01, residual_total=0.04)
    tied = _Window(2, 3, (0, 1), [(i, (i % 3, i // 3)) for i in range(6)], H, residual=0.02, residual_total=0.12)

    ranked = sorted([partial, full, tied], key=_Window.sort_key)
    assert [w.origin for w in ranked] == [(0, 1), (0, 0), (1, 0)]
