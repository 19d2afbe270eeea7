from __future__ import annotations

import numpy as np
import pytest

from chartfind.core.errors import InvalidQuadrilateral
from chartfind.core.types import NotFound, Orientation, Quadrilateral, order_quad


def test_quadrilateral_normalizes_corner_order() -> None:
    q = Quadrilateral(((10.0, 10.0), (0.0, 10.0), (0.0, 0.0), (10.0, 0.0)))

    assert q.corners[0] == (0.0, 0.0)
    assert q.corners == ((0.0, 0.0), (10.0, 0.0), (10.0, 10.0), (0.0, 10.0))
    assert np.isclose(q.area, 100.0)
    assert np.isclose(q.size, 10.0)
    assert q.center == (5.0, 5.0)


def test_quadrilateral_rejects_degenerate_input() -> None:
    with pytest.raises(InvalidQuadrilateral):
        Quadrilateral(((0.0, 0.0), (1.0, 0.0), (2.0, 0.0), (3.0, 0.0)))
    with pytest.raises(InvalidQuadrilateral):
        Quadrilateral.from_array(np.zeros((4, 2)))
    with pytest.raises(InvalidQuadrilateral):
        Quadrilateral(((0.0, 0.0), (1.0, 1.0), (float("nan"), 0.0), (0.0, 1.0)))


def test_order_quad_rotated_square_starts_top_left() -> None:
    pts = np.array([[50, 0], [100, 50], [50, 100], [0, 50]], np.float64)
    ordered = order_quad(pts[::-1])
    # clockwise on screen: each consecutive edge turns right
    cross = []
    for i in range(4):
        a = ordered[(i + 1) % 4] - ordered[i]
        b = ordered[(i + 2) % 4] - ordered[(i + 1) % 4]
        cross.append(a[0] * b[1] - a[1] * b[0])
    assert all(c > 0 for c in cross)


def test_orientation_enumeration_and_apply() -> None:
    all_ = Orientation.all()
    assert len(all_) == 8
    assert len(set(all_)) == 8
    assert [o.index for o in all_] == list(range(8))
    assert Orientation(90, True).label == "mirror+rot90"

    idx = np.arange(6).reshape(2, 3)
    assert np.array_equal(Orientation(0).apply(idx), idx)
    assert np.array_equal(Orientation(90).apply(idx), np.rot90(idx))
    assert np.array_equal(Orientation(0, True).apply(idx), np.fliplr(idx))
    assert Orientation(270).apply(idx).shape == (3, 2)

    with pytest.raises(ValueError):
        Orientation(45)


def test_not_found_serializes() -> None:
    nf = NotFound(reason="no quadrilateral candidates", timings_ms={"contours": 1.0})
    d = nf.to_dict()

    assert nf.found is False
    assert d["found"] is False
    assert d["best_score"] is None
    assert nf == NotFound(reason="no quadrilateral candidates")
