from __future__ import annotations

import cv2
import numpy as np

from chartfind.core.config import DEFAULT_CONFIG, SearchBudget, create_detection_config
from chartfind.core.contours import ContourExtractor, _is_duplicate, approximate_quad, extract_quads, max_corner_cosine
from chartfind.core.normalize import normalize_raster
from chartfind.core.types import Quadrilateral


def _patch_centers(scene) -> np.ndarray:
    return scene.patch_quads.mean(axis=1)


def test_every_patch_yields_one_quad(chart_scene) -> None:
    gray = normalize_raster(chart_scene.image).gray
    quads = extract_quads(gray)

    centers = np.array([q.center for q in quads])
    for expected in _patch_centers(chart_scene):
        d = np.linalg.norm(centers - expected, axis=1)
        assert np.sum(d < 6.0) == 1
    for q in quads:
        assert cv2.isContourConvex(q.as_array().reshape(-1, 1, 2))


def test_extractor_is_restartable(chart_scene) -> None:
    gray = normalize_raster(chart_scene.image).gray
    extractor = ContourExtractor(gray)
    first = list(extractor)
    second = list(extractor)
    assert first == second
    assert extractor.edges.shape == gray.shape


def test_blank_image_has_no_candidates() -> None:
    gray = np.full((200, 300), 128, np.uint8)
    assert extract_quads(gray) == []


def test_budget_truncates_extraction(chart_scene) -> None:
    gray = normalize_raster(chart_scene.image).gray
    budget = SearchBudget(max_iterations=5)
    quads = list(ContourExtractor(gray, DEFAULT_CONFIG, budget))
    assert budget.truncated
    assert len(quads) <= 5


def test_approximate_quad_rejects_triangles_and_slivers() -> None:
    tri = np.array([[[10, 10]], [[80, 10]], [[45, 70]]], np.int32)
    assert approximate_quad(tri, 1e6) is None

    rhombus = np.array([[[0, 0]], [[100, 0]], [[140, 30]], [[40, 30]]], np.int32)
    assert max_corner_cosine(rhombus.reshape(4, 2)) > DEFAULT_CONFIG.max_corner_cosine
    assert approximate_quad(rhombus, 1e6) is None

    square = np.array([[[10, 10]], [[60, 10]], [[60, 60]], [[10, 60]]], np.int32)
    q = approximate_quad(square, 1e6)
    assert q is not None
    assert q.area == cv2.contourArea(square)
    assert approximate_quad(square, 1e6, create_detection_config(min_quad_area=5000.0)) is None


def _square(x0: float, y0: float, side: float) -> Quadrilateral:
    return Quadrilateral.from_array(np.array([[x0, y0], [x0 + side, y0], [x0 + side, y0 + side], [x0, y0 + side]]))


def test_sliver_inside_patch_is_duplicate() -> None:
    patch = _square(100.0, 200.0, 33.0)
    # skewed fragment cut out of the patch interior, well under half its area
    sliver = Quadrilateral.from_array(np.array([[106, 214], [122, 203], [128, 226], [111, 230]], np.float64))
    assert sliver.area / patch.area < 0.5
    assert _is_duplicate(sliver, [patch], DEFAULT_CONFIG.duplicate_center_ratio)


def test_patch_inside_merged_pair_is_kept() -> None:
    merged = Quadrilateral.from_array(np.array([[100, 200], [182, 200], [182, 236], [100, 236]], np.float64))
    left = _square(100.0, 200.0, 36.0)
    assert not _is_duplicate(left, [merged], DEFAULT_CONFIG.duplicate_center_ratio)


def test_quads_come_largest_first(chart_scene) -> None:
    gray = normalize_raster(chart_scene.image).gray
    areas = [q.area for q in ContourExtractor(gray)]
    assert areas == sorted(areas, reverse=True)
