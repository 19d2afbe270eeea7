from __future__ import annotations

import numpy as np
import pytest

from chartfind.core.config import create_detection_config
from chartfind.core.matcher import candidate_orientations, match_reference, orientation_score, rgb_to_lab
from chartfind.core.types import CandidateGrid, GridCell, Orientation, PatchSample, Quadrilateral


def _quad(i: int) -> Quadrilateral:
    return Quadrilateral.from_array([[i * 10, 0], [i * 10 + 8, 0], [i * 10 + 8, 8], [i * 10, 8]])


def _layout(topology, orientation: Orientation, gain: float = 1.0, confidence: float = 0.9):
    laid = orientation.apply(topology.index_grid())
    n_rows, n_cols = laid.shape
    refs = topology.reference_array()
    cells, samples = [], []
    for i, ref_idx in enumerate(laid.reshape(-1)):
        r, c = divmod(i, n_cols)
        q = _quad(i)
        cells.append(GridCell(r, c, q, True))
        samples.append(PatchSample(index=i, row=r, col=c, mean=tuple(float(v) * gain for v in refs[ref_idx]),
                                   variance=(0.0, 0.0, 0.0), pixel_count=100, quad=q))
    grid = CandidateGrid(topology=topology, n_rows=n_rows, n_cols=n_cols, cells=tuple(cells),
                         bounding_quad=Quadrilateral.from_array([[0, 0], [300, 0], [300, 20], [0, 20]]),
                         homography=((1, 0, 0), (0, 1, 0), (0, 0, 1)), confidence=confidence, residual=0.1,
                         residual_total=1.0, matched_count=len(cells), pitch=10.0)
    return grid, samples, laid.reshape(-1)


def test_candidate_orientations_by_footprint() -> None:
    same = candidate_orientations(4, 6, 4, 6)
    turned = candidate_orientations(6, 4, 4, 6)
    assert {o.rotation for o, _ in same} == {0, 180}
    assert {o.rotation for o, _ in turned} == {90, 270}
    assert len(same) == len(turned) == 4
    assert candidate_orientations(5, 5, 4, 6) == []


@pytest.mark.parametrize("orientation", Orientation.all(), ids=lambda o: o.label)
def test_match_recovers_orientation(classic24, orientation) -> None:
    grid, samples, expected = _layout(classic24, orientation)
    match = match_reference(samples, grid)

    assert match.orientation == orientation
    assert list(match.mapping) == expected.tolist()
    assert match.mean_delta_e == pytest.approx(0.0, abs=1e-3)
    assert match.score == pytest.approx(0.9, abs=1e-4)


def test_exposure_normalization_recovers_gain(classic24) -> None:
    grid, samples, _ = _layout(classic24, Orientation(180), gain=0.5)
    plain = match_reference(samples, grid)
    normalized = match_reference(samples, grid, cfg=create_detection_config(exposure_normalize=True))

    assert normalized.exposure_gain == pytest.approx(2.0, rel=1e-3)
    assert normalized.mean_delta_e < 0.5
    assert plain.mean_delta_e > 5.0
    assert normalized.orientation == Orientation(180)


def test_delta_e_methods_change_scale(classic24) -> None:
    grid, samples, _ = _layout(classic24, Orientation(0), gain=0.8)
    de2000 = match_reference(samples, grid).mean_delta_e
    de1976 = match_reference(samples, grid, cfg=create_detection_config(delta_e_method="CIE 1976")).mean_delta_e
    assert de1976 > de2000 > 0.0


def test_score_formula() -> None:
    cfg = create_detection_config(delta_e_scale=10.0)
    assert orientation_score(0.0, 0.8, cfg) == pytest.approx(0.8)
    assert orientation_score(10.0, 0.8, cfg) == pytest.approx(0.4)


def test_rgb_to_lab_white_and_black() -> None:
    lab = rgb_to_lab(np.array([[1.0, 1.0, 1.0], [0.0, 0.0, 0.0]]))
    assert lab[0, 0] == pytest.approx(100.0, abs=0.1)
    assert lab[1, 0] == pytest.approx(0.0, abs=0.1)
    assert np.allclose(lab[:, 1:], 0.0, atol=0.1)


def test_sample_count_must_match(classic24) -> None:
    grid, samples, _ = _layout(classic24, Orientation(0))
    with pytest.raises(ValueError):
        match_reference(samples[:-1], grid)
