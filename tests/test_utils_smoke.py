from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np
from PIL import Image

from chartfind import NotFound, detect
from chartfind.utils.images import read_image_robust, write_image_rgb
from chartfind.viz.overlay import Visualizer, draw_detection, to_rgb8


def test_read_image_robust_roundtrip(tmp_path: Path) -> None:
    img = np.random.randint(0, 255, size=(32, 24), dtype=np.uint8)
    target = tmp_path / "sample.png"
    assert cv2.imwrite(str(target), img)

    loaded = read_image_robust(target)
    assert loaded is not None
    assert loaded.pixels.shape == img.shape
    assert loaded.pixels.dtype == np.uint8
    assert loaded.bit_depth == 8
    assert np.mean(np.abs(loaded.pixels.astype(np.int16) - img.astype(np.int16))) < 1


def test_read_image_robust_colour_order_and_16_bit(tmp_path: Path) -> None:
    rgb = np.zeros((8, 8, 3), np.uint8)
    rgb[..., 0] = 250
    target = tmp_path / "red.png"
    assert write_image_rgb(target, rgb)
    loaded = read_image_robust(target)
    assert loaded.channels == 3
    assert np.all(loaded.pixels[..., 0] == 250)
    assert np.all(loaded.pixels[..., 2] == 0)

    deep = np.full((8, 8), 40000, np.uint16)
    target16 = tmp_path / "deep.png"
    assert cv2.imwrite(str(target16), deep)
    loaded16 = read_image_robust(target16)
    assert loaded16.pixels.dtype == np.uint16
    assert loaded16.bit_depth == 16


def test_read_image_robust_pillow_fallback(tmp_path: Path) -> None:
    target = tmp_path / "pillow.gif"
    Image.fromarray(np.full((6, 6, 3), 90, np.uint8)).save(target)
    loaded = read_image_robust(target)
    assert loaded is not None
    assert loaded.pixels.shape[:2] == (6, 6)


def test_read_image_robust_garbage(tmp_path: Path) -> None:
    target = tmp_path / "broken.png"
    target.write_bytes(b"not an image")
    assert read_image_robust(target) is None


def test_visualizer_writes_steps(tmp_path: Path, chart_scene, topology) -> None:
    debug = {}
    result = detect(chart_scene.image, [topology], debug=debug)
    written = Visualizer(str(tmp_path)).save_all(chart_scene.image, "scene", result, debug)

    assert set(written) == {"edges", "quads", "grids", "result"}
    for path in written.values():
        assert Path(path).is_file()

    banner = draw_detection(chart_scene.image, NotFound(reason="no quadrilateral candidates"))
    assert banner.shape == chart_scene.image.shape
    assert to_rgb8(np.zeros((4, 4), np.uint16)).shape == (4, 4, 3)
