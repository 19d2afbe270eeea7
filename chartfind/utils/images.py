# -*- coding: utf-8 -*-
"""Image I/O helpers used by the command-line tools."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np
from PIL import Image

from ..core.normalize import Raster

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

SUPPORTED_SUFFIXES = {".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".webp", ".dng"}


def _pillow_rgb(fp: Path) -> np.ndarray:
    with Image.open(fp) as im:
        if im.mode not in ("RGB", "L", "I;16", "I;16B", "I;16L"):
            im = im.convert("RGB")
        arr = np.array(im)
    if arr.dtype not in (np.uint8, np.uint16):
        arr = np.clip(arr, 0, 65535).astype(np.uint16)
    return arr


def read_image_robust(path: PathLike) -> Optional[Raster]:
    """Read a colour image from disk with graceful fallbacks.

    Parameters
    ----------
    path:
        Input filepath. DNG files are preferentially decoded with Pillow to
        avoid OpenCV failures. For other formats we try OpenCV first
        (keeping 16-bit depth), then fall back to Pillow.

    Returns
    -------
    Optional[Raster]
        RGB (or gray) raster on success, otherwise ``None``.
    """

    fp = Path(path)
    suffix = fp.suffix.lower()

    # Prefer Pillow for DNGs because OpenCV frequently fails to decode them.
    if suffix == ".dng":
        try:
            return Raster.from_array(_pillow_rgb(fp))
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Pillow failed to read DNG %s: %s", fp, exc)

    # OpenCV fast-path for standard formats.
    try:
        img = cv2.imread(str(fp), cv2.IMREAD_ANYDEPTH | cv2.IMREAD_ANYCOLOR)
        if img is not None and img.dtype in (np.uint8, np.uint16):
            if img.ndim == 3 and img.shape[2] == 4:
                img = cv2.cvtColor(img, cv2.COLOR_BGRA2RGB)
            elif img.ndim == 3:
                img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
            return Raster.from_array(img)
    except Exception as exc:  # pylint: disable=broad-except
        logger.warning("OpenCV failed to read %s: %s", fp, exc)

    # Final fallback: attempt Pillow for any remaining case.
    try:
        return Raster.from_array(_pillow_rgb(fp))
    except Exception as exc:  # pylint: disable=broad-except
        logger.warning("Pillow fallback failed %s: %s", fp, exc)

    return None


def write_image_rgb(path: PathLike, rgb: np.ndarray) -> bool:
    """Write an RGB uint8 image through OpenCV."""
    bgr = cv2.cvtColor(np.ascontiguousarray(rgb), cv2.COLOR_RGB2BGR) if rgb.ndim == 3 else rgb
    return bool(cv2.imwrite(str(path), bgr))
