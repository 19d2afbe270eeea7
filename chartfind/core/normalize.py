# -*- coding: utf-8 -*-
"""Raster container and colour normalisation ahead of edge analysis."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

import colour
import cv2
import numpy as np

from .config import DEFAULT_CONFIG, DetectionConfig
from .errors import UnsupportedFormat

SUPPORTED_CHANNELS = (1, 2, 3, 4)
CHANNEL_ORDERS = ("rgb", "bgr")


@dataclass(frozen=True, eq=False)
class Raster:
    """Read-only view of a caller-owned pixel buffer.

    ``bit_depth`` defaults to the container depth (8 for uint8, 16 for
    uint16); 10/12/14-bit data stored in uint16 should declare its depth.
    """

    pixels: np.ndarray
    bit_depth: Optional[int] = None
    channel_order: str = "rgb"

    def __post_init__(self) -> None:
        arr = np.asarray(self.pixels)
        view = arr.view()
        view.flags.writeable = False
        object.__setattr__(self, "pixels", view)
        if self.bit_depth is None:
            object.__setattr__(self, "bit_depth", int(arr.dtype.itemsize * 8))
        if self.channel_order not in CHANNEL_ORDERS:
            raise ValueError(f"channel_order must be one of {CHANNEL_ORDERS}")

    @classmethod
    def from_array(cls, pixels: np.ndarray, bit_depth: Optional[int] = None,
                   channel_order: str = "rgb") -> "Raster":
        return cls(pixels=pixels, bit_depth=bit_depth, channel_order=channel_order)

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def channels(self) -> int:
        return 1 if self.pixels.ndim == 2 else int(self.pixels.shape[2])


@dataclass(frozen=True, eq=False)
class NormalizedImage:
    rgb: np.ndarray        # float32, HxWx3, [0, 1]
    gray: np.ndarray       # uint8, HxW
    linear: bool
    source_bit_depth: int

    @property
    def shape(self):
        return self.gray.shape


def as_raster(image: Union[Raster, np.ndarray]) -> Raster:
    return image if isinstance(image, Raster) else Raster.from_array(image)


def _check_format(raster: Raster) -> None:
    px = raster.pixels
    if px.ndim not in (2, 3) or px.shape[0] < 1 or px.shape[1] < 1:
        raise UnsupportedFormat(f"expected a 2D raster with 1-4 channels, got shape {px.shape}")
    if raster.channels not in SUPPORTED_CHANNELS:
        raise UnsupportedFormat(f"unsupported channel count {raster.channels}")
    depth = int(raster.bit_depth)
    if px.dtype == np.uint8:
        ok = depth == 8
    elif px.dtype == np.uint16:
        ok = 9 <= depth <= 16
    else:
        ok = False
    if not ok:
        raise UnsupportedFormat(f"unsupported pixel format {px.dtype} at {depth} bits")
    if depth < 16 and px.dtype == np.uint16 and int(px.max()) > (1 << depth) - 1:
        raise UnsupportedFormat(f"pixel values exceed the declared {depth}-bit range")


def normalize_raster(image: Union[Raster, np.ndarray],
                     cfg: DetectionConfig = DEFAULT_CONFIG) -> NormalizedImage:
    """Convert any supported raster to float RGB in [0, 1] plus a uint8 gray derivative."""
    raster = as_raster(image)
    _check_format(raster)

    px = raster.pixels
    if px.ndim == 2:
        px = px[:, :, None]
    ch = px.shape[2]
    if ch in (1, 2):
        base = np.repeat(px[:, :, :1], 3, axis=2)
    else:
        base = px[:, :, :3]
        if raster.channel_order == "bgr":
            base = base[:, :, ::-1]

    scale = float((1 << int(raster.bit_depth)) - 1)
    rgb = np.ascontiguousarray(base, dtype=np.float32) / np.float32(scale)
    np.clip(rgb, 0.0, 1.0, out=rgb)

    gray_f = cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)
    gray = np.clip(np.rint(gray_f * 255.0), 0, 255).astype(np.uint8)

    linear = bool(cfg.linearize)
    if linear:
        rgb = np.asarray(colour.cctf_decoding(rgb, function="sRGB"), dtype=np.float32)

    rgb.flags.writeable = False
    return NormalizedImage(rgb=rgb, gray=gray, linear=linear, source_bit_depth=int(raster.bit_depth))


__all__ = ["Raster", "NormalizedImage", "as_raster", "normalize_raster", "SUPPORTED_CHANNELS"]
