# -*- coding: utf-8 -*-
"""Exceptions raised by the chart detector."""

from __future__ import annotations

from typing import Optional


class ChartDetectionError(Exception):
    """Base class for detector errors."""


class UnsupportedFormat(ChartDetectionError):
    """Input raster has a channel count or bit depth the normalizer rejects."""


class DegenerateCell(ChartDetectionError):
    """A grid cell is too small or lies outside the image after shrinking."""

    def __init__(self, index: int, pixel_count: int = 0, message: Optional[str] = None):
        self.index = int(index)
        self.pixel_count = int(pixel_count)
        super().__init__(message or f"cell {self.index} has only {self.pixel_count} usable pixels")


class InvalidQuadrilateral(ValueError):
    """Quadrilateral corners are self-intersecting or enclose too little area."""


__all__ = ["ChartDetectionError", "UnsupportedFormat", "DegenerateCell", "InvalidQuadrilateral"]
