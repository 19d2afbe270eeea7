# -*- coding: utf-8 -*-
"""Utility helpers shared across the command-line tools."""

from .images import SUPPORTED_SUFFIXES, read_image_robust, write_image_rgb

__all__ = [
    "SUPPORTED_SUFFIXES",
    "read_image_robust",
    "write_image_rgb",
]
