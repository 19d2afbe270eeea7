"""Packaged chart definitions."""
