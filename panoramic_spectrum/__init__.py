"""Panoramic spectrum sweep controller."""

__version__ = "0.1.0"
