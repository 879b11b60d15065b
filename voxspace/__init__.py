"""Offline-first sync core for the VoxSpace social client."""

__version__ = "0.1.0"
