"""Core utilities for the Spark nearby-parking service."""

from __future__ import annotations

from typing import Any

from .config import SparkConfig, load_config
from .geo import estimate_minutes, haversine_distance


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP API application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "SparkConfig",
    "create_app",
    "estimate_minutes",
    "haversine_distance",
    "load_config",
]
