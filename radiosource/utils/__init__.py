"""
Utility functions for radio source estimation.

This module provides geometry helpers shared by the minimal-sample solver
and the refinement stage.
"""

from .geometry import (
    centroid,
    check_reading_geometry,
    distances,
    nearest_reading_distance,
    points_equal,
)

__all__ = [
    'centroid',
    'check_reading_geometry',
    'distances',
    'nearest_reading_distance',
    'points_equal',
]
