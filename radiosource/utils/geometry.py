"""
Geometric utilities for radio source estimation.

Provides functions for:
- Distances between a source hypothesis and reading positions
- Point equality within a tolerance
- Reading layout checks (coincident, colinear and coplanar readings make
  the source position unobservable)
"""

import warnings
from typing import Optional, Tuple

import numpy as np

# Tolerances for degenerate reading layouts
EPSILON_COINCIDENT = 1e-9  # Readings closer than this are considered the same point (m)
EPSILON_COLINEAR = 1e-6  # Relative singular value threshold for colinearity detection


def distances(position: np.ndarray, points: np.ndarray) -> np.ndarray:
    """
    Euclidean distances from a position to a set of points.

    Args:
        position: Reference position, shape (d,).
        points: Points, shape (N, d) or (d,).

    Returns:
        Distances, shape (N,).

    Example:
        >>> distances(np.zeros(2), np.array([[3.0, 4.0], [0.0, 1.0]]))
        array([5., 1.])
    """
    diff = np.atleast_2d(points) - np.asarray(position, dtype=float)
    return np.linalg.norm(diff, axis=1)


def points_equal(a: np.ndarray, b: np.ndarray, tolerance: float = 0.0) -> bool:
    """
    Check whether two points coincide within a Euclidean tolerance.

    Points of different dimensionality are never equal.

    Example:
        >>> points_equal(np.array([1.0, 2.0]), np.array([1.0, 2.0 + 1e-9]), 1e-6)
        True
    """
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.shape != b.shape:
        return False
    return bool(np.linalg.norm(a - b) <= tolerance)


def centroid(points: np.ndarray) -> np.ndarray:
    """Arithmetic mean of a set of points, shape (d,)."""
    points = np.atleast_2d(np.asarray(points, dtype=float))
    return points.mean(axis=0)


def check_reading_geometry(
    positions: np.ndarray,
    warn_degenerate: bool = False,
) -> Tuple[bool, str]:
    """
    Check whether reading positions can determine a source position.

    The layout is rejected when:
    1. All reading positions coincide
    2. Readings lie on a line (2D) or in a plane (3D)

    A degenerate layout leaves the source position ambiguous (mirror
    solutions across the line or plane of the readings).

    Args:
        positions: Reading positions, shape (N, d) where d=2 or 3.
        warn_degenerate: If True, issue a RuntimeWarning for degenerate layouts.

    Returns:
        ``(ok, reason)``. ``reason`` is empty when ``ok`` is True and
        otherwise names the degeneracy.

    Example:
        >>> # Colinear readings in 2D
        >>> is_valid, msg = check_reading_geometry(np.array([[0, 0], [5, 0], [10, 0]]))
        >>> is_valid
        False
    """
    positions = np.asarray(positions, dtype=float)

    if positions.ndim != 2:
        return False, f"Positions must be 2D array (N, d), got shape {positions.shape}"

    n_positions, dim = positions.shape
    if dim not in (2, 3):
        return False, f"Only 2D or 3D layouts supported, got dim={dim}"

    centered = positions - positions.mean(axis=0)
    spread = np.max(np.linalg.norm(centered, axis=1)) if n_positions else 0.0
    if spread < EPSILON_COINCIDENT:
        msg = "Reading positions coincide. Source position is unobservable."
        if warn_degenerate:
            warnings.warn(msg, RuntimeWarning)
        return False, msg

    singular_values = np.linalg.svd(centered, compute_uv=False)
    rank = int(np.sum(singular_values > EPSILON_COLINEAR * singular_values[0]))

    if rank < dim:
        if dim == 2:
            msg = f"Readings are colinear (rank {rank} < 2). Source position is ambiguous."
        else:
            msg = f"Readings are coplanar (rank {rank} < 3). Source position is ambiguous."
        if warn_degenerate:
            warnings.warn(msg, RuntimeWarning)
        return False, msg

    return True, ""


def nearest_reading_distance(position: np.ndarray, positions: np.ndarray) -> Optional[float]:
    """Distance from a position to the closest reading, or None without readings."""
    positions = np.atleast_2d(np.asarray(positions, dtype=float))
    if positions.size == 0:
        return None
    return float(np.min(distances(position, positions)))
