"""
Synthetic RSSI surveys with a known radio source.

A survey places one emitter and a number of readings uniformly at random in
a square (2D) or cube (3D) region, predicts the RSSI of every reading with
the log-distance attenuation model and corrupts a fraction of them with
large Gaussian errors (outliers). Inliers may carry an optional small
Gaussian noise.

Each reading also gets a quality score that decreases with the magnitude of
its error, plus a small jitter so that the ranking is informative but not
perfect. Progressive sampling (PROSAC, PROMedS) relies on these scores.
"""

from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from radiosource.rf.attenuation import predict_rssi
from radiosource.types import RadioSource, Reading

DEFAULT_FREQUENCY = 2.4e9  # Hz


@dataclass
class SurveyConfig:
    """Configuration of a synthetic survey.

    Attributes:
        dimensions: Dimensionality of positions (2 or 3).
        bounds: Positions are drawn uniformly in [-bounds, bounds] per axis (m).
        min_readings: Minimum number of readings.
        max_readings: Maximum number of readings.
        min_power_dbm: Lower bound of the transmitted power (dBm).
        max_power_dbm: Upper bound of the transmitted power (dBm).
        min_path_loss_exponent: Lower bound of the path-loss exponent.
        max_path_loss_exponent: Upper bound of the path-loss exponent.
        outlier_percentage: Percentage of readings corrupted as outliers.
        outlier_std: Standard deviation of outlier errors (dB).
        inlier_std: Standard deviation of inlier noise (dB), 0 for exact.
        quality_jitter: Standard deviation of the quality score jitter.
        frequency: Carrier frequency in Hz.
        identifier: Identifier of the simulated source.
    """

    dimensions: int = 3
    bounds: float = 50.0
    min_readings: int = 100
    max_readings: int = 500
    min_power_dbm: float = -100.0
    max_power_dbm: float = -50.0
    min_path_loss_exponent: float = 2.0
    max_path_loss_exponent: float = 2.0
    outlier_percentage: float = 20.0
    outlier_std: float = 10.0
    inlier_std: float = 0.0
    quality_jitter: float = 1e-3
    frequency: float = DEFAULT_FREQUENCY
    identifier: str = "00:11:22:33:44:55"

    def __post_init__(self):
        if self.dimensions not in (2, 3):
            raise ValueError(f"dimensions must be 2 or 3, got {self.dimensions}")
        if self.bounds <= 0:
            raise ValueError(f"bounds must be positive, got {self.bounds}")
        if not 1 <= self.min_readings <= self.max_readings:
            raise ValueError("Require 1 <= min_readings <= max_readings")
        if self.min_power_dbm > self.max_power_dbm:
            raise ValueError("min_power_dbm must not exceed max_power_dbm")
        if not 0 < self.min_path_loss_exponent <= self.max_path_loss_exponent:
            raise ValueError("Require 0 < min_path_loss_exponent <= max_path_loss_exponent")
        if not 0.0 <= self.outlier_percentage <= 100.0:
            raise ValueError(f"outlier_percentage must be in [0, 100], got {self.outlier_percentage}")
        if self.outlier_std < 0 or self.inlier_std < 0 or self.quality_jitter < 0:
            raise ValueError("Standard deviations must be non-negative")


@dataclass
class Survey:
    """Generated survey with its ground truth.

    Attributes:
        source: Identity of the simulated emitter.
        position: True source position, shape (D,).
        transmitted_power_dbm: True transmitted power (dBm).
        path_loss_exponent: True path-loss exponent.
        readings: Generated readings.
        outliers: Boolean mask of corrupted readings, shape (N,).
        errors: Error added to each reading (dB), shape (N,).
        quality_scores: Quality score per reading, shape (N,).
    """

    source: RadioSource
    position: np.ndarray
    transmitted_power_dbm: float
    path_loss_exponent: float
    readings: List[Reading]
    outliers: np.ndarray
    errors: np.ndarray
    quality_scores: np.ndarray

    @property
    def reading_positions(self) -> np.ndarray:
        return np.array([r.position for r in self.readings])


def generate_survey(
    config: Optional[SurveyConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> Survey:
    """
    Generate a synthetic RSSI survey.

    Args:
        config: Survey configuration. Defaults to SurveyConfig().
        rng: Random generator. A fresh unseeded one is used when omitted.

    Returns:
        Survey with readings, outlier mask and quality scores.

    Example:
        >>> survey = generate_survey(SurveyConfig(dimensions=2), np.random.default_rng(0))
        >>> 100 <= len(survey.readings) <= 500
        True
        >>> bool(np.all(survey.errors[~survey.outliers] == 0.0))
        True
    """
    if config is None:
        config = SurveyConfig()
    if rng is None:
        rng = np.random.default_rng()

    d = config.dimensions
    n_readings = int(rng.integers(config.min_readings, config.max_readings + 1))
    source = RadioSource.wifi(config.identifier, config.frequency)

    position = rng.uniform(-config.bounds, config.bounds, size=d)
    power_dbm = float(rng.uniform(config.min_power_dbm, config.max_power_dbm))
    path_loss = float(rng.uniform(config.min_path_loss_exponent, config.max_path_loss_exponent))

    reading_positions = rng.uniform(-config.bounds, config.bounds, size=(n_readings, d))
    rssi = predict_rssi(position, power_dbm, path_loss, reading_positions, config.frequency)

    outliers = rng.uniform(0.0, 100.0, size=n_readings) < config.outlier_percentage
    errors = np.zeros(n_readings)
    errors[outliers] = rng.normal(0.0, config.outlier_std, size=int(outliers.sum()))
    if config.inlier_std > 0:
        errors[~outliers] = rng.normal(0.0, config.inlier_std, size=int((~outliers).sum()))
    rssi = rssi + errors

    quality_scores = 1.0 / (1.0 + np.abs(errors))
    if config.quality_jitter > 0:
        quality_scores = quality_scores + rng.normal(0.0, config.quality_jitter, size=n_readings)

    rssi_std = config.inlier_std if config.inlier_std > 0 else None
    readings = [
        Reading(source, float(rssi[i]), reading_positions[i], rssi_std=rssi_std)
        for i in range(n_readings)
    ]

    return Survey(
        source=source,
        position=position,
        transmitted_power_dbm=power_dbm,
        path_loss_exponent=path_loss,
        readings=readings,
        outliers=outliers,
        errors=errors,
        quality_scores=quality_scores,
    )
