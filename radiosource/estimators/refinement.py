"""
Refinement of a consensus candidate over its inlier set.

The best candidate of the consensus search is polished with a weighted
Levenberg-Marquardt solve over the inlier readings. Only the active unknowns
move; disabled quantities stay at their configured constants.

Weights are inverse measurement variances, w_i = 1 / σ_i², where σ_i is the
reading standard deviation when available and
DEFAULT_POWER_STANDARD_DEVIATION otherwise. The covariance of the active
unknowns is the inverse of the approximate Hessian, P = (J'WJ)⁻¹, so that a
non-zero standard deviation is reported even when the inliers fit exactly.
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np

from radiosource.errors import EstimationFailure
from radiosource.estimators.nonlinear_least_squares import levenberg_marquardt
from radiosource.rf.attenuation import (
    EPSILON_SQR_DISTANCE,
    predict_rssi,
    rssi_jacobian,
)
from radiosource.types import ParameterLayout, SourceHypothesis
from radiosource.utils.geometry import nearest_reading_distance

logger = logging.getLogger(__name__)

DEFAULT_POWER_STANDARD_DEVIATION = 1.0  # dB


@dataclass(frozen=True, eq=False)
class RefinementResult:
    """Refined candidate and its uncertainty.

    Attributes:
        hypothesis: Refined full parameter set.
        covariance: Covariance of the active unknowns (u × u), or None when
            not requested.
        position_covariance: D × D block, None when position is disabled.
        transmitted_power_variance: Power variance (dB²), None when disabled.
        path_loss_exponent_variance: Path-loss variance, None when disabled.
        iterations: LM iterations performed.
        cost: Final weighted cost ½ r'Wr.
    """

    hypothesis: SourceHypothesis
    covariance: Optional[np.ndarray]
    position_covariance: Optional[np.ndarray]
    transmitted_power_variance: Optional[float]
    path_loss_exponent_variance: Optional[float]
    iterations: int
    cost: float


def reading_weights(rssi_std: Optional[np.ndarray], n_readings: int) -> np.ndarray:
    """
    Inverse-variance weights of the readings.

    Args:
        rssi_std: Per-reading standard deviation in dB, NaN where unknown.
            None means unknown for all readings.
        n_readings: Number of readings.

    Returns:
        Weights 1/σ², shape (n_readings,).
    """
    if rssi_std is None:
        sigma = np.full(n_readings, DEFAULT_POWER_STANDARD_DEVIATION)
    else:
        sigma = np.asarray(rssi_std, dtype=float)
        sigma = np.where(np.isfinite(sigma) & (sigma > 0), sigma, DEFAULT_POWER_STANDARD_DEVIATION)
    return 1.0 / sigma ** 2


def refine_hypothesis(
    hypothesis: SourceHypothesis,
    layout: ParameterLayout,
    positions: np.ndarray,
    rssi: np.ndarray,
    frequency: float,
    rssi_std: Optional[np.ndarray] = None,
    keep_covariance: bool = True,
    max_iter: int = 100,
) -> RefinementResult:
    """
    Refine a candidate by weighted nonlinear least squares.

    Args:
        hypothesis: Starting point (consensus winner). Disabled quantities
            are taken from it unchanged.
        layout: Active unknowns.
        positions: Inlier reading positions, shape (N, D).
        rssi: Inlier RSSI values in dBm, shape (N,).
        frequency: Carrier frequency in Hz.
        rssi_std: Optional per-reading standard deviation (NaN = unknown).
        keep_covariance: Compute the covariance of the active unknowns.
        max_iter: LM iteration budget.

    Returns:
        RefinementResult.

    Raises:
        EstimationFailure: If there are fewer readings than unknowns, the
            solve does not converge, produces non-finite values or the
            normal equations are singular at the solution.
    """
    positions = np.atleast_2d(np.asarray(positions, dtype=float))
    rssi = np.asarray(rssi, dtype=float)
    n_readings = len(rssi)
    u = layout.n_unknowns

    if n_readings < u:
        raise EstimationFailure(
            f"Refinement needs at least {u} inlier readings, got {n_readings}"
        )

    weights = reading_weights(rssi_std, n_readings)

    def h(x):
        candidate = layout.unpack(x, hypothesis)
        return predict_rssi(
            candidate.position,
            candidate.transmitted_power_dbm,
            candidate.path_loss_exponent,
            positions,
            frequency,
        )

    def jacobian(x):
        return rssi_jacobian(layout.unpack(x, hypothesis), layout, positions, frequency)

    result = levenberg_marquardt(
        h, jacobian, rssi, layout.pack(hypothesis),
        weights=weights,
        max_iter=max_iter,
        return_covariance=keep_covariance,
        scale_covariance=False,
    )

    if not result.converged:
        raise EstimationFailure(
            f"Refinement did not converge after {result.iterations} iterations"
        )

    refined = layout.unpack(result.x, hypothesis)
    if not refined.is_finite():
        raise EstimationFailure("Refinement produced non-finite parameters")

    if layout.estimate_position:
        nearest = nearest_reading_distance(refined.position, positions)
        if nearest is not None and nearest ** 2 < EPSILON_SQR_DISTANCE:
            warnings.warn(
                "A reading is located at the refined source position; its Jacobian "
                "row is singular",
                RuntimeWarning,
            )

    covariance = None
    position_covariance = None
    power_variance = None
    path_loss_variance = None
    if keep_covariance:
        if result.covariance is None:
            raise EstimationFailure("Normal equations are singular at the refined solution")
        covariance = result.covariance
        if layout.estimate_position:
            position_covariance = covariance[layout.position_slice, layout.position_slice].copy()
        if layout.estimate_power:
            power_variance = float(covariance[layout.power_index, layout.power_index])
        if layout.estimate_path_loss:
            path_loss_variance = float(covariance[layout.path_loss_index, layout.path_loss_index])

    logger.debug(
        "Refinement converged in %d iterations (cost %.3e)", result.iterations, result.cost
    )
    return RefinementResult(
        hypothesis=refined,
        covariance=covariance,
        position_covariance=position_covariance,
        transmitted_power_variance=power_variance,
        path_loss_exponent_variance=path_loss_variance,
        iterations=result.iterations,
        cost=result.cost,
    )
