"""Candidate-scoring strategies for the consensus search.

A scorer turns the signed residuals of one candidate against every reading
into an Evaluation (inlier mask plus a comparable cost) and decides whether a
candidate beats the current best:

- InlierCountScorer (RANSAC, PROSAC): most inliers within a fixed threshold,
  ties broken by the smaller sum of squared inlier residuals.
- TruncatedQuadraticScorer (MSAC): smallest sum of squared residuals with
  every residual truncated at the threshold.
- MedianResidualScorer (LMedS, PROMedS): smallest median of squared
  residuals. Inliers are classified with a robust standard deviation
  estimated from that median (Rousseeuw & Leroy),

      σ = 1.4826 * (1 + 5 / (N - m)) * sqrt(median(r²))

  and accepted when |r| <= max(inlier_factor * σ, stop_threshold).
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, eq=False)
class Evaluation:
    """Score of one candidate.

    Attributes:
        inliers: Boolean inlier mask, shape (N,).
        n_inliers: Number of inliers.
        cost: Strategy-specific cost, lower is better.
        inlier_threshold: |residual| bound used for the inlier mask.
    """

    inliers: np.ndarray
    n_inliers: int
    cost: float
    inlier_threshold: float


class InlierCountScorer:
    """Maximise the number of readings within a residual threshold."""

    uses_threshold = True

    def __init__(self, threshold: float):
        if not threshold > 0:
            raise ValueError(f"threshold must be positive, got {threshold}")
        self.threshold = threshold

    def evaluate(self, residuals: np.ndarray, sample_size: int) -> Evaluation:
        abs_residuals = np.abs(residuals)
        inliers = abs_residuals <= self.threshold
        cost = float(np.sum(residuals[inliers] ** 2))
        return Evaluation(inliers, int(np.count_nonzero(inliers)), cost, self.threshold)

    def is_better(self, candidate: Evaluation, best: Evaluation) -> bool:
        if candidate.n_inliers != best.n_inliers:
            return candidate.n_inliers > best.n_inliers
        return candidate.cost < best.cost

    def should_stop(self, best: Evaluation) -> bool:
        return False


class TruncatedQuadraticScorer(InlierCountScorer):
    """Minimise the sum of squared residuals truncated at the threshold."""

    def evaluate(self, residuals: np.ndarray, sample_size: int) -> Evaluation:
        sqr_residuals = residuals ** 2
        sqr_threshold = self.threshold ** 2
        inliers = sqr_residuals <= sqr_threshold
        cost = float(np.sum(np.minimum(sqr_residuals, sqr_threshold)))
        return Evaluation(inliers, int(np.count_nonzero(inliers)), cost, self.threshold)

    def is_better(self, candidate: Evaluation, best: Evaluation) -> bool:
        return candidate.cost < best.cost


class MedianResidualScorer:
    """
    Minimise the median of squared residuals.

    Args:
        stop_threshold: The search stops once the robust inlier threshold of
            the best candidate falls below this value (dB). It is also the
            lower bound of the inlier threshold, so that exact readings are
            still classified as inliers.
        inlier_factor: Multiple of the robust standard deviation used to
            classify inliers.

    Example:
        >>> scorer = MedianResidualScorer(stop_threshold=1e-4)
        >>> evaluation = scorer.evaluate(np.array([0.0, 0.0, 0.0, 25.0]), 2)
        >>> evaluation.n_inliers
        3
    """

    uses_threshold = False

    def __init__(self, stop_threshold: float = 1e-4, inlier_factor: float = 1.5):
        if not stop_threshold > 0:
            raise ValueError(f"stop_threshold must be positive, got {stop_threshold}")
        if not inlier_factor > 0:
            raise ValueError(f"inlier_factor must be positive, got {inlier_factor}")
        self.stop_threshold = stop_threshold
        self.inlier_factor = inlier_factor

    def robust_std(self, median_sqr_residual: float, n_readings: int, sample_size: int) -> float:
        dof = n_readings - sample_size
        correction = 1.0 + 5.0 / dof if dof > 0 else 1.0
        return 1.4826 * correction * float(np.sqrt(median_sqr_residual))

    def evaluate(self, residuals: np.ndarray, sample_size: int) -> Evaluation:
        sqr_residuals = residuals ** 2
        median = float(np.median(sqr_residuals))
        sigma = self.robust_std(median, len(residuals), sample_size)
        threshold = max(self.inlier_factor * sigma, self.stop_threshold)
        inliers = np.abs(residuals) <= threshold
        return Evaluation(inliers, int(np.count_nonzero(inliers)), median, threshold)

    def is_better(self, candidate: Evaluation, best: Evaluation) -> bool:
        return candidate.cost < best.cost

    def should_stop(self, best: Evaluation) -> bool:
        return best.inlier_threshold <= self.stop_threshold
