"""
Consensus search shared by the robust estimator family.

One engine runs RANSAC, MSAC, LMedS, PROSAC and PROMedS. The method only
selects a sampling-order strategy (see ``sampling``) and a candidate-scoring
strategy (see ``scoring``):

    method     sampler              scorer
    ransac     UniformSampler       InlierCountScorer
    msac       UniformSampler       TruncatedQuadraticScorer
    lmeds      UniformSampler       MedianResidualScorer
    prosac     ProgressiveSampler   InlierCountScorer
    promeds    ProgressiveSampler   MedianResidualScorer

Every round draws a sample, solves it with the minimal-sample solver,
scores the candidate against all readings and keeps the best one. After each
improvement the number of rounds needed to draw one all-inlier sample with
the requested confidence is re-estimated,

    N = ceil(log(1 - confidence) / log(1 - ε^m))

where ε is the best inlier ratio and m the sample size, and the search stops
once the round index reaches min(N, max_iterations). With progressive
sampling the estimate is only updated once the best consensus set is larger
than a random set would be (PROSAC non-randomness test).
"""

import enum
import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np
from scipy import stats

from radiosource.errors import DegenerateSampleError
from radiosource.estimators.minimal_solver import MinimalSampleSolver
from radiosource.estimators.sampling import ProgressiveSampler, UniformSampler
from radiosource.estimators.scoring import (
    Evaluation,
    InlierCountScorer,
    MedianResidualScorer,
    TruncatedQuadraticScorer,
)
from radiosource.rf.attenuation import rssi_residuals
from radiosource.types import SourceHypothesis

logger = logging.getLogger(__name__)

ROBUST_METHODS = ("ransac", "msac", "lmeds", "prosac", "promeds")
PROGRESSIVE_METHODS = ("prosac", "promeds")

# PROSAC non-randomness test
DEFAULT_ETA0 = 0.05  # probability of accepting a random consensus set
DEFAULT_BETA = 0.01  # probability that a wrong model supports a random reading


class ConsensusState(enum.Enum):
    """Lifecycle of one consensus run."""

    IDLE = "idle"
    SAMPLING = "sampling"
    EVALUATING = "evaluating"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass(frozen=True, eq=False)
class ConsensusResult:
    """Outcome of a consensus run.

    Attributes:
        best: Best candidate, or None when the run failed.
        inliers: Inlier mask of the best candidate over all readings, kept
            only on request.
        residuals: Signed residuals (observed - predicted) of the best
            candidate, kept only on request.
        iterations: Number of rounds performed.
        n_inliers: Size of the best consensus set.
        inlier_ratio: n_inliers / number of readings.
        inlier_threshold: |residual| bound used to classify inliers.
        state: Terminal state (CONVERGED, EXHAUSTED or FAILED).
    """

    best: Optional[SourceHypothesis]
    inliers: Optional[np.ndarray]
    residuals: Optional[np.ndarray]
    iterations: int
    n_inliers: int
    inlier_ratio: float
    inlier_threshold: float
    state: ConsensusState

    @property
    def succeeded(self) -> bool:
        return self.best is not None


def make_strategies(
    method: str,
    threshold: float,
    stop_threshold: float = 1e-4,
    inlier_factor: float = 1.5,
):
    """
    Build the (sampler, scorer) pair of a robust method.

    Args:
        method: One of ROBUST_METHODS.
        threshold: Inlier threshold (dB) of threshold-based methods.
        stop_threshold: Stop threshold (dB) of median-based methods.
        inlier_factor: Robust standard deviation multiple of median-based
            methods.

    Returns:
        Tuple (sampler, scorer).

    Example:
        >>> sampler, scorer = make_strategies("prosac", threshold=0.1)
        >>> type(sampler).__name__, type(scorer).__name__
        ('ProgressiveSampler', 'InlierCountScorer')
    """
    method = method.lower()
    if method not in ROBUST_METHODS:
        raise ValueError(f"Unknown robust method {method!r}, expected one of {ROBUST_METHODS}")

    sampler = ProgressiveSampler() if method in PROGRESSIVE_METHODS else UniformSampler()
    if method in ("ransac", "prosac"):
        scorer = InlierCountScorer(threshold)
    elif method == "msac":
        scorer = TruncatedQuadraticScorer(threshold)
    else:
        scorer = MedianResidualScorer(stop_threshold, inlier_factor)
    return sampler, scorer


def required_iterations(inlier_ratio: float, sample_size: int, confidence: float) -> float:
    """
    Rounds needed to draw one all-inlier sample with the given confidence.

    Returns ``math.inf`` when no inlier was found or full confidence is
    requested, and 1 when every reading is an inlier.

    Example:
        >>> required_iterations(0.8, 5, 0.99)
        12
    """
    if inlier_ratio <= 0.0 or confidence >= 1.0:
        return math.inf
    if confidence <= 0.0:
        return 1
    p_good = inlier_ratio ** sample_size
    if p_good >= 1.0:
        return 1
    if 1.0 - p_good >= 1.0:
        return math.inf
    return int(math.ceil(math.log(1.0 - confidence) / math.log(1.0 - p_good)))


def minimum_non_random_inliers(
    n_readings: int,
    sample_size: int,
    eta0: float = DEFAULT_ETA0,
    beta: float = DEFAULT_BETA,
) -> int:
    """
    Smallest consensus set that is unlikely to support a wrong model.

    A wrong model is supported by each reading outside its sample with
    probability beta. The consensus set size I_min is the smallest value for
    which P(support >= I_min - m) <= eta0 under that binomial law.
    """
    if n_readings <= sample_size:
        return n_readings
    k = stats.binom.ppf(1.0 - eta0, n_readings - sample_size, beta)
    return int(min(n_readings, sample_size + k + 1))


class ConsensusSearch:
    """
    Robust consensus search over a set of readings.

    The instance holds configuration only; every call to ``run`` draws fresh
    samples and builds a new result.

    Args:
        solver: Minimal-sample solver for the active unknowns.
        sampler: Sampling-order strategy.
        scorer: Candidate-scoring strategy.
        frequency: Carrier frequency in Hz.
        sample_size: Readings drawn per round (>= solver minimum).
        confidence: Probability of drawing one all-inlier sample, in [0, 1].
        max_iterations: Round budget (>= 1).
        progress_delta: Minimum progress advance between notifications.
        keep_inliers: Keep the inlier mask in the result.
        keep_residuals: Keep the residuals in the result.
        on_next_iteration: Called with the 0-based round index every round.
        on_progress: Called with the progress fraction in [0, 1].
        rng: Random generator. A fresh unseeded generator is used per run
            when omitted.
        eta0, beta: Non-randomness test parameters (progressive sampling).
    """

    def __init__(
        self,
        solver: MinimalSampleSolver,
        sampler,
        scorer,
        frequency: float,
        sample_size: int,
        confidence: float = 0.99,
        max_iterations: int = 5000,
        progress_delta: float = 0.05,
        keep_inliers: bool = False,
        keep_residuals: bool = False,
        on_next_iteration: Optional[Callable[[int], None]] = None,
        on_progress: Optional[Callable[[float], None]] = None,
        rng: Optional[np.random.Generator] = None,
        eta0: float = DEFAULT_ETA0,
        beta: float = DEFAULT_BETA,
    ):
        if sample_size < solver.layout.min_readings:
            raise ValueError(
                f"sample_size must be at least {solver.layout.min_readings}, got {sample_size}"
            )
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {confidence}")
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        if not 0.0 <= progress_delta <= 1.0:
            raise ValueError(f"progress_delta must be in [0, 1], got {progress_delta}")

        self.solver = solver
        self.sampler = sampler
        self.scorer = scorer
        self.frequency = frequency
        self.sample_size = sample_size
        self.confidence = confidence
        self.max_iterations = max_iterations
        self.progress_delta = progress_delta
        self.keep_inliers = keep_inliers
        self.keep_residuals = keep_residuals
        self.on_next_iteration = on_next_iteration
        self.on_progress = on_progress
        self.rng = rng
        self.eta0 = eta0
        self.beta = beta
        self.state = ConsensusState.IDLE

    def evaluate(
        self, hypothesis: SourceHypothesis, positions: np.ndarray, rssi: np.ndarray
    ) -> Tuple[np.ndarray, Evaluation]:
        """Residuals and score of a candidate against every reading."""
        residuals = rssi_residuals(hypothesis, positions, rssi, self.frequency)
        # Readings on top of the candidate predict +inf
        residuals = np.where(np.isfinite(residuals), residuals, np.inf)
        return residuals, self.scorer.evaluate(residuals, self.sample_size)

    def run(
        self,
        positions: np.ndarray,
        rssi: np.ndarray,
        quality_scores: Optional[np.ndarray] = None,
    ) -> ConsensusResult:
        """
        Search the candidate with the best consensus.

        Args:
            positions: Reading positions, shape (N, D).
            rssi: Observed RSSI in dBm, shape (N,).
            quality_scores: Quality score per reading, shape (N,). Required
                by progressive sampling.

        Returns:
            ConsensusResult. ``best`` is None and the state FAILED when no
            candidate with a non-empty consensus set was found.
        """
        positions = np.asarray(positions, dtype=float)
        rssi = np.asarray(rssi, dtype=float)
        n_readings = len(rssi)
        rng = self.rng if self.rng is not None else np.random.default_rng()

        self.sampler.start(n_readings, self.sample_size, quality_scores, self.max_iterations)
        progressive = self.sampler.progressive
        min_inliers = (
            minimum_non_random_inliers(n_readings, self.sample_size, self.eta0, self.beta)
            if progressive else 1
        )

        best: Optional[SourceHypothesis] = None
        best_evaluation: Optional[Evaluation] = None
        best_residuals: Optional[np.ndarray] = None
        n_required = math.inf
        last_progress = 0.0
        converged = False
        iteration = 0

        while iteration < min(n_required, self.max_iterations):
            self.state = ConsensusState.SAMPLING
            if self.on_next_iteration is not None:
                self.on_next_iteration(iteration)

            indices = self.sampler.draw(rng)
            iteration += 1

            try:
                candidate = self.solver.solve(positions[indices], rssi[indices])
            except DegenerateSampleError as e:
                logger.debug("Round %d: sample discarded (%s)", iteration, e)
                candidate = None

            if candidate is not None:
                self.state = ConsensusState.EVALUATING
                residuals, evaluation = self.evaluate(candidate, positions, rssi)
                if evaluation.n_inliers > 0 and (
                    best_evaluation is None
                    or self.scorer.is_better(evaluation, best_evaluation)
                ):
                    best, best_evaluation, best_residuals = candidate, evaluation, residuals
                    if evaluation.n_inliers >= min_inliers:
                        n_required = min(
                            n_required,
                            required_iterations(
                                evaluation.n_inliers / n_readings,
                                self.sample_size,
                                self.confidence,
                            ),
                        )
                    if self.scorer.should_stop(evaluation):
                        converged = True
                        break

            if iteration >= n_required:
                converged = True
                break

            progress = min(1.0, iteration / min(n_required, self.max_iterations))
            if self.on_progress is not None and progress - last_progress >= self.progress_delta:
                last_progress = progress
                self.on_progress(progress)

        if best is None:
            self.state = ConsensusState.FAILED
            logger.info("Consensus failed after %d iterations", iteration)
            return ConsensusResult(
                best=None,
                inliers=None,
                residuals=None,
                iterations=iteration,
                n_inliers=0,
                inlier_ratio=0.0,
                inlier_threshold=float("nan"),
                state=self.state,
            )

        self.state = ConsensusState.CONVERGED if converged else ConsensusState.EXHAUSTED
        if self.on_progress is not None and converged:
            self.on_progress(1.0)

        logger.debug(
            "Consensus %s after %d iterations: %d/%d inliers",
            self.state.value, iteration, best_evaluation.n_inliers, n_readings,
        )
        return ConsensusResult(
            best=best,
            inliers=best_evaluation.inliers.copy() if self.keep_inliers else None,
            residuals=best_residuals.copy() if self.keep_residuals else None,
            iterations=iteration,
            n_inliers=best_evaluation.n_inliers,
            inlier_ratio=best_evaluation.n_inliers / n_readings,
            inlier_threshold=best_evaluation.inlier_threshold,
            state=self.state,
        )

    def inliers_of(
        self, hypothesis: SourceHypothesis, positions: np.ndarray, rssi: np.ndarray
    ) -> np.ndarray:
        """Re-derive the inlier mask of a candidate."""
        return self.evaluate(hypothesis, positions, rssi)[1].inliers
