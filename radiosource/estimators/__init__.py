"""
Robust estimation of radio sources from RSSI readings.

Available components:
    - Nonlinear Least Squares (Levenberg-Marquardt)
    - Minimal-sample solver for the attenuation model
    - Sampling strategies (uniform, progressive)
    - Scoring strategies (inlier count, truncated quadratic, median residual)
    - Consensus search (RANSAC, MSAC, LMedS, PROSAC, PROMedS)
    - Refinement with covariance
    - RobustRssiRadioSourceEstimator façade
"""

from radiosource.estimators.nonlinear_least_squares import (
    levenberg_marquardt,
    NonlinearLSResult,
)
from radiosource.estimators.minimal_solver import MinimalSampleSolver
from radiosource.estimators.sampling import ProgressiveSampler, UniformSampler
from radiosource.estimators.scoring import (
    Evaluation,
    InlierCountScorer,
    MedianResidualScorer,
    TruncatedQuadraticScorer,
)
from radiosource.estimators.consensus import (
    DEFAULT_BETA,
    DEFAULT_ETA0,
    ROBUST_METHODS,
    ConsensusResult,
    ConsensusSearch,
    ConsensusState,
    make_strategies,
    minimum_non_random_inliers,
    required_iterations,
)
from radiosource.estimators.refinement import (
    DEFAULT_POWER_STANDARD_DEVIATION,
    RefinementResult,
    refine_hypothesis,
)
from radiosource.estimators.robust_rssi import (
    DEFAULT_COMPUTE_AND_KEEP_INLIERS,
    DEFAULT_COMPUTE_AND_KEEP_RESIDUALS,
    DEFAULT_CONFIDENCE,
    DEFAULT_INLIER_FACTOR,
    DEFAULT_KEEP_COVARIANCE,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_PATH_LOSS_ESTIMATION_ENABLED,
    DEFAULT_PATH_LOSS_EXPONENT,
    DEFAULT_POSITION_ESTIMATION_ENABLED,
    DEFAULT_PROGRESS_DELTA,
    DEFAULT_REFINE_RESULT,
    DEFAULT_ROBUST_METHOD,
    DEFAULT_STOP_THRESHOLD,
    DEFAULT_THRESHOLD,
    DEFAULT_TRANSMITTED_POWER_ESTIMATION_ENABLED,
    RadioSourceEstimatorListener,
    RobustRssiRadioSourceEstimator,
)

__all__ = [
    # Nonlinear LS
    "levenberg_marquardt",
    "NonlinearLSResult",
    # Minimal sample
    "MinimalSampleSolver",
    # Strategies
    "UniformSampler",
    "ProgressiveSampler",
    "Evaluation",
    "InlierCountScorer",
    "TruncatedQuadraticScorer",
    "MedianResidualScorer",
    # Consensus
    "ROBUST_METHODS",
    "ConsensusResult",
    "ConsensusSearch",
    "ConsensusState",
    "make_strategies",
    "minimum_non_random_inliers",
    "required_iterations",
    # Refinement
    "RefinementResult",
    "refine_hypothesis",
    # Façade
    "RadioSourceEstimatorListener",
    "RobustRssiRadioSourceEstimator",
    # Defaults
    "DEFAULT_BETA",
    "DEFAULT_COMPUTE_AND_KEEP_INLIERS",
    "DEFAULT_COMPUTE_AND_KEEP_RESIDUALS",
    "DEFAULT_CONFIDENCE",
    "DEFAULT_ETA0",
    "DEFAULT_INLIER_FACTOR",
    "DEFAULT_KEEP_COVARIANCE",
    "DEFAULT_MAX_ITERATIONS",
    "DEFAULT_PATH_LOSS_ESTIMATION_ENABLED",
    "DEFAULT_PATH_LOSS_EXPONENT",
    "DEFAULT_POSITION_ESTIMATION_ENABLED",
    "DEFAULT_POWER_STANDARD_DEVIATION",
    "DEFAULT_PROGRESS_DELTA",
    "DEFAULT_REFINE_RESULT",
    "DEFAULT_ROBUST_METHOD",
    "DEFAULT_STOP_THRESHOLD",
    "DEFAULT_THRESHOLD",
    "DEFAULT_TRANSMITTED_POWER_ESTIMATION_ENABLED",
]
