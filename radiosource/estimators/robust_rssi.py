"""
Robust RSSI radio source estimator.

Estimates the position, equivalent transmitted power and path-loss exponent
of a radio source (WiFi access point, BLE beacon) from RSSI readings taken
at known positions, some of which may be outliers.

Pipeline of one ``estimate()`` call:

1. Consensus search (RANSAC family, PROSAC by default) over the readings.
2. Optional weighted Levenberg-Marquardt refinement over the inliers of the
   best candidate, with covariance of the active unknowns.
3. Assembly of an EstimatedRadioSource.

The estimator is locked while a run is in progress: every configuration
setter raises LockedStateError, including setters invoked from listener
callbacks.

Example:
    >>> from radiosource.sim import SurveyConfig, generate_survey
    >>> survey = generate_survey(SurveyConfig(dimensions=2), np.random.default_rng(1))
    >>> estimator = RobustRssiRadioSourceEstimator(
    ...     survey.readings, survey.quality_scores, refine_result=False)
    >>> estimated = estimator.estimate()
    >>> estimated.position.shape
    (2,)
"""

import logging
import numbers
from typing import Optional, Sequence

import numpy as np

from radiosource.errors import (
    ConfigurationError,
    EstimationFailure,
    LockedStateError,
    NotReadyError,
)
from radiosource.estimators.consensus import (
    PROGRESSIVE_METHODS,
    ROBUST_METHODS,
    ConsensusResult,
    ConsensusSearch,
    make_strategies,
)
from radiosource.estimators.minimal_solver import MinimalSampleSolver
from radiosource.estimators.refinement import refine_hypothesis
from radiosource.rf.attenuation import dbm_to_power, power_to_dbm
from radiosource.types import (
    SUPPORTED_DIMENSIONS,
    EstimatedRadioSource,
    ParameterLayout,
    Reading,
)

logger = logging.getLogger(__name__)

# Defaults
DEFAULT_THRESHOLD = 0.1  # dB
DEFAULT_CONFIDENCE = 0.99
DEFAULT_MAX_ITERATIONS = 5000
DEFAULT_PROGRESS_DELTA = 0.05
DEFAULT_PATH_LOSS_EXPONENT = 2.0
DEFAULT_POSITION_ESTIMATION_ENABLED = True
DEFAULT_TRANSMITTED_POWER_ESTIMATION_ENABLED = True
DEFAULT_PATH_LOSS_ESTIMATION_ENABLED = False
DEFAULT_REFINE_RESULT = True
DEFAULT_KEEP_COVARIANCE = True
DEFAULT_COMPUTE_AND_KEEP_INLIERS = False
DEFAULT_COMPUTE_AND_KEEP_RESIDUALS = False
DEFAULT_ROBUST_METHOD = "prosac"
DEFAULT_INLIER_FACTOR = 1.5
DEFAULT_STOP_THRESHOLD = 1e-4  # dB
DEFAULT_DIMENSIONS = 3


class RadioSourceEstimatorListener:
    """
    Receives progress events of a RobustRssiRadioSourceEstimator.

    Subclass and override the hooks of interest. Hooks run synchronously on
    the thread calling ``estimate()`` while the estimator is locked.
    """

    def on_estimate_start(self, estimator: "RobustRssiRadioSourceEstimator") -> None:
        pass

    def on_estimate_end(self, estimator: "RobustRssiRadioSourceEstimator") -> None:
        pass

    def on_estimate_next_iteration(
        self, estimator: "RobustRssiRadioSourceEstimator", iteration: int
    ) -> None:
        pass

    def on_estimate_progress_change(
        self, estimator: "RobustRssiRadioSourceEstimator", progress: float
    ) -> None:
        pass


def _checked_number(value, name: str) -> float:
    if isinstance(value, (bool, np.bool_)) or not isinstance(value, numbers.Real):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    return float(value)


def _checked_flag(value) -> bool:
    if not isinstance(value, (bool, np.bool_)):
        raise ConfigurationError(f"Expected a boolean, got {value!r}")
    return bool(value)


class RobustRssiRadioSourceEstimator:
    """
    Robustly estimate a radio source from RSSI readings.

    Configuration is exposed as properties; keyword arguments of the
    constructor go through the same validating setters.

    Args:
        readings: RSSI readings of one source, all of the same dimensionality.
        quality_scores: Quality score per reading (higher is better).
            Mandatory for progressive methods (PROSAC, PROMedS).
        listener: Optional RadioSourceEstimatorListener.
        method: Robust method, one of "ransac", "msac", "lmeds", "prosac",
            "promeds".
        dimensions: Dimensionality D (2 or 3). Inferred from the readings
            when omitted, 3 otherwise.
        **config: Any other configuration property (threshold, confidence,
            max_iterations, progress_delta, preliminary_subset_size,
            position_estimation_enabled, transmitted_power_estimation_enabled,
            path_loss_estimation_enabled, keep_inliers, keep_residuals,
            refine_result, keep_covariance, initial_position,
            initial_transmitted_power_dbm, initial_transmitted_power,
            initial_path_loss_exponent, stop_threshold, inlier_factor).

    Raises:
        ConfigurationError: If a value violates its constraint.
    """

    _CONFIG_KEYS = (
        "position_estimation_enabled",
        "transmitted_power_estimation_enabled",
        "path_loss_estimation_enabled",
        "threshold",
        "confidence",
        "max_iterations",
        "progress_delta",
        "preliminary_subset_size",
        "keep_inliers",
        "keep_residuals",
        "refine_result",
        "keep_covariance",
        "initial_position",
        "initial_transmitted_power_dbm",
        "initial_transmitted_power",
        "initial_path_loss_exponent",
        "stop_threshold",
        "inlier_factor",
    )

    def __init__(
        self,
        readings: Optional[Sequence[Reading]] = None,
        quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[RadioSourceEstimatorListener] = None,
        *,
        method: str = DEFAULT_ROBUST_METHOD,
        dimensions: Optional[int] = None,
        **config,
    ):
        unknown = set(config) - set(self._CONFIG_KEYS)
        if unknown:
            raise TypeError(f"Unexpected configuration keys: {sorted(unknown)}")

        if dimensions is None:
            dimensions = readings[0].dimensions if readings else DEFAULT_DIMENSIONS
        if dimensions not in SUPPORTED_DIMENSIONS:
            raise ConfigurationError(f"dimensions must be 2 or 3, got {dimensions}")
        self._dimensions = dimensions

        self._locked = False
        self._readings = None
        self._positions = None
        self._rssi = None
        self._rssi_std = None
        self._quality_scores = None
        self._listener = None
        self._method = DEFAULT_ROBUST_METHOD
        self._threshold = DEFAULT_THRESHOLD
        self._confidence = DEFAULT_CONFIDENCE
        self._max_iterations = DEFAULT_MAX_ITERATIONS
        self._progress_delta = DEFAULT_PROGRESS_DELTA
        self._estimate_position = DEFAULT_POSITION_ESTIMATION_ENABLED
        self._estimate_power = DEFAULT_TRANSMITTED_POWER_ESTIMATION_ENABLED
        self._estimate_path_loss = DEFAULT_PATH_LOSS_ESTIMATION_ENABLED
        self._keep_inliers = DEFAULT_COMPUTE_AND_KEEP_INLIERS
        self._keep_residuals = DEFAULT_COMPUTE_AND_KEEP_RESIDUALS
        self._refine_result = DEFAULT_REFINE_RESULT
        self._keep_covariance = DEFAULT_KEEP_COVARIANCE
        self._initial_position = None
        self._initial_power_dbm = None
        self._initial_path_loss = DEFAULT_PATH_LOSS_EXPONENT
        self._stop_threshold = DEFAULT_STOP_THRESHOLD
        self._inlier_factor = DEFAULT_INLIER_FACTOR
        self._preliminary_subset_size = self._layout().min_readings

        self._consensus_result: Optional[ConsensusResult] = None
        self._covariance: Optional[np.ndarray] = None
        self._estimated: Optional[EstimatedRadioSource] = None

        self.method = method
        # Unknown flags first: preliminary_subset_size is validated against them
        for key in self._CONFIG_KEYS:
            if key in config:
                setattr(self, key, config[key])
        if readings is not None:
            self.readings = readings
        if quality_scores is not None:
            self.quality_scores = quality_scores
        if listener is not None:
            self.listener = listener

    def _check_unlocked(self) -> None:
        if self._locked:
            raise LockedStateError("Estimator is locked while an estimation is in progress")

    def _layout(self) -> ParameterLayout:
        return ParameterLayout(
            self._dimensions,
            self._estimate_position,
            self._estimate_power,
            self._estimate_path_loss,
        )

    # ------------------------------------------------------------------
    # State

    @property
    def is_locked(self) -> bool:
        """True while ``estimate()`` is running."""
        return self._locked

    @property
    def number_of_dimensions(self) -> int:
        return self._dimensions

    @property
    def min_readings(self) -> int:
        """Minimal number of readings for the enabled unknowns (u + 1)."""
        return self._layout().min_readings

    @property
    def subset_size(self) -> int:
        """Readings drawn per consensus round."""
        return max(self._preliminary_subset_size, self.min_readings)

    @property
    def is_ready(self) -> bool:
        """Whether ``estimate()`` can run with the current configuration."""
        layout = self._layout()
        if layout.n_unknowns == 0:
            return False
        if not self._estimate_position and self._initial_position is None:
            return False
        if not self._estimate_power and self._initial_power_dbm is None:
            return False
        if self._readings is None or len(self._readings) < self.subset_size:
            return False
        if self._method in PROGRESSIVE_METHODS:
            if self._quality_scores is None:
                return False
            if len(self._quality_scores) != len(self._readings):
                return False
        return True

    # ------------------------------------------------------------------
    # Inputs

    @property
    def readings(self) -> Optional[tuple]:
        return self._readings

    @readings.setter
    def readings(self, readings: Sequence[Reading]) -> None:
        self._check_unlocked()
        if readings is None:
            raise ConfigurationError("readings must not be None")
        readings = tuple(readings)
        if len(readings) < self.min_readings:
            raise ConfigurationError(
                f"At least {self.min_readings} readings are required, got {len(readings)}"
            )
        for reading in readings:
            if not isinstance(reading, Reading):
                raise ConfigurationError(f"Expected Reading instances, got {type(reading)}")
            if reading.dimensions != self._dimensions:
                raise ConfigurationError(
                    f"Reading dimensionality {reading.dimensions} does not match "
                    f"estimator dimensionality {self._dimensions}"
                )

        self._readings = readings
        self._positions = np.array([r.position for r in readings])
        self._rssi = np.array([r.rssi for r in readings])
        self._rssi_std = np.array(
            [np.nan if r.rssi_std is None else r.rssi_std for r in readings]
        )

    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        return self._quality_scores

    @quality_scores.setter
    def quality_scores(self, quality_scores: Sequence[float]) -> None:
        self._check_unlocked()
        if quality_scores is None:
            raise ConfigurationError("quality_scores must not be None")
        scores = np.array(quality_scores, dtype=float)
        if scores.ndim != 1 or len(scores) < self.min_readings:
            raise ConfigurationError(
                f"At least {self.min_readings} quality scores are required, got shape {scores.shape}"
            )
        if not np.all(np.isfinite(scores)):
            raise ConfigurationError("quality_scores must be finite")
        scores.flags.writeable = False
        self._quality_scores = scores

    @property
    def listener(self) -> Optional[RadioSourceEstimatorListener]:
        return self._listener

    @listener.setter
    def listener(self, listener: Optional[RadioSourceEstimatorListener]) -> None:
        self._check_unlocked()
        self._listener = listener

    # ------------------------------------------------------------------
    # Robust method configuration

    @property
    def method(self) -> str:
        return self._method

    @method.setter
    def method(self, method: str) -> None:
        self._check_unlocked()
        if not isinstance(method, str) or method.lower() not in ROBUST_METHODS:
            raise ConfigurationError(
                f"method must be one of {ROBUST_METHODS}, got {method!r}"
            )
        self._method = method.lower()

    @property
    def threshold(self) -> float:
        """Maximum |residual| (dB) of an inlier for threshold-based methods."""
        return self._threshold

    @threshold.setter
    def threshold(self, threshold: float) -> None:
        self._check_unlocked()
        threshold = _checked_number(threshold, "threshold")
        if not np.isfinite(threshold) or threshold <= 0:
            raise ConfigurationError(f"threshold must be positive, got {threshold}")
        self._threshold = float(threshold)

    @property
    def confidence(self) -> float:
        return self._confidence

    @confidence.setter
    def confidence(self, confidence: float) -> None:
        self._check_unlocked()
        confidence = _checked_number(confidence, "confidence")
        if not 0.0 <= confidence <= 1.0:
            raise ConfigurationError(f"confidence must be in [0, 1], got {confidence}")
        self._confidence = float(confidence)

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    @max_iterations.setter
    def max_iterations(self, max_iterations: int) -> None:
        self._check_unlocked()
        max_iterations = _checked_number(max_iterations, "max_iterations")
        if (
            not np.isfinite(max_iterations)
            or int(max_iterations) != max_iterations
            or max_iterations < 1
        ):
            raise ConfigurationError(
                f"max_iterations must be an integer >= 1, got {max_iterations}"
            )
        self._max_iterations = int(max_iterations)

    @property
    def progress_delta(self) -> float:
        return self._progress_delta

    @progress_delta.setter
    def progress_delta(self, progress_delta: float) -> None:
        self._check_unlocked()
        progress_delta = _checked_number(progress_delta, "progress_delta")
        if not 0.0 <= progress_delta <= 1.0:
            raise ConfigurationError(f"progress_delta must be in [0, 1], got {progress_delta}")
        self._progress_delta = float(progress_delta)

    @property
    def preliminary_subset_size(self) -> int:
        return self._preliminary_subset_size

    @preliminary_subset_size.setter
    def preliminary_subset_size(self, size: int) -> None:
        self._check_unlocked()
        size = _checked_number(size, "preliminary_subset_size")
        if not np.isfinite(size) or int(size) != size or size < self.min_readings:
            raise ConfigurationError(
                f"preliminary_subset_size must be an integer >= {self.min_readings}, got {size}"
            )
        self._preliminary_subset_size = int(size)

    @property
    def stop_threshold(self) -> float:
        """Stop threshold (dB) of median-based methods."""
        return self._stop_threshold

    @stop_threshold.setter
    def stop_threshold(self, stop_threshold: float) -> None:
        self._check_unlocked()
        stop_threshold = _checked_number(stop_threshold, "stop_threshold")
        if not np.isfinite(stop_threshold) or stop_threshold <= 0:
            raise ConfigurationError(f"stop_threshold must be positive, got {stop_threshold}")
        self._stop_threshold = float(stop_threshold)

    @property
    def inlier_factor(self) -> float:
        """Robust standard deviation multiple of median-based methods."""
        return self._inlier_factor

    @inlier_factor.setter
    def inlier_factor(self, inlier_factor: float) -> None:
        self._check_unlocked()
        inlier_factor = _checked_number(inlier_factor, "inlier_factor")
        if not np.isfinite(inlier_factor) or inlier_factor <= 0:
            raise ConfigurationError(f"inlier_factor must be positive, got {inlier_factor}")
        self._inlier_factor = float(inlier_factor)

    # ------------------------------------------------------------------
    # Unknowns and initial values

    @property
    def position_estimation_enabled(self) -> bool:
        return self._estimate_position

    @position_estimation_enabled.setter
    def position_estimation_enabled(self, enabled: bool) -> None:
        self._check_unlocked()
        self._estimate_position = _checked_flag(enabled)

    @property
    def transmitted_power_estimation_enabled(self) -> bool:
        return self._estimate_power

    @transmitted_power_estimation_enabled.setter
    def transmitted_power_estimation_enabled(self, enabled: bool) -> None:
        self._check_unlocked()
        self._estimate_power = _checked_flag(enabled)

    @property
    def path_loss_estimation_enabled(self) -> bool:
        return self._estimate_path_loss

    @path_loss_estimation_enabled.setter
    def path_loss_estimation_enabled(self, enabled: bool) -> None:
        self._check_unlocked()
        self._estimate_path_loss = _checked_flag(enabled)

    @property
    def initial_position(self) -> Optional[np.ndarray]:
        """Fixed position when position is disabled, seed otherwise."""
        return self._initial_position

    @initial_position.setter
    def initial_position(self, position) -> None:
        self._check_unlocked()
        if position is None:
            self._initial_position = None
            return
        try:
            position = np.array(position, dtype=float)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"initial_position must be numeric, got {position!r}") from e
        if position.shape != (self._dimensions,) or not np.all(np.isfinite(position)):
            raise ConfigurationError(
                f"initial_position must be a finite vector of length {self._dimensions}"
            )
        position.flags.writeable = False
        self._initial_position = position

    @property
    def initial_transmitted_power_dbm(self) -> Optional[float]:
        return self._initial_power_dbm

    @initial_transmitted_power_dbm.setter
    def initial_transmitted_power_dbm(self, power_dbm: Optional[float]) -> None:
        self._check_unlocked()
        if power_dbm is not None:
            power_dbm = _checked_number(power_dbm, "initial_transmitted_power_dbm")
        if power_dbm is not None and not np.isfinite(power_dbm):
            raise ConfigurationError(f"initial_transmitted_power_dbm must be finite, got {power_dbm}")
        self._initial_power_dbm = None if power_dbm is None else float(power_dbm)

    @property
    def initial_transmitted_power(self) -> Optional[float]:
        """Initial transmitted power in mW."""
        if self._initial_power_dbm is None:
            return None
        return float(dbm_to_power(self._initial_power_dbm))

    @initial_transmitted_power.setter
    def initial_transmitted_power(self, power_mw: Optional[float]) -> None:
        self._check_unlocked()
        if power_mw is None:
            self._initial_power_dbm = None
            return
        try:
            self._initial_power_dbm = float(power_to_dbm(power_mw))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(str(e)) from e

    @property
    def initial_path_loss_exponent(self) -> float:
        return self._initial_path_loss

    @initial_path_loss_exponent.setter
    def initial_path_loss_exponent(self, path_loss: float) -> None:
        self._check_unlocked()
        path_loss = _checked_number(path_loss, "initial_path_loss_exponent")
        if not np.isfinite(path_loss) or path_loss <= 0:
            raise ConfigurationError(f"initial_path_loss_exponent must be positive, got {path_loss}")
        self._initial_path_loss = float(path_loss)

    # ------------------------------------------------------------------
    # Output options

    @property
    def keep_inliers(self) -> bool:
        return self._keep_inliers

    @keep_inliers.setter
    def keep_inliers(self, keep: bool) -> None:
        self._check_unlocked()
        self._keep_inliers = _checked_flag(keep)

    @property
    def keep_residuals(self) -> bool:
        return self._keep_residuals

    @keep_residuals.setter
    def keep_residuals(self, keep: bool) -> None:
        self._check_unlocked()
        self._keep_residuals = _checked_flag(keep)

    @property
    def refine_result(self) -> bool:
        return self._refine_result

    @refine_result.setter
    def refine_result(self, refine: bool) -> None:
        self._check_unlocked()
        self._refine_result = _checked_flag(refine)

    @property
    def keep_covariance(self) -> bool:
        return self._keep_covariance

    @keep_covariance.setter
    def keep_covariance(self, keep: bool) -> None:
        self._check_unlocked()
        self._keep_covariance = _checked_flag(keep)

    # ------------------------------------------------------------------
    # Results

    @property
    def consensus_result(self) -> Optional[ConsensusResult]:
        """Result of the last successful consensus search."""
        return self._consensus_result

    @property
    def inliers_data(self) -> Optional[ConsensusResult]:
        """Consensus result when inliers or residuals were kept."""
        result = self._consensus_result
        if result is None or (result.inliers is None and result.residuals is None):
            return None
        return result

    @property
    def estimated_radio_source(self) -> Optional[EstimatedRadioSource]:
        return self._estimated

    @property
    def covariance(self) -> Optional[np.ndarray]:
        """Covariance of the active unknowns (u × u) of the last estimate."""
        return self._covariance

    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        return None if self._estimated is None else self._estimated.position

    @property
    def estimated_transmitted_power_dbm(self) -> Optional[float]:
        return None if self._estimated is None else self._estimated.transmitted_power_dbm

    @property
    def estimated_transmitted_power(self) -> Optional[float]:
        return None if self._estimated is None else self._estimated.transmitted_power

    @property
    def estimated_path_loss_exponent(self) -> Optional[float]:
        return None if self._estimated is None else self._estimated.path_loss_exponent

    @property
    def estimated_position_covariance(self) -> Optional[np.ndarray]:
        return None if self._estimated is None else self._estimated.position_covariance

    @property
    def estimated_transmitted_power_variance(self) -> Optional[float]:
        return None if self._estimated is None else self._estimated.transmitted_power_variance

    @property
    def estimated_path_loss_exponent_variance(self) -> Optional[float]:
        return None if self._estimated is None else self._estimated.path_loss_exponent_variance

    # ------------------------------------------------------------------
    # Estimation

    def _build_search(self, layout: ParameterLayout) -> ConsensusSearch:
        frequency = self._readings[0].source.frequency
        sampler, scorer = make_strategies(
            self._method, self._threshold, self._stop_threshold, self._inlier_factor
        )
        solver = MinimalSampleSolver(
            layout,
            frequency,
            initial_position=self._initial_position,
            initial_power_dbm=self._initial_power_dbm,
            initial_path_loss=self._initial_path_loss,
            consistency_threshold=self._threshold if scorer.uses_threshold else None,
        )

        listener = self._listener
        on_next_iteration = None
        on_progress = None
        if listener is not None:
            def on_next_iteration(iteration):
                listener.on_estimate_next_iteration(self, iteration)

            def on_progress(progress):
                listener.on_estimate_progress_change(self, progress)

        return ConsensusSearch(
            solver,
            sampler,
            scorer,
            frequency,
            sample_size=self.subset_size,
            confidence=self._confidence,
            max_iterations=self._max_iterations,
            progress_delta=self._progress_delta,
            keep_inliers=self._keep_inliers,
            keep_residuals=self._keep_residuals,
            on_next_iteration=on_next_iteration,
            on_progress=on_progress,
        )

    def estimate(self) -> EstimatedRadioSource:
        """
        Robustly estimate the radio source.

        The best hypothesis is refined when refinement is enabled and the
        search converged or exhausted its iteration budget with a candidate.

        Returns:
            EstimatedRadioSource. Disabled quantities carry their configured
            constant and no variance.

        Raises:
            LockedStateError: If an estimation is already in progress.
            NotReadyError: If the configuration is not ready.
            EstimationFailure: If no consensus was found or the requested
                refinement failed. The estimator is unlocked and previous
                results are left untouched.
        """
        self._check_unlocked()
        if not self.is_ready:
            raise NotReadyError("Estimator is not ready")

        self._locked = True
        try:
            if self._listener is not None:
                self._listener.on_estimate_start(self)

            layout = self._layout()
            search = self._build_search(layout)
            positions, rssi = self._positions, self._rssi
            consensus = search.run(positions, rssi, self._quality_scores)
            if not consensus.succeeded:
                raise EstimationFailure(
                    f"No consensus found after {consensus.iterations} iterations"
                )
            self._consensus_result = consensus

            hypothesis = consensus.best
            refinement = None
            if self._refine_result:
                inliers = consensus.inliers
                if inliers is None:
                    inliers = search.inliers_of(hypothesis, positions, rssi)
                refinement = refine_hypothesis(
                    hypothesis,
                    layout,
                    positions[inliers],
                    rssi[inliers],
                    search.frequency,
                    rssi_std=self._rssi_std[inliers],
                    keep_covariance=self._keep_covariance,
                )
                hypothesis = refinement.hypothesis

            self._estimated = self._assemble(hypothesis, refinement)
            self._covariance = None if refinement is None else refinement.covariance

            logger.info(
                "Estimated source %s with %s after %d iterations (%d/%d inliers)",
                self._readings[0].source.identifier,
                self._method,
                consensus.iterations,
                consensus.n_inliers,
                len(self._readings),
            )

            if self._listener is not None:
                self._listener.on_estimate_end(self)
            return self._estimated
        except np.linalg.LinAlgError as e:
            raise EstimationFailure(f"Numerical failure during estimation: {e}") from e
        finally:
            self._locked = False

    def _assemble(self, hypothesis, refinement) -> EstimatedRadioSource:
        if self._estimate_position:
            position = np.array(hypothesis.position)
        else:
            position = np.array(self._initial_position)

        return EstimatedRadioSource(
            source=self._readings[0].source,
            position=position,
            transmitted_power_dbm=(
                hypothesis.transmitted_power_dbm
                if self._estimate_power else self._initial_power_dbm
            ),
            path_loss_exponent=(
                hypothesis.path_loss_exponent
                if self._estimate_path_loss else self._initial_path_loss
            ),
            position_covariance=None if refinement is None else refinement.position_covariance,
            transmitted_power_variance=(
                None if refinement is None else refinement.transmitted_power_variance
            ),
            path_loss_exponent_variance=(
                None if refinement is None else refinement.path_loss_exponent_variance
            ),
            meta={"method": self._method, "n_readings": len(self._readings)},
        )
