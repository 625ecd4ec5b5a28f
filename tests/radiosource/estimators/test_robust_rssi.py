"""
Unit tests for the robust RSSI radio source estimator.

Tests cover:
    - Configuration validation and readiness
    - Locking of every mutator while an estimation runs
    - Listener notifications
    - Recovery of synthetic sources with every robust method
    - Refinement, covariance and disabled unknowns
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from radiosource.errors import (
    ConfigurationError,
    EstimationFailure,
    LockedStateError,
    NotReadyError,
)
from radiosource.estimators.consensus import ROBUST_METHODS, ConsensusState
from radiosource.estimators.robust_rssi import (
    DEFAULT_CONFIDENCE,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_PATH_LOSS_EXPONENT,
    DEFAULT_ROBUST_METHOD,
    DEFAULT_THRESHOLD,
    RadioSourceEstimatorListener,
    RobustRssiRadioSourceEstimator,
)
from radiosource.sim import SurveyConfig, generate_survey

MAX_TRIALS = 50
ABSOLUTE_ERROR = 1e-6


def _survey(dimensions=3, seed=None, **kwargs):
    rng = np.random.default_rng(seed)
    return generate_survey(SurveyConfig(dimensions=dimensions, **kwargs), rng)


class CountingListener(RadioSourceEstimatorListener):
    """Count every notification."""

    def __init__(self):
        self.start = 0
        self.end = 0
        self.next_iteration = 0
        self.progress_change = 0
        self.progress = []

    def on_estimate_start(self, estimator):
        self.start += 1
        assert estimator.is_locked

    def on_estimate_end(self, estimator):
        self.end += 1
        assert estimator.is_locked

    def on_estimate_next_iteration(self, estimator, iteration):
        self.next_iteration += 1

    def on_estimate_progress_change(self, estimator, progress):
        self.progress_change += 1
        self.progress.append(progress)


class MutatingListener(RadioSourceEstimatorListener):
    """Try every mutator from inside the estimation."""

    MUTATORS = (
        "readings",
        "quality_scores",
        "listener",
        "method",
        "threshold",
        "confidence",
        "max_iterations",
        "progress_delta",
        "preliminary_subset_size",
        "stop_threshold",
        "inlier_factor",
        "position_estimation_enabled",
        "transmitted_power_estimation_enabled",
        "path_loss_estimation_enabled",
        "initial_position",
        "initial_transmitted_power_dbm",
        "initial_transmitted_power",
        "initial_path_loss_exponent",
        "keep_inliers",
        "keep_residuals",
        "refine_result",
        "keep_covariance",
    )

    def __init__(self):
        self.locked = []
        self.unlocked = []

    def _try_all(self, estimator):
        for name in self.MUTATORS:
            try:
                setattr(estimator, name, getattr(estimator, name))
            except LockedStateError:
                self.locked.append(name)
            else:
                self.unlocked.append(name)
        try:
            estimator.estimate()
        except LockedStateError:
            self.locked.append("estimate")
        else:
            self.unlocked.append("estimate")

    def on_estimate_start(self, estimator):
        self._try_all(estimator)

    def on_estimate_next_iteration(self, estimator, iteration):
        if iteration == 0:
            self._try_all(estimator)


class TestConfiguration:
    """Test defaults and validating setters."""

    def test_defaults(self):
        estimator = RobustRssiRadioSourceEstimator()
        assert estimator.method == DEFAULT_ROBUST_METHOD == "prosac"
        assert estimator.threshold == DEFAULT_THRESHOLD
        assert estimator.confidence == DEFAULT_CONFIDENCE
        assert estimator.max_iterations == DEFAULT_MAX_ITERATIONS
        assert estimator.initial_path_loss_exponent == DEFAULT_PATH_LOSS_EXPONENT
        assert estimator.position_estimation_enabled
        assert estimator.transmitted_power_estimation_enabled
        assert not estimator.path_loss_estimation_enabled
        assert estimator.refine_result
        assert estimator.keep_covariance
        assert not estimator.keep_inliers
        assert not estimator.keep_residuals
        assert estimator.number_of_dimensions == 3
        assert estimator.min_readings == 5
        assert estimator.subset_size == 5
        assert not estimator.is_locked
        assert not estimator.is_ready
        assert estimator.estimated_radio_source is None
        assert estimator.covariance is None

    def test_min_readings_follow_flags(self):
        estimator = RobustRssiRadioSourceEstimator(dimensions=2)
        assert estimator.min_readings == 4
        estimator.path_loss_estimation_enabled = True
        assert estimator.min_readings == 5
        estimator.position_estimation_enabled = False
        assert estimator.min_readings == 3

    def test_dimensions_inferred_from_readings(self):
        survey = _survey(dimensions=2, seed=1)
        estimator = RobustRssiRadioSourceEstimator(survey.readings, survey.quality_scores)
        assert estimator.number_of_dimensions == 2
        assert len(estimator.readings) == len(survey.readings)

    def test_constructor_keywords(self):
        estimator = RobustRssiRadioSourceEstimator(
            method="LMedS", threshold=2.0, path_loss_estimation_enabled=True,
            preliminary_subset_size=8, keep_inliers=True,
        )
        assert estimator.method == "lmeds"
        assert estimator.threshold == 2.0
        assert estimator.preliminary_subset_size == 8
        assert estimator.subset_size == 8
        assert estimator.keep_inliers

    def test_unknown_keyword(self):
        with pytest.raises(TypeError):
            RobustRssiRadioSourceEstimator(thresold=2.0)

    def test_initial_power_in_both_units(self):
        estimator = RobustRssiRadioSourceEstimator()
        estimator.initial_transmitted_power = 1.0
        assert estimator.initial_transmitted_power_dbm == pytest.approx(0.0)
        estimator.initial_transmitted_power_dbm = -30.0
        assert estimator.initial_transmitted_power == pytest.approx(1e-3)
        estimator.initial_transmitted_power = None
        assert estimator.initial_transmitted_power_dbm is None

    def test_initial_position_is_read_only_copy(self):
        estimator = RobustRssiRadioSourceEstimator(dimensions=2)
        position = np.array([1.0, 2.0])
        estimator.initial_position = position
        position[0] = 10.0
        assert_allclose(estimator.initial_position, [1.0, 2.0])
        with pytest.raises(ValueError):
            estimator.initial_position[0] = 3.0

    @pytest.mark.parametrize("name, value", [
        ("method", "mlesac"),
        ("threshold", 0.0),
        ("threshold", -1.0),
        ("confidence", 1.5),
        ("confidence", -0.1),
        ("max_iterations", 0),
        ("max_iterations", 2.5),
        ("progress_delta", -0.1),
        ("progress_delta", 1.1),
        ("preliminary_subset_size", 2),
        ("stop_threshold", 0.0),
        ("inlier_factor", 0.0),
        ("position_estimation_enabled", 1),
        ("keep_inliers", "yes"),
        ("initial_position", [1.0, 2.0]),
        ("initial_position", [0.0, np.nan, 0.0]),
        ("initial_transmitted_power_dbm", np.inf),
        ("initial_transmitted_power", 0.0),
        ("initial_path_loss_exponent", 0.0),
        ("readings", None),
        ("quality_scores", [1.0, 2.0]),
        ("threshold", "a"),
        ("confidence", None),
        ("max_iterations", "10"),
        ("max_iterations", np.inf),
        ("progress_delta", True),
        ("preliminary_subset_size", None),
        ("stop_threshold", "small"),
        ("inlier_factor", [1.0]),
        ("initial_position", ["a", "b", "c"]),
        ("initial_transmitted_power_dbm", "loud"),
        ("initial_transmitted_power", [1.0, 2.0]),
        ("initial_path_loss_exponent", None),
    ])
    def test_invalid_values(self, name, value):
        estimator = RobustRssiRadioSourceEstimator()
        with pytest.raises(ConfigurationError):
            setattr(estimator, name, value)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            RobustRssiRadioSourceEstimator(threshold=-1.0)

    def test_invalid_readings(self):
        survey = _survey(dimensions=2, seed=2)
        with pytest.raises(ConfigurationError):
            RobustRssiRadioSourceEstimator(survey.readings[:3])
        with pytest.raises(ConfigurationError):
            RobustRssiRadioSourceEstimator(survey.readings, dimensions=3)
        with pytest.raises(ConfigurationError):
            RobustRssiRadioSourceEstimator(dimensions=4)


class TestReadiness:
    """Test is_ready and NotReadyError."""

    def setup_method(self):
        self.survey = _survey(dimensions=2, seed=3)

    def test_no_readings(self):
        estimator = RobustRssiRadioSourceEstimator()
        assert not estimator.is_ready
        with pytest.raises(NotReadyError):
            estimator.estimate()

    def test_progressive_methods_need_quality_scores(self):
        estimator = RobustRssiRadioSourceEstimator(self.survey.readings)
        assert not estimator.is_ready
        estimator.method = "ransac"
        assert estimator.is_ready
        estimator.method = "promeds"
        assert not estimator.is_ready
        estimator.quality_scores = self.survey.quality_scores
        assert estimator.is_ready

    def test_quality_scores_must_match_readings(self):
        estimator = RobustRssiRadioSourceEstimator(
            self.survey.readings, self.survey.quality_scores[:-1]
        )
        assert not estimator.is_ready

    def test_disabled_unknowns_need_constants(self):
        estimator = RobustRssiRadioSourceEstimator(
            self.survey.readings, self.survey.quality_scores
        )
        estimator.position_estimation_enabled = False
        assert not estimator.is_ready
        estimator.initial_position = self.survey.position
        assert estimator.is_ready

        estimator.transmitted_power_estimation_enabled = False
        assert not estimator.is_ready
        estimator.initial_transmitted_power_dbm = self.survey.transmitted_power_dbm
        assert not estimator.is_ready  # no unknown left
        estimator.path_loss_estimation_enabled = True
        assert estimator.is_ready

    def test_subset_larger_than_readings(self):
        estimator = RobustRssiRadioSourceEstimator(
            self.survey.readings, self.survey.quality_scores
        )
        estimator.preliminary_subset_size = len(self.survey.readings) + 1
        assert not estimator.is_ready
        with pytest.raises(NotReadyError):
            estimator.estimate()


class TestLocking:
    """Test that the estimator is locked while estimating."""

    def test_every_mutator_is_locked(self):
        survey = _survey(dimensions=2, seed=4)
        listener = MutatingListener()
        estimator = RobustRssiRadioSourceEstimator(
            survey.readings, survey.quality_scores, listener, refine_result=False
        )
        estimator.estimate()

        expected = list(MutatingListener.MUTATORS) + ["estimate"]
        assert listener.unlocked == []
        assert listener.locked == expected + expected
        assert not estimator.is_locked

        # Mutators work again once the estimation is over
        estimator.threshold = 0.5
        assert estimator.threshold == 0.5

    def test_unlocked_after_failure(self):
        survey = _survey(dimensions=2, seed=5, outlier_percentage=100.0)
        estimator = RobustRssiRadioSourceEstimator(
            survey.readings, method="ransac", threshold=1e-9, max_iterations=10
        )
        with pytest.raises(EstimationFailure):
            estimator.estimate()
        assert not estimator.is_locked
        assert estimator.estimated_radio_source is None
        assert estimator.consensus_result is None


class TestListener:
    """Test listener notifications."""

    def test_counters_double_on_second_run(self):
        survey = _survey(dimensions=2, seed=6)
        listener = CountingListener()
        estimator = RobustRssiRadioSourceEstimator(
            survey.readings, survey.quality_scores, listener
        )

        estimator.estimate()
        assert listener.start == 1
        assert listener.end == 1
        assert listener.next_iteration > 0
        assert listener.progress_change > 0
        first_iterations = listener.next_iteration
        first_progress = listener.progress_change

        estimator.estimate()
        assert listener.start == 2
        assert listener.end == 2
        assert listener.next_iteration > first_iterations
        assert listener.progress_change > first_progress
        assert all(0.0 <= p <= 1.0 for p in listener.progress)

    def test_next_iteration_matches_consensus_iterations(self):
        survey = _survey(dimensions=2, seed=7)
        listener = CountingListener()
        estimator = RobustRssiRadioSourceEstimator(
            survey.readings, survey.quality_scores, listener, refine_result=False
        )
        estimator.estimate()
        assert listener.next_iteration == estimator.consensus_result.iterations

    def test_end_not_notified_on_failure(self):
        survey = _survey(dimensions=2, seed=8, outlier_percentage=100.0)
        listener = CountingListener()
        estimator = RobustRssiRadioSourceEstimator(
            survey.readings, listener=listener, method="msac",
            threshold=1e-9, max_iterations=5,
        )
        with pytest.raises(EstimationFailure):
            estimator.estimate()
        assert listener.start == 1
        assert listener.end == 0
        assert listener.next_iteration == 5


class TestEstimation:
    """Recovery of synthetic sources with exact inliers."""

    @pytest.mark.parametrize("method", ROBUST_METHODS)
    def test_recovers_source_without_refinement(self, method):
        rng = np.random.default_rng()
        for _ in range(MAX_TRIALS):
            survey = generate_survey(SurveyConfig(dimensions=3), rng)
            estimator = RobustRssiRadioSourceEstimator(
                survey.readings, survey.quality_scores, method=method, refine_result=False
            )
            try:
                estimated = estimator.estimate()
            except EstimationFailure:
                continue

            assert estimated.position_covariance is None
            assert estimated.transmitted_power_variance is None
            assert estimator.covariance is None
            if (
                np.linalg.norm(estimated.position - survey.position) < ABSOLUTE_ERROR
                and abs(estimated.transmitted_power_dbm - survey.transmitted_power_dbm)
                < ABSOLUTE_ERROR
            ):
                assert estimated.path_loss_exponent == DEFAULT_PATH_LOSS_EXPONENT
                assert estimated.source == survey.source
                assert estimated.meta["method"] == method
                return
        pytest.fail(f"{method} never recovered the source in {MAX_TRIALS} trials")

    @pytest.mark.parametrize("method", ROBUST_METHODS)
    def test_refinement_gives_positive_std(self, method):
        rng = np.random.default_rng()
        for _ in range(MAX_TRIALS):
            survey = generate_survey(SurveyConfig(dimensions=3), rng)
            estimator = RobustRssiRadioSourceEstimator(
                survey.readings, survey.quality_scores, method=method
            )
            try:
                estimated = estimator.estimate()
            except EstimationFailure:
                continue

            if np.linalg.norm(estimated.position - survey.position) > ABSOLUTE_ERROR:
                continue
            assert np.all(estimated.position_std > 0)
            assert estimated.transmitted_power_std > 0
            assert estimated.path_loss_exponent_variance is None
            assert estimator.covariance.shape == (4, 4)
            assert_allclose(
                estimator.estimated_position_covariance, estimator.covariance[:3, :3]
            )
            return
        pytest.fail(f"{method} never refined the source in {MAX_TRIALS} trials")

    @pytest.mark.parametrize("method", ROBUST_METHODS)
    def test_recovers_source_with_larger_subsets(self, method):
        rng = np.random.default_rng()
        for _ in range(MAX_TRIALS):
            survey = generate_survey(SurveyConfig(dimensions=2), rng)
            estimator = RobustRssiRadioSourceEstimator(
                survey.readings,
                survey.quality_scores,
                method=method,
                preliminary_subset_size=8,
                refine_result=False,
            )
            assert estimator.preliminary_subset_size > estimator.min_readings
            try:
                estimated = estimator.estimate()
            except EstimationFailure:
                continue

            if (
                np.linalg.norm(estimated.position - survey.position) < ABSOLUTE_ERROR
                and abs(estimated.transmitted_power_dbm - survey.transmitted_power_dbm)
                < ABSOLUTE_ERROR
            ):
                return
        pytest.fail(f"{method} never recovered the source from 8-reading subsets")

    def test_exhausted_search_is_refined(self):
        rng = np.random.default_rng()
        for _ in range(MAX_TRIALS):
            survey = generate_survey(SurveyConfig(dimensions=2), rng)
            # Full confidence never reaches the adaptive round count
            estimator = RobustRssiRadioSourceEstimator(
                survey.readings, method="ransac", confidence=1.0, max_iterations=200
            )
            try:
                estimated = estimator.estimate()
            except EstimationFailure:
                continue

            assert estimator.consensus_result.state == ConsensusState.EXHAUSTED
            assert estimator.consensus_result.iterations == 200
            if np.linalg.norm(estimated.position - survey.position) > ABSOLUTE_ERROR:
                continue
            assert estimator.covariance is not None
            assert np.all(estimated.position_std > 0)
            return
        pytest.fail(f"exhausted search never refined the source in {MAX_TRIALS} trials")

    def test_path_loss_estimation(self):
        rng = np.random.default_rng()
        config = SurveyConfig(dimensions=2, min_path_loss_exponent=1.6, max_path_loss_exponent=3.0)
        for _ in range(MAX_TRIALS):
            survey = generate_survey(config, rng)
            estimator = RobustRssiRadioSourceEstimator(
                survey.readings, survey.quality_scores, path_loss_estimation_enabled=True
            )
            try:
                estimated = estimator.estimate()
            except EstimationFailure:
                continue

            if abs(estimated.path_loss_exponent - survey.path_loss_exponent) > ABSOLUTE_ERROR:
                continue
            assert estimated.path_loss_exponent_std > 0
            assert estimator.estimated_path_loss_exponent_variance > 0
            assert estimator.covariance.shape == (4, 4)
            return
        pytest.fail(f"path loss never recovered in {MAX_TRIALS} trials")

    def test_fixed_position(self):
        survey = _survey(dimensions=2, seed=9)
        estimator = RobustRssiRadioSourceEstimator(
            survey.readings, survey.quality_scores,
            position_estimation_enabled=False, initial_position=survey.position,
            threshold=1e-6,
        )
        estimated = estimator.estimate()
        assert_allclose(estimated.position, survey.position)
        assert estimated.position_covariance is None
        assert estimated.transmitted_power_dbm == pytest.approx(
            survey.transmitted_power_dbm, abs=ABSOLUTE_ERROR
        )
        assert estimated.transmitted_power_variance > 0
        assert estimator.covariance.shape == (1, 1)

    def test_fixed_power(self):
        rng = np.random.default_rng()
        for _ in range(MAX_TRIALS):
            survey = generate_survey(SurveyConfig(dimensions=2), rng)
            estimator = RobustRssiRadioSourceEstimator(
                survey.readings, survey.quality_scores,
                transmitted_power_estimation_enabled=False,
                initial_transmitted_power_dbm=survey.transmitted_power_dbm,
            )
            try:
                estimated = estimator.estimate()
            except EstimationFailure:
                continue

            assert estimated.transmitted_power_dbm == survey.transmitted_power_dbm
            assert estimated.transmitted_power_variance is None
            if np.linalg.norm(estimated.position - survey.position) < ABSOLUTE_ERROR:
                assert np.all(estimated.position_std > 0)
                return
        pytest.fail(f"position never recovered in {MAX_TRIALS} trials")

    def test_results_not_kept_when_disabled(self):
        survey = _survey(dimensions=2, seed=10)
        estimator = RobustRssiRadioSourceEstimator(
            survey.readings, survey.quality_scores, keep_covariance=False
        )
        estimated = estimator.estimate()
        assert estimator.consensus_result.inliers is None
        assert estimator.consensus_result.residuals is None
        assert estimator.inliers_data is None
        assert estimator.covariance is None
        assert estimated.position_covariance is None
        assert estimated.transmitted_power_variance is None

    def test_inliers_and_residuals_kept(self):
        survey = _survey(dimensions=2, seed=11)
        estimator = RobustRssiRadioSourceEstimator(
            survey.readings, survey.quality_scores, keep_inliers=True, keep_residuals=True
        )
        estimator.estimate()
        data = estimator.inliers_data
        assert data is estimator.consensus_result
        assert data.inliers.shape == (len(survey.readings),)
        assert data.residuals.shape == (len(survey.readings),)
        assert data.state in (ConsensusState.CONVERGED, ConsensusState.EXHAUSTED)
        assert data.n_inliers == int(data.inliers.sum())

    def test_accessors_match_estimate(self):
        survey = _survey(dimensions=2, seed=12)
        estimator = RobustRssiRadioSourceEstimator(survey.readings, survey.quality_scores)
        estimated = estimator.estimate()
        assert estimator.estimated_radio_source is estimated
        assert_allclose(estimator.estimated_position, estimated.position)
        assert estimator.estimated_transmitted_power_dbm == estimated.transmitted_power_dbm
        assert estimator.estimated_transmitted_power == pytest.approx(
            10.0 ** (estimated.transmitted_power_dbm / 10.0)
        )
        assert estimator.estimated_path_loss_exponent == estimated.path_loss_exponent
        assert (
            estimator.estimated_transmitted_power_variance
            == estimated.transmitted_power_variance
        )
