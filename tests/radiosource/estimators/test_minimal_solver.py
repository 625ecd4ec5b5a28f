"""
Unit tests for the minimal-sample solver.

Exact samples of every unknown combination must be solved exactly;
degenerate and inconsistent samples must be rejected.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from radiosource.errors import DegenerateSampleError
from radiosource.estimators.minimal_solver import MinimalSampleSolver
from radiosource.rf.attenuation import predict_rssi
from radiosource.types import ParameterLayout

FREQUENCY = 2.4e9

TRUE_POSITION = {
    2: np.array([3.0, -7.0]),
    3: np.array([3.0, -7.0, 2.0]),
}
TRUE_POWER = -62.0
TRUE_PATH_LOSS = 2.3


def _exact_sample(dimensions, n_readings, rng, path_loss=TRUE_PATH_LOSS):
    positions = rng.uniform(-50.0, 50.0, size=(n_readings, dimensions))
    rssi = predict_rssi(
        TRUE_POSITION[dimensions], TRUE_POWER, path_loss, positions, FREQUENCY
    )
    return positions, rssi


def _solver(layout, path_loss=TRUE_PATH_LOSS, **kwargs):
    dimensions = layout.dimensions
    return MinimalSampleSolver(
        layout,
        FREQUENCY,
        initial_position=None if layout.estimate_position else TRUE_POSITION[dimensions],
        initial_power_dbm=None if layout.estimate_power else TRUE_POWER,
        initial_path_loss=path_loss,
        **kwargs,
    )


class TestFixedPosition:
    """Position disabled: log-domain linear solve."""

    @pytest.mark.parametrize("dimensions", [2, 3])
    def test_power_only(self, dimensions):
        layout = ParameterLayout(dimensions, False, True, False)
        positions, rssi = _exact_sample(dimensions, layout.min_readings, np.random.default_rng(0))
        hypothesis = _solver(layout).solve(positions, rssi)
        assert hypothesis.transmitted_power_dbm == pytest.approx(TRUE_POWER, abs=1e-9)
        assert_allclose(hypothesis.position, TRUE_POSITION[dimensions])

    @pytest.mark.parametrize("dimensions", [2, 3])
    def test_path_loss_only(self, dimensions):
        layout = ParameterLayout(dimensions, False, False, True)
        positions, rssi = _exact_sample(dimensions, layout.min_readings, np.random.default_rng(1))
        hypothesis = _solver(layout, path_loss=2.0).solve(positions, rssi)
        assert hypothesis.path_loss_exponent == pytest.approx(TRUE_PATH_LOSS, abs=1e-9)
        assert hypothesis.transmitted_power_dbm == TRUE_POWER

    def test_power_and_path_loss(self):
        layout = ParameterLayout(3, False, True, True)
        positions, rssi = _exact_sample(3, layout.min_readings, np.random.default_rng(2))
        hypothesis = _solver(layout, path_loss=2.0).solve(positions, rssi)
        assert hypothesis.transmitted_power_dbm == pytest.approx(TRUE_POWER, abs=1e-8)
        assert hypothesis.path_loss_exponent == pytest.approx(TRUE_PATH_LOSS, abs=1e-9)

    def test_equal_distances_are_rank_deficient(self):
        """Power and path loss cannot be separated at a single distance."""
        layout = ParameterLayout(2, False, True, True)
        angles = np.array([0.0, 2.0, 4.0])
        positions = TRUE_POSITION[2] + 10.0 * np.column_stack([np.cos(angles), np.sin(angles)])
        rssi = predict_rssi(TRUE_POSITION[2], TRUE_POWER, TRUE_PATH_LOSS, positions, FREQUENCY)
        with pytest.raises(DegenerateSampleError):
            _solver(layout).solve(positions, rssi)


class TestFreePosition:
    """Position enabled: linearised seed plus Levenberg-Marquardt."""

    @pytest.mark.parametrize("dimensions", [2, 3])
    def test_position_and_power(self, dimensions):
        layout = ParameterLayout(dimensions, True, True, False)
        rng = np.random.default_rng(3)
        positions, rssi = _exact_sample(dimensions, layout.min_readings, rng)
        hypothesis = _solver(layout).solve(positions, rssi)
        assert_allclose(hypothesis.position, TRUE_POSITION[dimensions], atol=1e-6)
        assert hypothesis.transmitted_power_dbm == pytest.approx(TRUE_POWER, abs=1e-6)
        assert hypothesis.path_loss_exponent == TRUE_PATH_LOSS

    @pytest.mark.parametrize("dimensions", [2, 3])
    def test_position_only(self, dimensions):
        layout = ParameterLayout(dimensions, True, False, False)
        positions, rssi = _exact_sample(dimensions, layout.min_readings, np.random.default_rng(4))
        hypothesis = _solver(layout).solve(positions, rssi)
        assert_allclose(hypothesis.position, TRUE_POSITION[dimensions], atol=1e-6)

    def test_all_unknowns(self):
        layout = ParameterLayout(2, True, True, True)
        rng = np.random.default_rng(5)
        solved = 0
        for _ in range(10):
            positions, rssi = _exact_sample(2, layout.min_readings, rng)
            try:
                hypothesis = _solver(layout, path_loss=2.0).solve(positions, rssi)
            except DegenerateSampleError:
                continue
            if np.allclose(hypothesis.position, TRUE_POSITION[2], atol=1e-4):
                assert hypothesis.path_loss_exponent == pytest.approx(TRUE_PATH_LOSS, abs=1e-4)
                solved += 1
        assert solved >= 1

    def test_colinear_sample_rejected(self):
        layout = ParameterLayout(2, True, True, False)
        positions = np.column_stack([np.linspace(0.0, 30.0, 4), np.zeros(4)])
        rssi = predict_rssi(TRUE_POSITION[2], TRUE_POWER, 2.0, positions, FREQUENCY)
        with pytest.raises(DegenerateSampleError):
            _solver(layout, path_loss=2.0).solve(positions, rssi)

    def test_inconsistent_sample_rejected(self):
        layout = ParameterLayout(2, True, True, False)
        positions, rssi = _exact_sample(2, layout.min_readings + 2, np.random.default_rng(6))
        rssi = rssi.copy()
        rssi[0] += 25.0
        solver = _solver(layout, consistency_threshold=0.1)
        with pytest.raises(DegenerateSampleError):
            solver.solve(positions, rssi)

    def test_inconsistent_sample_accepted_without_threshold(self):
        layout = ParameterLayout(2, True, True, False)
        positions, rssi = _exact_sample(2, layout.min_readings + 2, np.random.default_rng(6))
        rssi = rssi.copy()
        rssi[0] += 25.0
        try:
            hypothesis = _solver(layout).solve(positions, rssi)
        except DegenerateSampleError:
            return
        assert hypothesis.is_finite()


class TestValidation:
    """Test argument checks."""

    def test_sample_too_small(self):
        layout = ParameterLayout(2, True, True, False)
        positions, rssi = _exact_sample(2, 3, np.random.default_rng(7))
        with pytest.raises(ValueError):
            _solver(layout).solve(positions, rssi)

    def test_shape_mismatch(self):
        layout = ParameterLayout(2, True, True, False)
        with pytest.raises(ValueError):
            _solver(layout).solve(np.zeros((4, 3)), np.zeros(4))

    def test_missing_constants(self):
        with pytest.raises(ValueError):
            MinimalSampleSolver(ParameterLayout(2, False, True, False), FREQUENCY)
        with pytest.raises(ValueError):
            MinimalSampleSolver(ParameterLayout(2, True, False, False), FREQUENCY)
        with pytest.raises(ValueError):
            MinimalSampleSolver(
                ParameterLayout(2, False, False, False), FREQUENCY,
                initial_position=[0.0, 0.0], initial_power_dbm=0.0,
            )
