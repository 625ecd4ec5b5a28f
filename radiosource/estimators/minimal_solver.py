"""
Minimal-sample solver for the RSSI attenuation model.

Given a handful of readings (at least one more than the number of free
unknowns) the solver returns one full parameter set that explains them, or
raises DegenerateSampleError when the sample cannot determine one.

Two regimes:

* Position fixed: the model is linear in the free unknowns once written in
  the log domain,

      rssi_i - n*G(f) + 5*n*log10(d_i²) = Pte           (power free)
      rssi_i - Pte = n * (G(f) - 5*log10(d_i²))         (path loss free)

  and is solved with a single linear least-squares step.

* Position free: the model is nonlinear and solved with Levenberg-Marquardt.
  For a given path-loss exponent, squared distances are linear in the
  unknowns after the substitution s = ||p||²

      -2 x_i·p + s - K a_i = -||x_i||²,   a_i = 10^(-rssi_i / (5n))

  (Fang-style linearisation, K absorbs the transmitted power), which gives a
  closed-form seed with the configured exponent. That seed is exact when the
  exponent is not estimated. LM falls back to the reading centroid or the
  configured initial position as a second seed.

The redundant equation of a minimal sample is used as a consistency check:
a sample whose own residuals exceed the consensus threshold contains an
outlier and is discarded.
"""

import logging
from typing import List, Optional

import numpy as np

from radiosource.errors import DegenerateSampleError
from radiosource.estimators.nonlinear_least_squares import levenberg_marquardt
from radiosource.rf.attenuation import (
    predict_rssi,
    rssi_jacobian,
    wavelength_gain_db,
)
from radiosource.types import ParameterLayout, SourceHypothesis
from radiosource.utils.geometry import centroid, check_reading_geometry

logger = logging.getLogger(__name__)

# Condition number above which a linearised system is considered singular
MAX_CONDITION_NUMBER = 1e12


class MinimalSampleSolver:
    """
    Solve the attenuation equations of a small reading sample.

    Disabled unknowns are held at the configured constants. The solver holds
    no per-sample state and may be reused across consensus iterations.

    Attributes:
        layout: Free-parameter layout.
        frequency: Carrier frequency in Hz.
        initial_position: Fixed position (position disabled) or LM seed.
        initial_power_dbm: Fixed transmitted power when power is disabled.
        initial_path_loss: Fixed path-loss exponent, or its seed when free.
        consistency_threshold: Maximum |residual| (dB) allowed on the sample
            readings, or None to skip the check.
        max_iter: Iteration bound of the local nonlinear solve.

    Example:
        >>> layout = ParameterLayout(2, estimate_position=False, estimate_power=True)
        >>> solver = MinimalSampleSolver(layout, 2.4e9, initial_position=[0.0, 0.0])
        >>> positions = np.array([[10.0, 0.0], [0.0, 20.0]])
        >>> rssi = predict_rssi(np.zeros(2), -10.0, 2.0, positions, 2.4e9)
        >>> round(solver.solve(positions, rssi).transmitted_power_dbm, 6)
        -10.0
    """

    def __init__(
        self,
        layout: ParameterLayout,
        frequency: float,
        initial_position: Optional[np.ndarray] = None,
        initial_power_dbm: Optional[float] = None,
        initial_path_loss: float = 2.0,
        consistency_threshold: Optional[float] = None,
        max_iter: int = 100,
    ):
        if layout.n_unknowns == 0:
            raise ValueError("At least one unknown must be enabled")
        if not layout.estimate_position and initial_position is None:
            raise ValueError("initial_position is required when position is not estimated")
        if not layout.estimate_power and initial_power_dbm is None:
            raise ValueError("initial_power_dbm is required when power is not estimated")

        self.layout = layout
        self.frequency = float(frequency)
        self.initial_position = (
            None if initial_position is None else np.asarray(initial_position, dtype=float)
        )
        self.initial_power_dbm = initial_power_dbm
        self.initial_path_loss = float(initial_path_loss)
        self.consistency_threshold = consistency_threshold
        self.max_iter = max_iter
        self._gain = wavelength_gain_db(self.frequency)

    def solve(self, positions: np.ndarray, rssi: np.ndarray) -> SourceHypothesis:
        """
        Solve for the parameters explaining a sample of readings.

        Args:
            positions: Reading positions of the sample, shape (m, D).
            rssi: RSSI values of the sample in dBm, shape (m,).

        Returns:
            Full SourceHypothesis (disabled unknowns at their constants).

        Raises:
            ValueError: If the sample is smaller than the minimal size.
            DegenerateSampleError: If the sample geometry is degenerate, the
                system is singular, the solve diverges or the sample is
                inconsistent.
        """
        positions = np.atleast_2d(np.asarray(positions, dtype=float))
        rssi = np.asarray(rssi, dtype=float)
        layout = self.layout

        if positions.shape != (len(rssi), layout.dimensions):
            raise ValueError(
                f"positions must have shape ({len(rssi)}, {layout.dimensions}), "
                f"got {positions.shape}"
            )
        if len(rssi) < layout.min_readings:
            raise ValueError(
                f"Sample needs at least {layout.min_readings} readings, got {len(rssi)}"
            )

        if layout.estimate_position:
            is_valid, message = check_reading_geometry(positions)
            if not is_valid:
                raise DegenerateSampleError(message)
            hypothesis = self._solve_nonlinear(positions, rssi)
        else:
            hypothesis = self._solve_log_linear(self.initial_position, positions, rssi)

        self._check(hypothesis, positions, rssi)
        return hypothesis

    def _fixed(self, position: Optional[np.ndarray] = None) -> SourceHypothesis:
        if position is None:
            position = (
                self.initial_position
                if self.initial_position is not None
                else np.zeros(self.layout.dimensions)
            )
        power = self.initial_power_dbm if self.initial_power_dbm is not None else 0.0
        return SourceHypothesis(position, power, self.initial_path_loss)

    def _solve_log_linear(
        self, position: np.ndarray, positions: np.ndarray, rssi: np.ndarray
    ) -> SourceHypothesis:
        """Solve power and/or path loss exactly for a given source position."""
        layout = self.layout
        fixed = self._fixed(position)
        diff = positions - position
        sqr_distance = np.einsum("ij,ij->i", diff, diff)
        if np.any(sqr_distance <= 0.0):
            raise DegenerateSampleError("A reading coincides with the source position")

        # rssi = Pte + n * g_i, g_i = G(f) - 5*log10(d_i²)
        g = self._gain - 5.0 * np.log10(sqr_distance)

        if not layout.estimate_power and not layout.estimate_path_loss:
            return fixed

        if layout.estimate_power and not layout.estimate_path_loss:
            power = float(np.mean(rssi - fixed.path_loss_exponent * g))
            return SourceHypothesis(position, power, fixed.path_loss_exponent)

        if layout.estimate_path_loss and not layout.estimate_power:
            A = g[:, np.newaxis]
            b = rssi - fixed.transmitted_power_dbm
        else:
            A = np.column_stack([np.ones_like(g), g])
            b = rssi

        x, _, rank, _ = np.linalg.lstsq(A, b, rcond=None)
        if rank < A.shape[1]:
            raise DegenerateSampleError("Log-domain system is rank deficient")

        if layout.estimate_power:
            return SourceHypothesis(position, x[0], x[1])
        return SourceHypothesis(position, fixed.transmitted_power_dbm, x[0])

    def _linearized_position(self, positions: np.ndarray, rssi: np.ndarray) -> Optional[np.ndarray]:
        """Closed-form position seed for the configured path-loss exponent, or None."""
        layout = self.layout
        n = self.initial_path_loss
        center = positions.mean(axis=0)
        x = positions - center
        sqr_norm = np.einsum("ij,ij->i", x, x)

        if layout.estimate_power:
            # d_i² = K * a_i, rescaled so that max(a_i) = 1
            log_a = -rssi / (5.0 * n)
            a = np.power(10.0, log_a - np.max(log_a))
            H = np.column_stack([-2.0 * x, np.ones(len(rssi)), -a])
            y = -sqr_norm
        else:
            sqr_distance = np.power(
                10.0, (self.initial_power_dbm + n * self._gain - rssi) / (5.0 * n)
            )
            H = np.column_stack([-2.0 * x, np.ones(len(rssi))])
            y = sqr_distance - sqr_norm

        if not np.all(np.isfinite(H)) or not np.all(np.isfinite(y)):
            return None
        if np.linalg.cond(H.T @ H) > MAX_CONDITION_NUMBER:
            return None

        solution = np.linalg.lstsq(H, y, rcond=None)[0]
        position = solution[:layout.dimensions] + center
        if not np.all(np.isfinite(position)):
            return None
        return position

    def _seeds(self, positions: np.ndarray, rssi: np.ndarray) -> List[np.ndarray]:
        seeds = []
        linearized = self._linearized_position(positions, rssi)
        if linearized is not None:
            seeds.append(linearized)
        if self.initial_position is not None:
            seeds.append(self.initial_position)
        else:
            seeds.append(centroid(positions))
        return seeds

    def _solve_nonlinear(self, positions: np.ndarray, rssi: np.ndarray) -> SourceHypothesis:
        layout = self.layout
        fixed = self._fixed()
        frequency = self.frequency

        def h(x):
            candidate = layout.unpack(x, fixed)
            return predict_rssi(
                candidate.position,
                candidate.transmitted_power_dbm,
                candidate.path_loss_exponent,
                positions,
                frequency,
            )

        def jacobian(x):
            return rssi_jacobian(layout.unpack(x, fixed), layout, positions, frequency)

        failure = "No usable seed"
        for seed in self._seeds(positions, rssi):
            try:
                start = self._solve_log_linear(seed, positions, rssi)
            except DegenerateSampleError as e:
                failure = str(e)
                continue

            result = levenberg_marquardt(
                h, jacobian, rssi, layout.pack(start),
                max_iter=self.max_iter, return_covariance=False,
            )
            if not result.converged:
                failure = f"Local solve did not converge after {result.iterations} iterations"
                continue

            hypothesis = layout.unpack(result.x, fixed)
            if self._is_consistent(hypothesis, positions, rssi):
                return hypothesis
            failure = "Sample is inconsistent"

        raise DegenerateSampleError(failure)

    def _is_consistent(
        self, hypothesis: SourceHypothesis, positions: np.ndarray, rssi: np.ndarray
    ) -> bool:
        if not hypothesis.is_finite():
            return False
        if self.consistency_threshold is None:
            return True
        predicted = predict_rssi(
            hypothesis.position,
            hypothesis.transmitted_power_dbm,
            hypothesis.path_loss_exponent,
            positions,
            self.frequency,
        )
        residuals = rssi - predicted
        return bool(np.all(np.abs(residuals) <= self.consistency_threshold))

    def _check(self, hypothesis: SourceHypothesis, positions: np.ndarray, rssi: np.ndarray) -> None:
        if not hypothesis.is_finite():
            raise DegenerateSampleError("Solution contains non-finite values")
        if hypothesis.path_loss_exponent <= 0.0:
            raise DegenerateSampleError(
                f"Non-physical path-loss exponent {hypothesis.path_loss_exponent}"
            )

        J = rssi_jacobian(hypothesis, self.layout, positions, self.frequency)
        if np.linalg.matrix_rank(J) < self.layout.n_unknowns:
            raise DegenerateSampleError("Jacobian is rank deficient at the solution")

        if not self._is_consistent(hypothesis, positions, rssi):
            raise DegenerateSampleError(
                f"Sample residuals exceed {self.consistency_threshold} dB"
            )
