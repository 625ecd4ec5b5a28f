"""
Signal attenuation model for RSSI-based radio source estimation.

The received power at a distance d from an isotropic emitter follows the
generalised Friis law

    Pr = Pte * k / d^n,        k = (c / (4*pi*f))^n

where Pte is the equivalent transmitted power (transmitter power times both
antenna gains), f the carrier frequency, c the speed of light and n the
path-loss exponent (n = 2 in free space). For numerical accuracy everything
is evaluated in the logarithmic domain:

    Pr(dBm) = Pte(dBm) + n * G(f) - 10 * n * log10(d)
            = Pte(dBm) + n * G(f) - 5 * n * log10(d²)

with G(f) = 10 * log10(c / (4*pi*f)). Residuals follow the convention
r = observed - predicted.

All functions are pure and vectorised over readings; they are evaluated
once per reading and per consensus iteration.
"""

from typing import Union

import numpy as np

# Physical constants
SPEED_OF_LIGHT = 299792458.0  # m/s

LN_10 = np.log(10.0)

# Squared distances below this value are treated as a reading located on the
# source itself (log-distance model is singular there)
EPSILON_SQR_DISTANCE = 1e-20  # m²

ArrayLike = Union[float, np.ndarray]


def dbm_to_power(dbm: ArrayLike) -> ArrayLike:
    """
    Convert power from dBm to linear milliwatts.

    Args:
        dbm: Power in dBm.

    Returns:
        Power in mW, 10^(dBm / 10).

    Example:
        >>> float(dbm_to_power(0.0))
        1.0
        >>> float(dbm_to_power(-30.0))
        0.001
    """
    return np.power(10.0, np.asarray(dbm, dtype=float) / 10.0)[()]


def power_to_dbm(mw: ArrayLike) -> ArrayLike:
    """
    Convert power from linear milliwatts to dBm.

    Args:
        mw: Power in mW. Must be strictly positive.

    Returns:
        Power in dBm, 10 * log10(mW).

    Raises:
        ValueError: If any value is zero or negative.

    Example:
        >>> float(power_to_dbm(1.0))
        0.0
    """
    mw = np.asarray(mw, dtype=float)
    if np.any(mw <= 0.0):
        raise ValueError(f"Linear power must be positive, got {mw}")
    return (10.0 * np.log10(mw))[()]


def wavelength_gain_db(frequency: float, c: float = SPEED_OF_LIGHT) -> float:
    """
    Frequency dependent term G(f) = 10*log10(c / (4*pi*f)) in dB.

    Multiplied by the path-loss exponent this is the constant part of the
    received power in dBm (10*log10(k)).

    Args:
        frequency: Carrier frequency in Hz.
        c: Speed of light in m/s.

    Returns:
        G(f) in dB.

    Example:
        >>> round(wavelength_gain_db(2.4e9), 2)
        -20.03
    """
    if frequency <= 0:
        raise ValueError(f"Frequency must be positive, got {frequency}")
    return float(10.0 * np.log10(c / (4.0 * np.pi * frequency)))


def received_power(
    transmitted_power: ArrayLike,
    distance: ArrayLike,
    frequency: float,
    path_loss_exp: float = 2.0,
    c: float = SPEED_OF_LIGHT,
) -> ArrayLike:
    """
    Received power in linear units, Pr = Pte * k / d^n.

    Args:
        transmitted_power: Equivalent transmitted power in mW.
        distance: Distance between emitter and receiver in meters.
        frequency: Carrier frequency in Hz.
        path_loss_exp: Path-loss exponent n. Defaults to 2.0 (free space).
        c: Speed of light in m/s.

    Returns:
        Received power in mW.

    Example:
        >>> pr = received_power(1.0, 10.0, 2.4e9)
        >>> round(float(power_to_dbm(pr)), 2)
        -60.05
    """
    k = (c / (4.0 * np.pi * frequency)) ** path_loss_exp
    distance = np.asarray(distance, dtype=float)
    return (np.asarray(transmitted_power, dtype=float) * k / distance ** path_loss_exp)[()]


def _sqr_distances(position: np.ndarray, reading_positions: np.ndarray) -> np.ndarray:
    diff = np.asarray(position, dtype=float) - np.atleast_2d(reading_positions)
    return np.einsum("ij,ij->i", diff, diff)


def predict_rssi(
    position: np.ndarray,
    transmitted_power_dbm: float,
    path_loss_exponent: float,
    reading_positions: np.ndarray,
    frequency: float,
) -> np.ndarray:
    """
    Predict the RSSI observed at each reading position.

    Args:
        position: Source position, shape (D,).
        transmitted_power_dbm: Equivalent transmitted power in dBm.
        path_loss_exponent: Path-loss exponent n.
        reading_positions: Reading positions, shape (N, D) or (D,).
        frequency: Carrier frequency in Hz.

    Returns:
        Predicted RSSI in dBm, shape (N,). Readings located exactly on the
        source predict +inf.

    Example:
        >>> rssi = predict_rssi(np.zeros(2), 0.0, 2.0, np.array([[10.0, 0.0]]), 2.4e9)
        >>> round(float(rssi[0]), 2)
        -60.05
    """
    sqr_distance = _sqr_distances(position, reading_positions)
    gain = wavelength_gain_db(frequency)
    with np.errstate(divide="ignore"):
        log_sqr_distance = np.log10(sqr_distance)
    return (
        transmitted_power_dbm
        + path_loss_exponent * gain
        - 5.0 * path_loss_exponent * log_sqr_distance
    )


def rssi_residuals(
    hypothesis,
    reading_positions: np.ndarray,
    rssi: np.ndarray,
    frequency: float,
) -> np.ndarray:
    """
    Signed residuals r = observed - predicted for every reading.

    Args:
        hypothesis: SourceHypothesis (position, power in dBm, path loss).
        reading_positions: Reading positions, shape (N, D).
        rssi: Observed RSSI values in dBm, shape (N,).
        frequency: Carrier frequency in Hz.

    Returns:
        Residuals in dB, shape (N,).
    """
    predicted = predict_rssi(
        hypothesis.position,
        hypothesis.transmitted_power_dbm,
        hypothesis.path_loss_exponent,
        reading_positions,
        frequency,
    )
    return np.asarray(rssi, dtype=float) - predicted


def rssi_jacobian(
    hypothesis,
    layout,
    reading_positions: np.ndarray,
    frequency: float,
) -> np.ndarray:
    """
    Jacobian of the predicted RSSI with respect to the free unknowns.

    For a reading at x_i with d_i² = ||p - x_i||²:

        ∂Pr/∂p   = -10 * n * (p - x_i) / (ln(10) * d_i²)
        ∂Pr/∂Pte = 1
        ∂Pr/∂n   = G(f) - 5 * log10(d_i²)

    Rows of readings located on the source are left at zero for the position
    block, which makes the normal equations rank deficient rather than
    non-finite.

    Args:
        hypothesis: SourceHypothesis at which the Jacobian is evaluated.
        layout: ParameterLayout selecting the free unknowns.
        reading_positions: Reading positions, shape (N, D).
        frequency: Carrier frequency in Hz.

    Returns:
        Jacobian matrix, shape (N, u).
    """
    reading_positions = np.atleast_2d(reading_positions)
    n_readings = reading_positions.shape[0]
    J = np.zeros((n_readings, layout.n_unknowns))

    diff = hypothesis.position - reading_positions
    sqr_distance = np.einsum("ij,ij->i", diff, diff)
    singular = sqr_distance < EPSILON_SQR_DISTANCE
    safe_sqr_distance = np.where(singular, 1.0, sqr_distance)
    n = hypothesis.path_loss_exponent

    if layout.estimate_position:
        block = -10.0 * n * diff / (LN_10 * safe_sqr_distance[:, np.newaxis])
        block[singular, :] = 0.0
        J[:, layout.position_slice] = block
    if layout.estimate_power:
        J[:, layout.power_index] = 1.0
    if layout.estimate_path_loss:
        column = wavelength_gain_db(frequency) - 5.0 * np.log10(safe_sqr_distance)
        column[singular] = 0.0
        J[:, layout.path_loss_index] = column

    return J


def rssi_to_distance(
    rssi_dbm: ArrayLike,
    transmitted_power_dbm: float,
    frequency: float,
    path_loss_exp: float = 2.0,
) -> ArrayLike:
    """
    Invert the attenuation model to obtain a distance from an RSSI value.

        d = 10^((Pte + n*G(f) - Pr) / (10*n))

    Args:
        rssi_dbm: Received signal strength in dBm.
        transmitted_power_dbm: Equivalent transmitted power in dBm.
        frequency: Carrier frequency in Hz.
        path_loss_exp: Path-loss exponent n.

    Returns:
        Distance in meters.
    """
    if path_loss_exp <= 0:
        raise ValueError(f"Path-loss exponent must be positive, got {path_loss_exp}")
    exponent = (
        transmitted_power_dbm
        + path_loss_exp * wavelength_gain_db(frequency)
        - np.asarray(rssi_dbm, dtype=float)
    ) / (10.0 * path_loss_exp)
    return np.power(10.0, exponent)[()]
