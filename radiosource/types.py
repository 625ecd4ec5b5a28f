"""Type definitions and data structures for radio source estimation.

This module defines the value objects shared by the attenuation model, the
robust estimators and the survey simulator:

- RadioSource: identity of the emitter (WiFi access point, BLE beacon).
- Reading: a single RSSI observation at a known position.
- SourceHypothesis: one full candidate parameter set.
- ParameterLayout: schema mapping the free unknowns onto a flat vector.
- EstimatedRadioSource: the result of a successful estimation.
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from radiosource.rf.attenuation import dbm_to_power

# Bluetooth LE and 2.4 GHz WiFi share the ISM band
DEFAULT_BEACON_FREQUENCY = 2.4e9  # Hz

SUPPORTED_DIMENSIONS = (2, 3)


def _as_position(value, name: str = "position", require_finite: bool = True) -> np.ndarray:
    """Convert a coordinate sequence into a read-only float array of shape (D,)."""
    position = np.array(value, dtype=float)
    if position.ndim != 1 or position.shape[0] not in SUPPORTED_DIMENSIONS:
        raise ValueError(
            f"{name} must be a 2D or 3D coordinate vector, got shape {position.shape}"
        )
    if require_finite and not np.all(np.isfinite(position)):
        raise ValueError(f"{name} contains non-finite values: {position}")
    position.flags.writeable = False
    return position


@dataclass(frozen=True)
class RadioSource:
    """
    Identity of a radio emitter.

    Attributes:
        identifier: Unique identifier (BSSID for WiFi, UUID/MAC for beacons).
        frequency: Carrier frequency in Hz.
        name: Optional human readable name (SSID for WiFi).
        kind: Emitter technology, "wifi" or "beacon".

    Example:
        >>> ap = RadioSource.wifi("00:11:22:33:44:55", 2.412e9, ssid="lab")
        >>> ap.frequency
        2412000000.0
    """

    identifier: str
    frequency: float
    name: Optional[str] = None
    kind: str = "wifi"

    def __post_init__(self) -> None:
        if not isinstance(self.identifier, str) or not self.identifier:
            raise ValueError(f"identifier must be a non-empty string, got {self.identifier!r}")
        if not np.isfinite(self.frequency) or self.frequency <= 0:
            raise ValueError(f"frequency must be positive (Hz), got {self.frequency}")
        if self.kind not in ("wifi", "beacon"):
            raise ValueError(f"kind must be 'wifi' or 'beacon', got {self.kind!r}")
        object.__setattr__(self, "frequency", float(self.frequency))

    @classmethod
    def wifi(cls, bssid: str, frequency: float, ssid: Optional[str] = None) -> "RadioSource":
        """Create a WiFi access point identity."""
        return cls(identifier=bssid, frequency=frequency, name=ssid, kind="wifi")

    @classmethod
    def beacon(
        cls,
        identifier: str,
        frequency: float = DEFAULT_BEACON_FREQUENCY,
        name: Optional[str] = None,
    ) -> "RadioSource":
        """Create a Bluetooth LE beacon identity."""
        return cls(identifier=identifier, frequency=frequency, name=name, kind="beacon")


@dataclass(frozen=True, eq=False)
class Reading:
    """
    One RSSI observation of a radio source at a known position.

    Attributes:
        source: Radio source the reading belongs to.
        rssi: Received signal strength in dBm.
        position: Measurement position, shape (2,) or (3,). Stored read-only.
        rssi_std: Optional standard deviation of the RSSI value in dB.

    Example:
        >>> ap = RadioSource.wifi("bssid", 2.4e9)
        >>> reading = Reading(ap, rssi=-62.5, position=[1.0, 2.0, 0.5])
        >>> reading.dimensions
        3
    """

    source: RadioSource
    rssi: float
    position: np.ndarray
    rssi_std: Optional[float] = None

    def __post_init__(self) -> None:
        if not isinstance(self.source, RadioSource):
            raise TypeError(f"source must be a RadioSource, got {type(self.source)}")
        if not np.isfinite(self.rssi):
            raise ValueError(f"rssi must be finite, got {self.rssi}")
        if self.rssi_std is not None and not self.rssi_std > 0:
            raise ValueError(f"rssi_std must be positive, got {self.rssi_std}")
        object.__setattr__(self, "rssi", float(self.rssi))
        object.__setattr__(self, "position", _as_position(self.position))

    @property
    def dimensions(self) -> int:
        """Dimensionality D of the measurement position."""
        return self.position.shape[0]


@dataclass(frozen=True, eq=False)
class SourceHypothesis:
    """Full candidate parameter set of a radio source.

    Attributes:
        position: Source position, shape (D,).
        transmitted_power_dbm: Equivalent transmitted power in dBm.
        path_loss_exponent: Path-loss exponent n.
    """

    position: np.ndarray
    transmitted_power_dbm: float
    path_loss_exponent: float

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "position", _as_position(self.position, require_finite=False)
        )
        object.__setattr__(self, "transmitted_power_dbm", float(self.transmitted_power_dbm))
        object.__setattr__(self, "path_loss_exponent", float(self.path_loss_exponent))

    def is_finite(self) -> bool:
        return bool(
            np.all(np.isfinite(self.position))
            and np.isfinite(self.transmitted_power_dbm)
            and np.isfinite(self.path_loss_exponent)
        )


@dataclass(frozen=True)
class ParameterLayout:
    """
    Schema of the free-parameter vector.

    The unknowns are laid out as ``[position (D), power (1), path loss (1)]``
    with disabled blocks removed. Disabled quantities keep the value supplied
    by the fixed hypothesis when a vector is unpacked.

    Attributes:
        dimensions: Dimensionality D of positions (2 or 3).
        estimate_position: Whether the source position is free.
        estimate_power: Whether the transmitted power is free.
        estimate_path_loss: Whether the path-loss exponent is free.

    Example:
        >>> layout = ParameterLayout(3, True, True, False)
        >>> layout.n_unknowns, layout.min_readings
        (4, 5)
    """

    dimensions: int
    estimate_position: bool = True
    estimate_power: bool = True
    estimate_path_loss: bool = False

    def __post_init__(self) -> None:
        if self.dimensions not in SUPPORTED_DIMENSIONS:
            raise ValueError(f"dimensions must be 2 or 3, got {self.dimensions}")

    @property
    def n_unknowns(self) -> int:
        """Number u of free unknowns."""
        return (
            self.dimensions * int(self.estimate_position)
            + int(self.estimate_power)
            + int(self.estimate_path_loss)
        )

    @property
    def min_readings(self) -> int:
        """Minimal sample size: one equation more than unknowns."""
        return self.n_unknowns + 1

    @property
    def position_slice(self) -> Optional[slice]:
        if not self.estimate_position:
            return None
        return slice(0, self.dimensions)

    @property
    def power_index(self) -> Optional[int]:
        if not self.estimate_power:
            return None
        return self.dimensions * int(self.estimate_position)

    @property
    def path_loss_index(self) -> Optional[int]:
        if not self.estimate_path_loss:
            return None
        return self.dimensions * int(self.estimate_position) + int(self.estimate_power)

    def pack(self, hypothesis: SourceHypothesis) -> np.ndarray:
        """Extract the free unknowns of a hypothesis into a flat vector."""
        x = np.empty(self.n_unknowns)
        if self.estimate_position:
            x[self.position_slice] = hypothesis.position
        if self.estimate_power:
            x[self.power_index] = hypothesis.transmitted_power_dbm
        if self.estimate_path_loss:
            x[self.path_loss_index] = hypothesis.path_loss_exponent
        return x

    def unpack(self, x: np.ndarray, fixed: SourceHypothesis) -> SourceHypothesis:
        """Build a full hypothesis from free unknowns plus fixed values."""
        x = np.asarray(x, dtype=float)
        if x.shape != (self.n_unknowns,):
            raise ValueError(f"expected {self.n_unknowns} unknowns, got shape {x.shape}")
        position = x[self.position_slice] if self.estimate_position else fixed.position
        power = x[self.power_index] if self.estimate_power else fixed.transmitted_power_dbm
        path_loss = (
            x[self.path_loss_index] if self.estimate_path_loss else fixed.path_loss_exponent
        )
        return SourceHypothesis(position, power, path_loss)


@dataclass(frozen=True, eq=False)
class EstimatedRadioSource:
    """
    Radio source recovered by an estimator.

    Attributes:
        source: Identity passed through from the readings.
        position: Estimated position, or None when unavailable.
        transmitted_power_dbm: Estimated equivalent transmitted power (dBm).
        path_loss_exponent: Estimated (or configured) path-loss exponent.
        position_covariance: D x D position covariance, or None.
        transmitted_power_variance: Variance of the power in dB², or None.
        path_loss_exponent_variance: Variance of the path-loss exponent, or None.
    """

    source: RadioSource
    position: Optional[np.ndarray]
    transmitted_power_dbm: float
    path_loss_exponent: float
    position_covariance: Optional[np.ndarray] = None
    transmitted_power_variance: Optional[float] = None
    path_loss_exponent_variance: Optional[float] = None
    meta: dict = field(default_factory=dict, compare=False)

    @property
    def transmitted_power(self) -> float:
        """Estimated transmitted power in mW."""
        return dbm_to_power(self.transmitted_power_dbm)

    @property
    def transmitted_power_std(self) -> Optional[float]:
        if self.transmitted_power_variance is None:
            return None
        return float(np.sqrt(self.transmitted_power_variance))

    @property
    def path_loss_exponent_std(self) -> Optional[float]:
        if self.path_loss_exponent_variance is None:
            return None
        return float(np.sqrt(self.path_loss_exponent_variance))

    @property
    def position_std(self) -> Optional[np.ndarray]:
        """Per-axis position standard deviation."""
        if self.position_covariance is None:
            return None
        return np.sqrt(np.diag(self.position_covariance))
