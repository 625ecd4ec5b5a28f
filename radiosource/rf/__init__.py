"""
RF attenuation module.

This module implements the log-distance (generalised Friis) attenuation model
used to relate the parameters of a radio source to the RSSI observed at known
reading positions.

Submodules:
    attenuation: dBm/mW conversion, RSSI prediction, residuals and Jacobian
"""

from radiosource.rf.attenuation import (
    SPEED_OF_LIGHT,
    dbm_to_power,
    power_to_dbm,
    predict_rssi,
    received_power,
    rssi_jacobian,
    rssi_residuals,
    rssi_to_distance,
    wavelength_gain_db,
)

__all__ = [
    # Constants
    "SPEED_OF_LIGHT",
    # Unit conversion
    "dbm_to_power",
    "power_to_dbm",
    # Attenuation model
    "wavelength_gain_db",
    "received_power",
    "predict_rssi",
    "rssi_residuals",
    "rssi_jacobian",
    "rssi_to_distance",
]
