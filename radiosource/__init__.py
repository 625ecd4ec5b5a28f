"""Robust radio source estimation from RSSI surveys.

This package estimates the position, equivalent transmitted power and
path-loss exponent of a WiFi access point or Bluetooth beacon from received
signal strength readings taken at known locations:
- rf: Log-distance attenuation model and dBm/mW conversions
- estimators: Minimal-sample solver, robust consensus search
  (RANSAC, MSAC, LMedS, PROSAC, PROMedS), nonlinear refinement and the
  robust estimator facade
- sim: Synthetic RSSI survey generation with outliers
- utils: Geometry helpers for reading layouts
"""

__version__ = "0.1.0"
