"""Robust radio source localization.

This package estimates the position, transmitted power and path-loss
exponent of a radio emitter from located ranging and RSSI readings:
- rf: Reading types, propagation models and lateration solvers
- estimators: Nonlinear least squares and the robust consensus engine
- radiosource: Robust ranging, RSSI and combined radio source estimators
"""

__version__ = "0.1.0"
