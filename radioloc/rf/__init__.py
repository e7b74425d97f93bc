"""
RF (Radio Frequency) measurement module.

This module implements the reading types, propagation models and
lateration solvers used to locate radio sources.

Submodules:
    readings: Located ranging and RSSI readings, radio source types
    measurement_models: dBm conversions, isotropic path-loss model, residuals
    lateration: Linear and nonlinear lateration solvers
"""

from radioloc.rf.lateration import (
    NonlinearLaterationSolver,
    homogeneous_lateration,
    inhomogeneous_lateration,
)
from radioloc.rf.measurement_models import (
    SPEED_OF_LIGHT,
    dbm_to_power,
    isotropic_constant,
    power_to_dbm,
    ranging_residual,
    received_power,
    received_power_jacobian,
    rssi_residual,
    rssi_to_distance,
)
from radioloc.rf.readings import (
    LocatedRadioSource,
    RadioSource,
    RangingAndRssiReading,
    RangingReading,
    RssiReading,
    has_ranging,
    has_rssi,
)

__all__ = [
    # Readings
    "RadioSource",
    "RangingReading",
    "RssiReading",
    "RangingAndRssiReading",
    "LocatedRadioSource",
    "has_ranging",
    "has_rssi",
    # Measurement models
    "SPEED_OF_LIGHT",
    "dbm_to_power",
    "power_to_dbm",
    "isotropic_constant",
    "received_power",
    "received_power_jacobian",
    "rssi_to_distance",
    "ranging_residual",
    "rssi_residual",
    # Lateration
    "inhomogeneous_lateration",
    "homogeneous_lateration",
    "NonlinearLaterationSolver",
]
