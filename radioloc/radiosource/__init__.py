"""
Robust radio source estimators.

Estimate the position, transmitted power and path-loss exponent of a radio
source from ranging, RSSI or combined readings while rejecting outliers.

Submodules:
    fitters: Non-robust fits used for candidate subsets and refinement
    base: Configuration, listener and robust estimator base class
    robust: Ranging, RSSI and combined robust estimators
    sequential: Position-then-power sequential estimator
"""

from radioloc.radiosource.base import (
    RadioSourceEstimator,
    RadioSourceEstimatorListener,
    RobustEstimatorConfig,
    RobustRadioSourceEstimator,
    Solution,
)
from radioloc.radiosource.fitters import (
    RadioSourceFit,
    fit_ranging,
    fit_ranging_and_rssi,
    fit_rssi,
    ranging_and_rssi_min_readings,
    ranging_min_readings,
    rssi_min_readings,
)
from radioloc.radiosource.robust import (
    RobustRangingAndRssiRadioSourceEstimator,
    RobustRangingRadioSourceEstimator,
    RobustRssiRadioSourceEstimator,
    create,
)
from radioloc.radiosource.sequential import (
    SequentialEstimatorConfig,
    SequentialRobustRangingAndRssiRadioSourceEstimator,
)

__all__ = [
    # Framework
    "Solution",
    "RadioSourceEstimator",
    "RadioSourceEstimatorListener",
    "RobustEstimatorConfig",
    "RobustRadioSourceEstimator",
    # Fits
    "RadioSourceFit",
    "fit_ranging",
    "fit_rssi",
    "fit_ranging_and_rssi",
    "ranging_min_readings",
    "rssi_min_readings",
    "ranging_and_rssi_min_readings",
    # Robust estimators
    "RobustRangingRadioSourceEstimator",
    "RobustRssiRadioSourceEstimator",
    "RobustRangingAndRssiRadioSourceEstimator",
    "create",
    # Sequential
    "SequentialEstimatorConfig",
    "SequentialRobustRangingAndRssiRadioSourceEstimator",
]
