"""
Numerical estimators for radio source localization.

Available estimators:
    - Nonlinear Least Squares (Levenberg-Marquardt with covariance)
    - Robust consensus (RANSAC, MSAC, PROSAC, LMedS, PROMedS)
"""

from radioloc.estimators.consensus import (
    DEFAULT_ROBUST_METHOD,
    ConsensusEngine,
    ConsensusResult,
    InliersData,
    RobustEstimatorMethod,
    compute_iterations,
)
from radioloc.estimators.nonlinear_least_squares import (
    NonlinearLSResult,
    levenberg_marquardt,
)

__all__ = [
    # Nonlinear LS
    "levenberg_marquardt",
    "NonlinearLSResult",
    # Robust consensus
    "RobustEstimatorMethod",
    "DEFAULT_ROBUST_METHOD",
    "ConsensusEngine",
    "ConsensusResult",
    "InliersData",
    "compute_iterations",
]
