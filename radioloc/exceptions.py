"""
Exception hierarchy for radio source estimation.

Two layers are kept apart:

    - Numerical errors (NumericalError and subclasses) are raised by the
      solvers in radioloc.estimators and radioloc.rf.lateration.
    - Estimator errors (RadioSourceError and subclasses) are the only errors
      a caller of a radio source estimator ever sees. Numerical errors are
      translated into them at the estimator boundary.

Invalid configuration values are reported with ValueError, as everywhere
else in the package.
"""


class RadioSourceError(Exception):
    """Base class for errors raised by radio source estimators."""


class LockedError(RadioSourceError):
    """Estimator is locked because an estimation is in progress."""


class NotReadyError(RadioSourceError):
    """Estimator is not ready to start an estimation."""


class RobustEstimatorError(RadioSourceError):
    """Robust estimation could not produce a solution."""


class NumericalError(Exception):
    """Base class for errors raised by numerical solvers."""


class FittingError(NumericalError):
    """Nonlinear least squares fit failed."""


class LaterationError(NumericalError):
    """Lateration system is degenerate or cannot be solved."""


class ConsensusError(NumericalError):
    """Consensus engine could not find any model."""


class ConsensusNotReadyError(ConsensusError):
    """Consensus engine was invoked without enough samples."""
