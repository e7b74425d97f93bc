"""
Non-robust radio source fit solvers.

These solvers fit a radio source to every reading they are given and are
the building blocks of the robust estimators, which call them once per
candidate subset and once more on the final inlier set:

    - fit_ranging: position from distances (linear seed + nonlinear
      lateration with covariance)
    - fit_rssi: any combination of position, transmitted power and
      path-loss exponent from received power
    - fit_ranging_and_rssi: position from distances, then transmitted
      power and path-loss exponent from received power at that position

Parameter order of every covariance is [position (d), transmitted power,
path-loss exponent], restricted to the estimated parameters.

All solvers raise NumericalError subclasses on failure.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy.linalg import block_diag

from radioloc.estimators.nonlinear_least_squares import levenberg_marquardt
from radioloc.exceptions import FittingError
from radioloc.rf.lateration import (
    NonlinearLaterationSolver,
    homogeneous_lateration,
    inhomogeneous_lateration,
)
from radioloc.rf.measurement_models import received_power, received_power_jacobian
from radioloc.rf.readings import RangingAndRssiReading, RangingReading, RssiReading

DEFAULT_PATH_LOSS_EXPONENT = 2.0

# Used when a reading carries no standard deviation
FALLBACK_DISTANCE_STD = 1.0
FALLBACK_RSSI_STD = 1.0


@dataclass
class RadioSourceFit:
    """Result of a radio source fit.

    Attributes:
        position: Estimated (or fixed) source position, shape (d,).
        transmitted_power_dbm: Estimated (or fixed) transmitted power in dBm.
        path_loss_exponent: Estimated (or fixed) path-loss exponent.
        covariance: Covariance over the estimated parameters, or None.
        position_covariance: Covariance of the position, or None.
        chi_sq: Weighted sum of squared residuals.
    """

    position: np.ndarray
    transmitted_power_dbm: Optional[float]
    path_loss_exponent: float
    covariance: Optional[np.ndarray]
    position_covariance: Optional[np.ndarray]
    chi_sq: float = 0.0


# =============================================================================
# Minimum Number of Readings
# =============================================================================
def ranging_min_readings(dims: int) -> int:
    """Readings needed to laterate a position in `dims` dimensions."""
    return dims + 1


def rssi_min_readings(
    dims: int,
    position_estimation_enabled: bool = True,
    transmitted_power_estimation_enabled: bool = True,
    path_loss_estimation_enabled: bool = False,
) -> int:
    """Readings needed to fit the enabled RSSI parameters."""
    return (
        (dims if position_estimation_enabled else 0)
        + (1 if transmitted_power_estimation_enabled else 0)
        + (1 if path_loss_estimation_enabled else 0)
        + 1
    )


def ranging_and_rssi_min_readings(
    dims: int,
    transmitted_power_estimation_enabled: bool = True,
    path_loss_estimation_enabled: bool = False,
) -> int:
    """Readings needed to fit position plus the enabled RSSI parameters."""
    return (
        dims
        + (1 if transmitted_power_estimation_enabled else 0)
        + (1 if path_loss_estimation_enabled else 0)
        + 1
    )


# =============================================================================
# Helpers
# =============================================================================
def position_accuracy(position_covariance: np.ndarray) -> float:
    """Average one-sigma accuracy of a position covariance.

    Mean of the square roots of the covariance eigenvalues.
    """
    eigenvalues = np.linalg.eigvalsh(np.asarray(position_covariance, dtype=float))
    return float(np.mean(np.sqrt(np.clip(eigenvalues, 0.0, None))))


def distance_stds(
    readings: Sequence[RangingReading],
    use_reading_position_covariances: bool = True,
) -> np.ndarray:
    """Effective standard deviation of each distance.

    Combines the distance standard deviation with the receiver position
    accuracy as sqrt(σd² + σpos²) when position covariances are used.
    """
    stds = np.empty(len(readings))
    for i, reading in enumerate(readings):
        std = reading.distance_std if reading.distance_std else FALLBACK_DISTANCE_STD
        if use_reading_position_covariances and reading.position_covariance is not None:
            std = np.sqrt(std**2 + position_accuracy(reading.position_covariance) ** 2)
        stds[i] = std
    return stds


def _rssi_stds(readings: Sequence[RssiReading]) -> np.ndarray:
    return np.array(
        [r.rssi_std if r.rssi_std else FALLBACK_RSSI_STD for r in readings]
    )


def _check_dims(readings, min_readings: int) -> int:
    if len(readings) < min_readings:
        raise FittingError(f"Need at least {min_readings} readings, got {len(readings)}")
    dims = readings[0].dim
    if any(r.dim != dims for r in readings):
        raise ValueError("All readings must have the same dimensionality")
    return dims


# =============================================================================
# Ranging
# =============================================================================
def fit_ranging(
    readings: Sequence[RangingReading],
    initial_position: Optional[np.ndarray] = None,
    use_homogeneous_linear_solver: bool = True,
    use_reading_position_covariances: bool = True,
) -> RadioSourceFit:
    """
    Fit a source position to ranging readings.

    A linear lateration provides the initial position when none is given;
    the nonlinear solver then refines it and provides the position
    covariance.

    Args:
        readings: Ranging readings (at least d + 1).
        initial_position: Initial position, shape (d,). Optional.
        use_homogeneous_linear_solver: Use the homogeneous linear solver
            instead of the inhomogeneous one.
        use_reading_position_covariances: Inflate distance standard
            deviations with receiver position accuracy.

    Returns:
        RadioSourceFit with position and position covariance. Transmitted
        power is None.

    Raises:
        LaterationError: If the geometry is degenerate.
        FittingError: If there are too few readings or the fit fails.
    """
    if len(readings) == 0:
        raise FittingError("No readings")
    dims = _check_dims(readings, ranging_min_readings(readings[0].dim))

    positions = np.array([r.position for r in readings])
    distances = np.array([r.distance for r in readings])

    if initial_position is None:
        if use_homogeneous_linear_solver:
            position, _ = homogeneous_lateration(positions, distances)
        else:
            position, _ = inhomogeneous_lateration(positions, distances)
    else:
        position = np.asarray(initial_position, dtype=float)
        if position.shape != (dims,):
            raise ValueError(f"initial_position must have shape ({dims},), got {position.shape}")

    solver = NonlinearLaterationSolver(positions)
    position, info = solver.solve(
        distances,
        position,
        distance_stds=distance_stds(readings, use_reading_position_covariances),
    )
    return RadioSourceFit(
        position=position,
        transmitted_power_dbm=None,
        path_loss_exponent=DEFAULT_PATH_LOSS_EXPONENT,
        covariance=info["covariance"],
        position_covariance=info["covariance"],
        chi_sq=info["chi_sq"],
    )


# =============================================================================
# RSSI
# =============================================================================
def fit_rssi(
    readings: Sequence[RssiReading],
    initial_position: Optional[np.ndarray] = None,
    initial_transmitted_power_dbm: Optional[float] = None,
    initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
    position_estimation_enabled: bool = True,
    transmitted_power_estimation_enabled: bool = True,
    path_loss_estimation_enabled: bool = False,
) -> RadioSourceFit:
    """
    Fit the enabled source parameters to received power readings.

    Model for reading i (isotropic free space):
        Pr_i = 10*n*log10(k_i) + Pte - 5*n*log10(‖x - p_i‖²)

    Parameters that are not estimated keep their initial values. Missing
    initial values default to the centroid of the receiver positions and
    the mean received power.

    Args:
        readings: RSSI readings.
        initial_position: Initial (or fixed) source position, shape (d,).
        initial_transmitted_power_dbm: Initial (or fixed) power in dBm.
        initial_path_loss_exponent: Initial (or fixed) path-loss exponent.
        position_estimation_enabled: Estimate the position.
        transmitted_power_estimation_enabled: Estimate the power.
        path_loss_estimation_enabled: Estimate the path-loss exponent.

    Returns:
        RadioSourceFit with covariance over the estimated parameters.

    Raises:
        FittingError: If nothing is enabled, there are too few readings,
            or the fit fails.
    """
    if not (
        position_estimation_enabled
        or transmitted_power_estimation_enabled
        or path_loss_estimation_enabled
    ):
        raise FittingError("At least one parameter must be estimated")
    if len(readings) == 0:
        raise FittingError("No readings")

    dims = readings[0].dim
    _check_dims(
        readings,
        rssi_min_readings(
            dims,
            position_estimation_enabled,
            transmitted_power_estimation_enabled,
            path_loss_estimation_enabled,
        ),
    )

    positions = np.array([r.position for r in readings])
    rssi = np.array([r.rssi for r in readings])
    frequencies = np.array([r.source.frequency for r in readings])

    position0 = (
        np.mean(positions, axis=0)
        if initial_position is None
        else np.asarray(initial_position, dtype=float)
    )
    if position0.shape != (dims,):
        raise ValueError(f"initial_position must have shape ({dims},), got {position0.shape}")
    power0 = (
        float(np.mean(rssi))
        if initial_transmitted_power_dbm is None
        else float(initial_transmitted_power_dbm)
    )
    n0 = float(initial_path_loss_exponent)

    # Active columns of the full [position, power, n] Jacobian
    active = np.concatenate([
        np.full(dims, position_estimation_enabled),
        [transmitted_power_estimation_enabled, path_loss_estimation_enabled],
    ])

    def unpack(x):
        full = np.concatenate([position0, [power0, n0]])
        full[active] = x
        return full[:dims], full[dims], full[dims + 1]

    def h(x):
        position, power, n = unpack(x)
        sqr_distances = np.sum((position - positions) ** 2, axis=1)
        return received_power(power, sqr_distances, frequencies, n)

    def jac(x):
        position, _, n = unpack(x)
        return received_power_jacobian(position, positions, frequencies, n)[:, active]

    x0 = np.concatenate([position0, [power0, n0]])[active]
    result = levenberg_marquardt(h, jac, rssi, x0, weights=1.0 / _rssi_stds(readings) ** 2)

    if not np.all(np.isfinite(result.x)):
        raise FittingError("RSSI fit diverged")

    position, power, n = unpack(result.x)
    position_covariance = None
    if position_estimation_enabled:
        position_covariance = result.covariance[:dims, :dims]

    return RadioSourceFit(
        position=position,
        transmitted_power_dbm=float(power),
        path_loss_exponent=float(n),
        covariance=result.covariance,
        position_covariance=position_covariance,
        chi_sq=result.chi_sq,
    )


# =============================================================================
# Ranging and RSSI
# =============================================================================
def fit_ranging_and_rssi(
    readings: Sequence[RangingAndRssiReading],
    initial_position: Optional[np.ndarray] = None,
    initial_transmitted_power_dbm: Optional[float] = None,
    initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT,
    transmitted_power_estimation_enabled: bool = True,
    path_loss_estimation_enabled: bool = False,
    use_homogeneous_linear_solver: bool = True,
    use_reading_position_covariances: bool = True,
) -> RadioSourceFit:
    """
    Fit position from distances and power parameters from received power.

    The position comes from ranging; transmitted power and path-loss
    exponent are then fitted with the position held fixed. The covariance
    is block diagonal: position block from ranging followed by the power
    and path-loss block from the RSSI fit.

    Args:
        readings: Combined readings.
        initial_position: Initial position for lateration, shape (d,).
        initial_transmitted_power_dbm: Initial (or fixed) power in dBm.
        initial_path_loss_exponent: Initial (or fixed) path-loss exponent.
        transmitted_power_estimation_enabled: Estimate the power.
        path_loss_estimation_enabled: Estimate the path-loss exponent.
        use_homogeneous_linear_solver: Linear solver used to seed ranging.
        use_reading_position_covariances: Inflate distance standard
            deviations with receiver position accuracy.

    Returns:
        RadioSourceFit over [position, power?, n?].
    """
    if len(readings) == 0:
        raise FittingError("No readings")
    _check_dims(
        readings,
        ranging_and_rssi_min_readings(
            readings[0].dim,
            transmitted_power_estimation_enabled,
            path_loss_estimation_enabled,
        ),
    )

    ranging = fit_ranging(
        [r.to_ranging() for r in readings],
        initial_position=initial_position,
        use_homogeneous_linear_solver=use_homogeneous_linear_solver,
        use_reading_position_covariances=use_reading_position_covariances,
    )

    if not (transmitted_power_estimation_enabled or path_loss_estimation_enabled):
        return RadioSourceFit(
            position=ranging.position,
            transmitted_power_dbm=initial_transmitted_power_dbm,
            path_loss_exponent=initial_path_loss_exponent,
            covariance=ranging.covariance,
            position_covariance=ranging.position_covariance,
            chi_sq=ranging.chi_sq,
        )

    rssi = fit_rssi(
        [r.to_rssi() for r in readings],
        initial_position=ranging.position,
        initial_transmitted_power_dbm=initial_transmitted_power_dbm,
        initial_path_loss_exponent=initial_path_loss_exponent,
        position_estimation_enabled=False,
        transmitted_power_estimation_enabled=transmitted_power_estimation_enabled,
        path_loss_estimation_enabled=path_loss_estimation_enabled,
    )

    covariance = None
    if ranging.covariance is not None and rssi.covariance is not None:
        covariance = block_diag(ranging.covariance, rssi.covariance)

    return RadioSourceFit(
        position=ranging.position,
        transmitted_power_dbm=rssi.transmitted_power_dbm,
        path_loss_exponent=rssi.path_loss_exponent,
        covariance=covariance,
        position_covariance=ranging.position_covariance,
        chi_sq=ranging.chi_sq + rssi.chi_sq,
    )
