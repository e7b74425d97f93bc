"""
RF measurement models for radio source localization.

This module implements the measurement models used to relate a radio source
to its located readings:
- Power unit conversions (dBm <-> mW)
- Isotropic free-space received power model
- Ranging and RSSI residuals against a fitted source

Isotropic model:
    Pr(dBm) = 10*n*log10(k) + Pte(dBm) - 5*n*log10(d²)
    k = c / (4*pi*f)

where Pte is the equivalent isotropic transmitted power, n the path-loss
exponent, f the carrier frequency and d the receiver-to-source distance.
"""

from typing import Optional, Union

import numpy as np

# Physical constants
SPEED_OF_LIGHT = 299792458.0  # m/s

ArrayLike = Union[float, np.ndarray]


# =============================================================================
# Power Unit Conversion Utilities
# =============================================================================
def dbm_to_power(dbm: ArrayLike) -> ArrayLike:
    """
    Convert power from dBm to milliwatts.

    Args:
        dbm: Power in dBm.

    Returns:
        Power in mW (10^(dBm/10)).

    Example:
        >>> dbm_to_power(0.0)
        1.0
        >>> dbm_to_power(-30.0)
        0.001
    """
    power = 10.0 ** (np.asarray(dbm, dtype=float) / 10.0)
    return power if np.ndim(dbm) else float(power)


def power_to_dbm(power_mw: ArrayLike) -> ArrayLike:
    """
    Convert power from milliwatts to dBm.

    Args:
        power_mw: Power in mW. Must be non-negative; zero maps to -inf.

    Returns:
        Power in dBm (10*log10(mW)).

    Raises:
        ValueError: If power is negative.
    """
    power = np.asarray(power_mw, dtype=float)
    if np.any(power < 0):
        raise ValueError(f"Power must be non-negative, got {power_mw}")

    with np.errstate(divide="ignore"):
        dbm = 10.0 * np.log10(power)

    return dbm if np.ndim(power_mw) else float(dbm)


# =============================================================================
# Isotropic Path-Loss Model
# =============================================================================
def isotropic_constant(frequency: float) -> float:
    """
    Wavelength-dependent constant k = c / (4*pi*f) of the isotropic model.

    Args:
        frequency: Carrier frequency in Hz.

    Returns:
        Constant k in meters.

    Raises:
        ValueError: If frequency is not positive.
    """
    if frequency <= 0:
        raise ValueError(f"Frequency must be positive, got {frequency}")
    return SPEED_OF_LIGHT / (4.0 * np.pi * frequency)


def received_power(
    transmitted_power_dbm: float,
    sqr_distance: ArrayLike,
    frequency: ArrayLike,
    path_loss_exponent: float = 2.0,
) -> ArrayLike:
    """
    Expected received power using the isotropic free-space model.

    Implements:
        Pr = 10*n*log10(k) + Pte - 5*n*log10(d²)

    Args:
        transmitted_power_dbm: Equivalent isotropic transmitted power (dBm).
        sqr_distance: Squared distance(s) between source and receiver(s).
        frequency: Carrier frequency (Hz), scalar or one per receiver.
        path_loss_exponent: Path-loss exponent n. Defaults to 2.0.

    Returns:
        Expected received power in dBm (same shape as sqr_distance).

    Example:
        >>> # 2.4 GHz source at 1 mW, receiver 10 m away
        >>> pr = received_power(0.0, 100.0, 2.4e9)
        >>> print(f"{pr:.2f} dBm")
        -60.05 dBm
    """
    n = path_loss_exponent
    frequency = np.asarray(frequency, dtype=float)
    if np.any(frequency <= 0):
        raise ValueError("Frequency must be positive")
    k = SPEED_OF_LIGHT / (4.0 * np.pi * frequency)

    with np.errstate(divide="ignore"):
        pr = 10.0 * n * np.log10(k) + transmitted_power_dbm - 5.0 * n * np.log10(sqr_distance)

    return pr if np.ndim(pr) else float(pr)


def received_power_jacobian(
    source_position: np.ndarray,
    receiver_positions: np.ndarray,
    frequency: ArrayLike,
    path_loss_exponent: float = 2.0,
) -> np.ndarray:
    """
    Partial derivatives of the isotropic model for each receiver.

    Columns are ordered [position (dims), transmitted power, path-loss
    exponent]:
        ∂Pr/∂x_j = -10*n*(x_j - r_j) / (ln(10) * d²)
        ∂Pr/∂Pte = 1
        ∂Pr/∂n   = 10*log10(k) - 5*log10(d²)

    Args:
        source_position: Source position, shape (d,).
        receiver_positions: Receiver positions, shape (N, d).
        frequency: Carrier frequency (Hz), scalar or shape (N,).
        path_loss_exponent: Path-loss exponent n.

    Returns:
        Jacobian of shape (N, d + 2).
    """
    source_position = np.asarray(source_position, dtype=float)
    receiver_positions = np.atleast_2d(np.asarray(receiver_positions, dtype=float))
    n = path_loss_exponent

    diff = source_position - receiver_positions
    sqr_distance = np.sum(diff**2, axis=1)
    k = SPEED_OF_LIGHT / (4.0 * np.pi * np.asarray(frequency, dtype=float))

    n_receivers, dim = receiver_positions.shape
    J = np.empty((n_receivers, dim + 2))
    with np.errstate(divide="ignore", invalid="ignore"):
        J[:, :dim] = -10.0 * n * diff / (np.log(10.0) * sqr_distance[:, None])
        J[:, dim] = 1.0
        J[:, dim + 1] = 10.0 * np.log10(k) - 5.0 * np.log10(sqr_distance)

    return J


def rssi_to_distance(
    rssi_dbm: ArrayLike,
    transmitted_power_dbm: float,
    frequency: ArrayLike,
    path_loss_exponent: float = 2.0,
) -> ArrayLike:
    """
    Invert the isotropic model to obtain distance from received power.

    Implements:
        d = k * 10^((Pte - Pr) / (10*n))

    Args:
        rssi_dbm: Received power in dBm.
        transmitted_power_dbm: Transmitted power in dBm.
        frequency: Carrier frequency in Hz.
        path_loss_exponent: Path-loss exponent n.

    Returns:
        Distance in meters.
    """
    if path_loss_exponent <= 0:
        raise ValueError(
            f"Path-loss exponent must be positive, got {path_loss_exponent}"
        )
    k = SPEED_OF_LIGHT / (4.0 * np.pi * np.asarray(frequency, dtype=float))
    d = k * 10.0 ** (
        (transmitted_power_dbm - np.asarray(rssi_dbm, dtype=float))
        / (10.0 * path_loss_exponent)
    )
    return d if np.ndim(d) else float(d)


# =============================================================================
# Residuals
# =============================================================================
def ranging_residual(
    source_position: np.ndarray,
    receiver_position: np.ndarray,
    distance: float,
) -> float:
    """
    Absolute ranging residual |‖x - r‖ - d|.

    Args:
        source_position: Estimated source position, shape (d,).
        receiver_position: Receiver position, shape (d,).
        distance: Measured distance.

    Returns:
        Non-negative residual in distance units.
    """
    diff = np.asarray(source_position, dtype=float) - np.asarray(receiver_position, dtype=float)
    return float(abs(np.linalg.norm(diff) - distance))


def rssi_residual(
    source_position: np.ndarray,
    receiver_position: np.ndarray,
    rssi_dbm: float,
    frequency: float,
    transmitted_power_dbm: float,
    path_loss_exponent: Optional[float] = None,
) -> float:
    """
    Absolute RSSI residual between expected and measured received power.

    Args:
        source_position: Estimated source position, shape (d,).
        receiver_position: Receiver position, shape (d,).
        rssi_dbm: Measured received power in dBm.
        frequency: Carrier frequency of the source in Hz.
        transmitted_power_dbm: Estimated transmitted power in dBm.
        path_loss_exponent: Estimated path-loss exponent (2.0 if None).

    Returns:
        Non-negative residual in dB. Infinite when the source coincides
        with the receiver.
    """
    if path_loss_exponent is None:
        path_loss_exponent = 2.0
    diff = np.asarray(source_position, dtype=float) - np.asarray(receiver_position, dtype=float)
    sqr_distance = float(diff @ diff)
    expected = received_power(
        transmitted_power_dbm, sqr_distance, frequency, path_loss_exponent
    )
    return float(abs(expected - rssi_dbm))
