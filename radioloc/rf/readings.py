"""
Data structures for located radio readings.

This module defines the value objects consumed by the radio source
estimators:
    - RadioSource: identity and carrier frequency of an emitter
    - RangingReading: distance measured from a known receiver position
    - RssiReading: received power measured at a known receiver position
    - RangingAndRssiReading: both measurements taken at the same position
    - LocatedRadioSource: estimation result for an emitter

Readings are immutable. Positions are stored as float NumPy arrays of
shape (d,), with d = 2 or 3, and optional receiver position covariances
as (d, d) arrays.
"""

from dataclasses import dataclass
from typing import Optional, Union

import numpy as np


def _as_position(value, name: str) -> np.ndarray:
    position = np.asarray(value, dtype=float)
    if position.ndim != 1 or position.shape[0] not in (2, 3):
        raise ValueError(f"{name} must have shape (2,) or (3,), got {position.shape}")
    return position


def _as_covariance(value, dim: int, name: str) -> Optional[np.ndarray]:
    if value is None:
        return None
    covariance = np.asarray(value, dtype=float)
    if covariance.shape != (dim, dim):
        raise ValueError(
            f"{name} must have shape ({dim}, {dim}), got {covariance.shape}"
        )
    return covariance


def _check_std(value: Optional[float], name: str) -> None:
    if value is not None and value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


@dataclass(frozen=True)
class RadioSource:
    """
    Radio emitter identity.

    Attributes:
        identifier: Source identifier (e.g., BSSID or beacon id).
        frequency: Carrier frequency in Hz.
    """

    identifier: str
    frequency: float

    def __post_init__(self) -> None:
        if self.frequency <= 0:
            raise ValueError(f"frequency must be positive, got {self.frequency}")


@dataclass(frozen=True)
class RangingReading:
    """
    Distance to a radio source measured at a known receiver position.

    Attributes:
        source: Radio source the reading refers to.
        position: Receiver position, shape (d,).
        distance: Measured distance to the source.
        distance_std: Standard deviation of the distance, if known.
        position_covariance: Covariance of the receiver position (d, d).
    """

    source: RadioSource
    position: np.ndarray
    distance: float
    distance_std: Optional[float] = None
    position_covariance: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        position = _as_position(self.position, "position")
        object.__setattr__(self, "position", position)
        object.__setattr__(
            self,
            "position_covariance",
            _as_covariance(self.position_covariance, position.shape[0], "position_covariance"),
        )
        if self.distance < 0:
            raise ValueError(f"distance must be non-negative, got {self.distance}")
        _check_std(self.distance_std, "distance_std")

    @property
    def dim(self) -> int:
        """Dimensionality of the receiver position."""
        return self.position.shape[0]


@dataclass(frozen=True)
class RssiReading:
    """
    Received signal strength measured at a known receiver position.

    Attributes:
        source: Radio source the reading refers to.
        position: Receiver position, shape (d,).
        rssi: Received power in dBm.
        rssi_std: Standard deviation of the received power in dB, if known.
        position_covariance: Covariance of the receiver position (d, d).
    """

    source: RadioSource
    position: np.ndarray
    rssi: float
    rssi_std: Optional[float] = None
    position_covariance: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        position = _as_position(self.position, "position")
        object.__setattr__(self, "position", position)
        object.__setattr__(
            self,
            "position_covariance",
            _as_covariance(self.position_covariance, position.shape[0], "position_covariance"),
        )
        _check_std(self.rssi_std, "rssi_std")

    @property
    def dim(self) -> int:
        """Dimensionality of the receiver position."""
        return self.position.shape[0]


@dataclass(frozen=True)
class RangingAndRssiReading:
    """
    Distance and received power measured together at one receiver position.

    Attributes:
        source: Radio source the reading refers to.
        position: Receiver position, shape (d,).
        distance: Measured distance to the source.
        rssi: Received power in dBm.
        distance_std: Standard deviation of the distance, if known.
        rssi_std: Standard deviation of the received power in dB, if known.
        position_covariance: Covariance of the receiver position (d, d).
    """

    source: RadioSource
    position: np.ndarray
    distance: float
    rssi: float
    distance_std: Optional[float] = None
    rssi_std: Optional[float] = None
    position_covariance: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        position = _as_position(self.position, "position")
        object.__setattr__(self, "position", position)
        object.__setattr__(
            self,
            "position_covariance",
            _as_covariance(self.position_covariance, position.shape[0], "position_covariance"),
        )
        if self.distance < 0:
            raise ValueError(f"distance must be non-negative, got {self.distance}")
        _check_std(self.distance_std, "distance_std")
        _check_std(self.rssi_std, "rssi_std")

    @property
    def dim(self) -> int:
        """Dimensionality of the receiver position."""
        return self.position.shape[0]

    def to_ranging(self) -> RangingReading:
        """Ranging component of this reading."""
        return RangingReading(
            source=self.source,
            position=self.position,
            distance=self.distance,
            distance_std=self.distance_std,
            position_covariance=self.position_covariance,
        )

    def to_rssi(self) -> RssiReading:
        """RSSI component of this reading."""
        return RssiReading(
            source=self.source,
            position=self.position,
            rssi=self.rssi,
            rssi_std=self.rssi_std,
            position_covariance=self.position_covariance,
        )


Reading = Union[RangingReading, RssiReading, RangingAndRssiReading]


def has_ranging(reading: Reading) -> bool:
    """True if the reading carries a distance measurement."""
    return isinstance(reading, (RangingReading, RangingAndRssiReading))


def has_rssi(reading: Reading) -> bool:
    """True if the reading carries a received power measurement."""
    return isinstance(reading, (RssiReading, RangingAndRssiReading))


@dataclass(frozen=True)
class LocatedRadioSource:
    """
    Radio source with its estimated location and transmission parameters.

    Attributes:
        source: Radio source identity, if known from the readings.
        position: Estimated position, shape (d,).
        position_covariance: Covariance of the estimated position, or None.
        transmitted_power_dbm: Estimated transmitted power in dBm, or None.
        transmitted_power_std_db: Standard deviation of the power in dB.
        path_loss_exponent: Estimated or assumed path-loss exponent.
        path_loss_exponent_std: Standard deviation of the path-loss exponent.
    """

    source: Optional[RadioSource]
    position: np.ndarray
    position_covariance: Optional[np.ndarray] = None
    transmitted_power_dbm: Optional[float] = None
    transmitted_power_std_db: Optional[float] = None
    path_loss_exponent: Optional[float] = None
    path_loss_exponent_std: Optional[float] = None
