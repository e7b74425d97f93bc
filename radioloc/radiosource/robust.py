"""
Robust radio source estimators for ranging, RSSI and combined readings.

Every estimator works in 2D and 3D and with every consensus method
(RANSAC, MSAC, PROSAC, LMedS, PROMedS); the method is a parameter, not a
subclass:

    - RobustRangingRadioSourceEstimator: position from distances
    - RobustRssiRadioSourceEstimator: position, transmitted power and
      path-loss exponent (any enabled combination) from received power
    - RobustRangingAndRssiRadioSourceEstimator: position from distances plus
      transmitted power and path-loss exponent from received power

Use create(config, method) to build one:

    >>> config = RobustEstimatorConfig(threshold=0.5)
    >>> estimator = RobustRangingRadioSourceEstimator.create(
    ...     config, RobustEstimatorMethod.RANSAC, readings=readings)
    >>> estimator.estimate()
    >>> estimator.estimated_position
"""

from typing import Optional, Sequence

from radioloc.radiosource.base import (
    RobustRadioSourceEstimator,
    Solution,
    config_property,
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
from radioloc.rf.measurement_models import ranging_residual, rssi_residual
from radioloc.rf.readings import RangingAndRssiReading, RangingReading, RssiReading


def _rssi_residual(solution: Solution, reading) -> float:
    return rssi_residual(
        solution.position,
        reading.position,
        reading.rssi,
        reading.source.frequency,
        solution.transmitted_power_dbm,
        solution.path_loss_exponent,
    )


class RobustRangingRadioSourceEstimator(RobustRadioSourceEstimator):
    """
    Robustly estimates a radio source position from ranging readings.

    Candidate positions come from lateration of minimal subsets and each
    reading is scored by |‖x - p_i‖ - d_i|. The refined position carries a
    dims × dims covariance.
    """

    reading_types = (RangingReading, RangingAndRssiReading)

    @property
    def min_readings(self) -> int:
        return ranging_min_readings(self.dims)

    def _fit(self, readings: Sequence, initial: Optional[Solution]) -> RadioSourceFit:
        initial_position = self._config.initial_position
        if initial is not None and initial.position is not None:
            initial_position = initial.position

        fit = fit_ranging(
            readings,
            initial_position=initial_position,
            use_homogeneous_linear_solver=self._config.use_homogeneous_linear_solver,
            use_reading_position_covariances=self._config.use_reading_position_covariances,
        )
        fit.path_loss_exponent = self._config.initial_path_loss_exponent
        return fit

    def _residual(self, solution: Solution, reading) -> float:
        return ranging_residual(solution.position, reading.position, reading.distance)


class RobustRssiRadioSourceEstimator(RobustRadioSourceEstimator):
    """
    Robustly estimates a radio source from received power readings.

    Any combination of position, transmitted power and path-loss exponent
    can be estimated; the others are held at their initial values. Each
    reading is scored by the difference between measured and expected
    received power under the isotropic model.

    Notes:
        - Position estimation disabled requires an initial position.
        - Power estimation disabled requires an initial transmitted power.
    """

    reading_types = (RssiReading, RangingAndRssiReading)

    position_estimation_enabled = config_property(
        "position_estimation_enabled", "Whether position is estimated."
    )

    @property
    def min_readings(self) -> int:
        return rssi_min_readings(
            self.dims,
            self._config.position_estimation_enabled,
            self._config.transmitted_power_estimation_enabled,
            self._config.path_loss_estimation_enabled,
        )

    def _estimated_parameters(self):
        return (
            self._config.position_estimation_enabled,
            self._config.transmitted_power_estimation_enabled,
            self._config.path_loss_estimation_enabled,
        )

    def _is_configuration_ready(self) -> bool:
        config = self._config
        if not any(self._estimated_parameters()):
            return False
        if not config.position_estimation_enabled and config.initial_position is None:
            return False
        if not config.transmitted_power_estimation_enabled and config.initial_transmitted_power_dbm is None:
            return False
        return True

    def _fit(self, readings: Sequence, initial: Optional[Solution]) -> RadioSourceFit:
        config = self._config
        position = config.initial_position
        power = config.initial_transmitted_power_dbm
        path_loss_exponent = config.initial_path_loss_exponent
        if initial is not None:
            if initial.position is not None and config.position_estimation_enabled:
                position = initial.position
            if initial.transmitted_power_dbm is not None and config.transmitted_power_estimation_enabled:
                power = initial.transmitted_power_dbm
            if config.path_loss_estimation_enabled:
                path_loss_exponent = initial.path_loss_exponent

        return fit_rssi(
            readings,
            initial_position=position,
            initial_transmitted_power_dbm=power,
            initial_path_loss_exponent=path_loss_exponent,
            position_estimation_enabled=config.position_estimation_enabled,
            transmitted_power_estimation_enabled=config.transmitted_power_estimation_enabled,
            path_loss_estimation_enabled=config.path_loss_estimation_enabled,
        )

    def _residual(self, solution: Solution, reading) -> float:
        return _rssi_residual(solution, reading)


class RobustRangingAndRssiRadioSourceEstimator(RobustRadioSourceEstimator):
    """
    Robustly estimates a radio source from combined ranging and RSSI readings.

    Each candidate fit laterates the position from distances and then fits
    transmitted power and path-loss exponent at that position. Readings are
    scored by their received power residual, which depends on all estimated
    parameters.
    """

    reading_types = (RangingAndRssiReading,)

    @property
    def min_readings(self) -> int:
        return ranging_and_rssi_min_readings(
            self.dims,
            self._config.transmitted_power_estimation_enabled,
            self._config.path_loss_estimation_enabled,
        )

    def _estimated_parameters(self):
        return (
            True,
            self._config.transmitted_power_estimation_enabled,
            self._config.path_loss_estimation_enabled,
        )

    def _is_configuration_ready(self) -> bool:
        config = self._config
        return (
            config.transmitted_power_estimation_enabled
            or config.initial_transmitted_power_dbm is not None
        )

    def _fit(self, readings: Sequence, initial: Optional[Solution]) -> RadioSourceFit:
        config = self._config
        position = config.initial_position
        power = config.initial_transmitted_power_dbm
        path_loss_exponent = config.initial_path_loss_exponent
        if initial is not None:
            if initial.position is not None:
                position = initial.position
            if initial.transmitted_power_dbm is not None and config.transmitted_power_estimation_enabled:
                power = initial.transmitted_power_dbm
            if config.path_loss_estimation_enabled:
                path_loss_exponent = initial.path_loss_exponent

        return fit_ranging_and_rssi(
            readings,
            initial_position=position,
            initial_transmitted_power_dbm=power,
            initial_path_loss_exponent=path_loss_exponent,
            transmitted_power_estimation_enabled=config.transmitted_power_estimation_enabled,
            path_loss_estimation_enabled=config.path_loss_estimation_enabled,
            use_homogeneous_linear_solver=config.use_homogeneous_linear_solver,
            use_reading_position_covariances=config.use_reading_position_covariances,
        )

    def _residual(self, solution: Solution, reading) -> float:
        return _rssi_residual(solution, reading)


def create(config=None, method=None, readings=None, quality_scores=None, listener=None, dims=2):
    """
    Create a robust estimator matching the type of the readings.

    Ranging readings select RobustRangingRadioSourceEstimator, RSSI
    readings RobustRssiRadioSourceEstimator and combined readings
    RobustRangingAndRssiRadioSourceEstimator.

    Args:
        config: RobustEstimatorConfig, defaults if None.
        method: RobustEstimatorMethod, DEFAULT_ROBUST_METHOD if None.
        readings: Non-empty sequence of readings of a single type.
        quality_scores: Per-reading quality (PROSAC/PROMedS).
        listener: Receiver of estimation events.
        dims: Dimensionality of positions (2 or 3).

    Returns:
        Configured robust estimator.
    """
    if not readings:
        raise ValueError("readings are required to select an estimator")

    if all(isinstance(r, RangingAndRssiReading) for r in readings):
        cls = RobustRangingAndRssiRadioSourceEstimator
    elif all(isinstance(r, RangingReading) for r in readings):
        cls = RobustRangingRadioSourceEstimator
    elif all(isinstance(r, RssiReading) for r in readings):
        cls = RobustRssiRadioSourceEstimator
    else:
        raise TypeError("readings must all be of the same type")

    return cls.create(
        config=config,
        method=method,
        readings=readings,
        quality_scores=quality_scores,
        listener=listener,
        dims=dims,
    )
