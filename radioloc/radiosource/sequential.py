"""
Sequential robust estimation of radio source position and power.

Position is estimated first from ranging readings, which is generally
better conditioned. Transmitted power and path-loss exponent are then
estimated from RSSI readings with the position held fixed:

    ranging readings → robust ranging estimator → position (+ covariance)
    RSSI readings + position → robust RSSI estimator → power, path-loss

Readings may mix ranging-only, RSSI-only and combined readings. When there
are not enough ranging readings to laterate, position is estimated from
RSSI readings together with power and path-loss exponent.

The two stages are treated as independent: the combined covariance is
block diagonal with zero cross terms between position and power.
"""

from dataclasses import dataclass, replace
import logging
from typing import Optional, Sequence

import numpy as np
from scipy.linalg import block_diag

from radioloc.estimators.consensus import (
    DEFAULT_CONFIDENCE,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_PROGRESS_DELTA,
    DEFAULT_RANDOM_SEED,
    DEFAULT_ROBUST_METHOD,
    RobustEstimatorMethod,
)
from radioloc.exceptions import LockedError, NotReadyError, RadioSourceError, RobustEstimatorError
from radioloc.radiosource.base import (
    RadioSourceEstimator,
    RadioSourceEstimatorListener,
    RobustEstimatorConfig,
    config_property,
)
from radioloc.radiosource.fitters import (
    DEFAULT_PATH_LOSS_EXPONENT,
    ranging_and_rssi_min_readings,
    ranging_min_readings,
    rssi_min_readings,
)
from radioloc.radiosource.robust import (
    RobustRangingRadioSourceEstimator,
    RobustRssiRadioSourceEstimator,
)
from radioloc.rf.readings import (
    RangingAndRssiReading,
    RangingReading,
    RssiReading,
    has_ranging,
    has_rssi,
)

logger = logging.getLogger(__name__)


@dataclass
class SequentialEstimatorConfig:
    """
    Configuration of the sequential position-then-power estimator.

    Attributes:
        ranging_method: Consensus method of the position stage.
        rssi_method: Consensus method of the power stage.
        ranging_threshold: Threshold (or stop threshold) of the position
            stage. None selects the method default.
        rssi_threshold: Threshold (or stop threshold) of the power stage.
        ranging_confidence: Confidence of the position stage.
        rssi_confidence: Confidence of the power stage.
        ranging_max_iterations: Maximum iterations of the position stage.
        rssi_max_iterations: Maximum iterations of the power stage.
        ranging_preliminary_subset_size: Readings per candidate fit of the
            position stage.
        rssi_preliminary_subset_size: Readings per candidate fit of the
            power stage.
        initial_position: Initial position, shape (d,).
        initial_transmitted_power_dbm: Initial (or fixed) power in dBm.
        initial_path_loss_exponent: Initial (or fixed) path-loss exponent.
        transmitted_power_estimation_enabled: Estimate transmitted power.
        path_loss_estimation_enabled: Estimate path-loss exponent.
        refine_result: Refine each stage on its inliers.
        keep_covariance: Keep refined covariances.
        progress_delta: Minimum overall progress change between notifications.
        use_reading_position_covariances: Inflate distance standard
            deviations with receiver position accuracy.
        use_homogeneous_ranging_linear_solver: Seed ranging fits with the
            homogeneous linear lateration solver.
        random_seed: Seed for subset sampling of both stages. None draws
            fresh entropy on every estimation.
    """

    ranging_method: RobustEstimatorMethod = DEFAULT_ROBUST_METHOD
    rssi_method: RobustEstimatorMethod = DEFAULT_ROBUST_METHOD
    ranging_threshold: Optional[float] = None
    rssi_threshold: Optional[float] = None
    ranging_confidence: float = DEFAULT_CONFIDENCE
    rssi_confidence: float = DEFAULT_CONFIDENCE
    ranging_max_iterations: int = DEFAULT_MAX_ITERATIONS
    rssi_max_iterations: int = DEFAULT_MAX_ITERATIONS
    ranging_preliminary_subset_size: Optional[int] = None
    rssi_preliminary_subset_size: Optional[int] = None
    initial_position: Optional[np.ndarray] = None
    initial_transmitted_power_dbm: Optional[float] = None
    initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT
    transmitted_power_estimation_enabled: bool = True
    path_loss_estimation_enabled: bool = False
    refine_result: bool = True
    keep_covariance: bool = True
    progress_delta: float = DEFAULT_PROGRESS_DELTA
    use_reading_position_covariances: bool = True
    use_homogeneous_ranging_linear_solver: bool = True
    random_seed: Optional[int] = DEFAULT_RANDOM_SEED

    def __post_init__(self) -> None:
        """Validate by building both stage configurations."""
        if not 0.0 <= self.progress_delta <= 1.0:
            raise ValueError(f"progress_delta must be in [0, 1], got {self.progress_delta}")
        self.ranging_method = RobustEstimatorMethod(self.ranging_method)
        self.rssi_method = RobustEstimatorMethod(self.rssi_method)
        ranging = self.ranging_config()
        self.rssi_config(position=None)
        self.initial_position = ranging.initial_position

    def ranging_config(self) -> RobustEstimatorConfig:
        """Configuration of the position stage."""
        return RobustEstimatorConfig(
            initial_position=self.initial_position,
            threshold=self.ranging_threshold,
            confidence=self.ranging_confidence,
            max_iterations=self.ranging_max_iterations,
            progress_delta=min(2.0 * self.progress_delta, 1.0),
            refine_result=self.refine_result,
            keep_covariance=self.keep_covariance,
            preliminary_subset_size=self.ranging_preliminary_subset_size,
            use_reading_position_covariances=self.use_reading_position_covariances,
            use_homogeneous_linear_solver=self.use_homogeneous_ranging_linear_solver,
            random_seed=self.random_seed,
        )

    def rssi_config(self, position: Optional[np.ndarray]) -> RobustEstimatorConfig:
        """Configuration of the power stage.

        Position estimation is disabled when a position is given.
        """
        return RobustEstimatorConfig(
            initial_position=self.initial_position if position is None else position,
            initial_transmitted_power_dbm=self.initial_transmitted_power_dbm,
            initial_path_loss_exponent=self.initial_path_loss_exponent,
            position_estimation_enabled=position is None,
            transmitted_power_estimation_enabled=self.transmitted_power_estimation_enabled,
            path_loss_estimation_enabled=self.path_loss_estimation_enabled,
            threshold=self.rssi_threshold,
            confidence=self.rssi_confidence,
            max_iterations=self.rssi_max_iterations,
            progress_delta=min(2.0 * self.progress_delta, 1.0),
            refine_result=self.refine_result,
            keep_covariance=self.keep_covariance,
            preliminary_subset_size=self.rssi_preliminary_subset_size,
            random_seed=self.random_seed,
        )


class _StageListener(RadioSourceEstimatorListener):
    """Forwards stage events to the sequential estimator's listener."""

    def __init__(self, parent, offset: float, scale: float):
        self._parent = parent
        self._offset = offset
        self._scale = scale

    def on_estimate_next_iteration(self, estimator, iteration: int) -> None:
        self._parent._notify_iteration(iteration)

    def on_estimate_progress_change(self, estimator, progress: float) -> None:
        self._parent._notify_progress(self._offset + self._scale * progress)


class SequentialRobustRangingAndRssiRadioSourceEstimator(RadioSourceEstimator):
    """
    Robust radio source estimator running position and power stages in turn.

    Results are published only after both stages succeed; a failure in
    either stage raises RobustEstimatorError and leaves previous results
    untouched.

    Example:
        >>> config = SequentialEstimatorConfig(
        ...     ranging_method=RobustEstimatorMethod.RANSAC,
        ...     rssi_method=RobustEstimatorMethod.LMEDS,
        ...     ranging_threshold=0.5)
        >>> estimator = SequentialRobustRangingAndRssiRadioSourceEstimator(
        ...     readings, config=config)
        >>> estimator.estimate()
        >>> estimator.estimated_position, estimator.estimated_transmitted_power_dbm
    """

    def __init__(
        self,
        readings: Optional[Sequence] = None,
        config: Optional[SequentialEstimatorConfig] = None,
        quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[RadioSourceEstimatorListener] = None,
        dims: int = 2,
    ):
        """
        Initialize sequential estimator.

        Args:
            readings: Ranging, RSSI or combined readings of one radio source.
            config: Configuration. Defaults are used if None.
            quality_scores: Per-reading quality, required when either stage
                uses PROSAC or PROMedS.
            listener: Receiver of estimation events.
            dims: Dimensionality of positions (2 or 3).
        """
        super().__init__(listener=listener, dims=dims)
        self._config = config if config is not None else SequentialEstimatorConfig()
        self._check_initial_position(self._config.initial_position)
        self._quality_scores = None

        if readings is not None:
            self.readings = readings
        if quality_scores is not None:
            self.quality_scores = quality_scores

    ranging_method = config_property("ranging_method", "Consensus method of the position stage.")
    rssi_method = config_property("rssi_method", "Consensus method of the power stage.")
    ranging_threshold = config_property("ranging_threshold", "Threshold of the position stage.")
    rssi_threshold = config_property("rssi_threshold", "Threshold of the power stage.")
    initial_transmitted_power_dbm = config_property(
        "initial_transmitted_power_dbm", "Initial (or fixed) transmitted power in dBm."
    )
    initial_path_loss_exponent = config_property(
        "initial_path_loss_exponent", "Initial (or fixed) path-loss exponent."
    )
    transmitted_power_estimation_enabled = config_property(
        "transmitted_power_estimation_enabled", "Whether transmitted power is estimated."
    )
    path_loss_estimation_enabled = config_property(
        "path_loss_estimation_enabled", "Whether path-loss exponent is estimated."
    )
    progress_delta = config_property(
        "progress_delta", "Minimum progress change between notifications."
    )

    @property
    def config(self) -> SequentialEstimatorConfig:
        """Copy of the current configuration."""
        return replace(self._config)

    @config.setter
    def config(self, config: SequentialEstimatorConfig) -> None:
        self._check_locked()
        self._check_initial_position(config.initial_position)
        self._config = replace(config)

    @property
    def min_readings(self) -> int:
        """Minimum number of readings required to estimate."""
        return ranging_and_rssi_min_readings(
            self.dims,
            self._config.transmitted_power_estimation_enabled,
            self._config.path_loss_estimation_enabled,
        )

    @property
    def readings(self):
        """Readings of the radio source."""
        return self._readings

    @readings.setter
    def readings(self, readings: Optional[Sequence]) -> None:
        self._check_locked()
        if readings is None:
            self._readings = None
            return

        readings = tuple(readings)
        for reading in readings:
            if not isinstance(reading, (RangingReading, RssiReading, RangingAndRssiReading)):
                raise TypeError(f"Unsupported reading type {type(reading).__name__}")
            if reading.dim != self.dims:
                raise ValueError(
                    f"Reading position has {reading.dim} dimensions, expected {self.dims}"
                )
        if len(readings) < self.min_readings:
            raise ValueError(
                f"At least {self.min_readings} readings are required, got {len(readings)}"
            )
        self._readings = readings

    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        """Per-reading quality scores, higher is better."""
        return self._quality_scores

    @quality_scores.setter
    def quality_scores(self, quality_scores: Optional[Sequence[float]]) -> None:
        self._check_locked()
        if quality_scores is None:
            self._quality_scores = None
            return

        scores = np.asarray(quality_scores, dtype=float)
        if scores.ndim != 1 or len(scores) < self.min_readings:
            raise ValueError(
                f"At least {self.min_readings} quality scores are required, got {scores.shape}"
            )
        self._quality_scores = scores

    def _estimates_power(self) -> bool:
        return (
            self._config.transmitted_power_estimation_enabled
            or self._config.path_loss_estimation_enabled
        )

    def _split(self):
        """Ranging and RSSI readings with their quality scores."""
        scores = self._quality_scores
        ranging, ranging_scores, rssi, rssi_scores = [], [], [], []
        for i, reading in enumerate(self._readings):
            if has_ranging(reading):
                ranging.append(reading)
                if scores is not None:
                    ranging_scores.append(scores[i])
            if has_rssi(reading):
                rssi.append(reading)
                if scores is not None:
                    rssi_scores.append(scores[i])
        return (
            ranging,
            ranging_scores if scores is not None else None,
            rssi,
            rssi_scores if scores is not None else None,
        )

    def is_ready(self) -> bool:
        """True if both stages have what they need."""
        if self._readings is None or len(self._readings) < self.min_readings:
            return False

        config = self._config
        needs_scores = (
            config.ranging_method.requires_quality_scores
            or config.rssi_method.requires_quality_scores
        )
        if needs_scores and (
            self._quality_scores is None or len(self._quality_scores) != len(self._readings)
        ):
            return False
        if (
            self._estimates_power()
            and not config.transmitted_power_estimation_enabled
            and config.initial_transmitted_power_dbm is None
        ):
            return False

        ranging, _, rssi, _ = self._split()
        if len(ranging) >= ranging_min_readings(self.dims):
            return not self._estimates_power() or len(rssi) >= rssi_min_readings(
                self.dims,
                False,
                config.transmitted_power_estimation_enabled,
                config.path_loss_estimation_enabled,
            )

        # Position from RSSI readings
        return len(rssi) >= rssi_min_readings(
            self.dims,
            True,
            config.transmitted_power_estimation_enabled,
            config.path_loss_estimation_enabled,
        )

    def estimate(self) -> None:
        """
        Estimate position, then transmitted power and path-loss exponent.

        Raises:
            LockedError: If an estimation is already in progress.
            NotReadyError: If the estimator is not ready.
            RobustEstimatorError: If either stage fails.
        """
        self._check_locked()
        if not self.is_ready():
            raise NotReadyError(f"{type(self).__name__} is not ready")

        config = self._config
        ranging, ranging_scores, rssi, rssi_scores = self._split()

        try:
            self._locked = True
            if self._listener is not None:
                self._listener.on_estimate_start(self)

            position_covariance = None
            power_estimator = None
            if len(ranging) >= ranging_min_readings(self.dims):
                ranging_estimator = RobustRangingRadioSourceEstimator(
                    readings=ranging,
                    config=config.ranging_config(),
                    method=config.ranging_method,
                    quality_scores=ranging_scores,
                    listener=_StageListener(self, 0.0, 0.5),
                    dims=self.dims,
                )
                ranging_estimator.estimate()
                position = ranging_estimator.estimated_position
                position_covariance = ranging_estimator.estimated_position_covariance
                inliers_data = ranging_estimator.inliers_data

                if self._estimates_power():
                    power_estimator = RobustRssiRadioSourceEstimator(
                        readings=rssi,
                        config=config.rssi_config(position),
                        method=config.rssi_method,
                        quality_scores=rssi_scores,
                        listener=_StageListener(self, 0.5, 0.5),
                        dims=self.dims,
                    )
                    power_estimator.estimate()
            else:
                logger.debug(
                    "Only %d ranging readings, estimating position from %d RSSI readings",
                    len(ranging),
                    len(rssi),
                )
                power_estimator = RobustRssiRadioSourceEstimator(
                    readings=rssi,
                    config=config.rssi_config(None),
                    method=config.rssi_method,
                    quality_scores=rssi_scores,
                    listener=_StageListener(self, 0.0, 1.0),
                    dims=self.dims,
                )
                power_estimator.estimate()
                position = power_estimator.estimated_position
                position_covariance = power_estimator.estimated_position_covariance
                inliers_data = power_estimator.inliers_data

            if power_estimator is None:
                power = config.initial_transmitted_power_dbm
                path_loss_exponent = config.initial_path_loss_exponent
                power_variance = path_loss_variance = None
                covariance = position_covariance
            else:
                power = power_estimator.estimated_transmitted_power_dbm
                path_loss_exponent = power_estimator.estimated_path_loss_exponent
                power_variance = power_estimator.estimated_transmitted_power_variance
                path_loss_variance = power_estimator.estimated_path_loss_exponent_variance
                covariance = _combine_covariances(
                    position_covariance, power_estimator, self.dims
                )
        except LockedError:
            raise
        except RadioSourceError as e:
            raise RobustEstimatorError(f"Sequential estimation failed: {e}") from e
        else:
            self._estimated_position = position
            self._estimated_position_covariance = position_covariance
            self._estimated_transmitted_power_dbm = power
            self._estimated_path_loss_exponent = path_loss_exponent
            self._estimated_transmitted_power_variance = power_variance
            self._estimated_path_loss_exponent_variance = path_loss_variance
            self._estimated_covariance = covariance
            self._inliers_data = inliers_data
            self._estimated_source = self._readings[0].source

            if self._listener is not None:
                self._listener.on_estimate_end(self)
        finally:
            self._locked = False


def _combine_covariances(position_covariance, power_estimator, dims):
    """Block diagonal covariance over [position, power?, path-loss?]."""
    stage_covariance = power_estimator.estimated_covariance
    if stage_covariance is None:
        return None
    if not power_estimator.position_estimation_enabled:
        if position_covariance is None:
            return None
        return block_diag(position_covariance, stage_covariance)
    # Position was estimated together with power
    return stage_covariance
