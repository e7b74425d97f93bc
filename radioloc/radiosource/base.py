"""
Robust radio source estimator framework.

This module contains the pieces shared by every robust radio source
estimator:
    - Solution: candidate fit produced for one subset of readings
    - RadioSourceEstimatorListener: estimation event callbacks
    - RobustEstimatorConfig: validated configuration value object
    - RadioSourceEstimator: locking and result accessors
    - RobustRadioSourceEstimator: base class that locks the estimator,
      drives the consensus engine with fit and residual closures, refines
      the winning solution on its inliers and partitions the covariance

Estimation flow:
    readings → ConsensusEngine (subset fit ↔ residuals) → winning Solution
             → refinement on inliers → estimate + covariance

Concrete estimators only say how to fit a list of readings, how to score
one reading against a solution and how many readings a fit needs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
import logging
from typing import List, Optional, Sequence, Tuple, Type

import numpy as np

from radioloc.estimators.consensus import (
    DEFAULT_CONFIDENCE,
    DEFAULT_INLIER_FACTOR,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_PROGRESS_DELTA,
    DEFAULT_RANDOM_SEED,
    DEFAULT_ROBUST_METHOD,
    DEFAULT_STOP_THRESHOLD,
    DEFAULT_THRESHOLD,
    ConsensusEngine,
    InliersData,
    RobustEstimatorMethod,
)
from radioloc.exceptions import (
    ConsensusError,
    ConsensusNotReadyError,
    LockedError,
    NotReadyError,
    NumericalError,
    RobustEstimatorError,
)
from radioloc.radiosource.fitters import DEFAULT_PATH_LOSS_EXPONENT, RadioSourceFit
from radioloc.rf.measurement_models import dbm_to_power, power_to_dbm
from radioloc.rf.readings import LocatedRadioSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Solution:
    """Candidate radio source fitted to a subset of readings.

    Attributes:
        position: Source position, shape (d,).
        transmitted_power_dbm: Transmitted power in dBm (None for ranging).
        path_loss_exponent: Path-loss exponent.
    """

    position: np.ndarray
    transmitted_power_dbm: Optional[float] = None
    path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT

    @classmethod
    def from_fit(cls, fit: RadioSourceFit) -> "Solution":
        return cls(
            position=fit.position,
            transmitted_power_dbm=fit.transmitted_power_dbm,
            path_loss_exponent=fit.path_loss_exponent,
        )


class RadioSourceEstimatorListener:
    """
    Receives estimation events from a robust estimator.

    Notifications are synchronous and informational. The estimator is
    locked while they are delivered, so any attempt to reconfigure it from
    a callback raises LockedError. Override only the events of interest.
    """

    def on_estimate_start(self, estimator) -> None:
        pass

    def on_estimate_end(self, estimator) -> None:
        pass

    def on_estimate_next_iteration(self, estimator, iteration: int) -> None:
        pass

    def on_estimate_progress_change(self, estimator, progress: float) -> None:
        pass


@dataclass
class RobustEstimatorConfig:
    """
    Configuration of a robust radio source estimator.

    Attributes:
        initial_position: Initial (or fixed) source position, shape (d,).
        initial_transmitted_power_dbm: Initial (or fixed) power in dBm.
        initial_path_loss_exponent: Initial (or fixed) path-loss exponent.
        position_estimation_enabled: Estimate position (RSSI estimators).
        transmitted_power_estimation_enabled: Estimate transmitted power.
        path_loss_estimation_enabled: Estimate path-loss exponent.
        threshold: Inlier threshold for RANSAC/MSAC/PROSAC, or stop
            threshold for LMedS/PROMedS. None selects the method default.
        confidence: Desired probability of an outlier-free sample.
        max_iterations: Maximum number of consensus iterations.
        progress_delta: Minimum progress change between notifications.
        refine_result: Refine the winning solution on its inliers.
        keep_covariance: Keep the covariance of the refined solution.
        preliminary_subset_size: Readings per candidate fit. Values below
            the minimum number of readings are raised to that minimum.
        use_reading_position_covariances: Inflate distance standard
            deviations with receiver position accuracy.
        use_homogeneous_linear_solver: Seed ranging fits with the
            homogeneous linear lateration solver.
        compute_and_keep_inliers: Keep inlier mask of the winning solution.
        compute_and_keep_residuals: Keep residuals of the winning solution.
        inlier_factor: LMedS/PROMedS inlier threshold as a multiple of the
            robust noise scale.
        use_inlier_thresholds: LMedS/PROMedS inlier reporting rule. None
            selects the method default (True for LMedS, False for PROMedS).
        random_seed: Seed for subset sampling, so repeated estimations agree.
            None draws fresh entropy on every estimation.
    """

    initial_position: Optional[np.ndarray] = None
    initial_transmitted_power_dbm: Optional[float] = None
    initial_path_loss_exponent: float = DEFAULT_PATH_LOSS_EXPONENT
    position_estimation_enabled: bool = True
    transmitted_power_estimation_enabled: bool = True
    path_loss_estimation_enabled: bool = False
    threshold: Optional[float] = None
    confidence: float = DEFAULT_CONFIDENCE
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    progress_delta: float = DEFAULT_PROGRESS_DELTA
    refine_result: bool = True
    keep_covariance: bool = True
    preliminary_subset_size: Optional[int] = None
    use_reading_position_covariances: bool = True
    use_homogeneous_linear_solver: bool = True
    compute_and_keep_inliers: bool = False
    compute_and_keep_residuals: bool = False
    inlier_factor: float = DEFAULT_INLIER_FACTOR
    use_inlier_thresholds: Optional[bool] = None
    random_seed: Optional[int] = DEFAULT_RANDOM_SEED

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.initial_position is not None:
            position = np.asarray(self.initial_position, dtype=float)
            if position.ndim != 1 or position.shape[0] not in (2, 3):
                raise ValueError(
                    f"initial_position must have shape (2,) or (3,), got {position.shape}"
                )
            self.initial_position = position

        if self.threshold is not None and self.threshold <= 0:
            raise ValueError(f"threshold must be positive, got {self.threshold}")

        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence level must be in [0, 1], got {self.confidence}")

        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")

        if not 0.0 <= self.progress_delta <= 1.0:
            raise ValueError(f"progress_delta must be in [0, 1], got {self.progress_delta}")

        if self.preliminary_subset_size is not None and self.preliminary_subset_size < 1:
            raise ValueError(
                f"preliminary_subset_size must be >= 1, got {self.preliminary_subset_size}"
            )

        if self.inlier_factor <= 0:
            raise ValueError(f"inlier_factor must be positive, got {self.inlier_factor}")


def config_property(name: str, doc: str) -> property:
    """Estimator property backed by a configuration field.

    Setting it raises LockedError while estimating and ValueError for
    invalid values, leaving the configuration untouched in both cases.
    """

    def getter(self):
        return getattr(self._config, name)

    def setter(self, value):
        self._check_locked()
        self._config = replace(self._config, **{name: value})

    return property(getter, setter, doc=doc)


class RadioSourceEstimator:
    """
    Locking, listener and result accessors shared by radio source estimators.

    Attributes:
        dims: Dimensionality of positions (2 or 3).
    """

    def __init__(
        self,
        listener: Optional[RadioSourceEstimatorListener] = None,
        dims: int = 2,
    ):
        if dims not in (2, 3):
            raise ValueError(f"dims must be 2 or 3, got {dims}")
        self.dims = dims
        self._locked = False
        self._listener = listener
        self._readings = None

        self._estimated_position = None
        self._estimated_transmitted_power_dbm = None
        self._estimated_path_loss_exponent = None
        self._estimated_covariance = None
        self._estimated_position_covariance = None
        self._estimated_transmitted_power_variance = None
        self._estimated_path_loss_exponent_variance = None
        self._inliers_data = None
        self._estimated_source = None

    # =========================================================================
    # Locking
    # =========================================================================
    @property
    def is_locked(self) -> bool:
        """True while an estimation is in progress."""
        return self._locked

    def _check_locked(self) -> None:
        if self._locked:
            raise LockedError("Estimator is locked while estimating")

    def _check_initial_position(self, position: Optional[np.ndarray]) -> None:
        if position is not None and np.shape(position) != (self.dims,):
            raise ValueError(
                f"initial_position must have shape ({self.dims},), got {np.shape(position)}"
            )

    @property
    def listener(self) -> Optional[RadioSourceEstimatorListener]:
        """Receiver of estimation events."""
        return self._listener

    @listener.setter
    def listener(self, listener: Optional[RadioSourceEstimatorListener]) -> None:
        self._check_locked()
        self._listener = listener

    def _notify_iteration(self, iteration: int) -> None:
        if self._listener is not None:
            self._listener.on_estimate_next_iteration(self, iteration)

    def _notify_progress(self, progress: float) -> None:
        if self._listener is not None:
            self._listener.on_estimate_progress_change(self, progress)

    # =========================================================================
    # Results
    # =========================================================================
    @property
    def estimated_position(self) -> Optional[np.ndarray]:
        """Estimated source position."""
        return self._estimated_position

    @property
    def estimated_covariance(self) -> Optional[np.ndarray]:
        """Covariance over [position?, power?, path-loss?] of the refined fit."""
        return self._estimated_covariance

    @property
    def estimated_position_covariance(self) -> Optional[np.ndarray]:
        """Covariance of the estimated position."""
        return self._estimated_position_covariance

    @property
    def estimated_transmitted_power_dbm(self) -> Optional[float]:
        """Estimated transmitted power in dBm."""
        return self._estimated_transmitted_power_dbm

    @property
    def estimated_transmitted_power(self) -> Optional[float]:
        """Estimated transmitted power in mW."""
        power_dbm = self._estimated_transmitted_power_dbm
        return None if power_dbm is None else dbm_to_power(power_dbm)

    @property
    def estimated_transmitted_power_variance(self) -> Optional[float]:
        """Variance of the estimated transmitted power in dB²."""
        return self._estimated_transmitted_power_variance

    @property
    def estimated_path_loss_exponent(self) -> Optional[float]:
        """Estimated (or fixed) path-loss exponent."""
        return self._estimated_path_loss_exponent

    @property
    def estimated_path_loss_exponent_variance(self) -> Optional[float]:
        """Variance of the estimated path-loss exponent."""
        return self._estimated_path_loss_exponent_variance

    @property
    def inliers_data(self) -> Optional[InliersData]:
        """Inlier classification of the winning consensus solution."""
        return self._inliers_data

    @property
    def estimated_radio_source(self) -> Optional[LocatedRadioSource]:
        """Estimated radio source, or None before a successful estimation."""
        if self._estimated_position is None:
            return None

        power_variance = self._estimated_transmitted_power_variance
        ple_variance = self._estimated_path_loss_exponent_variance
        return LocatedRadioSource(
            source=self._estimated_source,
            position=self._estimated_position,
            position_covariance=self._estimated_position_covariance,
            transmitted_power_dbm=self._estimated_transmitted_power_dbm,
            transmitted_power_std_db=None if power_variance is None else float(np.sqrt(power_variance)),
            path_loss_exponent=self._estimated_path_loss_exponent,
            path_loss_exponent_std=None if ple_variance is None else float(np.sqrt(ple_variance)),
        )


class RobustRadioSourceEstimator(RadioSourceEstimator, ABC):
    """
    Base class of robust radio source estimators.

    Holds readings, quality scores, configuration and results, and runs
    the estimation: lock, consensus, refinement, unlock. Subclasses define
    the reading types they accept, the minimum number of readings, how to
    fit readings and how to score a reading against a solution.
    """

    # Reading types accepted by the estimator
    reading_types: Tuple[Type, ...] = ()

    def __init__(
        self,
        readings: Optional[Sequence] = None,
        config: Optional[RobustEstimatorConfig] = None,
        method: RobustEstimatorMethod = DEFAULT_ROBUST_METHOD,
        quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[RadioSourceEstimatorListener] = None,
        dims: int = 2,
    ):
        """
        Initialize robust estimator.

        Args:
            readings: Located readings of one radio source.
            config: Configuration. Defaults are used if None.
            method: Consensus method.
            quality_scores: Per-reading quality (PROSAC/PROMedS), higher is
                better.
            listener: Receiver of estimation events.
            dims: Dimensionality of positions (2 or 3).
        """
        super().__init__(listener=listener, dims=dims)
        self._config = config if config is not None else RobustEstimatorConfig()
        self._check_initial_position(self._config.initial_position)
        self._method = RobustEstimatorMethod(method)
        self._quality_scores = None

        if readings is not None:
            self.readings = readings
        if quality_scores is not None:
            self.quality_scores = quality_scores

    @classmethod
    def create(
        cls,
        config: Optional[RobustEstimatorConfig] = None,
        method: Optional[RobustEstimatorMethod] = None,
        readings: Optional[Sequence] = None,
        quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[RadioSourceEstimatorListener] = None,
        dims: int = 2,
    ) -> "RobustRadioSourceEstimator":
        """
        Create an estimator for the given consensus method.

        Args:
            config: Configuration. Defaults are used if None.
            method: Consensus method. DEFAULT_ROBUST_METHOD if None.
            readings: Located readings of one radio source.
            quality_scores: Per-reading quality (PROSAC/PROMedS).
            listener: Receiver of estimation events.
            dims: Dimensionality of positions (2 or 3).

        Returns:
            Configured estimator.

        Example:
            >>> config = RobustEstimatorConfig(threshold=0.5, random_seed=0)
            >>> estimator = RobustRangingRadioSourceEstimator.create(
            ...     config, RobustEstimatorMethod.RANSAC, readings=readings)
            >>> estimator.estimate()
        """
        return cls(
            readings=readings,
            config=config,
            method=DEFAULT_ROBUST_METHOD if method is None else method,
            quality_scores=quality_scores,
            listener=listener,
            dims=dims,
        )

    # =========================================================================
    # Hooks
    # =========================================================================
    @property
    @abstractmethod
    def min_readings(self) -> int:
        """Minimum number of readings required to fit a solution."""

    @abstractmethod
    def _fit(self, readings: Sequence, initial: Optional[Solution]) -> RadioSourceFit:
        """Fit a solution to readings, optionally seeded from a solution.

        Raises NumericalError subclasses on failure.
        """

    @abstractmethod
    def _residual(self, solution: Solution, reading) -> float:
        """Non-negative residual of one reading against a solution."""

    def _estimated_parameters(self) -> Tuple[bool, bool, bool]:
        """Whether position, power and path-loss are estimated."""
        return True, False, False

    def _is_configuration_ready(self) -> bool:
        return True

    # =========================================================================
    # Configuration
    # =========================================================================
    @property
    def config(self) -> RobustEstimatorConfig:
        """Copy of the current configuration."""
        return replace(self._config)

    @config.setter
    def config(self, config: RobustEstimatorConfig) -> None:
        self._check_locked()
        self._check_initial_position(config.initial_position)
        self._config = replace(config)

    @property
    def method(self) -> RobustEstimatorMethod:
        """Consensus method."""
        return self._method

    @method.setter
    def method(self, method: RobustEstimatorMethod) -> None:
        self._check_locked()
        self._method = RobustEstimatorMethod(method)

    @property
    def initial_position(self) -> Optional[np.ndarray]:
        """Initial (or fixed) source position."""
        return self._config.initial_position

    @initial_position.setter
    def initial_position(self, position: Optional[np.ndarray]) -> None:
        self._check_locked()
        if position is not None:
            position = np.asarray(position, dtype=float)
        self._check_initial_position(position)
        self._config = replace(self._config, initial_position=position)

    @property
    def initial_transmitted_power(self) -> Optional[float]:
        """Initial (or fixed) transmitted power in mW."""
        power_dbm = self._config.initial_transmitted_power_dbm
        return None if power_dbm is None else dbm_to_power(power_dbm)

    @initial_transmitted_power.setter
    def initial_transmitted_power(self, power_mw: Optional[float]) -> None:
        self._check_locked()
        power_dbm = None if power_mw is None else power_to_dbm(power_mw)
        self._config = replace(self._config, initial_transmitted_power_dbm=power_dbm)

    @property
    def threshold(self) -> float:
        """Inlier threshold (RANSAC/MSAC/PROSAC) or stop threshold (LMedS/PROMedS)."""
        if self._config.threshold is not None:
            return self._config.threshold
        return DEFAULT_STOP_THRESHOLD if self._method.uses_median else DEFAULT_THRESHOLD

    @threshold.setter
    def threshold(self, threshold: Optional[float]) -> None:
        self._check_locked()
        self._config = replace(self._config, threshold=threshold)

    @property
    def use_inlier_thresholds(self) -> bool:
        """Inlier reporting rule of LMedS/PROMedS."""
        if self._config.use_inlier_thresholds is not None:
            return self._config.use_inlier_thresholds
        return self._method != RobustEstimatorMethod.PROMEDS

    @use_inlier_thresholds.setter
    def use_inlier_thresholds(self, value: Optional[bool]) -> None:
        self._check_locked()
        self._config = replace(self._config, use_inlier_thresholds=value)

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
    confidence = config_property("confidence", "Desired probability of success.")
    max_iterations = config_property("max_iterations", "Maximum consensus iterations.")
    progress_delta = config_property(
        "progress_delta", "Minimum progress change between notifications."
    )
    refine_result = config_property("refine_result", "Refine result on inliers.")
    keep_covariance = config_property("keep_covariance", "Keep refined covariance.")
    preliminary_subset_size = config_property(
        "preliminary_subset_size", "Readings per candidate fit."
    )
    use_reading_position_covariances = config_property(
        "use_reading_position_covariances", "Use receiver position covariances."
    )
    use_homogeneous_linear_solver = config_property(
        "use_homogeneous_linear_solver", "Seed ranging with homogeneous lateration."
    )
    compute_and_keep_inliers = config_property(
        "compute_and_keep_inliers", "Keep inlier mask of the winning solution."
    )
    compute_and_keep_residuals = config_property(
        "compute_and_keep_residuals", "Keep residuals of the winning solution."
    )
    inlier_factor = config_property("inlier_factor", "LMedS inlier scale multiple.")
    random_seed = config_property("random_seed", "Seed for subset sampling.")

    @property
    def readings(self) -> Optional[Tuple]:
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
            if not isinstance(reading, self.reading_types):
                raise TypeError(
                    f"{type(self).__name__} does not accept {type(reading).__name__}"
                )
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
        """Per-reading quality scores (PROSAC/PROMedS), higher is better."""
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

    @property
    def subset_size(self) -> int:
        """Readings per candidate fit."""
        preliminary = self._config.preliminary_subset_size or 0
        return max(preliminary, self.min_readings)

    def is_ready(self) -> bool:
        """True if the estimator has everything needed to estimate."""
        if self._readings is None or len(self._readings) < self.min_readings:
            return False
        if self._method.requires_quality_scores:
            if self._quality_scores is None or len(self._quality_scores) != len(self._readings):
                return False
        return self._is_configuration_ready()

    # =========================================================================
    # Estimation
    # =========================================================================
    def _initial_solution(self) -> Optional[Solution]:
        if self._config.initial_position is None and self._config.initial_transmitted_power_dbm is None:
            return None
        return Solution(
            position=self._config.initial_position,
            transmitted_power_dbm=self._config.initial_transmitted_power_dbm,
            path_loss_exponent=self._config.initial_path_loss_exponent,
        )

    def _solve_preliminary_solutions(self, readings: Tuple, indices: np.ndarray) -> List[Solution]:
        """Candidate solutions for a subset of readings.

        A degenerate subset yields no candidate.
        """
        subset = [readings[i] for i in indices]
        try:
            fit = self._fit(subset, self._initial_solution())
        except (NumericalError, np.linalg.LinAlgError):
            return []
        return [Solution.from_fit(fit)]

    def _partition_covariance(
        self, covariance: np.ndarray
    ) -> Tuple[Optional[np.ndarray], Optional[float], Optional[float]]:
        """Split a covariance into position block, power and path-loss variances."""
        position_estimated, power_estimated, path_loss_estimated = self._estimated_parameters()

        offset = 0
        position_covariance = None
        if position_estimated:
            position_covariance = covariance[: self.dims, : self.dims].copy()
            offset = self.dims

        power_variance = None
        if power_estimated:
            power_variance = float(covariance[offset, offset])
            offset += 1

        path_loss_variance = None
        if path_loss_estimated:
            path_loss_variance = float(covariance[offset, offset])

        return position_covariance, power_variance, path_loss_variance

    def _attempt_refine(
        self, readings: Tuple, solution: Solution, inliers_data: Optional[InliersData]
    ) -> Tuple[Solution, Optional[RadioSourceFit]]:
        """Refine the winning solution on its inliers.

        Falls back to the unrefined solution without covariance on failure.
        """
        if not self._config.refine_result or inliers_data is None:
            return solution, None

        inlier_readings = [r for r, inlier in zip(readings, inliers_data.inliers) if inlier]
        try:
            fit = self._fit(inlier_readings, solution)
        except (NumericalError, np.linalg.LinAlgError) as e:
            logger.debug("Refinement failed, keeping unrefined solution: %s", e)
            return solution, None

        return Solution.from_fit(fit), fit

    def estimate(self) -> None:
        """
        Estimate the radio source.

        Raises:
            LockedError: If an estimation is already in progress.
            NotReadyError: If the estimator is not ready.
            RobustEstimatorError: If no solution could be found.
        """
        self._check_locked()
        if not self.is_ready():
            raise NotReadyError(f"{type(self).__name__} is not ready")

        readings = self._readings
        config = self._config
        method = self._method
        refine = config.refine_result

        engine = ConsensusEngine(
            method,
            total_samples=len(readings),
            subset_size=self.subset_size,
            fit=lambda indices: self._solve_preliminary_solutions(readings, indices),
            residual=lambda solution, i: self._residual(solution, readings[i]),
            threshold=None if method.uses_median else self.threshold,
            stop_threshold=self.threshold if method.uses_median else None,
            quality_scores=self._quality_scores,
            confidence=config.confidence,
            max_iterations=config.max_iterations,
            inlier_factor=config.inlier_factor,
            use_inlier_thresholds=self.use_inlier_thresholds,
            compute_and_keep_inliers=config.compute_and_keep_inliers or refine,
            compute_and_keep_residuals=config.compute_and_keep_residuals or refine,
            progress_delta=config.progress_delta,
            on_iteration=self._notify_iteration,
            on_progress=self._notify_progress,
            rng=np.random.default_rng(config.random_seed),
        )

        try:
            self._locked = True
            if self._listener is not None:
                self._listener.on_estimate_start(self)

            result = engine.estimate()
            solution, fit = self._attempt_refine(readings, result.model, result.inliers_data)

            covariance = None
            position_covariance = power_variance = path_loss_variance = None
            if fit is not None and config.keep_covariance and fit.covariance is not None:
                covariance = fit.covariance
                position_covariance, power_variance, path_loss_variance = (
                    self._partition_covariance(covariance)
                )

            self._estimated_position = solution.position
            self._estimated_transmitted_power_dbm = solution.transmitted_power_dbm
            self._estimated_path_loss_exponent = solution.path_loss_exponent
            self._estimated_covariance = covariance
            self._estimated_position_covariance = position_covariance
            self._estimated_transmitted_power_variance = power_variance
            self._estimated_path_loss_exponent_variance = path_loss_variance
            self._inliers_data = result.inliers_data
            self._estimated_source = readings[0].source

            logger.debug(
                "%s estimate after %d iterations: position=%s, refined=%s",
                method.name,
                result.iterations,
                solution.position,
                fit is not None,
            )

            if self._listener is not None:
                self._listener.on_estimate_end(self)
        except ConsensusNotReadyError as e:
            raise NotReadyError(str(e)) from e
        except ConsensusError as e:
            raise RobustEstimatorError(str(e)) from e
        finally:
            self._locked = False
