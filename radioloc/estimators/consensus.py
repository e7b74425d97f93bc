"""
Robust consensus estimation (RANSAC, MSAC, PROSAC, LMedS, PROMedS).

This module implements one generic outlier-resistant estimator that works
with any model. The caller supplies two closures:

    fit(indices) -> list of candidate models (empty for a degenerate subset)
    residual(model, i) -> non-negative error of sample i against model

The consensus method selects the sampling order and scoring rule:

    Method    Sampling          Score                    Inlier rule
    RANSAC    uniform           inlier count (max)       r < threshold
    MSAC      uniform           Σ min(r, threshold)      r < threshold
    PROSAC    quality ordered   inlier count (max)       r < threshold
    LMedS     uniform           median residual (min)    r <= k·σ̂
    PROMedS   quality ordered   median residual (min)    r <= k·σ̂

Iteration bound after each improvement (w = inlier ratio, m = subset size):
    k = log(1 - confidence) / log(1 - w^m)

LMedS and PROMedS assume the breakdown point w = 0.5, since their median
based inlier threshold always classifies at least half the samples as
inliers. They stop earlier only once the best median reaches the stop
threshold.

LMedS noise scale (Rousseeuw):
    σ̂ = 1.4826 · (1 + 5 / (N - m)) · median
"""

from dataclasses import dataclass
from enum import Enum
import logging
import math
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

import numpy as np
from scipy import stats

from radioloc.exceptions import ConsensusError, ConsensusNotReadyError

logger = logging.getLogger(__name__)

Model = TypeVar("Model")

DEFAULT_CONFIDENCE = 0.99
DEFAULT_MAX_ITERATIONS = 5000
DEFAULT_PROGRESS_DELTA = 0.05
DEFAULT_THRESHOLD = 0.1
DEFAULT_STOP_THRESHOLD = 1e-4
DEFAULT_INLIER_FACTOR = 1.5
DEFAULT_RANDOM_SEED = 0
MIN_ITERATIONS = 1

# Classical LMedS rejection rule used when inlier thresholds are disabled
LMEDS_REJECTION_FACTOR = 2.5

# Inlier ratio assumed by median based methods
LMEDS_BREAKDOWN_RATIO = 0.5

# PROSAC non-randomness test parameters (Chum & Matas, 2005)
PROSAC_ETA0 = 0.05
PROSAC_BETA = 0.01

MAD_SCALE = 1.4826


class RobustEstimatorMethod(Enum):
    """Consensus method used to reject outliers."""

    RANSAC = "ransac"
    LMEDS = "lmeds"
    MSAC = "msac"
    PROSAC = "prosac"
    PROMEDS = "promeds"

    @property
    def requires_quality_scores(self) -> bool:
        """True for methods that sample in order of decreasing quality."""
        return self in (RobustEstimatorMethod.PROSAC, RobustEstimatorMethod.PROMEDS)

    @property
    def uses_median(self) -> bool:
        """True for methods scoring by median residual (stop threshold)."""
        return self in (RobustEstimatorMethod.LMEDS, RobustEstimatorMethod.PROMEDS)


DEFAULT_ROBUST_METHOD = RobustEstimatorMethod.PROMEDS


@dataclass
class InliersData:
    """Inlier classification of the winning consensus model.

    Attributes:
        inliers: Boolean membership mask, shape (N,).
        residuals: Residuals of every sample against the winning model,
            or None when residuals are not kept.
        num_inliers: Number of True entries in the mask.
        best_threshold: Threshold used to classify inliers.
        best_median: Median residual of the winning model (LMedS family only).
    """

    inliers: np.ndarray
    residuals: Optional[np.ndarray]
    num_inliers: int
    best_threshold: float
    best_median: Optional[float] = None


@dataclass
class ConsensusResult(Generic[Model]):
    """Result of a consensus run.

    Attributes:
        model: Winning model.
        inliers_data: Inlier classification, or None if not requested.
        iterations: Number of sampling iterations performed.
    """

    model: Model
    inliers_data: Optional[InliersData]
    iterations: int


def compute_iterations(
    inlier_ratio: float,
    subset_size: int,
    confidence: float,
    max_iterations: int,
) -> int:
    """
    Number of samples needed to draw one outlier-free subset.

    Args:
        inlier_ratio: Estimated fraction of inliers w in [0, 1].
        subset_size: Number of samples per subset m.
        confidence: Desired probability of success in [0, 1].
        max_iterations: Upper bound on the result.

    Returns:
        Iterations k = log(1 - confidence) / log(1 - w^m), clipped to
        [MIN_ITERATIONS, max_iterations].
    """
    w_m = inlier_ratio**subset_size
    if confidence >= 1.0 or w_m <= 0.0:
        return max_iterations
    if w_m >= 1.0 - np.finfo(float).eps:
        return MIN_ITERATIONS
    if confidence <= 0.0:
        return MIN_ITERATIONS

    k = math.log(1.0 - confidence) / math.log(1.0 - w_m)
    return int(min(max(math.ceil(k), MIN_ITERATIONS), max_iterations))


class ConsensusEngine(Generic[Model]):
    """
    Generic robust estimator driving fit and residual closures.

    Attributes:
        method: Consensus method.
        total_samples: Number of samples N.
        subset_size: Number of samples drawn per iteration m.
    """

    def __init__(
        self,
        method: RobustEstimatorMethod,
        total_samples: int,
        subset_size: int,
        fit: Callable[[np.ndarray], List[Model]],
        residual: Callable[[Model, int], float],
        threshold: Optional[float] = None,
        stop_threshold: Optional[float] = None,
        quality_scores: Optional[Sequence[float]] = None,
        confidence: float = DEFAULT_CONFIDENCE,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        inlier_factor: float = DEFAULT_INLIER_FACTOR,
        use_inlier_thresholds: bool = True,
        compute_and_keep_inliers: bool = True,
        compute_and_keep_residuals: bool = True,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        on_iteration: Optional[Callable[[int], None]] = None,
        on_progress: Optional[Callable[[float], None]] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize consensus engine.

        Args:
            method: Consensus method.
            total_samples: Number of samples N.
            subset_size: Number of samples per candidate fit m.
            fit: Closure fitting candidate models to a subset of indices.
            residual: Closure returning the residual of sample i.
            threshold: Inlier threshold (RANSAC, MSAC, PROSAC).
            stop_threshold: Early-stop median threshold (LMedS, PROMedS).
            quality_scores: Per-sample quality, higher is better
                (PROSAC, PROMedS).
            confidence: Desired probability of success in [0, 1].
            max_iterations: Maximum number of iterations (>= 1).
            inlier_factor: Multiple of σ̂ accepted as inlier (LMedS family).
            use_inlier_thresholds: Use inlier_factor instead of the classical
                2.5·σ̂ rejection rule (LMedS family, reporting only).
            compute_and_keep_inliers: Return the inlier mask.
            compute_and_keep_residuals: Return residuals of the winner.
            progress_delta: Minimum progress change between notifications.
            on_iteration: Called with the iteration number (1-based).
            on_progress: Called with progress in [0, 1].
            rng: Random generator; a new default generator if None.
        """
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"Confidence level must be in [0, 1], got {confidence}")
        if max_iterations < MIN_ITERATIONS:
            raise ValueError(f"max_iterations must be >= {MIN_ITERATIONS}, got {max_iterations}")
        if not 0.0 <= progress_delta <= 1.0:
            raise ValueError(f"progress_delta must be in [0, 1], got {progress_delta}")

        self.method = method
        self.total_samples = total_samples
        self.subset_size = subset_size
        self._fit = fit
        self._residual = residual
        self.threshold = DEFAULT_THRESHOLD if threshold is None else threshold
        self.stop_threshold = DEFAULT_STOP_THRESHOLD if stop_threshold is None else stop_threshold
        self.quality_scores = None if quality_scores is None else np.asarray(quality_scores, dtype=float)
        self.confidence = confidence
        self.max_iterations = max_iterations
        self.inlier_factor = inlier_factor
        self.use_inlier_thresholds = use_inlier_thresholds
        self.compute_and_keep_inliers = compute_and_keep_inliers
        self.compute_and_keep_residuals = compute_and_keep_residuals
        self.progress_delta = progress_delta
        self._on_iteration = on_iteration
        self._on_progress = on_progress
        self._rng = rng if rng is not None else np.random.default_rng()

        if self.threshold <= 0:
            raise ValueError(f"threshold must be positive, got {self.threshold}")
        if self.stop_threshold <= 0:
            raise ValueError(f"stop_threshold must be positive, got {self.stop_threshold}")

    def is_ready(self) -> bool:
        """True if there are enough samples (and quality scores if required)."""
        if self.subset_size < 1 or self.total_samples < self.subset_size:
            return False
        if self.method.requires_quality_scores:
            return (
                self.quality_scores is not None
                and self.quality_scores.shape == (self.total_samples,)
            )
        return True

    # =========================================================================
    # Scoring
    # =========================================================================
    def _residuals(self, model: Model) -> np.ndarray:
        return np.array(
            [self._residual(model, i) for i in range(self.total_samples)], dtype=float
        )

    def _median_threshold(self, median: float) -> float:
        n, m = self.total_samples, self.subset_size
        sigma = MAD_SCALE * (1.0 + 5.0 / max(n - m, 1)) * median
        factor = self.inlier_factor if self.use_inlier_thresholds else LMEDS_REJECTION_FACTOR
        return max(factor * sigma, self.stop_threshold)

    def _score(self, residuals: np.ndarray) -> float:
        """Score to minimize for the configured method."""
        if self.method in (RobustEstimatorMethod.RANSAC, RobustEstimatorMethod.PROSAC):
            return -float(np.count_nonzero(residuals < self.threshold))
        if self.method == RobustEstimatorMethod.MSAC:
            return float(np.sum(np.minimum(residuals, self.threshold)))
        return float(np.median(residuals))

    def _inlier_mask(self, residuals: np.ndarray) -> np.ndarray:
        if self.method.uses_median:
            return residuals <= self._median_threshold(float(np.median(residuals)))
        return residuals < self.threshold

    # =========================================================================
    # Sampling
    # =========================================================================
    def _uniform_subset(self) -> np.ndarray:
        return self._rng.choice(self.total_samples, size=self.subset_size, replace=False)

    def _prosac_bound(self, order: np.ndarray, inliers: np.ndarray) -> int:
        """Iteration bound from the best quality-ordered prefix.

        A prefix of size n is eligible when its inlier count passes the
        non-randomness test; the bound is the smallest maximality bound
        among eligible prefixes, or the full-set bound if none is.
        """
        m = self.subset_size
        n_total = self.total_samples
        sorted_inliers = np.cumsum(inliers[order])

        best = compute_iterations(
            sorted_inliers[-1] / n_total, m, self.confidence, self.max_iterations
        )
        for n in range(m + 1, n_total + 1):
            i_n = int(sorted_inliers[n - 1])
            i_min = m + int(stats.binom.isf(PROSAC_ETA0, n - m, PROSAC_BETA)) + 1
            if i_n < i_min:
                continue
            best = min(best, compute_iterations(i_n / n, m, self.confidence, self.max_iterations))
        return best

    # =========================================================================
    # Estimation
    # =========================================================================
    def estimate(self) -> ConsensusResult[Model]:
        """
        Run the consensus algorithm.

        Returns:
            ConsensusResult with the winning model and inlier data.

        Raises:
            ConsensusNotReadyError: If there are not enough samples or
                required quality scores are missing.
            ConsensusError: If no subset produced a model.
        """
        if not self.is_ready():
            raise ConsensusNotReadyError(
                f"{self.method.name} needs at least {self.subset_size} samples"
                + (" and matching quality scores" if self.method.requires_quality_scores else "")
            )

        m = self.subset_size
        n_total = self.total_samples
        progressive = self.method.requires_quality_scores

        if progressive:
            order = np.argsort(-self.quality_scores, kind="stable")
            # PROSAC growth function state
            n = m
            t_n = float(self.max_iterations)
            for i in range(m):
                t_n *= (n - i) / (n_total - i)
            t_n_prime = 1

        best_model = None
        best_score = math.inf
        best_residuals = None
        bound = self.max_iterations
        last_progress = 0.0
        iteration = 0

        while iteration < min(bound, self.max_iterations):
            iteration += 1

            if progressive:
                if iteration > t_n_prime and n < n_total:
                    t_n_next = t_n * (n + 1) / (n + 1 - m)
                    n += 1
                    t_n_prime += math.ceil(t_n_next - t_n)
                    t_n = t_n_next
                if t_n_prime < iteration:
                    subset = order[self._rng.choice(n, size=m, replace=False)]
                else:
                    head = self._rng.choice(n - 1, size=m - 1, replace=False)
                    subset = order[np.append(head, n - 1)]
            else:
                subset = self._uniform_subset()

            for model in self._fit(np.sort(subset)):
                residuals = self._residuals(model)
                score = self._score(residuals)
                if score >= best_score:
                    continue

                best_model = model
                best_score = score
                best_residuals = residuals

                inliers = self._inlier_mask(residuals)
                if self.method.uses_median:
                    bound = compute_iterations(
                        LMEDS_BREAKDOWN_RATIO, m, self.confidence, self.max_iterations
                    )
                elif progressive:
                    bound = self._prosac_bound(order, inliers)
                else:
                    bound = compute_iterations(
                        np.count_nonzero(inliers) / n_total, m, self.confidence, self.max_iterations
                    )
                logger.debug(
                    "%s iteration %d: new best score %.6g, %d inliers, bound %d",
                    self.method.name,
                    iteration,
                    score,
                    np.count_nonzero(inliers),
                    bound,
                )

            if self._on_iteration is not None:
                self._on_iteration(iteration)

            if self._on_progress is not None:
                progress = min(1.0, iteration / max(min(bound, self.max_iterations), 1))
                if progress - last_progress >= self.progress_delta:
                    last_progress = progress
                    self._on_progress(progress)

            if self.method.uses_median and best_model is not None and best_score <= self.stop_threshold:
                break

        if best_model is None:
            raise ConsensusError(
                f"{self.method.name} found no model after {iteration} iterations"
            )

        inliers_data = None
        if self.compute_and_keep_inliers or self.compute_and_keep_residuals:
            inliers = self._inlier_mask(best_residuals)
            if self.method.uses_median:
                best_median = float(np.median(best_residuals))
                best_threshold = self._median_threshold(best_median)
            else:
                best_median = None
                best_threshold = self.threshold
            inliers_data = InliersData(
                inliers=inliers,
                residuals=best_residuals if self.compute_and_keep_residuals else None,
                num_inliers=int(np.count_nonzero(inliers)),
                best_threshold=best_threshold,
                best_median=best_median,
            )

        return ConsensusResult(model=best_model, inliers_data=inliers_data, iterations=iteration)
