"""
Robust model estimation by random sample consensus.

This module implements a generic consensus engine and the five scoring /
sampling policies it can run with:

    - RANSAC:  uniform sampling, maximise the number of inliers e ≤ t
    - MSAC:    uniform sampling, minimise the truncated cost Σ min(e, t)
    - LMedS:   uniform sampling, minimise the median residual
    - PROSAC:  progressive (quality-ordered) sampling, scored as RANSAC
    - PROMedS: progressive (quality-ordered) sampling, scored as LMedS

The engine knows nothing about the model being fitted. The problem is
supplied through two callables:

    estimate_preliminary(indices) -> list of candidate models
        Fits zero or more models to the measurements at ``indices``. An
        empty list means the subset was degenerate and is skipped.
    compute_residual(model, index) -> float
        Non-negative error of measurement ``index`` under ``model``.

Number of iterations:
    After each improvement of the best model the number of samples needed
    to draw at least one all-inlier subset with probability ``confidence``
    is re-evaluated:

        N = log(1 - confidence) / log(1 - w^p)

    with w the inlier ratio of the best model and p the subset size; the
    search stops after N samples (never more than ``max_iterations``).

References:
    M. A. Fischler, R. C. Bolles (1981), Random Sample Consensus.
    P. J. Rousseeuw (1984), Least Median of Squares Regression.
    P. H. S. Torr, A. Zisserman (2000), MLESAC.
    O. Chum, J. Matas (2005), Matching with PROSAC - Progressive Sample Consensus.
"""

import logging
import math
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, List, Optional, Sequence, Tuple, TypeVar, Union

import numpy as np

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")

Score = Tuple[float, ...]

DEFAULT_CONFIDENCE = 0.99
DEFAULT_MAX_ITERATIONS = 5000
DEFAULT_PROGRESS_DELTA = 0.05
DEFAULT_THRESHOLD = 1e-2
DEFAULT_STOP_THRESHOLD = 1e-4
DEFAULT_INLIER_FACTOR = 1.5

# Residual reported for a measurement a candidate model cannot be applied to.
# Such measurements are outliers under every method.
MAX_RESIDUAL = float(np.finfo(np.float64).max)


class RobustMethod(Enum):
    """Robust estimation method."""

    RANSAC = "ransac"
    LMEDS = "lmeds"
    MSAC = "msac"
    PROSAC = "prosac"
    PROMEDS = "promeds"

    @property
    def requires_quality_scores(self) -> bool:
        return self in (RobustMethod.PROSAC, RobustMethod.PROMEDS)


class RobustEstimatorError(Exception):
    """Raised when the consensus search produced no valid candidate."""


@dataclass
class InliersData:
    """Inlier classification of all measurements under the best model.

    Attributes:
        inliers: Boolean mask, True for measurements accepted as inliers.
        residuals: Residual of every measurement under the best model.
    """

    inliers: np.ndarray
    residuals: np.ndarray

    @property
    def num_inliers(self) -> int:
        return int(np.count_nonzero(self.inliers))

    @property
    def inlier_indices(self) -> np.ndarray:
        return np.flatnonzero(self.inliers)


@dataclass
class RobustEstimatorResult(Generic[ModelT]):
    """Outcome of a consensus search.

    Attributes:
        model: Best model found.
        inliers_data: Classification of all measurements under ``model``.
        score: Strategy-specific score of ``model`` (lower is better).
        iterations: Number of subsets drawn.
    """

    model: ModelT
    inliers_data: InliersData
    score: Score
    iterations: int


def required_iterations(
    inlier_ratio: float, subset_size: int, confidence: float, max_iterations: int
) -> int:
    """
    Number of samples needed to draw an all-inlier subset with a given confidence.

    Args:
        inlier_ratio: Fraction w of inliers, in [0, 1].
        subset_size: Subset size p.
        confidence: Desired probability, in [0, 1].
        max_iterations: Upper bound returned when the estimate is unbounded.

    Returns:
        ceil(log(1 - confidence) / log(1 - w^p)), clamped to [1, max_iterations].
    """
    if confidence <= 0.0 or inlier_ratio >= 1.0:
        return 1
    if confidence >= 1.0 or inlier_ratio <= 0.0:
        return max_iterations

    all_inliers_prob = inlier_ratio**subset_size
    denom = math.log1p(-all_inliers_prob)
    if denom == 0.0:
        return max_iterations
    n = math.ceil(math.log(1.0 - confidence) / denom)
    return int(min(max(n, 1), max_iterations))


class UniformSampler:
    """Draws subsets uniformly without replacement."""

    def __init__(self, num_samples: int, subset_size: int, rng: np.random.Generator):
        self.num_samples = num_samples
        self.subset_size = subset_size
        self.rng = rng

    def draw(self) -> np.ndarray:
        return np.sort(self.rng.choice(self.num_samples, size=self.subset_size, replace=False))


class ProgressiveSampler:
    """
    PROSAC sampler: subsets are drawn from a growing set of top-ranked samples.

    Samples are ranked by decreasing quality score. The sampling pool starts
    with the best ``subset_size`` samples and grows according to the
    Chum-Matas growth function, so that the sampler converges to uniform
    sampling of the full set after about ``growth_limit`` draws. Callers
    pass their own iteration cap as ``growth_limit``.
    """

    def __init__(
        self,
        num_samples: int,
        subset_size: int,
        rng: np.random.Generator,
        quality_scores: np.ndarray,
        growth_limit: int,
    ):
        self.num_samples = num_samples
        self.subset_size = subset_size
        self.rng = rng
        # Stable sort keeps the original order among equal scores
        self.sorted_indices = np.argsort(-np.asarray(quality_scores, dtype=np.float64), kind="stable")

        m = subset_size
        t_n = float(growth_limit)
        for i in range(m):
            t_n *= (m - i) / (num_samples - i)
        self._t_n = t_n
        self._t_n_prime = 1
        self._n = m
        self._t = 0

    def draw(self) -> np.ndarray:
        m = self.subset_size
        self._t += 1

        while self._t == self._t_n_prime and self._n < self.num_samples:
            t_n_next = self._t_n * (self._n + 1) / (self._n + 1 - m)
            self._t_n_prime += int(math.ceil(t_n_next - self._t_n))
            self._t_n = t_n_next
            self._n += 1

        if self._t_n_prime < self._t:
            positions = self.rng.choice(self._n, size=m, replace=False)
        else:
            positions = np.append(
                self.rng.choice(self._n - 1, size=m - 1, replace=False), self._n - 1
            )
        return np.sort(self.sorted_indices[positions])


def _usable(residuals: np.ndarray) -> np.ndarray:
    """Mask of residuals that are finite and below MAX_RESIDUAL."""
    return np.isfinite(residuals) & (residuals < MAX_RESIDUAL)


class RobustStrategy(ABC):
    """Scoring and sampling policy of one robust method."""

    method: RobustMethod

    def make_sampler(
        self,
        num_samples: int,
        subset_size: int,
        rng: np.random.Generator,
        quality_scores: Optional[np.ndarray],
        max_iterations: int,
    ):
        return UniformSampler(num_samples, subset_size, rng)

    @abstractmethod
    def evaluate(self, residuals: np.ndarray, subset_size: int) -> Tuple[Score, np.ndarray]:
        """Score a candidate (lower is better) and classify its inliers."""

    def should_stop(self, score: Score) -> bool:
        """True when ``score`` is good enough to end the search early."""
        return False


class RansacStrategy(RobustStrategy):
    """Maximum inlier count; ties broken by the lower inlier residual sum."""

    method = RobustMethod.RANSAC

    def __init__(self, threshold: float = DEFAULT_THRESHOLD):
        if threshold <= 0.0:
            raise ValueError(f"threshold must be positive, got {threshold}")
        self.threshold = threshold

    def evaluate(self, residuals, subset_size):
        inliers = _usable(residuals) & (residuals <= self.threshold)
        return (-float(np.count_nonzero(inliers)), float(np.sum(residuals[inliers]))), inliers


class MsacStrategy(RobustStrategy):
    """Minimum truncated quadratic cost Σ min(e, t)."""

    method = RobustMethod.MSAC

    def __init__(self, threshold: float = DEFAULT_THRESHOLD):
        if threshold <= 0.0:
            raise ValueError(f"threshold must be positive, got {threshold}")
        self.threshold = threshold

    def evaluate(self, residuals, subset_size):
        inliers = _usable(residuals) & (residuals <= self.threshold)
        # Every outlier, usable or not, costs the threshold
        cost = float(np.sum(np.where(inliers, residuals, self.threshold)))
        return (cost,), inliers


class LmedsStrategy(RobustStrategy):
    """
    Least median of residuals.

    Inliers are the samples whose residual is within the robust scale
    estimate derived from the median:

        σ̂ = 1.4826 · (1 + 5 / (n - p)) · sqrt(median(e))
        inlier ⇔ e ≤ max((inlier_factor · σ̂)², stop_threshold)

    Residuals that are not finite or reach MAX_RESIDUAL never count as
    inliers. When they make up the median the candidate scores (inf, 0) and
    has no inliers at all.

    The search stops as soon as the best median falls below
    ``stop_threshold``.
    """

    method = RobustMethod.LMEDS

    def __init__(
        self,
        stop_threshold: float = DEFAULT_STOP_THRESHOLD,
        inlier_factor: float = DEFAULT_INLIER_FACTOR,
    ):
        if stop_threshold < 0.0:
            raise ValueError(f"stop_threshold must be non-negative, got {stop_threshold}")
        if inlier_factor <= 0.0:
            raise ValueError(f"inlier_factor must be positive, got {inlier_factor}")
        self.stop_threshold = stop_threshold
        self.inlier_factor = inlier_factor

    def evaluate(self, residuals, subset_size):
        n = len(residuals)
        usable = _usable(residuals)
        # inf sorts last and keeps the median from overflowing
        residuals = np.where(usable, residuals, np.inf)
        median = float(np.median(residuals))
        if not np.isfinite(median):
            return (np.inf, 0.0), np.zeros(n, dtype=bool)

        correction = 1.0 + 5.0 / (n - subset_size) if n > subset_size else 1.0
        sigma = 1.4826 * correction * math.sqrt(median)
        threshold = min(max((self.inlier_factor * sigma) ** 2, self.stop_threshold), MAX_RESIDUAL)
        inliers = usable & (residuals <= threshold)
        return (median, -float(np.count_nonzero(inliers))), inliers

    def should_stop(self, score):
        return score[0] <= self.stop_threshold


class _ProgressiveSampling:
    def make_sampler(self, num_samples, subset_size, rng, quality_scores, max_iterations):
        if quality_scores is None:
            raise ValueError(f"{self.method.name} requires quality scores")
        return ProgressiveSampler(num_samples, subset_size, rng, quality_scores, max_iterations)


class ProsacStrategy(_ProgressiveSampling, RansacStrategy):
    """RANSAC scoring with progressive sampling."""

    method = RobustMethod.PROSAC


class PromedsStrategy(_ProgressiveSampling, LmedsStrategy):
    """LMedS scoring with progressive sampling."""

    method = RobustMethod.PROMEDS


def make_strategy(
    method: Union[RobustMethod, str],
    threshold: Optional[float] = None,
    stop_threshold: Optional[float] = None,
) -> RobustStrategy:
    """
    Build the strategy for a robust method.

    Args:
        method: RobustMethod or its name (case-insensitive).
        threshold: Inlier threshold (RANSAC, MSAC, PROSAC).
        stop_threshold: Early-stop median threshold (LMedS, PROMedS).

    Raises:
        ValueError: If the method is unknown or a threshold is invalid.
    """
    if isinstance(method, str):
        try:
            method = RobustMethod(method.lower())
        except ValueError:
            raise ValueError(f"Unknown robust method: {method}") from None

    threshold = DEFAULT_THRESHOLD if threshold is None else threshold
    stop_threshold = DEFAULT_STOP_THRESHOLD if stop_threshold is None else stop_threshold

    if method == RobustMethod.RANSAC:
        return RansacStrategy(threshold)
    elif method == RobustMethod.MSAC:
        return MsacStrategy(threshold)
    elif method == RobustMethod.PROSAC:
        return ProsacStrategy(threshold)
    elif method == RobustMethod.LMEDS:
        return LmedsStrategy(stop_threshold)
    elif method == RobustMethod.PROMEDS:
        return PromedsStrategy(stop_threshold)
    raise ValueError(f"Unknown robust method: {method}")


class RobustEstimator(Generic[ModelT]):
    """
    Generic consensus search over minimal-subset candidate models.

    Args:
        strategy: Scoring/sampling policy.
        num_samples: Total number of measurements n.
        subset_size: Number of measurements per drawn subset p (p ≤ n).
        estimate_preliminary: Callable fitting candidate models to a subset.
        compute_residual: Callable returning the error of one measurement.
        confidence: Desired probability of drawing one all-inlier subset.
        max_iterations: Hard bound on the number of drawn subsets.
        progress_delta: Minimum progress increment between notifications.
        quality_scores: Per-measurement quality (progressive methods only).
        rng: Seed or numpy Generator used for sampling.
        on_iteration: Called with the 1-based iteration number after each draw.
        on_progress: Called with progress in [0, 1].

    Example:
        >>> import numpy as np
        >>> x = np.linspace(0, 1, 50); y = 2 * x + 1; y[::10] += 5
        >>> def fit(idx):
        ...     return [np.polyfit(x[idx], y[idx], 1)]
        >>> def err(model, i):
        ...     return (np.polyval(model, x[i]) - y[i]) ** 2
        >>> est = RobustEstimator(RansacStrategy(1e-3), 50, 2, fit, err, rng=0)
        >>> result = est.estimate()
    """

    def __init__(
        self,
        strategy: RobustStrategy,
        num_samples: int,
        subset_size: int,
        estimate_preliminary: Callable[[np.ndarray], List[ModelT]],
        compute_residual: Callable[[ModelT, int], float],
        confidence: float = DEFAULT_CONFIDENCE,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        quality_scores: Optional[Sequence[float]] = None,
        rng: Union[None, int, np.random.Generator] = None,
        on_iteration: Optional[Callable[[int], None]] = None,
        on_progress: Optional[Callable[[float], None]] = None,
    ):
        if subset_size < 1:
            raise ValueError(f"subset_size must be >= 1, got {subset_size}")
        if num_samples < subset_size:
            raise ValueError(
                f"num_samples ({num_samples}) must be >= subset_size ({subset_size})"
            )
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {confidence}")
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        if not 0.0 <= progress_delta <= 1.0:
            raise ValueError(f"progress_delta must be in [0, 1], got {progress_delta}")
        if quality_scores is not None:
            quality_scores = np.asarray(quality_scores, dtype=np.float64)
            if quality_scores.shape != (num_samples,):
                raise ValueError(
                    f"quality_scores must have length {num_samples}, got {quality_scores.shape}"
                )

        self.strategy = strategy
        self.num_samples = num_samples
        self.subset_size = subset_size
        self.estimate_preliminary = estimate_preliminary
        self.compute_residual = compute_residual
        self.confidence = confidence
        self.max_iterations = max_iterations
        self.progress_delta = progress_delta
        self.quality_scores = quality_scores
        self.rng = np.random.default_rng(rng)
        self.on_iteration = on_iteration
        self.on_progress = on_progress

    def _residuals(self, model: ModelT) -> np.ndarray:
        return np.array(
            [self.compute_residual(model, i) for i in range(self.num_samples)],
            dtype=np.float64,
        )

    def estimate(self) -> RobustEstimatorResult[ModelT]:
        """
        Run the consensus search.

        Returns:
            RobustEstimatorResult with the best model and its inliers.

        Raises:
            RobustEstimatorError: If no subset produced a candidate model.
        """
        sampler = self.strategy.make_sampler(
            self.num_samples,
            self.subset_size,
            self.rng,
            self.quality_scores,
            self.max_iterations,
        )

        best: Optional[RobustEstimatorResult[ModelT]] = None
        needed = self.max_iterations
        unbounded = True
        last_progress = 0.0
        stop = False
        iteration = 0

        while iteration < needed and not stop:
            iteration += 1
            subset = sampler.draw()
            candidates = self.estimate_preliminary(subset)

            for model in candidates:
                residuals = self._residuals(model)
                score, inliers = self.strategy.evaluate(residuals, self.subset_size)
                if best is not None and not score < best.score:
                    continue

                best = RobustEstimatorResult(
                    model=model,
                    inliers_data=InliersData(inliers=inliers, residuals=residuals),
                    score=score,
                    iterations=iteration,
                )
                ratio = best.inliers_data.num_inliers / self.num_samples
                unclamped = required_iterations(
                    ratio, self.subset_size, self.confidence, self.max_iterations + 1
                )
                unbounded = unclamped > self.max_iterations
                needed = min(unclamped, self.max_iterations)
                logger.debug(
                    "iteration %d: new best score %s with %d inliers, %d iterations needed",
                    iteration, score, best.inliers_data.num_inliers, needed,
                )
                if self.strategy.should_stop(score):
                    stop = True
                    break

            if self.on_iteration is not None:
                self.on_iteration(iteration)

            progress = min(iteration / needed, 1.0)
            if self.on_progress is not None and progress - last_progress >= self.progress_delta:
                last_progress = progress
                self.on_progress(progress)

        if best is None:
            raise RobustEstimatorError(
                f"no valid candidate model found after {iteration} iterations"
            )

        if unbounded and not stop:
            warnings.warn(
                f"Reached max_iterations={self.max_iterations} before the requested "
                f"confidence {self.confidence}; returning best model found",
                UserWarning,
            )

        best.iterations = iteration
        return best
