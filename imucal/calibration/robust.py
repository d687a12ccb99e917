"""
Robust accelerometer calibration at a known position.

Static measurements collected at a known position are calibrated with the
gravity-norm model of :mod:`imucal.calibration.gravity_norm` while
rejecting outlier samples (bumps, vibration, mislabelled static intervals).
The calibration runs in three stages:

    1. Preliminary solutions: GravityNormCalibrator fitted to subsets of
       ``preliminary_subset_size`` measurements, seeded with the configured
       initial bias/Ma. Subsets on which the fit fails yield no candidate.
    2. Consensus: every candidate is scored on all measurements with

           e_i = (g - ‖(I + Ma)⁻¹ (f_i - b)‖)²

       and the best candidate under the chosen robust method is kept,
       together with its inlier set (see :mod:`imucal.estimators.robust`).
    3. Refinement: the best candidate is refitted on its inliers only.
       If that fit fails the unrefined candidate is returned as is.

Example:
    >>> cal = RobustKnownPositionCalibrator(
    ...     RobustMethod.RANSAC, measurements, position=site,
    ...     common_axis_used=True, threshold=1e-3, random_state=0)
    >>> result = cal.calibrate()
    >>> print(result.bias, cal.inliers_data.num_inliers)
"""

import dataclasses
import logging
from typing import List, Optional, Sequence, Union

import numpy as np

from imucal.calibration.base import KnownPositionCalibrator, RobustCalibratorListener
from imucal.calibration.errors import CalibrationError, LockedError, NotReadyError
from imucal.calibration.gravity_norm import GravityNormCalibrator
from imucal.calibration.result import CalibrationResult
from imucal.estimators.robust import (
    DEFAULT_CONFIDENCE,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_PROGRESS_DELTA,
    DEFAULT_STOP_THRESHOLD,
    DEFAULT_THRESHOLD,
    MAX_RESIDUAL,
    InliersData,
    RobustEstimator,
    RobustEstimatorError,
    RobustMethod,
    make_strategy,
)
from imucal.sensors.gravity import gravity_norm
from imucal.sensors.imu_models import fix_acceleration
from imucal.sensors.types import Measurement, Position

logger = logging.getLogger(__name__)

# Residual assigned to a measurement when a candidate cannot be applied to it
MAX_ERROR = MAX_RESIDUAL


def compute_error(
    measurement: Measurement,
    bias: np.ndarray,
    ma: np.ndarray,
    gravity_norm_value: float,
) -> float:
    """
    Squared deviation of the corrected specific-force norm from gravity.

        e = (g - ‖(I + Ma)⁻¹ (f_meas - b)‖)²

    Args:
        measurement: Measurement to score.
        bias: Candidate bias (3,).
        ma: Candidate Ma (3, 3).
        gravity_norm_value: Local gravity norm g (m/s²).

    Returns:
        Non-negative error in (m/s²)², or MAX_ERROR if (I + Ma) cannot be
        inverted or the result is not finite.
    """
    try:
        f_true = fix_acceleration(measurement.specific_force, bias, ma)
    except (np.linalg.LinAlgError, ValueError):
        return MAX_ERROR

    error = (gravity_norm_value - float(np.linalg.norm(f_true))) ** 2
    return error if np.isfinite(error) else MAX_ERROR


class RobustKnownPositionCalibrator(KnownPositionCalibrator):
    """
    Outlier-resistant gravity-norm calibration of an accelerometer.

    Args:
        method: Robust method (RANSAC, LMEDS, MSAC, PROSAC or PROMEDS).
        measurements: Static measurements; their order defines inlier indices.
        position: Known position of the calibration site.
        common_axis_used: Fit the upper-triangular (common-axis) Ma model.
        initial_bias: Initial bias guess for every preliminary fit.
        initial_ma: Initial Ma guess for every preliminary fit.
        quality_scores: Per-measurement quality, higher is better. Required
            by PROSAC and PROMEDS, one score per measurement.
        listener: Object with any of on_calibrate_start, on_calibrate_end,
            on_calibrate_next_iteration and on_calibrate_progress_change.
        confidence: Probability of drawing at least one outlier-free subset.
        max_iterations: Maximum number of drawn subsets.
        progress_delta: Minimum progress increment between notifications.
        preliminary_subset_size: Measurements per subset. Defaults to the
            minimum (10 common-axis, 13 general; 7 and 10 with a known bias).
        refine_result: Refit the best candidate on its inliers.
        keep_covariance: Keep the parameter covariance in the result.
        threshold: Inlier threshold on e for RANSAC, MSAC and PROSAC.
        stop_threshold: Median residual at which LMedS/PROMedS stop early.
        random_state: Seed or numpy Generator for subset sampling.
        known_bias: Bias to hold fixed (m/s²). Candidates and the refined
            result then estimate Ma only.

    Raises:
        ValueError: On invalid configuration, including quality scores
            shorter than the minimum number of measurements for the
            progressive methods.
    """

    DEFAULT_ROBUST_METHOD = RobustMethod.LMEDS
    DEFAULT_CONFIDENCE = DEFAULT_CONFIDENCE
    DEFAULT_MAX_ITERATIONS = DEFAULT_MAX_ITERATIONS
    DEFAULT_PROGRESS_DELTA = DEFAULT_PROGRESS_DELTA
    DEFAULT_THRESHOLD = DEFAULT_THRESHOLD
    DEFAULT_STOP_THRESHOLD = DEFAULT_STOP_THRESHOLD
    DEFAULT_REFINE_RESULT = True
    DEFAULT_KEEP_COVARIANCE = True

    def __init__(
        self,
        method: Union[RobustMethod, str] = DEFAULT_ROBUST_METHOD,
        measurements: Sequence[Measurement] = (),
        position: Union[None, Position, Sequence[float]] = None,
        common_axis_used: bool = False,
        initial_bias: Optional[Sequence[float]] = None,
        initial_ma: Optional[np.ndarray] = None,
        quality_scores: Optional[Sequence[float]] = None,
        listener: Optional[RobustCalibratorListener] = None,
        confidence: float = DEFAULT_CONFIDENCE,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        progress_delta: float = DEFAULT_PROGRESS_DELTA,
        preliminary_subset_size: Optional[int] = None,
        refine_result: bool = DEFAULT_REFINE_RESULT,
        keep_covariance: bool = DEFAULT_KEEP_COVARIANCE,
        threshold: float = DEFAULT_THRESHOLD,
        stop_threshold: float = DEFAULT_STOP_THRESHOLD,
        random_state: Union[None, int, np.random.Generator] = None,
        known_bias: Optional[Sequence[float]] = None,
    ):
        self._method = RobustMethod.LMEDS
        self._quality_scores: Optional[np.ndarray] = None
        self._confidence = DEFAULT_CONFIDENCE
        self._max_iterations = DEFAULT_MAX_ITERATIONS
        self._progress_delta = DEFAULT_PROGRESS_DELTA
        self._preliminary_subset_size: Optional[int] = None
        self._refine_result = True
        self._keep_covariance = True
        self._threshold = DEFAULT_THRESHOLD
        self._stop_threshold = DEFAULT_STOP_THRESHOLD
        self._inliers_data: Optional[InliersData] = None
        self._rng = np.random.default_rng(random_state)
        super().__init__(
            measurements, position, common_axis_used, initial_bias, initial_ma, listener, known_bias
        )

        self.method = method
        self.confidence = confidence
        self.max_iterations = max_iterations
        self.progress_delta = progress_delta
        self.preliminary_subset_size = preliminary_subset_size
        self.refine_result = refine_result
        self.keep_covariance = keep_covariance
        self.threshold = threshold
        self.stop_threshold = stop_threshold
        self.quality_scores = quality_scores

        if self._method.requires_quality_scores and self._quality_scores is None:
            raise ValueError(f"{self._method.name} requires quality_scores")

    # Configuration
    @property
    def method(self) -> RobustMethod:
        return self._method

    @method.setter
    def method(self, value: Union[RobustMethod, str]) -> None:
        self._check_not_running()
        if isinstance(value, str):
            try:
                value = RobustMethod(value.lower())
            except ValueError:
                raise ValueError(f"Unknown robust method: {value}") from None
        if not isinstance(value, RobustMethod):
            raise ValueError(f"method must be a RobustMethod, got {value!r}")
        self._method = value

    @property
    def quality_scores(self) -> Optional[np.ndarray]:
        return None if self._quality_scores is None else self._quality_scores.copy()

    @quality_scores.setter
    def quality_scores(self, value: Optional[Sequence[float]]) -> None:
        self._check_not_running()
        if value is None:
            self._quality_scores = None
            return
        scores = np.array(value, dtype=np.float64)
        if scores.ndim != 1:
            raise ValueError(f"quality_scores must be 1D, got shape {scores.shape}")
        if len(scores) < self.minimum_required_measurements:
            raise ValueError(
                f"quality_scores needs at least {self.minimum_required_measurements} "
                f"values, got {len(scores)}"
            )
        self._quality_scores = scores

    @property
    def confidence(self) -> float:
        return self._confidence

    @confidence.setter
    def confidence(self, value: float) -> None:
        self._check_not_running()
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {value}")
        self._confidence = float(value)

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    @max_iterations.setter
    def max_iterations(self, value: int) -> None:
        self._check_not_running()
        if value < 1:
            raise ValueError(f"max_iterations must be >= 1, got {value}")
        self._max_iterations = int(value)

    @property
    def progress_delta(self) -> float:
        return self._progress_delta

    @progress_delta.setter
    def progress_delta(self, value: float) -> None:
        self._check_not_running()
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"progress_delta must be in [0, 1], got {value}")
        self._progress_delta = float(value)

    @property
    def preliminary_subset_size(self) -> int:
        if self._preliminary_subset_size is None:
            return self.minimum_required_measurements
        return self._preliminary_subset_size

    @preliminary_subset_size.setter
    def preliminary_subset_size(self, value: Optional[int]) -> None:
        self._check_not_running()
        if value is not None and value < self.minimum_required_measurements:
            raise ValueError(
                f"preliminary_subset_size must be >= {self.minimum_required_measurements}, "
                f"got {value}"
            )
        self._preliminary_subset_size = None if value is None else int(value)

    @property
    def refine_result(self) -> bool:
        return self._refine_result

    @refine_result.setter
    def refine_result(self, value: bool) -> None:
        self._check_not_running()
        self._refine_result = bool(value)

    @property
    def keep_covariance(self) -> bool:
        return self._keep_covariance

    @keep_covariance.setter
    def keep_covariance(self, value: bool) -> None:
        self._check_not_running()
        self._keep_covariance = bool(value)

    @property
    def threshold(self) -> float:
        return self._threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        self._check_not_running()
        if not value > 0.0:
            raise ValueError(f"threshold must be positive, got {value}")
        self._threshold = float(value)

    @property
    def stop_threshold(self) -> float:
        return self._stop_threshold

    @stop_threshold.setter
    def stop_threshold(self, value: float) -> None:
        self._check_not_running()
        if not value >= 0.0:
            raise ValueError(f"stop_threshold must be non-negative, got {value}")
        self._stop_threshold = float(value)

    @property
    def inliers_data(self) -> Optional[InliersData]:
        """Inliers of the best candidate of the last successful run."""
        return self._inliers_data

    @property
    def is_ready(self) -> bool:
        n = len(self._measurements)
        if not super().is_ready:
            return False
        if not self.minimum_required_measurements <= self.preliminary_subset_size <= n:
            return False
        if self._method.requires_quality_scores:
            return self._quality_scores is not None and len(self._quality_scores) == n
        return True

    # Calibration stages
    def _make_inner_calibrator(self, measurements, initial_bias, initial_ma) -> GravityNormCalibrator:
        return GravityNormCalibrator(
            measurements=measurements,
            position=self._position,
            common_axis_used=self._common_axis_used,
            initial_bias=initial_bias,
            initial_ma=initial_ma,
            known_bias=self._known_bias,
        )

    def _strip_covariance(self, result: CalibrationResult) -> CalibrationResult:
        if self._keep_covariance or result.covariance is None:
            return result
        return dataclasses.replace(result, covariance=None)

    def _compute_preliminary_solutions(self, indices: np.ndarray) -> List[CalibrationResult]:
        inner = self._make_inner_calibrator(
            [self._measurements[i] for i in indices],
            self._initial_bias,
            self._initial_ma,
        )
        try:
            result = inner.calibrate()
        except (LockedError, NotReadyError, CalibrationError) as e:
            logger.debug("discarding subset %s: %s", list(indices), e)
            return []
        return [self._strip_covariance(result)]

    def _attempt_refine(
        self, preliminary: CalibrationResult, inliers_data: Optional[InliersData]
    ) -> CalibrationResult:
        if not self._refine_result or inliers_data is None:
            return preliminary

        inliers = [m for m, ok in zip(self._measurements, inliers_data.inliers) if ok]
        inner = self._make_inner_calibrator(inliers, preliminary.bias, preliminary.ma)
        try:
            refined = inner.calibrate()
        except (LockedError, NotReadyError, CalibrationError) as e:
            logger.debug("refinement on %d inliers failed, keeping preliminary result: %s",
                         len(inliers), e)
            return preliminary
        return self._strip_covariance(refined)

    def _run(self) -> CalibrationResult:
        g = gravity_norm(self._position)
        measurements = self._measurements
        strategy = make_strategy(self._method, self._threshold, self._stop_threshold)

        def compute_residual(model: CalibrationResult, index: int) -> float:
            return compute_error(measurements[index], model.bias, model.ma, g)

        estimator = RobustEstimator(
            strategy,
            num_samples=len(measurements),
            subset_size=self.preliminary_subset_size,
            estimate_preliminary=self._compute_preliminary_solutions,
            compute_residual=compute_residual,
            confidence=self._confidence,
            max_iterations=self._max_iterations,
            progress_delta=self._progress_delta,
            quality_scores=self._quality_scores if self._method.requires_quality_scores else None,
            rng=self._rng,
            on_iteration=lambda i: self._notify("on_calibrate_next_iteration", i),
            on_progress=lambda p: self._notify("on_calibrate_progress_change", p),
        )

        try:
            best = estimator.estimate()
        except RobustEstimatorError as e:
            raise CalibrationError(str(e)) from e

        logger.debug("%s: best candidate has %d/%d inliers after %d iterations",
                     self._method.name, best.inliers_data.num_inliers,
                     len(measurements), best.iterations)

        result = self._attempt_refine(best.model, best.inliers_data)
        self._inliers_data = best.inliers_data
        return result


def create_robust_calibrator(
    method: Union[RobustMethod, str] = RobustKnownPositionCalibrator.DEFAULT_ROBUST_METHOD,
    **kwargs,
) -> RobustKnownPositionCalibrator:
    """Build a robust calibrator for ``method``; keyword arguments as the class."""
    return RobustKnownPositionCalibrator(method, **kwargs)
