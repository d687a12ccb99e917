"""
Non-linear accelerometer calibration from the local gravity norm.

When the accelerometer is static at a known position, whatever its
orientation, the norm of the true specific force equals the local gravity
magnitude g. Bias and Ma are fitted jointly so that every corrected sample
has that norm:

    f_true,i = (I + Ma)⁻¹ (f_i - b)
    h_i(x)   = ‖f_true,i‖²
    x̂ = argmin Σ w_i (g² - h_i(x))²,   w_i = 1/σ_i²

with σ_i the specific-force noise standard deviation of sample i (samples
with σ_i = 0 get unit weight). The orientation of each sample is not needed.

Unknowns:
    general:     [bx, by, bz, sx, sy, sz, mxy, mxz, myx, myz, mzx, mzy]
    common-axis: [bx, by, bz, sx, sy, sz, mxy, mxz, myz]

With a known bias only the Ma terms are unknowns and the bias columns of
the Jacobian are dropped.

Jacobian (u_i = (I + Ma)⁻ᵀ f_true,i):
    ∂h_i/∂b     = -2 u_i
    ∂h_i/∂Ma_jk = -2 u_i[j] f_true,i[k]

In the general case the norm is invariant to (I + Ma) → (I + Ma)·Q for any
rotation Q, so the fit determines Ma only up to a rotation; the common-axis
model removes that freedom.
"""

import logging
from typing import Optional, Sequence, Union

import numpy as np

from imucal.calibration.base import KnownPositionCalibrator, RobustCalibratorListener
from imucal.calibration.errors import CalibrationError
from imucal.calibration.result import CalibrationResult
from imucal.estimators.nonlinear_least_squares import levenberg_marquardt
from imucal.sensors.gravity import gravity_norm
from imucal.sensors.imu_models import (
    MA_COMMON_AXIS_NAMES,
    MA_GENERAL_NAMES,
    MA_INDEX,
    ma_from_parameters,
    ma_to_parameters,
)
from imucal.sensors.types import Measurement, Position

logger = logging.getLogger(__name__)


class GravityNormCalibrator(KnownPositionCalibrator):
    """
    Fits bias and Ma to static measurements using the known gravity norm.

    Args:
        measurements: Static measurements (at least 13, or 10 with common axis;
            10 and 7 with a known bias).
        position: Known position, used to compute the gravity norm.
        common_axis_used: Fit the upper-triangular (common-axis) Ma model.
        initial_bias: Initial bias guess (m/s²). Defaults to zeros.
        initial_ma: Initial Ma guess. Defaults to zeros.
        ground_truth_gravity_norm: Gravity norm to use instead of the one
            derived from ``position``.
        listener: Optional object with on_calibrate_start/on_calibrate_end hooks.
        max_iterations: Maximum Levenberg-Marquardt iterations.
        known_bias: Bias to hold fixed (m/s²). Only Ma is fitted when set.

    Example:
        >>> cal = GravityNormCalibrator(measurements, position=site,
        ...                             common_axis_used=True)
        >>> result = cal.calibrate()
        >>> print(result.bias, result.ma, result.chi_sq_p_value)
    """

    DEFAULT_MAX_ITERATIONS = 100

    def __init__(
        self,
        measurements: Sequence[Measurement] = (),
        position: Union[None, Position, Sequence[float]] = None,
        common_axis_used: bool = False,
        initial_bias: Optional[Sequence[float]] = None,
        initial_ma: Optional[np.ndarray] = None,
        ground_truth_gravity_norm: Optional[float] = None,
        listener: Optional[RobustCalibratorListener] = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        known_bias: Optional[Sequence[float]] = None,
    ):
        self._ground_truth_gravity_norm: Optional[float] = None
        self._max_iterations = self.DEFAULT_MAX_ITERATIONS
        super().__init__(
            measurements, position, common_axis_used, initial_bias, initial_ma, listener, known_bias
        )
        self.ground_truth_gravity_norm = ground_truth_gravity_norm
        self.max_iterations = max_iterations

    @property
    def ground_truth_gravity_norm(self) -> Optional[float]:
        return self._ground_truth_gravity_norm

    @ground_truth_gravity_norm.setter
    def ground_truth_gravity_norm(self, value: Optional[float]) -> None:
        self._check_not_running()
        if value is not None:
            value = float(value)
            if not (value > 0.0 and np.isfinite(value)):
                raise ValueError(f"ground_truth_gravity_norm must be positive, got {value}")
        self._ground_truth_gravity_norm = value

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
    def gravity_norm(self) -> Optional[float]:
        """Gravity norm used as ground truth (explicit value takes precedence)."""
        if self._ground_truth_gravity_norm is not None:
            return self._ground_truth_gravity_norm
        if self._position is not None:
            return gravity_norm(self._position)
        return None

    @property
    def is_ready(self) -> bool:
        return (
            len(self._measurements) >= self.minimum_required_measurements
            and self.gravity_norm is not None
        )

    def _ma_names(self):
        return MA_COMMON_AXIS_NAMES if self._common_axis_used else MA_GENERAL_NAMES

    def _unpack(self, x: np.ndarray):
        if self._known_bias is not None:
            return self._known_bias, ma_from_parameters(x, self._common_axis_used)
        return x[:3], ma_from_parameters(x[3:], self._common_axis_used)

    def _run(self) -> CalibrationResult:
        g = self.gravity_norm
        f_meas = np.array([m.specific_force for m in self._measurements])
        sigma = np.array([m.specific_force_std for m in self._measurements])
        weights = np.where(sigma > 0.0, 1.0 / np.where(sigma > 0.0, sigma, 1.0) ** 2, 1.0)
        y = np.full(len(f_meas), g**2)

        ma_positions = [MA_INDEX[name] for name in self._ma_names()]
        ma_start = 0 if self.bias_known else 3
        identity = np.eye(3)

        def h(x):
            bias, ma = self._unpack(x)
            f_true = np.linalg.solve(identity + ma, (f_meas - bias).T).T
            return np.sum(f_true**2, axis=1)

        def jacobian(x):
            bias, ma = self._unpack(x)
            m_inv = np.linalg.inv(identity + ma)
            f_true = (f_meas - bias) @ m_inv.T
            u = f_true @ m_inv
            J = np.empty((len(f_meas), len(x)))
            if not self.bias_known:
                J[:, :3] = -2.0 * u
            for col, (row, k) in enumerate(ma_positions, start=ma_start):
                J[:, col] = -2.0 * u[:, row] * f_true[:, k]
            return J

        x0 = ma_to_parameters(self._initial_ma, self._common_axis_used)
        if not self.bias_known:
            x0 = np.concatenate([self._initial_bias, x0])

        try:
            fit = levenberg_marquardt(
                h, jacobian, y, x0,
                weights=weights,
                max_iter=self._max_iterations,
                return_covariance=True,
            )
        except (np.linalg.LinAlgError, ValueError) as e:
            raise CalibrationError(f"gravity norm fit failed: {e}") from e

        if not fit.converged:
            raise CalibrationError(
                f"gravity norm fit did not converge in {fit.iterations} iterations"
            )
        if not (np.all(np.isfinite(fit.x)) and np.all(np.isfinite(fit.covariance))):
            raise CalibrationError("gravity norm fit produced non-finite values")

        bias, ma = self._unpack(fit.x)
        if abs(np.linalg.det(identity + ma)) < np.finfo(np.float64).eps:
            raise CalibrationError("estimated (I + Ma) is singular")

        logger.debug("gravity norm fit converged in %d iterations, mse=%g", fit.iterations, fit.mse)

        return CalibrationResult(
            bias=bias,
            ma=ma,
            covariance=fit.covariance,
            mse=fit.mse,
            chi_sq=fit.chi_sq,
            degrees_of_freedom=len(y) - len(x0),
            common_axis=self._common_axis_used,
            bias_known=self.bias_known,
        )
