"""
Closed-form accelerometer calibration from known frames.

When the frame (position, velocity, attitude) of the body is known for
each sample, the expected specific force f_true can be evaluated with the
reference kinematics model and the error model

    f_meas - f_true = b + Ma · f_true

is linear in the unknowns. Each measurement contributes three rows:

    [1 0 0  fx 0  0   fy fz  (0)  0   (0)  (0) ]        fmx - fx
    [0 1 0  0  fy 0   0  0   (fx) fz  (0)  (0) ] · x =  fmy - fy
    [0 0 1  0  0  fz  0  0   (0)  0   (fx) (fy)]        fmz - fz

with x = [bx, by, bz, sx, sy, sz, mxy, mxz, (myx), myz, (mzx), (mzy)]; the
parenthesised columns only exist in the general (non common-axis) model.
With a known bias the three bias columns are dropped and b is moved to
the right-hand side.
"""

import logging
from typing import Optional, Sequence

import numpy as np

from imucal.calibration.base import Calibrator, RobustCalibratorListener
from imucal.calibration.errors import CalibrationError
from imucal.calibration.result import CalibrationResult
from imucal.estimators.least_squares import linear_least_squares
from imucal.sensors.imu_models import ma_from_parameters
from imucal.sensors.types import Measurement

logger = logging.getLogger(__name__)


def build_linear_system(
    f_meas: np.ndarray,
    f_true: np.ndarray,
    common_axis: bool = False,
    known_bias: Optional[np.ndarray] = None,
):
    """
    Build the stacked linear system A·x = b for the closed-form solve.

    Args:
        f_meas: Measured specific force. Shape: (N, 3). Units: m/s².
        f_true: Expected specific force. Shape: (N, 3). Units: m/s².
        common_axis: Build the 9-unknown common-axis system instead of the
            12-unknown general one.
        known_bias: Bias to subtract from f_meas. When given the bias
            columns are left out and only the Ma terms are unknowns.

    Returns:
        Tuple (A, b) with A of shape (3N, 9 or 12), or (3N, 6 or 9) with a
        known bias, and b of shape (3N,).
    """
    f_meas = np.asarray(f_meas, dtype=np.float64)
    f_true = np.asarray(f_true, dtype=np.float64)
    if f_meas.ndim != 2 or f_meas.shape[1] != 3 or f_meas.shape != f_true.shape:
        raise ValueError(
            f"f_meas and f_true must both be (N, 3), got {f_meas.shape} and {f_true.shape}"
        )

    n = len(f_meas)
    fx, fy, fz = f_true[:, 0], f_true[:, 1], f_true[:, 2]
    c = 0 if known_bias is not None else 3
    A = np.zeros((3 * n, c + (6 if common_axis else 9)))
    rx, ry, rz = slice(0, None, 3), slice(1, None, 3), slice(2, None, 3)

    if known_bias is None:
        A[rx, 0] = 1.0
        A[ry, 1] = 1.0
        A[rz, 2] = 1.0
    A[rx, c] = fx
    A[ry, c + 1] = fy
    A[rz, c + 2] = fz
    A[rx, c + 3] = fy  # mxy
    A[rx, c + 4] = fz  # mxz
    if common_axis:
        A[ry, c + 5] = fz  # myz
    else:
        A[ry, c + 5] = fx  # myx
        A[ry, c + 6] = fz  # myz
        A[rz, c + 7] = fx  # mzx
        A[rz, c + 8] = fy  # mzy

    residual = f_meas - f_true
    if known_bias is not None:
        residual = residual - np.asarray(known_bias, dtype=np.float64)
    b = residual.reshape(-1)
    return A, b


class KnownFrameLinearCalibrator(Calibrator):
    """
    Closed-form bias and Ma estimation from measurements with known frames.

    Args:
        measurements: Measurements with a known frame (at least 4, or 3 with
            a known bias).
        common_axis_used: Solve the 9-unknown common-axis model.
        listener: Optional object with on_calibrate_start/on_calibrate_end hooks.
        known_bias: Bias to hold fixed (m/s²). Only Ma is solved for when set.

    Example:
        >>> cal = KnownFrameLinearCalibrator(measurements)
        >>> result = cal.calibrate()
        >>> print(result.bias, result.ma)
    """

    MINIMUM_MEASUREMENTS = 4
    MINIMUM_MEASUREMENTS_KNOWN_BIAS = 3

    def __init__(
        self,
        measurements: Sequence[Measurement] = (),
        common_axis_used: bool = False,
        listener: Optional[RobustCalibratorListener] = None,
        known_bias: Optional[Sequence[float]] = None,
    ):
        super().__init__(measurements, common_axis_used, listener, known_bias)

    @property
    def minimum_required_measurements(self) -> int:
        if self.bias_known:
            return self.MINIMUM_MEASUREMENTS_KNOWN_BIAS
        return self.MINIMUM_MEASUREMENTS

    @property
    def is_ready(self) -> bool:
        return super().is_ready and all(m.has_frame for m in self._measurements)

    def _run(self) -> CalibrationResult:
        f_meas = np.array([m.specific_force for m in self._measurements])
        f_true = np.array([m.expected_kinematics()[0] for m in self._measurements])
        A, b = build_linear_system(f_meas, f_true, self._common_axis_used, self._known_bias)

        try:
            x, P = linear_least_squares(A, b)
        except ValueError as e:
            raise CalibrationError(f"linear calibration failed: {e}") from e

        residuals = b - A @ x
        sigma = np.repeat([m.specific_force_std for m in self._measurements], 3)
        weights = np.where(sigma > 0.0, 1.0 / np.where(sigma > 0.0, sigma, 1.0) ** 2, 1.0)

        logger.debug("linear calibration solved %d x %d system", *A.shape)

        return CalibrationResult(
            bias=self._known_bias if self.bias_known else x[:3],
            ma=ma_from_parameters(x[0 if self.bias_known else 3:], self._common_axis_used),
            covariance=P,
            mse=float(np.mean(residuals**2)),
            chi_sq=float(np.sum(weights * residuals**2)),
            degrees_of_freedom=A.shape[0] - A.shape[1],
            common_axis=self._common_axis_used,
            bias_known=self.bias_known,
        )
