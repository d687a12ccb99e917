"""
Accelerometer calibrators.

Modules:
    errors: LockedError, NotReadyError, CalibrationError
    result: CalibrationResult (estimate + statistics + covariance)
    base: Calibrator lifecycle (lock, readiness, known bias, listener hooks)
    linear: Closed-form calibration from measurements with known frames
    gravity_norm: Non-linear calibration from the known gravity norm
    robust: RANSAC/LMedS/MSAC/PROSAC/PROMedS calibration at a known position

Error model (all calibrators):
    f_meas = b + (I + Ma) · f_true

Example:
    >>> from imucal.calibration import RobustKnownPositionCalibrator, RobustMethod
    >>> cal = RobustKnownPositionCalibrator(RobustMethod.LMEDS, measurements,
    ...                                     position=site, common_axis_used=True)
    >>> result = cal.calibrate()
"""

from imucal.calibration.base import Calibrator, KnownPositionCalibrator, RobustCalibratorListener
from imucal.calibration.errors import CalibrationError, LockedError, NotReadyError
from imucal.calibration.gravity_norm import GravityNormCalibrator
from imucal.calibration.linear import KnownFrameLinearCalibrator, build_linear_system
from imucal.calibration.result import CalibrationResult
from imucal.calibration.robust import (
    MAX_ERROR,
    RobustKnownPositionCalibrator,
    compute_error,
    create_robust_calibrator,
)
from imucal.estimators.robust import RobustMethod

__all__ = [
    # Errors
    "CalibrationError",
    "LockedError",
    "NotReadyError",
    # Results
    "CalibrationResult",
    # Calibrators
    "Calibrator",
    "KnownPositionCalibrator",
    "KnownFrameLinearCalibrator",
    "GravityNormCalibrator",
    "RobustKnownPositionCalibrator",
    "create_robust_calibrator",
    "RobustMethod",
    "RobustCalibratorListener",
    # Helpers
    "build_linear_system",
    "compute_error",
    "MAX_ERROR",
]
