"""
Calibration estimate container.

A CalibrationResult holds one accelerometer error model

    f_meas = b + (I + Ma) · f_true

together with its fit statistics. The same type is used for the candidate
models the robust search produces from measurement subsets and for the
final estimate.

Covariance layout (rows/columns):
    general:     [bx, by, bz, sx, sy, sz, mxy, mxz, myx, myz, mzx, mzy]  (12 × 12)
    common-axis: [bx, by, bz, sx, sy, sz, mxy, mxz, myz]                 (9 × 9)

When the bias was known rather than estimated the three bias rows and
columns are absent (9 × 9 general, 6 × 6 common-axis).
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy import stats

from imucal.sensors.imu_models import MA_INDEX, fix_acceleration
from imucal.sensors.units import mps2_to_mg


@dataclass(frozen=True)
class CalibrationResult:
    """
    Estimated accelerometer error model and fit statistics.

    Attributes:
        bias: Estimated bias [bx, by, bz]. Shape: (3,). Units: m/s².
        ma: Estimated scale/cross-coupling matrix. Shape: (3, 3).
        covariance: Parameter covariance (6 × 6 to 12 × 12, see module
            docstring), or None when not computed or not retained.
        mse: Mean of squared residuals of the fit.
        chi_sq: Weighted sum of squared residuals.
        degrees_of_freedom: Number of residuals minus number of unknowns.
        common_axis: True if the common-axis (upper-triangular Ma) model was fitted.
        bias_known: True if ``bias`` was supplied rather than estimated.

    Example:
        >>> result = calibrator.calibrate()
        >>> print(result.bias_mg, result.sx, result.bias_std)
    """

    bias: np.ndarray
    ma: np.ndarray
    covariance: Optional[np.ndarray] = None
    mse: float = 0.0
    chi_sq: float = 0.0
    degrees_of_freedom: int = 0
    common_axis: bool = False
    bias_known: bool = False

    def __post_init__(self) -> None:
        bias = np.array(self.bias, dtype=np.float64)
        ma = np.array(self.ma, dtype=np.float64)
        if bias.shape != (3,):
            raise ValueError(f"bias must be (3,), got {bias.shape}")
        if ma.shape != (3, 3):
            raise ValueError(f"ma must be (3, 3), got {ma.shape}")
        bias.setflags(write=False)
        ma.setflags(write=False)
        object.__setattr__(self, "bias", bias)
        object.__setattr__(self, "ma", ma)

        if self.covariance is not None:
            cov = np.array(self.covariance, dtype=np.float64)
            size = (6 if self.common_axis else 9) + (0 if self.bias_known else 3)
            if cov.shape != (size, size):
                raise ValueError(f"covariance must be ({size}, {size}), got {cov.shape}")
            cov.setflags(write=False)
            object.__setattr__(self, "covariance", cov)

    # Named Ma entries
    @property
    def sx(self) -> float:
        return float(self.ma[MA_INDEX["sx"]])

    @property
    def sy(self) -> float:
        return float(self.ma[MA_INDEX["sy"]])

    @property
    def sz(self) -> float:
        return float(self.ma[MA_INDEX["sz"]])

    @property
    def mxy(self) -> float:
        return float(self.ma[MA_INDEX["mxy"]])

    @property
    def mxz(self) -> float:
        return float(self.ma[MA_INDEX["mxz"]])

    @property
    def myx(self) -> float:
        return float(self.ma[MA_INDEX["myx"]])

    @property
    def myz(self) -> float:
        return float(self.ma[MA_INDEX["myz"]])

    @property
    def mzx(self) -> float:
        return float(self.ma[MA_INDEX["mzx"]])

    @property
    def mzy(self) -> float:
        return float(self.ma[MA_INDEX["mzy"]])

    @property
    def bias_mg(self) -> np.ndarray:
        """Bias in milligravity."""
        return mps2_to_mg(self.bias)

    @property
    def bias_std(self) -> Optional[np.ndarray]:
        """Per-axis bias standard deviation sqrt(diag(P)[:3]) in m/s², None if the bias was known."""
        if self.covariance is None or self.bias_known:
            return None
        return np.sqrt(np.diag(self.covariance)[:3])

    @property
    def bias_std_norm(self) -> Optional[float]:
        std = self.bias_std
        return None if std is None else float(np.linalg.norm(std))

    @property
    def average_bias_std(self) -> Optional[float]:
        std = self.bias_std
        return None if std is None else float(np.mean(std))

    @property
    def chi_sq_p_value(self) -> Optional[float]:
        """P(χ²_dof ≥ chi_sq); None when there are no degrees of freedom."""
        if self.degrees_of_freedom <= 0:
            return None
        return float(stats.chi2.sf(self.chi_sq, self.degrees_of_freedom))

    def fix(self, f_meas: np.ndarray) -> np.ndarray:
        """Correct measured specific force with this estimate."""
        return fix_acceleration(f_meas, self.bias, self.ma)
