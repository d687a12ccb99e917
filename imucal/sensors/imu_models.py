"""
Accelerometer error model: bias, scale factors and cross-coupling.

The measurement model used throughout the calibrators is

    f_meas = b + (I + Ma) · f_true + n

where b is the bias (m/s²), Ma holds scale-factor errors on its diagonal and
cross-coupling errors off-diagonal, and n is white noise. The entries of Ma
are named

    Ma = [[sx,  mxy, mxz],
          [myx, sy,  myz],
          [mzx, mzy, sz ]]

Under the common-axis assumption myx = mzx = mzy = 0 (upper triangular).

Functions:
    - distort_acceleration: apply the error model to true specific force
    - fix_acceleration: undo the error model, f_true = (I + Ma)⁻¹ (f_meas - b)
    - ma_from_parameters / ma_to_parameters: named-entry (un)packing of Ma
"""

from typing import Optional

import numpy as np

# Names of the Ma entries in parameter-vector order, and their positions
MA_GENERAL_NAMES = ("sx", "sy", "sz", "mxy", "mxz", "myx", "myz", "mzx", "mzy")
MA_COMMON_AXIS_NAMES = ("sx", "sy", "sz", "mxy", "mxz", "myz")
MA_INDEX = {
    "sx": (0, 0),
    "sy": (1, 1),
    "sz": (2, 2),
    "mxy": (0, 1),
    "mxz": (0, 2),
    "myx": (1, 0),
    "myz": (1, 2),
    "mzx": (2, 0),
    "mzy": (2, 1),
}


def _validate_bias_ma(bias: np.ndarray, ma: np.ndarray):
    bias = np.asarray(bias, dtype=np.float64)
    ma = np.asarray(ma, dtype=np.float64)
    if bias.shape != (3,):
        raise ValueError(f"bias must be (3,), got {bias.shape}")
    if ma.shape != (3, 3):
        raise ValueError(f"ma must be (3, 3), got {ma.shape}")
    return bias, ma


def ma_from_parameters(params: np.ndarray, common_axis: bool = False) -> np.ndarray:
    """
    Build Ma from its named entries.

    Args:
        params: [sx, sy, sz, mxy, mxz, myx, myz, mzx, mzy] (general, 9 values)
            or [sx, sy, sz, mxy, mxz, myz] (common-axis, 6 values).
        common_axis: Whether params follows the common-axis layout.

    Returns:
        Ma matrix (3, 3). Entries that are not solved for are exactly zero.
    """
    names = MA_COMMON_AXIS_NAMES if common_axis else MA_GENERAL_NAMES
    params = np.asarray(params, dtype=np.float64)
    if params.shape != (len(names),):
        raise ValueError(f"params must be ({len(names)},), got {params.shape}")

    ma = np.zeros((3, 3))
    for name, value in zip(names, params):
        ma[MA_INDEX[name]] = value
    return ma


def ma_to_parameters(ma: np.ndarray, common_axis: bool = False) -> np.ndarray:
    """Inverse of ma_from_parameters."""
    ma = np.asarray(ma, dtype=np.float64)
    if ma.shape != (3, 3):
        raise ValueError(f"ma must be (3, 3), got {ma.shape}")
    names = MA_COMMON_AXIS_NAMES if common_axis else MA_GENERAL_NAMES
    return np.array([ma[MA_INDEX[name]] for name in names])


def distort_acceleration(
    f_true: np.ndarray,
    bias: np.ndarray,
    ma: np.ndarray,
    noise: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Apply the accelerometer error model to true specific force.

        f_meas = b + (I + Ma) · f_true + n

    Args:
        f_true: True specific force in body frame. Shape: (3,) or (N, 3). Units: m/s².
        bias: Accelerometer bias. Shape: (3,). Units: m/s².
        ma: Scale/cross-coupling matrix. Shape: (3, 3). Unitless.
        noise: Optional additive noise, same shape as f_true.

    Returns:
        Measured specific force, same shape as f_true.

    Raises:
        ValueError: If shapes are incompatible.
    """
    bias, ma = _validate_bias_ma(bias, ma)
    f_true = np.asarray(f_true, dtype=np.float64)
    if f_true.shape != (3,) and not (f_true.ndim == 2 and f_true.shape[1] == 3):
        raise ValueError(f"f_true must have shape (3,) or (N, 3), got {f_true.shape}")

    f_meas = bias + f_true @ (np.eye(3) + ma).T
    if noise is not None:
        noise = np.asarray(noise, dtype=np.float64)
        if noise.shape != f_true.shape:
            raise ValueError(f"noise shape {noise.shape} does not match f_true {f_true.shape}")
        f_meas = f_meas + noise
    return f_meas


def fix_acceleration(
    f_meas: np.ndarray,
    bias: np.ndarray,
    ma: np.ndarray,
) -> np.ndarray:
    """
    Remove bias, scale and cross-coupling errors from measured specific force.

        f_true = (I + Ma)⁻¹ · (f_meas - b)

    Args:
        f_meas: Measured specific force. Shape: (3,) or (N, 3). Units: m/s².
        bias: Accelerometer bias. Shape: (3,). Units: m/s².
        ma: Scale/cross-coupling matrix. Shape: (3, 3).

    Returns:
        Corrected specific force, same shape as f_meas.

    Raises:
        ValueError: If shapes are incompatible.
        numpy.linalg.LinAlgError: If (I + Ma) is singular.

    Example:
        >>> ma = np.diag([1e-3, -2e-3, 5e-4])
        >>> b = np.array([0.05, -0.02, 0.01])
        >>> f = distort_acceleration(np.array([0.0, 0.0, 9.81]), b, ma)
        >>> fix_acceleration(f, b, ma)  # ≈ [0, 0, 9.81]
    """
    bias, ma = _validate_bias_ma(bias, ma)
    f_meas = np.asarray(f_meas, dtype=np.float64)
    if f_meas.shape != (3,) and not (f_meas.ndim == 2 and f_meas.shape[1] == 3):
        raise ValueError(f"f_meas must have shape (3,) or (N, 3), got {f_meas.shape}")

    # Solving against the transpose handles (3,) and (N, 3) in one call
    return np.linalg.solve(np.eye(3) + ma, (f_meas - bias).T).T
