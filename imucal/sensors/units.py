"""
Unit conversion utilities for accelerometer calibration parameters.

Accelerometer datasheets and calibration reports quote biases in
milligravity (mg) or microgravity (µg) and scale/cross-coupling errors in
parts per million (ppm). Internally everything is SI (m/s², unitless
ratios); these helpers convert at the edges. All function names state both
the input and output units.
"""

import numpy as np
from typing import Union

# Type alias for numeric types
Numeric = Union[float, np.ndarray]

STANDARD_GRAVITY = 9.80665  # m/s² (ISO 80000-3:2006)


def mg_to_mps2(mg: Numeric) -> Numeric:
    """
    Convert acceleration from milligravity (mg) to m/s².

    Example:
        >>> print(f"{mg_to_mps2(10.0):.6f} m/s²")
        0.098067 m/s²
    """
    return mg * 0.001 * STANDARD_GRAVITY


def mps2_to_mg(mps2: Numeric) -> Numeric:
    """Convert acceleration from m/s² to milligravity (mg)."""
    return mps2 / (0.001 * STANDARD_GRAVITY)


def ug_to_mps2(ug: Numeric) -> Numeric:
    """Convert acceleration from microgravity (µg) to m/s²."""
    return ug * 1e-6 * STANDARD_GRAVITY


def mps2_to_ug(mps2: Numeric) -> Numeric:
    """Convert acceleration from m/s² to microgravity (µg)."""
    return mps2 / (1e-6 * STANDARD_GRAVITY)


def ratio_to_ppm(ratio: Numeric) -> Numeric:
    """Convert a dimensionless scale/coupling error to parts per million."""
    return ratio * 1e6


def format_accel_bias(bias_mps2: float) -> str:
    """
    Format an accelerometer bias for human-readable display.

    Example:
        >>> print(format_accel_bias(mg_to_mps2(10.0)))
        10.00 mg (0.0981 m/s²)
    """
    mg = mps2_to_mg(bias_mps2)
    return f"{mg:.2f} mg ({bias_mps2:.4f} m/s²)"
