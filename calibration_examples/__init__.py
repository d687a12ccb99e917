"""
Accelerometer calibration examples.

Provides examples demonstrating:
    - Robust calibration at a known position with outlier rejection
    - Comparison of RANSAC, LMedS, MSAC, PROSAC and PROMedS

Examples:
    - example_robust_accelerometer.py: Compare the five robust methods
      on simulated static data with corrupted samples
"""

__all__ = []
