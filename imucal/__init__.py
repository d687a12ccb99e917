"""Inertial sensor calibration toolkit.

This package contains the building blocks for estimating the systematic
error model (bias, scale factors and cross-coupling) of an accelerometer:
- coords: Geodetic/ECEF transformations and rotation helpers
- estimators: Linear, nonlinear and robust (RANSAC-family) estimators
- sensors: Measurement types, gravity and reference kinematics
- calibration: Closed-form, gravity-norm and robust calibrators
- sim: Synthetic measurement generation for tests and examples
"""

__version__ = "0.1.0"
