"""Coordinate systems and rotations used by the calibrators.

This module provides the conversions needed to express a known calibration
site and the attitude of the sensor while measurements are collected:
- LLH (Latitude, Longitude, Height) geodetic coordinates
- ECEF (Earth-Centered Earth-Fixed) Cartesian coordinates
- Rotation matrices, Euler angles and rotation vectors
"""

from imucal.coords.rotations import (
    euler_to_rotation_matrix,
    orthonormalize,
    rotation_matrix_to_euler,
    rotation_matrix_to_rotvec,
    rotation_z,
)
from imucal.coords.transforms import ecef_to_llh, llh_to_ecef

__all__ = [
    # Transforms
    "llh_to_ecef",
    "ecef_to_llh",
    # Rotations
    "euler_to_rotation_matrix",
    "rotation_matrix_to_euler",
    "rotation_matrix_to_rotvec",
    "rotation_z",
    "orthonormalize",
]
