"""
Sensor data types, error models and reference kinematics.

Modules:
    types: Position, EcefFrame and Measurement value types
    gravity: ECEF gravity model and local gravity norm
    kinematics: Expected specific force/angular rate from known frames
    imu_models: Accelerometer bias/scale/cross-coupling error model
    units: mg/µg/ppm conversions for reporting

Design principles:
    - Value types are frozen dataclasses with read-only arrays
    - All quantities are SI internally (m, m/s, m/s², rad/s)
    - C_b^e is body-to-ECEF (v_e = C_b^e @ v_b)

Example:
    >>> import numpy as np
    >>> from imucal.sensors import EcefFrame, Measurement, Position, gravity_norm
    >>> site = Position.from_geodetic(np.deg2rad(41.38), np.deg2rad(2.17), 120.0)
    >>> m = Measurement(specific_force=[0.0, 0.0, 9.8],
    ...                 frame=EcefFrame.static(site, np.eye(3)))
    >>> f_b, w_b = m.expected_kinematics()
    >>> print(f"{np.linalg.norm(f_b):.4f} vs {gravity_norm(site):.4f}")
"""

from imucal.sensors.gravity import (
    EARTH_ROTATION_RATE,
    gravitation_ecef,
    gravity_ecef,
    sea_level_gravity_magnitude,
    gravity_norm,
)
from imucal.sensors.imu_models import (
    distort_acceleration,
    fix_acceleration,
    ma_from_parameters,
    ma_to_parameters,
)
from imucal.sensors.kinematics import (
    estimate_body_kinematics,
    estimate_specific_force,
    estimate_specific_force_ecef,
)
from imucal.sensors.types import EcefFrame, Measurement, Position
from imucal.sensors.units import (
    format_accel_bias,
    mg_to_mps2,
    mps2_to_mg,
    mps2_to_ug,
    ratio_to_ppm,
    ug_to_mps2,
)

__all__ = [
    # Types
    "Position",
    "EcefFrame",
    "Measurement",
    # Gravity
    "EARTH_ROTATION_RATE",
    "gravitation_ecef",
    "gravity_ecef",
    "gravity_norm",
    "sea_level_gravity_magnitude",
    # Reference kinematics
    "estimate_body_kinematics",
    "estimate_specific_force",
    "estimate_specific_force_ecef",
    # Error model
    "distort_acceleration",
    "fix_acceleration",
    "ma_from_parameters",
    "ma_to_parameters",
    # Units
    "mg_to_mps2",
    "mps2_to_mg",
    "ug_to_mps2",
    "mps2_to_ug",
    "ratio_to_ppm",
    "format_accel_bias",
]
