"""
Gravity models used as calibration ground truth.

A static accelerometer senses the reaction to local gravity, so the norm of
the true specific force equals the local gravity magnitude. This module
provides:
    - gravity_ecef: gravity vector (gravitation + centrifugal) in ECEF,
      using the WGS-84 J2 gravitational model
    - gravity_norm: magnitude of gravity_ecef at a known Position; this is
      the per-run ground truth the robust calibrators score against
    - sea_level_gravity_magnitude: latitude-only WGS-84 closed form, kept as an
      independent cross-check for sea-level sites

References:
    P. D. Groves, Principles of GNSS, Inertial, and Multisensor Integrated
    Navigation Systems, 2nd ed., Eq. (2.142)-(2.143).
"""

from typing import Union

import numpy as np

from imucal.coords.transforms import WGS84_A

# WGS-84 Earth constants
EARTH_GM = 3.986004418e14  # Gravitational constant times Earth mass (m³/s²)
EARTH_J2 = 1.082627e-3  # Second gravitational constant
EARTH_ROTATION_RATE = 7.292115e-5  # ω_ie (rad/s)


def gravitation_ecef(r_ecef: np.ndarray) -> np.ndarray:
    """
    Gravitational acceleration γ (no centrifugal term) in ECEF.

    Args:
        r_ecef: ECEF position. Shape: (3,). Units: m.

    Returns:
        Gravitational acceleration. Shape: (3,). Units: m/s².
    """
    r_ecef = np.asarray(r_ecef, dtype=np.float64)
    if r_ecef.shape != (3,):
        raise ValueError(f"r_ecef must have shape (3,), got {r_ecef.shape}")

    mag_r = np.linalg.norm(r_ecef)
    if mag_r == 0.0:
        raise ValueError("gravitation is undefined at the Earth's centre")

    z_scale = 5.0 * (r_ecef[2] / mag_r) ** 2
    factor = 1.5 * EARTH_J2 * (WGS84_A / mag_r) ** 2
    correction = np.array(
        [
            (1.0 - z_scale) * r_ecef[0],
            (1.0 - z_scale) * r_ecef[1],
            (3.0 - z_scale) * r_ecef[2],
        ]
    )
    return -EARTH_GM / mag_r**3 * (r_ecef + factor * correction)


def gravity_ecef(r_ecef: np.ndarray) -> np.ndarray:
    """
    Gravity vector g = γ + centrifugal acceleration, resolved in ECEF.

    Example:
        >>> from imucal.coords.transforms import llh_to_ecef
        >>> g = gravity_ecef(llh_to_ecef(0.0, 0.0, 0.0))
        >>> print(f"{np.linalg.norm(g):.3f}")  # ≈ 9.780
    """
    gamma = gravitation_ecef(r_ecef)
    r_ecef = np.asarray(r_ecef, dtype=np.float64)
    centrifugal = EARTH_ROTATION_RATE**2 * np.array([r_ecef[0], r_ecef[1], 0.0])
    return gamma + centrifugal


def gravity_norm(position) -> float:
    """
    Local gravity magnitude at a known position.

    Args:
        position: A Position, or ECEF coordinates (3,) in meters.

    Returns:
        ||g|| in m/s².
    """
    ecef = getattr(position, "ecef", position)
    return float(np.linalg.norm(gravity_ecef(ecef)))


def sea_level_gravity_magnitude(lat_rad: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """
    Sea-level gravity magnitude from geodetic latitude (WGS-84 closed form).

        g(φ) = 9.7803 * (1 + 0.0053024·sin²(φ) - 0.000005·sin²(2φ))

    Args:
        lat_rad: Geodetic latitude in radians.

    Returns:
        Gravity magnitude in m/s², within about 1 mm/s² of gravity_norm for
        points on the ellipsoid.
    """
    sin_lat_sq = np.sin(lat_rad) ** 2
    sin_2lat_sq = np.sin(2.0 * lat_rad) ** 2
    return 9.7803 * (1.0 + 0.0053024 * sin_lat_sq - 0.000005 * sin_2lat_sq)
