"""Geodetic (LLH) and Earth-Centered Earth-Fixed (ECEF) conversions.

A calibration site is stored internally in ECEF; the geodetic form is only
derived when a caller asks for it. Both conversions use the WGS84 ellipsoid:
- Semi-major axis (a): 6378137.0 m
- Flattening (f): 1/298.257223563
- First eccentricity squared (e²): 0.00669437999014
"""

import numpy as np
from numpy.typing import NDArray

# WGS84 ellipsoid parameters
WGS84_A = 6378137.0  # Semi-major axis (m)
WGS84_F = 1.0 / 298.257223563  # Flattening
WGS84_B = WGS84_A * (1.0 - WGS84_F)  # Semi-minor axis (m)
WGS84_E2 = 1.0 - (WGS84_B / WGS84_A) ** 2  # First eccentricity squared


def _prime_vertical_radius(sin_lat: float) -> float:
    return WGS84_A / np.sqrt(1.0 - WGS84_E2 * sin_lat**2)


def llh_to_ecef(
    lat: float,
    lon: float,
    height: float,
) -> NDArray[np.float64]:
    """Convert a geodetic position to ECEF Cartesian coordinates.

    Args:
        lat: Latitude in radians (positive north).
        lon: Longitude in radians (positive east).
        height: Height above the WGS84 ellipsoid in meters.

    Returns:
        ECEF coordinates [x, y, z] in meters.

    Example:
        >>> import numpy as np
        >>> xyz = llh_to_ecef(np.deg2rad(41.38), np.deg2rad(2.17), 0.0)
        >>> print(f"|r| = {np.linalg.norm(xyz):.1f} m")
    """
    sin_lat = np.sin(lat)
    cos_lat = np.cos(lat)
    n = _prime_vertical_radius(sin_lat)

    return np.array(
        [
            (n + height) * cos_lat * np.cos(lon),
            (n + height) * cos_lat * np.sin(lon),
            (n * (1.0 - WGS84_E2) + height) * sin_lat,
        ],
        dtype=np.float64,
    )


def ecef_to_llh(
    x: float,
    y: float,
    z: float,
    tol: float = 1e-12,
    max_iter: int = 10,
) -> NDArray[np.float64]:
    """Convert ECEF Cartesian coordinates to a geodetic position.

    Latitude is found by fixed-point iteration starting from the
    zero-height solution; it converges to sub-millimetre height accuracy
    in a handful of steps for any terrestrial point.

    Args:
        x: ECEF x-coordinate in meters.
        y: ECEF y-coordinate in meters.
        z: ECEF z-coordinate in meters.
        tol: Convergence tolerance on latitude (radians).
        max_iter: Maximum number of iterations.

    Returns:
        [lat, lon, height] with angles in radians and height in meters.
    """
    lon = np.arctan2(y, x)
    p = np.hypot(x, y)

    # On the polar axis latitude is ±90° and longitude is arbitrary
    if p < 1e-10:
        return np.array([np.copysign(np.pi / 2.0, z), lon, abs(z) - WGS84_B], dtype=np.float64)

    lat = np.arctan2(z, p * (1.0 - WGS84_E2))
    for _ in range(max_iter):
        n = _prime_vertical_radius(np.sin(lat))
        height = p / np.cos(lat) - n
        lat_next = np.arctan2(z, p * (1.0 - WGS84_E2 * n / (n + height)))
        converged = abs(lat_next - lat) < tol
        lat = lat_next
        if converged:
            break

    height = p / np.cos(lat) - _prime_vertical_radius(np.sin(lat))
    return np.array([lat, lon, height], dtype=np.float64)
