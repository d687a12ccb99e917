"""
Expected body kinematics from known ECEF frames.

Given two consecutive known frames of the body (position, velocity and
attitude in ECEF) and the interval between them, this module returns the
specific force and angular rate an ideal IMU would have sensed. This is the
reference model that the closed-form calibrator compares raw samples with.

Mathematical Formulation:
    Specific force in ECEF:
        f_e = (v⁺ - v⁻)/τ - g_e(r⁻) + 2 Ω_ie v⁻
    Body specific force using the mean attitude over the interval:
        f_b = C̄ᵀ f_e,   C̄ = orthonormalize((C⁻ + C⁺)/2)
    Body angular rate:
        ω_b = rotvec(C⁻ᵀ R_z(ω_ie τ) C⁺) / τ

For a body at rest this reduces to f_b = -C_bᵉᵀ g_e, whose norm is the local
gravity magnitude, and ω_b = C_bᵉᵀ [0, 0, ω_ie].
"""

from typing import Tuple

import numpy as np

from imucal.coords.rotations import orthonormalize, rotation_matrix_to_rotvec, rotation_z
from imucal.sensors.gravity import EARTH_ROTATION_RATE, gravity_ecef

_OMEGA_IE = np.array(
    [
        [0.0, -EARTH_ROTATION_RATE, 0.0],
        [EARTH_ROTATION_RATE, 0.0, 0.0],
        [0.0, 0.0, 0.0],
    ]
)


def estimate_specific_force_ecef(time_interval: float, frame, previous_frame) -> np.ndarray:
    """Specific force resolved in ECEF over one sampling interval."""
    if not time_interval > 0.0:
        raise ValueError(f"time_interval must be positive, got {time_interval}")

    v_prev = previous_frame.velocity
    g = gravity_ecef(previous_frame.position.ecef)
    return (frame.velocity - v_prev) / time_interval - g + 2.0 * _OMEGA_IE @ v_prev


def estimate_body_kinematics(
    time_interval: float, frame, previous_frame=None
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Expected specific force and angular rate in body frame.

    Args:
        time_interval: Interval τ between previous_frame and frame (s, > 0).
        frame: EcefFrame at the end of the interval.
        previous_frame: EcefFrame at the start of the interval. Defaults to
            ``frame`` (body at rest).

    Returns:
        Tuple of:
            - f_b: Specific force in body frame. Shape: (3,). Units: m/s².
            - w_b: Angular rate in body frame. Shape: (3,). Units: rad/s.

    Raises:
        ValueError: If time_interval is not positive.

    Example:
        >>> from imucal.sensors.types import EcefFrame, Position
        >>> site = Position.from_geodetic(0.7, 0.1, 50.0)
        >>> f_b, w_b = estimate_body_kinematics(0.02, EcefFrame.static(site, np.eye(3)))
    """
    if previous_frame is None:
        previous_frame = frame

    f_e = estimate_specific_force_ecef(time_interval, frame, previous_frame)

    c_prev = previous_frame.c_body_to_ecef
    c_curr = frame.c_body_to_ecef
    c_mean = orthonormalize(0.5 * (c_prev + c_curr))
    f_b = c_mean.T @ f_e

    c_delta = c_prev.T @ rotation_z(EARTH_ROTATION_RATE * time_interval) @ c_curr
    w_b = rotation_matrix_to_rotvec(c_delta) / time_interval

    return f_b, w_b


def estimate_specific_force(time_interval: float, frame, previous_frame=None) -> np.ndarray:
    """Expected body specific force only (see estimate_body_kinematics)."""
    return estimate_body_kinematics(time_interval, frame, previous_frame)[0]
