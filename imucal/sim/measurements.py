"""
Generate synthetic calibration measurements.

Static accelerometer samples are simulated at a known position for a set of
random body attitudes, using the same reference kinematics the calibrators
use as ground truth, and then passed through the error model

    f_meas = b + (I + Ma) · f_true + n_a
    ω_meas = ω_true + n_g

so that with zero noise a correct calibrator recovers (b, Ma) exactly.
Selected samples can then be corrupted to act as outliers.
"""

import dataclasses
from typing import List, Optional, Sequence

import numpy as np

from imucal.coords.rotations import euler_to_rotation_matrix
from imucal.sensors.imu_models import distort_acceleration
from imucal.sensors.kinematics import estimate_body_kinematics
from imucal.sensors.types import EcefFrame, Measurement, Position


def random_attitude(rng: np.random.Generator) -> np.ndarray:
    """Body-to-ECEF rotation from uniformly drawn roll, pitch and yaw."""
    roll = rng.uniform(-np.pi, np.pi)
    pitch = rng.uniform(-np.pi / 2.0, np.pi / 2.0)
    yaw = rng.uniform(-np.pi, np.pi)
    return euler_to_rotation_matrix(roll, pitch, yaw)


def generate_static_measurements(
    position: Position,
    bias: np.ndarray,
    ma: np.ndarray,
    num_measurements: int,
    specific_force_std: float = 0.0,
    angular_rate_std: float = 0.0,
    time_interval: float = 0.02,
    rng: Optional[np.random.Generator] = None,
) -> List[Measurement]:
    """
    Simulate static measurements at random attitudes.

    Args:
        position: Known position of the calibration site.
        bias: True accelerometer bias. Shape: (3,). Units: m/s².
        ma: True scale/cross-coupling matrix. Shape: (3, 3).
        num_measurements: Number of samples to generate.
        specific_force_std: White noise std added to specific force (m/s²).
        angular_rate_std: White noise std added to angular rate (rad/s).
        time_interval: Sampling interval recorded in each measurement (s).
        rng: Random generator. If None, uses np.random.default_rng().

    Returns:
        List of Measurement, each carrying its known (static) frame.

    Example:
        >>> rng = np.random.default_rng(42)
        >>> site = Position.from_geodetic(np.deg2rad(41.38), np.deg2rad(2.17), 120.0)
        >>> ms = generate_static_measurements(site, np.zeros(3), np.zeros((3, 3)), 20, rng=rng)
    """
    if num_measurements < 0:
        raise ValueError(f"num_measurements must be >= 0, got {num_measurements}")
    if specific_force_std < 0.0 or angular_rate_std < 0.0:
        raise ValueError("noise standard deviations must be non-negative")
    if rng is None:
        rng = np.random.default_rng()

    measurements = []
    for _ in range(num_measurements):
        frame = EcefFrame.static(position, random_attitude(rng))
        f_true, w_true = estimate_body_kinematics(time_interval, frame)

        accel_noise = rng.normal(0.0, specific_force_std, 3) if specific_force_std > 0.0 else None
        f_meas = distort_acceleration(f_true, bias, ma, accel_noise)
        w_meas = w_true
        if angular_rate_std > 0.0:
            w_meas = w_true + rng.normal(0.0, angular_rate_std, 3)

        measurements.append(
            Measurement(
                specific_force=f_meas,
                angular_rate=w_meas,
                specific_force_std=specific_force_std,
                angular_rate_std=angular_rate_std,
                frame=frame,
                time_interval=time_interval,
            )
        )
    return measurements


def corrupt_measurements(
    measurements: Sequence[Measurement],
    indices: Sequence[int],
    scale: float = 1.5,
    offset: Optional[np.ndarray] = None,
) -> List[Measurement]:
    """
    Return a copy of ``measurements`` with outlier specific force at ``indices``.

    The specific force of each selected sample is replaced by
    ``scale * f + offset``; frames and noise levels are kept.
    """
    offset = np.zeros(3) if offset is None else np.asarray(offset, dtype=np.float64)
    corrupted = list(measurements)
    for i in indices:
        m = corrupted[i]
        corrupted[i] = dataclasses.replace(m, specific_force=scale * m.specific_force + offset)
    return corrupted
