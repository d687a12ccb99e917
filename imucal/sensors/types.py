"""
Data structures for accelerometer calibration measurements.

This module defines the immutable value types consumed by the calibrators:
    - Position: a known calibration site (ECEF is the stored representation)
    - EcefFrame: position, velocity and attitude of the body in ECEF
    - Measurement: one specific-force/angular-rate sample with its noise
      levels and the known frames it was captured at

All arrays are copied on construction and flagged read-only so that a
measurement list handed to a calibrator cannot change underneath it.

Frame Conventions:
    - b: Body frame (sensor frame)
    - e: Earth-Centered Earth-Fixed frame
    - C_b^e: body-to-ECEF rotation, v_e = C_b^e @ v_b
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

from imucal.coords.transforms import ecef_to_llh, llh_to_ecef
from imucal.sensors.kinematics import estimate_body_kinematics


def _frozen_array(value, shape: Tuple[int, ...], name: str) -> np.ndarray:
    arr = np.array(value, dtype=np.float64)
    if arr.shape != shape:
        raise ValueError(f"{name} must have shape {shape}, got {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{name} must contain only finite values")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class Position:
    """
    Known position of the calibration site.

    The ECEF coordinates are the single authoritative representation; the
    geodetic form is derived on demand.

    Attributes:
        ecef: ECEF coordinates [x, y, z]. Shape: (3,). Units: m.

    Example:
        >>> import numpy as np
        >>> site = Position.from_geodetic(np.deg2rad(41.38), np.deg2rad(2.17), 120.0)
        >>> lat, lon, h = site.geodetic
    """

    ecef: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "ecef", _frozen_array(self.ecef, (3,), "ecef"))
        if np.linalg.norm(self.ecef) == 0.0:
            raise ValueError("ecef position must not be the Earth's centre")

    @classmethod
    def from_geodetic(cls, latitude: float, longitude: float, height: float) -> "Position":
        """Build a position from latitude/longitude (radians) and height (m)."""
        return cls(llh_to_ecef(latitude, longitude, height))

    @property
    def geodetic(self) -> np.ndarray:
        """[latitude, longitude, height] (radians, radians, m)."""
        return ecef_to_llh(*self.ecef)

    @property
    def latitude(self) -> float:
        return float(self.geodetic[0])

    @property
    def longitude(self) -> float:
        return float(self.geodetic[1])

    @property
    def height(self) -> float:
        return float(self.geodetic[2])


@dataclass(frozen=True)
class EcefFrame:
    """
    Kinematic state of the body resolved in ECEF.

    Attributes:
        position: Body position. Either a Position or ECEF coordinates.
        velocity: ECEF velocity. Shape: (3,). Units: m/s.
        c_body_to_ecef: Body-to-ECEF rotation matrix C_b^e. Shape: (3, 3).
    """

    position: Position
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    c_body_to_ecef: np.ndarray = field(default_factory=lambda: np.eye(3))

    def __post_init__(self) -> None:
        if not isinstance(self.position, Position):
            object.__setattr__(self, "position", Position(self.position))
        object.__setattr__(self, "velocity", _frozen_array(self.velocity, (3,), "velocity"))
        c = _frozen_array(self.c_body_to_ecef, (3, 3), "c_body_to_ecef")
        if not np.allclose(c @ c.T, np.eye(3), atol=1e-6) or np.linalg.det(c) <= 0.0:
            raise ValueError("c_body_to_ecef must be a proper rotation matrix")
        object.__setattr__(self, "c_body_to_ecef", c)

    @classmethod
    def static(cls, position: Position, c_body_to_ecef: np.ndarray) -> "EcefFrame":
        """Frame of a body at rest at ``position`` with the given attitude."""
        return cls(position=position, velocity=np.zeros(3), c_body_to_ecef=c_body_to_ecef)


@dataclass(frozen=True)
class Measurement:
    """
    One accelerometer/gyroscope sample with known reference conditions.

    Attributes:
        specific_force: Measured specific force in body frame. Shape: (3,). Units: m/s².
        angular_rate: Measured angular rate in body frame. Shape: (3,). Units: rad/s.
        specific_force_std: Standard deviation of the specific-force noise (m/s², >= 0).
        angular_rate_std: Standard deviation of the angular-rate noise (rad/s, >= 0).
        frame: Known body frame when the sample was taken (optional).
        previous_frame: Known body frame one sampling interval earlier.
            Defaults to ``frame`` (body at rest).
        time_interval: Sampling interval between the two frames (s, > 0
            when a frame is given).

    Notes:
        - Calibrators that only need the local gravity norm (robust
          known-position calibration) do not require ``frame``.
        - The closed-form calibrator needs ``frame`` to evaluate the
          expected specific force.
    """

    specific_force: np.ndarray
    angular_rate: np.ndarray = field(default_factory=lambda: np.zeros(3))
    specific_force_std: float = 0.0
    angular_rate_std: float = 0.0
    frame: Optional[EcefFrame] = None
    previous_frame: Optional[EcefFrame] = None
    time_interval: float = 0.02

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "specific_force", _frozen_array(self.specific_force, (3,), "specific_force")
        )
        object.__setattr__(
            self, "angular_rate", _frozen_array(self.angular_rate, (3,), "angular_rate")
        )

        if not (self.specific_force_std >= 0.0):
            raise ValueError(f"specific_force_std must be >= 0, got {self.specific_force_std}")
        if not (self.angular_rate_std >= 0.0):
            raise ValueError(f"angular_rate_std must be >= 0, got {self.angular_rate_std}")

        if self.previous_frame is not None and self.frame is None:
            raise ValueError("previous_frame given without frame")
        if self.frame is not None:
            if not (self.time_interval > 0.0):
                raise ValueError(f"time_interval must be positive, got {self.time_interval}")
            if self.previous_frame is None:
                object.__setattr__(self, "previous_frame", self.frame)

    @property
    def has_frame(self) -> bool:
        return self.frame is not None

    def expected_kinematics(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Evaluate the reference model for this sample's known frames.

        Returns:
            Tuple (f_b, w_b) of expected specific force (m/s²) and angular
            rate (rad/s), both in body frame.

        Raises:
            ValueError: If the measurement carries no frame.
        """
        if self.frame is None:
            raise ValueError("measurement has no known frame")

        return estimate_body_kinematics(self.time_interval, self.frame, self.previous_frame)
