"""Rotation helpers for body-to-ECEF attitudes.

Conventions:
- Rotation matrices: 3x3 numpy arrays with v_ref = R @ v_body
- Euler angles: [roll, pitch, yaw] in radians (ZYX/3-2-1 convention)
- Rotation vectors: axis * angle (radians)
"""

import numpy as np
from numpy.typing import NDArray


def euler_to_rotation_matrix(
    roll: float,
    pitch: float,
    yaw: float,
) -> NDArray[np.float64]:
    """Convert ZYX Euler angles to a body-to-reference rotation matrix.

    Args:
        roll: Roll angle φ in radians (rotation about x-axis).
        pitch: Pitch angle θ in radians (rotation about y-axis).
        yaw: Yaw angle ψ in radians (rotation about z-axis).

    Returns:
        3x3 rotation matrix R such that v_ref = R @ v_body.

    Example:
        >>> R = euler_to_rotation_matrix(0.1, 0.2, 0.3)
        >>> print(f"det(R) = {np.linalg.det(R):.6f}")
    """
    cr, sr = np.cos(roll), np.sin(roll)
    cp, sp = np.cos(pitch), np.sin(pitch)
    cy, sy = np.cos(yaw), np.sin(yaw)

    return np.array(
        [
            [cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr],
            [sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr],
            [-sp, cp * sr, cp * cr],
        ],
        dtype=np.float64,
    )


def rotation_matrix_to_euler(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Extract ZYX Euler angles [roll, pitch, yaw] from a rotation matrix.

    At gimbal lock (pitch = ±90°) roll is set to zero and the remaining
    rotation is attributed to yaw.

    Raises:
        ValueError: If R is not a 3x3 matrix.
    """
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")

    sin_pitch = -R[2, 0]
    if abs(sin_pitch) >= 1.0:
        return np.array(
            [0.0, np.copysign(np.pi / 2.0, sin_pitch), np.arctan2(-R[0, 1], R[1, 1])],
            dtype=np.float64,
        )

    return np.array(
        [np.arctan2(R[2, 1], R[2, 2]), np.arcsin(sin_pitch), np.arctan2(R[1, 0], R[0, 0])],
        dtype=np.float64,
    )


def rotation_z(angle: float) -> NDArray[np.float64]:
    """Active rotation about z by ``angle`` radians.

    Used to carry the ECEF axes through the Earth rotation accumulated over
    a sampling interval (ECEF at t+dt resolved in ECEF at t).
    """
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]], dtype=np.float64)


def rotation_matrix_to_rotvec(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert a rotation matrix into its rotation vector (axis * angle).

    Small angles use the first-order skew-symmetric extraction, angles close
    to π recover the axis from the symmetric part of R.

    Raises:
        ValueError: If R is not a 3x3 matrix.
    """
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")

    skew = 0.5 * np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]])
    sin_angle = np.linalg.norm(skew)
    cos_angle = 0.5 * (np.trace(R) - 1.0)
    angle = np.arctan2(sin_angle, cos_angle)

    if sin_angle >= 1e-6:
        return skew * (angle / sin_angle)
    if cos_angle > 0.0:
        return skew

    # angle ≈ π: axis is the dominant column of (R + I) / 2
    B = 0.5 * (R + np.eye(3))
    k = int(np.argmax(np.diag(B)))
    axis = B[:, k] / np.sqrt(B[k, k])
    axis /= np.linalg.norm(axis)
    if np.dot(axis, skew) < 0.0:
        axis = -axis
    return axis * angle


def orthonormalize(M: NDArray[np.float64]) -> NDArray[np.float64]:
    """Project a 3x3 matrix onto the nearest rotation matrix (SVD)."""
    U, _, Vt = np.linalg.svd(np.asarray(M, dtype=np.float64))
    R = U @ Vt
    if np.linalg.det(R) < 0.0:
        U[:, -1] = -U[:, -1]
        R = U @ Vt
    return R
