"""Pose measurement container and sensor-convention normalization.

Pose sources disagree on what they report. The filter expects the sensor
pose w.r.t. the world (vision) frame; sources such as PTAM publish the
world as seen from the sensor, which is the inverse transform.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .math_utils import block_diag_rotation, quat_conjugate, quat_to_rot


@dataclass
class PoseMeasurement:
    """Single 6-DOF pose measurement."""

    time: float  # timestamp (seconds)
    position: np.ndarray  # [x, y, z]
    orientation: np.ndarray  # quaternion [w, x, y, z]
    covariance: Optional[np.ndarray] = None  # 6x6, [position, attitude] order

    def __post_init__(self):
        self.time = float(self.time)
        self.position = np.asarray(self.position, dtype=float).reshape(3,)
        self.orientation = np.asarray(self.orientation, dtype=float).reshape(4,)
        if self.covariance is not None:
            self.covariance = np.asarray(self.covariance, dtype=float).reshape(6, 6)

    @classmethod
    def from_flat_covariance(cls, time: float, position, orientation,
                             covariance: Sequence[float]) -> "PoseMeasurement":
        """Build from a row-major 36-element covariance (ROS message layout)."""
        cov = np.asarray(covariance, dtype=float)
        if cov.size != 36:
            raise ValueError(f"pose covariance needs 36 entries, got {cov.size}")
        return cls(time, position, orientation, cov.reshape(6, 6))

    @property
    def has_covariance(self) -> bool:
        return self.covariance is not None


def invert_pose(position: np.ndarray, orientation: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Invert a pose: q' = q*, p' = -R(q)^T p."""
    C_zq = quat_to_rot(orientation)
    return -C_zq.T @ position, quat_conjugate(orientation)


def normalize_convention(position: np.ndarray,
                         orientation: np.ndarray,
                         covariance: Optional[np.ndarray],
                         world_wrt_sensor: bool) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
    """
    Bring a reported pose into the sensor-w.r.t.-world convention.

    When the source reports the world w.r.t. the sensor, the pose is
    inverted and the covariance transformed congruently with
    J = diag(R(q), R(q)), where q is the reported orientation.

    Args:
        position: Reported position (3,)
        orientation: Reported unit quaternion [w,x,y,z]
        covariance: Optional 6x6 covariance in [position, attitude] order
        world_wrt_sensor: True if the report is world w.r.t. sensor

    Returns:
        (position, orientation, covariance) in canonical convention
    """
    position = np.asarray(position, dtype=float).reshape(3,)
    orientation = np.asarray(orientation, dtype=float).reshape(4,)
    if not world_wrt_sensor:
        return position, orientation, covariance

    J = block_diag_rotation(quat_to_rot(orientation))
    p_out, q_out = invert_pose(position, orientation)
    cov_out = None
    if covariance is not None:
        cov_out = J.T @ np.asarray(covariance, dtype=float) @ J
    return p_out, q_out, cov_out
