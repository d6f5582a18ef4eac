#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SSF Pose Configuration Module
=============================

Handles YAML configuration loading for the pose sensor update and the
reference filter engine.

Configuration Structure:
------------------------
The YAML config file contains:
- pose_sensor: measurement noise and interpretation flags
    * meas_noise1: position noise σp [m] (used with fixed covariance)
    * meas_noise2: attitude noise σq [rad] (used with fixed covariance)
    * use_fixed_covariance: ignore sensor covariance, use σp/σq
    * measurement_world_sensor: True if the pose is the sensor w.r.t. world,
      False if it is the world w.r.t. the sensor (e.g. PTAM output)
    * min_quaternion_scalar: attitude-error conditioning guard
- filter: state history settings of the reference engine
    * history_size: number of buffered state snapshots
    * history_tolerance_sec: max |t_state - t_meas| for a match
    * initial_state_variance: covariance diagonal for replayed states

The default noise values are tuned for a PTAM-style monocular pose source.

Author: SSF pose project
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

import yaml

# ========================================
# Debug verbosity control
# ========================================
# Set to True for per-measurement debug output
VERBOSE_DEBUG = False


@dataclass(frozen=True)
class PoseSensorConfig:
    """
    Immutable configuration snapshot for the pose sensor handler.

    The handler reads one snapshot per measurement; runtime changes swap in
    a new snapshot instead of mutating fields.
    """

    meas_noise1: float = 9.9
    meas_noise2: float = 0.02
    use_fixed_covariance: bool = False
    measurement_world_sensor: bool = True
    min_quaternion_scalar: float = 1e-3
    residual_csv: Optional[str] = None

    def __post_init__(self):
        if not (self.meas_noise1 >= 0.0 and self.meas_noise2 >= 0.0):
            raise ValueError(
                f"measurement noise must be non-negative "
                f"(meas_noise1={self.meas_noise1}, meas_noise2={self.meas_noise2})"
            )
        if not 0.0 <= self.min_quaternion_scalar < 1.0:
            raise ValueError(f"min_quaternion_scalar out of range: {self.min_quaternion_scalar}")

    @property
    def sigma_p(self) -> float:
        return float(self.meas_noise1)

    @property
    def sigma_q(self) -> float:
        return float(self.meas_noise2)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "PoseSensorConfig":
        """Build a snapshot from the flat dict returned by load_config()."""
        return cls(
            meas_noise1=float(config.get("MEAS_NOISE1", cls.meas_noise1)),
            meas_noise2=float(config.get("MEAS_NOISE2", cls.meas_noise2)),
            use_fixed_covariance=bool(config.get("USE_FIXED_COVARIANCE", cls.use_fixed_covariance)),
            measurement_world_sensor=bool(config.get("MEASUREMENT_WORLD_SENSOR", cls.measurement_world_sensor)),
            min_quaternion_scalar=float(config.get("MIN_QUATERNION_SCALAR", cls.min_quaternion_scalar)),
            residual_csv=config.get("RESIDUAL_CSV"),
        )

    def with_changes(self, **changes) -> "PoseSensorConfig":
        """Return a copy with the given fields replaced."""
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"unknown pose sensor config field(s): {sorted(unknown)}")
        return replace(self, **changes)


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load YAML configuration file and convert to flat upper-case keys.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Dictionary with:
        - MEAS_NOISE1, MEAS_NOISE2: fixed measurement noise sigmas
        - USE_FIXED_COVARIANCE, MEASUREMENT_WORLD_SENSOR: flags
        - MIN_QUATERNION_SCALAR: attitude conditioning guard
        - RESIDUAL_CSV: optional residual log path
        - HISTORY_SIZE, HISTORY_TOLERANCE_SEC: reference engine history
        - INITIAL_STATE_VARIANCE: diagonal of replayed state covariances

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed

    Example:
        >>> config = load_config("configs/config_pose_sensor.yaml")
        >>> print(config['MEAS_NOISE1'])
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    result = {}

    # ========================================
    # Pose sensor
    # ========================================
    pose = config.get('pose_sensor', {})
    result['MEAS_NOISE1'] = float(pose.get('meas_noise1', PoseSensorConfig.meas_noise1))
    result['MEAS_NOISE2'] = float(pose.get('meas_noise2', PoseSensorConfig.meas_noise2))
    result['USE_FIXED_COVARIANCE'] = bool(pose.get('use_fixed_covariance', False))
    result['MEASUREMENT_WORLD_SENSOR'] = bool(pose.get('measurement_world_sensor', True))
    result['MIN_QUATERNION_SCALAR'] = float(
        pose.get('min_quaternion_scalar', PoseSensorConfig.min_quaternion_scalar))
    result['RESIDUAL_CSV'] = pose.get('residual_csv')

    # ========================================
    # Reference filter engine
    # ========================================
    filt = config.get('filter', {})
    result['HISTORY_SIZE'] = int(filt.get('history_size', 256))
    result['HISTORY_TOLERANCE_SEC'] = float(filt.get('history_tolerance_sec', 0.5))
    result['INITIAL_STATE_VARIANCE'] = float(filt.get('initial_state_variance', 1e-2))
    if result['HISTORY_SIZE'] < 1:
        raise ValueError(f"filter.history_size must be >= 1, got {result['HISTORY_SIZE']}")
    if result['HISTORY_TOLERANCE_SEC'] < 0.0:
        raise ValueError(f"filter.history_tolerance_sec must be >= 0, got {result['HISTORY_TOLERANCE_SEC']}")

    return result
