"""
Measurement Noise Model for the Pose Update

Builds the 7x7 measurement covariance R for [position(3), attitude(3),
vision-world yaw(1)]:

- FROM_SENSOR: sensor-supplied 6x6 covariance, position/attitude
  cross-correlation removed (the sensor attitude covariance is in Euler
  angles, the filter's attitude error is a rotation vector)
- IDENTITY: unit covariance for sources that publish none
- FIXED: diag(σp², σq²) from configuration

R[6,6] is always the yaw pseudo-noise.

Author: SSF pose project
"""

from enum import Enum
from typing import Optional

import numpy as np

from . import config as cfg
from .numerical_checks import covariance_is_psd

N_MEAS = 7  # measurement size
YAW_PSEUDO_NOISE = 1e-6  # q_wv yaw-measurement noise


class CovarianceSource(Enum):
    """Where the top-left 6x6 block of R comes from."""

    FROM_SENSOR = "from_sensor"
    IDENTITY = "identity"
    FIXED = "fixed"


def resolve_covariance_source(stream_source: CovarianceSource,
                              use_fixed_covariance: bool) -> CovarianceSource:
    """Fixed covariance from configuration overrides the stream's policy."""
    if use_fixed_covariance:
        return CovarianceSource.FIXED
    return stream_source


def fixed_noise(sigma_p: float, sigma_q: float) -> np.ndarray:
    """R = diag(σp², σp², σp², σq², σq², σq², 1e-6)."""
    s_zp = sigma_p * sigma_p
    s_zq = sigma_q * sigma_q
    return np.diag([s_zp, s_zp, s_zp, s_zq, s_zq, s_zq, YAW_PSEUDO_NOISE])


def build_measurement_noise(source: CovarianceSource,
                            sensor_covariance: Optional[np.ndarray] = None,
                            sigma_p: float = 0.0,
                            sigma_q: float = 0.0,
                            t: Optional[float] = None) -> np.ndarray:
    """
    Build the 7x7 measurement noise covariance.

    Args:
        source: Covariance policy
        sensor_covariance: 6x6 sensor covariance (FROM_SENSOR only)
        sigma_p: Position noise σp (FIXED only)
        sigma_q: Attitude noise σq (FIXED only)
        t: Measurement time, for diagnostics

    Returns:
        R (7x7); position/attitude cross blocks are zero
    """
    if source is CovarianceSource.FIXED:
        return fixed_noise(sigma_p, sigma_q)

    R = np.zeros((N_MEAS, N_MEAS), dtype=float)
    if source is CovarianceSource.FROM_SENSOR and sensor_covariance is not None:
        cov = np.asarray(sensor_covariance, dtype=float).reshape(6, 6)
        # Non-PSD input is kept as-is; instability shows up in the engine
        label = "pose-meas" if t is None else f"pose-meas t={t:.3f}"
        covariance_is_psd(cov, label=label, verbose=True)
        R[0:6, 0:6] = cov
    else:
        if source is CovarianceSource.FROM_SENSOR and cfg.VERBOSE_DEBUG:
            print("[POSE] sensor covariance missing, using identity")
        R[0:6, 0:6] = np.eye(6)

    # clear cross-correlations between p and q
    R[0:3, 3:6] = 0.0
    R[3:6, 0:3] = 0.0
    R[6, 6] = YAW_PSEUDO_NOISE
    return R
