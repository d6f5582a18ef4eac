#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Pose Sensor Measurement Handler

Fuses an external 6-DOF pose (motion capture, visual SLAM, ground truth)
into the error-state EKF:

    measurement → convention normalization → noise model
                → closest buffered state → H, r → engine.apply_measurement

Two streams share one path and differ only in covariance policy:
- pose with covariance: covariance taken from the sensor
- plain pose (e.g. ground truth): identity covariance

The engine is duck-typed and must provide:
- get_closest_state(t) -> StateLookup
- apply_measurement(index, H, r, R) -> bool
- set_measurement_feedback(p, q)

Author: SSF pose project
"""

import threading
from enum import Enum
from typing import Any, Dict

import numpy as np

from . import config as cfg
from .config import PoseSensorConfig
from .conventions import PoseMeasurement, normalize_convention
from .math_utils import quat_normalize
from .noise_model import CovarianceSource, build_measurement_noise, resolve_covariance_source
from .numerical_checks import assert_finite, check_quaternion
from .observation import build_observation_jacobian, compute_residual
from .output_utils import log_pose_update


class UpdateOutcome(Enum):
    """Terminal state of one measurement."""

    DISPATCHED = "DISPATCHED"
    ABORTED_STALE = "ABORTED_STALE"
    REJECTED_INPUT = "REJECTED_INPUT"
    ILL_CONDITIONED = "ILL_CONDITIONED"


class PoseSensorHandler:
    """Pose measurement handler for the error-state EKF."""

    def __init__(self, engine: Any, config: PoseSensorConfig = None):
        """
        Args:
            engine: Filter engine (see module docstring for the interface)
            config: Initial configuration snapshot
        """
        self.engine = engine
        self._config = config if config is not None else PoseSensorConfig()
        self._config_lock = threading.Lock()

        # latest canonical measurement, kept even when the update aborts
        self.latest_position = None
        self.latest_orientation = None

        self.stats = {outcome.value: 0 for outcome in UpdateOutcome}

        c = self._config
        if c.measurement_world_sensor:
            print("[POSE] interpreting measurement as sensor w.r.t. world")
        else:
            print("[POSE] interpreting measurement as world w.r.t. sensor (e.g. ethzasl_ptam)")
        if c.use_fixed_covariance:
            print("[POSE] using fixed covariance")
        else:
            print("[POSE] using covariance from sensor")

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def config(self) -> PoseSensorConfig:
        return self._config

    def update_config(self, **changes) -> PoseSensorConfig:
        """
        Swap in a new configuration snapshot.

        Returns:
            The previous snapshot
        """
        with self._config_lock:
            previous = self._config
            self._config = previous.with_changes(**changes)
        if cfg.VERBOSE_DEBUG:
            print(f"[CONFIG] pose sensor config updated: {changes}")
        return previous

    def noise_config(self, meas_noise1: float, meas_noise2: float) -> PoseSensorConfig:
        """Reconfigure callback for the fixed position/attitude noise."""
        return self.update_config(meas_noise1=float(meas_noise1), meas_noise2=float(meas_noise2))

    # ------------------------------------------------------------------
    # Measurement streams
    # ------------------------------------------------------------------

    def process_pose_with_covariance(self, meas: PoseMeasurement) -> UpdateOutcome:
        """Pose stream with sensor-supplied covariance."""
        return self._process(meas, CovarianceSource.FROM_SENSOR)

    def process_pose(self, meas: PoseMeasurement) -> UpdateOutcome:
        """Pose stream without covariance (identity covariance)."""
        return self._process(meas, CovarianceSource.IDENTITY)

    def _process(self, meas: PoseMeasurement, stream_source: CovarianceSource) -> UpdateOutcome:
        c = self._config  # one read per measurement
        t = meas.time

        if not self._input_ok(meas, stream_source):
            if np.all(np.isfinite(meas.position)) and np.all(np.isfinite(meas.orientation)):
                self._cache_feedback(meas.position, meas.orientation)
            return self._finish(c, t, UpdateOutcome.REJECTED_INPUT)

        z_q = quat_normalize(meas.orientation)
        sensor_cov = meas.covariance if stream_source is CovarianceSource.FROM_SENSOR else None
        z_p, z_q, sensor_cov = normalize_convention(
            meas.position, z_q, sensor_cov, world_wrt_sensor=not c.measurement_world_sensor)

        source = resolve_covariance_source(stream_source, c.use_fixed_covariance)
        R = build_measurement_noise(source, sensor_cov, c.sigma_p, c.sigma_q, t=t)

        # feedback for init case
        self._cache_feedback(z_p, z_q)

        lookup = self.engine.get_closest_state(t)
        if not lookup.found:
            return self._finish(c, t, UpdateOutcome.ABORTED_STALE)

        H = build_observation_jacobian(lookup.state)
        r, well_conditioned = compute_residual(lookup.state, z_p, z_q, c.min_quaternion_scalar)
        if not well_conditioned:
            if cfg.VERBOSE_DEBUG:
                print(f"[POSE] t={t:.3f}: attitude error near 180° or vision yaw near ±90°, update skipped")
            return self._finish(c, t, UpdateOutcome.ILL_CONDITIONED)

        self.engine.apply_measurement(lookup.index, H, r, R)
        return self._finish(c, t, UpdateOutcome.DISPATCHED, r)

    def _cache_feedback(self, position: np.ndarray, orientation: np.ndarray) -> None:
        self.latest_position = np.array(position, dtype=float)
        self.latest_orientation = np.array(orientation, dtype=float)
        self.engine.set_measurement_feedback(self.latest_position, self.latest_orientation)

    def _input_ok(self, meas: PoseMeasurement, stream_source: CovarianceSource) -> bool:
        verbose = cfg.VERBOSE_DEBUG
        ok = (assert_finite("pose.position", meas.position, t=meas.time, verbose=verbose)
              and check_quaternion("pose.orientation", meas.orientation, t=meas.time, verbose=verbose))
        if ok and stream_source is CovarianceSource.FROM_SENSOR and meas.covariance is not None:
            ok = assert_finite("pose.covariance", meas.covariance, t=meas.time, verbose=verbose)
        return ok

    def _finish(self, c: PoseSensorConfig, t: float, outcome: UpdateOutcome,
                residual: np.ndarray = None) -> UpdateOutcome:
        self.stats[outcome.value] += 1
        if cfg.VERBOSE_DEBUG and outcome is not UpdateOutcome.DISPATCHED:
            print(f"[POSE] t={t:.3f}: {outcome.value}")
        if c.residual_csv is not None:
            # debug output must not abort an update that was already applied
            try:
                mahal = getattr(self.engine, "mahalanobis", None) if outcome is UpdateOutcome.DISPATCHED else None
                log_pose_update(c.residual_csv, t, outcome.value, residual, mahal)
            except (OSError, TypeError, ValueError) as e:
                print(f"[POSE] WARNING: residual log failed at t={t:.3f}: {e}")
        return outcome

    def print_stats(self) -> None:
        """Print outcome counters."""
        print("[POSE] Stats: " + ", ".join(f"{k.lower()}={v}" for k, v in self.stats.items()))

    def get_stats(self) -> Dict[str, int]:
        return dict(self.stats)
