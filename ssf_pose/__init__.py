"""
SSF Pose Sensor Package

Pose-measurement update for an error-state EKF that estimates, besides the
IMU state, the camera-IMU extrinsics, the visual scale and the
vision-to-world rotation.

Version: 1.2.0

Changes in v1.2.0:
- NEW: Offline replay (replay.py, run_pose_replay.py)
  * Pushes logged states into the reference engine as they become due
  * Writes corrected states and an optional residual CSV
- NEW: Boundary validation of incoming poses (numerical_checks.py)
  * Non-finite position/orientation/covariance → REJECTED_INPUT
  * Non-PSD sensor covariance is reported and passed through

Changes in v1.1.0:
- REFACTORED: Single measurement path for both pose streams
  * CovarianceSource policy {FROM_SENSOR, IDENTITY, FIXED}
  * Previously two near-identical callbacks
- REFACTORED: Closest-state lookup returns StateLookup
  * StateLookup.not_found() replaces the time == -1 sentinel
- REFACTORED: Named error-state blocks (state_layout.py)
  * Jacobian assembly no longer uses raw column offsets
- NEW: Configuration snapshots swapped atomically (update_config)
- NEW: Attitude residual guard (min_quaternion_scalar)

Submodules:
- config: YAML loading and PoseSensorConfig snapshot
- math_utils: Quaternion operations, rotation matrices, skew
- state_layout: Error-state blocks and FilterState
- conventions: PoseMeasurement and sensor-convention normalization
- noise_model: 7x7 measurement covariance
- observation: Observation Jacobian and residual
- history: Time-indexed state history
- ekf: Reference error-state EKF core
- pose_sensor: PoseSensorHandler (update dispatcher)
- numerical_checks: Input tripwires
- data_loaders: Pose/state CSV loaders
- output_utils: Residual and state CSV output
- replay: Offline replay driver

Usage:
    from ssf_pose.ekf import ErrorStateEKF
    from ssf_pose.pose_sensor import PoseSensorHandler
    from ssf_pose.conventions import PoseMeasurement
    from ssf_pose.state_layout import FilterState

    engine = ErrorStateEKF(history_size=256, tolerance_sec=0.5)
    engine.push_state(FilterState.default(time=0.0))
    handler = PoseSensorHandler(engine)
    handler.process_pose_with_covariance(meas)

Author: SSF pose project
"""

__version__ = "1.2.0"

# Lazy module imports - access as ssf_pose.config, ssf_pose.ekf, etc.
import importlib

_SUBMODULES = {
    "config", "math_utils", "state_layout", "conventions", "noise_model",
    "observation", "history", "ekf", "pose_sensor", "numerical_checks",
    "data_loaders", "output_utils", "replay",
}


def __getattr__(name):
    """Lazy module loading to avoid importing all dependencies at once."""
    if name in _SUBMODULES:
        module = importlib.import_module(f".{name}", __name__)
        globals()[name] = module
        return module
    raise AttributeError(f"module 'ssf_pose' has no attribute '{name}'")


def __dir__():
    """List available submodules."""
    return list(_SUBMODULES)


__all__ = list(_SUBMODULES)
