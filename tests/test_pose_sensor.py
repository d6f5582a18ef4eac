import numpy as np
import pandas as pd
import pytest
from scipy.spatial.transform import Rotation as R_scipy

from ssf_pose.config import PoseSensorConfig
from ssf_pose.conventions import PoseMeasurement, invert_pose
from ssf_pose.ekf import ErrorStateEKF
from ssf_pose.history import StateHistory
from ssf_pose.observation import predict_pose
from ssf_pose.pose_sensor import PoseSensorHandler, UpdateOutcome
from ssf_pose.state_layout import BLOCKS, FilterState


class RecordingEngine:
    """Engine double that records apply_measurement calls."""

    def __init__(self, states=(), tolerance_sec=0.1):
        self.history = StateHistory(max_states=16, tolerance_sec=tolerance_sec)
        for s in states:
            self.history.push(s)
        self.applied = []
        self.feedback = None

    def get_closest_state(self, t):
        return self.history.closest(t)

    def apply_measurement(self, index, H, r, R):
        self.applied.append((index, H.copy(), r.copy(), R.copy()))
        return True

    def set_measurement_feedback(self, p, q):
        self.feedback = (np.array(p), np.array(q))


def _quat_wxyz(rot: R_scipy) -> np.ndarray:
    x, y, z, w = rot.as_quat()
    return np.array([w, x, y, z])


def _state(t=1.0) -> FilterState:
    rng = np.random.default_rng(40)
    return FilterState(
        time=t,
        p=rng.normal(size=3),
        q=_quat_wxyz(R_scipy.random(random_state=rng)),
        L=1.1,
        q_wv=_quat_wxyz(R_scipy.from_euler("z", 20.0, degrees=True)),
        q_ci=_quat_wxyz(R_scipy.random(random_state=rng)),
        p_ci=np.array([0.05, -0.02, 0.1]),
    )


def _sensor_cov() -> np.ndarray:
    cov = np.diag([0.04, 0.05, 0.06, 0.001, 0.002, 0.003])
    cov[0, 4] = cov[4, 0] = 0.01
    return cov


def test_concrete_scenario_dispatches_zero_residual():
    engine = RecordingEngine([FilterState(time=2.0, p=[1.0, 0.0, 0.0])])
    handler = PoseSensorHandler(engine, PoseSensorConfig())
    meas = PoseMeasurement(2.0, [1.0, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0], _sensor_cov())

    outcome = handler.process_pose_with_covariance(meas)

    assert outcome is UpdateOutcome.DISPATCHED
    assert len(engine.applied) == 1
    index, H, r, R = engine.applied[0]
    assert index == 0
    assert np.allclose(r, np.zeros((7, 1)))
    assert np.allclose(H[0:3, BLOCKS["p"].cols], np.eye(3))
    assert np.allclose(H[0:3, BLOCKS["L"].cols].flatten(), [1.0, 0.0, 0.0])
    assert np.allclose(np.diag(R)[0:6], np.diag(_sensor_cov()))
    assert R[0, 4] == 0.0 and R[4, 0] == 0.0
    assert R[6, 6] == 1e-6


def test_stale_history_aborts_but_caches_measurement():
    engine = RecordingEngine([FilterState.default(time=0.0), FilterState.default(time=0.05)],
                             tolerance_sec=0.1)
    handler = PoseSensorHandler(engine)
    meas = PoseMeasurement(1.0, [3.0, 2.0, 1.0], [1.0, 0.0, 0.0, 0.0], _sensor_cov())

    outcome = handler.process_pose_with_covariance(meas)

    assert outcome is UpdateOutcome.ABORTED_STALE
    assert engine.applied == []
    assert np.allclose(engine.feedback[0], [3.0, 2.0, 1.0])
    assert np.allclose(handler.latest_position, [3.0, 2.0, 1.0])
    assert handler.stats["ABORTED_STALE"] == 1


def test_fixed_covariance_overrides_sensor():
    engine = RecordingEngine([_state()])
    handler = PoseSensorHandler(engine, PoseSensorConfig(use_fixed_covariance=True,
                                                         meas_noise1=0.2, meas_noise2=0.03))
    z_p, z_q = predict_pose(_state())
    handler.process_pose_with_covariance(PoseMeasurement(1.0, z_p, z_q, _sensor_cov()))

    R = engine.applied[0][3]
    assert np.allclose(R, np.diag([0.04, 0.04, 0.04, 0.0009, 0.0009, 0.0009, 1e-6]))


def test_pose_stream_uses_identity_covariance():
    engine = RecordingEngine([_state()])
    handler = PoseSensorHandler(engine)
    z_p, z_q = predict_pose(_state())

    outcome = handler.process_pose(PoseMeasurement(1.0, z_p, z_q, _sensor_cov()))

    assert outcome is UpdateOutcome.DISPATCHED
    R = engine.applied[0][3]
    assert np.allclose(R[0:6, 0:6], np.eye(6))
    assert np.allclose(engine.applied[0][2][0:6], 0.0, atol=1e-9)


def test_world_wrt_sensor_measurement_is_inverted():
    state = _state()
    engine = RecordingEngine([state])
    handler = PoseSensorHandler(engine, PoseSensorConfig(measurement_world_sensor=False))
    z_p, z_q = predict_pose(state)
    p_inv, q_inv = invert_pose(z_p, z_q)

    outcome = handler.process_pose_with_covariance(PoseMeasurement(1.0, p_inv, q_inv, _sensor_cov()))

    assert outcome is UpdateOutcome.DISPATCHED
    _, _, r, R = engine.applied[0]
    assert np.allclose(r[0:6], 0.0, atol=1e-9)
    assert np.allclose(engine.feedback[0], z_p)
    assert np.allclose(R[0:3, 3:6], 0.0)
    # congruent transform keeps the trace of each block
    assert np.isclose(np.trace(R[0:3, 0:3]), 0.15)


def test_non_finite_measurement_rejected_without_side_effects():
    engine = RecordingEngine([_state()])
    handler = PoseSensorHandler(engine)
    meas = PoseMeasurement(1.0, [np.nan, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0])

    assert handler.process_pose(meas) is UpdateOutcome.REJECTED_INPUT
    assert engine.feedback is None
    assert engine.applied == []


def test_half_turn_attitude_error_skips_update():
    engine = RecordingEngine([FilterState.default(time=1.0)])
    handler = PoseSensorHandler(engine)
    meas = PoseMeasurement(1.0, [0.0, 0.0, 0.0], [0.0, 0.0, 1.0, 0.0])

    assert handler.process_pose(meas) is UpdateOutcome.ILL_CONDITIONED
    assert engine.applied == []
    assert engine.feedback is not None


def test_update_config_returns_previous_snapshot():
    handler = PoseSensorHandler(RecordingEngine())
    first = handler.config

    previous = handler.update_config(use_fixed_covariance=True)
    assert previous is first
    assert handler.config.use_fixed_covariance

    previous = handler.noise_config(0.5, 0.1)
    assert previous.meas_noise1 == first.meas_noise1
    assert handler.config.sigma_p == 0.5
    assert handler.config.sigma_q == 0.1
    assert handler.config.use_fixed_covariance

    with pytest.raises(ValueError):
        handler.update_config(not_a_field=1)


def test_residual_csv_logged(tmp_path):
    csv_path = tmp_path / "pose_residuals.csv"
    engine = RecordingEngine([FilterState(time=2.0, p=[1.0, 0.0, 0.0])])
    handler = PoseSensorHandler(engine, PoseSensorConfig(residual_csv=str(csv_path)))

    handler.process_pose(PoseMeasurement(2.0, [1.0, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0]))
    handler.process_pose(PoseMeasurement(9.0, [1.0, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0]))

    df = pd.read_csv(csv_path)
    assert list(df["outcome"]) == ["DISPATCHED", "ABORTED_STALE"]
    assert np.isclose(df["r_px"].iloc[0], 0.0)
    assert np.isnan(df["r_px"].iloc[1])


def test_end_to_end_with_reference_engine():
    engine = ErrorStateEKF(history_size=4, tolerance_sec=0.05)
    engine.push_state(FilterState.default(time=0.0))
    handler = PoseSensorHandler(engine, PoseSensorConfig(use_fixed_covariance=True,
                                                         meas_noise1=0.05, meas_noise2=0.01))
    meas = PoseMeasurement(0.01, [0.2, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0])

    assert handler.process_pose(meas) is UpdateOutcome.DISPATCHED
    corrected, _ = engine.history.get(0)
    assert corrected.p[0] > 0.0
    assert np.allclose(engine.p_vc, [0.2, 0.0, 0.0])


def test_residual_csv_logged_with_reference_engine(tmp_path):
    csv_path = tmp_path / "pose_residuals.csv"
    engine = ErrorStateEKF(history_size=4, tolerance_sec=0.05)
    engine.push_state(FilterState.default(time=0.0))
    handler = PoseSensorHandler(engine, PoseSensorConfig(residual_csv=str(csv_path)))

    outcome = handler.process_pose(PoseMeasurement(0.0, [0.1, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0]))

    assert outcome is UpdateOutcome.DISPATCHED
    df = pd.read_csv(csv_path)
    assert list(df["outcome"]) == ["DISPATCHED"]
    assert np.isclose(df["mahalanobis"].iloc[0], engine.mahalanobis, atol=1e-6)
    assert df["mahalanobis"].iloc[0] > 0.0


def test_residual_log_failure_does_not_abort_update(tmp_path):
    engine = RecordingEngine([FilterState(time=2.0, p=[1.0, 0.0, 0.0])])
    # a directory cannot be opened for appending
    handler = PoseSensorHandler(engine, PoseSensorConfig(residual_csv=str(tmp_path)))

    outcome = handler.process_pose(PoseMeasurement(2.0, [1.0, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0]))

    assert outcome is UpdateOutcome.DISPATCHED
    assert len(engine.applied) == 1


def test_vision_yaw_quarter_turn_skips_update():
    q_wv = _quat_wxyz(R_scipy.from_euler("z", 90.0, degrees=True))
    state = FilterState(time=1.0, p=[0.5, 0.0, 1.0], q_wv=q_wv)
    engine = RecordingEngine([state])
    handler = PoseSensorHandler(engine)
    z_p, z_q = predict_pose(state)

    assert handler.process_pose(PoseMeasurement(1.0, z_p, z_q)) is UpdateOutcome.ILL_CONDITIONED
    assert engine.applied == []


def test_zero_quaternion_rejected_but_finite_pose_cached():
    engine = RecordingEngine([_state()])
    handler = PoseSensorHandler(engine)
    meas = PoseMeasurement(1.0, [1.0, 2.0, 3.0], [0.0, 0.0, 0.0, 0.0])

    assert handler.process_pose(meas) is UpdateOutcome.REJECTED_INPUT
    assert engine.applied == []
    assert np.allclose(handler.latest_position, [1.0, 2.0, 3.0])
    assert np.allclose(engine.feedback[0], [1.0, 2.0, 3.0])


def test_wrong_covariance_shape_raises_at_construction():
    with pytest.raises(ValueError):
        PoseMeasurement(1.0, [0.0, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0], np.eye(3))
