import numpy as np
from scipy.spatial.transform import Rotation as R_scipy

from ssf_pose.math_utils import quat_multiply, yaw_drift_residual
from ssf_pose.observation import build_observation_jacobian, compute_residual, predict_pose
from ssf_pose.state_layout import BLOCKS, N_STATE, OBSERVED_BLOCKS, OPAQUE_BLOCKS, Q_WV_YAW_COL, FilterState


def _quat_wxyz(rot: R_scipy) -> np.ndarray:
    x, y, z, w = rot.as_quat()
    return np.array([w, x, y, z])


def _random_state(seed: int, q_wv=None) -> FilterState:
    rng = np.random.default_rng(seed)
    return FilterState(
        time=1.0,
        p=rng.normal(size=3) * 2.0,
        v=rng.normal(size=3),
        q=_quat_wxyz(R_scipy.random(random_state=rng)),
        L=0.8 + 0.4 * rng.random(),
        q_wv=q_wv if q_wv is not None else _quat_wxyz(R_scipy.from_euler("xyz", rng.normal(size=3) * 0.2)),
        q_ci=_quat_wxyz(R_scipy.random(random_state=rng)),
        p_ci=rng.normal(size=3) * 0.1,
    )


def test_identity_configuration_attitude_blocks():
    H = build_observation_jacobian(FilterState.default(time=0.0))
    assert np.allclose(H[3:6, BLOCKS["q"].cols], np.eye(3))
    assert np.allclose(H[3:6, BLOCKS["q_ci"].cols], np.eye(3))
    assert np.allclose(H[3:6, BLOCKS["q_wv"].cols], np.eye(3))


def test_concrete_scenario():
    state = FilterState(time=0.0, p=[1.0, 0.0, 0.0])
    r, ok = compute_residual(state, np.array([1.0, 0.0, 0.0]), np.array([1.0, 0.0, 0.0, 0.0]))
    H = build_observation_jacobian(state)

    assert ok
    assert np.allclose(r, np.zeros((7, 1)))
    assert np.allclose(H[0:3, BLOCKS["p"].cols], np.eye(3))
    assert np.allclose(H[0:3, BLOCKS["L"].cols].flatten(), [1.0, 0.0, 0.0])


def test_jacobian_zero_outside_observed_blocks():
    H = build_observation_jacobian(_random_state(30))
    assert H.shape == (7, N_STATE)
    for name in OPAQUE_BLOCKS:
        assert np.all(H[:, BLOCKS[name].cols] == 0.0)
    assert np.count_nonzero(H[6]) == 1
    assert H[6, Q_WV_YAW_COL] == 1.0


def test_residual_vanishes_at_predicted_pose_for_any_vision_yaw():
    for yaw_deg in (-170.0, -45.0, 0.0, 30.0, 120.0):
        q_wv = _quat_wxyz(R_scipy.from_euler("z", yaw_deg, degrees=True))
        state = _random_state(31, q_wv=q_wv)
        z_p, z_q = predict_pose(state)
        r, ok = compute_residual(state, z_p, z_q)
        assert ok
        assert np.allclose(r[0:6, 0], 0.0, atol=1e-9)
        assert r[6, 0] == yaw_drift_residual(q_wv)


def test_yaw_row_independent_of_measurement():
    state = _random_state(32)
    z_p, z_q = predict_pose(state)
    dq = _quat_wxyz(R_scipy.from_rotvec([0.05, -0.02, 0.1]))
    r1, _ = compute_residual(state, z_p, z_q)
    r2, _ = compute_residual(state, z_p + 1.0, quat_multiply(z_q, dq))
    assert r1[6, 0] == r2[6, 0]
    assert not np.allclose(r1[0:6], r2[0:6])


def test_attitude_residual_is_small_angle_of_error():
    state = _random_state(33)
    z_p, z_q = predict_pose(state)
    theta = np.array([0.01, -0.02, 0.015])
    r, ok = compute_residual(state, z_p, quat_multiply(z_q, _quat_wxyz(R_scipy.from_rotvec(theta))))
    assert ok
    # 2 tan(|θ|/2) θ/|θ| ≈ θ
    assert np.allclose(r[3:6, 0], theta, atol=1e-5)


def test_jacobian_matches_finite_differences():
    state = _random_state(34)
    z_p, z_q = predict_pose(state)
    H = build_observation_jacobian(state)

    eps = 1e-6
    H_num = np.zeros((6, N_STATE))
    for j in range(N_STATE):
        dx = np.zeros(N_STATE)
        dx[j] = eps
        r_plus, _ = compute_residual(state.boxplus(dx), z_p, z_q)
        r_minus, _ = compute_residual(state.boxplus(-dx), z_p, z_q)
        # r = z - h(x ⊞ δx) ≈ -H δx
        H_num[:, j] = -(r_plus[0:6, 0] - r_minus[0:6, 0]) / (2 * eps)

    assert np.allclose(H[0:6], H_num, atol=1e-6)


def test_yaw_row_matches_finite_difference_at_identity_alignment():
    state = _random_state(35, q_wv=np.array([1.0, 0.0, 0.0, 0.0]))
    z_p, z_q = predict_pose(state)
    H = build_observation_jacobian(state)

    eps = 1e-6
    dx = np.zeros(N_STATE)
    dx[Q_WV_YAW_COL] = eps
    r_plus, _ = compute_residual(state.boxplus(dx), z_p, z_q)
    r_minus, _ = compute_residual(state.boxplus(-dx), z_p, z_q)
    assert np.isclose(-(r_plus[6, 0] - r_minus[6, 0]) / (2 * eps), H[6, Q_WV_YAW_COL], atol=1e-6)


def test_half_turn_attitude_error_is_ill_conditioned():
    state = FilterState.default(time=0.0)
    r, ok = compute_residual(state, np.zeros(3), np.array([0.0, 1.0, 0.0, 0.0]), min_quaternion_scalar=1e-3)
    assert not ok
    assert np.all(r[3:6] == 0.0)


def test_double_cover_sign_does_not_change_residual():
    state = _random_state(36)
    z_p, z_q = predict_pose(state)
    z_q = quat_multiply(z_q, _quat_wxyz(R_scipy.from_rotvec([0.1, 0.0, -0.05])))
    r_pos, _ = compute_residual(state, z_p, z_q)
    r_neg, _ = compute_residual(state, z_p, -z_q)
    assert np.allclose(r_pos, r_neg)


def test_vision_yaw_at_quarter_turn_is_ill_conditioned():
    q_wv = _quat_wxyz(R_scipy.from_euler("z", 90.0, degrees=True))
    state = _random_state(37, q_wv=q_wv)
    z_p, z_q = predict_pose(state)
    r, ok = compute_residual(state, z_p, z_q, min_quaternion_scalar=1e-3)
    assert not ok
    assert r[6, 0] == 0.0
    assert np.all(np.isfinite(r))


def test_jacobian_columns_cover_observed_blocks():
    H = build_observation_jacobian(_random_state(38))
    assert sorted(OBSERVED_BLOCKS + OPAQUE_BLOCKS) == sorted(BLOCKS)
    for name in OBSERVED_BLOCKS:
        assert np.any(H[:, BLOCKS[name].cols] != 0.0)
