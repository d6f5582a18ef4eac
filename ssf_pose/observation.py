#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Pose Observation Model
======================

Measurement model of a 6-DOF pose sensor (camera) in an error-state EKF
that also estimates visual scale L, vision-world rotation q_wv and the
camera-IMU extrinsics (q_ci, p_ci):

    z_p = C_wv^T (p + C_q^T p_ci) L
    z_q = q_wv ⊗ q ⊗ q_ci

with C_wv, C_q, C_ci the rotation matrices of conj(q_wv), conj(q),
conj(q_ci) (parent-to-child transforms).

Rotation errors are right-multiplicative rotation vectors
(q_true = q ⊗ exp(δθ)), so attitude columns are tangent-space partials.

Measurement rows:
    0-2: position
    3-5: attitude (small-angle rotation vector)
    6:   vision-world yaw anchor (unobservable from pose alone)

Author: SSF pose project
"""

from typing import Optional, Tuple

import numpy as np

from .math_utils import (
    quat_conjugate,
    quat_multiply,
    quat_to_rot,
    skew_symmetric,
    yaw_drift_residual,
)
from .noise_model import N_MEAS
from .state_layout import BLOCKS, N_STATE, Q_WV_YAW_COL, FilterState


def rotation_matrices(state: FilterState) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Rotation matrices used by the pose model.

    Returns:
        C_wv: world -> vision, C_q: world -> IMU, C_ci: IMU -> camera
    """
    C_wv = quat_to_rot(quat_conjugate(state.q_wv))
    C_q = quat_to_rot(quat_conjugate(state.q))
    C_ci = quat_to_rot(quat_conjugate(state.q_ci))
    return C_wv, C_q, C_ci


def predict_pose(state: FilterState) -> Tuple[np.ndarray, np.ndarray]:
    """Predicted camera pose in the vision frame: (z_p, z_q)."""
    C_wv, C_q, _ = rotation_matrices(state)
    z_p = C_wv.T @ (state.p + C_q.T @ state.p_ci) * state.L
    z_q = quat_multiply(quat_multiply(state.q_wv, state.q), state.q_ci)
    return z_p, z_q


def _set_block(H: np.ndarray, rows: slice, block: str, value) -> None:
    H[rows, BLOCKS[block].cols] = np.asarray(value, dtype=float).reshape(
        rows.stop - rows.start, BLOCKS[block].size)


def build_observation_jacobian(state: FilterState) -> np.ndarray:
    """
    Linearize the pose measurement around a filter state snapshot.

    Args:
        state: Filter state matched to the measurement time

    Returns:
        H (7 x N_STATE); columns of v, b_w, b_a stay zero
    """
    C_wv, C_q, C_ci = rotation_matrices(state)
    L = state.L

    vecold = (state.p + C_q.T @ state.p_ci) * L
    skewold = skew_symmetric(vecold)
    pci_sk = skew_symmetric(state.p_ci)

    H = np.zeros((N_MEAS, N_STATE), dtype=float)
    pos = slice(0, 3)
    att = slice(3, 6)

    # position
    _set_block(H, pos, "p", C_wv.T * L)
    _set_block(H, pos, "q", -C_wv.T @ C_q.T @ pci_sk * L)
    _set_block(H, pos, "L", C_wv.T @ C_q.T @ state.p_ci + C_wv.T @ state.p)
    _set_block(H, pos, "q_wv", -C_wv.T @ skewold)
    _set_block(H, pos, "p_ci", C_wv.T @ C_q.T * L)

    # attitude
    _set_block(H, att, "q", C_ci)
    _set_block(H, att, "q_wv", C_ci @ C_q)
    _set_block(H, att, "q_ci", np.eye(3))

    # vision-world yaw is unobservable otherwise
    H[6, Q_WV_YAW_COL] = 1.0
    return H


def attitude_error(state: FilterState, z_q: np.ndarray) -> np.ndarray:
    """q_err = conj(q_wv ⊗ q ⊗ q_ci) ⊗ z_q (predicted-to-measured)."""
    _, q_pred = predict_pose(state)
    return quat_multiply(quat_conjugate(q_pred), z_q)


def compute_residual(state: FilterState,
                     z_p: np.ndarray,
                     z_q: np.ndarray,
                     min_quaternion_scalar: float = 0.0) -> Tuple[np.ndarray, bool]:
    """
    Innovation of a pose measurement against a filter state.

    The attitude rows use the first-order conversion 2·vec(q_err)/w(q_err).
    That ratio does not depend on the sign of q_err, so no double-cover
    branch is taken; only |w| is guarded. The yaw-anchor row has the same
    kind of singularity: its denominator 1-2(y²+z²) of q_wv vanishes at a
    vision yaw of ±90°, and is guarded with the same threshold.

    Args:
        state: Matched filter state
        z_p: Measured position (canonical convention)
        z_q: Measured orientation (canonical convention)
        min_quaternion_scalar: Reject when |w(q_err)| or the yaw-anchor
            denominator falls below this

    Returns:
        (r, well_conditioned): r is (7, 1); when well_conditioned is False
        the guarded rows are left at zero and r must not be used
    """
    z_p = np.asarray(z_p, dtype=float).reshape(3,)
    z_q = np.asarray(z_q, dtype=float).reshape(4,)
    r = np.zeros((N_MEAS, 1), dtype=float)

    # position
    p_pred, _ = predict_pose(state)
    r[0:3, 0] = z_p - p_pred

    # attitude
    q_err = attitude_error(state, z_q)
    w = q_err[0]
    well_conditioned = bool(np.isfinite(w) and abs(w) > max(min_quaternion_scalar, 0.0))
    if well_conditioned:
        r[3:6, 0] = q_err[1:4] / w * 2

    # vision world yaw drift
    _, _, y, z = state.q_wv
    yaw_den = 1.0 - 2.0 * (y * y + z * z)
    if abs(yaw_den) > max(min_quaternion_scalar, 0.0):
        r[6, 0] = yaw_drift_residual(state.q_wv)
    else:
        well_conditioned = False
    return r, well_conditioned


def observation_model(state: FilterState, z_p: np.ndarray, z_q: np.ndarray,
                      min_quaternion_scalar: float = 0.0) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """H and r in one call; r is None when the residual is ill-conditioned."""
    H = build_observation_jacobian(state)
    r, ok = compute_residual(state, z_p, z_q, min_quaternion_scalar)
    return H, (r if ok else None)
