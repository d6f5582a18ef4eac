#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Extended Kalman Filter Module

Minimal error-state EKF core exposing the two operations a measurement
handler needs: closest-state lookup in the time-indexed history and
applying a linearized measurement at a buffered state.

State propagation is not part of this module; states are pushed into the
history by whoever integrates the IMU (or replayed from a log).
"""

from math import sqrt
from typing import Optional

import numpy as np
from numpy import dot
import scipy.linalg as linalg
from filterpy.stats import logpdf
from filterpy.common import pretty_str

from .history import StateHistory, StateLookup
from .math_utils import IDENTITY_QUAT
from .state_layout import N_STATE, FilterState


def ensure_covariance_valid(P: np.ndarray, label: str = "",
                            symmetrize: bool = True,
                            check_psd: bool = True,
                            min_eigenvalue: float = 1e-12) -> np.ndarray:
    """
    Ensure covariance matrix is valid (symmetric + positive semi-definite).

    Args:
        P: Covariance matrix (n×n)
        label: Debug label for logging
        symmetrize: Force symmetry
        check_psd: Check and fix negative eigenvalues
        min_eigenvalue: Minimum allowed eigenvalue

    Returns:
        P_valid: Fixed covariance matrix
    """
    n = P.shape[0]

    if symmetrize:
        asymmetry = np.linalg.norm(P - P.T, ord='fro')
        if asymmetry > 1e-6:
            print(f"[COV_CHECK] {label}: Asymmetry detected (||P - P^T|| = {asymmetry:.3e}), symmetrizing")
        P = (P + P.T) / 2.0

    if check_psd:
        try:
            lambda_min = np.linalg.eigvalsh(P)[0]
            if lambda_min < -min_eigenvalue:
                jitter = abs(lambda_min) + min_eigenvalue
                print(f"[COV_CHECK] {label}: Negative eigenvalue λ_min = {lambda_min:.3e}, "
                      f"adding jitter ε = {jitter:.3e}")
                P = P + jitter * np.eye(n, dtype=float)
        except np.linalg.LinAlgError as e:
            print(f"[COV_CHECK] {label}: Eigenvalue computation failed: {e}")
            P = P + 1e-6 * np.eye(n, dtype=float)

    return P


class ErrorStateEKF:
    """
    Error-state EKF core with a time-indexed state history.

    Error state layout is given by state_layout.ERROR_STATE_BLOCKS
    (N_STATE = 25). Each buffered state carries its own covariance, and
    measurements are applied to the buffered state they were matched to.
    """

    def __init__(self, history_size: int = 256, tolerance_sec: float = 0.5):
        """
        Args:
            history_size: Number of buffered states
            tolerance_sec: Max time offset for closest-state matching
        """
        self.history = StateHistory(max_states=history_size, tolerance_sec=tolerance_sec)

        # latest raw pose measurement, used by filter initialization
        self.p_vc = np.zeros(3)
        self.q_cv = IDENTITY_QUAT.copy()

        self.y = np.zeros((0, 1))
        self.S = np.zeros((0, 0))
        self.SI = np.zeros((0, 0))
        self.K = np.zeros((N_STATE, 0))
        self._log_likelihood = None
        self._mahalanobis = None

        self.stats = {
            'states_pushed': 0,
            'updates_applied': 0,
            'updates_rejected': 0,
        }

    def push_state(self, state: FilterState, P: Optional[np.ndarray] = None) -> int:
        """Buffer a propagated state; returns its history index."""
        self.stats['states_pushed'] += 1
        return self.history.push(state, P)

    def get_closest_state(self, t: float) -> StateLookup:
        """Closest buffered state to t, or StateLookup.not_found()."""
        return self.history.closest(t)

    def set_measurement_feedback(self, p_vc: np.ndarray, q_cv: np.ndarray) -> None:
        """Store the latest raw pose measurement for the init routine."""
        self.p_vc = np.asarray(p_vc, dtype=float).copy()
        self.q_cv = np.asarray(q_cv, dtype=float).copy()

    def apply_measurement(self, index: int, H: np.ndarray, r: np.ndarray, R: np.ndarray) -> bool:
        """
        Kalman update of the buffered state at index.

        Args:
            index: History index returned by get_closest_state()
            H: Observation Jacobian (m × N_STATE)
            r: Residual (m × 1)
            R: Measurement noise (m × m)

        Returns:
            True if the update was applied
        """
        entry = self.history.get(index)
        if entry is None:
            print(f"[ESKF] WARNING: no buffered state at index {index}, rejecting update")
            self.stats['updates_rejected'] += 1
            return False
        state, P = entry

        H = np.asarray(H, dtype=float)
        r = np.asarray(r, dtype=float).reshape(-1, 1)
        R = np.asarray(R, dtype=float)

        PHT = dot(P, H.T)
        S = dot(H, PHT) + R
        try:
            SI = linalg.inv(S)
        except np.linalg.LinAlgError:
            print("[ESKF] WARNING: Singular S matrix, rejecting update")
            self.stats['updates_rejected'] += 1
            return False

        K = dot(PHT, SI)
        dx = dot(K, r)

        # Joseph form
        I_KH = np.eye(N_STATE) - dot(K, H)
        P_new = dot(I_KH, P).dot(I_KH.T) + dot(K, R).dot(K.T)
        P_new = ensure_covariance_valid(P_new, label="EKF-Update")

        self.history.replace(index, state.boxplus(dx), P_new)

        self.y = r
        self.S = S
        self.SI = SI
        self.K = K
        self._log_likelihood = None
        self._mahalanobis = None
        self.stats['updates_applied'] += 1
        return True

    @property
    def log_likelihood(self):
        """log-likelihood of the last measurement."""
        if self._log_likelihood is None:
            if self.y.size == 0:
                return None
            self._log_likelihood = logpdf(x=self.y, cov=self.S)
        return self._log_likelihood

    @property
    def mahalanobis(self):
        """Mahalanobis distance of the last innovation."""
        if self._mahalanobis is None:
            if self.y.size == 0:
                return None
            self._mahalanobis = sqrt((self.y.T @ self.SI @ self.y).item())
        return self._mahalanobis

    def __repr__(self):
        latest = self.history.latest()
        return '\n'.join([
            'ErrorStateEKF object',
            pretty_str('history_len', len(self.history)),
            pretty_str('latest_time', latest[0].time if latest else None),
            pretty_str('p_vc', self.p_vc),
            pretty_str('q_cv', self.q_cv),
            pretty_str('y', self.y),
            pretty_str('S', self.S),
            pretty_str('K', self.K),
        ])
