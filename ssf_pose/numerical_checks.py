#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Numerical Validation Module
===========================

Boundary checks for incoming pose measurements and covariance matrices.
Checks report through console tags and return booleans; they never raise
on the measurement path.
"""

from typing import Optional

import numpy as np


def assert_finite(name, M, t=None, verbose=True):
    """
    Tripwire: Check matrix/vector for inf/nan.

    Parameters:
    -----------
    name : str
        Descriptive name of the quantity being checked
    M : np.ndarray or None
        Matrix or vector to validate
    t : float, optional
        Timestamp (for logging context)
    verbose : bool
        Print a diagnostic line on failure

    Returns:
    --------
    bool : True if finite, False if inf/nan detected
    """
    if M is None:
        if verbose:
            print(f"[TRIPWIRE] {name}: is None!")
        return False

    M = np.asarray(M, dtype=float)
    if np.all(np.isfinite(M)):
        return True

    if verbose:
        stamp = f" at t={t:.6f}" if t is not None else ""
        print(f"[TRIPWIRE] NaN/inf in {name}{stamp} "
              f"(shape={M.shape}, nan={np.any(np.isnan(M))}, inf={np.any(np.isinf(M))})")
    return False


def check_quaternion(name: str, q: np.ndarray, t: Optional[float] = None,
                     norm_tol: float = 1e-3, verbose: bool = True) -> bool:
    """
    Check that q is a finite quaternion with non-degenerate norm.

    Quaternions off unit norm by more than norm_tol are accepted but
    reported; a near-zero norm is rejected.
    """
    if not assert_finite(name, q, t=t, verbose=verbose):
        return False
    norm = float(np.linalg.norm(q))
    if norm < 1e-10:
        if verbose:
            print(f"[TRIPWIRE] {name}: zero-norm quaternion")
        return False
    if abs(norm - 1.0) > norm_tol and verbose:
        print(f"[TRIPWIRE] {name}: non-unit quaternion (|q|={norm:.6f}), normalizing")
    return True


def covariance_is_psd(C: np.ndarray, label: str = "", tol: float = 1e-12,
                      verbose: bool = True) -> bool:
    """
    Report whether C is symmetric positive semi-definite.

    Used for advisory warnings only: the caller keeps using C as given.
    """
    C = np.asarray(C, dtype=float)
    asymmetry = float(np.linalg.norm(C - C.T, ord='fro'))
    try:
        lambda_min = float(np.linalg.eigvalsh((C + C.T) / 2.0)[0])
    except np.linalg.LinAlgError as e:
        if verbose:
            print(f"[COV_CHECK] {label}: eigenvalue computation failed: {e}")
        return False

    ok = asymmetry <= 1e-9 and lambda_min >= -tol
    if not ok and verbose:
        print(f"[COV_CHECK] {label}: not PSD (||C - C^T|| = {asymmetry:.3e}, "
              f"λ_min = {lambda_min:.3e}), passing through unchanged")
    return ok
