#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SSF Pose Math Utilities Module
==============================

Quaternion operations, rotation matrices and small-angle helpers used by
the pose observation model.

Quaternion Convention:
----------------------
All quaternions use Hamilton convention with [w, x, y, z] ordering:
- w is the scalar (real) part
- [x, y, z] is the vector (imaginary) part

quat_to_rot(q) returns the matrix that maps vectors expressed in the child
frame into the parent frame (e.g. q = body w.r.t. world gives R_world_body).
The rotation of conj(q) is the transpose, i.e. parent-to-child.

Key Operations:
---------------
- quat_multiply: Hamilton quaternion product
- quat_conjugate: Inverse of a unit quaternion
- quat_to_rot / rot_to_quat: Matrix conversions
- quat_boxplus: Quaternion ⊞ rotation vector (error-state correction)
- skew_symmetric: 3x3 cross-product operator
- yaw_drift_residual: Vision-world yaw anchor term

Author: SSF pose project
"""

import numpy as np


IDENTITY_QUAT = np.array([1.0, 0.0, 0.0, 0.0])


# =============================================================================
# Quaternion Operations (all use [w, x, y, z] Hamilton convention)
# =============================================================================

def quat_multiply(q1: np.ndarray, q2: np.ndarray) -> np.ndarray:
    """
    Quaternion multiplication: q1 ⊗ q2, both in [w,x,y,z] format.

    q1 ⊗ q2 represents rotation q2 followed by rotation q1.

    Args:
        q1: First quaternion [w, x, y, z]
        q2: Second quaternion [w, x, y, z]

    Returns:
        Product quaternion [w, x, y, z]
    """
    w1, x1, y1, z1 = q1
    w2, x2, y2, z2 = q2
    return np.array([
        w1*w2 - x1*x2 - y1*y2 - z1*z2,
        w1*x2 + x1*w2 + y1*z2 - z1*y2,
        w1*y2 - x1*z2 + y1*w2 + z1*x2,
        w1*z2 + x1*y2 - y1*x2 + z1*w2
    ])


def quat_normalize(q: np.ndarray) -> np.ndarray:
    """
    Normalize quaternion to unit length.

    Args:
        q: Quaternion [w, x, y, z]

    Returns:
        Normalized quaternion with ||q|| = 1 (identity if q is degenerate)
    """
    norm = np.linalg.norm(q)
    if norm < 1e-10:
        return IDENTITY_QUAT.copy()
    return np.asarray(q, dtype=float) / norm


def quat_conjugate(q: np.ndarray) -> np.ndarray:
    """Quaternion conjugate (inverse for unit quaternion)."""
    return np.array([q[0], -q[1], -q[2], -q[3]], dtype=float)


def quat_to_rot(q: np.ndarray) -> np.ndarray:
    """Convert quaternion [w,x,y,z] to 3x3 rotation matrix."""
    w, x, y, z = q
    return np.array([
        [1-2*(y*y+z*z), 2*(x*y-w*z),   2*(x*z+w*y)],
        [2*(x*y+w*z),   1-2*(x*x+z*z), 2*(y*z-w*x)],
        [2*(x*z-w*y),   2*(y*z+w*x),   1-2*(x*x+y*y)]
    ])


def rot_to_quat(R: np.ndarray) -> np.ndarray:
    """Convert 3x3 rotation matrix to quaternion [w,x,y,z]."""
    trace = np.trace(R)
    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        w = 0.25 / s
        x = (R[2,1] - R[1,2]) * s
        y = (R[0,2] - R[2,0]) * s
        z = (R[1,0] - R[0,1]) * s
    else:
        if R[0,0] > R[1,1] and R[0,0] > R[2,2]:
            s = 2.0 * np.sqrt(1.0 + R[0,0] - R[1,1] - R[2,2])
            w = (R[2,1] - R[1,2]) / s
            x = 0.25 * s
            y = (R[0,1] + R[1,0]) / s
            z = (R[0,2] + R[2,0]) / s
        elif R[1,1] > R[2,2]:
            s = 2.0 * np.sqrt(1.0 + R[1,1] - R[0,0] - R[2,2])
            w = (R[0,2] - R[2,0]) / s
            x = (R[0,1] + R[1,0]) / s
            y = 0.25 * s
            z = (R[1,2] + R[2,1]) / s
        else:
            s = 2.0 * np.sqrt(1.0 + R[2,2] - R[0,0] - R[1,1])
            w = (R[1,0] - R[0,1]) / s
            x = (R[0,2] + R[2,0]) / s
            y = (R[1,2] + R[2,1]) / s
            z = 0.25 * s
    return quat_normalize(np.array([w, x, y, z]))


def small_angle_quat(dtheta: np.ndarray) -> np.ndarray:
    """
    Convert small angle rotation vector (3D) to quaternion.
    For small angles: q ≈ [1, θx/2, θy/2, θz/2]
    Uses exact formula above the first-order threshold.
    """
    theta = np.linalg.norm(dtheta)
    if theta < 1e-8:
        return quat_normalize(np.array([1.0, dtheta[0]/2, dtheta[1]/2, dtheta[2]/2]))
    half_theta = theta / 2
    axis = dtheta / theta
    return np.array([
        np.cos(half_theta),
        np.sin(half_theta) * axis[0],
        np.sin(half_theta) * axis[1],
        np.sin(half_theta) * axis[2]
    ])


def quat_boxplus(q: np.ndarray, dtheta: np.ndarray) -> np.ndarray:
    """
    Quaternion box-plus operation (manifold update).
    q_new = q ⊕ δθ = q ⊗ exp(δθ)
    """
    dq = small_angle_quat(dtheta)
    return quat_normalize(quat_multiply(q, dq))


def quaternion_to_yaw(q_wxyz: np.ndarray) -> float:
    """
    Extract yaw angle (rotation about Z) from quaternion [w,x,y,z].

    Returns:
        Yaw angle in radians [-π, π]
    """
    w, x, y, z = q_wxyz
    siny_cosp = 2.0 * (w * z + x * y)
    cosy_cosp = 1.0 - 2.0 * (y * y + z * z)
    return float(np.arctan2(siny_cosp, cosy_cosp))


def yaw_drift_residual(q_wxyz: np.ndarray) -> float:
    """
    Yaw anchor term for the vision-world rotation.

    Ratio form of the yaw extraction, negated: for a small yaw ψ of q_wv the
    value is ≈ -ψ, which matches r = -H·δx for the unit yaw column.
    """
    w, x, y, z = q_wxyz
    return float(-2.0 * (w * z + x * y) / (1.0 - 2.0 * (y * y + z * z)))


# =============================================================================
# Matrix Operations
# =============================================================================

def skew_symmetric(v: np.ndarray) -> np.ndarray:
    """
    Create skew-symmetric matrix from 3D vector.
    [v]× such that [v]× @ u = v × u (cross product)

    [v]× = [ 0   -vz   vy ]
           [ vz   0   -vx ]
           [-vy   vx   0  ]
    """
    return np.array([
        [0,      -v[2],  v[1]],
        [v[2],    0,    -v[0]],
        [-v[1],   v[0],   0   ]
    ], dtype=float)


def block_diag_rotation(R: np.ndarray) -> np.ndarray:
    """6x6 block-diagonal matrix diag(R, R) for a pose covariance."""
    J = np.zeros((6, 6), dtype=float)
    J[0:3, 0:3] = R
    J[3:6, 3:6] = R
    return J
