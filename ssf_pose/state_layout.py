"""Error-state layout and filter state snapshot.

The error state uses a 3D rotation vector for every quaternion in the
nominal state, so the 28-element nominal state maps onto a 25-column error
state:

    p(0:3) v(3:6) δθ(6:9) b_w(9:12) b_a(12:15) L(15) δθ_wv(16:19)
    δθ_ci(19:22) p_ci(22:25)

Velocity and IMU biases are carried along untouched by the pose
observation model.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Tuple

import numpy as np

from .math_utils import IDENTITY_QUAT, quat_boxplus


@dataclass(frozen=True)
class StateBlock:
    """Contiguous error-state column range."""

    name: str
    start: int
    size: int

    @property
    def cols(self) -> slice:
        return slice(self.start, self.start + self.size)

    @property
    def stop(self) -> int:
        return self.start + self.size


ERROR_STATE_BLOCKS: Tuple[StateBlock, ...] = (
    StateBlock("p", 0, 3),
    StateBlock("v", 3, 3),
    StateBlock("q", 6, 3),
    StateBlock("b_w", 9, 3),
    StateBlock("b_a", 12, 3),
    StateBlock("L", 15, 1),
    StateBlock("q_wv", 16, 3),
    StateBlock("q_ci", 19, 3),
    StateBlock("p_ci", 22, 3),
)

BLOCKS: Dict[str, StateBlock] = {b.name: b for b in ERROR_STATE_BLOCKS}

N_STATE = ERROR_STATE_BLOCKS[-1].stop

# Blocks the pose measurement depends on; everything else is opaque to it.
OBSERVED_BLOCKS = ("p", "q", "L", "q_wv", "q_ci", "p_ci")
OPAQUE_BLOCKS = ("v", "b_w", "b_a")

# Yaw (z) component of the vision-world rotation error
Q_WV_YAW_COL = BLOCKS["q_wv"].start + 2

_QUAT_FIELDS = ("q", "q_wv", "q_ci")


def _vec3(value) -> np.ndarray:
    return np.asarray(value, dtype=float).reshape(3,).copy()


def _quat(value) -> np.ndarray:
    return np.asarray(value, dtype=float).reshape(4,).copy()


@dataclass(frozen=True, eq=False)
class FilterState:
    """
    Read-only filter state snapshot at one timestamp.

    Attributes:
        time: State timestamp [s]
        p: Position of the IMU in world [m]
        v: Velocity in world [m/s]
        q: Orientation of IMU w.r.t. world [w,x,y,z]
        b_w: Gyro bias [rad/s]
        b_a: Accel bias [m/s²]
        L: Visual scale factor
        q_wv: Vision frame w.r.t. world rotation [w,x,y,z]
        q_ci: Camera w.r.t. IMU rotation [w,x,y,z]
        p_ci: Camera position in IMU frame [m]
    """

    time: float
    p: np.ndarray = field(default_factory=lambda: np.zeros(3))
    v: np.ndarray = field(default_factory=lambda: np.zeros(3))
    q: np.ndarray = field(default_factory=lambda: IDENTITY_QUAT.copy())
    b_w: np.ndarray = field(default_factory=lambda: np.zeros(3))
    b_a: np.ndarray = field(default_factory=lambda: np.zeros(3))
    L: float = 1.0
    q_wv: np.ndarray = field(default_factory=lambda: IDENTITY_QUAT.copy())
    q_ci: np.ndarray = field(default_factory=lambda: IDENTITY_QUAT.copy())
    p_ci: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        object.__setattr__(self, "time", float(self.time))
        object.__setattr__(self, "L", float(self.L))
        for name in ("p", "v", "b_w", "b_a", "p_ci"):
            object.__setattr__(self, name, _vec3(getattr(self, name)))
        for name in _QUAT_FIELDS:
            object.__setattr__(self, name, _quat(getattr(self, name)))

    @classmethod
    def default(cls, time: float = 0.0) -> "FilterState":
        """Identity rotations, unit scale, everything else zero."""
        return cls(time=time)

    def boxplus(self, dx: np.ndarray) -> "FilterState":
        """
        Apply an error-state correction and return the corrected state.

        Vectors and the scale are corrected additively, quaternions
        multiplicatively (q ⊗ exp(δθ)).

        Args:
            dx: Error-state correction (N_STATE,) or (N_STATE, 1)
        """
        dx = np.asarray(dx, dtype=float).reshape(-1)
        if dx.shape[0] != N_STATE:
            raise ValueError(f"error-state correction has {dx.shape[0]} entries, expected {N_STATE}")

        changes = {}
        for name in ("p", "v", "b_w", "b_a", "p_ci"):
            changes[name] = getattr(self, name) + dx[BLOCKS[name].cols]
        changes["L"] = self.L + float(dx[BLOCKS["L"].start])
        for name in _QUAT_FIELDS:
            changes[name] = quat_boxplus(getattr(self, name), dx[BLOCKS[name].cols])
        return replace(self, **changes)
