#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Time-Indexed Filter State History

Ring buffer of (state, covariance) snapshots so that a delayed pose
measurement can be linearized at the state closest to its capture time.

Workflow:
1. push(): engine stores every propagated state
2. closest(): measurement handler looks up the snapshot for its timestamp
3. replace(): engine writes back the corrected snapshot after the update

A lookup returns a StateLookup; a miss (empty buffer or nothing within
tolerance) is the explicit StateLookup.not_found() variant.

Author: SSF pose project
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .state_layout import N_STATE, FilterState


@dataclass(frozen=True)
class StateLookup:
    """Result of a closest-state query."""

    index: int
    state: Optional[FilterState] = None
    covariance: Optional[np.ndarray] = None
    dt: float = float("inf")  # t_state - t_query

    @property
    def found(self) -> bool:
        return self.state is not None

    @classmethod
    def not_found(cls) -> "StateLookup":
        return cls(index=-1)


class StateHistory:
    """
    Fixed-size ring buffer of filter state snapshots.

    Slot indices are stable until the slot is overwritten by a newer state,
    so an index returned by closest() can be handed back to replace().
    """

    def __init__(self, max_states: int = 256, tolerance_sec: float = 0.5):
        """
        Args:
            max_states: Number of slots in the ring buffer
            tolerance_sec: Maximum |t_state - t_query| for a match
        """
        if max_states < 1:
            raise ValueError(f"max_states must be >= 1, got {max_states}")
        self.max_states = int(max_states)
        self.tolerance_sec = max(0.0, float(tolerance_sec))

        self._lock = threading.Lock()
        self._slots: List[Optional[Tuple[FilterState, np.ndarray]]] = [None] * self.max_states
        self._head = 0  # next slot to write
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def push(self, state: FilterState, P: Optional[np.ndarray] = None) -> int:
        """Store a snapshot, overwriting the oldest when full; returns its slot."""
        P = np.eye(N_STATE) if P is None else np.array(P, dtype=float)
        if P.shape != (N_STATE, N_STATE):
            raise ValueError(f"covariance must be {N_STATE}x{N_STATE}, got {P.shape}")
        with self._lock:
            idx = self._head
            self._slots[idx] = (state, P)
            self._head = (self._head + 1) % self.max_states
            self._count = min(self._count + 1, self.max_states)
        return idx

    def closest(self, t: float) -> StateLookup:
        """Snapshot with the nearest timestamp within tolerance."""
        t = float(t)
        best_idx = -1
        best_dt = float("inf")
        with self._lock:
            for idx, slot in enumerate(self._slots):
                if slot is None:
                    continue
                dt = slot[0].time - t
                if abs(dt) < abs(best_dt):
                    best_idx, best_dt = idx, dt
            if best_idx < 0 or abs(best_dt) > self.tolerance_sec:
                return StateLookup.not_found()
            state, P = self._slots[best_idx]
            return StateLookup(index=best_idx, state=state, covariance=P.copy(), dt=best_dt)

    def get(self, index: int) -> Optional[Tuple[FilterState, np.ndarray]]:
        """Snapshot stored at a slot, or None."""
        if not 0 <= index < self.max_states:
            return None
        with self._lock:
            slot = self._slots[index]
        if slot is None:
            return None
        return slot[0], slot[1].copy()

    def replace(self, index: int, state: FilterState, P: np.ndarray) -> bool:
        """Overwrite an occupied slot with a corrected snapshot."""
        if not 0 <= index < self.max_states:
            return False
        with self._lock:
            if self._slots[index] is None:
                return False
            self._slots[index] = (state, np.array(P, dtype=float))
        return True

    def latest(self) -> Optional[Tuple[FilterState, np.ndarray]]:
        """Most recently pushed snapshot."""
        if self._count == 0:
            return None
        return self.get((self._head - 1) % self.max_states)
