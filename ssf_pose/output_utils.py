#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SSF Pose Output Utilities

CSV logging of pose updates and corrected state snapshots.
"""

import os
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from .state_layout import FilterState

RESIDUAL_CSV_HEADER = "t,outcome,r_px,r_py,r_pz,r_qx,r_qy,r_qz,r_yaw,mahalanobis\n"

STATE_CSV_COLUMNS: List[str] = (
    ["t"]
    + [f"p_{a}" for a in "xyz"]
    + [f"v_{a}" for a in "xyz"]
    + [f"q_{a}" for a in "wxyz"]
    + [f"b_w_{a}" for a in "xyz"]
    + [f"b_a_{a}" for a in "xyz"]
    + ["L"]
    + [f"q_wv_{a}" for a in "wxyz"]
    + [f"q_ci_{a}" for a in "wxyz"]
    + [f"p_ci_{a}" for a in "xyz"]
)


def init_residual_csv(residual_csv: str) -> str:
    """Create (truncate) the residual CSV and write its header."""
    out_dir = os.path.dirname(residual_csv)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    with open(residual_csv, "w", newline="") as f:
        f.write(RESIDUAL_CSV_HEADER)
    return residual_csv


def log_pose_update(residual_csv: Optional[str], t: float, outcome: str,
                    residual: Optional[np.ndarray] = None,
                    mahalanobis_dist: Optional[float] = None):
    """
    Append one pose update row to the residual CSV.

    Args:
        residual_csv: Path to residual CSV (no-op if None)
        t: Measurement timestamp
        outcome: Update outcome label (DISPATCHED, ABORTED_STALE, ...)
        residual: 7x1 residual, NaN-filled when not computed
        mahalanobis_dist: Innovation Mahalanobis distance, if known
    """
    if residual_csv is None:
        return

    if not os.path.exists(residual_csv):
        init_residual_csv(residual_csv)

    r = np.full(7, np.nan) if residual is None else np.asarray(residual, dtype=float).flatten()
    m = float('nan') if mahalanobis_dist is None else float(mahalanobis_dist)
    with open(residual_csv, "a", newline="") as f:
        f.write(f"{t:.6f},{outcome}," + ",".join(f"{v:.9f}" for v in r) + f",{m:.6f}\n")


def state_to_row(state: FilterState) -> List[float]:
    """Flatten a FilterState in STATE_CSV_COLUMNS order."""
    return (
        [state.time]
        + list(state.p) + list(state.v) + list(state.q)
        + list(state.b_w) + list(state.b_a) + [state.L]
        + list(state.q_wv) + list(state.q_ci) + list(state.p_ci)
    )


def save_states_csv(states: Iterable[FilterState], output_path: str) -> str:
    """Write filter states to CSV."""
    df = pd.DataFrame([state_to_row(s) for s in states], columns=STATE_CSV_COLUMNS)
    out_dir = os.path.dirname(output_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    df.to_csv(output_path, index=False, float_format="%.9f")
    return output_path
