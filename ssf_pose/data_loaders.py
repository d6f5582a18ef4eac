#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SSF Pose Data Loaders Module

Loads pose measurement streams and filter state logs from CSV files.

Pose CSV columns:
    t, px, py, pz, qw, qx, qy, qz [, cov_0 ... cov_35]

State CSV columns: see output_utils.STATE_CSV_COLUMNS.
"""

from typing import List

import numpy as np
import pandas as pd

from .conventions import PoseMeasurement
from .output_utils import STATE_CSV_COLUMNS
from .state_layout import FilterState

POSE_COLUMNS = ["t", "px", "py", "pz", "qw", "qx", "qy", "qz"]
COV_COLUMNS = [f"cov_{i}" for i in range(36)]


def _require_columns(df: pd.DataFrame, required: List[str], path: str) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"{path}: missing column(s) {missing}")


def load_pose_csv(path: str) -> List[PoseMeasurement]:
    """
    Load pose measurements from CSV.

    Rows whose covariance columns are absent or contain NaN yield
    measurements without covariance.

    Args:
        path: CSV file path

    Returns:
        List of PoseMeasurement sorted by time
    """
    df = pd.read_csv(path)
    df.columns = [c.strip() for c in df.columns]
    _require_columns(df, POSE_COLUMNS, path)
    df = df.sort_values("t").reset_index(drop=True)

    has_cov = all(c in df.columns for c in COV_COLUMNS)
    poses = []
    for row in df.itertuples(index=False):
        rec = row._asdict()
        cov = None
        if has_cov:
            flat = np.array([rec[c] for c in COV_COLUMNS], dtype=float)
            if np.all(np.isfinite(flat)):
                cov = flat.reshape(6, 6)
        poses.append(PoseMeasurement(
            time=float(rec["t"]),
            position=np.array([rec["px"], rec["py"], rec["pz"]], dtype=float),
            orientation=np.array([rec["qw"], rec["qx"], rec["qy"], rec["qz"]], dtype=float),
            covariance=cov,
        ))
    print(f"[DATA] Loaded {len(poses)} pose measurements from {path} "
          f"({'with' if has_cov else 'without'} covariance)")
    return poses


def load_state_csv(path: str) -> List[FilterState]:
    """
    Load filter state snapshots from CSV.

    Args:
        path: CSV file path with STATE_CSV_COLUMNS

    Returns:
        List of FilterState sorted by time
    """
    df = pd.read_csv(path)
    df.columns = [c.strip() for c in df.columns]
    _require_columns(df, STATE_CSV_COLUMNS, path)
    df = df.sort_values("t").reset_index(drop=True)

    def cols(prefix: str, axes: str) -> List[str]:
        return [f"{prefix}_{a}" for a in axes]

    states = []
    for _, row in df.iterrows():
        states.append(FilterState(
            time=float(row["t"]),
            p=row[cols("p", "xyz")].to_numpy(dtype=float),
            v=row[cols("v", "xyz")].to_numpy(dtype=float),
            q=row[cols("q", "wxyz")].to_numpy(dtype=float),
            b_w=row[cols("b_w", "xyz")].to_numpy(dtype=float),
            b_a=row[cols("b_a", "xyz")].to_numpy(dtype=float),
            L=float(row["L"]),
            q_wv=row[cols("q_wv", "wxyz")].to_numpy(dtype=float),
            q_ci=row[cols("q_ci", "wxyz")].to_numpy(dtype=float),
            p_ci=row[cols("p_ci", "xyz")].to_numpy(dtype=float),
        ))
    print(f"[DATA] Loaded {len(states)} filter states from {path}")
    return states
