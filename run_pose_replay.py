#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SSF Pose Replay Entry Point (run_pose_replay.py)

Replays a logged pose stream (motion capture, SLAM, ground truth) against a
logged filter state trajectory and writes the corrected states plus an
optional per-measurement residual log.

Configuration Model:
--------------------
    YAML config is the single source of truth for algorithm settings
    (noise, covariance policy, sensor convention, history tolerance).
    CLI provides only paths and runtime flags.

Usage:
    python run_pose_replay.py --config configs/config_pose_sensor.yaml \\
        --states states.csv --poses poses.csv --output out/

    # With residual log:
    python run_pose_replay.py --config configs/config_pose_sensor.yaml \\
        --states states.csv --poses poses.csv --output out/ --save_debug_data

Author: SSF pose project
"""

import argparse
import os
import sys


def parse_args(argv=None):
    """Parse command line arguments (paths and runtime flags only)."""
    parser = argparse.ArgumentParser(
        description="SSF pose sensor replay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--states", type=str, required=True,
                        help="Path to filter state CSV")
    parser.add_argument("--poses", type=str, required=True,
                        help="Path to pose measurement CSV")
    parser.add_argument("--output", type=str, required=True,
                        help="Output directory")
    parser.add_argument("--config", type=str,
                        default="configs/config_pose_sensor.yaml",
                        help="Path to YAML config file")
    parser.add_argument("--save_debug_data", action="store_true",
                        help="Write pose_residuals.csv")
    return parser.parse_args(argv)


def main(argv=None):
    """Load config and data, replay, write results."""
    args = parse_args(argv)

    from ssf_pose import __version__
    from ssf_pose.config import PoseSensorConfig, load_config
    from ssf_pose.data_loaders import load_pose_csv, load_state_csv
    from ssf_pose.output_utils import init_residual_csv, save_states_csv
    from ssf_pose.replay import run_pose_replay

    print("=" * 70)
    print(f"SSF Pose Replay (ssf_pose {__version__})")
    print("=" * 70)

    print(f"\nLoading config: {args.config}")
    config = load_config(args.config)
    os.makedirs(args.output, exist_ok=True)

    if args.save_debug_data:
        config['RESIDUAL_CSV'] = init_residual_csv(os.path.join(args.output, "pose_residuals.csv"))
    sensor_config = PoseSensorConfig.from_dict(config)

    print(f"  meas_noise1: {sensor_config.meas_noise1}")
    print(f"  meas_noise2: {sensor_config.meas_noise2}")
    print(f"  use_fixed_covariance: {sensor_config.use_fixed_covariance}")
    print(f"  measurement_world_sensor: {sensor_config.measurement_world_sensor}")
    print(f"  history: size={config['HISTORY_SIZE']}, tolerance={config['HISTORY_TOLERANCE_SEC']}s")

    states = load_state_csv(args.states)
    poses = load_pose_csv(args.poses)

    result = run_pose_replay(
        states, poses, sensor_config,
        history_size=config['HISTORY_SIZE'],
        tolerance_sec=config['HISTORY_TOLERANCE_SEC'],
        initial_state_variance=config['INITIAL_STATE_VARIANCE'],
    )

    out_path = save_states_csv(result.states, os.path.join(args.output, "corrected_states.csv"))
    print(f"[REPLAY] Corrected states: {out_path}")
    for key, val in result.stats.items():
        print(f"[REPLAY]   {key}: {val}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
